"""
Incognito - Page Handle

A page is an opaque handle owned by a BrowserContext. It carries its own
page-scope route table, which takes precedence over the context's.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Any, Callable

from incognito.errors import IncognitoError
from incognito.events import EventHub, PageEvent
from incognito.models import PageInfo
from incognito.routing import RouteHandler, RouteTable, URLMatch
from incognito.timeouts import TimeoutSettings

if TYPE_CHECKING:
    from incognito.context import BrowserContext

logger = logging.getLogger("incognito.page")


class PageClosedError(IncognitoError):
    def __init__(self, operation: str = ""):
        message = "Page has been closed"
        super().__init__(f"{operation}: {message}" if operation else message)


class Page:
    def __init__(self, context: "BrowserContext", info: PageInfo, opener: "Page | None" = None):
        self._context = context
        self.guid = info.guid
        self.url = info.url
        self._opener = opener
        self._closed = False
        self._events = EventHub()
        self._routes = RouteTable()
        self._timeout_settings = TimeoutSettings(parent=context._timeout_settings)

    def __repr__(self) -> str:
        return f"<Page guid={self.guid!r} url={self.url!r}>"

    @property
    def context(self) -> "BrowserContext":
        return self._context

    @property
    def routes(self) -> RouteTable:
        return self._routes

    def opener(self) -> "Page | None":
        """The page that opened this one as a popup, if any."""
        return self._opener

    def is_closed(self) -> bool:
        return self._closed

    # ── Events ──

    def on(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        self._events.on(event, handler)

    def once(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        self._events.once(event, handler)

    def off(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        self._events.off(event, handler)

    # ── Timeouts ──

    def set_default_timeout(self, timeout: float) -> None:
        self._timeout_settings.set_default_timeout(timeout)

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self._timeout_settings.set_default_navigation_timeout(timeout)

    # ── Routing ──

    async def route(self, url: URLMatch, handler: RouteHandler) -> None:
        """Intercept this page's requests matching ``url``. Wins over context routes."""
        self._check_open("route")
        self._routes.add(url, handler)
        await self._context._ensure_interception()

    async def unroute(self, url: URLMatch, handler: RouteHandler | None = None) -> None:
        self._check_open("unroute")
        removed = self._routes.remove(url, handler)
        logger.debug(f"Removed {removed} route(s) from {self.guid}")

    # ── Lifecycle ──

    async def close(self) -> None:
        """Close the page. Closing an already closed page does nothing."""
        if self._closed:
            return
        await self._context._driver.close_page(self.guid)
        await self._context._page_closed_async(self)

    def _mark_closed(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        self._routes.clear()
        return True

    def _did_close(self) -> None:
        """Mark closed and notify "close" handlers exactly once."""
        if not self._mark_closed():
            return
        try:
            self._events.emit(PageEvent.CLOSE, self)
        finally:
            self._events.seal()

    async def _did_close_async(self) -> None:
        """Like _did_close(), but waits for async "close" handlers and reports their failures."""
        if not self._mark_closed():
            return
        try:
            await self._events.emit_async(PageEvent.CLOSE, self)
        finally:
            self._events.seal()

    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise PageClosedError(operation)
        self._context._check_open(operation)
