"""
Incognito - Driver Boundary

The driver is the out-of-process engine that does the actual browser work.
A BrowserContext forwards calls to it and receives four notifications
back: handle_page_opened, handle_closed, handle_request and
handle_binding_call.

LoopbackDriver keeps everything in memory. It backs the test suite and
the demo, and is handy for exercising route handlers without a browser.
"""

from __future__ import annotations

import abc
import itertools
import logging
from typing import TYPE_CHECKING, Any

from incognito.errors import DriverError
from incognito.models import (
    ALL_ORIGINS,
    Cookie,
    FulfillResponse,
    NameValue,
    OriginState,
    PageInfo,
    Request,
    StorageState,
)

if TYPE_CHECKING:
    from incognito.context import BrowserContext
    from incognito.page import Page

logger = logging.getLogger("incognito.driver")


class Driver(abc.ABC):
    """Async collaborator that performs browser work for one context."""

    context: "BrowserContext | None" = None

    def bind(self, context: "BrowserContext") -> None:
        """Attach the context that receives this driver's notifications."""
        if self.context is not None and self.context is not context:
            raise DriverError("Driver is already bound to another context")
        self.context = context

    @property
    def browser(self) -> Any:
        """The browser that owns the driven context, or None when there is none."""
        return None

    # ── Pages ──

    @abc.abstractmethod
    async def new_page(self) -> PageInfo: ...

    @abc.abstractmethod
    async def close_page(self, page_guid: str) -> None: ...

    @abc.abstractmethod
    async def close(self) -> None: ...

    # ── Cookies & storage ──

    @abc.abstractmethod
    async def cookies(self, urls: list[str]) -> list[dict[str, Any]]: ...

    @abc.abstractmethod
    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None: ...

    @abc.abstractmethod
    async def clear_cookies(self) -> None: ...

    @abc.abstractmethod
    async def storage_state(self) -> dict[str, Any]: ...

    # ── Scripts & bindings ──

    @abc.abstractmethod
    async def add_init_script(self, source: str) -> None: ...

    @abc.abstractmethod
    async def expose_binding(self, name: str, needs_handle: bool) -> None: ...

    # ── Emulation ──

    @abc.abstractmethod
    async def grant_permissions(self, permissions: list[str], origin: str | None) -> None: ...

    @abc.abstractmethod
    async def clear_permissions(self) -> None: ...

    @abc.abstractmethod
    async def set_geolocation(self, geolocation: dict[str, float] | None) -> None: ...

    @abc.abstractmethod
    async def set_offline(self, offline: bool) -> None: ...

    @abc.abstractmethod
    async def set_extra_http_headers(self, headers: dict[str, str]) -> None: ...

    def set_default_timeout(self, timeout: float) -> None:
        """Timeouts are enforced client-side; drivers may mirror them."""

    def set_default_navigation_timeout(self, timeout: float) -> None:
        """Timeouts are enforced client-side; drivers may mirror them."""

    # ── Interception ──

    @abc.abstractmethod
    async def enable_interception(self) -> None:
        """Route every request of the context through handle_request. Disables the HTTP cache."""

    @abc.abstractmethod
    async def continue_request(self, request_id: str, overrides: dict[str, Any]) -> None: ...

    @abc.abstractmethod
    async def fulfill_request(self, request_id: str, response: FulfillResponse) -> None: ...

    @abc.abstractmethod
    async def abort_request(self, request_id: str, error_code: str) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════
# Loopback (in-memory) driver
# ═══════════════════════════════════════════════════════════════════════════


class LoopbackDriver(Driver):
    """
    In-memory driver.

    Keeps a cookie jar, local storage per origin and page bookkeeping, and
    records every forwarded call in ``calls``. Use request(), open_popup(),
    call_binding() and crash() to simulate what a browser would do.
    """

    def __init__(self):
        self.context = None
        self.calls: list[str] = []
        self.pages: dict[str, PageInfo] = {}
        self.init_scripts: list[str] = []
        self.bindings: dict[str, bool] = {}
        self.permissions: dict[str, set[str]] = {}
        self.geolocation: dict[str, float] | None = None
        self.offline = False
        self.extra_http_headers: dict[str, str] = {}
        self.default_timeout: float | None = None
        self.default_navigation_timeout: float | None = None
        self.interception_enabled = False
        self.cache_enabled = True
        self.closed = False
        self.resolutions: dict[str, tuple[str, Any]] = {}
        self.local_storage: dict[str, dict[str, str]] = {}
        self._cookies: dict[tuple[str, str, str], Cookie] = {}
        self._page_ids = itertools.count(1)

    def _record(self, name: str) -> None:
        if self.closed:
            raise DriverError(f"{name}: driver connection is closed")
        self.calls.append(name)

    # ── Pages ──

    async def new_page(self) -> PageInfo:
        self._record("new_page")
        info = PageInfo(guid=f"page@{next(self._page_ids)}")
        self.pages[info.guid] = info
        return info

    async def close_page(self, page_guid: str) -> None:
        self._record("close_page")
        self.pages.pop(page_guid, None)

    async def close(self) -> None:
        self._record("close")
        self.pages.clear()
        self.closed = True

    # ── Cookies & storage ──

    async def cookies(self, urls: list[str]) -> list[dict[str, Any]]:
        self._record("cookies")
        jar = list(self._cookies.values())
        if urls:
            jar = [c for c in jar if any(c.applies_to(u) for u in urls)]
        return [c.to_wire() for c in jar]

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self._record("add_cookies")
        for data in cookies:
            cookie = Cookie.model_validate(data).normalized()
            self._cookies[cookie.key()] = cookie

    async def clear_cookies(self) -> None:
        self._record("clear_cookies")
        self._cookies.clear()

    async def storage_state(self) -> dict[str, Any]:
        self._record("storage_state")
        state = StorageState(
            cookies=list(self._cookies.values()),
            origins=[
                OriginState(
                    origin=origin,
                    local_storage=[NameValue(name=k, value=v) for k, v in items.items()],
                )
                for origin, items in self.local_storage.items()
                if items
            ],
        )
        return state.to_wire()

    def set_local_storage(self, origin: str, name: str, value: str) -> None:
        self.local_storage.setdefault(origin, {})[name] = value

    # ── Scripts & bindings ──

    async def add_init_script(self, source: str) -> None:
        self._record("add_init_script")
        self.init_scripts.append(source)

    async def expose_binding(self, name: str, needs_handle: bool) -> None:
        self._record("expose_binding")
        self.bindings[name] = needs_handle

    # ── Emulation ──

    async def grant_permissions(self, permissions: list[str], origin: str | None) -> None:
        self._record("grant_permissions")
        self.permissions.setdefault(origin or ALL_ORIGINS, set()).update(permissions)

    async def clear_permissions(self) -> None:
        self._record("clear_permissions")
        self.permissions.clear()

    async def set_geolocation(self, geolocation: dict[str, float] | None) -> None:
        self._record("set_geolocation")
        self.geolocation = geolocation

    async def set_offline(self, offline: bool) -> None:
        self._record("set_offline")
        self.offline = offline

    async def set_extra_http_headers(self, headers: dict[str, str]) -> None:
        self._record("set_extra_http_headers")
        self.extra_http_headers = dict(headers)

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.default_navigation_timeout = timeout

    # ── Interception ──

    async def enable_interception(self) -> None:
        self._record("enable_interception")
        self.interception_enabled = True
        self.cache_enabled = False

    async def continue_request(self, request_id: str, overrides: dict[str, Any]) -> None:
        self._record("continue_request")
        self.resolutions[request_id] = ("continue", overrides)

    async def fulfill_request(self, request_id: str, response: FulfillResponse) -> None:
        self._record("fulfill_request")
        self.resolutions[request_id] = ("fulfill", response)

    async def abort_request(self, request_id: str, error_code: str) -> None:
        self._record("abort_request")
        self.resolutions[request_id] = ("abort", error_code)

    # ── Simulation ──

    def _require_context(self) -> "BrowserContext":
        if self.context is None:
            raise DriverError("Loopback driver is not bound to a context")
        return self.context

    async def request(
        self,
        url: str,
        page: "Page | None" = None,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        post_data: bytes | None = None,
        resource_type: str = "document",
    ) -> tuple[str, Any]:
        """
        Simulate a page issuing a request.

        Returns:
            The resolution: ("network", None) when interception is off,
            otherwise ("continue", overrides), ("fulfill", FulfillResponse)
            or ("abort", error_code).
        """
        context = self._require_context()
        if self.offline:
            return ("abort", "internetdisconnected")
        request = Request(
            url=url,
            method=method,
            headers={**self.extra_http_headers, **(headers or {})},
            post_data=post_data,
            resource_type=resource_type,
            page_guid=page.guid if page is not None else None,
        )
        if not self.interception_enabled:
            return ("network", None)
        await context.handle_request(request)
        return self.resolutions[request.id]

    def open_popup(self, opener: "Page", url: str) -> "Page | None":
        """Simulate ``window.open(url)`` from ``opener``."""
        context = self._require_context()
        info = PageInfo(guid=f"page@{next(self._page_ids)}", url=url, opener_guid=opener.guid)
        self.pages[info.guid] = info
        return context.handle_page_opened(info)

    async def call_binding(self, name: str, page: "Page | None", *args: Any) -> Any:
        """Simulate page script calling ``window[name](*args)``."""
        context = self._require_context()
        return await context.handle_binding_call(name, page, list(args))

    def crash(self) -> None:
        """Simulate the browser going away underneath the context."""
        context = self._require_context()
        logger.info("Loopback driver simulating browser crash")
        self.closed = True
        self.pages.clear()
        context.handle_closed()
