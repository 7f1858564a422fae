"""
Incognito - Browser Context

An isolated "incognito" browser session. Owns its pages, an event hub for
"close" and "page" events, and the context-scope route table. Everything
else (cookies, permissions, emulation) is validated here and forwarded to
the driver.

Once closed, every operation raises ContextClosedError except close(),
pages(), is_closed(), browser() and event (un)registration.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable

from incognito.driver import Driver
from incognito.errors import (
    ContextClosedError,
    DriverError,
    HandlerAggregateError,
    IncognitoError,
    RouteHandlerError,
)
from incognito.events import ContextEvent, EventHub
from incognito.models import (
    ALL_ORIGINS,
    KNOWN_PERMISSIONS,
    Cookie,
    Geolocation,
    PageInfo,
    Request,
    StorageState,
)
from incognito.page import Page
from incognito.routing import (
    Route,
    RouteHandler,
    RouteTable,
    URLMatch,
    run_route_handler,
    select_route,
)
from incognito.timeouts import TimeoutSettings
from incognito.waiter import wait_for_event

if TYPE_CHECKING:
    from incognito.config import Config

logger = logging.getLogger("incognito.context")


@dataclass
class BindingSource:
    """First argument passed to exposed binding callbacks."""
    context: "BrowserContext"
    page: Page | None


@dataclass
class _Binding:
    callback: Callable[..., Any]
    handle: bool


class BrowserContext:
    """
    Incognito browser session backed by a driver.

    Example:
        context = BrowserContext(LoopbackDriver())
        context.on("page", lambda page: print("opened", page))
        page = await context.new_page()
        await context.route("**/*.png", lambda route: route.abort())
        await context.close()
    """

    def __init__(
        self,
        driver: Driver,
        *,
        default_timeout: float | None = None,
        default_navigation_timeout: float | None = None,
        guid: str | None = None,
    ):
        self.guid = guid or f"context@{uuid.uuid4().hex[:12]}"
        self._driver = driver
        self._closed = False
        self._closing = False
        self._pages: dict[str, Page] = {}
        self._events = EventHub()
        self._routes = RouteTable()
        self._route_tasks: set[asyncio.Task] = set()
        self._init_scripts: list[str] = []
        self._bindings: dict[str, _Binding] = {}
        self._extra_http_headers: dict[str, str] = {}
        self._geolocation: Geolocation | None = None
        self._permissions: dict[str, set[str]] = {}
        self._offline = False
        self._interception_enabled = False
        self._timeout_settings = TimeoutSettings(
            default_timeout=default_timeout,
            default_navigation_timeout=default_navigation_timeout,
        )
        driver.bind(self)
        logger.debug("Browser context created", extra={"context_id": self.guid})

    @classmethod
    def from_config(cls, driver: Driver, config: "Config") -> "BrowserContext":
        """Create a context using the timeouts from ``config``."""
        return cls(
            driver,
            default_timeout=config.default_timeout,
            default_navigation_timeout=config.default_navigation_timeout,
        )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<BrowserContext guid={self.guid!r} {state} pages={len(self._pages)}>"

    async def __aenter__(self) -> "BrowserContext":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ═══════════════════════════════════════════════════════════════════
    # State
    # ═══════════════════════════════════════════════════════════════════

    def is_closed(self) -> bool:
        return self._closed

    def browser(self) -> Any:
        """The owning browser (a Playwright ``Browser``), or None if the driver has none."""
        return self._driver.browser

    def pages(self) -> list[Page]:
        """Open pages, oldest first. Empty once the context is closed."""
        return [p for p in self._pages.values() if not p.is_closed()]

    def get_page(self, guid: str) -> Page | None:
        return self._pages.get(guid)

    @property
    def init_scripts(self) -> tuple[str, ...]:
        return tuple(self._init_scripts)

    @property
    def extra_http_headers(self) -> dict[str, str]:
        return dict(self._extra_http_headers)

    @property
    def geolocation(self) -> Geolocation | None:
        return self._geolocation

    @property
    def permissions(self) -> dict[str, frozenset[str]]:
        return {origin: frozenset(p) for origin, p in self._permissions.items()}

    @property
    def offline(self) -> bool:
        return self._offline

    @property
    def cache_enabled(self) -> bool:
        """False once any route has been registered on the context or its pages."""
        return not self._interception_enabled

    @property
    def routes(self) -> RouteTable:
        return self._routes

    def _check_open(self, operation: str) -> None:
        if self._closed:
            raise ContextClosedError(operation)

    # ═══════════════════════════════════════════════════════════════════
    # Events
    # ═══════════════════════════════════════════════════════════════════

    def on(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        """Register ``handler`` for "close" or "page" events."""
        self._events.on(event, handler)

    def once(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        self._events.once(event, handler)

    def off(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        """Remove a handler added with on(). Unknown handlers are ignored."""
        self._events.off(event, handler)

    async def wait_for_page(
        self,
        callback: Callable[[], Any] | None = None,
        *,
        predicate: Callable[[Page], Any] | None = None,
        timeout: float | None = None,
    ) -> Page:
        """
        Wait for the next page created in this context.

        Args:
            callback: Action that causes the page to open. Runs after the
                waiter is armed; awaited if it returns an awaitable.
            predicate: Only accept pages for which this returns truthy.
            timeout: Milliseconds. Defaults to the context default timeout
                (30000 unless changed); 0 disables the timeout.

        Raises:
            WaitTimeoutError: no matching page within the timeout.
            WaitAbortedError: the context closed first.
        """
        self._check_open("wait_for_page")
        return await wait_for_event(
            self._events,
            ContextEvent.PAGE.value,
            predicate=predicate,
            timeout=self._timeout_settings.timeout(timeout),
            callback=callback,
        )

    # ═══════════════════════════════════════════════════════════════════
    # Pages
    # ═══════════════════════════════════════════════════════════════════

    async def new_page(self) -> Page:
        self._check_open("new_page")
        info = await self._driver.new_page()
        page, created = self._adopt_page(info)
        if page is None:
            raise ContextClosedError("new_page")
        if created:
            await self._events.emit_async(ContextEvent.PAGE, page)
        return page

    def _adopt_page(self, info: PageInfo) -> tuple[Page | None, bool]:
        """Register the page described by ``info``; returns (page, newly_created)."""
        if self._closed:
            return None, False
        existing = self._pages.get(info.guid)
        if existing is not None:
            return existing, False
        opener = self._pages.get(info.opener_guid) if info.opener_guid else None
        page = Page(self, info, opener)
        self._pages[page.guid] = page
        logger.debug(f"Page opened: {page.guid}", extra={"context_id": self.guid, "url": page.url})
        return page, True

    def _page_closed(self, page: Page) -> None:
        self._pages.pop(page.guid, None)
        page._did_close()

    async def _page_closed_async(self, page: Page) -> None:
        self._pages.pop(page.guid, None)
        await page._did_close_async()

    # ═══════════════════════════════════════════════════════════════════
    # Cookies & storage
    # ═══════════════════════════════════════════════════════════════════

    async def cookies(self, urls: str | Iterable[str] | None = None) -> list[Cookie]:
        """All cookies, or only those that apply to the given URL(s)."""
        self._check_open("cookies")
        if urls is None:
            url_list: list[str] = []
        elif isinstance(urls, str):
            url_list = [urls]
        else:
            url_list = list(urls)
        data = await self._driver.cookies(url_list)
        return [Cookie.model_validate(c) for c in data]

    async def add_cookies(self, cookies: Iterable[Cookie | dict[str, Any]]) -> None:
        self._check_open("add_cookies")
        validated = [c if isinstance(c, Cookie) else Cookie.model_validate(c) for c in cookies]
        await self._driver.add_cookies([c.to_wire() for c in validated])

    async def clear_cookies(self) -> None:
        self._check_open("clear_cookies")
        await self._driver.clear_cookies()

    async def storage_state(self, path: str | Path | None = None) -> StorageState:
        """
        Snapshot cookies and local storage.

        Args:
            path: If given, the snapshot is also written there as JSON
                (relative paths resolve against the working directory).
        """
        self._check_open("storage_state")
        state = StorageState.model_validate(await self._driver.storage_state())
        if path is not None:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(state.to_wire(), indent=2), encoding="utf-8")
            logger.info(f"Storage state saved to {target}", extra={"context_id": self.guid})
        return state

    # ═══════════════════════════════════════════════════════════════════
    # Scripts & bindings
    # ═══════════════════════════════════════════════════════════════════

    async def add_init_script(self, script: str | None = None, path: str | Path | None = None) -> None:
        """Run ``script`` (or the file at ``path``) before any page script, on every navigation."""
        self._check_open("add_init_script")
        if (script is None) == (path is None):
            raise ValueError("Either script or path must be specified, but not both")
        if path is not None:
            script = Path(path).read_text(encoding="utf-8") + f"\n//# sourceURL={Path(path).as_posix()}"
        await self._driver.add_init_script(script)
        self._init_scripts.append(script)

    async def expose_binding(self, name: str, callback: Callable[..., Any], handle: bool = False) -> None:
        """
        Expose ``window[name]`` in every frame of every page.

        ``callback`` receives a BindingSource followed by the call
        arguments. With ``handle=True`` the single argument is passed as a
        live handle and only one argument is allowed.
        """
        self._check_open("expose_binding")
        if name in self._bindings:
            raise ValueError(f"Function \"{name}\" has been already registered")
        if not callable(callback):
            raise TypeError(f"Binding callback must be callable, got {type(callback).__name__}")
        self._bindings[name] = _Binding(callback, handle)
        try:
            await self._driver.expose_binding(name, handle)
        except Exception:
            del self._bindings[name]
            raise

    async def expose_function(self, name: str, callback: Callable[..., Any]) -> None:
        """Expose ``window[name]``; ``callback`` receives only the call arguments."""
        self._check_open("expose_function")
        await self.expose_binding(name, lambda source, *args: callback(*args))

    async def handle_binding_call(self, name: str, page: Page | None, args: list[Any]) -> Any:
        """Called by the driver when page script invokes an exposed binding."""
        self._check_open(f"binding \"{name}\"")
        binding = self._bindings.get(name)
        if binding is None:
            raise IncognitoError(f"Function \"{name}\" is not exposed")
        if binding.handle and len(args) != 1:
            raise IncognitoError(
                f"Binding \"{name}\" passes a handle and accepts exactly one argument, got {len(args)}"
            )
        result = binding.callback(BindingSource(self, page), *args)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ═══════════════════════════════════════════════════════════════════
    # Emulation
    # ═══════════════════════════════════════════════════════════════════

    async def grant_permissions(self, permissions: Iterable[str], origin: str | None = None) -> None:
        """Grant ``permissions`` to ``origin``, or to every origin if omitted."""
        self._check_open("grant_permissions")
        requested = list(permissions)
        unknown = [p for p in requested if p not in KNOWN_PERMISSIONS]
        if unknown:
            raise ValueError(f"Unknown permission: {', '.join(unknown)}")
        await self._driver.grant_permissions(requested, origin)
        self._permissions.setdefault(origin or ALL_ORIGINS, set()).update(requested)

    async def clear_permissions(self) -> None:
        self._check_open("clear_permissions")
        await self._driver.clear_permissions()
        self._permissions.clear()

    async def set_geolocation(self, geolocation: Geolocation | dict[str, float] | None) -> None:
        """Override the reported position. ``None`` removes the override."""
        self._check_open("set_geolocation")
        if geolocation is not None and not isinstance(geolocation, Geolocation):
            geolocation = Geolocation.model_validate(geolocation)
        await self._driver.set_geolocation(geolocation.model_dump() if geolocation else None)
        self._geolocation = geolocation

    async def set_offline(self, offline: bool) -> None:
        self._check_open("set_offline")
        await self._driver.set_offline(bool(offline))
        self._offline = bool(offline)

    async def set_extra_http_headers(self, headers: dict[str, str]) -> None:
        """Headers sent with every request of every page in the context."""
        self._check_open("set_extra_http_headers")
        for name, value in headers.items():
            if not isinstance(value, str):
                raise TypeError(
                    f"Expected value of header \"{name}\" to be str, got {type(value).__name__}"
                )
        await self._driver.set_extra_http_headers(dict(headers))
        self._extra_http_headers = dict(headers)

    def set_default_timeout(self, timeout: float) -> None:
        """Default for waits and route resolution, in milliseconds. 0 disables."""
        self._check_open("set_default_timeout")
        self._timeout_settings.set_default_timeout(timeout)
        self._driver.set_default_timeout(timeout)

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self._check_open("set_default_navigation_timeout")
        self._timeout_settings.set_default_navigation_timeout(timeout)
        self._driver.set_default_navigation_timeout(timeout)

    # ═══════════════════════════════════════════════════════════════════
    # Routing
    # ═══════════════════════════════════════════════════════════════════

    async def route(self, url: URLMatch, handler: RouteHandler) -> None:
        """
        Intercept requests whose URL matches ``url``.

        ``url`` is a glob string, a compiled regex or a predicate. Later
        registrations win over earlier ones; page routes win over context
        routes. The first route disables the HTTP cache for the context.
        """
        self._check_open("route")
        self._routes.add(url, handler)
        await self._ensure_interception()

    async def unroute(self, url: URLMatch, handler: RouteHandler | None = None) -> None:
        """Remove the (url, handler) registration, or every registration for ``url``."""
        self._check_open("unroute")
        removed = self._routes.remove(url, handler)
        logger.debug(f"Removed {removed} route(s)", extra={"context_id": self.guid})

    async def _ensure_interception(self) -> None:
        if self._interception_enabled:
            return
        self._interception_enabled = True
        try:
            await self._driver.enable_interception()
        except Exception:
            self._interception_enabled = False
            raise
        logger.info("Request interception enabled, HTTP cache disabled", extra={"context_id": self.guid})

    async def handle_request(self, request: Request) -> Route:
        """
        Called by the driver for every outgoing request while interception is on.

        Returns:
            The resolved Route.

        Raises:
            RouteTimeoutError: the handler did not resolve the route in time.
            RouteHandlerError: the handler or a matcher raised.
            ContextClosedError: the context closed before the route resolved.
        """
        self._check_open("route")
        page = self._pages.get(request.page_guid) if request.page_guid else None
        page_routes = page.routes if page is not None and not page.is_closed() else None
        route = Route(request, self._driver, self._extra_http_headers)

        try:
            registration = select_route(request.url, page_routes, self._routes)
        except Exception as e:
            logger.warning(f"URL matcher raised for {request.url}: {e}", extra={"url": request.url})
            await route.abort("failed")
            raise RouteHandlerError(request.url, e) from e

        if registration is None:
            await route.continue_()
            return route

        task = asyncio.ensure_future(
            run_route_handler(route, registration, self._timeout_settings.timeout())
        )
        self._route_tasks.add(task)
        try:
            await task
        except asyncio.CancelledError:
            if self._closed and task.cancelled():
                raise ContextClosedError("route") from None
            raise
        finally:
            self._route_tasks.discard(task)
        return route

    # ═══════════════════════════════════════════════════════════════════
    # Driver notifications & lifecycle
    # ═══════════════════════════════════════════════════════════════════

    def handle_page_opened(self, info: PageInfo) -> Page | None:
        """
        Called by the driver when a page (or popup) comes into existence.

        Dispatches "page" to every handler. Reporting the same page twice
        returns the existing handle without a second dispatch.
        """
        page, created = self._adopt_page(info)
        if created:
            self._events.emit(ContextEvent.PAGE, page)
        return page

    def handle_page_closed(self, page_guid: str) -> None:
        """Called by the driver when a page went away on its own."""
        page = self._pages.get(page_guid)
        if page is not None:
            self._page_closed(page)

    def handle_closed(self) -> None:
        """
        Called when the context is gone (close() or the browser went away).

        Closes pages, aborts waiters and dispatches "close" exactly once.
        Handler failures from the page and context rounds are raised
        together after teardown completes.
        """
        if self._closed:
            return
        errors: list[BaseException] = []

        for page in self._tear_down():
            try:
                page._did_close()
            except HandlerAggregateError as e:
                errors.extend(e.errors)

        try:
            self._events.emit(ContextEvent.CLOSE, self)
        except HandlerAggregateError as e:
            errors.extend(e.errors)
        finally:
            self._events.seal()
        self._finish_close(errors)

    async def _handle_closed_async(self) -> None:
        """handle_closed() for close(): async handlers are awaited and their failures aggregated."""
        if self._closed:
            return
        errors: list[BaseException] = []

        for page in self._tear_down():
            try:
                await page._did_close_async()
            except HandlerAggregateError as e:
                errors.extend(e.errors)

        try:
            await self._events.emit_async(ContextEvent.CLOSE, self)
        except HandlerAggregateError as e:
            errors.extend(e.errors)
        finally:
            self._events.seal()
        self._finish_close(errors)

    def _tear_down(self) -> list[Page]:
        """Mark closed, cancel pending route handlers and hand back the pages to close."""
        self._closed = True
        pages = list(self._pages.values())
        self._pages.clear()
        for task in list(self._route_tasks):
            task.cancel()
        self._routes.clear()
        return pages

    def _finish_close(self, errors: list[BaseException]) -> None:
        logger.info("Browser context closed", extra={"context_id": self.guid, "event": "close"})
        if errors:
            raise HandlerAggregateError(ContextEvent.CLOSE.value, errors)

    async def close(self) -> None:
        """Close the context and all its pages. Safe to call more than once."""
        if self._closed or self._closing:
            return
        self._closing = True
        try:
            await self._driver.close()
        except DriverError as e:
            logger.warning(f"Driver failed to close context: {e}", extra={"context_id": self.guid})
        finally:
            self._closing = False
            await self._handle_closed_async()
