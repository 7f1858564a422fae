"""
Incognito - Playwright Driver

Adapter that drives a real browser through Playwright. All requests of the
wrapped Playwright context go through a single catch-all route once
interception is enabled; the incognito route tables decide what happens.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Optional

from incognito.config import Config, load_config
from incognito.context import BrowserContext
from incognito.driver import Driver
from incognito.errors import DriverError, IncognitoError
from incognito.models import FulfillResponse, PageInfo, Request

logger = logging.getLogger("incognito.playwright")

try:
    from playwright.async_api import async_playwright, Error as PlaywrightError
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    PLAYWRIGHT_AVAILABLE = False
    PlaywrightError = None


class PlaywrightDriver(Driver):
    """Forwards context operations to a ``playwright.async_api.BrowserContext``."""

    def __init__(self, pw_context, browser=None, playwright=None):
        self.context = None
        self._pw_context = pw_context
        self._browser = browser
        self._playwright = playwright
        self._closing = False
        self._page_ids = itertools.count(1)
        self._pw_pages: dict[str, Any] = {}
        self._guids: dict[int, str] = {}
        self._openers: dict[int, str] = {}
        self._pw_routes: dict[str, Any] = {}

    def bind(self, context: BrowserContext) -> None:
        super().bind(context)
        self._pw_context.on("page", self._on_pw_page)
        self._pw_context.on("close", self._on_pw_close)
        for pw_page in self._pw_context.pages:
            self._on_pw_page(pw_page)

    @property
    def browser(self):
        return self._browser

    async def _guard(self, operation: str, awaitable):
        try:
            return await awaitable
        except Exception as e:
            if PlaywrightError is not None and isinstance(e, PlaywrightError):
                raise DriverError(f"{operation}: {e}") from e
            raise

    # ── Playwright events ──

    def _register_page(self, pw_page) -> tuple[str, bool]:
        key = id(pw_page)
        if key in self._guids:
            return self._guids[key], False
        guid = f"page@{next(self._page_ids)}"
        self._guids[key] = guid
        self._pw_pages[guid] = pw_page
        pw_page.on("popup", lambda popup: self._openers.__setitem__(id(popup), guid))
        pw_page.on("close", lambda _: self._on_pw_page_close(guid))
        return guid, True

    def _on_pw_page(self, pw_page) -> None:
        guid, _ = self._register_page(pw_page)
        info = PageInfo(guid=guid, url=pw_page.url, opener_guid=self._openers.get(id(pw_page)))
        try:
            self.context.handle_page_opened(info)
        except IncognitoError as e:
            logger.error(f"Page handlers failed for {guid}: {e}")

    def _on_pw_page_close(self, guid: str) -> None:
        pw_page = self._pw_pages.pop(guid, None)
        if pw_page is not None:
            self._guids.pop(id(pw_page), None)
        try:
            self.context.handle_page_closed(guid)
        except IncognitoError as e:
            logger.error(f"Page close handlers failed for {guid}: {e}")

    def _on_pw_close(self, _pw_context) -> None:
        if self._closing:
            return
        logger.info("Playwright context closed underneath us")
        try:
            self.context.handle_closed()
        except IncognitoError as e:
            logger.error(f"Close handlers failed: {e}")

    def _page_guid_for_request(self, pw_request) -> Optional[str]:
        try:
            pw_page = pw_request.frame.page
        except Exception:
            # service worker requests have no frame
            return None
        return self._guids.get(id(pw_page))

    async def _on_pw_route(self, pw_route, pw_request) -> None:
        request = Request(
            url=pw_request.url,
            method=pw_request.method,
            headers=dict(pw_request.headers),
            post_data=pw_request.post_data_buffer,
            resource_type=pw_request.resource_type,
            page_guid=self._page_guid_for_request(pw_request),
        )
        self._pw_routes[request.id] = pw_route
        try:
            await self.context.handle_request(request)
        except IncognitoError as e:
            logger.warning(f"Request to {request.url} failed: {e}", extra={"url": request.url})
        finally:
            self._pw_routes.pop(request.id, None)

    # ── Pages ──

    async def new_page(self) -> PageInfo:
        pw_page = await self._guard("new_page", self._pw_context.new_page())
        guid, _ = self._register_page(pw_page)
        return PageInfo(guid=guid, url=pw_page.url)

    async def close_page(self, page_guid: str) -> None:
        pw_page = self._pw_pages.get(page_guid)
        if pw_page is not None:
            await self._guard("close_page", pw_page.close())

    async def close(self) -> None:
        self._closing = True
        await self._guard("close", self._pw_context.close())
        if self._browser is not None:
            await self._guard("close", self._browser.close())
        if self._playwright is not None:
            await self._playwright.stop()

    # ── Cookies & storage ──

    async def cookies(self, urls: list[str]) -> list[dict[str, Any]]:
        return await self._guard("cookies", self._pw_context.cookies(urls or None))

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        await self._guard("add_cookies", self._pw_context.add_cookies(cookies))

    async def clear_cookies(self) -> None:
        await self._guard("clear_cookies", self._pw_context.clear_cookies())

    async def storage_state(self) -> dict[str, Any]:
        return await self._guard("storage_state", self._pw_context.storage_state())

    # ── Scripts & bindings ──

    async def add_init_script(self, source: str) -> None:
        await self._guard("add_init_script", self._pw_context.add_init_script(script=source))

    async def expose_binding(self, name: str, needs_handle: bool) -> None:
        async def _call(source, *args):
            pw_page = source.get("page") if isinstance(source, dict) else None
            page_guid = self._guids.get(id(pw_page)) if pw_page is not None else None
            page = self.context.get_page(page_guid) if page_guid else None
            return await self.context.handle_binding_call(name, page, list(args))

        await self._guard(
            "expose_binding",
            self._pw_context.expose_binding(name, _call, handle=needs_handle),
        )

    # ── Emulation ──

    async def grant_permissions(self, permissions: list[str], origin: str | None) -> None:
        await self._guard(
            "grant_permissions",
            self._pw_context.grant_permissions(permissions, origin=origin),
        )

    async def clear_permissions(self) -> None:
        await self._guard("clear_permissions", self._pw_context.clear_permissions())

    async def set_geolocation(self, geolocation: dict[str, float] | None) -> None:
        await self._guard("set_geolocation", self._pw_context.set_geolocation(geolocation))

    async def set_offline(self, offline: bool) -> None:
        await self._guard("set_offline", self._pw_context.set_offline(offline))

    async def set_extra_http_headers(self, headers: dict[str, str]) -> None:
        await self._guard("set_extra_http_headers", self._pw_context.set_extra_http_headers(headers))

    def set_default_timeout(self, timeout: float) -> None:
        self._pw_context.set_default_timeout(timeout)

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self._pw_context.set_default_navigation_timeout(timeout)

    # ── Interception ──

    async def enable_interception(self) -> None:
        await self._guard("enable_interception", self._pw_context.route("**/*", self._on_pw_route))

    def _pw_route(self, request_id: str):
        pw_route = self._pw_routes.get(request_id)
        if pw_route is None:
            raise DriverError(f"No pending request {request_id}")
        return pw_route

    async def continue_request(self, request_id: str, overrides: dict[str, Any]) -> None:
        pw_route = self._pw_route(request_id)
        await self._guard("continue_request", pw_route.continue_(**overrides))

    async def fulfill_request(self, request_id: str, response: FulfillResponse) -> None:
        pw_route = self._pw_route(request_id)
        await self._guard(
            "fulfill_request",
            pw_route.fulfill(status=response.status, headers=response.headers, body=response.body),
        )

    async def abort_request(self, request_id: str, error_code: str) -> None:
        pw_route = self._pw_route(request_id)
        await self._guard("abort_request", pw_route.abort(error_code))


async def launch_context(config: Config | None = None, **context_options: Any) -> BrowserContext:
    """
    Start Playwright, launch the configured browser and return a new context.

    Closing the returned context also closes the browser and stops Playwright.
    """
    if not PLAYWRIGHT_AVAILABLE:
        raise DriverError(
            "Playwright not installed. Run: pip install playwright && playwright install chromium"
        )
    config = config or load_config()

    try:
        playwright = await async_playwright().start()
    except Exception as e:
        raise DriverError(f"Playwright failed to start: {e}") from e

    try:
        browser_type = getattr(playwright, config.browser)
        browser = await browser_type.launch(headless=config.headless)
        pw_context = await browser.new_context(**context_options)
    except Exception as e:
        await playwright.stop()
        raise DriverError(
            f"Browser launch failed: {e}. Run: playwright install {config.browser}"
        ) from e

    logger.info(f"Launched {config.browser} (headless={config.headless})")
    return BrowserContext.from_config(PlaywrightDriver(pw_context, browser=browser, playwright=playwright), config)
