"""
Tests for request routing through a BrowserContext — precedence,
resolution, timeouts, failure isolation and the HTTP cache side effect.
"""

import asyncio
import re
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from incognito.errors import (
    ContextClosedError,
    DriverError,
    RouteAlreadyHandledError,
    RouteHandlerError,
    RouteTimeoutError,
)
from incognito.models import FulfillResponse, Request
from incognito.routing import FetchResponse, Route


def _fulfill_with(tag):
    async def handler(route):
        await route.fulfill(body=tag)
    return handler


def _body(resolution):
    kind, response = resolution
    assert kind == "fulfill"
    return response.body.decode()


# ═══════════════════════════════════════════════════════════════════════════
# Precedence
# ═══════════════════════════════════════════════════════════════════════════


class TestPrecedence:
    @pytest.mark.asyncio
    async def test_last_registered_match_wins(self, context, driver):
        await context.route("*.png", _fulfill_with("R1"))
        await context.route(re.compile(r"\.png$"), _fulfill_with("R2"))

        assert _body(await driver.request("img.png")) == "R2"

    @pytest.mark.asyncio
    async def test_page_route_wins_regardless_of_order(self, context, driver):
        page = await context.new_page()
        await page.route("*", _fulfill_with("page"))
        await context.route("*.png", _fulfill_with("context"))

        assert _body(await driver.request("x.png", page=page)) == "page"

        other = await context.new_page()
        await context.route("*.png", _fulfill_with("context-late"))
        await other.route("*", _fulfill_with("other-page"))
        assert _body(await driver.request("x.png", page=other)) == "other-page"

    @pytest.mark.asyncio
    async def test_page_routes_do_not_leak_to_other_pages(self, context, driver):
        page = await context.new_page()
        other = await context.new_page()
        await page.route("**/*", _fulfill_with("page"))

        assert await driver.request("https://example.com/", page=other) == ("continue", {})

    @pytest.mark.asyncio
    async def test_closed_page_routes_are_ignored(self, context, driver):
        page = await context.new_page()
        await page.route("**/*", _fulfill_with("page"))
        await context.route("**/*", _fulfill_with("context"))
        await page.close()

        assert _body(await driver.request("https://example.com/", page=page)) == "context"


# ═══════════════════════════════════════════════════════════════════════════
# Registration lifecycle
# ═══════════════════════════════════════════════════════════════════════════


class TestUnroute:
    @pytest.mark.asyncio
    async def test_unroute_matcher_removes_all_registrations(self, context, driver):
        await context.route("**/*.png", _fulfill_with("a"))
        await context.route("**/*.png", _fulfill_with("b"))
        await context.unroute("**/*.png")

        assert await driver.request("https://example.com/x.png") == ("continue", {})

    @pytest.mark.asyncio
    async def test_unroute_handler_removes_only_that_pair(self, context, driver):
        first, second = _fulfill_with("first"), _fulfill_with("second")
        await context.route("**/*.png", first)
        await context.route("**/*.png", second)
        await context.unroute("**/*.png", second)

        assert _body(await driver.request("https://example.com/x.png")) == "first"

    @pytest.mark.asyncio
    async def test_page_unroute(self, context, driver):
        page = await context.new_page()
        await page.route(re.compile("png"), _fulfill_with("page"))
        await page.unroute(re.compile("png"))

        assert await driver.request("x.png", page=page) == ("continue", {})


class TestHttpCache:
    @pytest.mark.asyncio
    async def test_no_routes_means_no_interception(self, context, driver):
        assert context.cache_enabled
        assert await driver.request("https://example.com/") == ("network", None)
        assert "enable_interception" not in driver.calls

    @pytest.mark.asyncio
    async def test_first_route_disables_cache_once(self, context, driver):
        await context.route("**/*.png", _fulfill_with("a"))
        await context.route("**/*.jpg", _fulfill_with("b"))

        assert not context.cache_enabled
        assert not driver.cache_enabled
        assert driver.calls.count("enable_interception") == 1

    @pytest.mark.asyncio
    async def test_page_route_also_disables_cache(self, context, driver):
        page = await context.new_page()
        await page.route("**/*", _fulfill_with("a"))
        assert not context.cache_enabled

    @pytest.mark.asyncio
    async def test_cache_stays_disabled_after_unroute(self, context, driver):
        await context.route("**/*.png", _fulfill_with("a"))
        await context.unroute("**/*.png")

        assert not context.cache_enabled
        # unmatched requests still pass through the interceptor
        assert await driver.request("https://example.com/") == ("continue", {})


# ═══════════════════════════════════════════════════════════════════════════
# Resolution
# ═══════════════════════════════════════════════════════════════════════════


class TestResolution:
    @pytest.mark.asyncio
    async def test_continue_with_overrides(self, context, driver):
        async def handler(route):
            await route.continue_(method="POST", headers={"x-test": 1}, post_data="a=1")

        await context.route("**/*", handler)
        kind, overrides = await driver.request("https://example.com/form")

        assert kind == "continue"
        assert overrides == {"method": "POST", "headers": {"x-test": "1"}, "post_data": b"a=1"}

    @pytest.mark.asyncio
    async def test_fulfill_sets_length_and_type(self, context, driver):
        async def handler(route):
            await route.fulfill(status=201, body='{"ok": true}', content_type="application/json")

        await context.route("**/api/**", handler)
        kind, response = await driver.request("https://example.com/api/cart")

        assert kind == "fulfill"
        assert response.status == 201
        assert response.headers["content-type"] == "application/json"
        assert response.headers["content-length"] == str(len(b'{"ok": true}'))

    @pytest.mark.asyncio
    async def test_fulfill_from_file(self, context, driver, tmp_path):
        payload = tmp_path / "cart.json"
        payload.write_text('{"items": []}')

        async def handler(route):
            await route.fulfill(path=payload)

        await context.route("**/cart", handler)
        kind, response = await driver.request("https://example.com/cart")

        assert response.body == b'{"items": []}'
        assert response.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_abort_with_code(self, context, driver):
        await context.route("**/*.png", lambda route: route.abort("blockedbyclient"))
        assert await driver.request("https://example.com/x.png") == ("abort", "blockedbyclient")

    @pytest.mark.asyncio
    async def test_sync_handler_scheduling_resolution(self, context, driver):
        def handler(route):
            asyncio.get_running_loop().create_task(route.abort())

        await context.route("**/*", handler)
        assert await driver.request("https://example.com/") == ("abort", "failed")

    @pytest.mark.asyncio
    async def test_request_sees_extra_headers(self, context, driver):
        seen = {}

        async def handler(route):
            seen.update(route.request.headers)
            await route.continue_()

        await context.set_extra_http_headers({"x-trace": "abc"})
        await context.route("**/*", handler)
        await driver.request("https://example.com/")
        assert seen["x-trace"] == "abc"

    @pytest.mark.asyncio
    async def test_pending_route_does_not_block_other_requests(self, context, driver):
        release = asyncio.Event()

        async def slow(route):
            await release.wait()
            await route.fulfill(body="slow")

        await context.route("**/slow", slow)
        await context.route("**/fast", _fulfill_with("fast"))

        pending = asyncio.create_task(driver.request("https://example.com/slow"))
        await asyncio.sleep(0)
        assert _body(await driver.request("https://example.com/fast")) == "fast"
        assert not pending.done()

        release.set()
        assert _body(await pending) == "slow"


class TestRouteObject:
    @pytest.mark.asyncio
    async def test_second_resolution_raises(self, driver):
        route = Route(Request(url="https://example.com/"), driver)
        await route.continue_()
        with pytest.raises(RouteAlreadyHandledError):
            await route.abort()
        assert route.resolution == "continue"

    @pytest.mark.asyncio
    async def test_unknown_abort_code(self, driver):
        route = Route(Request(url="https://example.com/"), driver)
        with pytest.raises(ValueError, match="Unknown abort error code"):
            await route.abort("nope")
        assert not route.handled

    @pytest.mark.asyncio
    async def test_driver_failure_surfaces_as_driver_error(self):
        broken = MagicMock()
        broken.continue_request = AsyncMock(side_effect=OSError("pipe closed"))
        route = Route(Request(url="https://example.com/"), broken)

        with pytest.raises(DriverError, match="pipe closed"):
            await route.continue_()

    @pytest.mark.asyncio
    async def test_fetch_then_fulfill(self, context, driver):
        fake_resp = MagicMock()
        fake_resp.status_code = 200
        fake_resp.headers = {"Content-Type": "text/html"}
        fake_resp.content = b"<title>Original</title>"

        async def handler(route):
            response = await route.fetch()
            body = response.text().replace("Original", "Patched")
            await route.fulfill(response=response, body=body)

        await context.set_extra_http_headers({"x-trace": "abc"})
        await context.route("**/*", handler)

        with patch("httpx.AsyncClient") as mock_client_cls:
            client = AsyncMock()
            client.request.return_value = fake_resp
            mock_client_cls.return_value.__aenter__.return_value = client

            kind, response = await driver.request("https://example.com/", headers={"accept": "text/html"})

        assert kind == "fulfill"
        assert isinstance(response, FulfillResponse)
        assert response.body == b"<title>Patched</title>"
        assert response.headers["content-type"] == "text/html"
        method, url = client.request.call_args.args
        assert (method, url) == ("GET", "https://example.com/")
        assert client.request.call_args.kwargs["headers"]["x-trace"] == "abc"

    def test_fetch_response_text(self):
        assert FetchResponse(200, {}, "héllo".encode()).text() == "héllo"


# ═══════════════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio
    async def test_unresolved_route_times_out(self, context, driver):
        context.set_default_timeout(50)
        await context.route("**/*", lambda route: None)

        with pytest.raises(RouteTimeoutError) as exc_info:
            await driver.request("https://example.com/")

        assert exc_info.value.url == "https://example.com/"
        assert list(driver.resolutions.values()) == [("abort", "timedout")]

    @pytest.mark.asyncio
    async def test_handler_exception_fails_only_that_request(self, context, driver):
        async def broken(route):
            raise RuntimeError("handler bug")

        await context.route("**/broken", broken)
        await context.route("**/ok", _fulfill_with("ok"))

        with pytest.raises(RouteHandlerError, match="handler bug"):
            await driver.request("https://example.com/broken")
        assert _body(await driver.request("https://example.com/ok")) == "ok"
        assert ("abort", "failed") in driver.resolutions.values()

    @pytest.mark.asyncio
    async def test_predicate_exception_fails_only_that_request(self, context, driver):
        def picky(url):
            if "boom" in url:
                raise ValueError("bad url")
            return False

        await context.route("**/*", _fulfill_with("fallback"))
        await context.route(picky, _fulfill_with("picky"))

        with pytest.raises(RouteHandlerError) as exc_info:
            await driver.request("https://example.com/boom")
        assert isinstance(exc_info.value.cause, ValueError)

        assert len(context.routes) == 2
        assert _body(await driver.request("https://example.com/fine")) == "fallback"

    @pytest.mark.asyncio
    async def test_double_resolution_in_handler(self, context, driver):
        async def greedy(route):
            await route.continue_()
            await route.abort()

        await context.route("**/*", greedy)
        with pytest.raises(RouteHandlerError) as exc_info:
            await driver.request("https://example.com/")

        assert isinstance(exc_info.value.cause, RouteAlreadyHandledError)
        assert list(driver.resolutions.values()) == [("continue", {})]

    @pytest.mark.asyncio
    async def test_close_while_route_pending(self, context, driver):
        started = asyncio.Event()

        async def never(route):
            started.set()
            await asyncio.Event().wait()

        await context.route("**/*", never)
        pending = asyncio.create_task(driver.request("https://example.com/"))
        await started.wait()
        await context.close()

        with pytest.raises(ContextClosedError):
            await pending

    @pytest.mark.asyncio
    async def test_route_after_close(self, context):
        await context.close()
        with pytest.raises(ContextClosedError):
            await context.route("**/*", _fulfill_with("x"))
        with pytest.raises(ContextClosedError):
            await context.unroute("**/*")
