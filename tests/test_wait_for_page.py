"""
Tests for wait_for_page — single-shot waits gated by the event hub.
"""

import asyncio
import pytest

from incognito.errors import ContextClosedError, WaitAbortedError, WaitTimeoutError


class TestWaitForPage:
    @pytest.mark.asyncio
    async def test_popup_opened_by_callback(self, context, driver):
        page = await context.new_page()

        popup = await context.wait_for_page(lambda: driver.open_popup(page, "https://example.com/help"))

        assert popup.opener() is page
        assert popup.url == "https://example.com/help"

    @pytest.mark.asyncio
    async def test_async_callback(self, context):
        page = await context.wait_for_page(context.new_page)
        assert context.pages() == [page]

    @pytest.mark.asyncio
    async def test_predicate_filters_pages(self, context, driver):
        opener = await context.new_page()

        def open_two():
            driver.open_popup(opener, "https://example.com/ad")
            driver.open_popup(opener, "https://example.com/checkout")

        popup = await context.wait_for_page(open_two, predicate=lambda p: "checkout" in p.url)
        assert popup.url == "https://example.com/checkout"

    @pytest.mark.asyncio
    async def test_page_created_later(self, context):
        waiter = asyncio.create_task(context.wait_for_page(timeout=1000))
        await asyncio.sleep(0.01)
        page = await context.new_page()
        assert await waiter is page

    @pytest.mark.asyncio
    async def test_timeout(self, context):
        with pytest.raises(WaitTimeoutError) as exc_info:
            await context.wait_for_page(timeout=100)
        assert exc_info.value.timeout == 100
        assert "100ms" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_close_before_timeout_aborts(self, context):
        async def close_soon():
            await asyncio.sleep(0.05)
            await context.close()

        closer = asyncio.create_task(close_soon())
        with pytest.raises(WaitAbortedError):
            await context.wait_for_page(timeout=100)
        await closer

    @pytest.mark.asyncio
    async def test_default_timeout_from_context(self, context):
        context.set_default_timeout(30)
        with pytest.raises(WaitTimeoutError) as exc_info:
            await context.wait_for_page()
        assert exc_info.value.timeout == 30

    @pytest.mark.asyncio
    async def test_zero_timeout_waits_indefinitely(self, context):
        context.set_default_timeout(10)
        waiter = asyncio.create_task(context.wait_for_page(timeout=0))
        await asyncio.sleep(0.05)
        assert not waiter.done()

        page = await context.new_page()
        assert await waiter is page

    @pytest.mark.asyncio
    async def test_predicate_error_rejects_wait(self, context):
        def broken(page):
            raise LookupError("predicate bug")

        with pytest.raises(LookupError, match="predicate bug"):
            await context.wait_for_page(context.new_page, predicate=broken, timeout=1000)

    @pytest.mark.asyncio
    async def test_callback_error_propagates(self, context):
        def broken():
            raise RuntimeError("click failed")

        with pytest.raises(RuntimeError, match="click failed"):
            await context.wait_for_page(broken, timeout=1000)

    @pytest.mark.asyncio
    async def test_waiter_handlers_removed_afterwards(self, context):
        before = (context._events.listener_count("page"), context._events.listener_count("close"))

        await context.wait_for_page(context.new_page)
        with pytest.raises(WaitTimeoutError):
            await context.wait_for_page(timeout=10)

        after = (context._events.listener_count("page"), context._events.listener_count("close"))
        assert after == before

    @pytest.mark.asyncio
    async def test_wait_on_closed_context(self, context):
        await context.close()
        with pytest.raises(ContextClosedError):
            await context.wait_for_page(timeout=100)

    @pytest.mark.asyncio
    async def test_timeout_includes_slow_callback(self, context):
        async def slow():
            await asyncio.sleep(0.5)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(WaitTimeoutError):
            await context.wait_for_page(slow, timeout=100)
        assert loop.time() - started < 0.4

    @pytest.mark.asyncio
    async def test_callback_that_never_returns_times_out(self, context):
        never = asyncio.Event()

        with pytest.raises(WaitTimeoutError):
            await context.wait_for_page(never.wait, timeout=50)
        assert context._events.listener_count("page") == 0
