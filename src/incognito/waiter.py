"""
Incognito - Event Waiter

Single-shot future gated by an EventHub: resolves on the first matching
event, fails on timeout or when the owner emits "close" first.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from incognito.errors import WaitAbortedError, WaitTimeoutError
from incognito.events import EventHub

logger = logging.getLogger("incognito.waiter")


async def wait_for_event(
    hub: EventHub,
    event: str,
    *,
    predicate: Callable[[Any], Any] | None = None,
    timeout: float,
    callback: Callable[[], Any] | None = None,
) -> Any:
    """
    Wait for the next ``event`` whose payload satisfies ``predicate``.

    The waiter is armed before ``callback`` runs, so events triggered by the
    callback itself are seen. The timeout starts before the callback runs.

    Args:
        timeout: Milliseconds; 0 waits forever.

    Raises:
        WaitTimeoutError: nothing matched within ``timeout``.
        WaitAbortedError: the hub emitted "close" first.
    """
    future: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_event(value: Any) -> None:
        if future.done():
            return
        if predicate is not None:
            try:
                accepted = predicate(value)
            except Exception as e:
                future.set_exception(e)
                return
            if not accepted:
                return
        future.set_result(value)

    def on_close(*_: Any) -> None:
        if not future.done():
            future.set_exception(WaitAbortedError(event))

    async def run() -> Any:
        if callback is not None:
            result = callback()
            if inspect.isawaitable(result):
                await result
        return await asyncio.shield(future)

    hub.on(event, on_event)
    if event != "close":
        hub.on("close", on_close)
    try:
        # the timeout covers the callback too
        return await asyncio.wait_for(run(), timeout / 1000 if timeout else None)
    except asyncio.TimeoutError:
        logger.debug(f"Wait for \"{event}\" timed out after {timeout:g}ms")
        raise WaitTimeoutError(event, timeout) from None
    finally:
        hub.off(event, on_event)
        hub.off("close", on_close)
        if not future.done():
            future.cancel()
        elif not future.cancelled():
            future.exception()
