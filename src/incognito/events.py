"""
Incognito - Event Hub

Ordered, failure-isolated dispatch of lifecycle events.

Handlers run synchronously in registration order. A handler that raises
does not stop the round: failures are collected and raised together as
HandlerAggregateError once every handler has seen the event. Coroutines
returned by handlers are awaited by emit_async(), so their failures join the
same aggregate; the sync emit() used by driver callbacks can only schedule
them as tracked tasks. Once the hub
is sealed (after the "close" round) nothing is dispatched any more.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from incognito.errors import HandlerAggregateError

logger = logging.getLogger("incognito.events")


class ContextEvent(str, enum.Enum):
    """Events emitted by a BrowserContext."""
    CLOSE = "close"
    PAGE = "page"


class PageEvent(str, enum.Enum):
    """Events emitted by a Page."""
    CLOSE = "close"


def _event_name(event: str | enum.Enum) -> str:
    if isinstance(event, enum.Enum):
        return str(event.value)
    return str(event)


@dataclass(eq=False)
class _Registration:
    handler: Callable[..., Any]
    once: bool = False


class EventHub:
    """Registry of event handlers with ordered dispatch."""

    def __init__(self):
        self._handlers: dict[str, list[_Registration]] = {}
        self._sealed = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def sealed(self) -> bool:
        return self._sealed

    def on(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        """Invoke ``handler`` on every future occurrence of ``event``."""
        if not callable(handler):
            raise TypeError(f"Event handler must be callable, got {type(handler).__name__}")
        self._handlers.setdefault(_event_name(event), []).append(_Registration(handler))

    def once(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        """Invoke ``handler`` on the next occurrence of ``event`` only."""
        if not callable(handler):
            raise TypeError(f"Event handler must be callable, got {type(handler).__name__}")
        self._handlers.setdefault(_event_name(event), []).append(_Registration(handler, once=True))

    def off(self, event: str | enum.Enum, handler: Callable[..., Any]) -> None:
        """Remove the first registration of ``handler``. Unknown handlers are ignored."""
        registrations = self._handlers.get(_event_name(event))
        if not registrations:
            return
        for i, registration in enumerate(registrations):
            if registration.handler == handler:
                del registrations[i]
                return

    def handlers(self, event: str | enum.Enum) -> list[Callable[..., Any]]:
        """Currently registered handlers for ``event``, in dispatch order."""
        return [r.handler for r in self._handlers.get(_event_name(event), [])]

    def listener_count(self, event: str | enum.Enum) -> int:
        return len(self._handlers.get(_event_name(event), []))

    def emit(self, event: str | enum.Enum, *args: Any) -> int:
        """
        Dispatch ``event`` to every registered handler.

        Coroutines returned by handlers are scheduled as tasks; their
        failures can only be logged. Use emit_async() to have them reported.

        Returns:
            Number of handlers invoked.

        Raises:
            HandlerAggregateError: if one or more handlers raised.
        """
        name = _event_name(event)
        if self._sealed:
            logger.debug(f"Dropping \"{name}\" event: hub is sealed")
            return 0

        count, errors, pending = self._dispatch(name, args)
        for awaitable in pending:
            self._schedule(name, awaitable, errors)

        if errors:
            raise HandlerAggregateError(name, errors)
        return count

    async def emit_async(self, event: str | enum.Enum, *args: Any) -> int:
        """
        Dispatch ``event`` and await every coroutine the handlers return.

        Handlers are invoked in registration order, exactly as in emit();
        the returned awaitables then run concurrently. Failures from both
        phases end up in the same HandlerAggregateError.
        """
        name = _event_name(event)
        if self._sealed:
            logger.debug(f"Dropping \"{name}\" event: hub is sealed")
            return 0

        count, errors, pending = self._dispatch(name, args)
        if pending:
            results = await asyncio.gather(*(_await(a) for a in pending), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning(f"Async handler for \"{name}\" raised: {result}")
                    errors.append(result)

        if errors:
            raise HandlerAggregateError(name, errors)
        return count

    def seal(self) -> None:
        """Stop all further dispatch. Registrations are dropped."""
        self._sealed = True
        self._handlers.clear()

    @property
    def pending_tasks(self) -> frozenset[asyncio.Task]:
        """Tasks of async handlers scheduled by emit() that have not finished."""
        return frozenset(self._tasks)

    def _dispatch(self, name: str, args: tuple) -> tuple[int, list[BaseException], list[Any]]:
        registrations = list(self._handlers.get(name, []))
        errors: list[BaseException] = []
        pending: list[Any] = []

        for registration in registrations:
            if registration.once:
                self._remove_registration(name, registration)
            try:
                result = registration.handler(*args)
            except Exception as e:
                logger.warning(f"Handler for \"{name}\" raised: {e}")
                errors.append(e)
                continue
            if inspect.isawaitable(result):
                pending.append(result)

        return len(registrations), errors, pending

    def _remove_registration(self, name: str, registration: _Registration) -> None:
        registrations = self._handlers.get(name, [])
        if registration in registrations:
            registrations.remove(registration)

    def _schedule(self, name: str, awaitable: Any, errors: list[BaseException]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            errors.append(RuntimeError(f"Async handler for \"{name}\" needs a running event loop: {e}"))
            return
        task = loop.create_task(_await(awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        """Forget a finished handler task and log its failure."""
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(f"Async event handler raised: {exc}", exc_info=exc)


async def _await(awaitable: Any) -> Any:
    return await awaitable
