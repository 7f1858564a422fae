"""
Incognito - Error Types

Every failure a caller can observe is one of these.
"""

from __future__ import annotations


class IncognitoError(Exception):
    """Base class for all incognito errors."""


class ContextClosedError(IncognitoError):
    """Operation attempted on a closed browser context."""

    def __init__(self, operation: str = ""):
        self.operation = operation
        message = "Browser context has been closed"
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class DriverError(IncognitoError):
    """The driver failed to carry out a forwarded call."""


# ═══════════════════════════════════════════════════════════════════════════
# Event dispatch
# ═══════════════════════════════════════════════════════════════════════════


class HandlerAggregateError(IncognitoError):
    """One or more event handlers raised during a dispatch round."""

    def __init__(self, event: str, errors: list[BaseException]):
        self.event = event
        self.errors = list(errors)
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(
            f"{len(self.errors)} handler(s) failed while dispatching \"{event}\": {details}"
        )


# ═══════════════════════════════════════════════════════════════════════════
# Routing
# ═══════════════════════════════════════════════════════════════════════════


class RouteError(IncognitoError):
    """A routed request could not be resolved."""


class RouteTimeoutError(RouteError):
    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(
            f"Timeout {timeout:g}ms exceeded while waiting for route handler to resolve {url}"
        )


class RouteHandlerError(RouteError):
    """A route handler or matcher raised; only its request fails."""

    def __init__(self, url: str, cause: BaseException):
        self.url = url
        self.cause = cause
        super().__init__(f"Route handler failed for {url}: {cause}")


class RouteAlreadyHandledError(RouteError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Route is already handled: {url}")


# ═══════════════════════════════════════════════════════════════════════════
# Waiting
# ═══════════════════════════════════════════════════════════════════════════


class WaitError(IncognitoError):
    """A wait_for_* call did not produce a value."""


class WaitTimeoutError(WaitError):
    def __init__(self, event: str, timeout: float):
        self.event = event
        self.timeout = timeout
        super().__init__(f"Timeout {timeout:g}ms exceeded while waiting for event \"{event}\"")


class WaitAbortedError(WaitError):
    def __init__(self, event: str):
        self.event = event
        super().__init__(f"Context closed while waiting for event \"{event}\"")
