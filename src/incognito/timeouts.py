"""Default timeout bookkeeping shared by contexts and pages (milliseconds)."""

from __future__ import annotations

DEFAULT_TIMEOUT = 30000.0


def _check(timeout: float) -> float:
    timeout = float(timeout)
    if timeout < 0:
        raise ValueError(f"Timeout must be >= 0 milliseconds, got {timeout:g}")
    return timeout


class TimeoutSettings:
    """Resolves explicit, own-default, parent-default and global timeouts, in that order."""

    def __init__(
        self,
        parent: "TimeoutSettings | None" = None,
        default_timeout: float | None = None,
        default_navigation_timeout: float | None = None,
    ):
        self._parent = parent
        self._default_timeout = _check(default_timeout) if default_timeout is not None else None
        self._default_navigation_timeout = (
            _check(default_navigation_timeout) if default_navigation_timeout is not None else None
        )

    def set_default_timeout(self, timeout: float) -> None:
        self._default_timeout = _check(timeout)

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self._default_navigation_timeout = _check(timeout)

    def timeout(self, timeout: float | None = None) -> float:
        if timeout is not None:
            return _check(timeout)
        if self._default_timeout is not None:
            return self._default_timeout
        if self._parent is not None:
            return self._parent.timeout()
        return DEFAULT_TIMEOUT

    def navigation_timeout(self, timeout: float | None = None) -> float:
        if timeout is not None:
            return _check(timeout)
        if self._default_navigation_timeout is not None:
            return self._default_navigation_timeout
        if self._default_timeout is not None:
            return self._default_timeout
        if self._parent is not None:
            return self._parent.navigation_timeout()
        return DEFAULT_TIMEOUT
