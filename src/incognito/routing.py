"""
Incognito - Request Routing

Route tables, URL matchers and the Route control object.

Selection rule for a request URL:
  1. Page-scope registrations are consulted before context-scope ones.
  2. Within a scope, the LAST registration whose matcher matches wins.
  3. No match: the request continues to the network unmodified.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Union

import httpx

from incognito.errors import (
    DriverError,
    RouteAlreadyHandledError,
    RouteHandlerError,
    RouteTimeoutError,
)
from incognito.models import FulfillResponse, Request

if TYPE_CHECKING:
    from incognito.driver import Driver

logger = logging.getLogger("incognito.routing")

RouteHandler = Callable[["Route"], Any]
URLMatch = Union[str, "re.Pattern[str]", Callable[[str], Any], "GlobMatcher", "RegexMatcher", "PredicateMatcher"]

ABORT_ERROR_CODES = frozenset({
    "aborted",
    "accessdenied",
    "addressunreachable",
    "blockedbyclient",
    "blockedbyresponse",
    "connectionaborted",
    "connectionclosed",
    "connectionfailed",
    "connectionrefused",
    "connectionreset",
    "internetdisconnected",
    "namenotresolved",
    "timedout",
    "failed",
})


# ═══════════════════════════════════════════════════════════════════════════
# Matchers
# ═══════════════════════════════════════════════════════════════════════════


def glob_to_regex(glob: str) -> str:
    """
    Translate a URL glob into a regular expression source.

    ``**`` matches across path segments, ``*`` stays within one segment,
    ``?`` is a single character, ``{a,b}`` is alternation and ``[...]`` is a
    character class. Everything else is literal.
    """
    tokens = ["^"]
    in_group = False
    i = 0
    while i < len(glob):
        c = glob[i]
        if c == "\\" and i + 1 < len(glob):
            tokens.append(re.escape(glob[i + 1]))
            i += 2
            continue
        if c == "*":
            if glob.startswith("**", i):
                tokens.append(".*")
                while i < len(glob) and glob[i] == "*":
                    i += 1
                continue
            tokens.append("[^/]*")
        elif c == "?":
            tokens.append(".")
        elif c == "[":
            end = glob.find("]", i + 1)
            if end == -1:
                tokens.append(re.escape(c))
            else:
                tokens.append(glob[i:end + 1])
                i = end
        elif c == "{":
            in_group = True
            tokens.append("(?:")
        elif c == "}" and in_group:
            in_group = False
            tokens.append(")")
        elif c == "," and in_group:
            tokens.append("|")
        else:
            tokens.append(re.escape(c))
        i += 1
    tokens.append("$")
    return "".join(tokens)


@dataclass(frozen=True)
class GlobMatcher:
    """Matches URLs against a glob. Equal when the patterns are equal."""
    pattern: str
    _compiled: re.Pattern = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "_compiled", re.compile(glob_to_regex(self.pattern)))

    def matches(self, url: str) -> bool:
        return self._compiled.match(url) is not None


@dataclass(frozen=True)
class RegexMatcher:
    """Matches when the regex is found anywhere in the URL. Equal on source and flags."""
    pattern: str
    flags: int = 0
    _compiled: re.Pattern = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "_compiled", re.compile(self.pattern, self.flags))

    @classmethod
    def from_pattern(cls, pattern: re.Pattern) -> "RegexMatcher":
        return cls(pattern.pattern, pattern.flags)

    def matches(self, url: str) -> bool:
        return self._compiled.search(url) is not None


@dataclass(frozen=True)
class PredicateMatcher:
    """Matches when the predicate returns a truthy value. Equal only for the same callable."""
    predicate: Callable[[str], Any]

    def matches(self, url: str) -> bool:
        return bool(self.predicate(url))


RouteMatcher = Union[GlobMatcher, RegexMatcher, PredicateMatcher]


def to_matcher(url: URLMatch) -> RouteMatcher:
    """Build a matcher from a glob string, compiled regex or predicate."""
    if isinstance(url, (GlobMatcher, RegexMatcher, PredicateMatcher)):
        return url
    if isinstance(url, str):
        return GlobMatcher(url)
    if isinstance(url, re.Pattern):
        return RegexMatcher.from_pattern(url)
    if callable(url):
        return PredicateMatcher(url)
    raise TypeError(
        f"URL matcher must be a glob string, compiled regex or predicate, got {type(url).__name__}"
    )


# ═══════════════════════════════════════════════════════════════════════════
# Route Table
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RouteRegistration:
    matcher: RouteMatcher
    handler: RouteHandler
    sequence: int


class RouteTable:
    """Ordered (matcher, handler) registrations for one scope."""

    def __init__(self):
        self._registrations: list[RouteRegistration] = []
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._registrations)

    def __iter__(self):
        return iter(list(self._registrations))

    def add(self, url: URLMatch, handler: RouteHandler) -> RouteRegistration:
        if not callable(handler):
            raise TypeError(f"Route handler must be callable, got {type(handler).__name__}")
        registration = RouteRegistration(to_matcher(url), handler, next(self._sequence))
        self._registrations.append(registration)
        return registration

    def remove(self, url: URLMatch, handler: RouteHandler | None = None) -> int:
        """
        Remove registrations with an equal matcher (and the same handler, if given).

        Returns:
            Number of registrations removed.
        """
        matcher = to_matcher(url)
        kept = [
            r for r in self._registrations
            if not (r.matcher == matcher and (handler is None or r.handler == handler))
        ]
        removed = len(self._registrations) - len(kept)
        self._registrations = kept
        return removed

    def clear(self) -> None:
        self._registrations.clear()

    def match(self, url: str) -> RouteRegistration | None:
        """Last registration whose matcher matches ``url``. Matcher errors propagate."""
        for registration in reversed(self._registrations):
            if registration.matcher.matches(url):
                return registration
        return None


def select_route(
    url: str,
    page_routes: RouteTable | None,
    context_routes: RouteTable,
) -> RouteRegistration | None:
    """Page scope first, then context scope; last match wins within a scope."""
    if page_routes is not None:
        registration = page_routes.match(url)
        if registration is not None:
            return registration
    return context_routes.match(url)


# ═══════════════════════════════════════════════════════════════════════════
# Route control object
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class FetchResponse:
    """Response obtained by Route.fetch(); can be passed to Route.fulfill()."""
    status: int
    headers: dict[str, str]
    body: bytes

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Route:
    """
    Interception point for one request.

    The handler must call exactly one of continue_(), fulfill() or abort().
    """

    def __init__(self, request: Request, driver: "Driver", extra_headers: dict[str, str] | None = None):
        self.request = request
        self._driver = driver
        self._extra_headers = dict(extra_headers or {})
        self._resolution: str | None = None
        self._done: asyncio.Future = asyncio.get_running_loop().create_future()

    def __repr__(self) -> str:
        return f"<Route url={self.request.url!r} resolution={self._resolution!r}>"

    @property
    def handled(self) -> bool:
        return self._resolution is not None

    @property
    def resolution(self) -> str | None:
        """"continue", "fulfill", "abort" or None while pending."""
        return self._resolution

    def _claim(self, resolution: str) -> None:
        if self._resolution is not None:
            raise RouteAlreadyHandledError(self.request.url)
        self._resolution = resolution

    def _settle(self, error: BaseException | None = None) -> None:
        if self._done.done():
            return
        if error is None:
            self._done.set_result(self._resolution)
        else:
            self._done.set_exception(error)
            # the caller that triggered the failure already sees it
            self._done.exception()

    async def _forward(self, call) -> None:
        try:
            await call
        except DriverError as e:
            self._settle(e)
            raise
        except Exception as e:
            error = DriverError(f"Driver failed to resolve {self.request.url}: {e}")
            self._settle(error)
            raise error from e
        self._settle()

    async def wait(self) -> str:
        """Wait until the route has been resolved."""
        return await asyncio.shield(self._done)

    async def continue_(
        self,
        url: str | None = None,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        post_data: str | bytes | None = None,
    ) -> None:
        """Send the request to the network, optionally with overrides."""
        self._claim("continue")
        overrides: dict[str, Any] = {}
        if url is not None:
            overrides["url"] = url
        if method is not None:
            overrides["method"] = method
        if headers is not None:
            overrides["headers"] = {k: str(v) for k, v in headers.items()}
        if post_data is not None:
            overrides["post_data"] = post_data.encode("utf-8") if isinstance(post_data, str) else post_data
        await self._forward(self._driver.continue_request(self.request.id, overrides))

    async def fulfill(
        self,
        status: int | None = None,
        headers: dict[str, str] | None = None,
        body: str | bytes | None = None,
        content_type: str | None = None,
        path: str | Path | None = None,
        response: FetchResponse | None = None,
    ) -> None:
        """Answer the request without touching the network."""
        self._claim("fulfill")

        resolved_status = status if status is not None else (response.status if response else 200)
        resolved_headers = dict(response.headers) if response else {}
        if headers is not None:
            resolved_headers = dict(headers)
        resolved_headers = {k.lower(): str(v) for k, v in resolved_headers.items()}

        if path is not None:
            file_path = Path(path)
            data = file_path.read_bytes()
            if content_type is None:
                content_type = mimetypes.guess_type(str(file_path))[0] or "application/octet-stream"
        elif body is not None:
            data = body.encode("utf-8") if isinstance(body, str) else bytes(body)
        elif response is not None:
            data = response.body
        else:
            data = b""

        if content_type is not None:
            resolved_headers["content-type"] = content_type
        elif isinstance(body, str) and "content-type" not in resolved_headers:
            resolved_headers["content-type"] = "text/plain; charset=utf-8"
        resolved_headers["content-length"] = str(len(data))

        await self._forward(self._driver.fulfill_request(
            self.request.id,
            FulfillResponse(status=resolved_status, headers=resolved_headers, body=data),
        ))

    async def abort(self, error_code: str = "failed") -> None:
        """Fail the request with a network error code."""
        if error_code not in ABORT_ERROR_CODES:
            raise ValueError(
                f"Unknown abort error code \"{error_code}\". "
                f"Expected one of: {', '.join(sorted(ABORT_ERROR_CODES))}"
            )
        self._claim("abort")
        await self._forward(self._driver.abort_request(self.request.id, error_code))

    async def fetch(
        self,
        url: str | None = None,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        post_data: str | bytes | None = None,
        timeout: float = 30.0,
    ) -> FetchResponse:
        """
        Perform the request in-process and return the response.

        Does not resolve the route; pass the result to fulfill().
        """
        request_headers = {**self._extra_headers, **(headers if headers is not None else self.request.headers)}
        content = post_data if post_data is not None else self.request.post_data
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            resp = await client.request(
                method or self.request.method,
                url or self.request.url,
                headers=request_headers,
                content=content,
            )
        return FetchResponse(
            status=resp.status_code,
            headers={k.lower(): v for k, v in resp.headers.items()},
            body=resp.content,
        )


async def run_route_handler(route: Route, registration: RouteRegistration, timeout: float) -> str:
    """
    Invoke a route handler and wait for it to resolve the route.

    Args:
        timeout: Milliseconds; 0 waits forever.

    Returns:
        The route resolution ("continue", "fulfill" or "abort").

    Raises:
        RouteTimeoutError: the handler did not resolve the route in time.
        RouteHandlerError: the handler raised.
    """
    url = route.request.url

    async def _handle() -> str:
        result = registration.handler(route)
        if inspect.isawaitable(result):
            await result
        return await route.wait()

    try:
        return await asyncio.wait_for(_handle(), timeout / 1000 if timeout else None)
    except asyncio.TimeoutError:
        logger.warning(f"Route handler for {url} did not resolve within {timeout:g}ms")
        await _abort_quietly(route, "timedout")
        raise RouteTimeoutError(url, timeout) from None
    except DriverError:
        raise
    except Exception as e:
        logger.warning(f"Route handler for {url} raised: {e}")
        await _abort_quietly(route, "failed")
        raise RouteHandlerError(url, e) from e


async def _abort_quietly(route: Route, error_code: str) -> None:
    """Best-effort abort of a route the handler left pending."""
    if route.handled:
        return
    try:
        await route.abort(error_code)
    except DriverError as e:
        logger.debug(f"Abort of {route.request.url} failed: {e}")
