"""Incognito — isolated browser sessions with routing and lifecycle events."""

__version__ = "1.0.0"
__description__ = "Client binding for incognito browser contexts: events, routing, cookies, permissions."

# Export key components
from incognito.config import Config, load_config
from incognito.context import BindingSource, BrowserContext
from incognito.driver import Driver, LoopbackDriver
from incognito.errors import (
    ContextClosedError,
    DriverError,
    HandlerAggregateError,
    IncognitoError,
    RouteAlreadyHandledError,
    RouteError,
    RouteHandlerError,
    RouteTimeoutError,
    WaitAbortedError,
    WaitError,
    WaitTimeoutError,
)
from incognito.events import ContextEvent, EventHub, PageEvent
from incognito.models import Cookie, Geolocation, StorageState
from incognito.page import Page, PageClosedError
from incognito.routing import GlobMatcher, PredicateMatcher, RegexMatcher, Route

__all__ = [
    "BindingSource",
    "BrowserContext",
    "Config",
    "ContextClosedError",
    "ContextEvent",
    "Cookie",
    "Driver",
    "DriverError",
    "EventHub",
    "Geolocation",
    "GlobMatcher",
    "HandlerAggregateError",
    "IncognitoError",
    "LoopbackDriver",
    "Page",
    "PageClosedError",
    "PageEvent",
    "PredicateMatcher",
    "RegexMatcher",
    "Route",
    "RouteAlreadyHandledError",
    "RouteError",
    "RouteHandlerError",
    "RouteTimeoutError",
    "StorageState",
    "WaitAbortedError",
    "WaitError",
    "WaitTimeoutError",
    "load_config",
]
