"""
Incognito - Data Models

Pydantic models validate everything a caller hands to the context
(cookies, geolocation, storage state). Plain dataclasses carry what the
driver hands back (page and request descriptions, fulfilled responses).
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator


# Permission names a context can grant.
KNOWN_PERMISSIONS = frozenset({
    "geolocation",
    "midi",
    "midi-sysex",
    "notifications",
    "push",
    "camera",
    "microphone",
    "background-sync",
    "ambient-light-sensor",
    "accelerometer",
    "gyroscope",
    "magnetometer",
    "accessibility-events",
    "clipboard-read",
    "clipboard-write",
    "payment-handler",
})

# Grants without an origin apply to every origin under this key.
ALL_ORIGINS = "*"


# ═══════════════════════════════════════════════════════════════════════════
# Cookies
# ═══════════════════════════════════════════════════════════════════════════


def _path_matches(request_path: str, cookie_path: str) -> bool:
    """RFC 6265 path-match: ``/foo`` covers ``/foo`` and ``/foo/bar`` but not ``/foobar``."""
    if request_path == cookie_path:
        return True
    if not request_path.startswith(cookie_path):
        return False
    return cookie_path.endswith("/") or request_path[len(cookie_path)] == "/"


class Cookie(BaseModel):
    """A browser cookie.

    Either ``url`` or both ``domain`` and ``path`` must be set. Session
    cookies have ``expires == -1``.
    """
    name: str
    value: str
    url: Optional[str] = None
    domain: Optional[str] = None
    path: Optional[str] = None
    expires: float = -1
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False
    same_site: Literal["Strict", "Lax", "None"] = Field(default="Lax", alias="sameSite")

    model_config = {"populate_by_name": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v:
            raise ValueError("Cookie name must not be empty")
        return v

    @model_validator(mode="after")
    def check_location(self) -> "Cookie":
        if self.url:
            if self.url.startswith(("about:", "data:")):
                raise ValueError(f"Blank page can not have cookie \"{self.name}\"")
            if self.domain:
                raise ValueError(f"Cookie \"{self.name}\" should have either url or domain")
            if self.path:
                raise ValueError(f"Cookie \"{self.name}\" should have either url or path")
        elif not (self.domain and self.path):
            raise ValueError(f"Cookie \"{self.name}\" should have a url or a domain/path pair")
        return self

    def normalized(self) -> "Cookie":
        """Resolve ``url`` into domain, path and secure flag."""
        if not self.url:
            return self
        parsed = urlparse(self.url)
        path = parsed.path or "/"
        return self.model_copy(update={
            "url": None,
            "domain": parsed.hostname or "",
            "path": path[: path.rfind("/") + 1] or "/",
            "secure": self.secure or parsed.scheme == "https",
        })

    def applies_to(self, url: str) -> bool:
        """True if the browser would send this cookie with a request to ``url``."""
        cookie = self.normalized()
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        domain = (cookie.domain or "").lower()

        if domain.startswith("."):
            if not (host == domain[1:] or host.endswith(domain)):
                return False
        elif host != domain:
            return False

        if not _path_matches(parsed.path or "/", cookie.path or "/"):
            return False

        if cookie.secure and parsed.scheme != "https" and host != "localhost":
            return False
        return True

    def key(self) -> tuple[str, str, str]:
        cookie = self.normalized()
        return (cookie.name, (cookie.domain or "").lower(), cookie.path or "/")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Geolocation(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float = Field(default=0, ge=0)


# ═══════════════════════════════════════════════════════════════════════════
# Storage state
# ═══════════════════════════════════════════════════════════════════════════


class NameValue(BaseModel):
    name: str
    value: str


class OriginState(BaseModel):
    origin: str
    local_storage: list[NameValue] = Field(default_factory=list, alias="localStorage")

    model_config = {"populate_by_name": True}


class StorageState(BaseModel):
    """Snapshot of cookies and local storage for a context."""
    cookies: list[Cookie] = Field(default_factory=list)
    origins: list[OriginState] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ═══════════════════════════════════════════════════════════════════════════
# Driver-side descriptions
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class PageInfo:
    """What the driver reports about a page it created."""
    guid: str
    url: str = "about:blank"
    opener_guid: str | None = None


_request_ids = itertools.count(1)


@dataclass
class Request:
    """An outgoing network request awaiting a routing decision."""
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    post_data: bytes | None = None
    resource_type: str = "document"
    page_guid: str | None = None
    id: str = field(default_factory=lambda: f"request@{next(_request_ids)}")


@dataclass
class FulfillResponse:
    """A synthetic response handed to the driver by Route.fulfill()."""
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
