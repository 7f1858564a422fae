"""
Tests for data models — cookie validation and URL matching, geolocation,
storage state aliases.
"""

import pytest
from pydantic import ValidationError

from incognito.models import Cookie, Geolocation, StorageState


class TestCookie:
    def test_url_or_domain_path_required(self):
        with pytest.raises(ValidationError, match="url or a domain/path pair"):
            Cookie(name="a", value="1", domain="example.com")

    def test_url_excludes_domain(self):
        with pytest.raises(ValidationError, match="either url or domain"):
            Cookie(name="a", value="1", url="https://example.com", domain="example.com")

    def test_blank_page_cookie_rejected(self):
        with pytest.raises(ValidationError, match="Blank page"):
            Cookie(name="a", value="1", url="about:blank")

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            Cookie(name="", value="1", url="https://example.com")

    def test_aliases(self):
        cookie = Cookie.model_validate({
            "name": "a", "value": "1", "domain": "example.com", "path": "/",
            "httpOnly": True, "sameSite": "Strict",
        })
        assert cookie.http_only and cookie.same_site == "Strict"
        wire = cookie.to_wire()
        assert wire["httpOnly"] is True
        assert wire["sameSite"] == "Strict"
        assert "url" not in wire

    def test_invalid_same_site(self):
        with pytest.raises(ValidationError):
            Cookie(name="a", value="1", url="https://example.com", sameSite="Sometimes")

    def test_normalized_from_http_url(self):
        cookie = Cookie(name="a", value="1", url="http://example.com/docs/index.html").normalized()
        assert (cookie.domain, cookie.path, cookie.secure, cookie.url) == ("example.com", "/docs/", False, None)

    @pytest.mark.parametrize("cookie_kwargs,url,expected", [
        ({"domain": "example.com", "path": "/"}, "https://example.com/x", True),
        ({"domain": "example.com", "path": "/"}, "https://sub.example.com/x", False),
        ({"domain": ".example.com", "path": "/"}, "https://sub.example.com/x", True),
        ({"domain": ".example.com", "path": "/"}, "https://notexample.com/x", False),
        ({"domain": "example.com", "path": "/admin"}, "https://example.com/admin/users", True),
        ({"domain": "example.com", "path": "/admin"}, "https://example.com/public", False),
        ({"domain": "example.com", "path": "/admin"}, "https://example.com/administrator", False),
        ({"domain": "example.com", "path": "/admin"}, "https://example.com/admin", True),
        ({"domain": "example.com", "path": "/admin/"}, "https://example.com/admin/users", True),
        ({"domain": "example.com", "path": "/", "secure": True}, "http://example.com/", False),
        ({"domain": "localhost", "path": "/", "secure": True}, "http://localhost:3000/", True),
        ({"domain": "EXAMPLE.com", "path": "/"}, "https://example.COM/", True),
    ])
    def test_applies_to(self, cookie_kwargs, url, expected):
        assert Cookie(name="a", value="1", **cookie_kwargs).applies_to(url) is expected

    def test_key_identifies_cookie_slot(self):
        a = Cookie(name="a", value="1", url="https://example.com/x")
        b = Cookie(name="a", value="2", domain="example.com", path="/")
        assert a.key() == b.key()


class TestGeolocation:
    @pytest.mark.parametrize("kwargs", [
        {"latitude": -91, "longitude": 0},
        {"latitude": 0, "longitude": 181},
        {"latitude": 0, "longitude": 0, "accuracy": -1},
    ])
    def test_bounds(self, kwargs):
        with pytest.raises(ValidationError):
            Geolocation(**kwargs)

    def test_defaults(self):
        assert Geolocation(latitude=1, longitude=2).accuracy == 0


class TestStorageState:
    def test_parses_wire_format(self, storage_state_payload):
        state = StorageState.model_validate(storage_state_payload)
        assert [c.name for c in state.cookies] == ["session", "theme"]
        assert state.cookies[0].http_only
        assert state.origins[0].local_storage[0].name == "cart-id"

    def test_to_wire_keeps_aliases(self, storage_state_payload):
        wire = StorageState.model_validate(storage_state_payload).to_wire()
        assert wire["origins"][0]["localStorage"] == [{"name": "cart-id", "value": "42"}]
        assert wire["cookies"][1]["sameSite"] == "Strict"

    def test_empty(self):
        assert StorageState().to_wire() == {"cookies": [], "origins": []}
