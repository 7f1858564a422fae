"""
Incognito - Test Configuration

Shared fixtures for all tests.
"""

import pytest

# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def driver():
    """Fresh in-memory driver."""
    from incognito.driver import LoopbackDriver
    return LoopbackDriver()


@pytest.fixture
def context(driver):
    """Open BrowserContext bound to the loopback driver."""
    from incognito.context import BrowserContext
    return BrowserContext(driver)


@pytest.fixture
def recorder():
    """Callable that records every call's positional arguments."""
    class Recorder:
        def __init__(self):
            self.calls = []

        def __call__(self, *args):
            self.calls.append(args)

    return Recorder()


@pytest.fixture
def storage_state_payload():
    """Realistic storage-state JSON as written by storage_state(path=...)."""
    return {
        "cookies": [
            {
                "name": "session",
                "value": "c0ffee",
                "domain": "shop.example.com",
                "path": "/",
                "expires": -1,
                "httpOnly": True,
                "secure": True,
                "sameSite": "Lax",
            },
            {
                "name": "theme",
                "value": "dark",
                "domain": ".example.com",
                "path": "/",
                "expires": 1893456000,
                "httpOnly": False,
                "secure": False,
                "sameSite": "Strict",
            },
        ],
        "origins": [
            {
                "origin": "https://shop.example.com",
                "localStorage": [{"name": "cart-id", "value": "42"}],
            }
        ],
    }
