"""
Incognito Config Management

Unified configuration loading from multiple sources:
1. ~/.incognito/config.yaml (persistent, recommended)
2. .env file (project-local)
3. Environment variables (override)

Priority: ENV > .env > config.yaml
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("incognito.config")

# ═══════════════════════════════════════════════════════════════════════════
# Config Paths
# ═══════════════════════════════════════════════════════════════════════════

INCOGNITO_HOME = Path.home() / ".incognito"
CONFIG_FILE = INCOGNITO_HOME / "config.yaml"

# Environment variable -> config key
ENV_KEYS = {
    "INCOGNITO_DEFAULT_TIMEOUT": "default_timeout",
    "INCOGNITO_NAVIGATION_TIMEOUT": "default_navigation_timeout",
    "INCOGNITO_HEADLESS": "headless",
    "INCOGNITO_BROWSER": "browser",
    "INCOGNITO_LOG_DIR": "log_dir",
}

BROWSERS = ("chromium", "firefox", "webkit")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# ═══════════════════════════════════════════════════════════════════════════
# Config Loader
# ═══════════════════════════════════════════════════════════════════════════


class Config:
    """Unified configuration management."""

    def __init__(self, config_file: Path | None = None, search_dotenv: bool = True):
        self.config_file = config_file or CONFIG_FILE
        self.data: dict[str, Any] = {}
        self._search_dotenv = search_dotenv
        self._load()

    def _load(self):
        """Load config from all sources (priority: ENV > .env > config.yaml)."""
        # 1. Load from ~/.incognito/config.yaml
        if self.config_file.exists():
            with open(self.config_file) as f:
                self.data = yaml.safe_load(f) or {}

        # 2. Load from .env file (project-local)
        if self._search_dotenv:
            self._load_dotenv()

        # 3. Environment variables override everything
        self._apply_env_overrides()

    def _load_dotenv(self):
        """Load .env file from cwd or parent directories."""
        check = Path.cwd()
        for _ in range(5):  # Check up to 5 parent directories
            env_file = check / ".env"
            if env_file.exists():
                for line in env_file.read_text().splitlines():
                    if "=" in line and not line.strip().startswith("#"):
                        key, _, value = line.partition("=")
                        key = key.strip()
                        value = value.strip().strip('"').strip("'")

                        # Only INCOGNITO_* keys, and only if ENV doesn't set them
                        if key in ENV_KEYS and key not in os.environ:
                            self.data[ENV_KEYS[key]] = value

                return
            check = check.parent

    def _apply_env_overrides(self):
        """Environment variables override config file."""
        for env_key, key in ENV_KEYS.items():
            if env_key in os.environ:
                self.data[key] = os.environ[env_key]

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value."""
        return self.data.get(key, default)

    def set(self, key: str, value: Any):
        """Set config value (in-memory only)."""
        self.data[key] = value

    def save(self):
        """Save config to ~/.incognito/config.yaml."""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_file, "w") as f:
                yaml.dump(self.data, f, default_flow_style=False)
        except (OSError, PermissionError) as e:
            # Config stays in-memory for this session
            logger.warning(f"Could not save config to {self.config_file}: {e}")

    # ── Typed accessors ──

    def _timeout(self, key: str) -> float | None:
        value = self.get(key)
        if value is None or value == "":
            return None
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid {key} value: {value!r}")
            return None
        if timeout < 0:
            logger.warning(f"Ignoring negative {key} value: {value!r}")
            return None
        return timeout

    @property
    def default_timeout(self) -> float | None:
        """Milliseconds; None means the built-in 30000."""
        return self._timeout("default_timeout")

    @property
    def default_navigation_timeout(self) -> float | None:
        return self._timeout("default_navigation_timeout")

    @property
    def headless(self) -> bool:
        return _parse_bool(self.get("headless", True))

    @property
    def browser(self) -> str:
        browser = str(self.get("browser", "chromium")).lower()
        if browser not in BROWSERS:
            logger.warning(f"Unknown browser {browser!r}, using chromium")
            return "chromium"
        return browser

    @property
    def log_dir(self) -> Path:
        log_dir = self.get("log_dir")
        return Path(log_dir).expanduser() if log_dir else INCOGNITO_HOME / "logs"


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════


def load_config() -> Config:
    """Load config from all sources."""
    return Config()
