"""
Shop Centralized Configuration

Loads settings from config/settings.toml, applies environment variable
overrides, and exposes a thread-safe singleton via get_config().

No extra dependency: the TOML file is read with stdlib tomllib.

Usage:
    from core.config import get_config

    config = get_config()
    port = config.server.port            # dot-access
    vat  = config.quote.vat_rate
    config.reload()                      # hot-reload from disk
"""

import logging
import os
import threading
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("shop.config")


# ---------------------------------------------------------------------------
# Fallback defaults, used when settings.toml is missing
# ---------------------------------------------------------------------------

_DEFAULTS: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "log_level": "info",
    },
    "storage": {
        "db_path": "data/shop.db",
    },
    "auth": {
        "session_timeout": 3600,
        "max_login_attempts": 5,
        "lockout_duration": 300,
        "min_password_length": 6,
        "bcrypt_rounds": 12,
        "cookie_name": "shop_session",
        # Accounts registered with these emails start as mechanics.
        # After bootstrap, roles live on the account record.
        "bootstrap_admin_emails": ["admin@mechanic.com", "mechanic@example.com"],
    },
    "quote": {
        "vat_rate": 0.20,
        "quote_validity_days": 7,
        "font_path": "",
    },
    "locale": {
        "default": "en",
        "supported": ["en", "bg"],
    },
    "matcher": {
        "fallback_enabled": True,
        "diagnostic_count": 5,
    },
    "events": {
        "max_events": 1000,
        "export_dir": "data/logs",
    },
}

# Environment variable overrides: SHOP_<SECTION>_<KEY> → value
# Only flat (non-nested) keys are supported via env vars.
_ENV_OVERRIDES: list[tuple[str, str, Any]] = [
    ("SHOP_SERVER_HOST",                "server.host",                  str),
    ("SHOP_SERVER_PORT",                "server.port",                  int),
    ("SHOP_SERVER_LOG_LEVEL",           "server.log_level",             str),
    ("SHOP_STORAGE_DB_PATH",            "storage.db_path",              str),
    ("SHOP_AUTH_SESSION_TIMEOUT",       "auth.session_timeout",         int),
    ("SHOP_QUOTE_VAT_RATE",             "quote.vat_rate",               float),
    ("SHOP_QUOTE_FONT_PATH",            "quote.font_path",              str),
    ("SHOP_LOCALE_DEFAULT",             "locale.default",               str),
    ("SHOP_MATCHER_FALLBACK_ENABLED",   "matcher.fallback_enabled",     lambda v: v.lower() in ("true", "1")),
]


# ---------------------------------------------------------------------------
# ConfigSection: dot-access wrapper for nested dicts
# ---------------------------------------------------------------------------

class ConfigSection:
    """Wraps a dict so values are accessible as attributes.

    Nested dicts become nested ConfigSections automatically.

        section = ConfigSection({"port": 8080, "nested": {"key": "val"}})
        section.port        # 8080
        section.nested.key  # "val"
    """

    def __init__(self, data: dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            return super().__getattribute__(name)
        try:
            value = self._data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no key '{name}'. Available: {list(self._data.keys())}"
            )
        if isinstance(value, dict):
            return ConfigSection(value)
        return value

    def __repr__(self) -> str:
        return f"ConfigSection({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        """Return the underlying dict (with nested dicts, not ConfigSections)."""
        return self._data


# ---------------------------------------------------------------------------
# ShopConfig
# ---------------------------------------------------------------------------

class ShopConfig:
    """Loads and manages the shop configuration.

    Reads config/settings.toml relative to the project root, merges
    with hardcoded defaults, applies environment variable overrides.

    Attributes are accessed via dot-notation through ConfigSection:
        config.server.port
        config.locale.supported
    """

    def __init__(self, config_path: str | Path | None = None):
        self._lock = threading.Lock()
        self._config_path = self._resolve_path(config_path)
        self._data: dict[str, Any] = {}
        self.last_loaded: str = ""
        self._load()

    @staticmethod
    def _resolve_path(config_path: str | Path | None) -> Path:
        """Resolve the config file path, defaulting to config/settings.toml."""
        if config_path is not None:
            return Path(config_path)
        env_path = os.environ.get("SHOP_CONFIG")
        if env_path:
            return Path(env_path)
        # Walk up from this file (core/config.py) to find the project root
        project_root = Path(__file__).resolve().parent.parent
        return project_root / "config" / "settings.toml"

    def _load(self):
        """Load config from TOML, merge with defaults, apply env overrides."""
        data = _deep_copy(_DEFAULTS)

        if self._config_path.exists():
            try:
                with open(self._config_path, "rb") as f:
                    toml_data = tomllib.load(f)
                _deep_merge(data, toml_data)
                logger.info("Configuration loaded from %s", self._config_path)
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning(
                    "Failed to read %s: %s, using fallback defaults",
                    self._config_path, e,
                )
        else:
            logger.warning(
                "Config file not found at %s, using fallback defaults",
                self._config_path,
            )

        for env_var, dotpath, cast in _ENV_OVERRIDES:
            env_val = os.environ.get(env_var)
            if env_val is not None:
                try:
                    _set_nested(data, dotpath, cast(env_val))
                    logger.info("Env override: %s=%s", env_var, env_val)
                except (ValueError, TypeError) as e:
                    logger.warning("Invalid env override %s=%s: %s", env_var, env_val, e)

        self._data = data
        self.last_loaded = datetime.now(timezone.utc).isoformat()

    def reload(self) -> dict[str, Any]:
        """Reload configuration from disk.

        Returns a dict of changed values for logging, e.g.:
            {"quote.vat_rate": {"old": 0.2, "new": 0.09}}

        Values read once at construction time (db_path, max_events)
        need a server restart to take effect.
        """
        with self._lock:
            old_data = _deep_copy(self._data)
            self._load()
            changes = _diff_dicts(old_data, self._data)
            if changes:
                logger.info("Configuration reloaded: %d change(s)", len(changes))
            else:
                logger.info("Configuration reloaded: no changes")
            return changes

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name in ("last_loaded", "reload", "to_dict"):
            return super().__getattribute__(name)
        try:
            data = super().__getattribute__("_data")
        except AttributeError:
            raise AttributeError(name)
        try:
            value = data[name]
        except KeyError:
            raise AttributeError(
                f"Config has no section '{name}'. Available: {list(data.keys())}"
            )
        if isinstance(value, dict):
            return ConfigSection(value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Return the full config as a plain dict (JSON-serializable)."""
        return _deep_copy(self._data)


# ---------------------------------------------------------------------------
# Thread-safe singleton
# ---------------------------------------------------------------------------

_instance: ShopConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> ShopConfig:
    """Return the global ShopConfig singleton.

    Thread-safe. The first call creates the instance; subsequent calls
    return the same object. Pass config_path only on first call to
    override the default location.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = ShopConfig(config_path=config_path)
    return _instance


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Simple deep copy for nested dicts of primitives."""
    out = {}
    for k, v in d.items():
        if isinstance(v, dict):
            out[k] = _deep_copy(v)
        elif isinstance(v, list):
            out[k] = list(v)
        else:
            out[k] = v
    return out


def _deep_merge(base: dict, override: dict):
    """Merge override into base in-place. Nested dicts are merged recursively."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _set_nested(data: dict, dotpath: str, value: Any):
    """Set a value in a nested dict using a dot-separated path.

    _set_nested(d, "server.port", 9090)
    → d["server"]["port"] = 9090
    """
    keys = dotpath.split(".")
    target = data
    for key in keys[:-1]:
        target = target.setdefault(key, {})
    target[keys[-1]] = value


def _diff_dicts(old: dict, new: dict, prefix: str = "") -> dict[str, dict]:
    """Return a dict of changed values between two nested dicts.

    Returns: {"dotpath": {"old": ..., "new": ...}}
    """
    changes = {}
    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        dotpath = f"{prefix}.{key}" if prefix else key
        old_val = old.get(key)
        new_val = new.get(key)
        if isinstance(old_val, dict) and isinstance(new_val, dict):
            changes.update(_diff_dicts(old_val, new_val, dotpath))
        elif old_val != new_val:
            changes[dotpath] = {"old": old_val, "new": new_val}
    return changes
