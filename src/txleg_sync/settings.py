"""Operator key/value settings consumed by the sync pipeline.

The settings store is owned by the admin side of the application; this
package only reads it.  Values are stored as strings alongside a type tag and
parsed on the way out.  Missing keys fall back to :data:`DEFAULT_SETTINGS`.

Settings are re-read every time :func:`resolve_fetch_settings` runs, so an
operator edit takes effect on the next trigger without a restart.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .models import FetchSettings, SyncOptions

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DefaultSetting:
    key: str
    value: str
    type: str  # STRING | NUMBER | BOOLEAN | JSON
    category: str
    description: str


DEFAULT_SETTINGS: list[DefaultSetting] = [
    # Session settings
    DefaultSetting(
        "SESSION_CODE",
        "89R",
        "STRING",
        "session",
        "Texas Legislature session code (e.g., 89R for 89th Regular)",
    ),
    DefaultSetting(
        "SESSION_NAME",
        "89th Regular Session",
        "STRING",
        "session",
        "Full name of the legislative session",
    ),
    # Sync settings
    DefaultSetting(
        "MAX_BILLS_PER_SYNC",
        "100",
        "NUMBER",
        "sync",
        "Maximum number of bills to sync per operation",
    ),
    DefaultSetting(
        "BATCH_DELAY_MS",
        "500",
        "NUMBER",
        "sync",
        "Delay between bill requests in milliseconds",
    ),
    DefaultSetting(
        "SYNC_ENABLED",
        "true",
        "BOOLEAN",
        "sync",
        "Enable or disable bill syncing",
    ),
    DefaultSetting(
        "BILL_TYPES",
        '["HB", "SB"]',
        "JSON",
        "sync",
        "Bill type prefixes to sync, in processing order",
    ),
]

_DEFAULTS_BY_KEY: dict[str, DefaultSetting] = {s.key: s for s in DEFAULT_SETTINGS}


class SettingsStore(Protocol):
    """Read-only key/value source.  Returns ``(value, type)`` or ``None``."""

    def lookup(self, key: str) -> tuple[str, str] | None: ...


class MemorySettingsStore:
    """Dict-backed store for tests and embedded use."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})

    def lookup(self, key: str) -> tuple[str, str] | None:
        if key not in self.values:
            return None
        default = _DEFAULTS_BY_KEY.get(key)
        return (self.values[key], default.type if default else "STRING")


class JsonSettingsStore:
    """Settings persisted by the admin UI as a JSON file.

    The file maps keys to either a bare string or ``{"value": ..., "type": ...}``.
    It is read on every lookup, never cached.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            LOGGER.warning("Failed to read settings file %s: %s", self.path, e)
            return {}
        return raw if isinstance(raw, dict) else {}

    def lookup(self, key: str) -> tuple[str, str] | None:
        entry = self._load().get(key)
        if entry is None:
            return None
        default = _DEFAULTS_BY_KEY.get(key)
        default_type = default.type if default else "STRING"
        if isinstance(entry, dict):
            return (str(entry.get("value", "")), str(entry.get("type", default_type)))
        if isinstance(entry, bool):
            return ("true" if entry else "false", default_type)
        if isinstance(entry, list):
            return (json.dumps(entry), default_type)
        return (str(entry), default_type)


def parse_setting_value(value: str, type_: str) -> Any:
    """Parse a stored string according to its type tag."""
    if type_ == "NUMBER":
        return float(value) if "." in value else int(value)
    if type_ == "BOOLEAN":
        return value.strip().lower() == "true"
    if type_ == "JSON":
        return json.loads(value)
    return value


def get_setting(store: SettingsStore, key: str) -> str | None:
    """Raw string value, falling back to the built-in default."""
    found = store.lookup(key)
    if found is not None:
        return found[0]
    default = _DEFAULTS_BY_KEY.get(key)
    return default.value if default else None


def get_setting_typed(store: SettingsStore, key: str) -> Any:
    found = store.lookup(key)
    if found is None:
        default = _DEFAULTS_BY_KEY.get(key)
        if default is None:
            return None
        found = (default.value, default.type)
    value, type_ = found
    try:
        return parse_setting_value(value, type_)
    except (ValueError, json.JSONDecodeError):
        LOGGER.warning("Unparseable %s setting %s=%r; using default.", type_, key, value)
        default = _DEFAULTS_BY_KEY.get(key)
        return parse_setting_value(default.value, default.type) if default else None


def _normalize_bill_types(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return []
    types: list[str] = []
    for t in raw:
        code = str(t).strip().upper()
        if code and code not in types:
            types.append(code)
    return types


def resolve_fetch_settings(
    store: SettingsStore, options: SyncOptions | None = None
) -> FetchSettings:
    """Merge caller overrides over stored settings over defaults.

    Falsy overrides (``0``, empty list) fall through, matching how the admin
    form submits "unset" fields.
    """
    opts = options or SyncOptions()

    session_code = opts.session_code or get_setting(store, "SESSION_CODE") or "89R"
    session_name = (
        opts.session_name or get_setting(store, "SESSION_NAME") or "89th Regular Session"
    )
    max_bills = opts.max_bills or int(get_setting_typed(store, "MAX_BILLS_PER_SYNC") or 100)
    batch_delay_ms = opts.batch_delay_ms or int(get_setting_typed(store, "BATCH_DELAY_MS") or 500)
    sync_enabled = get_setting_typed(store, "SYNC_ENABLED") is not False
    bill_types = _normalize_bill_types(opts.bill_types) or _normalize_bill_types(
        get_setting_typed(store, "BILL_TYPES")
    )

    return FetchSettings(
        session_code=session_code,
        session_name=session_name,
        max_bills=max(1, int(max_bills)),
        batch_delay_ms=max(0, int(batch_delay_ms)),
        sync_enabled=sync_enabled,
        bill_types=bill_types or ["HB", "SB"],
    )
