from __future__ import annotations

import json
import logging

import pytest

from txleg_sync.models import SyncOptions
from txleg_sync.settings import (
    DEFAULT_SETTINGS,
    JsonSettingsStore,
    MemorySettingsStore,
    get_setting,
    get_setting_typed,
    parse_setting_value,
    resolve_fetch_settings,
)


class TestParseSettingValue:
    @pytest.mark.parametrize(
        "value, type_, expected",
        [
            ("100", "NUMBER", 100),
            ("1.5", "NUMBER", 1.5),
            ("true", "BOOLEAN", True),
            ("False", "BOOLEAN", False),
            ('["HB"]', "JSON", ["HB"]),
            ("89R", "STRING", "89R"),
        ],
    )
    def test_types(self, value: str, type_: str, expected) -> None:
        assert parse_setting_value(value, type_) == expected


class TestDefaults:
    def test_every_default_has_a_category(self) -> None:
        keys = {s.key for s in DEFAULT_SETTINGS}
        assert {"SESSION_CODE", "MAX_BILLS_PER_SYNC", "SYNC_ENABLED", "BILL_TYPES"} <= keys
        assert all(s.category in ("session", "sync") for s in DEFAULT_SETTINGS)

    def test_missing_key_uses_default(self) -> None:
        store = MemorySettingsStore()
        assert get_setting(store, "SESSION_CODE") == "89R"
        assert get_setting_typed(store, "BATCH_DELAY_MS") == 500
        assert get_setting(store, "NOT_A_SETTING") is None

    def test_unparseable_number_falls_back(self, caplog) -> None:
        store = MemorySettingsStore({"MAX_BILLS_PER_SYNC": "lots"})
        with caplog.at_level(logging.WARNING):
            assert get_setting_typed(store, "MAX_BILLS_PER_SYNC") == 100
        assert "Unparseable" in caplog.text


class TestResolveFetchSettings:
    def test_all_defaults(self) -> None:
        fs = resolve_fetch_settings(MemorySettingsStore())
        assert fs.session_code == "89R"
        assert fs.session_name == "89th Regular Session"
        assert fs.max_bills == 100
        assert fs.batch_delay_ms == 500
        assert fs.sync_enabled is True
        assert fs.bill_types == ["HB", "SB"]

    def test_store_values(self) -> None:
        store = MemorySettingsStore(
            {
                "SESSION_CODE": "89R",
                "MAX_BILLS_PER_SYNC": "40",
                "SYNC_ENABLED": "false",
                "BILL_TYPES": '["hjr", "HB", "hb"]',
            }
        )
        fs = resolve_fetch_settings(store)
        assert fs.max_bills == 40
        assert fs.sync_enabled is False
        assert fs.bill_types == ["HJR", "HB"]

    def test_overrides_win(self) -> None:
        store = MemorySettingsStore({"MAX_BILLS_PER_SYNC": "40"})
        fs = resolve_fetch_settings(store, SyncOptions(max_bills=10, bill_types=["sb"]))
        assert fs.max_bills == 10
        assert fs.bill_types == ["SB"]

    def test_falsy_overrides_fall_through(self) -> None:
        store = MemorySettingsStore({"MAX_BILLS_PER_SYNC": "40"})
        fs = resolve_fetch_settings(store, SyncOptions(max_bills=0, bill_types=[]))
        assert fs.max_bills == 40
        assert fs.bill_types == ["HB", "SB"]

    def test_comma_separated_bill_types(self) -> None:
        store = MemorySettingsStore({"BILL_TYPES": '"HB, SB ,HCR"'})
        assert resolve_fetch_settings(store).bill_types == ["HB", "SB", "HCR"]


class TestJsonSettingsStore:
    def test_missing_file_uses_defaults(self, tmp_path) -> None:
        store = JsonSettingsStore(tmp_path / "settings.json")
        assert store.lookup("SESSION_CODE") is None
        assert get_setting(store, "SESSION_CODE") == "89R"

    def test_bare_and_tagged_entries(self, tmp_path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(
            json.dumps(
                {
                    "SESSION_CODE": "891",
                    "SYNC_ENABLED": False,
                    "BILL_TYPES": ["SB"],
                    "MAX_BILLS_PER_SYNC": {"value": "25", "type": "NUMBER"},
                }
            )
        )
        store = JsonSettingsStore(path)
        fs = resolve_fetch_settings(store)
        assert fs.session_code == "891"
        assert fs.sync_enabled is False
        assert fs.bill_types == ["SB"]
        assert fs.max_bills == 25

    def test_reread_on_every_lookup(self, tmp_path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"MAX_BILLS_PER_SYNC": "5"}))
        store = JsonSettingsStore(path)
        assert get_setting_typed(store, "MAX_BILLS_PER_SYNC") == 5
        path.write_text(json.dumps({"MAX_BILLS_PER_SYNC": "7"}))
        assert get_setting_typed(store, "MAX_BILLS_PER_SYNC") == 7

    def test_corrupt_file_is_ignored(self, tmp_path) -> None:
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert JsonSettingsStore(path).lookup("SESSION_CODE") is None
