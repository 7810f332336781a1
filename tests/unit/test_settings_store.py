"""Tests for the persistent settings store."""
import pytest
from sqlmodel import Session, select

from mindnest.db.settings_store import (
    DEVICE_NAME_KEY,
    ENABLED_KEY,
    SERVER_TOKEN_KEY,
    SERVER_URL_KEY,
    ServerSettings,
    SettingsError,
    SettingsStore,
    deobfuscate_token,
    obfuscate_token,
)
from mindnest.models.setting import Setting


@pytest.fixture(name="store")
def store_fixture(engine) -> SettingsStore:
    return SettingsStore(engine)


class TestObfuscation:
    def test_round_trip(self):
        stored = obfuscate_token("secret-token")
        assert stored.startswith("OBFS:")
        assert "secret-token" not in stored
        assert deobfuscate_token(stored) == "secret-token"

    def test_plain_value_passes_through(self):
        assert deobfuscate_token("legacy-plain-token") == "legacy-plain-token"

    def test_corrupt_value_raises(self):
        with pytest.raises(SettingsError):
            deobfuscate_token("OBFS:***not base64***")


class TestSettingsStore:
    def test_missing_key_is_empty(self, store):
        assert store.get_setting("sync.server_url") == ""

    def test_set_then_get(self, store):
        store.set_setting(SERVER_URL_KEY, "https://mindnest.example.com")
        store.set_setting(SERVER_URL_KEY, "https://other.example.com")
        assert store.get_setting(SERVER_URL_KEY) == "https://other.example.com"

    def test_token_is_stored_obfuscated(self, store, engine):
        store.set_setting(SERVER_TOKEN_KEY, "abc123")
        with Session(engine) as s:
            raw = s.exec(select(Setting).where(Setting.key == SERVER_TOKEN_KEY)).one().value
        assert raw != "abc123"
        assert raw.startswith("OBFS:")
        assert store.get_setting(SERVER_TOKEN_KEY) == "abc123"

    def test_delete(self, store):
        store.set_setting(DEVICE_NAME_KEY, "laptop")
        store.delete_setting(DEVICE_NAME_KEY)
        assert store.get_setting(DEVICE_NAME_KEY) == ""

    def test_get_settings_by_prefix_skips_corrupt_token(self, store, engine):
        store.set_setting(SERVER_URL_KEY, "https://x")
        store.set_setting("ui.theme", "dark")
        with Session(engine) as s:
            s.add(Setting(key=SERVER_TOKEN_KEY, value="OBFS:%%%"))
            s.commit()
        assert store.get_settings("sync.") == {SERVER_URL_KEY: "https://x"}

    def test_load_overlays_defaults(self, store):
        store.set_setting(SERVER_TOKEN_KEY, "tok")
        store.set_setting(ENABLED_KEY, "false")
        loaded = store.load_sync_settings(
            ServerSettings(url="http://default", token="", device_name="dev", enabled=True)
        )
        assert loaded == ServerSettings(
            url="http://default", token="tok", device_name="dev", enabled=False
        )

    def test_save_and_load(self, store):
        store.save_sync_settings(
            ServerSettings(url="https://s", token="t0k", device_name="box", enabled=True)
        )
        loaded = store.load_sync_settings()
        assert loaded.is_complete
        assert loaded.token == "t0k"
        assert loaded.device_name == "box"


class TestServerSettings:
    def test_incomplete_without_token(self):
        assert not ServerSettings(url="https://s", enabled=True).is_complete

    def test_incomplete_when_disabled(self):
        assert not ServerSettings(url="https://s", token="t", enabled=False).is_complete
