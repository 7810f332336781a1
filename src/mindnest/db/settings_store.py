"""
Persistent key/value settings.

Sync configuration lives here rather than in the environment so that
`python -m mindnest link` can rotate the token while other processes keep
running; the sync client re-reads the token whenever its cache is empty.

Token values are stored obfuscated:

    "OBFS:" + base64(reversed(token))

This only keeps the token from being readable at a glance in a DB dump.
It is not encryption.
"""
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlmodel import Session, select

from mindnest.db.retry import with_lock_retry
from mindnest.models.common import utcnow
from mindnest.models.setting import Setting


# ── Keys ──────────────────────────────────────────────────────────────────────

SERVER_URL_KEY = "sync.server_url"
SERVER_TOKEN_KEY = "sync.server_token"
DEVICE_NAME_KEY = "sync.device_name"
ENABLED_KEY = "sync.enabled"

_OBFUSCATION_MARKER = "OBFS:"


class SettingsError(RuntimeError):
    """Raised when a stored setting cannot be decoded."""


def obfuscate_token(token: str) -> str:
    encoded = base64.b64encode(token[::-1].encode("utf-8")).decode("ascii")
    return _OBFUSCATION_MARKER + encoded


def deobfuscate_token(stored: str) -> str:
    """Reverse obfuscate_token(). Values without the marker are returned as-is."""
    if not stored.startswith(_OBFUSCATION_MARKER):
        return stored
    try:
        decoded = base64.b64decode(stored[len(_OBFUSCATION_MARKER):], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SettingsError(f"decoding obfuscated token: {exc}") from exc
    return decoded.decode("utf-8")[::-1]


@dataclass
class ServerSettings:
    """The four sync settings, as loaded from / saved to the store."""

    url: str = ""
    token: str = ""
    device_name: str = ""
    enabled: bool = False

    @property
    def is_complete(self) -> bool:
        return self.enabled and bool(self.url) and bool(self.token)


class SettingsStore:
    """Settings table accessor. Every call opens its own short session."""

    def __init__(
        self,
        engine,
        logger: Optional[logging.Logger] = None,
        *,
        lock_retries: int = 5,
        lock_backoff_seconds: float = 0.05,
    ):
        self.engine = engine
        self._logger = logger or logging.getLogger(__name__)
        self._lock_retries = lock_retries
        self._lock_backoff = lock_backoff_seconds

    def _retry(self, fn):
        return with_lock_retry(
            fn, attempts=self._lock_retries, backoff_seconds=self._lock_backoff
        )

    # ── Single keys ───────────────────────────────────────────────────────────

    def get_setting(self, key: str) -> str:
        """Return the value for key, or "" when the key was never set."""

        def _get() -> Optional[str]:
            with Session(self.engine) as s:
                row = s.exec(select(Setting).where(Setting.key == key)).first()
                return row.value if row else None

        value = self._retry(_get)
        if not value:
            return ""
        if key == SERVER_TOKEN_KEY:
            return deobfuscate_token(value)
        return value

    def set_setting(self, key: str, value: str) -> None:
        stored = value
        if key == SERVER_TOKEN_KEY and value:
            stored = obfuscate_token(value)

        def _set() -> None:
            now = utcnow()
            with Session(self.engine) as s:
                row = s.exec(select(Setting).where(Setting.key == key)).first()
                if row is None:
                    row = Setting(key=key, value=stored, created_at=now, updated_at=now)
                else:
                    row.value = stored
                    row.updated_at = now
                s.add(row)
                s.commit()

        self._retry(_set)

    def delete_setting(self, key: str) -> None:
        def _delete() -> None:
            with Session(self.engine) as s:
                row = s.exec(select(Setting).where(Setting.key == key)).first()
                if row is not None:
                    s.delete(row)
                    s.commit()

        self._retry(_delete)

    def get_settings(self, prefix: str) -> Dict[str, str]:
        """Return every setting whose key starts with prefix.

        A token that fails to decode is skipped (and logged) so the other
        settings are still returned.
        """

        def _list():
            with Session(self.engine) as s:
                rows = s.exec(
                    select(Setting).where(Setting.key.startswith(prefix))
                ).all()
                return [(r.key, r.value or "") for r in rows]

        settings: Dict[str, str] = {}
        for key, value in self._retry(_list):
            if key == SERVER_TOKEN_KEY and value:
                try:
                    value = deobfuscate_token(value)
                except SettingsError as exc:
                    self._logger.warning("Failed to decode stored token: %s", exc)
                    continue
            settings[key] = value
        return settings

    # ── Sync settings bundle ──────────────────────────────────────────────────

    def load_sync_settings(self, defaults: Optional[ServerSettings] = None) -> ServerSettings:
        """Overlay stored sync settings on defaults (empty values don't override)."""
        result = ServerSettings(**vars(defaults)) if defaults else ServerSettings()
        stored = self.get_settings("sync.")

        if stored.get(SERVER_URL_KEY):
            result.url = stored[SERVER_URL_KEY]
        if stored.get(SERVER_TOKEN_KEY):
            result.token = stored[SERVER_TOKEN_KEY]
        if stored.get(DEVICE_NAME_KEY):
            result.device_name = stored[DEVICE_NAME_KEY]
        if stored.get(ENABLED_KEY):
            result.enabled = stored[ENABLED_KEY] == "true"
        return result

    def save_sync_settings(self, server: ServerSettings) -> None:
        self.set_setting(SERVER_URL_KEY, server.url)
        self.set_setting(SERVER_TOKEN_KEY, server.token)
        self.set_setting(DEVICE_NAME_KEY, server.device_name)
        self.set_setting(ENABLED_KEY, "true" if server.enabled else "false")
