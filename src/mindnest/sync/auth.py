"""
Bearer token handling for the sync client.

The token lives in an in-memory cache. When the cache is empty the provider
asks the settings store, so a token written by another process (for
example `python -m mindnest link`) is picked up on the next request
without restarting anything.
"""
import logging
from typing import Optional

from mindnest.db.settings_store import SERVER_TOKEN_KEY, SettingsStore


class TokenProvider:
    """
    Usage:
        tokens = TokenProvider(settings_store=store)
        headers = {"Authorization": f"Bearer {tokens.get()}"}
    """

    def __init__(
        self,
        token: str = "",
        settings_store: Optional[SettingsStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._token = token
        self._settings_store = settings_store
        self._logger = logger or logging.getLogger(__name__)

    def get(self) -> str:
        """Return the cached token, refreshing it from the store when empty."""
        if not self._token and self._settings_store is not None:
            try:
                stored = self._settings_store.get_setting(SERVER_TOKEN_KEY)
            except Exception as exc:
                # Falls back to the cached token; the server's 401 is then
                # classified as auth.
                self._logger.warning(
                    "Failed to read token from settings, using cached token: %s", exc
                )
            else:
                if stored:
                    self._token = stored
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = ""
