"""
Who is listening and with which credential. Local mode: one configured user, API key
from settings/env. Constructed explicitly and handed to the orchestrator.
"""
from __future__ import annotations

from listenkit.config import Settings, get_settings


class AuthState:
    def __init__(self, settings: Settings | None = None, user_id: str | None = None, api_key: str | None = None) -> None:
        settings = settings or get_settings()
        self._user_id = user_id if user_id is not None else settings.USER_ID
        self._api_key = api_key if api_key is not None else settings.provider_api_key

    @property
    def user_id(self) -> str | None:
        return self._user_id or None

    @property
    def api_key(self) -> str | None:
        return self._api_key or None

    def login(self, user_id: str) -> None:
        self._user_id = user_id

    def logout(self) -> None:
        self._user_id = None

    def set_api_key(self, api_key: str | None) -> None:
        self._api_key = api_key
