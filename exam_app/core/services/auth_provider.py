"""Token-based stand-in for the external authentication provider."""

from __future__ import annotations

import secrets
from threading import Lock


class TokenAuthProvider:
    """Issues opaque session tokens and maps them back to stable user ids."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: dict[str, str] = {}

    def sign_in(self, user_id: str) -> str:
        token = secrets.token_urlsafe(24)
        with self._lock:
            self._sessions[token] = user_id
        return token

    def sign_out(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def current_principal(self, token: str | None) -> str | None:
        """Return the user id bound to ``token`` or None when there is no session."""
        if not token:
            return None
        with self._lock:
            return self._sessions.get(token)
