"""Admin token login guarding the scheduling endpoints."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from multical.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when a provided admin or session token is rejected."""


class AuthService:
    """Exchanges the admin token for expiring bearer sessions."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, datetime] = {}

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def login(self, provided_admin_token: str, now: Optional[datetime] = None) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        if not secrets.compare_digest(provided_admin_token, self._settings.admin_token):
            raise InvalidAdminTokenError("Invalid admin token")
        issued_at = now or datetime.now(timezone.utc)
        session_token = secrets.token_urlsafe(32)
        self._sessions[session_token] = issued_at + timedelta(
            minutes=self._settings.session_ttl_minutes
        )
        return session_token

    def logout(self, bearer_token: str) -> None:
        self._sessions.pop(bearer_token, None)

    def validate_bearer_token(self, bearer_token: str, now: Optional[datetime] = None) -> None:
        if not self.auth_enabled:
            return
        current_time = now or datetime.now(timezone.utc)
        for token, expires_at in list(self._sessions.items()):
            if expires_at <= current_time:
                del self._sessions[token]
        if not any(secrets.compare_digest(bearer_token, token) for token in self._sessions):
            raise InvalidAdminTokenError("Invalid or expired bearer token. Login first.")
