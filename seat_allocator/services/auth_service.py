"""Admin token authentication and actor attribution for the HTTP layer."""

from __future__ import annotations

import secrets
from threading import Lock
from typing import Optional

from seat_allocator.utils.config import Settings, get_settings
from seat_allocator.utils.logger import get_logger


logger = get_logger(__name__)


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when a provided token or session is invalid."""


class AuthService:
    """Exchanges the admin token for session tokens bound to an actor name.

    The actor name is what history entries record for mutations made through
    that session. With no ADMIN_TOKEN configured, auth is disabled and every
    request acts as the configured system actor.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, str] = {}
        self._lock = Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str, actor: Optional[str] = None) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        resolved_actor = (actor or "").strip() or "admin"
        with self._lock:
            self._sessions[session_token] = resolved_actor
        logger.info("Admin session opened | actor=%s", resolved_actor)
        return session_token

    def logout(self, bearer_token: str) -> bool:
        with self._lock:
            return self._sessions.pop(bearer_token, None) is not None

    def resolve_actor(self, bearer_token: Optional[str]) -> str:
        """Validate a bearer token and return the actor it was issued to."""
        if not self.auth_enabled:
            return self._settings.system_actor
        if not bearer_token:
            raise InvalidAdminTokenError("No active session. Login first.")
        with self._lock:
            for session_token, actor in self._sessions.items():
                if secrets.compare_digest(bearer_token, session_token):
                    return actor
        raise InvalidAdminTokenError("Invalid bearer token")
