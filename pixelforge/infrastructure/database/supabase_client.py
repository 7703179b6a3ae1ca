from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass

from supabase import Client, create_client

from pixelforge.domain.errors import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Subject:
    id: str
    email: str | None


class SupabaseAuthAdapter:
    """Resolves the subject behind a Supabase access token.

    Token issuance lives elsewhere; this only validates. When
    SUPABASE_DISABLED=1 any non-empty token maps to a stable fake subject.
    """

    def __init__(self) -> None:
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"
        self.url = os.getenv("SUPABASE_URL")
        self.key = os.getenv("SUPABASE_ANON_KEY")
        self._client: Client | None = None
        if not self.disabled and self.url and self.key:
            self._client = create_client(self.url, self.key)

    def validate_token(self, token: str) -> Subject:
        if not token:
            raise AuthenticationError("Missing access token")
        if self.disabled or not self._client:
            # deterministic across processes, unlike hash()
            digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
            return Subject(id=f"fake-{digest}", email=None)
        try:  # pragma: no cover - network path
            res = self._client.auth.get_user(token)
            user = res.user if res else None
        except Exception as exc:  # pragma: no cover - network path
            logger.info("Supabase rejected access token: %s", exc)
            raise AuthenticationError(f"Invalid access token: {exc}") from exc
        if not user:  # pragma: no cover - network path
            raise AuthenticationError("Invalid access token")
        return Subject(id=user.id, email=user.email)  # pragma: no cover - network path


_CLIENT_SINGLETON: Client | None = None


def get_supabase_client() -> Client | None:
    """Shared client for storage and tables, or None in local/disabled mode."""
    global _CLIENT_SINGLETON
    disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_ANON_KEY")
    if disabled or not url or not key:
        return None
    if _CLIENT_SINGLETON is None:
        _CLIENT_SINGLETON = create_client(url, key)
    return _CLIENT_SINGLETON
