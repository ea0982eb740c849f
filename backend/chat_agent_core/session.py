from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class AuthError(Exception):
    pass


@dataclass(frozen=True)
class Principal:
    subject: str
    email: str | None = None


class SessionValidator(Protocol):
    async def validate(self, access_token: str) -> Principal: ...


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing or malformed authorization header")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthError("Missing or malformed authorization header")
    return token


class SupabaseSessionValidator:
    """Resolves an access token through Supabase Auth's ``/auth/v1/user`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        anon_key: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def validate(self, access_token: str) -> Principal:
        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {access_token}"}
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds, connect=5.0),
                transport=self._transport,
            ) as client:
                response = await client.get(f"{self.base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Session validation request failed: %s", exc)
            raise AuthError("Invalid or expired session") from exc
        if response.status_code != 200:
            raise AuthError("Invalid or expired session")
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Invalid or expired session") from exc
        subject = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(subject, str) or not subject:
            raise AuthError("Invalid or expired session")
        email = payload.get("email")
        return Principal(subject=subject, email=email if isinstance(email, str) else None)


class StaticTokenValidator:
    """Fixed token table for local development, parsed from ``token:subject,token:subject``."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    @classmethod
    def from_string(cls, raw: str) -> "StaticTokenValidator":
        tokens: dict[str, str] = {}
        for entry in raw.split(","):
            token, _, subject = entry.strip().partition(":")
            if token and subject:
                tokens[token] = subject
        return cls(tokens)

    async def validate(self, access_token: str) -> Principal:
        for token, subject in self._tokens.items():
            if hmac.compare_digest(token.encode("utf-8"), access_token.encode("utf-8")):
                return Principal(subject=subject)
        raise AuthError("Invalid or expired session")


class RejectAllValidator:
    async def validate(self, access_token: str) -> Principal:
        raise AuthError("Session validation is not configured")
