"""Bearer credential resolution.

Every failure mode (missing or malformed header, rejected token, transport
error, unknown user) collapses to ``AuthFailure`` so callers never branch on
the reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from inference_gateway.core.errors import AuthFailure

logger = logging.getLogger("igw.identity")


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    email: str | None = None


class IdentityResolver(Protocol):
    async def resolve(self, credential: str) -> UserIdentity:
        """Return the identity bound to *credential* or raise ``AuthFailure``."""


def bearer_credential(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        raise AuthFailure("Missing Authorization header", code="auth_missing")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthFailure("Malformed Authorization header", code="auth_malformed")
    return token


class StaticTokenIdentityResolver:
    """Resolves tokens from a fixed token → user id map."""

    def __init__(self, tokens: dict[str, str]):
        self._tokens = dict(tokens)

    async def resolve(self, credential: str) -> UserIdentity:
        user_id = self._tokens.get(credential)
        if user_id is None:
            raise AuthFailure("Invalid credential")
        return UserIdentity(user_id=user_id)


class SupabaseIdentityResolver:
    """Validates the caller's access token against Supabase Auth."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._timeout = timeout_s
        self._transport = transport

    async def resolve(self, credential: str) -> UserIdentity:
        url = f"{self._base_url}/auth/v1/user"
        headers = {
            "Authorization": f"Bearer {credential}",
            "apikey": self._anon_key,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("identity_resolver_unreachable", extra={"error": str(exc)})
            raise AuthFailure("Identity provider unavailable", code="auth_unavailable") from exc

        if resp.status_code != 200:
            raise AuthFailure("Invalid credential")

        try:
            body = resp.json()
        except ValueError as exc:
            raise AuthFailure("Invalid credential") from exc
        user_id = body.get("id") if isinstance(body, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise AuthFailure("User not found", code="auth_unknown_user")
        email = body.get("email")
        return UserIdentity(user_id=user_id, email=email if isinstance(email, str) else None)
