"""Per-user usage ledger.

The gateway reads one ``Profile`` snapshot per request and asks for at most one
increment once upstream has accepted the call. Concurrency control belongs to
the ledger: the in-process ledger guards its state with a ``threading.Lock``,
the Supabase ledger delegates to the ``increment_usage`` stored procedure.
Increments are at-least-once; no cross-request locking is attempted here.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

import httpx

from inference_gateway.identity.resolver import UserIdentity


class ProfileNotFoundError(Exception):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No profile for user {user_id}")


class LedgerBackendError(Exception):
    """Raised when the ledger cannot be read or written."""


@dataclass(frozen=True)
class Profile:
    usage_count: int
    usage_limit: int

    @property
    def exhausted(self) -> bool:
        return self.usage_count >= self.usage_limit


class QuotaLedger(Protocol):
    async def read_profile(self, identity: UserIdentity) -> Profile:
        """Return a usage snapshot or raise ``ProfileNotFoundError``."""

    async def increment_usage(self, identity: UserIdentity) -> None:
        """Add one to the usage count or raise ``LedgerBackendError``."""


class InMemoryQuotaLedger:
    """In-process ledger.

    Parameters
    ----------
    default_limit : int, optional
        Limit given to users seen for the first time. ``None`` makes unseen
        users a ``ProfileNotFoundError``.
    profiles : dict, optional
        Seed ``user_id -> (usage_count, usage_limit)``.
    """

    def __init__(
        self,
        default_limit: int | None = None,
        profiles: dict[str, tuple[int, int]] | None = None,
    ) -> None:
        self._default_limit = default_limit
        self._profiles: dict[str, Profile] = {}
        self._lock = threading.Lock()
        for user_id, (count, limit) in (profiles or {}).items():
            self.set_profile(user_id, count, limit)

    def _get_or_create(self, user_id: str) -> Profile:
        profile = self._profiles.get(user_id)
        if profile is None:
            if self._default_limit is None:
                raise ProfileNotFoundError(user_id)
            profile = Profile(usage_count=0, usage_limit=self._default_limit)
            self._profiles[user_id] = profile
        return profile

    async def read_profile(self, identity: UserIdentity) -> Profile:
        with self._lock:
            return self._get_or_create(identity.user_id)

    async def increment_usage(self, identity: UserIdentity) -> None:
        with self._lock:
            try:
                profile = self._get_or_create(identity.user_id)
            except ProfileNotFoundError as exc:
                raise LedgerBackendError(str(exc)) from exc
            self._profiles[identity.user_id] = Profile(
                usage_count=profile.usage_count + 1,
                usage_limit=profile.usage_limit,
            )

    def set_profile(self, user_id: str, usage_count: int, usage_limit: int) -> None:
        with self._lock:
            self._profiles[user_id] = Profile(usage_count=usage_count, usage_limit=usage_limit)


class SupabaseQuotaLedger:
    """Ledger backed by the ``profiles`` table through PostgREST."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        timeout_s: float = 5.0,
        table: str = "profiles",
        increment_rpc: str = "increment_usage",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout = timeout_s
        self._table = table
        self._increment_rpc = increment_rpc
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
            "Content-Type": "application/json",
        }

    async def read_profile(self, identity: UserIdentity) -> Profile:
        url = f"{self._base_url}/rest/v1/{self._table}"
        params = {"id": f"eq.{identity.user_id}", "select": "usage_count,usage_limit"}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            raise LedgerBackendError(f"Profile read failed: {exc}") from exc

        if resp.status_code >= 400:
            raise LedgerBackendError(f"Profile read returned {resp.status_code}")
        try:
            rows = resp.json()
        except ValueError as exc:
            raise LedgerBackendError("Profile read returned invalid JSON") from exc
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            raise ProfileNotFoundError(identity.user_id)

        row = rows[0]
        try:
            return Profile(
                usage_count=int(row.get("usage_count") or 0),
                usage_limit=int(row.get("usage_limit") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise LedgerBackendError("Profile row has non-integer usage fields") from exc

    async def increment_usage(self, identity: UserIdentity) -> None:
        url = f"{self._base_url}/rest/v1/rpc/{self._increment_rpc}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    url, json={"user_id": identity.user_id}, headers=self._headers()
                )
        except httpx.HTTPError as exc:
            raise LedgerBackendError(f"Usage increment failed: {exc}") from exc
        if resp.status_code >= 400:
            raise LedgerBackendError(f"Usage increment returned {resp.status_code}")
