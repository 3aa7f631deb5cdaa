"""
Identity provider integration — Supabase Auth.

Resolves a bearer access token to the principal it was issued to. The
service never sees passwords or issues tokens; sign-in happens against the
identity provider directly.
"""

from __future__ import annotations

import logging

import httpx

from rpfaas_review.workflow.schema import Principal

logger = logging.getLogger(__name__)


class SupabaseIdentityProvider:
    """
    Async Supabase Auth client.

    Uses httpx for async HTTP. One client is shared across requests and
    closed on shutdown.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"apikey": anon_key}
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_principal(self, access_token: str) -> Principal | None:
        """
        Return the principal for ``access_token``, or None if the token is
        missing, expired, revoked or the provider cannot be reached.
        """
        if not access_token:
            return None

        client = await self._ensure_client()
        try:
            resp = await client.get(
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Identity provider unreachable: %s", exc)
            return None

        if resp.status_code in (401, 403):
            return None
        if resp.status_code != 200:
            logger.warning("Identity provider returned %d", resp.status_code)
            return None

        data = resp.json()
        user_id = data.get("id")
        if not user_id:
            return None
        return Principal(id=user_id, email=data.get("email"))
