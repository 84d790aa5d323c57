# ---------------------------------------
# dispatch_bridge/marketplace/tokens.py
# ---------------------------------------
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from dispatch_bridge.config import settings
from dispatch_bridge.marketplace.errors import AuthError, TransientNetworkError
from dispatch_bridge.marketplace.partner_models import AuthResponse

logger = logging.getLogger("uvicorn.error")

AUTH_PATH = "/authentication/v1.0/oauth/token"


@dataclass
class CachedToken:
    token: str
    expires_at: float  # clock() seconds


class TokenStore:
    """
    Bearer tokens keyed by credential id. Only mutated through set/clear;
    all access happens on the event loop thread.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, CachedToken] = {}

    def get(self, credential_id: str) -> Optional[CachedToken]:
        return self._entries.get(credential_id)

    def set(self, credential_id: str, entry: CachedToken) -> None:
        self._entries[credential_id] = entry

    def clear(self, credential_id: str) -> None:
        self._entries.pop(credential_id, None)

    def clear_all(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class TokenManager:
    """
    Client-credentials exchange against the marketplace OAuth endpoint,
    cached per credential until ttl - safety margin.
    """

    def __init__(
        self,
        store: TokenStore | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        safety_margin: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else TokenStore()
        self.base_url = (base_url or settings.PARTNER_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PARTNER_HTTP_TIMEOUT
        self.safety_margin = safety_margin if safety_margin is not None else settings.TOKEN_SAFETY_MARGIN_SECONDS
        self._transport = transport
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            verify=settings.PARTNER_VERIFY_TLS,
            transport=self._transport,
        )

    async def authenticate(self, credential) -> str:
        """POST the client-credentials form; cache and return the access token."""
        logger.info("[PARTNER] authenticating merchant=%s", credential.merchant_id)
        form = {
            "grantType": "client_credentials",
            "clientId": credential.client_id,
            "clientSecret": credential.client_secret,
        }
        try:
            async with self._client() as client:
                resp = await client.post(AUTH_PATH, data=form)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Authentication timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Authentication connection failed: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            body = resp.text
            logger.error("[PARTNER] authentication failed (%s): %s", resp.status_code, body[:500])
            raise AuthError(f"Authentication failed: {resp.status_code}", status_code=resp.status_code, body=body)

        try:
            data = AuthResponse.model_validate(resp.json())
        except ValueError as e:
            raise AuthError(f"Malformed authentication response: {e}", status_code=resp.status_code, body=resp.text) from e

        expires_at = self._clock() + data.expires_in - self.safety_margin
        self.store.set(credential.id, CachedToken(token=data.access_token, expires_at=expires_at))
        logger.info("[PARTNER] authenticated merchant=%s; token expires in %ss", credential.merchant_id, data.expires_in)
        return data.access_token

    async def get_valid_token(self, credential) -> str:
        cached = self.store.get(credential.id)
        if cached and self._clock() < cached.expires_at:
            return cached.token

        lock = self._locks.setdefault(credential.id, asyncio.Lock())
        async with lock:
            # Another caller may have refreshed while we waited
            cached = self.store.get(credential.id)
            if cached and self._clock() < cached.expires_at:
                return cached.token
            return await self.authenticate(credential)

    def clear_token(self, credential_id: str) -> None:
        self.store.clear(credential_id)

    def clear_all(self) -> None:
        self.store.clear_all()
