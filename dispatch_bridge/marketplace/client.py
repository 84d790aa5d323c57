#===========================================================================
# dispatch_bridge/marketplace/client.py
# Marketplace merchant API interface module.
# Event polling, acknowledgment, order detail and logistics status calls.
#===========================================================================
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, TypeVar

import httpx

from dispatch_bridge.config import settings
from dispatch_bridge.marketplace.errors import (
    ApiRequestError,
    TokenExpiredError,
    TransientNetworkError,
)
from dispatch_bridge.marketplace.partner_models import PartnerEvent
from dispatch_bridge.marketplace.tokens import TokenManager

logger = logging.getLogger("uvicorn.error")

SOURCE_TAG = "ifood"

POLLING_PATH = "/events/v1.0/events:polling"
ACK_PATH = "/events/v1.0/events/acknowledgment"
ORDER_PATH = "/order/v1.0/orders/{order_id}"
LOGISTICS_PATH = "/logistics/v1.0/orders/{order_id}/{action}"

T = TypeVar("T")


def _ok(resp: httpx.Response) -> bool:
    return 200 <= resp.status_code < 300


async def with_token_retry(call: Callable[[], Awaitable[T]]) -> T:
    """Run a resource call; after a 401 (token already dropped) try once more."""
    try:
        return await call()
    except TokenExpiredError:
        logger.info("[PARTNER] token rejected; re-authenticating once")
        return await call()


class PartnerClient:
    def __init__(
        self,
        tokens: TokenManager,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.tokens = tokens
        self.base_url = (base_url or settings.PARTNER_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PARTNER_HTTP_TIMEOUT
        self._transport = transport

    async def _send(self, credential, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self.tokens.get_valid_token(credential)
        headers = {"Authorization": f"Bearer {token}", **(kwargs.pop("headers", None) or {})}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                verify=settings.PARTNER_VERIFY_TLS,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {path} connection failed: {e}") from e

        if resp.status_code == 401:
            self.tokens.clear_token(credential.id)
            raise TokenExpiredError("Token rejected, re-authenticate", status_code=401, body=resp.text)
        return resp

    # ---- Events ----

    async def poll_events(self, credential, types: Iterable[str] | None = None) -> List[PartnerEvent]:
        """
        GET the polling endpoint for this merchant. 204 means no events.
        """
        params: Dict[str, str] = {}
        types = [t for t in (types or []) if t]
        if types:
            params["types"] = ",".join(types)
        # Required for logistics integrators
        params["excludeHeartbeat"] = "true"

        resp = await self._send(
            credential, "GET", POLLING_PATH,
            params=params,
            headers={"x-polling-merchants": credential.merchant_id},
        )
        if resp.status_code == 204:
            return []
        if not _ok(resp):
            logger.error("[PARTNER] polling failed (%s): %s", resp.status_code, resp.text[:500])
            raise ApiRequestError(f"Polling failed: {resp.status_code}", status_code=resp.status_code, body=resp.text)

        data = resp.json() if resp.content else []
        if not isinstance(data, list):
            raise ApiRequestError(f"Unexpected polling response: {data!r}", status_code=resp.status_code)
        return [PartnerEvent.model_validate(row) for row in data]

    async def acknowledge_events(self, credential, event_ids: List[str]) -> None:
        if not event_ids:
            return
        body = [{"id": eid} for eid in event_ids]
        resp = await self._send(credential, "POST", ACK_PATH, json=body)
        if not _ok(resp):
            raise ApiRequestError(f"Acknowledgment failed: {resp.status_code}", status_code=resp.status_code, body=resp.text)
        logger.info("[PARTNER] acknowledged %d event(s) merchant=%s", len(event_ids), credential.merchant_id)

    # ---- Orders ----

    async def get_order_details(self, credential, order_id: str) -> Dict[str, Any]:
        resp = await self._send(credential, "GET", ORDER_PATH.format(order_id=order_id))
        if resp.status_code == 404:
            raise ApiRequestError(f"Order {order_id} not found", status_code=404, body=resp.text)
        if not _ok(resp):
            logger.error("[PARTNER] order fetch failed (%s): %s", resp.status_code, resp.text[:500])
            raise ApiRequestError(f"Order fetch failed: {resp.status_code}", status_code=resp.status_code, body=resp.text)
        data = resp.json()
        if not isinstance(data, dict):
            raise ApiRequestError(f"Unexpected order response for {order_id}", status_code=resp.status_code)
        return data

    # ---- Logistics status updates ----

    async def _logistics(self, credential, order_id: str, action: str, payload: Dict[str, Any] | None = None) -> None:
        path = LOGISTICS_PATH.format(order_id=order_id, action=action)
        resp = await self._send(credential, "POST", path, json=payload)
        if not _ok(resp):
            raise ApiRequestError(f"{action} failed for order {order_id}: {resp.status_code}",
                                  status_code=resp.status_code, body=resp.text)
        logger.info("[PARTNER] %s sent for order %s", action, order_id)

    async def assign_driver(self, credential, order_id: str) -> None:
        await self._logistics(credential, order_id, "assign")

    async def going_to_origin(self, credential, order_id: str) -> None:
        await self._logistics(credential, order_id, "requestDriver")

    async def arrived_at_origin(self, credential, order_id: str) -> None:
        await self._logistics(credential, order_id, "arrivedAtOrigin")

    async def dispatch(self, credential, order_id: str) -> None:
        await self._logistics(credential, order_id, "dispatch")

    async def arrived_at_destination(self, credential, order_id: str) -> None:
        await self._logistics(credential, order_id, "arrivedAtDestination")

    async def confirm_delivery(self, credential, order_id: str) -> None:
        await self._logistics(credential, order_id, "delivery")

    async def verify_delivery_code(self, credential, order_id: str, code: str) -> None:
        await self._logistics(credential, order_id, "verifyDeliveryCode", {"code": code})
