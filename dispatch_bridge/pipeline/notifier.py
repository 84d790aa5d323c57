#=================================================================
# dispatch_bridge/pipeline/notifier.py
# Offer rows plus one push fan-out per job.
#=================================================================
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.config import settings
from dispatch_bridge.db import utcnow
from dispatch_bridge.marketplace.client import SOURCE_TAG
from dispatch_bridge.models import NotificationOffer
from dispatch_bridge.models.offers import OFFER_NOTIFIED
from dispatch_bridge.pipeline.translator import TranslatedJob
from dispatch_bridge.repositories.workers import NearbyWorker

logger = logging.getLogger("uvicorn.error")

NEW_DELIVERY_TITLE = "New delivery order"


class PushError(Exception):
    pass


class PushSender(Protocol):
    async def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> None:
        ...


class HttpPushSender:
    """Hands the fan-out to an HTTP push gateway (multicast endpoint)."""

    def __init__(self, url: str, api_key: str = "", *, timeout: float = 10.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> None:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {"tokens": tokens, "notification": {"title": title, "body": body}, "data": data}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PushError(f"push gateway unreachable: {e}") from e
        if resp.status_code >= 400:
            raise PushError(f"push gateway answered {resp.status_code}: {resp.text[:300]}")


class LoggingPushSender:
    """Used when no gateway is configured."""

    async def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> None:
        logger.info("[DISPATCH] push (not sent, no gateway) to %d device(s): %s | %s", len(tokens), title, body)


def default_push_sender() -> PushSender:
    if settings.PUSH_GATEWAY_URL:
        return HttpPushSender(settings.PUSH_GATEWAY_URL, settings.PUSH_GATEWAY_KEY)
    return LoggingPushSender()


@dataclass
class DispatchResult:
    offers_created: int = 0
    tokens_notified: int = 0
    expires_at: datetime | None = None
    worker_ids: List[str] = field(default_factory=list)


def build_push_data(translated: TranslatedJob, acceptance_timeout_seconds: float, expires_at: datetime) -> Dict[str, str]:
    """Push data values must all be strings."""
    job = translated.job
    price = translated.price
    data: Dict[str, Any] = {
        "type": "new_delivery_request",
        "deliveryId": job.id,
        "requestId": job.id,
        "requestNumber": job.request_number,
        "companyName": translated.company_name,
        "companyLogoUrl": translated.company_logo_url,
        "pickupAddress": translated.place.pick_address,
        "dropoffAddress": translated.place.drop_address,
        "totalDistance": f"{translated.distance_km:.1f}",
        "totalTime": str(translated.estimated_minutes),
        "totalAmount": str(price.total),
        "commission": str(price.commission),
        "driverAmount": str(price.worker_payout),
        "commissionPercentage": str(price.commission_percentage),
        "acceptanceTimeout": str(int(acceptance_timeout_seconds)),
        "expiresAt": expires_at.isoformat() + "Z",
        "source": SOURCE_TAG,
        "externalDisplayId": job.external_display_id or "",
    }
    return {k: "" if v is None else str(v) for k, v in data.items()}


class DispatchNotifier:
    def __init__(
        self,
        sm: async_sessionmaker[AsyncSession],
        sender: PushSender | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sm = sm
        self.sender = sender or default_push_sender()
        self._clock = clock

    async def dispatch(
        self,
        translated: TranslatedJob,
        candidates: List[NearbyWorker],
        acceptance_timeout_seconds: float,
    ) -> DispatchResult:
        """
        One `notified` offer per candidate, all stamped with the same expiry,
        then a single push to every candidate device. Choosing the winner is
        the acceptance endpoint's job.
        """
        if not candidates:
            return DispatchResult()

        now = self._clock()
        expires_at = now + timedelta(seconds=acceptance_timeout_seconds)
        job_id = translated.job.id

        async with self.sm.begin() as session:
            session.add_all([
                NotificationOffer(
                    job_id=job_id,
                    worker_id=c.id,
                    status=OFFER_NOTIFIED,
                    notified_at=now,
                    expires_at=expires_at,
                )
                for c in candidates
            ])

        tokens: List[str] = []
        for c in candidates:
            if c.push_token and c.push_token not in tokens:
                tokens.append(c.push_token)

        result = DispatchResult(
            offers_created=len(candidates),
            expires_at=expires_at,
            worker_ids=[c.id for c in candidates],
        )
        if tokens:
            body = f"{translated.company_name} - {translated.distance_km:.1f}km"
            await self.sender.send(
                tokens,
                NEW_DELIVERY_TITLE,
                body,
                build_push_data(translated, acceptance_timeout_seconds, expires_at),
            )
            result.tokens_notified = len(tokens)
            logger.info("[DISPATCH] job=%s pushed to %d device(s); offers expire %s", job_id, len(tokens), expires_at)
        return result
