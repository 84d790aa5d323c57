# ------------------------------------
# dispatch_bridge/pipeline/translator.py
# ------------------------------------
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_bridge.config import settings
from dispatch_bridge.db import utcnow
from dispatch_bridge.marketplace.client import PartnerClient, SOURCE_TAG, with_token_retry
from dispatch_bridge.marketplace.errors import ConfigurationError, InvalidOrderError
from dispatch_bridge.marketplace.order_normalizer import NormalizedOrder, normalize_order
from dispatch_bridge.marketplace.partner_models import PartnerEvent
from dispatch_bridge.models import Company, DeliveryJob, DeliveryJobBill, DeliveryJobPlace
from dispatch_bridge.pipeline.geo import estimate_minutes, haversine_km
from dispatch_bridge.repositories.settings import DispatchSettings

logger = logging.getLogger("uvicorn.error")

DEFAULT_CUSTOMER_NAME = "Marketplace customer"

_CENT = Decimal("0.01")


def _money(v: Decimal) -> Decimal:
    return v.quantize(_CENT, rounding=ROUND_HALF_UP)


def _dec(v: float) -> Decimal:
    return Decimal(str(v))


@dataclass(frozen=True)
class PriceBreakdown:
    base_price: Decimal
    price_per_km: Decimal
    distance_price: Decimal
    total: Decimal
    commission_percentage: Decimal
    commission: Decimal
    worker_payout: Decimal


def compute_price(distance_km: float, base_price: float, price_per_km: float, commission_percentage: float) -> PriceBreakdown:
    """
    total = base + distance * per_km; commission = total * pct / 100;
    payout = total - commission. Amounts rounded half-up to cents.
    """
    base = _dec(base_price)
    per_km = _dec(price_per_km)
    pct = _dec(commission_percentage)
    distance_price = _dec(distance_km) * per_km
    total = _money(base + distance_price)
    commission = _money(total * pct / Decimal(100))
    return PriceBreakdown(
        base_price=_money(base),
        price_per_km=_money(per_km),
        distance_price=_money(distance_price),
        total=total,
        commission_percentage=pct,
        commission=commission,
        worker_payout=total - commission,
    )


@dataclass
class TranslatedJob:
    job: DeliveryJob
    place: DeliveryJobPlace
    bill: DeliveryJobBill
    price: PriceBreakdown
    order: NormalizedOrder
    distance_km: float
    estimated_minutes: int
    company_name: str
    company_logo_url: str

    @property
    def job_id(self) -> str:
        return self.job.id


def check_configuration(credential) -> None:
    if not credential.pickup_address or credential.pickup_lat is None or credential.pickup_lng is None:
        raise ConfigurationError(
            f"Pickup address not configured for company {credential.company_id}"
        )
    if not credential.default_category_id:
        raise ConfigurationError(
            f"Default job category not configured for company {credential.company_id}"
        )


class OrderTranslator:
    def __init__(
        self,
        client: PartnerClient,
        *,
        average_speed_kmh: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.average_speed_kmh = average_speed_kmh or settings.AVERAGE_SPEED_KMH
        self._clock = clock

    async def fetch_order(self, credential, order_id: str) -> NormalizedOrder:
        raw = await with_token_retry(lambda: self.client.get_order_details(credential, order_id))
        return normalize_order(raw)

    async def translate(
        self,
        credential,
        event: PartnerEvent,
        session: AsyncSession,
        dispatch_settings: DispatchSettings,
    ) -> TranslatedJob:
        """
        Fetch the order behind an event and stage the job with its place and
        bill rows in `session`. The caller owns the transaction, so the
        three rows commit (or roll back) together.
        """
        check_configuration(credential)

        order = await self.fetch_order(credential, event.order_id)
        addr = order.address
        if addr.latitude is None or addr.longitude is None:
            raise InvalidOrderError(f"Order {event.order_id} has no delivery coordinates")

        pickup_lat = float(credential.pickup_lat)
        pickup_lng = float(credential.pickup_lng)
        distance = haversine_km(pickup_lat, pickup_lng, addr.latitude, addr.longitude)
        minutes = estimate_minutes(distance, self.average_speed_kmh)
        price = compute_price(
            distance,
            dispatch_settings.base_price,
            dispatch_settings.price_per_km,
            dispatch_settings.commission_percentage,
        )
        logger.info("[TRANSLATE] order=%s distance=%.2fkm eta=%dmin total=%s",
                    order.display_id or order.order_id, distance, minutes, price.total)

        company: Optional[Company] = await session.get(Company, credential.company_id)
        display_id = order.display_id or order.order_id
        now = self._clock()
        millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)

        job = DeliveryJob(
            id=uuid.uuid4().hex,
            request_number=f"IFOOD-{display_id}-{millis}",
            company_id=credential.company_id,
            category_id=credential.default_category_id,
            customer_name=order.customer.name or DEFAULT_CUSTOMER_NAME,
            customer_phone=order.customer.phone or "",
            delivery_reference=addr.reference or addr.complement or "",
            notes=f"Order #{display_id}",
            total_distance_km=_money(_dec(distance)),
            estimated_minutes=minutes,
            worker_payout=price.worker_payout,
            external_source=SOURCE_TAG,
            external_order_id=order.order_id or event.order_id,
            external_display_id=order.display_id,
            created_at=now,
        )
        place = DeliveryJobPlace(
            job_id=job.id,
            pick_lat=pickup_lat,
            pick_lng=pickup_lng,
            pick_address=credential.pickup_address,
            drop_lat=addr.latitude,
            drop_lng=addr.longitude,
            drop_address=addr.display(),
        )
        bill = DeliveryJobBill(
            job_id=job.id,
            base_price=price.base_price,
            price_per_km=price.price_per_km,
            distance_price=price.distance_price,
            total_amount=price.total,
            commission=price.commission,
            commission_percentage=price.commission_percentage,
            worker_payout=price.worker_payout,
        )
        session.add(job)
        await session.flush()
        session.add_all([place, bill])
        await session.flush()

        return TranslatedJob(
            job=job,
            place=place,
            bill=bill,
            price=price,
            order=order,
            distance_km=distance,
            estimated_minutes=minutes,
            company_name=(company.name if company else "") or "Company",
            company_logo_url=(company.logo_url if company else "") or "",
        )
