# dispatch_bridge/repositories/settings.py
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_bridge.config import settings
from dispatch_bridge.models import SystemSettings


@dataclass(frozen=True)
class DispatchSettings:
    search_radius_km: float
    acceptance_timeout_seconds: float
    commission_percentage: float
    base_price: float
    price_per_km: float


def _pick(value, default: float) -> float:
    return float(value) if value is not None else float(default)


async def load_dispatch_settings(session: AsyncSession) -> DispatchSettings:
    """System-wide dispatch settings; env defaults fill anything unset."""
    row = (await session.execute(select(SystemSettings).order_by(SystemSettings.id).limit(1))).scalar_one_or_none()
    return DispatchSettings(
        search_radius_km=_pick(row and row.driver_search_radius, settings.DEFAULT_SEARCH_RADIUS_KM),
        acceptance_timeout_seconds=_pick(row and row.driver_acceptance_timeout, settings.DEFAULT_ACCEPTANCE_TIMEOUT_SECONDS),
        commission_percentage=_pick(row and row.admin_commission_percentage, settings.DEFAULT_COMMISSION_PERCENTAGE),
        base_price=_pick(row and row.base_price, settings.DEFAULT_BASE_PRICE),
        price_per_km=_pick(row and row.price_per_km, settings.DEFAULT_PRICE_PER_KM),
    )
