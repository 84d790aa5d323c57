# dispatch_bridge/repositories/workers.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Set

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.models import Allocation, DeliveryJob, Worker
from dispatch_bridge.models.workers import ACTIVE_ALLOCATION_STATUSES
from dispatch_bridge.pipeline.geo import bounding_box, haversine_km

logger = logging.getLogger("uvicorn.error")


@dataclass
class NearbyWorker:
    id: str
    name: str
    push_token: str
    latitude: float
    longitude: float
    distance_km: float


class WorkerLocationRepository:
    """
    Workers that can take a job right now, near a point. The bounding box
    runs in SQL; exact haversine distance and the radius cut run here.
    """

    def __init__(self, sm: async_sessionmaker[AsyncSession]):
        self.sm = sm

    async def find_within_radius(self, lat: float, lng: float, radius_km: float) -> List[NearbyWorker]:
        box = bounding_box(lat, lng, radius_km)
        busy = exists().where(
            DeliveryJob.driver_id == Worker.id,
            DeliveryJob.completed_at.is_(None),
            DeliveryJob.cancelled_at.is_(None),
        )
        stmt = select(Worker).where(
            Worker.active.is_(True),
            Worker.approved.is_(True),
            Worker.available.is_(True),
            or_(Worker.deliveries_blocked.is_(False), Worker.deliveries_blocked.is_(None)),
            Worker.push_token.is_not(None),
            Worker.push_token != "",
            Worker.latitude.is_not(None),
            Worker.longitude.is_not(None),
            Worker.latitude.between(box.min_lat, box.max_lat),
            ~busy,
        )
        if box.min_lng is not None:
            stmt = stmt.where(Worker.longitude.between(box.min_lng, box.max_lng))

        async with self.sm() as session:
            rows = list((await session.execute(stmt)).scalars())

        out: List[NearbyWorker] = []
        for w in rows:
            d = haversine_km(lat, lng, w.latitude, w.longitude)
            if d <= radius_km:
                out.append(NearbyWorker(w.id, w.name, w.push_token, w.latitude, w.longitude, d))
        out.sort(key=lambda n: (n.distance_km, n.id))
        return out


class AllocationRepository:
    def __init__(self, sm: async_sessionmaker[AsyncSession]):
        self.sm = sm

    @staticmethod
    def _active(now: datetime):
        return and_(
            Allocation.status.in_(ACTIVE_ALLOCATION_STATUSES),
            Allocation.worker_id.is_not(None),
            Allocation.starts_at <= now,
            Allocation.ends_at > now,
        )

    async def active_worker_ids_for_company(self, company_id: str, now: datetime) -> Set[str]:
        async with self.sm() as session:
            rows = await session.execute(
                select(Allocation.worker_id).where(Allocation.company_id == company_id, self._active(now))
            )
            return {wid for wid in rows.scalars() if wid}

    async def allocated_elsewhere(self, worker_ids: Iterable[str], company_id: str, now: datetime) -> Set[str]:
        """Subset of worker_ids holding an active allocation for any other company."""
        ids = list(worker_ids)
        if not ids:
            return set()
        async with self.sm() as session:
            rows = await session.execute(
                select(Allocation.worker_id).where(
                    Allocation.worker_id.in_(ids),
                    Allocation.company_id != company_id,
                    self._active(now),
                )
            )
            return {wid for wid in rows.scalars() if wid}
