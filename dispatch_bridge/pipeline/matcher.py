# dispatch_bridge/pipeline/matcher.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List

from dispatch_bridge.db import utcnow
from dispatch_bridge.repositories.workers import (
    AllocationRepository,
    NearbyWorker,
    WorkerLocationRepository,
)

logger = logging.getLogger("uvicorn.error")


class GeoMatcher:
    """
    Candidate selection: radius filter first, then allocation precedence.

    - company holds active allocations -> only its allocated workers
    - otherwise -> everyone in range not allocated to another company
    """

    def __init__(
        self,
        locations: WorkerLocationRepository,
        allocations: AllocationRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.locations = locations
        self.allocations = allocations
        self._clock = clock

    async def find_candidates(
        self,
        pickup_lat: float,
        pickup_lng: float,
        radius_km: float,
        company_id: str,
    ) -> List[NearbyWorker]:
        nearby = await self.locations.find_within_radius(pickup_lat, pickup_lng, radius_km)
        if not nearby:
            logger.info("[MATCH] no workers within %.1fkm", radius_km)
            return []

        now = self._clock()
        allocated = await self.allocations.active_worker_ids_for_company(company_id, now)
        if allocated:
            logger.info("[MATCH] company %s has %d allocated worker(s); restricting to them",
                        company_id, len(allocated))
            chosen = [w for w in nearby if w.id in allocated]
        else:
            elsewhere = await self.allocations.allocated_elsewhere([w.id for w in nearby], company_id, now)
            chosen = [w for w in nearby if w.id not in elsewhere]

        logger.info("[MATCH] %d candidate(s) of %d in range", len(chosen), len(nearby))
        return chosen
