# tests/test_matcher.py
import asyncio
from datetime import timedelta

from dispatch_bridge.db import utcnow
from dispatch_bridge.models import Allocation
from dispatch_bridge.pipeline.matcher import GeoMatcher
from dispatch_bridge.repositories.workers import AllocationRepository, WorkerLocationRepository
from tests.helpers import (
    PICKUP_LAT,
    PICKUP_LNG,
    memory_db,
    seed,
    seed_allocation,
    seed_busy_job,
    seed_worker,
)


def _candidates(setup, company_id="company-1", radius_km=10):
    async def run():
        async with memory_db() as sm:
            await setup(sm)
            matcher = GeoMatcher(WorkerLocationRepository(sm), AllocationRepository(sm))
            found = await matcher.find_candidates(PICKUP_LAT, PICKUP_LNG, radius_km, company_id)
            return [w.id for w in found], found

    return asyncio.run(run())


def test_radius_filter_and_distance_order():
    async def setup(sm):
        await seed_worker(sm, "w-far", 10.1)
        await seed_worker(sm, "w-9", 9.9)
        await seed_worker(sm, "w-5", 5)
        await seed_worker(sm, "w-2", 2)

    ids, found = _candidates(setup)
    assert ids == ["w-2", "w-5", "w-9"]
    assert found[0].distance_km < found[1].distance_km < found[2].distance_km


def test_ineligible_workers_are_excluded():
    async def setup(sm):
        await seed_worker(sm, "ok", 1)
        await seed_worker(sm, "offline", 1, available=False)
        await seed_worker(sm, "unapproved", 1, approved=False)
        await seed_worker(sm, "inactive", 1, active=False)
        await seed_worker(sm, "blocked", 1, deliveries_blocked=True)
        await seed_worker(sm, "no-token", 1, push_token=None)
        await seed_worker(sm, "no-location", 1, latitude=None, longitude=None)
        await seed_worker(sm, "empty-token", 1, push_token="")

    ids, _ = _candidates(setup)
    assert ids == ["ok"]


def test_worker_mid_delivery_is_excluded():
    async def setup(sm):
        await seed_worker(sm, "busy", 1)
        await seed_worker(sm, "free", 3)
        await seed_busy_job(sm, "busy")

    ids, _ = _candidates(setup)
    assert ids == ["free"]


def test_company_allocations_restrict_candidates():
    async def setup(sm):
        await seed_worker(sm, "w1", 1)
        await seed_worker(sm, "w2", 2)
        await seed_worker(sm, "w3", 3)
        await seed_allocation(sm, "w2", "company-1")

    ids, _ = _candidates(setup)
    assert ids == ["w2"]


def test_allocated_elsewhere_is_excluded_without_own_allocations():
    async def setup(sm):
        await seed_worker(sm, "w1", 1)
        await seed_worker(sm, "w2", 2)
        await seed_allocation(sm, "w1", "company-2")

    ids, _ = _candidates(setup)
    assert ids == ["w2"]


def test_inactive_allocations_are_ignored():
    async def setup(sm):
        now = utcnow()
        await seed_worker(sm, "w1", 1)
        await seed_worker(sm, "w2", 2)
        await seed_worker(sm, "w3", 3)
        await seed_allocation(sm, "w1", "company-2", status="pending")
        await seed(sm, Allocation(
            company_id="company-2", worker_id="w2", status="accepted",
            starts_at=now - timedelta(hours=3), ends_at=now - timedelta(hours=1),
        ))
        await seed(sm, Allocation(
            company_id="company-1", worker_id=None, status="accepted",
            starts_at=now - timedelta(hours=1), ends_at=now + timedelta(hours=1),
        ))

    ids, _ = _candidates(setup)
    assert ids == ["w1", "w2", "w3"]


def test_allocated_worker_out_of_range_gives_no_candidates():
    async def setup(sm):
        await seed_worker(sm, "near", 1)
        await seed_worker(sm, "allocated-far", 20)
        await seed_allocation(sm, "allocated-far", "company-1")

    ids, _ = _candidates(setup)
    assert ids == []
