# Shared fixtures for the dispatch tests: in-memory DB, fake marketplace, seeders.
from __future__ import annotations

import asyncio
import json
import math
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dispatch_bridge.db import create_tables, utcnow
from dispatch_bridge.marketplace.client import PartnerClient
from dispatch_bridge.marketplace.tokens import TokenManager, TokenStore
from dispatch_bridge.models import (
    Allocation,
    Company,
    DeliveryJob,
    PartnerCredential,
    SystemSettings,
    Worker,
)
from dispatch_bridge.pipeline.geo import EARTH_RADIUS_KM
from dispatch_bridge.pipeline.ledger import EventDeduplicator
from dispatch_bridge.pipeline.matcher import GeoMatcher
from dispatch_bridge.pipeline.notifier import DispatchNotifier
from dispatch_bridge.pipeline.poller import EventPoller
from dispatch_bridge.pipeline.translator import OrderTranslator
from dispatch_bridge.repositories.workers import AllocationRepository, WorkerLocationRepository
from dispatch_bridge.workers.orchestrator import WorkerOrchestrator

BASE_URL = "https://partner.test"
PICKUP_LAT = -23.5505
PICKUP_LNG = -46.6333
FIXED_NOW = datetime(2026, 1, 10, 12, 0, 0)


@asynccontextmanager
async def memory_db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    sm = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield sm
    finally:
        await engine.dispose()


def point_north(lat: float, lng: float, km: float) -> tuple[float, float]:
    """A point exactly `km` due north (haversine along a meridian)."""
    return lat + math.degrees(km / EARTH_RADIUS_KM), lng


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakePartner:
    """
    In-memory marketplace. Events stay outstanding until acknowledged,
    like the real polling queue.
    """

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self.events: Dict[str, List[Dict[str, Any]]] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.auth_status = 200
        self.bad_client_ids: set[str] = set()
        self.expires_in = 21600
        self.poll_status: Optional[int] = None
        self.ack_status = 200
        self.logistics_status = 202
        self.reject_tokens_once = False
        self.poll_gate: Optional[asyncio.Event] = None
        self.poll_started: Optional[asyncio.Event] = None
        self._token_seq = 0
        self.valid_tokens: set[str] = set()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self, method: str | None = None) -> List[str]:
        return [r.url.path for r in self.calls if method is None or r.method == method]

    def count(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path == path)

    def add_event(self, merchant_id: str, event_id: str, order_id: str, full_code: str = "READY_TO_PICKUP"):
        code = {"READY_TO_PICKUP": "RTP", "DISPATCHED": "DSP"}.get(full_code, full_code[:3])
        self.events.setdefault(merchant_id, []).append(
            {"id": event_id, "orderId": order_id, "code": code, "fullCode": full_code,
             "merchantId": merchant_id, "createdAt": "2026-01-10T12:00:00Z"}
        )

    def add_order(self, order_id: str, display_id: str, lat: float, lng: float, **extra):
        self.orders[order_id] = {
            "id": order_id,
            "displayId": display_id,
            "customer": {"name": extra.get("customer_name", "Maria Silva"),
                         "phone": {"number": "0800 123 4567", "localizer": "12345678"}},
            "delivery": {
                "mode": "DEFAULT",
                "deliveredBy": "MERCHANT",
                "deliveryAddress": {
                    "formattedAddress": extra.get("formatted", "Rua Augusta, 100"),
                    "streetName": "Rua Augusta",
                    "streetNumber": "100",
                    "neighborhood": "Consolacao",
                    "city": "Sao Paulo",
                    "state": "SP",
                    "reference": extra.get("reference", "Blue gate"),
                    "coordinates": {"latitude": lat, "longitude": lng},
                },
            },
        }

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        if path == "/authentication/v1.0/oauth/token":
            form = parse_qs(request.content.decode())
            if self.auth_status != 200 or form.get("clientId", [""])[0] in self.bad_client_ids:
                return httpx.Response(self.auth_status if self.auth_status != 200 else 401,
                                      json={"error": "invalid_client"})
            self._token_seq += 1
            token = f"tok-{self._token_seq}"
            self.valid_tokens.add(token)
            return httpx.Response(200, json={"accessToken": token, "type": "bearer", "expiresIn": self.expires_in})

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if self.reject_tokens_once:
            self.reject_tokens_once = False
            self.valid_tokens.discard(token)
        if token not in self.valid_tokens:
            return httpx.Response(401, json={"message": "token expired"})

        if path == "/events/v1.0/events:polling":
            if self.poll_started is not None:
                self.poll_started.set()
            if self.poll_gate is not None:
                await self.poll_gate.wait()
            if self.poll_status is not None:
                return httpx.Response(self.poll_status, text="upstream failure")
            merchant = request.headers.get("x-polling-merchants", "")
            outstanding = self.events.get(merchant, [])
            if not outstanding:
                return httpx.Response(204)
            return httpx.Response(200, json=list(outstanding))

        if path == "/events/v1.0/events/acknowledgment":
            if self.ack_status >= 300:
                return httpx.Response(self.ack_status, text="ack failed")
            acked = {row["id"] for row in json.loads(request.content)}
            for merchant, rows in self.events.items():
                self.events[merchant] = [r for r in rows if r["id"] not in acked]
            return httpx.Response(202)

        if path.startswith("/order/v1.0/orders/"):
            order = self.orders.get(path.rsplit("/", 1)[-1])
            if order is None:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=order)

        if path.startswith("/logistics/v1.0/orders/"):
            return httpx.Response(self.logistics_status)

        return httpx.Response(404)


class RecordingPushSender:
    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail
        self.on_send = None

    async def send(self, tokens, title, body, data):
        if self.on_send is not None:
            await self.on_send(data)
        if self.fail:
            raise RuntimeError("push transport down")
        self.sent.append({"tokens": list(tokens), "title": title, "body": body, "data": dict(data)})


def make_client(partner: FakePartner, clock=None) -> PartnerClient:
    tokens = TokenManager(TokenStore(), base_url=BASE_URL, transport=partner.transport,
                          **({"clock": clock} if clock else {}))
    return PartnerClient(tokens, base_url=BASE_URL, transport=partner.transport)


def build_orchestrator(sm, partner: FakePartner, sender: RecordingPushSender | None = None,
                       now: datetime | None = None) -> WorkerOrchestrator:
    client = make_client(partner)
    now_fn = (lambda: now) if now else utcnow
    return WorkerOrchestrator(
        sm,
        client.tokens,
        EventPoller(client),
        EventDeduplicator(sm),
        OrderTranslator(client, average_speed_kmh=40, clock=now_fn),
        GeoMatcher(WorkerLocationRepository(sm), AllocationRepository(sm), clock=now_fn),
        DispatchNotifier(sm, sender or RecordingPushSender(), clock=now_fn),
        clock=now_fn,
    )


# ---- Seeders ----

async def seed(sm, *rows):
    async with sm.begin() as session:
        session.add_all(rows)
    return rows[0] if len(rows) == 1 else rows


async def seed_company(sm, company_id: str = "company-1", name: str = "Burger House") -> Company:
    return await seed(sm, Company(id=company_id, name=name, logo_url="https://cdn.test/logo.png"))


async def seed_credential(sm, credential_id: str = "cred-1", **kw) -> PartnerCredential:
    values = dict(
        id=credential_id,
        company_id="company-1",
        merchant_id=f"merchant-{credential_id}",
        client_id=f"client-{credential_id}",
        client_secret="s3cr3t",
        active=True,
        trigger_on_ready_to_pickup=True,
        trigger_on_dispatched=False,
        pickup_address="Av. Paulista, 1000",
        pickup_lat=PICKUP_LAT,
        pickup_lng=PICKUP_LNG,
        default_category_id="motorcycle",
        total_deliveries_created=0,
    )
    values.update(kw)
    return await seed(sm, PartnerCredential(**values))


async def seed_worker(sm, worker_id: str, km_north: float, **kw) -> Worker:
    lat, lng = point_north(PICKUP_LAT, PICKUP_LNG, km_north)
    values = dict(
        id=worker_id,
        name=f"Worker {worker_id}",
        push_token=f"push-{worker_id}",
        latitude=lat,
        longitude=lng,
        active=True,
        approved=True,
        available=True,
        deliveries_blocked=False,
    )
    values.update(kw)
    return await seed(sm, Worker(**values))


async def seed_allocation(sm, worker_id: str, company_id: str, *, status: str = "in_progress",
                          now: datetime | None = None, hours: float = 2.0) -> Allocation:
    now = now or utcnow()
    return await seed(sm, Allocation(
        company_id=company_id,
        worker_id=worker_id,
        status=status,
        starts_at=now - timedelta(hours=1),
        ends_at=now + timedelta(hours=hours),
    ))


async def seed_settings(sm, **kw) -> SystemSettings:
    return await seed(sm, SystemSettings(**kw))


async def seed_busy_job(sm, worker_id: str) -> DeliveryJob:
    from decimal import Decimal
    return await seed(sm, DeliveryJob(
        request_number="MANUAL-1",
        company_id="company-x",
        customer_name="Someone",
        total_distance_km=Decimal("1.00"),
        estimated_minutes=5,
        worker_payout=Decimal("8.00"),
        driver_id=worker_id,
    ))
