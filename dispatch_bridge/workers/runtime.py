# dispatch_bridge/workers/runtime.py
"""Wiring of the polling pipeline; one instance per process."""
from __future__ import annotations

from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.db import get_sessionmaker
from dispatch_bridge.marketplace.client import PartnerClient
from dispatch_bridge.marketplace.tokens import TokenManager, TokenStore
from dispatch_bridge.pipeline.callbacks import StatusCallbacks
from dispatch_bridge.pipeline.ledger import EventDeduplicator
from dispatch_bridge.pipeline.matcher import GeoMatcher
from dispatch_bridge.pipeline.notifier import DispatchNotifier, PushSender
from dispatch_bridge.pipeline.poller import EventPoller
from dispatch_bridge.pipeline.translator import OrderTranslator
from dispatch_bridge.repositories.workers import AllocationRepository, WorkerLocationRepository
from dispatch_bridge.workers.orchestrator import WorkerOrchestrator


class Runtime:
    def __init__(
        self,
        sm: async_sessionmaker[AsyncSession],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        push_sender: PushSender | None = None,
    ):
        self.sm = sm
        self.tokens = TokenManager(TokenStore(), transport=transport)
        self.client = PartnerClient(self.tokens, transport=transport)
        self.orchestrator = WorkerOrchestrator(
            sm,
            self.tokens,
            EventPoller(self.client),
            EventDeduplicator(sm),
            OrderTranslator(self.client),
            GeoMatcher(WorkerLocationRepository(sm), AllocationRepository(sm)),
            DispatchNotifier(sm, push_sender),
        )
        self.callbacks = StatusCallbacks(sm, self.client)


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = Runtime(get_sessionmaker())
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    global _runtime
    _runtime = runtime
