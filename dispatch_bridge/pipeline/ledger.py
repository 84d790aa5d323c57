# dispatch_bridge/pipeline/ledger.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.models import ProcessedEvent
from dispatch_bridge.models.ledger import STATUS_ERROR, STATUS_PROCESSED, STATUS_SKIPPED

logger = logging.getLogger("uvicorn.error")

__all__ = ["LedgerEntry", "EventDeduplicator", "STATUS_PROCESSED", "STATUS_SKIPPED", "STATUS_ERROR"]


@dataclass
class LedgerEntry:
    event_id: str
    order_id: str
    credential_id: str
    status: str
    event_code: str | None = None
    event_full_code: str | None = None
    external_display_id: str | None = None
    job_id: str | None = None
    error_message: str | None = None

    def to_row(self) -> ProcessedEvent:
        return ProcessedEvent(
            event_id=self.event_id,
            order_id=self.order_id,
            credential_id=self.credential_id,
            status=self.status,
            event_code=self.event_code,
            event_full_code=self.event_full_code,
            external_display_id=self.external_display_id,
            job_id=self.job_id,
            error_message=(self.error_message or None) and self.error_message[:2000],
        )


class EventDeduplicator:
    """
    The processed-event ledger. A row keyed by the marketplace event id is
    the only idempotency guarantee the pipeline relies on.
    """

    def __init__(self, sm: async_sessionmaker[AsyncSession]):
        self.sm = sm

    async def already_processed(self, event_id: str) -> bool:
        async with self.sm() as session:
            found = await session.execute(
                select(ProcessedEvent.id).where(ProcessedEvent.event_id == event_id).limit(1)
            )
            return found.scalar_one_or_none() is not None

    async def get(self, event_id: str) -> Optional[ProcessedEvent]:
        async with self.sm() as session:
            found = await session.execute(select(ProcessedEvent).where(ProcessedEvent.event_id == event_id))
            return found.scalar_one_or_none()

    async def add_to(self, session: AsyncSession, entry: LedgerEntry) -> None:
        """Stage the entry inside the caller's transaction; flush so a duplicate fails here."""
        session.add(entry.to_row())
        await session.flush()

    async def record_outcome(self, entry: LedgerEntry) -> bool:
        """
        Append an entry in its own transaction. Returns False when another
        entry already holds this event id.
        """
        try:
            async with self.sm.begin() as session:
                session.add(entry.to_row())
        except IntegrityError:
            logger.info("[LEDGER] event %s already recorded; keeping the first entry", entry.event_id)
            return False
        return True
