# dispatch_bridge/models/ledger.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from dispatch_bridge.db import Base, utcnow

STATUS_PROCESSED = "processed"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"


class ProcessedEvent(Base):
    """Append-only: one row per marketplace event id, never updated."""
    __tablename__ = "processed_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    order_id: Mapped[str] = mapped_column(String(128), index=True)
    external_display_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    credential_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_code: Mapped[str | None] = mapped_column(String(16), nullable=True)        # e.g. "RTP"
    event_full_code: Mapped[str | None] = mapped_column(String(64), nullable=True)   # e.g. "READY_TO_PICKUP"
    status: Mapped[str] = mapped_column(String(16), index=True)                      # processed | skipped | error
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
