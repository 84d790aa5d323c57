# dispatch_bridge/models/credentials.py
from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Boolean, Float
from sqlalchemy.orm import Mapped, mapped_column
from dispatch_bridge.db import Base, utcnow


class PartnerCredential(Base):
    """One marketplace merchant integration, owned by a company."""
    __tablename__ = "partner_credentials"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    merchant_id: Mapped[str] = mapped_column(String(128))
    client_id: Mapped[str] = mapped_column(String(255))
    client_secret: Mapped[str] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    # Which marketplace events create delivery jobs
    trigger_on_ready_to_pickup: Mapped[bool] = mapped_column(Boolean, default=True)
    trigger_on_dispatched: Mapped[bool] = mapped_column(Boolean, default=False)

    # Pickup point (the merchant's store)
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    default_category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Sync bookkeeping, written after every tick
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_sync_status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # no_triggers | no_events | success | error
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_deliveries_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
