# dispatch_bridge/models/workers.py
from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, Float
from sqlalchemy.orm import Mapped, mapped_column
from dispatch_bridge.db import Base, utcnow

ACTIVE_ALLOCATION_STATUSES = ("accepted", "in_progress")


class Worker(Base):
    """Field worker (driver). Profile and live location are maintained elsewhere."""
    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    push_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    approved: Mapped[bool] = mapped_column(Boolean, default=False)
    available: Mapped[bool] = mapped_column(Boolean, default=False)
    deliveries_blocked: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Allocation(Base):
    """Exclusivity window binding a worker to one company."""
    __tablename__ = "allocations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    worker_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)  # null until accepted
    status: Mapped[str] = mapped_column(String(30), default="pending", index=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime)
    ends_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
