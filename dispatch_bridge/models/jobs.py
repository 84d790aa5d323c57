# dispatch_bridge/models/jobs.py
from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Text, Float, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from dispatch_bridge.db import Base, utcnow


class DeliveryJob(Base):
    __tablename__ = "delivery_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    request_number: Mapped[str] = mapped_column(String(128), index=True)
    company_id: Mapped[str] = mapped_column(String(64), index=True)
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    delivery_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_distance_km: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    estimated_minutes: Mapped[int] = mapped_column(Integer)
    worker_payout: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    # Marketplace origin
    external_source: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    external_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    external_display_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Lifecycle, written by the fulfillment flow
    driver_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class DeliveryJobPlace(Base):
    __tablename__ = "delivery_job_places"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("delivery_jobs.id", ondelete="CASCADE"), unique=True)
    pick_lat: Mapped[float] = mapped_column(Float)
    pick_lng: Mapped[float] = mapped_column(Float)
    pick_address: Mapped[str] = mapped_column(Text)
    drop_lat: Mapped[float] = mapped_column(Float)
    drop_lng: Mapped[float] = mapped_column(Float)
    drop_address: Mapped[str] = mapped_column(Text)


class DeliveryJobBill(Base):
    __tablename__ = "delivery_job_bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("delivery_jobs.id", ondelete="CASCADE"), unique=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    price_per_km: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    distance_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    commission: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    commission_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    worker_payout: Mapped[Decimal] = mapped_column(Numeric(10, 2))
