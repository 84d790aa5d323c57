# dispatch_bridge/models/companies.py
from __future__ import annotations
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from dispatch_bridge.db import Base, utcnow


def _uuid() -> str:
    return uuid.uuid4().hex


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255))
    logo_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SystemSettings(Base):
    """Single-row table owned by the admin dashboards; read-only here."""
    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    driver_search_radius: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)     # km
    driver_acceptance_timeout: Mapped[int | None] = mapped_column(Integer, nullable=True)           # seconds
    admin_commission_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    base_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    price_per_km: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
