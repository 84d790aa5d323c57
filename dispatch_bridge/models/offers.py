# dispatch_bridge/models/offers.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from dispatch_bridge.db import Base, utcnow

OFFER_NOTIFIED = "notified"
OFFER_ACCEPTED = "accepted"
OFFER_EXPIRED = "expired"


class NotificationOffer(Base):
    __tablename__ = "notification_offers"
    __table_args__ = (UniqueConstraint("job_id", "worker_id", name="uq_offer_job_worker"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("delivery_jobs.id", ondelete="CASCADE"), index=True)
    worker_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default=OFFER_NOTIFIED, index=True)
    notified_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
