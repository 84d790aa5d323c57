# dispatch_bridge/repositories/credentials.py
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.db import utcnow
from dispatch_bridge.models import PartnerCredential


async def list_active_credentials(sm: async_sessionmaker[AsyncSession]) -> List[PartnerCredential]:
    async with sm() as session:
        rows = await session.execute(
            select(PartnerCredential)
            .where(PartnerCredential.active.is_(True))
            .order_by(PartnerCredential.created_at, PartnerCredential.id)
        )
        return list(rows.scalars())


async def list_credentials(sm: async_sessionmaker[AsyncSession]) -> List[PartnerCredential]:
    async with sm() as session:
        rows = await session.execute(select(PartnerCredential).order_by(PartnerCredential.created_at))
        return list(rows.scalars())


async def get_credential(sm: async_sessionmaker[AsyncSession], credential_id: str) -> Optional[PartnerCredential]:
    async with sm() as session:
        return await session.get(PartnerCredential, credential_id)


async def get_active_credential_for_company(session: AsyncSession, company_id: str) -> Optional[PartnerCredential]:
    rows = await session.execute(
        select(PartnerCredential)
        .where(PartnerCredential.company_id == company_id, PartnerCredential.active.is_(True))
        .order_by(PartnerCredential.created_at)
        .limit(1)
    )
    return rows.scalar_one_or_none()


async def record_sync(
    sm: async_sessionmaker[AsyncSession],
    credential_id: str,
    status: str,
    *,
    error: str | None = None,
    jobs_created: int = 0,
) -> None:
    """Stamp the sync outcome; the counter is incremented in SQL, not read-modify-write."""
    values = {
        "last_sync_at": utcnow(),
        "last_sync_status": status,
        "last_sync_error": error,
    }
    if jobs_created:
        values["total_deliveries_created"] = PartnerCredential.total_deliveries_created + jobs_created
    async with sm.begin() as session:
        await session.execute(
            update(PartnerCredential).where(PartnerCredential.id == credential_id).values(**values)
        )
