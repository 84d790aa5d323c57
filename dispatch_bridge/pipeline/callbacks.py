# dispatch_bridge/pipeline/callbacks.py
"""
Outbound half of the integration: when the fulfillment flow advances a
marketplace job, tell the marketplace. Failures are logged, never raised,
so they cannot break the caller's own flow.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.marketplace.client import PartnerClient, SOURCE_TAG, with_token_retry
from dispatch_bridge.marketplace.errors import PartnerError
from dispatch_bridge.models import DeliveryJob, PartnerCredential
from dispatch_bridge.repositories.credentials import get_active_credential_for_company

logger = logging.getLogger("uvicorn.error")

STATUS_ACCEPTED = "accepted"
STATUS_GOING_TO_PICKUP = "going_to_pickup"
STATUS_ARRIVED_PICKUP = "arrived_pickup"
STATUS_PICKED_UP = "picked_up"
STATUS_ARRIVED_DESTINATION = "arrived_destination"
STATUS_COMPLETED = "completed"


def _actions(client: PartnerClient) -> Dict[str, Callable[..., Awaitable[None]]]:
    return {
        STATUS_ACCEPTED: client.assign_driver,
        STATUS_GOING_TO_PICKUP: client.going_to_origin,
        STATUS_ARRIVED_PICKUP: client.arrived_at_origin,
        STATUS_PICKED_UP: client.dispatch,
        STATUS_ARRIVED_DESTINATION: client.arrived_at_destination,
        STATUS_COMPLETED: client.confirm_delivery,
    }


SUPPORTED_STATUSES = (
    STATUS_ACCEPTED,
    STATUS_GOING_TO_PICKUP,
    STATUS_ARRIVED_PICKUP,
    STATUS_PICKED_UP,
    STATUS_ARRIVED_DESTINATION,
    STATUS_COMPLETED,
)


class StatusCallbacks:
    def __init__(self, sm: async_sessionmaker[AsyncSession], client: PartnerClient):
        self.sm = sm
        self.client = client

    async def _marketplace_job(self, job_id: str, what: str) -> Optional[Tuple[DeliveryJob, PartnerCredential]]:
        """The job and its company's active credential, or None when there is nothing to forward."""
        async with self.sm() as session:
            job = await session.get(DeliveryJob, job_id)
            if job is None:
                logger.error("[CALLBACK] job %s not found", job_id)
                return None
            if job.external_source != SOURCE_TAG or not job.external_order_id:
                return None
            credential = await get_active_credential_for_company(session, job.company_id)

        if credential is None:
            logger.info("[CALLBACK] no active credential for company %s; skipping %s", job.company_id, what)
            return None
        return job, credential

    async def notify_status_change(self, job_id: str, status: str) -> bool:
        """
        Forward a lifecycle change of `job_id` to the marketplace.
        Returns True when a callback was delivered.
        """
        action = _actions(self.client).get(status)
        if action is None:
            logger.warning("[CALLBACK] unsupported status %r for job %s", status, job_id)
            return False

        found = await self._marketplace_job(job_id, status)
        if found is None:
            return False
        job, credential = found

        logger.info("[CALLBACK] %s -> order %s", status, job.external_display_id or job.external_order_id)
        try:
            await with_token_retry(lambda: action(credential, job.external_order_id))
        except PartnerError as e:
            logger.error("[CALLBACK] %s failed for job %s: %s", status, job_id, e)
            return False
        return True

    async def verify_delivery_code(self, job_id: str, code: str) -> bool:
        """True only when the marketplace accepted the customer's delivery code."""
        found = await self._marketplace_job(job_id, "verify code")
        if found is None:
            return False
        job, credential = found

        try:
            await with_token_retry(lambda: self.client.verify_delivery_code(credential, job.external_order_id, code))
        except PartnerError as e:
            logger.error("[CALLBACK] delivery code rejected for job %s: %s", job_id, e)
            return False
        return True
