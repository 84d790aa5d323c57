# dispatch_bridge/pipeline/poller.py
from __future__ import annotations

import logging
from typing import List

from dispatch_bridge.marketplace.client import PartnerClient, with_token_retry
from dispatch_bridge.marketplace.errors import PartnerError
from dispatch_bridge.marketplace.partner_models import (
    CODE_DISPATCHED,
    CODE_READY_TO_PICKUP,
    FULL_CODE_DISPATCHED,
    FULL_CODE_READY_TO_PICKUP,
    PartnerEvent,
)

logger = logging.getLogger("uvicorn.error")


def event_types_for(credential) -> List[str]:
    """Polling filter derived from the credential's trigger flags."""
    types: List[str] = []
    if credential.trigger_on_ready_to_pickup:
        types.append(CODE_READY_TO_PICKUP)
    if credential.trigger_on_dispatched:
        types.append(CODE_DISPATCHED)
    return types


def is_trigger(credential, event: PartnerEvent) -> bool:
    """True when the event is one this credential creates jobs for."""
    return (
        (event.full_code == FULL_CODE_READY_TO_PICKUP and bool(credential.trigger_on_ready_to_pickup))
        or (event.full_code == FULL_CODE_DISPATCHED and bool(credential.trigger_on_dispatched))
    )


class EventPoller:
    def __init__(self, client: PartnerClient):
        self.client = client

    async def poll(self, credential, event_types: List[str]) -> List[PartnerEvent]:
        """
        Pull outstanding events. A rejected token is refreshed once; any other
        failure propagates to the per-credential handler.
        """
        events = await with_token_retry(lambda: self.client.poll_events(credential, event_types))
        if events:
            logger.info("[POLLER] %d event(s) received merchant=%s", len(events), credential.merchant_id)
        return events

    async def acknowledge(self, credential, event_ids: List[str]) -> bool:
        """Clear the batch from the partner queue. Never raises."""
        if not event_ids:
            return True
        try:
            await with_token_retry(lambda: self.client.acknowledge_events(credential, event_ids))
        except PartnerError as e:
            logger.error("[POLLER] acknowledgment failed merchant=%s events=%d: %s",
                         credential.merchant_id, len(event_ids), e)
            return False
        return True
