# ---------------------------------
# dispatch_bridge/workers/orchestrator.py
# ---------------------------------
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_bridge.config import settings
from dispatch_bridge.db import utcnow
from dispatch_bridge.marketplace.errors import AuthError, PartnerError
from dispatch_bridge.marketplace.partner_models import PartnerEvent
from dispatch_bridge.marketplace.tokens import TokenManager
from dispatch_bridge.models.audit_log import add_audit_entry
from dispatch_bridge.pipeline.ledger import (
    STATUS_ERROR,
    STATUS_PROCESSED,
    STATUS_SKIPPED,
    EventDeduplicator,
    LedgerEntry,
)
from dispatch_bridge.pipeline.matcher import GeoMatcher
from dispatch_bridge.pipeline.notifier import DispatchNotifier
from dispatch_bridge.pipeline.poller import EventPoller, event_types_for, is_trigger
from dispatch_bridge.pipeline.translator import OrderTranslator
from dispatch_bridge.repositories.credentials import list_active_credentials, record_sync
from dispatch_bridge.repositories.settings import DispatchSettings, load_dispatch_settings

logger = logging.getLogger("uvicorn.error")

SYNC_NO_TRIGGERS = "no_triggers"
SYNC_NO_EVENTS = "no_events"
SYNC_SUCCESS = "success"
SYNC_ERROR = "error"


class TickState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    DEDUPLICATING = "deduplicating"
    TRANSLATING = "translating"
    MATCHING = "matching"
    DISPATCHING = "dispatching"
    ACKNOWLEDGING = "acknowledging"


@dataclass
class CredentialReport:
    credential_id: str
    merchant_id: str
    status: str = SYNC_SUCCESS
    events_received: int = 0
    jobs_created: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    offers_created: int = 0
    acknowledged: Optional[bool] = None
    error: Optional[str] = None


@dataclass
class TickReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    credentials: List[CredentialReport] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def jobs_created(self) -> int:
        return sum(c.jobs_created for c in self.credentials)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["jobs_created"] = self.jobs_created
        return out


class WorkerOrchestrator:
    """
    One tick: every active credential, strictly one after another,
    Polling -> Authenticating -> Fetching -> (per event: Deduplicating ->
    Translating -> Matching -> Dispatching) -> Acknowledging -> Idle.
    A tick that starts while another is running is skipped.
    """

    def __init__(
        self,
        sm: async_sessionmaker[AsyncSession],
        tokens: TokenManager,
        poller: EventPoller,
        ledger: EventDeduplicator,
        translator: OrderTranslator,
        matcher: GeoMatcher,
        notifier: DispatchNotifier,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sm = sm
        self.tokens = tokens
        self.poller = poller
        self.ledger = ledger
        self.translator = translator
        self.matcher = matcher
        self.notifier = notifier
        self._clock = clock
        self._running = False
        self._state = TickState.IDLE
        self.last_report: Optional[TickReport] = None
        self.ticks_skipped = 0

    @property
    def state(self) -> TickState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    def _set_state(self, state: TickState) -> None:
        if state is not self._state:
            logger.debug("[WORKER] %s -> %s", self._state.value, state.value)
        self._state = state

    # ---------------------------
    # Tick
    # ---------------------------

    async def run_tick(self) -> Optional[TickReport]:
        if self._running:
            self.ticks_skipped += 1
            logger.info("[WORKER] previous tick still running; skipping")
            add_audit_entry("Tick Skipped", "system", "previous tick still running")
            return None

        self._running = True
        report = TickReport(started_at=self._clock())
        try:
            self._set_state(TickState.POLLING)
            credentials = await list_active_credentials(self.sm)
            if credentials:
                logger.info("[WORKER] processing %d active credential(s)", len(credentials))
            for credential in credentials:
                report.credentials.append(await self.process_credential(credential))
        except Exception as e:
            logger.exception("[WORKER] tick failed: %s", e)
            report.error = str(e)
        finally:
            report.finished_at = self._clock()
            self.last_report = report
            self._set_state(TickState.IDLE)
            self._running = False
        return report

    # ---------------------------
    # Per credential
    # ---------------------------

    async def process_credential(self, credential) -> CredentialReport:
        rep = CredentialReport(credential_id=credential.id, merchant_id=credential.merchant_id)
        types = event_types_for(credential)
        if not types:
            logger.info("[WORKER] no trigger enabled for merchant=%s", credential.merchant_id)
            rep.status = SYNC_NO_TRIGGERS
            await self._record_sync(credential, rep)
            return rep

        try:
            self._set_state(TickState.AUTHENTICATING)
            await self.tokens.get_valid_token(credential)

            self._set_state(TickState.FETCHING)
            events = await self.poller.poll(credential, types)
            rep.events_received = len(events)
            if not events:
                rep.status = SYNC_NO_EVENTS
                await self._record_sync(credential, rep)
                return rep

            async with self.sm() as session:
                dispatch_settings = await load_dispatch_settings(session)

            for event in events:
                await self._process_event(credential, event, rep, dispatch_settings)

            # Batch-final: only after every event above has been attempted
            self._set_state(TickState.ACKNOWLEDGING)
            rep.acknowledged = await self.poller.acknowledge(credential, [e.id for e in events])

            rep.status = SYNC_ERROR if rep.failed else SYNC_SUCCESS
        except AuthError as e:
            logger.error("[WORKER] authentication error merchant=%s: %s", credential.merchant_id, e)
            rep.status, rep.error = SYNC_ERROR, str(e)
        except Exception as e:
            logger.exception("[WORKER] failed merchant=%s: %s", credential.merchant_id, e)
            rep.status, rep.error = SYNC_ERROR, str(e) or e.__class__.__name__

        await self._record_sync(credential, rep)
        add_audit_entry(
            "Credential Synced", "system",
            f"merchant={credential.merchant_id} status={rep.status} events={rep.events_received} "
            f"jobs={rep.jobs_created} failed={rep.failed}",
        )
        return rep

    async def _record_sync(self, credential, rep: CredentialReport) -> None:
        try:
            await record_sync(self.sm, credential.id, rep.status, error=rep.error, jobs_created=rep.jobs_created)
        except Exception as e:
            logger.exception("[WORKER] could not record sync status for %s: %s", credential.id, e)

    # ---------------------------
    # Per event
    # ---------------------------

    async def _process_event(self, credential, event: PartnerEvent, rep: CredentialReport,
                             dispatch_settings: DispatchSettings) -> None:
        self._set_state(TickState.DEDUPLICATING)
        if await self.ledger.already_processed(event.id):
            logger.info("[WORKER] event %s already processed; skipping", event.id)
            rep.duplicates += 1
            return

        entry = LedgerEntry(
            event_id=event.id,
            order_id=event.order_id,
            credential_id=credential.id,
            status=STATUS_PROCESSED,
            event_code=event.code,
            event_full_code=event.full_code,
        )

        if not is_trigger(credential, event):
            entry.status = STATUS_SKIPPED
            await self.ledger.record_outcome(entry)
            rep.skipped += 1
            return

        # Job rows and the ledger entry commit together, before anyone is notified
        self._set_state(TickState.TRANSLATING)
        try:
            async with self.sm.begin() as session:
                translated = await self.translator.translate(credential, event, session, dispatch_settings)
                entry.job_id = translated.job_id
                entry.external_display_id = translated.order.display_id
                await self.ledger.add_to(session, entry)
        except IntegrityError as e:
            if await self.ledger.already_processed(event.id):
                logger.info("[WORKER] event %s recorded concurrently; job rolled back", event.id)
                rep.duplicates += 1
                return
            await self._record_event_failure(event, entry, rep, e)
            return
        except Exception as e:
            await self._record_event_failure(event, entry, rep, e)
            return

        rep.jobs_created += 1
        logger.info("[WORKER] event %s -> job %s", event.id, translated.job_id)

        try:
            self._set_state(TickState.MATCHING)
            candidates = await self.matcher.find_candidates(
                translated.place.pick_lat,
                translated.place.pick_lng,
                dispatch_settings.search_radius_km,
                credential.company_id,
            )
            self._set_state(TickState.DISPATCHING)
            result = await self.notifier.dispatch(translated, candidates, dispatch_settings.acceptance_timeout_seconds)
            rep.offers_created += result.offers_created
        except Exception as e:
            # The job stays on the dashboards; its ledger entry is final
            logger.exception("[WORKER] dispatch failed for job %s: %s", translated.job_id, e)
            rep.failed += 1
            rep.error = f"dispatch for job {translated.job_id}: {e}"

    async def _record_event_failure(self, event: PartnerEvent, entry: LedgerEntry, rep: CredentialReport,
                                    error: Exception) -> None:
        """
        Close the event with an `error` ledger entry so the batch can still be
        acknowledged. A failure to write the entry propagates.
        """
        if isinstance(error, (PartnerError, ValueError)):
            logger.error("[WORKER] event %s failed: %s", event.id, error)
        else:
            logger.exception("[WORKER] event %s failed unexpectedly: %s", event.id, error)
        message = str(error) or error.__class__.__name__
        rep.failed += 1
        rep.error = f"event {event.id}: {message}"
        entry.status = STATUS_ERROR
        entry.job_id = None
        entry.error_message = message
        await self.ledger.record_outcome(entry)
        add_audit_entry("Event Failed", "system", f"event={event.id} order={event.order_id} error={message}")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "state": self._state.value,
            "ticks_skipped": self.ticks_skipped,
            "last_report": self.last_report.to_dict() if self.last_report else None,
        }


class PollingTicker:
    """
    Fixed-rate ticker: every `interval` seconds a tick is started, whether or
    not the previous one finished (the orchestrator skips overlapping ones).
    stop() ends the loop and waits for in-flight ticks.
    """

    def __init__(self, orchestrator: WorkerOrchestrator, interval: float | None = None):
        self.orchestrator = orchestrator
        self.interval = interval if interval is not None else settings.POLLING_INTERVAL_SECONDS
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.info("[WORKER] ticker already running")
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop))

    async def _loop(self, stop_event: asyncio.Event) -> None:
        logger.info("[WORKER] started (interval=%ss)", self.interval)
        while not stop_event.is_set():
            tick = asyncio.create_task(self.orchestrator.run_tick())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        logger.info("[WORKER] stopped")

    async def stop(self, timeout: float = 5.0) -> None:
        if self._stop:
            self._stop.set()
        pending = [t for t in (self._task, *self._ticks) if t is not None]
        if not pending:
            return
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for t in not_done:
            t.cancel()
        self._task = None
