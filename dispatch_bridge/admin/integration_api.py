# -------------------------------
# dispatch_bridge/admin/integration_api.py
# -------------------------------
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel
from sqlalchemy import func, select

from dispatch_bridge.marketplace.errors import PartnerError
from dispatch_bridge.models import ProcessedEvent
from dispatch_bridge.models.audit_log import get_audit_log
from dispatch_bridge.pipeline.callbacks import SUPPORTED_STATUSES
from dispatch_bridge.repositories.credentials import get_credential, list_credentials
from dispatch_bridge.workers.runtime import Runtime, get_runtime

logger = logging.getLogger("uvicorn.error")

# All endpoints live under /admin/integration/marketplace/*
# Protect them in main_app.py by including this router with Depends(verify_admin)
router = APIRouter(prefix="/admin/integration/marketplace", tags=["Admin • Marketplace"])


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def _credential_blob(c) -> Dict[str, Any]:
    return {
        "id": c.id,
        "company_id": c.company_id,
        "merchant_id": c.merchant_id,
        "active": c.active,
        "trigger_on_ready_to_pickup": c.trigger_on_ready_to_pickup,
        "trigger_on_dispatched": c.trigger_on_dispatched,
        "pickup_configured": bool(c.pickup_address and c.pickup_lat is not None and c.pickup_lng is not None),
        "last_sync_at": _iso(c.last_sync_at),
        "last_sync_status": c.last_sync_status,
        "last_sync_error": c.last_sync_error,
        "total_deliveries_created": c.total_deliveries_created,
    }


@router.get("/status")
async def worker_status(rt: Runtime = Depends(get_runtime)):
    return {"ok": True, "worker": rt.orchestrator.status(), "cached_tokens": len(rt.tokens.store)}


@router.post("/poll")
async def manual_poll(rt: Runtime = Depends(get_runtime)):
    """Run one tick now; refused (not queued) while another tick is running."""
    report = await rt.orchestrator.run_tick()
    if report is None:
        return {"ok": False, "skipped": True, "reason": "tick_in_progress"}
    return {"ok": True, "skipped": False, "report": report.to_dict()}


@router.get("/credentials")
async def credentials_status(rt: Runtime = Depends(get_runtime)):
    rows = await list_credentials(rt.sm)
    return {"ok": True, "count": len(rows), "credentials": [_credential_blob(c) for c in rows]}


@router.get("/credentials/{credential_id}/stats")
async def credential_stats(
    credential_id: str = Path(...),
    limit: int = Query(20, ge=1, le=200),
    rt: Runtime = Depends(get_runtime),
):
    cred = await get_credential(rt.sm, credential_id)
    if cred is None:
        raise HTTPException(status_code=404, detail="credential not found")
    async with rt.sm() as session:
        counts = await session.execute(
            select(ProcessedEvent.status, func.count())
            .where(ProcessedEvent.credential_id == credential_id)
            .group_by(ProcessedEvent.status)
        )
        recent = await session.execute(
            select(ProcessedEvent)
            .where(ProcessedEvent.credential_id == credential_id)
            .order_by(ProcessedEvent.created_at.desc(), ProcessedEvent.id.desc())
            .limit(limit)
        )
        by_status = {status: n for status, n in counts.all()}
        events = [
            {
                "event_id": e.event_id,
                "order_id": e.order_id,
                "display_id": e.external_display_id,
                "code": e.event_full_code or e.event_code,
                "status": e.status,
                "job_id": e.job_id,
                "error": e.error_message,
                "created_at": _iso(e.created_at),
            }
            for e in recent.scalars()
        ]
    return {"ok": True, "credential": _credential_blob(cred), "by_status": by_status, "recent_events": events}


@router.post("/credentials/{credential_id}/test-connection")
async def test_connection(credential_id: str = Path(...), rt: Runtime = Depends(get_runtime)):
    cred = await get_credential(rt.sm, credential_id)
    if cred is None:
        raise HTTPException(status_code=404, detail="credential not found")
    rt.tokens.clear_token(cred.id)
    try:
        await rt.tokens.authenticate(cred)
    except PartnerError as e:
        return {"ok": False, "error": str(e), "status_code": getattr(e, "status_code", None)}
    return {"ok": True}


@router.delete("/tokens")
async def clear_tokens(credential_id: str | None = Query(None), rt: Runtime = Depends(get_runtime)):
    if credential_id:
        rt.tokens.clear_token(credential_id)
    else:
        rt.tokens.clear_all()
    return {"ok": True, "cached_tokens": len(rt.tokens.store)}


@router.get("/audit")
async def audit(limit: int = Query(100, ge=1, le=500)):
    return {"ok": True, "entries": get_audit_log(limit)}


class StatusChange(BaseModel):
    status: str


@router.post("/jobs/{job_id}/status")
async def job_status_changed(job_id: str, payload: StatusChange, rt: Runtime = Depends(get_runtime)):
    """Hook for the fulfillment flow; forwards the change to the marketplace."""
    if payload.status not in SUPPORTED_STATUSES:
        raise HTTPException(status_code=422, detail=f"status must be one of {', '.join(SUPPORTED_STATUSES)}")
    delivered = await rt.callbacks.notify_status_change(job_id, payload.status)
    return {"ok": True, "delivered": delivered}


class DeliveryCode(BaseModel):
    code: str


@router.post("/jobs/{job_id}/verify-code")
async def verify_delivery_code(job_id: str, payload: DeliveryCode, rt: Runtime = Depends(get_runtime)):
    """Checks the code the customer handed the worker against the marketplace order."""
    if not payload.code.strip():
        raise HTTPException(status_code=422, detail="code is required")
    valid = await rt.callbacks.verify_delivery_code(job_id, payload.code.strip())
    return {"ok": True, "valid": valid}
