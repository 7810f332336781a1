"""Sync trigger, status, log and pending-candidate routes."""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session, select

from mindnest.db.engine import get_engine, get_session
from mindnest.models.sync import EntityType, SyncLog, SyncType
from mindnest.sync.errors import SyncNotConfiguredError
from mindnest.sync.service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    sync_type: SyncType = SyncType.MANUAL


class SyncStatusResponse(BaseModel):
    configured: bool
    status: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class SyncPendingResponse(BaseModel):
    total: int
    by_type: Dict[str, int]


def get_sync_service() -> SyncService:
    """FastAPI dependency; overridden in tests."""
    return SyncService(get_engine())


async def _do_sync(sync_type: SyncType = SyncType.MANUAL) -> None:
    """Background task: run a full reconciliation."""
    service = SyncService(get_engine())
    try:
        result = await service.sync_all(sync_type=sync_type)
    except SyncNotConfiguredError as exc:
        logger.warning("Triggered sync skipped: %s", exc)
        return
    if not result.success:
        logger.warning(
            "Triggered sync finished with %d failures: %s",
            result.failed_items,
            result.error_message,
        )


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    """
    Start a reconciliation run in the background.
    Returns immediately; check /sync/status or /sync/logs for the outcome.
    """
    if not service.is_configured():
        raise HTTPException(status_code=409, detail="Sync is not configured")
    background_tasks.add_task(_do_sync, request.sync_type)
    return {"message": "Sync started", "sync_type": request.sync_type.value}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    session: Session = Depends(get_session),
    service: SyncService = Depends(get_sync_service),
):
    """Return whether sync is configured and the most recent attempt."""
    configured = service.is_configured()
    log = session.exec(
        select(SyncLog).order_by(SyncLog.completed_at.desc(), SyncLog.id.desc())
    ).first()
    if not log:
        return SyncStatusResponse(configured=configured, status="never_run")
    return SyncStatusResponse(
        configured=configured,
        status="success" if log.success else "failed",
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        started_at=log.started_at,
        completed_at=log.completed_at,
        error_type=log.error_type,
        error_message=log.error_message,
    )


@router.get("/logs", response_model=List[SyncLog])
def sync_logs(
    entity_type: Optional[EntityType] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: SyncService = Depends(get_sync_service),
):
    """Sync log rows, most recent first."""
    return service.get_sync_logs(entity_type, entity_id, limit, offset)


@router.get("/pending", response_model=SyncPendingResponse)
def sync_pending(service: SyncService = Depends(get_sync_service)):
    """Candidates the next run would push (no network calls)."""
    plan = service.plan()
    return SyncPendingResponse(total=plan.total, by_type=plan.counts)
