from typing import Optional
from datetime import datetime, timezone
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_connector_factory
from app.connectors.base import BaseRecordConnector
from app.database import get_db
from app.models.mapping import Mapping
from app.models.sync_error import SyncError
from app.models.sync_log import SyncLog
from app.schemas.sync import (
    BatchSyncRequest,
    BatchSyncResponse,
    CancelResponse,
    ErrorResolveRequest,
    MappingSyncStatus,
    PaginatedSyncErrors,
    PaginatedSyncLogs,
    RetryResult,
    SyncErrorResponse,
    SyncLogResponse,
    SyncResult,
    SyncStats,
)
from app.services.destination_store import SchemaLookupError
from app.services.run_registry import run_registry
from app.services.sync_service import (
    ALREADY_RUNNING_MESSAGE,
    ConnectorFactory,
    SyncService,
    batch_sync,
    get_mapping_status,
    get_sync_stats,
)
from app.utils.encrypt import DecryptionError

log = logging.getLogger(__name__)
router = APIRouter()


def _get_mapping(db: Session, mapping_id: int) -> Mapping:
    mapping = db.query(Mapping).filter(Mapping.id == mapping_id).first()
    if mapping is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mapping not found")
    return mapping


def _connector_for(mapping: Mapping, connector_factory: ConnectorFactory) -> BaseRecordConnector:
    try:
        return connector_factory(mapping.connection)
    except DecryptionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/mappings/{mapping_id}/run", response_model=SyncResult)
async def run_sync(
    mapping_id: int,
    db: Session = Depends(get_db),
    connector_factory: ConnectorFactory = Depends(get_connector_factory),
):
    """Run a sync for one mapping. Failed runs are reported in the result, not as HTTP errors."""
    mapping = _get_mapping(db, mapping_id)
    connector = _connector_for(mapping, connector_factory)
    try:
        result = await SyncService(connector, db).run(mapping, trigger_type='manual')
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    finally:
        await connector.close()

    if result.message == ALREADY_RUNNING_MESSAGE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return result


@router.post("/mappings/{mapping_id}/retry", response_model=RetryResult)
async def retry_failed_sync(
    mapping_id: int,
    db: Session = Depends(get_db),
    connector_factory: ConnectorFactory = Depends(get_connector_factory),
):
    """Re-drive the unresolved retryable errors of a mapping."""
    mapping = _get_mapping(db, mapping_id)
    connector = _connector_for(mapping, connector_factory)
    try:
        result = await SyncService(connector, db).retry_failed_sync(mapping.id)
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    finally:
        await connector.close()

    if result.message == ALREADY_RUNNING_MESSAGE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return result


@router.post("/mappings/{mapping_id}/cancel", response_model=CancelResponse)
async def cancel_sync(mapping_id: int, db: Session = Depends(get_db)):
    _get_mapping(db, mapping_id)
    cancelled = run_registry.cancel(mapping_id)
    message = "Cancellation requested" if cancelled else "No running sync for this mapping"
    return CancelResponse(mapping_id=mapping_id, cancelled=cancelled, message=message)


@router.post("/batch", response_model=BatchSyncResponse)
async def run_batch_sync(
    request: BatchSyncRequest,
    db: Session = Depends(get_db),
    connector_factory: ConnectorFactory = Depends(get_connector_factory),
):
    """Sync several mappings sequentially."""
    results = await batch_sync(db, request.mapping_ids, connector_factory, trigger_type='batch')
    succeeded = sum(1 for r in results if r.success)
    return BatchSyncResponse(results=results, succeeded=succeeded, failed=len(results) - succeeded)


@router.get("/mappings/{mapping_id}/status", response_model=MappingSyncStatus)
async def mapping_status(mapping_id: int, db: Session = Depends(get_db)):
    return get_mapping_status(db, _get_mapping(db, mapping_id))


@router.get("/stats", response_model=SyncStats)
async def sync_stats(mapping_id: Optional[int] = None, db: Session = Depends(get_db)):
    return get_sync_stats(db, mapping_id)


@router.get("/logs", response_model=PaginatedSyncLogs)
async def get_sync_logs(
    mapping_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db)
):
    """Retrieve history of sync runs, newest first."""
    q = db.query(SyncLog)
    if mapping_id is not None:
        q = q.filter(SyncLog.mapping_id == mapping_id)
    if status and status != "all":
        q = q.filter(SyncLog.status == status)
    total = q.count()
    logs = q.order_by(SyncLog.id.desc()).offset(offset).limit(limit).all()
    return PaginatedSyncLogs(data=logs, total=total)


@router.get("/logs/{log_id}", response_model=SyncLogResponse)
async def get_sync_log(log_id: int, db: Session = Depends(get_db)):
    sync_log = db.query(SyncLog).filter(SyncLog.id == log_id).first()
    if sync_log is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync log not found")
    return sync_log


@router.get("/errors", response_model=PaginatedSyncErrors)
async def get_sync_errors(
    mapping_id: Optional[int] = None,
    resolved: Optional[bool] = None,
    error_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db)
):
    q = db.query(SyncError)
    if mapping_id is not None:
        q = q.filter(SyncError.mapping_id == mapping_id)
    if resolved is True:
        q = q.filter(SyncError.resolved_at.isnot(None))
    elif resolved is False:
        q = q.filter(SyncError.resolved_at.is_(None))
    if error_type:
        q = q.filter(SyncError.error_type == error_type)
    total = q.count()
    errors = q.order_by(SyncError.id.desc()).offset(offset).limit(limit).all()
    return PaginatedSyncErrors(data=errors, total=total)


@router.patch("/errors/{error_id}/resolve", response_model=SyncErrorResponse)
async def resolve_sync_error(error_id: int, request: ErrorResolveRequest, db: Session = Depends(get_db)):
    """Mark an error as resolved by an operator."""
    error = db.query(SyncError).filter(SyncError.id == error_id).first()
    if error is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync error not found")
    if error.resolved_at is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sync error already resolved")

    error.resolved_at = datetime.now(timezone.utc)
    error.resolution_notes = request.resolution_notes or "Resolved manually"
    db.commit()
    db.refresh(error)
    log.info(f"Sync error {error_id} resolved manually")
    return error
