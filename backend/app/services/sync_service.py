import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.connectors.base import BaseRecordConnector, GlideRow, MalformedRowError
from app.connectors.exceptions import GlideApiError, GlideAuthError
from app.constants.error_types import SyncErrorType, describe_error
from app.constants.glide import ROW_ID_COLUMN, ROW_ID_FIELD
from app.models.connection import Connection
from app.models.mapping import Mapping
from app.models.sync_error import SyncError
from app.models.sync_log import NON_TERMINAL_STATUSES, SyncLog
from app.schemas.mapping import ColumnMapping, SyncDirection, parse_column_mappings
from app.schemas.sync import MappingSyncStatus, RetryResult, RunState, SyncErrorDetail, SyncResult, SyncStats
from app.services.destination_store import DestinationStore, SchemaLookupError
from app.services.mapping_validator import MappingValidator
from app.services.relationship_resolver import RelationshipResolver
from app.services.run_registry import RunRegistry, run_registry
from app.services.value_converter import convert_value

log = logging.getLogger(__name__)

ConnectorFactory = Callable[[Connection], BaseRecordConnector]

ALREADY_RUNNING_MESSAGE = "A sync is already running for this mapping"


class RequiredColumnError(ValueError):
    def __init__(self, glide_column: str, column: ColumnMapping):
        super().__init__(f"required column {glide_column} -> {column.target_column} is empty or invalid")
        self.glide_column = glide_column
        self.column = column


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


class _RunContext:
    """Counters and collected errors of one run."""

    def __init__(self, mapping: Mapping, sync_log: SyncLog):
        self.mapping = mapping
        self.sync_log = sync_log
        self.processed = 0
        self.failed = 0
        self.pushed = 0
        self.pages = 0
        self.errors: List[SyncErrorDetail] = []


class SyncService:
    """
    Orchestrates sync runs between one Glide connection and the destination database.

    A run moves idle -> validating -> running -> completed | failed | cancelled.
    Its SyncLog goes started -> processing -> completed | failed; a cancelled run
    is logged as failed with a "Sync cancelled" message.
    """

    def __init__(
        self,
        connector: BaseRecordConnector,
        db: Session,
        store: Optional[DestinationStore] = None,
        resolver: Optional[RelationshipResolver] = None,
        registry: Optional[RunRegistry] = None,
        upsert_batch_size: Optional[int] = None,
    ):
        self.connector = connector
        self.db = db
        self.store = store or DestinationStore(db)
        self.resolver = resolver or RelationshipResolver(db, self.store)
        self.validator = MappingValidator(self.store)
        self.registry = registry or run_registry
        self.upsert_batch_size = upsert_batch_size or settings.sync_upsert_batch_size

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _refused(self, mapping: Mapping, message: str) -> SyncResult:
        log.warning(f"Sync for mapping {mapping.id} refused: {message}")
        return SyncResult(mapping_id=mapping.id, success=False, state=RunState.FAILED, message=message)

    def _expire_stale_runs(self, mapping_id: int) -> None:
        cutoff = _now() - timedelta(minutes=settings.sync_stale_run_minutes)
        stale = self.db.query(SyncLog).filter(
            SyncLog.mapping_id == mapping_id,
            SyncLog.status.in_(NON_TERMINAL_STATUSES),
            SyncLog.started_at < cutoff
        ).all()
        for sync_log in stale:
            sync_log.status = 'failed'
            sync_log.completed_at = _now()
            sync_log.message = f"Sync failed: run did not finish within {settings.sync_stale_run_minutes} minutes"
            log.warning(f"Marked stale sync log {sync_log.id} for mapping {mapping_id} as failed")
        if stale:
            self.db.commit()

    def _start_log(self, mapping: Mapping, trigger_type: str) -> Optional[SyncLog]:
        """Create the run's log unless another run of the mapping is still active. Never awaits."""
        self._expire_stale_runs(mapping.id)
        active = self.db.query(SyncLog).filter(
            SyncLog.mapping_id == mapping.id,
            SyncLog.status.in_(NON_TERMINAL_STATUSES)
        ).first()
        if active:
            return None

        sync_log = SyncLog(
            mapping_id=mapping.id,
            trigger_type=trigger_type,
            direction=mapping.sync_direction,
            started_at=_now(),
            status='started',
            message="Sync started",
        )
        self.db.add(sync_log)
        try:
            self.db.commit()
        except IntegrityError:
            # another process inserted an active run first
            self.db.rollback()
            return None
        self.db.refresh(sync_log)
        return sync_log

    def _set_status(self, ctx: _RunContext, status: str, message: str, completed_at: Optional[datetime] = None) -> bool:
        """Write the run's progress; returns False when the log was already closed elsewhere."""
        values = {
            SyncLog.status: status,
            SyncLog.message: message,
            SyncLog.records_processed: ctx.processed,
            SyncLog.failed_records: ctx.failed,
            SyncLog.pushed_records: ctx.pushed,
        }
        if completed_at is not None:
            values[SyncLog.completed_at] = completed_at
        # terminal logs are never rewritten
        updated = self.db.query(SyncLog).filter(
            SyncLog.id == ctx.sync_log.id,
            SyncLog.status.in_(NON_TERMINAL_STATUSES)
        ).update(values, synchronize_session=False)
        self.db.commit()
        self.db.refresh(ctx.sync_log)
        return updated == 1

    def _is_active(self, ctx: _RunContext) -> bool:
        status = self.db.query(SyncLog.status).filter(SyncLog.id == ctx.sync_log.id).scalar()
        return status in NON_TERMINAL_STATUSES

    def _superseded(self, ctx: _RunContext) -> SyncResult:
        self.db.refresh(ctx.sync_log)
        log.warning(
            f"Sync #{ctx.sync_log.id} for mapping {ctx.mapping.id} stopped: log was closed elsewhere "
            f"({ctx.sync_log.status}: {ctx.sync_log.message})"
        )
        return self._result(ctx, False, RunState.FAILED)

    def _result(self, ctx: _RunContext, success: bool, state: RunState) -> SyncResult:
        return SyncResult(
            mapping_id=ctx.mapping.id,
            success=success,
            state=state,
            sync_log_id=ctx.sync_log.id,
            records_processed=ctx.processed,
            failed_records=ctx.failed,
            pushed_records=ctx.pushed,
            errors=list(ctx.errors),
            message=ctx.sync_log.message,
        )

    def _complete(self, ctx: _RunContext, message: Optional[str] = None) -> SyncResult:
        finished = _now()
        if message is None:
            message = "Sync completed" if ctx.failed == 0 else f"Sync completed with {ctx.failed} error(s)"
        if not self._set_status(ctx, 'completed', message, completed_at=finished):
            return self._superseded(ctx)
        connection = ctx.mapping.connection
        if connection is not None:
            connection.last_sync = finished
            self.db.commit()
        log.info(
            f"Sync #{ctx.sync_log.id} for mapping {ctx.mapping.id} completed: "
            f"{ctx.processed} processed, {ctx.pushed} pushed, {ctx.failed} failed"
        )
        return self._result(ctx, True, RunState.COMPLETED)

    def _fail(self, ctx: _RunContext, message: str, state: RunState = RunState.FAILED) -> SyncResult:
        if not self._set_status(ctx, 'failed', message, completed_at=_now()):
            return self._superseded(ctx)
        if state == RunState.CANCELLED:
            log.info(f"Sync #{ctx.sync_log.id} for mapping {ctx.mapping.id} cancelled")
        else:
            log.error(f"Sync #{ctx.sync_log.id} for mapping {ctx.mapping.id} failed: {message}")
        return self._result(ctx, False, state)

    def _cancelled(self, ctx: _RunContext) -> SyncResult:
        return self._fail(ctx, "Sync cancelled", state=RunState.CANCELLED)

    def _mark_connection_error(self, mapping: Mapping, message: str) -> None:
        connection = mapping.connection
        if connection is not None:
            connection.status = 'error'
            connection.status_message = message
            self.db.commit()

    async def run(
        self,
        mapping: Mapping,
        trigger_type: str = 'manual',
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Run one sync of a mapping. Expected failures are returned, unexpected ones re-raised."""
        if not mapping.enabled:
            return self._refused(mapping, "Mapping is disabled")

        validation = self.validator.validate(mapping)
        if not validation.is_valid:
            return self._refused(mapping, f"Mapping is invalid: {validation.message}")

        lock = self.registry.lock_for(mapping.id)
        if lock.locked():
            return self._refused(mapping, ALREADY_RUNNING_MESSAGE)

        async with lock:
            sync_log = self._start_log(mapping, trigger_type)
            if sync_log is None:
                return self._refused(mapping, ALREADY_RUNNING_MESSAGE)

            event = self.registry.register(mapping.id, cancel_event)
            log.info(f"Starting sync #{sync_log.id} for mapping {mapping.id} ({mapping.glide_table} -> {mapping.target_table}, {mapping.sync_direction})")
            try:
                return await self._execute(_RunContext(mapping, sync_log), event)
            finally:
                self.registry.unregister(mapping.id)

    async def _execute(self, ctx: _RunContext, cancel_event: asyncio.Event) -> SyncResult:
        columns = parse_column_mappings(ctx.mapping.column_mappings)
        direction = SyncDirection(ctx.mapping.sync_direction)
        try:
            if not self._set_status(ctx, 'processing', "Fetching data from Glide"):
                return self._superseded(ctx)

            if direction in (SyncDirection.TO_DESTINATION, SyncDirection.BOTH):
                outcome = await self._pull(ctx, columns, cancel_event)
                if outcome is not None:
                    return outcome

            if direction in (SyncDirection.TO_SOURCE, SyncDirection.BOTH):
                if cancel_event.is_set():
                    return self._cancelled(ctx)
                if not self._set_status(ctx, 'processing', "Pushing data to Glide"):
                    return self._superseded(ctx)
                await self._push(ctx, columns, only_new=direction == SyncDirection.BOTH)

            return self._complete(ctx)

        except asyncio.CancelledError:
            self.db.rollback()
            self._cancelled(ctx)
            raise
        except Exception as e:
            log.error(f"Unexpected error in sync #{ctx.sync_log.id}: {e}", exc_info=True)
            self.db.rollback()
            self._fail(ctx, f"Sync failed: {e}")
            raise

    # ------------------------------------------------------------------
    # Glide -> destination
    # ------------------------------------------------------------------

    async def _pull(self, ctx: _RunContext, columns: Dict[str, ColumnMapping], cancel_event: asyncio.Event) -> Optional[SyncResult]:
        """Page through the Glide table. Returns a terminal result only when the run must stop."""
        mapping = ctx.mapping
        token: Optional[str] = None
        seen_tokens = set()

        while True:
            if cancel_event.is_set():
                return self._cancelled(ctx)

            try:
                page = await self.connector.fetch_page(mapping.glide_table, token)
            except GlideApiError as e:
                self._record_error(
                    ctx,
                    e.error_type,
                    describe_error(e.error_type, {"status_code": e.status_code, "detail": str(e)}),
                    record_data={"page_token": token},
                    retryable=e.retryable,
                )
                if ctx.pages == 0:
                    if isinstance(e, GlideAuthError):
                        self._mark_connection_error(mapping, str(e))
                    return self._fail(ctx, f"Sync failed: {e}")
                break

            # the log may have been expired by another process while the page was in flight
            if not self._is_active(ctx):
                return self._superseded(ctx)

            ctx.pages += 1
            batch: List[Tuple[Dict[str, Any], Dict[str, Any]]] = []
            for raw in page.rows:
                row = self._transform(ctx, raw, columns)
                if row is None:
                    continue
                batch.append((raw, row))
                if len(batch) >= self.upsert_batch_size:
                    self._write_batch(ctx, batch)
                    batch = []
            if batch:
                self._write_batch(ctx, batch)

            if not self._set_status(ctx, 'processing', f"Processed {ctx.processed} records"):
                return self._superseded(ctx)
            log.debug(f"Sync #{ctx.sync_log.id}: page {ctx.pages} done, {ctx.processed} processed, {ctx.failed} failed")

            token = page.next
            if not token:
                break
            if token in seen_tokens:
                log.warning(f"Glide returned continuation token {token} twice for {mapping.glide_table}, stopping pagination")
                break
            seen_tokens.add(token)

        return None

    def _convert_row(self, envelope: GlideRow, columns: Dict[str, ColumnMapping]) -> Dict[str, Any]:
        # Identity is set from $rowID regardless of what the column mappings say
        row: Dict[str, Any] = {ROW_ID_COLUMN: envelope.row_id}
        for glide_column, column in columns.items():
            if glide_column == ROW_ID_FIELD or column.target_column == ROW_ID_COLUMN:
                continue
            value = convert_value(envelope.values.get(glide_column), column.data_type)
            if value is None and column.required:
                raise RequiredColumnError(glide_column, column)
            row[column.target_column] = value
        return row

    def _transform(self, ctx: _RunContext, raw: Any, columns: Dict[str, ColumnMapping]) -> Optional[Dict[str, Any]]:
        raw_id = raw.get(ROW_ID_FIELD) if isinstance(raw, dict) else None
        row_key = str(raw_id) if raw_id not in (None, "") else None
        record = raw if isinstance(raw, dict) else {"row": raw}
        try:
            return self._convert_row(GlideRow.parse(raw), columns)
        except RequiredColumnError as e:
            self._record_error(
                ctx,
                SyncErrorType.VALIDATION_ERROR,
                describe_error(SyncErrorType.VALIDATION_ERROR, {
                    "row_id": raw_id, "column": e.column.target_column, "data_type": e.column.data_type.value,
                }),
                record_data=record,
                glide_row_id=row_key,
            )
        except (MalformedRowError, ValueError, TypeError) as e:
            self._record_error(
                ctx,
                SyncErrorType.TRANSFORM_ERROR,
                describe_error(SyncErrorType.TRANSFORM_ERROR, {"row_id": raw_id, "detail": str(e)}),
                record_data=record,
                glide_row_id=row_key,
            )
        return None

    def _write_batch(self, ctx: _RunContext, batch: List[Tuple[Dict[str, Any], Dict[str, Any]]]) -> None:
        """One bulk upsert; on failure fall back to single rows so one bad row fails alone."""
        table = ctx.mapping.target_table
        rows = [row for _, row in batch]
        try:
            self.store.upsert_rows(table, rows)
            self.db.commit()
            written = rows
        except SQLAlchemyError as e:
            self.db.rollback()
            log.warning(f"Bulk upsert of {len(rows)} rows into {table} failed, retrying row by row: {e}")
            written = []
            for raw, row in batch:
                try:
                    self.store.upsert_rows(table, [row])
                    self.db.commit()
                    written.append(row)
                except SQLAlchemyError as row_error:
                    self.db.rollback()
                    self._record_error(
                        ctx,
                        SyncErrorType.DATABASE_ERROR,
                        describe_error(SyncErrorType.DATABASE_ERROR, {
                            "row_id": row[ROW_ID_COLUMN], "table": table, "detail": str(getattr(row_error, "orig", None) or row_error),
                        }),
                        record_data=raw,
                        glide_row_id=row[ROW_ID_COLUMN],
                        retryable=True,
                    )

        ctx.processed += len(written)
        if written:
            self._after_write(ctx, written, f"Resolved by sync #{ctx.sync_log.id}")

    def _after_write(self, ctx: _RunContext, written: List[Dict[str, Any]], note: str) -> None:
        """Clear earlier errors for rows that now synced and register their references."""
        row_ids = [row[ROW_ID_COLUMN] for row in written]
        self.db.query(SyncError).filter(
            SyncError.mapping_id == ctx.mapping.id,
            SyncError.glide_row_id.in_(row_ids),
            SyncError.resolved_at.is_(None)
        ).update(
            {SyncError.resolved_at: _now(), SyncError.resolution_notes: note},
            synchronize_session=False
        )
        self.db.commit()

        try:
            self.resolver.record_candidates(ctx.mapping.target_table, written)
            self.db.commit()
        except (SQLAlchemyError, SchemaLookupError) as e:
            self.db.rollback()
            log.warning(f"Could not record relationship candidates for {ctx.mapping.target_table}: {e}")

    def _record_error(
        self,
        ctx: _RunContext,
        error_type: SyncErrorType,
        message: str,
        record_data: Optional[Any] = None,
        glide_row_id: Optional[str] = None,
        retryable: Optional[bool] = None,
        count: int = 1,
    ) -> SyncError:
        if retryable is None:
            retryable = error_type in (SyncErrorType.RATE_LIMIT, SyncErrorType.NETWORK_ERROR, SyncErrorType.DATABASE_ERROR)

        error = None
        if glide_row_id:
            error = self.db.query(SyncError).filter(
                SyncError.mapping_id == ctx.mapping.id,
                SyncError.glide_row_id == glide_row_id,
                SyncError.error_type == error_type.value,
                SyncError.resolved_at.is_(None)
            ).first()
        if error is None:
            error = SyncError(mapping_id=ctx.mapping.id, error_type=error_type.value, glide_row_id=glide_row_id)
            self.db.add(error)
        error.sync_log_id = ctx.sync_log.id
        error.error_message = message
        error.record_data = record_data
        error.retryable = retryable
        self.db.commit()

        ctx.failed += count
        ctx.errors.append(SyncErrorDetail(
            error_type=error_type.value, message=message, glide_row_id=glide_row_id, retryable=retryable,
        ))
        log.warning(f"Sync #{ctx.sync_log.id} {error_type.value}: {message}")
        return error

    # ------------------------------------------------------------------
    # destination -> Glide
    # ------------------------------------------------------------------

    @staticmethod
    def _to_glide_row(row: Dict[str, Any], columns: Dict[str, ColumnMapping]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if row.get(ROW_ID_COLUMN):
            out[ROW_ID_FIELD] = str(row[ROW_ID_COLUMN])
        for glide_column, column in columns.items():
            if glide_column == ROW_ID_FIELD or column.target_column not in row:
                continue
            out[glide_column] = _jsonable(row[column.target_column])
        return out

    def _write_back_row_ids(self, table: str, keys: List[Any], row_ids: List[Optional[str]]) -> None:
        pk = self.store.primary_key(table)
        if not pk:
            log.warning(f"Cannot store new Glide row IDs: {table} has no primary key")
            return
        for key, row_id in zip(keys, row_ids):
            if key is not None and row_id:
                self.store.set_column_values(table, pk[0], key, {ROW_ID_COLUMN: row_id})
        self.db.commit()

    async def _push(self, ctx: _RunContext, columns: Dict[str, ColumnMapping], only_new: bool) -> None:
        mapping = ctx.mapping
        table = mapping.target_table
        rows = self.store.fetch_rows(table, missing_column=ROW_ID_COLUMN if only_new else None)
        if not rows:
            log.debug(f"Nothing to push from {table}")
            return

        pk = self.store.primary_key(table)
        keys = [row.get(pk[0]) if pk else None for row in rows]
        payload = [self._to_glide_row(row, columns) for row in rows]

        result = await self.connector.write_rows(mapping.glide_table, payload)
        ctx.pushed += result.written_rows

        for failed in result.failed_batches:
            start = failed.offset
            self._record_error(
                ctx,
                SyncErrorType(failed.error_type),
                f"Writing {len(failed.rows)} rows to Glide failed: {failed.error}",
                record_data={
                    "direction": SyncDirection.TO_SOURCE.value,
                    "rows": failed.rows,
                    "keys": [_jsonable(k) for k in keys[start:start + len(failed.rows)]],
                },
                retryable=failed.retryable,
                count=len(failed.rows),
            )

        new_ids = [
            (key, row_id) for row, key, row_id in zip(rows, keys, result.row_ids)
            if not row.get(ROW_ID_COLUMN) and row_id
        ]
        if new_ids:
            self._write_back_row_ids(table, [k for k, _ in new_ids], [r for _, r in new_ids])

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def retry_failed_sync(self, mapping_id: int) -> RetryResult:
        """Re-drive the unresolved, retryable errors of a mapping."""
        mapping = self.db.query(Mapping).filter(Mapping.id == mapping_id).first()
        if mapping is None:
            return RetryResult(mapping_id=mapping_id, success=False, message="Mapping not found")
        if not mapping.enabled:
            return RetryResult(mapping_id=mapping_id, success=False, message="Mapping is disabled")

        errors = self.db.query(SyncError).filter(
            SyncError.mapping_id == mapping_id,
            SyncError.resolved_at.is_(None),
            SyncError.retryable == True  # noqa: E712
        ).order_by(SyncError.id).all()
        if not errors:
            return RetryResult(mapping_id=mapping_id, success=True, message="No retryable errors")

        page_errors = [e for e in errors if isinstance(e.record_data, dict) and "page_token" in e.record_data]
        push_errors = [e for e in errors if isinstance(e.record_data, dict) and e.record_data.get("direction") == SyncDirection.TO_SOURCE.value]
        row_errors = [e for e in errors if e not in page_errors and e not in push_errors and isinstance(e.record_data, dict)]

        retried = resolved = 0
        last_log_id = None

        if page_errors:
            # A page can only be re-read as part of a full pass
            result = await self.run(mapping, trigger_type='retry')
            retried += len(page_errors)
            last_log_id = result.sync_log_id
            if result.success:
                for error in page_errors:
                    if error.resolved_at is None:
                        error.resolved_at = _now()
                        error.resolution_notes = f"Resolved by full re-sync #{result.sync_log_id}"
                        resolved += 1
                self.db.commit()
            for error in row_errors:
                self.db.refresh(error)
            row_errors = [e for e in row_errors if e.resolved_at is None]

        if row_errors or push_errors:
            lock = self.registry.lock_for(mapping.id)
            if lock.locked():
                return RetryResult(mapping_id=mapping_id, success=False, retried=retried, resolved=resolved,
                                   message=ALREADY_RUNNING_MESSAGE)
            async with lock:
                sync_log = self._start_log(mapping, 'retry')
                if sync_log is None:
                    return RetryResult(mapping_id=mapping_id, success=False, retried=retried, resolved=resolved,
                                       message=ALREADY_RUNNING_MESSAGE)
                ctx = _RunContext(mapping, sync_log)
                last_log_id = sync_log.id
                self._set_status(ctx, 'processing', f"Retrying {len(row_errors) + len(push_errors)} failed records")
                try:
                    resolved += self._retry_rows(ctx, row_errors)
                    resolved += await self._retry_pushes(ctx, push_errors)
                except Exception as e:
                    log.error(f"Unexpected error while retrying mapping {mapping_id}: {e}", exc_info=True)
                    self.db.rollback()
                    self._fail(ctx, f"Retry failed: {e}")
                    raise
                retried += len(row_errors) + len(push_errors)
                still = retried - resolved
                self._complete(ctx, message=f"Retry finished: {resolved} resolved, {still} still failing")

        still_failing = retried - resolved
        message = f"Retried {retried} error(s): {resolved} resolved, {still_failing} still failing"
        log.info(f"Mapping {mapping_id}: {message}")
        return RetryResult(
            mapping_id=mapping_id,
            success=still_failing == 0,
            retried=retried,
            resolved=resolved,
            still_failing=still_failing,
            sync_log_id=last_log_id,
            message=message,
        )

    def _retry_rows(self, ctx: _RunContext, errors: List[SyncError]) -> int:
        columns = parse_column_mappings(ctx.mapping.column_mappings)
        table = ctx.mapping.target_table
        resolved = 0
        for error in errors:
            try:
                row = self._convert_row(GlideRow.parse(error.record_data), columns)
                self.store.upsert_rows(table, [row])
                self.db.commit()
            except (MalformedRowError, ValueError, SQLAlchemyError) as e:
                self.db.rollback()
                error.sync_log_id = ctx.sync_log.id
                error.error_message = f"Retry failed: {e}"
                self.db.commit()
                ctx.failed += 1
                continue
            ctx.processed += 1
            resolved += 1
            self._after_write(ctx, [row], f"Resolved by retry #{ctx.sync_log.id}")
        return resolved

    async def _retry_pushes(self, ctx: _RunContext, errors: List[SyncError]) -> int:
        resolved = 0
        for error in errors:
            rows = error.record_data.get("rows") or []
            keys = error.record_data.get("keys") or [None] * len(rows)
            result = await self.connector.write_rows(ctx.mapping.glide_table, rows)
            ctx.pushed += result.written_rows
            if result.success:
                error.resolved_at = _now()
                error.resolution_notes = f"Resolved by retry #{ctx.sync_log.id}"
                self.db.commit()
                resolved += 1
                new_ids = [
                    (key, row_id) for row, key, row_id in zip(rows, keys, result.row_ids)
                    if not row.get(ROW_ID_FIELD) and row_id
                ]
                if new_ids:
                    self._write_back_row_ids(ctx.mapping.target_table, [k for k, _ in new_ids], [r for _, r in new_ids])
            else:
                error.sync_log_id = ctx.sync_log.id
                error.error_message = f"Retry failed: {result.failed_batches[0].error}"
                self.db.commit()
                ctx.failed += len(rows)
        return resolved


async def batch_sync(
    db: Session,
    mapping_ids: List[int],
    connector_factory: ConnectorFactory,
    trigger_type: str = 'batch',
    cancel_event: Optional[asyncio.Event] = None,
) -> List[SyncResult]:
    """Sync several mappings one after another; a failing mapping does not stop the rest."""
    results: List[SyncResult] = []
    services: Dict[int, SyncService] = {}
    store = DestinationStore(db)
    try:
        for mapping_id in mapping_ids:
            if cancel_event is not None and cancel_event.is_set():
                break
            mapping = db.query(Mapping).filter(Mapping.id == mapping_id).first()
            if mapping is None:
                results.append(SyncResult(mapping_id=mapping_id, success=False, state=RunState.FAILED, message="Mapping not found"))
                continue

            if mapping.connection_id not in services:
                services[mapping.connection_id] = SyncService(connector_factory(mapping.connection), db, store=store)
            service = services[mapping.connection_id]
            try:
                results.append(await service.run(mapping, trigger_type=trigger_type, cancel_event=cancel_event))
            except Exception as e:
                log.error(f"Batch sync of mapping {mapping_id} raised: {e}", exc_info=True)
                results.append(SyncResult(mapping_id=mapping_id, success=False, state=RunState.FAILED, message=f"Sync failed: {e}"))
    finally:
        for service in services.values():
            await service.connector.close()

    succeeded = sum(1 for r in results if r.success)
    log.info(f"Batch sync finished: {succeeded}/{len(results)} mappings succeeded")
    return results


def get_mapping_status(db: Session, mapping: Mapping) -> MappingSyncStatus:
    latest = db.query(SyncLog).filter(SyncLog.mapping_id == mapping.id).order_by(SyncLog.id.desc()).first()
    last_completed = db.query(SyncLog).filter(
        SyncLog.mapping_id == mapping.id,
        SyncLog.status == 'completed'
    ).order_by(SyncLog.id.desc()).first()
    unresolved = db.query(SyncError).filter(
        SyncError.mapping_id == mapping.id,
        SyncError.resolved_at.is_(None)
    ).count()

    return MappingSyncStatus(
        mapping_id=mapping.id,
        enabled=mapping.enabled,
        current_status=latest.status if latest else 'idle',
        is_running=bool(latest and latest.status in NON_TERMINAL_STATUSES),
        last_sync_log_id=latest.id if latest else None,
        last_started_at=latest.started_at if latest else None,
        last_completed_at=last_completed.completed_at if last_completed else None,
        records_processed=latest.records_processed if latest else 0,
        unresolved_errors=unresolved,
    )


def get_sync_stats(db: Session, mapping_id: Optional[int] = None) -> SyncStats:
    logs = db.query(SyncLog)
    errors = db.query(SyncError).filter(SyncError.resolved_at.is_(None))
    if mapping_id is not None:
        logs = logs.filter(SyncLog.mapping_id == mapping_id)
        errors = errors.filter(SyncError.mapping_id == mapping_id)

    by_type = errors.with_entities(SyncError.error_type, func.count(SyncError.id)).group_by(SyncError.error_type).all()
    return SyncStats(
        total_syncs=logs.count(),
        successful=logs.filter(SyncLog.status == 'completed').count(),
        failed=logs.filter(SyncLog.status == 'failed').count(),
        running=logs.filter(SyncLog.status.in_(NON_TERMINAL_STATUSES)).count(),
        records_processed=logs.with_entities(func.coalesce(func.sum(SyncLog.records_processed), 0)).scalar() or 0,
        unresolved_errors=errors.count(),
        errors_by_type={error_type: count for error_type, count in by_type},
    )
