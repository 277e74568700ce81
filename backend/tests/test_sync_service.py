import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from app.connectors.exceptions import GlideApiError, GlideAuthError, GlideNetworkError, GlideRateLimitError
from app.constants.glide import ROW_ID_COLUMN
from app.models.mapping import Mapping
from app.models.sync_error import SyncError
from app.models.sync_log import SyncLog
from app.schemas.sync import RunState
from app.services.destination_store import DestinationStore
from app.services.run_registry import RunRegistry
from app.services.sync_service import (
    ALREADY_RUNNING_MESSAGE,
    SyncService,
    batch_sync,
    get_mapping_status,
    get_sync_stats,
)


class FlakyStore(DestinationStore):
    """Fails any upsert that touches one of the broken row ids."""

    def __init__(self, session, broken=()):
        super().__init__(session)
        self.broken = set(broken)

    def upsert_rows(self, table_name, rows, conflict_column=ROW_ID_COLUMN):
        if any(row.get(conflict_column) in self.broken for row in rows):
            raise IntegrityError("INSERT INTO " + table_name, {}, Exception("constraint failed"))
        return super().upsert_rows(table_name, rows, conflict_column)


class ExplodingStore(DestinationStore):
    def upsert_rows(self, table_name, rows, conflict_column=ROW_ID_COLUMN):
        raise RuntimeError("disk on fire")


def account(row_id, name, **extra):
    row = {"$rowID": row_id, "Name": name}
    row.update(extra)
    return row


def destination_rows(db, table="gl_accounts"):
    return DestinationStore(db).fetch_rows(table)


@pytest.fixture
def make_service(db):
    def _make(connector, **kwargs):
        kwargs.setdefault("registry", RunRegistry())
        return SyncService(connector, db, **kwargs)
    return _make


@pytest.mark.asyncio
async def test_acme_row_is_upserted(db, connection, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(pages=[[account("r1", "Acme", wvzr1="2024-01-05T00:00:00Z")]])

    result = await make_service(connector).run(mapping)

    assert result.success
    assert result.state == RunState.COMPLETED
    assert result.records_processed == 1
    assert result.errors == []

    rows = destination_rows(db)
    assert len(rows) == 1
    assert rows[0]["glide_row_id"] == "r1"
    assert rows[0]["account_name"] == "Acme"
    assert rows[0]["date_added_client"].replace(tzinfo=None) == datetime(2024, 1, 5)

    sync_log = db.query(SyncLog).one()
    assert sync_log.status == "completed"
    assert sync_log.message == "Sync completed"
    assert sync_log.trigger_type == "manual"
    assert sync_log.records_processed == 1
    assert sync_log.completed_at is not None
    assert connection.last_sync is not None


@pytest.mark.asyncio
async def test_running_twice_is_idempotent(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(pages=[[account("r1", "Acme"), account("r2", "Globex")]])
    service = make_service(connector)

    await service.run(mapping)
    first = destination_rows(db)
    await service.run(mapping)
    second = destination_rows(db)

    assert first == second
    assert len(second) == 2
    assert db.query(SyncLog).filter(SyncLog.status == "completed").count() == 2


@pytest.mark.asyncio
async def test_changed_row_is_updated_in_place(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    await make_service(make_connector(pages=[[account("r1", "Acme")]])).run(mapping)
    original_id = destination_rows(db)[0]["id"]

    await make_service(make_connector(pages=[[account("r1", "Acme Corp")]])).run(mapping)

    rows = destination_rows(db)
    assert len(rows) == 1
    assert rows[0]["id"] == original_id
    assert rows[0]["account_name"] == "Acme Corp"


@pytest.mark.asyncio
async def test_duplicate_ids_in_one_page_keep_last_row(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(pages=[[account("r1", "First"), account("r1", "Second")]])

    await make_service(connector).run(mapping)

    rows = destination_rows(db)
    assert [(r["glide_row_id"], r["account_name"]) for r in rows] == [("r1", "Second")]


@pytest.mark.asyncio
async def test_bad_rows_do_not_block_good_rows(db, make_mapping, make_connector, make_service, account_columns):
    account_columns["Name"]["required"] = True
    mapping = make_mapping(column_mappings=account_columns)
    connector = make_connector(pages=[[
        account("r1", "Acme"),
        account("r2", ""),
        {"Name": "no row id"},
        account("r3", "Globex"),
    ]])

    result = await make_service(connector).run(mapping)

    assert result.success
    assert result.records_processed == 2
    assert result.failed_records == 2
    assert {e.error_type for e in result.errors} == {"VALIDATION_ERROR", "TRANSFORM_ERROR"}
    assert result.message == "Sync completed with 2 error(s)"
    assert [r["glide_row_id"] for r in destination_rows(db)] == ["r1", "r3"]

    validation = db.query(SyncError).filter(SyncError.error_type == "VALIDATION_ERROR").one()
    assert validation.glide_row_id == "r2"
    assert not validation.retryable
    assert validation.record_data == {"$rowID": "r2", "Name": ""}


@pytest.mark.asyncio
async def test_database_failure_isolated_to_one_row_then_retried(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    store = FlakyStore(db, broken={"r2"})
    connector = make_connector(pages=[[account("r1", "Acme"), account("r2", "Broken"), account("r3", "Globex")]])
    service = make_service(connector, store=store)

    result = await service.run(mapping)

    assert result.success
    assert result.records_processed == 2
    assert result.failed_records == 1
    error = db.query(SyncError).one()
    assert error.error_type == "DATABASE_ERROR"
    assert error.retryable
    assert error.glide_row_id == "r2"
    assert [r["glide_row_id"] for r in destination_rows(db)] == ["r1", "r3"]

    store.broken.clear()
    retry = await service.retry_failed_sync(mapping.id)

    assert retry.success
    assert retry.retried == 1
    assert retry.resolved == 1
    assert retry.still_failing == 0
    db.refresh(error)
    assert error.resolved_at is not None
    assert error.resolution_notes.startswith("Resolved by retry")
    assert sorted(r["glide_row_id"] for r in destination_rows(db)) == ["r1", "r2", "r3"]
    assert db.query(SyncLog).order_by(SyncLog.id.desc()).first().trigger_type == "retry"


@pytest.mark.asyncio
async def test_retry_without_errors(make_mapping, make_connector, make_service):
    mapping = make_mapping()
    result = await make_service(make_connector()).retry_failed_sync(mapping.id)
    assert result.success
    assert result.message == "No retryable errors"


@pytest.mark.asyncio
async def test_errors_are_deduplicated_and_resolved_by_later_sync(db, make_mapping, make_connector, make_service, account_columns):
    account_columns["Name"]["required"] = True
    mapping = make_mapping(column_mappings=account_columns)
    broken = make_connector(pages=[[account("r1", "")]])

    await make_service(broken).run(mapping)
    await make_service(broken).run(mapping)

    errors = db.query(SyncError).all()
    assert len(errors) == 1
    latest_log = db.query(SyncLog).order_by(SyncLog.id.desc()).first()
    assert errors[0].sync_log_id == latest_log.id

    fixed = await make_service(make_connector(pages=[[account("r1", "Acme")]])).run(mapping)

    db.refresh(errors[0])
    assert errors[0].resolved_at is not None
    assert errors[0].resolution_notes == f"Resolved by sync #{fixed.sync_log_id}"


@pytest.mark.asyncio
async def test_pagination_visits_every_page(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(pages=[
        [account("r1", "A"), account("r2", "B")],
        [account("r3", "C")],
        [account("r4", "D")],
    ])

    result = await make_service(connector, upsert_batch_size=1).run(mapping)

    assert connector.fetch_calls == [None, "1", "2"]
    assert result.records_processed == 4
    assert len(destination_rows(db)) == 4


@pytest.mark.asyncio
async def test_later_page_failure_is_recorded_and_retried(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(
        pages=[[account("r1", "A")], [account("r2", "B")], [account("r3", "C")]],
        page_errors={1: GlideApiError("Glide API HTTP 503: busy", status_code=503)},
    )
    service = make_service(connector)

    result = await service.run(mapping)

    assert result.success
    assert result.records_processed == 1
    assert connector.fetch_calls == [None, "1"]
    error = db.query(SyncError).one()
    assert error.error_type == "API_ERROR"
    assert error.retryable
    assert error.record_data == {"page_token": "1"}

    connector.page_errors.clear()
    retry = await service.retry_failed_sync(mapping.id)

    assert retry.success
    assert retry.resolved == 1
    db.refresh(error)
    assert error.resolution_notes.startswith("Resolved by full re-sync")
    assert len(destination_rows(db)) == 3


@pytest.mark.asyncio
async def test_first_page_failure_fails_run(db, connection, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(page_errors={0: GlideAuthError("Glide authentication failed (HTTP 401)", status_code=401)})

    result = await make_service(connector).run(mapping)

    assert not result.success
    assert result.state == RunState.FAILED
    assert result.message.startswith("Sync failed")
    assert db.query(SyncLog).one().status == "failed"
    assert connection.status == "error"
    assert [e.error_type for e in result.errors] == ["API_ERROR"]
    assert not result.errors[0].retryable


@pytest.mark.asyncio
async def test_first_page_timeout_is_recorded_and_retried(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    connector = make_connector(
        pages=[[account("r1", "Acme")]],
        page_errors={0: GlideNetworkError("Glide API request timed out", timeout=True)},
    )
    service = make_service(connector)

    result = await service.run(mapping)

    assert result.state == RunState.FAILED
    assert len(result.errors) == 1
    assert result.errors[0].error_type == "NETWORK_ERROR"
    assert result.errors[0].retryable
    error = db.query(SyncError).one()
    assert error.record_data == {"page_token": None}
    assert error.sync_log_id == result.sync_log_id

    connector.page_errors.clear()
    retry = await service.retry_failed_sync(mapping.id)

    assert retry.success
    assert retry.resolved == 1
    assert len(destination_rows(db)) == 1


@pytest.mark.asyncio
async def test_disabled_mapping_is_refused(db, make_mapping, make_connector, make_service):
    mapping = make_mapping(enabled=False)
    connector = make_connector(pages=[[account("r1", "Acme")]])

    result = await make_service(connector).run(mapping)

    assert not result.success
    assert result.message == "Mapping is disabled"
    assert db.query(SyncLog).count() == 0
    assert connector.fetch_calls == []


@pytest.mark.asyncio
async def test_invalid_mapping_is_refused(db, make_mapping, make_connector, make_service):
    mapping = make_mapping(target_table="gl_missing")

    result = await make_service(make_connector()).run(mapping)

    assert not result.success
    assert result.message.startswith("Mapping is invalid")
    assert db.query(SyncLog).count() == 0


@pytest.mark.asyncio
async def test_active_run_in_database_blocks_second_run(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    db.add(SyncLog(mapping_id=mapping.id, status="processing", started_at=datetime.now(timezone.utc)))
    db.commit()

    result = await make_service(make_connector()).run(mapping)

    assert not result.success
    assert result.message == ALREADY_RUNNING_MESSAGE
    assert db.query(SyncLog).count() == 1


@pytest.mark.asyncio
async def test_stale_run_is_expired(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    stale = SyncLog(mapping_id=mapping.id, status="processing", started_at=datetime.now(timezone.utc) - timedelta(hours=2))
    db.add(stale)
    db.commit()

    result = await make_service(make_connector(pages=[[account("r1", "Acme")]])).run(mapping)

    assert result.success
    db.refresh(stale)
    assert stale.status == "failed"
    assert "did not finish" in stale.message


@pytest.mark.asyncio
async def test_expired_run_stops_and_keeps_its_failed_log(db, session_factory, make_mapping, make_connector):
    mapping = make_mapping()
    gate = asyncio.Event()
    slow = make_connector(pages=[[account("r1", "Slow")]], gate=gate)

    task = asyncio.create_task(SyncService(slow, db, registry=RunRegistry()).run(mapping))
    while not slow.fetch_calls:
        await asyncio.sleep(0)

    first_log = db.query(SyncLog).one()
    db.query(SyncLog).filter(SyncLog.id == first_log.id).update(
        {SyncLog.started_at: datetime.now(timezone.utc) - timedelta(hours=2)}, synchronize_session=False
    )
    db.commit()

    other = session_factory()
    try:
        other_mapping = other.get(Mapping, mapping.id)
        second = await SyncService(
            make_connector(pages=[[account("r2", "Fast")]]), other, registry=RunRegistry()
        ).run(other_mapping)
    finally:
        other.close()
    assert second.success

    gate.set()
    first = await task

    assert not first.success
    assert first.state == RunState.FAILED
    assert "did not finish" in first.message
    db.refresh(first_log)
    assert first_log.status == "failed"
    assert "did not finish" in first_log.message
    assert [r["glide_row_id"] for r in destination_rows(db)] == ["r2"]


@pytest.mark.asyncio
async def test_concurrent_run_in_same_process_is_refused(db, make_mapping, make_connector):
    mapping = make_mapping()
    registry = RunRegistry()
    gate = asyncio.Event()
    connector = make_connector(pages=[[account("r1", "Acme")]], gate=gate)

    task = asyncio.create_task(SyncService(connector, db, registry=registry).run(mapping))
    while not connector.fetch_calls:
        await asyncio.sleep(0)

    assert registry.is_running(mapping.id)
    second = await SyncService(make_connector(), db, registry=registry).run(mapping)
    assert second.message == ALREADY_RUNNING_MESSAGE

    gate.set()
    first = await task
    assert first.success
    assert not registry.is_running(mapping.id)


@pytest.mark.asyncio
async def test_cancellation_stops_between_pages(db, make_mapping, make_connector, make_service):
    mapping = make_mapping()
    event = asyncio.Event()
    connector = make_connector(
        pages=[[account("r1", "A")], [account("r2", "B")], [account("r3", "C")]],
        on_fetch=lambda index: event.set() if index == 1 else None,
    )

    result = await make_service(connector).run(mapping, cancel_event=event)

    assert not result.success
    assert result.state == RunState.CANCELLED
    assert result.message == "Sync cancelled"
    assert result.records_processed == 2
    assert connector.fetch_calls == [None, "1"]
    assert db.query(SyncLog).one().status == "failed"


@pytest.mark.asyncio
async def test_cancel_through_registry(db, make_mapping, make_connector):
    mapping = make_mapping()
    registry = RunRegistry()
    gate = asyncio.Event()
    connector = make_connector(pages=[[account("r1", "A")], [account("r2", "B")]], gate=gate)

    task = asyncio.create_task(SyncService(connector, db, registry=registry).run(mapping))
    while not connector.fetch_calls:
        await asyncio.sleep(0)

    assert registry.cancel(mapping.id)
    gate.set()
    result = await task

    assert result.state == RunState.CANCELLED
    assert result.records_processed == 1
    assert not registry.cancel(mapping.id)


@pytest.mark.asyncio
async def test_unexpected_error_fails_log_and_propagates(db, make_mapping, make_connector):
    mapping = make_mapping()
    registry = RunRegistry()
    service = SyncService(make_connector(pages=[[account("r1", "A")]]), db, store=ExplodingStore(db), registry=registry)

    with pytest.raises(RuntimeError):
        await service.run(mapping)

    sync_log = db.query(SyncLog).one()
    assert sync_log.status == "failed"
    assert "disk on fire" in sync_log.message
    assert not registry.is_running(mapping.id)


@pytest.mark.asyncio
async def test_push_to_glide_writes_back_new_row_ids(db, make_mapping, make_connector, make_service):
    mapping = make_mapping(sync_direction="to_source")
    table = DestinationStore(db).table("gl_accounts")
    db.execute(table.insert(), [{"account_name": "Local One"}, {"account_name": "Local Two"}])
    db.commit()
    connector = make_connector()

    result = await make_service(connector).run(mapping)

    assert result.success
    assert result.pushed_records == 2
    assert connector.fetch_calls == []
    assert [row["Name"] for row in connector.written] == ["Local One", "Local Two"]
    assert [r["glide_row_id"] for r in destination_rows(db)] == ["new-1", "new-2"]


@pytest.mark.asyncio
async def test_failed_push_is_recorded_and_retried(db, make_mapping, make_connector, make_service):
    mapping = make_mapping(sync_direction="to_source")
    table = DestinationStore(db).table("gl_accounts")
    db.execute(table.insert(), [{"account_name": "Local One"}, {"account_name": "Local Two"}])
    db.commit()
    connector = make_connector(write_error=GlideRateLimitError("Glide rate limit exceeded"))
    service = make_service(connector)

    result = await service.run(mapping)

    assert result.success
    assert result.failed_records == 2
    error = db.query(SyncError).one()
    assert error.error_type == "RATE_LIMIT"
    assert error.retryable
    assert error.record_data["direction"] == "to_source"
    assert error.record_data["keys"] == [1, 2]

    connector.write_error = None
    retry = await service.retry_failed_sync(mapping.id)

    assert retry.success
    assert retry.resolved == 1
    assert [r["glide_row_id"] for r in destination_rows(db)] == ["new-1", "new-2"]


@pytest.mark.asyncio
async def test_both_directions_push_only_new_local_rows(db, make_mapping, make_connector, make_service):
    mapping = make_mapping(sync_direction="both")
    table = DestinationStore(db).table("gl_accounts")
    db.execute(table.insert(), [{"account_name": "Local Only"}])
    db.commit()
    connector = make_connector(pages=[[account("r1", "Acme")]])

    result = await make_service(connector).run(mapping)

    assert result.records_processed == 1
    assert result.pushed_records == 1
    assert [row["Name"] for row in connector.written] == ["Local Only"]
    assert sorted(r["glide_row_id"] for r in destination_rows(db)) == ["new-1", "r1"]


@pytest.mark.asyncio
async def test_batch_sync_continues_past_failures(db, make_mapping, make_connector):
    good = make_mapping()
    disabled = make_mapping(enabled=False)
    created = []

    def factory(db_conn):
        connector = make_connector(pages=[[account("r1", "Acme")]])
        created.append(connector)
        return connector

    results = await batch_sync(db, [good.id, disabled.id, 999], factory)

    assert [r.success for r in results] == [True, False, False]
    assert results[1].message == "Mapping is disabled"
    assert results[2].message == "Mapping not found"
    assert len(created) == 1
    assert created[0].closed


@pytest.mark.asyncio
async def test_status_and_stats(db, make_mapping, make_connector, make_service, account_columns):
    account_columns["Name"]["required"] = True
    mapping = make_mapping(column_mappings=account_columns)
    await make_service(make_connector(pages=[[account("r1", "Acme"), account("r2", "")]])).run(mapping)
    await make_service(make_connector(page_errors={0: GlideApiError("boom", status_code=500)})).run(mapping)

    status = get_mapping_status(db, mapping)
    assert status.current_status == "failed"
    assert not status.is_running
    assert status.last_completed_at is not None
    assert status.unresolved_errors == 2

    stats = get_sync_stats(db)
    assert stats.total_syncs == 2
    assert stats.successful == 1
    assert stats.failed == 1
    assert stats.records_processed == 1
    assert stats.errors_by_type == {"VALIDATION_ERROR": 1, "API_ERROR": 1}
