import asyncio
import copy
import os

from cryptography.fernet import Fernet

# Must be set before the app package reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.api.deps import get_connector_factory
from app.connectors.base import (
    BaseRecordConnector,
    ConnectionTestResult,
    FailedBatch,
    GlideColumn,
    GlidePage,
    GlideTable,
    WriteResult,
)
from app.database import Base, get_db
from app.main import app
from app.models.connection import Connection
from app.models.mapping import Mapping
from app.utils.encrypt import encrypt_data

# Destination tables the sync writes into; not part of the app's own metadata
destination_metadata = MetaData()

Table(
    "gl_accounts", destination_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("glide_row_id", String(255), unique=True),
    Column("account_name", String(255)),
    Column("email", String(255)),
    Column("active", Boolean),
    Column("balance", Float),
    Column("date_added_client", DateTime(timezone=True)),
    Column("rowid_users", String(255)),
    Column("owner_id", Integer),
)

Table(
    "gl_users", destination_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("glide_row_id", String(255), unique=True),
    Column("name", String(255)),
)

# No unique constraint on glide_row_id: exercises the emulated upsert
Table(
    "notes", destination_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("glide_row_id", String(255)),
    Column("body", String(1000)),
)

ACCOUNT_COLUMNS = {
    "$rowID": {"glide_column_name": "Row ID", "target_column": "glide_row_id", "data_type": "string"},
    "Name": {"glide_column_name": "Name", "target_column": "account_name", "data_type": "string"},
    "wvzr1": {"glide_column_name": "Date Added", "target_column": "date_added_client", "data_type": "date-time"},
}


class FakeGlideConnector(BaseRecordConnector):
    """Scripted stand-in for GlideConnector: pages are served by index, writes are recorded."""

    def __init__(
        self,
        pages: Optional[List[List[Any]]] = None,
        page_errors: Optional[Dict[int, Exception]] = None,
        write_error: Optional[Exception] = None,
        on_fetch: Optional[Callable[[int], None]] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        super().__init__({})
        self.pages = pages if pages is not None else [[]]
        self.page_errors = page_errors or {}
        self.write_error = write_error
        self.on_fetch = on_fetch
        self.gate = gate
        self.fetch_calls: List[Optional[str]] = []
        self.written: List[Dict[str, Any]] = []
        self.closed = False
        self._next_id = 0

    async def test_connection(self, table_name: Optional[str] = None) -> ConnectionTestResult:
        return ConnectionTestResult(success=True, message="Connection successful")

    async def list_tables(self) -> List[GlideTable]:
        return [GlideTable(id="native-table-accounts", display_name="Accounts")]

    async def get_table_columns(self, table_id: str) -> List[GlideColumn]:
        return [GlideColumn(id="Name", name="Name", type="string")]

    async def fetch_page(self, table_id: str, continuation_token: Optional[str] = None) -> GlidePage:
        index = int(continuation_token) if continuation_token else 0
        self.fetch_calls.append(continuation_token)
        if self.on_fetch is not None:
            self.on_fetch(index)
        if self.gate is not None:
            await self.gate.wait()
        if index in self.page_errors:
            raise self.page_errors[index]
        next_token = str(index + 1) if index + 1 < len(self.pages) else None
        return GlidePage(rows=self.pages[index], next=next_token)

    async def write_rows(self, table_id: str, rows: List[Dict[str, Any]]) -> WriteResult:
        result = WriteResult(batches_attempted=1)
        if self.write_error is not None:
            result.failed_batches.append(FailedBatch(
                index=0,
                offset=0,
                rows=rows,
                error=str(self.write_error),
                status_code=getattr(self.write_error, "status_code", None),
                error_type=self.write_error.error_type.value,
                retryable=self.write_error.retryable,
            ))
            result.row_ids = [None] * len(rows)
            return result

        result.batches_succeeded = 1
        result.written_rows = len(rows)
        for row in rows:
            self.written.append(row)
            if row.get("$rowID"):
                result.row_ids.append(row["$rowID"])
            else:
                self._next_id += 1
                result.row_ids.append(f"new-{self._next_id}")
        return result

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    destination_metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def connection(db: Session) -> Connection:
    conn = Connection(app_id="app-123", api_key=encrypt_data("secret-key"), app_name="CRM")
    db.add(conn)
    db.commit()
    db.refresh(conn)
    return conn


@pytest.fixture
def make_mapping(db: Session, connection: Connection):
    def _make(**overrides) -> Mapping:
        values = {
            "connection_id": connection.id,
            "glide_table": "native-table-accounts",
            "glide_table_display_name": "Accounts",
            "target_table": "gl_accounts",
            "column_mappings": copy.deepcopy(ACCOUNT_COLUMNS),
            "sync_direction": "to_destination",
            "enabled": True,
        }
        values.update(overrides)
        mapping = Mapping(**values)
        db.add(mapping)
        db.commit()
        db.refresh(mapping)
        return mapping
    return _make


@pytest.fixture
def account_columns() -> Dict[str, Dict[str, Any]]:
    return copy.deepcopy(ACCOUNT_COLUMNS)


@pytest.fixture
def make_connector():
    return FakeGlideConnector


@pytest.fixture
def fake_connector() -> FakeGlideConnector:
    return FakeGlideConnector()


@pytest.fixture
def client(session_factory, fake_connector) -> TestClient:
    # Override dependency for test database session (rollback after each request)
    def override_get_db() -> Session:
        session = session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_connector_factory] = lambda: (lambda db_conn: fake_connector)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
