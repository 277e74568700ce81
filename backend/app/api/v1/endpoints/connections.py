from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import logging

from app.api.deps import get_connector_factory
from app.connectors.base import GlideColumn, GlideTable
from app.connectors.exceptions import GlideApiError
from app.database import get_db
from app.models.connection import Connection
from app.schemas.connection import ConnectionCreate, ConnectionInDB, ConnectionTestResponse, ConnectionUpdate
from app.services.connection_service import check_connection
from app.services.sync_service import ConnectorFactory
from app.utils.encrypt import encrypt_data

log = logging.getLogger(__name__)

router = APIRouter()


def _get_connection(db: Session, connection_id: int) -> Connection:
    db_conn = db.query(Connection).filter(Connection.id == connection_id).first()
    if db_conn is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    return db_conn


def _api_error(e: GlideApiError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"message": str(e), "error_type": e.error_type.value, "status_code": e.status_code},
    )


@router.post("/", response_model=ConnectionInDB, status_code=status.HTTP_201_CREATED)
async def create_connection(connection: ConnectionCreate, db: Session = Depends(get_db)):
    """Create a Glide connection; the API key is encrypted before storage."""
    db_conn = Connection(
        app_id=connection.app_id,
        app_name=connection.app_name,
        api_key=encrypt_data(connection.api_key),
        settings=connection.settings,
        status='unknown',
    )
    db.add(db_conn)
    db.commit()
    db.refresh(db_conn)
    log.info(f"Created connection {db_conn.id} for Glide app {db_conn.app_id}")
    return db_conn


@router.get("/", response_model=List[ConnectionInDB])
async def read_connections(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    return db.query(Connection).order_by(Connection.id).offset(skip).limit(limit).all()


@router.get("/{connection_id}", response_model=ConnectionInDB)
async def read_connection(connection_id: int, db: Session = Depends(get_db)):
    return _get_connection(db, connection_id)


@router.patch("/{connection_id}", response_model=ConnectionInDB)
async def update_connection(connection_id: int, connection: ConnectionUpdate, db: Session = Depends(get_db)):
    db_conn = _get_connection(db, connection_id)

    update_data = connection.model_dump(exclude_unset=True)
    if update_data.get("api_key"):
        update_data["api_key"] = encrypt_data(update_data["api_key"])
        # new credentials have not been tested yet
        db_conn.status = 'unknown'
    else:
        update_data.pop("api_key", None)

    for key, value in update_data.items():
        setattr(db_conn, key, value)

    db.commit()
    db.refresh(db_conn)
    return db_conn


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connection(connection_id: int, db: Session = Depends(get_db)):
    """Delete a connection together with its mappings, logs and errors."""
    db_conn = _get_connection(db, connection_id)
    db.delete(db_conn)
    db.commit()
    log.info(f"Deleted connection {connection_id}")


@router.post("/{connection_id}/test", response_model=ConnectionTestResponse)
async def test_connection(
    connection_id: int,
    db: Session = Depends(get_db),
    connector_factory: ConnectorFactory = Depends(get_connector_factory),
):
    """Probe the Glide app and store the resulting status on the connection."""
    db_conn = _get_connection(db, connection_id)
    async with connector_factory(db_conn) as connector:
        result = await check_connection(db, db_conn, connector)
    return ConnectionTestResponse(success=result.success, status=db_conn.status, message=result.message)


@router.get("/{connection_id}/tables", response_model=List[GlideTable])
async def list_tables(
    connection_id: int,
    db: Session = Depends(get_db),
    connector_factory: ConnectorFactory = Depends(get_connector_factory),
):
    db_conn = _get_connection(db, connection_id)
    try:
        async with connector_factory(db_conn) as connector:
            return await connector.list_tables()
    except GlideApiError as e:
        raise _api_error(e)


@router.get("/{connection_id}/tables/{table_id}/columns", response_model=List[GlideColumn])
async def list_table_columns(
    connection_id: int,
    table_id: str,
    db: Session = Depends(get_db),
    connector_factory: ConnectorFactory = Depends(get_connector_factory),
):
    db_conn = _get_connection(db, connection_id)
    try:
        async with connector_factory(db_conn) as connector:
            return await connector.get_table_columns(table_id)
    except GlideApiError as e:
        raise _api_error(e)
