import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from app.config import settings
from app.connectors.base import BaseRecordConnector, ConnectionTestResult
from app.connectors.glide_connector import GlideConnector
from app.models.connection import Connection
from app.utils.encrypt import decrypt_data

log = logging.getLogger(__name__)


def connector_config(db_conn: Connection) -> Dict[str, Any]:
    """Build a connector config from a stored connection, decrypting its API key."""
    conn_settings = db_conn.settings or {}
    return {
        "app_id": db_conn.app_id,
        "api_key": decrypt_data(db_conn.api_key),
        "base_url": conn_settings.get("base_url") or settings.glide_api_base_url,
        "timeout": conn_settings.get("timeout") or settings.glide_timeout_seconds,
        "write_batch_size": conn_settings.get("write_batch_size") or settings.glide_write_batch_size,
    }


def get_connector_instance(db_conn: Connection) -> BaseRecordConnector:
    return GlideConnector(connector_config(db_conn))


async def check_connection(db: Session, db_conn: Connection, connector: BaseRecordConnector) -> ConnectionTestResult:
    """Probe the Glide app and persist the outcome on the connection."""
    result = await connector.test_connection()
    db_conn.status = 'active' if result.success else 'error'
    db_conn.status_message = result.message
    db.commit()
    db.refresh(db_conn)
    log.info(f"Connection {db_conn.id} ({db_conn.app_id}) test: {db_conn.status}")
    return result
