"""Shared API dependencies."""

from app.services.connection_service import get_connector_instance
from app.services.sync_service import ConnectorFactory


def get_connector_factory() -> ConnectorFactory:
    """Builds connectors from stored connections; overridden in tests."""
    return get_connector_instance
