"""Database models."""

from app.models.connection import Connection
from app.models.mapping import Mapping
from app.models.sync_log import SyncLog
from app.models.sync_error import SyncError
from app.models.relationship import RelationshipMapping, RelationshipCandidate
from app.models.schedule import Schedule

__all__ = [
    "Connection",
    "Mapping",
    "SyncLog",
    "SyncError",
    "RelationshipMapping",
    "RelationshipCandidate",
    "Schedule",
]
