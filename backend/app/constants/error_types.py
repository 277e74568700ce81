from enum import Enum
from typing import Dict, Optional, Tuple

class SyncErrorType(Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TRANSFORM_ERROR = "TRANSFORM_ERROR"
    API_ERROR = "API_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK_ERROR = "NETWORK_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"

# Retryable unless the status code says otherwise (see classify_status_code)
DEFAULT_RETRYABLE = {
    SyncErrorType.VALIDATION_ERROR: False,
    SyncErrorType.TRANSFORM_ERROR: False,
    SyncErrorType.API_ERROR: False,
    SyncErrorType.RATE_LIMIT: True,
    SyncErrorType.NETWORK_ERROR: True,
    SyncErrorType.DATABASE_ERROR: True,
}

def classify_status_code(status_code: Optional[int]) -> Tuple[SyncErrorType, bool]:
    """Map an HTTP status from the Glide API to an error kind and retryability."""
    if status_code is None:
        return SyncErrorType.NETWORK_ERROR, True
    if status_code == 429:
        return SyncErrorType.RATE_LIMIT, True
    if status_code >= 500:
        return SyncErrorType.API_ERROR, True
    return SyncErrorType.API_ERROR, False

def is_retryable(error_type: SyncErrorType, status_code: Optional[int] = None) -> bool:
    if error_type == SyncErrorType.API_ERROR and status_code is not None:
        return classify_status_code(status_code)[1]
    return DEFAULT_RETRYABLE.get(error_type, False)


class _Context(dict):
    def __missing__(self, key):
        return "?"

def describe_error(error_type: SyncErrorType, context: Dict) -> str:
    templates = {
        SyncErrorType.VALIDATION_ERROR: "Row {row_id}: required column '{column}' is empty or invalid for type {data_type}.",
        SyncErrorType.TRANSFORM_ERROR: "Row {row_id} could not be transformed: {detail}",
        SyncErrorType.API_ERROR: "Glide API returned HTTP {status_code}: {detail}",
        SyncErrorType.RATE_LIMIT: "Glide API rate limit reached (HTTP 429): {detail}",
        SyncErrorType.NETWORK_ERROR: "Could not reach the Glide API: {detail}",
        SyncErrorType.DATABASE_ERROR: "Row {row_id} could not be written to {table}: {detail}",
    }
    template = templates.get(error_type, "{detail}")
    return template.format_map(_Context(context))
