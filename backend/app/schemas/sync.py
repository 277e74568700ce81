from enum import Enum
from datetime import datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, ConfigDict, Field

class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

class SyncErrorDetail(BaseModel):
    error_type: str
    message: str
    glide_row_id: Optional[str] = None
    retryable: bool = False

class SyncResult(BaseModel):
    mapping_id: Optional[int] = None
    success: bool
    state: RunState
    sync_log_id: Optional[int] = None
    records_processed: int = 0
    failed_records: int = 0
    pushed_records: int = 0
    errors: List[SyncErrorDetail] = Field(default_factory=list)
    message: str

class RetryResult(BaseModel):
    mapping_id: int
    success: bool
    retried: int = 0
    resolved: int = 0
    still_failing: int = 0
    sync_log_id: Optional[int] = None
    message: str

class BatchSyncRequest(BaseModel):
    mapping_ids: List[int] = Field(..., min_length=1)

class BatchSyncResponse(BaseModel):
    results: List[SyncResult]
    succeeded: int
    failed: int

class CancelResponse(BaseModel):
    mapping_id: int
    cancelled: bool
    message: str

class SyncLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    mapping_id: int
    trigger_type: str
    direction: Optional[str] = None
    status: str
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    failed_records: int = 0
    pushed_records: int = 0

class PaginatedSyncLogs(BaseModel):
    data: List[SyncLogResponse]
    total: int

class SyncErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    mapping_id: int
    sync_log_id: Optional[int] = None
    error_type: str
    error_message: str
    record_data: Optional[Any] = None
    glide_row_id: Optional[str] = None
    retryable: bool
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

class PaginatedSyncErrors(BaseModel):
    data: List[SyncErrorResponse]
    total: int

class ErrorResolveRequest(BaseModel):
    resolution_notes: Optional[str] = None

class MappingSyncStatus(BaseModel):
    mapping_id: int
    enabled: bool
    current_status: str  # 'idle' or the status of the latest run
    is_running: bool
    last_sync_log_id: Optional[int] = None
    last_started_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    records_processed: int = 0
    unresolved_errors: int = 0

class SyncStats(BaseModel):
    total_syncs: int
    successful: int
    failed: int
    running: int
    records_processed: int
    unresolved_errors: int
    errors_by_type: Dict[str, int] = Field(default_factory=dict)
