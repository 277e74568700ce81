from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.constants.glide import ROW_ID_FIELD


class MalformedRowError(ValueError):
    """A row payload that cannot be treated as a Glide record."""


class GlideTable(BaseModel):
    id: str = Field(..., description="Glide table identifier (e.g. native-table-xxxx)")
    display_name: str = Field(..., description="Human readable table name")


class GlideColumn(BaseModel):
    id: str = Field(..., description="Column identifier used in row payloads")
    name: str = Field(..., description="Column display name")
    type: str = Field("string", description="Declared or inferred column type")


class GlideRow(BaseModel):
    """Validated envelope around one raw Glide row."""

    model_config = ConfigDict(populate_by_name=True)

    row_id: str = Field(..., alias=ROW_ID_FIELD, min_length=1)
    values: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("row_id", mode="before")
    @classmethod
    def coerce_row_id(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def parse(cls, raw: Any) -> "GlideRow":
        if not isinstance(raw, dict):
            raise MalformedRowError(f"Expected an object row, got {type(raw).__name__}")
        if raw.get(ROW_ID_FIELD) in (None, ""):
            raise MalformedRowError(f"Row has no {ROW_ID_FIELD} value")
        try:
            return cls.model_validate({ROW_ID_FIELD: raw[ROW_ID_FIELD], "values": raw})
        except ValueError as e:
            raise MalformedRowError(f"Invalid {ROW_ID_FIELD}: {e}") from e


class GlidePage(BaseModel):
    rows: List[Any] = Field(default_factory=list, description="Raw rows, validated by GlideRow.parse downstream")
    next: Optional[str] = Field(None, description="Continuation token, None on the last page")


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    status_code: Optional[int] = None


class FailedBatch(BaseModel):
    index: int
    offset: int = Field(0, description="Position of the batch's first row in the input")
    rows: List[Dict[str, Any]]
    error: str
    status_code: Optional[int] = None
    error_type: str
    retryable: bool


class WriteResult(BaseModel):
    """Aggregated outcome of a batched write; prior batches are never rolled back."""

    batches_attempted: int = 0
    batches_succeeded: int = 0
    written_rows: int = 0
    row_ids: List[Optional[str]] = Field(default_factory=list)
    failed_batches: List[FailedBatch] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed_batches

    @property
    def failed_rows(self) -> int:
        return sum(len(batch.rows) for batch in self.failed_batches)


class BaseRecordConnector(ABC):
    """Abstract Base Class for paginated record sources."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @abstractmethod
    async def test_connection(self, table_name: Optional[str] = None) -> ConnectionTestResult:
        """Probes the source with a minimal query."""
        pass

    @abstractmethod
    async def list_tables(self) -> List[GlideTable]:
        pass

    @abstractmethod
    async def get_table_columns(self, table_id: str) -> List[GlideColumn]:
        """Returns the columns of a table, inferred from a one-row sample when undeclared."""
        pass

    @abstractmethod
    async def fetch_page(self, table_id: str, continuation_token: Optional[str] = None) -> GlidePage:
        """Fetches one page of rows; callers loop until next is None."""
        pass

    @abstractmethod
    async def write_rows(self, table_id: str, rows: List[Dict[str, Any]]) -> WriteResult:
        """Writes rows in bounded batches, reporting partial success."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
