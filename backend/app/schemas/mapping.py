from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class DataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE_TIME = "date-time"
    IMAGE_URI = "image-uri"
    EMAIL_ADDRESS = "email-address"

class SyncDirection(str, Enum):
    TO_DESTINATION = "to_destination"
    TO_SOURCE = "to_source"
    BOTH = "both"

class ColumnMapping(BaseModel):
    """One Glide column bound to one destination column."""
    glide_column_name: Optional[str] = Field(None, description="Display name of the Glide column")
    target_column: str = Field(..., min_length=1, description="Column name in the destination table")
    data_type: DataType = Field(DataType.STRING, description="Declared type used for value conversion")
    required: bool = Field(False, description="Rows whose value converts to null are rejected")

def parse_column_mappings(raw: Optional[Dict[str, Any]]) -> Dict[str, ColumnMapping]:
    """Parse stored column mappings (dicts or models) keyed by Glide column id. Raises ValueError on bad entries."""
    parsed: Dict[str, ColumnMapping] = {}
    for glide_column, entry in (raw or {}).items():
        if isinstance(entry, ColumnMapping):
            parsed[glide_column] = entry
        else:
            parsed[glide_column] = ColumnMapping.model_validate(entry)
    return parsed

class MappingBase(BaseModel):
    connection_id: Optional[int] = None
    glide_table: Optional[str] = None
    glide_table_display_name: Optional[str] = None
    target_table: Optional[str] = None
    column_mappings: Dict[str, ColumnMapping] = Field(default_factory=dict)
    sync_direction: SyncDirection = SyncDirection.TO_DESTINATION
    enabled: bool = True

class MappingCreate(MappingBase):
    """May be partial: completeness is reported by the mapping validator, not by the schema."""
    pass

class MappingUpdate(BaseModel):
    connection_id: Optional[int] = None
    glide_table: Optional[str] = None
    glide_table_display_name: Optional[str] = None
    target_table: Optional[str] = None
    column_mappings: Optional[Dict[str, ColumnMapping]] = None
    sync_direction: Optional[SyncDirection] = None
    enabled: Optional[bool] = None

class MappingInDB(MappingBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    connection_id: int
    glide_table: str
    target_table: str
    created_at: datetime
    updated_at: datetime

class ValidationResult(BaseModel):
    is_valid: bool
    message: str
