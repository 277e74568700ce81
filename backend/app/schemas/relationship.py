from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class RelationshipMappingBase(BaseModel):
    source_table: str = Field(..., min_length=1)
    source_column: str = Field(..., min_length=1, description="Column holding the referenced glide_row_id, usually rowid_<target>")
    target_table: str = Field(..., min_length=1)
    target_column: str = "glide_row_id"
    link_column: Optional[str] = Field(None, description="Source column that receives the target primary key once resolved")
    relationship_type: str = "many_to_one"
    enabled: bool = True

class RelationshipMappingCreate(RelationshipMappingBase):
    pass

class RelationshipMappingUpdate(BaseModel):
    target_table: Optional[str] = None
    target_column: Optional[str] = None
    link_column: Optional[str] = None
    relationship_type: Optional[str] = None
    enabled: Optional[bool] = None

class RelationshipMappingInDB(RelationshipMappingBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime

class RelationshipCandidateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_table: str
    source_row_id: str
    source_column: str
    target_table: str
    reference_value: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

class RelationshipMappingResult(BaseModel):
    success: bool
    processed: int = 0
    resolved: int = 0
    failed: int = 0
    pending: int = 0
    message: str

class RelationshipValidation(BaseModel):
    source_table: str
    source_column: Optional[str] = None
    target_table: str
    status: str  # 'ready', 'empty_target', 'missing_target'
    target_row_count: int = 0
    pending_candidates: int = 0
    message: str

class RelationshipValidationResponse(BaseModel):
    relationships: List[RelationshipValidation]
    ready: int
    not_ready: int
