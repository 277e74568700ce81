from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class ConnectionBase(BaseModel):
    app_id: str = Field(..., min_length=1)
    app_name: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None # e.g. base_url override, write_batch_size

class ConnectionCreate(ConnectionBase):
    api_key: str = Field(..., min_length=1) # This will be encrypted before storage

class ConnectionUpdate(BaseModel):
    app_id: Optional[str] = None
    app_name: Optional[str] = None
    api_key: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None

class ConnectionInDB(ConnectionBase):
    """The API key is write-only and never returned."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    status_message: Optional[str] = None
    last_sync: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class ConnectionTestResponse(BaseModel):
    success: bool
    status: str
    message: str
