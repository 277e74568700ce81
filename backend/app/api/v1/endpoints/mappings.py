from typing import List, Dict, Any, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import logging

from app.database import get_db
from app.models.connection import Connection
from app.models.mapping import Mapping
from app.schemas.mapping import MappingCreate, MappingInDB, MappingUpdate, ValidationResult, parse_column_mappings
from app.services.destination_store import DestinationStore, SchemaLookupError
from app.services.mapping_validator import MappingValidator

log = logging.getLogger(__name__)

router = APIRouter()


def _get_mapping(db: Session, mapping_id: int) -> Mapping:
    db_mapping = db.query(Mapping).filter(Mapping.id == mapping_id).first()
    if db_mapping is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mapping not found")
    return db_mapping


def _validate(db: Session, candidate: MappingCreate) -> ValidationResult:
    try:
        result = MappingValidator(DestinationStore(db)).validate(candidate)
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Schema lookup failed: {e}")
    if result.is_valid and db.query(Connection).filter(Connection.id == candidate.connection_id).first() is None:
        return ValidationResult(is_valid=False, message=f"Connection {candidate.connection_id} not found")
    return result


def _require_valid(db: Session, candidate: MappingCreate) -> None:
    """No mapping is written without passing the validator."""
    result = _validate(db, candidate)
    if not result.is_valid:
        log.info(f"Rejected mapping for {candidate.glide_table} -> {candidate.target_table}: {result.message}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.message)


def _stored_columns(candidate: MappingCreate) -> Dict[str, Any]:
    return {key: cm.model_dump(mode="json") for key, cm in candidate.column_mappings.items()}


@router.get("/destination/tables", response_model=List[str])
async def list_destination_tables(db: Session = Depends(get_db)):
    try:
        return DestinationStore(db).list_tables()
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.get("/destination/tables/{table_name}/columns", response_model=List[Dict[str, Any]])
async def list_destination_columns(table_name: str, db: Session = Depends(get_db)):
    try:
        columns = DestinationStore(db).get_columns(table_name)
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if columns is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Table {table_name} not found")
    return columns


@router.post("/validate", response_model=ValidationResult)
async def validate_mapping_candidate(mapping: MappingCreate, db: Session = Depends(get_db)):
    """Validate a candidate mapping without saving it."""
    return _validate(db, mapping)


@router.post("/", response_model=MappingInDB, status_code=status.HTTP_201_CREATED)
async def create_mapping(mapping: MappingCreate, db: Session = Depends(get_db)):
    _require_valid(db, mapping)

    db_mapping = Mapping(
        connection_id=mapping.connection_id,
        glide_table=mapping.glide_table,
        glide_table_display_name=mapping.glide_table_display_name,
        target_table=mapping.target_table,
        column_mappings=_stored_columns(mapping),
        sync_direction=mapping.sync_direction.value,
        enabled=mapping.enabled,
    )
    db.add(db_mapping)
    db.commit()
    db.refresh(db_mapping)
    log.info(f"Created mapping {db_mapping.id}: {db_mapping.glide_table} -> {db_mapping.target_table}")
    return db_mapping


@router.get("/", response_model=List[MappingInDB])
async def read_mappings(
    skip: int = 0,
    limit: int = 100,
    connection_id: Optional[int] = None,
    db: Session = Depends(get_db)
):
    query = db.query(Mapping)
    if connection_id is not None:
        query = query.filter(Mapping.connection_id == connection_id)
    return query.order_by(Mapping.id).offset(skip).limit(limit).all()


@router.get("/{mapping_id}", response_model=MappingInDB)
async def read_mapping(mapping_id: int, db: Session = Depends(get_db)):
    return _get_mapping(db, mapping_id)


@router.get("/{mapping_id}/validate", response_model=ValidationResult)
async def validate_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Re-validate a stored mapping against the current destination schema."""
    db_mapping = _get_mapping(db, mapping_id)
    try:
        candidate = MappingCreate.model_validate(db_mapping, from_attributes=True)
    except ValueError as e:
        return ValidationResult(is_valid=False, message=f"Stored mapping is malformed: {e}")
    return _validate(db, candidate)


@router.patch("/{mapping_id}", response_model=MappingInDB)
async def update_mapping(mapping_id: int, mapping: MappingUpdate, db: Session = Depends(get_db)):
    db_mapping = _get_mapping(db, mapping_id)

    update_data = mapping.model_dump(exclude_unset=True)
    merged = {
        "connection_id": db_mapping.connection_id,
        "glide_table": db_mapping.glide_table,
        "glide_table_display_name": db_mapping.glide_table_display_name,
        "target_table": db_mapping.target_table,
        "column_mappings": parse_column_mappings(db_mapping.column_mappings),
        "sync_direction": db_mapping.sync_direction,
        "enabled": db_mapping.enabled,
    }
    merged.update({k: v for k, v in update_data.items() if v is not None or k == "glide_table_display_name"})
    candidate = MappingCreate.model_validate(merged)
    _require_valid(db, candidate)

    db_mapping.connection_id = candidate.connection_id
    db_mapping.glide_table = candidate.glide_table
    db_mapping.glide_table_display_name = candidate.glide_table_display_name
    db_mapping.target_table = candidate.target_table
    db_mapping.column_mappings = _stored_columns(candidate)
    db_mapping.sync_direction = candidate.sync_direction.value
    db_mapping.enabled = candidate.enabled

    db.commit()
    db.refresh(db_mapping)
    return db_mapping


@router.delete("/{mapping_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Delete a mapping with its own sync logs and errors."""
    db_mapping = _get_mapping(db, mapping_id)
    db.delete(db_mapping)
    db.commit()
    log.info(f"Deleted mapping {mapping_id}")
