from typing import List, Optional
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.relationship import RelationshipCandidate, RelationshipMapping
from app.schemas.relationship import (
    RelationshipCandidateResponse,
    RelationshipMappingCreate,
    RelationshipMappingInDB,
    RelationshipMappingResult,
    RelationshipMappingUpdate,
    RelationshipValidationResponse,
)
from app.services.destination_store import DestinationStore, SchemaLookupError
from app.services.relationship_resolver import RelationshipResolver

log = logging.getLogger(__name__)
router = APIRouter()


def _resolver(db: Session) -> RelationshipResolver:
    return RelationshipResolver(db, DestinationStore(db))


def _get_relationship(db: Session, relationship_id: int) -> RelationshipMapping:
    rel = db.query(RelationshipMapping).filter(RelationshipMapping.id == relationship_id).first()
    if rel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Relationship mapping not found")
    return rel


@router.post("/map", response_model=RelationshipMappingResult)
async def map_all_relationships(table_filter: Optional[str] = None, db: Session = Depends(get_db)):
    """Attempt resolution of every pending reference, optionally for one source table."""
    try:
        return _resolver(db).map_all_relationships(table_filter)
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.get("/validate", response_model=RelationshipValidationResponse)
async def validate_relationships(db: Session = Depends(get_db)):
    try:
        relationships = _resolver(db).validate_relationships()
    except SchemaLookupError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    ready = sum(1 for r in relationships if r.status == 'ready')
    return RelationshipValidationResponse(
        relationships=relationships,
        ready=ready,
        not_ready=len(relationships) - ready,
    )


@router.get("/candidates", response_model=List[RelationshipCandidateResponse])
async def list_candidates(
    source_table: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db)
):
    q = db.query(RelationshipCandidate)
    if source_table:
        q = q.filter(RelationshipCandidate.source_table == source_table)
    if status:
        q = q.filter(RelationshipCandidate.status == status)
    return q.order_by(RelationshipCandidate.id).offset(offset).limit(limit).all()


@router.post("/", response_model=RelationshipMappingInDB, status_code=status.HTTP_201_CREATED)
async def create_relationship(rel_in: RelationshipMappingCreate, db: Session = Depends(get_db)):
    rel = RelationshipMapping(**rel_in.model_dump())
    db.add(rel)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A relationship for {rel_in.source_table}.{rel_in.source_column} already exists",
        )
    db.refresh(rel)
    log.info(f"Created relationship {rel.source_table}.{rel.source_column} -> {rel.target_table}")
    return rel


@router.get("/", response_model=List[RelationshipMappingInDB])
async def list_relationships(source_table: Optional[str] = None, db: Session = Depends(get_db)):
    q = db.query(RelationshipMapping)
    if source_table:
        q = q.filter(RelationshipMapping.source_table == source_table)
    return q.order_by(RelationshipMapping.id).all()


@router.get("/{relationship_id}", response_model=RelationshipMappingInDB)
async def get_relationship(relationship_id: int, db: Session = Depends(get_db)):
    return _get_relationship(db, relationship_id)


@router.patch("/{relationship_id}", response_model=RelationshipMappingInDB)
async def update_relationship(relationship_id: int, rel_in: RelationshipMappingUpdate, db: Session = Depends(get_db)):
    rel = _get_relationship(db, relationship_id)
    for field, value in rel_in.model_dump(exclude_unset=True).items():
        setattr(rel, field, value)
    db.commit()
    db.refresh(rel)
    return rel


@router.delete("/{relationship_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_relationship(relationship_id: int, db: Session = Depends(get_db)):
    rel = _get_relationship(db, relationship_id)
    db.delete(rel)
    db.commit()
