"""
Resolution of rowid_<target> references between synced tables.

Resolution is lazy: an unresolved reference never blocks the row that holds
it. It is kept as a pending candidate and retried by map_all_relationships,
typically after the target table has been backfilled.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import settings
from app.constants.glide import DESTINATION_TABLE_PREFIX, RELATIONSHIP_COLUMN_PREFIX, ROW_ID_COLUMN
from app.models.relationship import RelationshipCandidate, RelationshipMapping
from app.schemas.relationship import RelationshipMappingResult, RelationshipValidation
from app.services.destination_store import DestinationStore

log = logging.getLogger(__name__)

# (target_table, target_column, link_column)
Target = Tuple[str, str, Optional[str]]


def is_relationship_column(column: str) -> bool:
    return column.startswith(RELATIONSHIP_COLUMN_PREFIX) and len(column) > len(RELATIONSHIP_COLUMN_PREFIX)


class RelationshipResolver:
    def __init__(self, db: Session, store: DestinationStore, max_attempts: Optional[int] = None):
        self.db = db
        self.store = store
        self.max_attempts = max_attempts or settings.relationship_max_attempts

    def _target_for(self, source_table: str, column: str, cache: Dict[Tuple[str, str], Target]) -> Target:
        key = (source_table, column)
        if key in cache:
            return cache[key]

        declared = self.db.query(RelationshipMapping).filter(
            RelationshipMapping.source_table == source_table,
            RelationshipMapping.source_column == column,
            RelationshipMapping.enabled == True  # noqa: E712
        ).first()
        if declared:
            target = (declared.target_table, declared.target_column or ROW_ID_COLUMN, declared.link_column)
        else:
            name = column[len(RELATIONSHIP_COLUMN_PREFIX):]
            target = (name, ROW_ID_COLUMN, None)
            for table in (name, f"{DESTINATION_TABLE_PREFIX}{name}"):
                if self.store.has_table(table):
                    target = (table, ROW_ID_COLUMN, None)
                    break
        cache[key] = target
        return target

    def _try_resolve(self, candidate: RelationshipCandidate, target: Target) -> bool:
        target_table, target_column, link_column = target
        if not self.store.has_table(target_table):
            candidate.last_error = f"Target table {target_table} does not exist"
            return False

        match = self.store.find_row(target_table, target_column, candidate.reference_value)
        if match is None:
            candidate.last_error = f"No row in {target_table} with {target_column}={candidate.reference_value}"
            return False

        if link_column:
            pk = self.store.primary_key(target_table)
            if pk:
                self.store.set_column_values(
                    candidate.source_table, ROW_ID_COLUMN, candidate.source_row_id, {link_column: match[pk[0]]}
                )
            else:
                log.warning(f"Cannot fill {candidate.source_table}.{link_column}: {target_table} has no primary key")

        candidate.status = 'resolved'
        candidate.resolved_at = datetime.now(timezone.utc)
        candidate.last_error = None
        return True

    def record_candidates(self, source_table: str, rows: List[Dict[str, Any]]) -> int:
        """
        Register rowid_* references found in freshly synced rows and resolve
        those whose target row already exists. Does not commit.
        """
        cache: Dict[Tuple[str, str], Target] = {}
        batch: Dict[Tuple[str, str], RelationshipCandidate] = {}
        touched = []

        for row in rows:
            source_row_id = row.get(ROW_ID_COLUMN)
            if not source_row_id:
                continue
            for column, value in row.items():
                if not is_relationship_column(column) or value in (None, ""):
                    continue
                value = str(value)
                target = self._target_for(source_table, column, cache)

                key = (str(source_row_id), column)
                candidate = batch.get(key) or self.db.query(RelationshipCandidate).filter(
                    RelationshipCandidate.source_table == source_table,
                    RelationshipCandidate.source_row_id == str(source_row_id),
                    RelationshipCandidate.source_column == column
                ).first()
                if candidate is None:
                    candidate = RelationshipCandidate(
                        source_table=source_table,
                        source_row_id=str(source_row_id),
                        source_column=column,
                        target_table=target[0],
                        reference_value=value,
                        status='pending',
                        attempts=0,
                    )
                    self.db.add(candidate)
                elif candidate.reference_value != value or candidate.target_table != target[0]:
                    candidate.reference_value = value
                    candidate.target_table = target[0]
                    candidate.status = 'pending'
                    candidate.attempts = 0
                    candidate.resolved_at = None
                    candidate.last_error = None
                elif candidate.status == 'resolved' or key in batch:
                    continue
                batch[key] = candidate
                touched.append((candidate, target))

        if not touched:
            return 0
        self.db.flush()

        resolved = sum(1 for candidate, target in touched if candidate.status == 'pending' and self._try_resolve(candidate, target))
        log.debug(f"{source_table}: {len(touched)} relationship candidates recorded, {resolved} resolved immediately")
        return len(touched)

    def map_all_relationships(self, table_filter: Optional[str] = None) -> RelationshipMappingResult:
        """Attempt every pending candidate, optionally only those from one source table."""
        query = self.db.query(RelationshipCandidate).filter(RelationshipCandidate.status == 'pending')
        if table_filter:
            query = query.filter(RelationshipCandidate.source_table == table_filter)
        candidates = query.order_by(RelationshipCandidate.id).all()

        cache: Dict[Tuple[str, str], Target] = {}
        resolved = failed = 0
        for candidate in candidates:
            candidate.attempts = (candidate.attempts or 0) + 1
            target = self._target_for(candidate.source_table, candidate.source_column, cache)
            if candidate.target_table != target[0]:
                candidate.target_table = target[0]
            if self._try_resolve(candidate, target):
                resolved += 1
            elif candidate.attempts >= self.max_attempts:
                candidate.status = 'failed'
                failed += 1
                log.warning(
                    f"Relationship {candidate.source_table}.{candidate.source_column}={candidate.reference_value} "
                    f"failed after {candidate.attempts} attempts: {candidate.last_error}"
                )
        self.db.commit()

        pending = len(candidates) - resolved - failed
        scope = f" for {table_filter}" if table_filter else ""
        message = f"Processed {len(candidates)} relationship candidates{scope}: {resolved} resolved, {failed} failed, {pending} pending"
        log.info(message)
        return RelationshipMappingResult(
            success=True,
            processed=len(candidates),
            resolved=resolved,
            failed=failed,
            pending=pending,
            message=message,
        )

    def validate_relationships(self) -> List[RelationshipValidation]:
        """Report for each known relationship whether its target table can currently satisfy it."""
        pairs: Dict[Tuple[str, Optional[str], str], None] = {}
        for rel in self.db.query(RelationshipMapping).filter(RelationshipMapping.enabled == True).all():  # noqa: E712
            pairs[(rel.source_table, rel.source_column, rel.target_table)] = None
        seen = self.db.query(
            RelationshipCandidate.source_table,
            RelationshipCandidate.source_column,
            RelationshipCandidate.target_table
        ).distinct().all()
        for source_table, source_column, target_table in seen:
            pairs.setdefault((source_table, source_column, target_table), None)

        results = []
        for source_table, source_column, target_table in pairs:
            pending = self.db.query(RelationshipCandidate).filter(
                RelationshipCandidate.source_table == source_table,
                RelationshipCandidate.source_column == source_column,
                RelationshipCandidate.target_table == target_table,
                RelationshipCandidate.status == 'pending'
            ).count()

            if not self.store.has_table(target_table):
                status, count = 'missing_target', 0
                message = f"Target table {target_table} does not exist"
            else:
                count = self.store.count_rows(target_table)
                if count == 0:
                    status = 'empty_target'
                    message = f"Target table {target_table} has no rows yet; references cannot be resolved until it is synced"
                else:
                    status = 'ready'
                    message = f"Target table {target_table} has {count} rows"

            results.append(RelationshipValidation(
                source_table=source_table,
                source_column=source_column,
                target_table=target_table,
                status=status,
                target_row_count=count,
                pending_candidates=pending,
                message=message,
            ))
        return results
