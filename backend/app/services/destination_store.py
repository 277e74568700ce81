"""
Access to the destination tables that Glide rows are synced into.

Tables are reflected on first use and cached for the lifetime of the store,
which is scoped to one database session.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import MetaData, Table, UniqueConstraint, func, inspect, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants.glide import ROW_ID_COLUMN
from app.database import Base

log = logging.getLogger(__name__)

IN_CLAUSE_CHUNK = 500


class SchemaLookupError(Exception):
    """The destination schema could not be inspected (connection or catalog failure)."""


def _internal_tables() -> Set[str]:
    import app.models  # noqa: F401  ensure all models are registered on Base
    return set(Base.metadata.tables.keys()) | {"alembic_version"}


class DestinationStore:
    def __init__(self, session: Session):
        self.session = session
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def _inspector(self):
        try:
            return inspect(self.session.connection())
        except SQLAlchemyError as e:
            raise SchemaLookupError(f"Could not inspect destination schema: {e}") from e

    def list_tables(self) -> List[str]:
        """Destination tables, excluding the service's own bookkeeping tables."""
        try:
            names = self._inspector().get_table_names()
        except SQLAlchemyError as e:
            raise SchemaLookupError(f"Could not list destination tables: {e}") from e
        internal = _internal_tables()
        return sorted(name for name in names if name not in internal)

    def has_table(self, table_name: str) -> bool:
        try:
            return self._inspector().has_table(table_name)
        except SQLAlchemyError as e:
            raise SchemaLookupError(f"Could not look up table {table_name}: {e}") from e

    def get_columns(self, table_name: str) -> Optional[List[Dict[str, Any]]]:
        """Live column list of a table, or None when the table does not exist."""
        if not self.has_table(table_name):
            return None
        try:
            columns = self._inspector().get_columns(table_name)
        except SQLAlchemyError as e:
            raise SchemaLookupError(f"Could not read columns of {table_name}: {e}") from e
        return [
            {"name": col["name"], "type": str(col["type"]), "nullable": bool(col.get("nullable", True))}
            for col in columns
        ]

    def table(self, table_name: str) -> Table:
        if table_name not in self._tables:
            try:
                self._tables[table_name] = Table(table_name, self._metadata, autoload_with=self.session.connection())
            except NoSuchTableError:
                raise
            except SQLAlchemyError as e:
                raise SchemaLookupError(f"Could not reflect table {table_name}: {e}") from e
        return self._tables[table_name]

    def primary_key(self, table_name: str) -> List[str]:
        return [col.name for col in self.table(table_name).primary_key.columns]

    def _is_unique(self, table: Table, column: str) -> bool:
        pk = [col.name for col in table.primary_key.columns]
        if pk == [column]:
            return True
        for index in table.indexes:
            if index.unique and [col.name for col in index.columns] == [column]:
                return True
        for constraint in table.constraints:
            if isinstance(constraint, UniqueConstraint) and [col.name for col in constraint.columns] == [column]:
                return True
        return False

    def count_rows(self, table_name: str) -> int:
        table = self.table(table_name)
        return self.session.execute(select(func.count()).select_from(table)).scalar_one()

    def upsert_rows(self, table_name: str, rows: List[Dict[str, Any]], conflict_column: str = ROW_ID_COLUMN) -> int:
        """
        Insert or update rows keyed on conflict_column. Never creates a second
        row for the same key; within one call the last row for a key wins.
        Does not commit.
        """
        if not rows:
            return 0
        table = self.table(table_name)
        known = set(table.c.keys())

        deduped: Dict[Any, Dict[str, Any]] = {}
        for row in rows:
            key = row.get(conflict_column)
            if key is None:
                raise ValueError(f"Row is missing conflict key {conflict_column}")
            deduped[key] = {k: v for k, v in row.items() if k in known}
        values = list(deduped.values())

        if self.dialect in ("postgresql", "sqlite") and self._is_unique(table, conflict_column):
            self._native_upsert(table, values, conflict_column)
        else:
            self._emulated_upsert(table, values, conflict_column)

        log.debug(f"Upserted {len(values)} rows into {table_name}")
        return len(values)

    def _native_upsert(self, table: Table, rows: List[Dict[str, Any]], conflict_column: str) -> None:
        insert_fn = pg_insert if self.dialect == "postgresql" else sqlite_insert
        pk = {col.name for col in table.primary_key.columns}
        # executemany needs one parameter shape per statement
        for keys, group in self._group_by_keys(rows).items():
            stmt = insert_fn(table)
            set_ = {col: stmt.excluded[col] for col in keys if col != conflict_column and col not in pk}
            if set_:
                stmt = stmt.on_conflict_do_update(index_elements=[conflict_column], set_=set_)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=[conflict_column])
            self.session.execute(stmt, group)

    def _emulated_upsert(self, table: Table, rows: List[Dict[str, Any]], conflict_column: str) -> None:
        existing = self._existing_keys(table, [row[conflict_column] for row in rows], conflict_column)
        to_insert = []
        for row in rows:
            if row[conflict_column] in existing:
                changes = {k: v for k, v in row.items() if k != conflict_column}
                if changes:
                    self.session.execute(
                        update(table).where(table.c[conflict_column] == row[conflict_column]).values(**changes)
                    )
            else:
                to_insert.append(row)
        for group in self._group_by_keys(to_insert).values():
            self.session.execute(insert(table), group)

    @staticmethod
    def _group_by_keys(rows: List[Dict[str, Any]]) -> Dict[tuple, List[Dict[str, Any]]]:
        groups: Dict[tuple, List[Dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(tuple(sorted(row.keys())), []).append(row)
        return groups

    def _existing_keys(self, table: Table, keys: Iterable[Any], column: str) -> Set[Any]:
        keys = list(keys)
        found: Set[Any] = set()
        for start in range(0, len(keys), IN_CLAUSE_CHUNK):
            chunk = keys[start:start + IN_CLAUSE_CHUNK]
            result = self.session.execute(select(table.c[column]).where(table.c[column].in_(chunk)))
            found.update(result.scalars().all())
        return found

    def find_existing_ids(self, table_name: str, ids: Iterable[Any], column: str = ROW_ID_COLUMN) -> Set[Any]:
        return self._existing_keys(self.table(table_name), ids, column)

    def find_row(self, table_name: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        table = self.table(table_name)
        if column not in table.c:
            return None
        row = self.session.execute(select(table).where(table.c[column] == value).limit(1)).first()
        return dict(row._mapping) if row is not None else None

    def fetch_rows(self, table_name: str, missing_column: Optional[str] = None) -> List[Dict[str, Any]]:
        """All rows of a table, optionally only those where missing_column is NULL."""
        table = self.table(table_name)
        stmt = select(table)
        if missing_column is not None:
            stmt = stmt.where(table.c[missing_column].is_(None))
        pk = list(table.primary_key.columns)
        if pk:
            stmt = stmt.order_by(*pk)
        return [dict(row._mapping) for row in self.session.execute(stmt)]

    def set_column_values(self, table_name: str, match_column: str, match_value: Any, values: Dict[str, Any]) -> int:
        table = self.table(table_name)
        result = self.session.execute(
            update(table).where(table.c[match_column] == match_value).values(**values)
        )
        return result.rowcount
