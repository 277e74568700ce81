import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from app.constants.glide import ROW_ID_COLUMN, ROW_ID_FIELD
from app.schemas.mapping import ColumnMapping, ValidationResult, parse_column_mappings
from app.services.destination_store import DestinationStore, SchemaLookupError

log = logging.getLogger(__name__)


class MappingValidator:
    """
    Checks a (possibly partial) mapping before it may be saved or run.

    Checks run in order and stop at the first failure:
      1. connection, Glide table and destination table are present
      2. at least one column mapping exists
      3. $rowID is mapped, to glide_row_id
      4. every destination column exists in the live table schema

    Expected failures come back as ValidationResult. Only a failure to read
    the destination schema raises (SchemaLookupError).
    """

    def __init__(self, store: DestinationStore):
        self.store = store

    def validate(self, mapping: Any) -> ValidationResult:
        missing = [
            label
            for attr, label in (
                ("connection_id", "connection"),
                ("glide_table", "Glide table"),
                ("target_table", "destination table"),
            )
            if not getattr(mapping, attr, None)
        ]
        if missing:
            return ValidationResult(is_valid=False, message=f"Missing required field(s): {', '.join(missing)}")

        try:
            columns: Dict[str, ColumnMapping] = parse_column_mappings(getattr(mapping, "column_mappings", None))
        except ValidationError as e:
            return ValidationResult(is_valid=False, message=f"Invalid column mapping: {e.errors()[0].get('msg')}")
        if not columns:
            return ValidationResult(is_valid=False, message="At least one column mapping is required")

        row_id_mapping = columns.get(ROW_ID_FIELD)
        if row_id_mapping is None:
            return ValidationResult(
                is_valid=False,
                message=f"Row ID mapping is mandatory: map {ROW_ID_FIELD} to {ROW_ID_COLUMN}",
            )
        if row_id_mapping.target_column != ROW_ID_COLUMN:
            return ValidationResult(
                is_valid=False,
                message=f"{ROW_ID_FIELD} must be mapped to {ROW_ID_COLUMN}, not {row_id_mapping.target_column}",
            )

        return self._check_destination_columns(mapping.target_table, columns)

    def _check_destination_columns(self, table_name: str, columns: Dict[str, ColumnMapping]) -> ValidationResult:
        try:
            live_columns = self.store.get_columns(table_name)
        except SchemaLookupError:
            log.error(f"Schema lookup failed while validating mapping for {table_name}", exc_info=True)
            raise

        if live_columns is None:
            return ValidationResult(is_valid=False, message=f"Destination table {table_name} does not exist")

        known = {col["name"] for col in live_columns}
        unknown: List[str] = sorted({
            cm.target_column for cm in columns.values() if cm.target_column not in known
        })
        if unknown:
            return ValidationResult(
                is_valid=False,
                message=f"Column(s) not found in {table_name}: {', '.join(unknown)}",
            )

        return ValidationResult(is_valid=True, message="Mapping is valid")
