from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.schemas.mapping import MappingCreate
from app.services.destination_store import DestinationStore, SchemaLookupError
from app.services.mapping_validator import MappingValidator


@pytest.fixture
def validator(db):
    return MappingValidator(DestinationStore(db))


@pytest.fixture
def candidate(account_columns):
    def _candidate(**overrides):
        values = {
            "connection_id": 1,
            "glide_table": "native-table-accounts",
            "target_table": "gl_accounts",
            "column_mappings": account_columns,
        }
        values.update(overrides)
        return MappingCreate(**values)
    return _candidate


def test_valid_mapping(validator, candidate):
    result = validator.validate(candidate())
    assert result.is_valid
    assert result.message == "Mapping is valid"


def test_missing_fields_are_all_named(validator):
    result = validator.validate(MappingCreate(glide_table="native-table-accounts"))
    assert not result.is_valid
    assert "connection" in result.message
    assert "destination table" in result.message
    assert "Glide table" not in result.message


def test_empty_column_mappings_rejected(validator, candidate):
    result = validator.validate(candidate(column_mappings={}))
    assert not result.is_valid
    assert "At least one column mapping" in result.message


def test_row_id_mapping_is_mandatory(validator, candidate, account_columns):
    del account_columns["$rowID"]
    result = validator.validate(candidate(column_mappings=account_columns))
    assert not result.is_valid
    assert "Row ID mapping is mandatory" in result.message


def test_row_id_must_target_identity_column(validator, candidate, account_columns):
    account_columns["$rowID"] = {"target_column": "account_name", "data_type": "string"}
    result = validator.validate(candidate(column_mappings=account_columns))
    assert not result.is_valid
    assert "glide_row_id" in result.message


def test_unknown_columns_reported_together(validator, candidate, account_columns):
    account_columns["Phone"] = {"target_column": "phone", "data_type": "string"}
    account_columns["City"] = {"target_column": "city", "data_type": "string"}
    result = validator.validate(candidate(column_mappings=account_columns))
    assert not result.is_valid
    assert result.message == "Column(s) not found in gl_accounts: city, phone"


def test_missing_destination_table(validator, candidate):
    result = validator.validate(candidate(target_table="gl_nope"))
    assert not result.is_valid
    assert "gl_nope does not exist" in result.message


def test_stored_dict_mappings_are_parsed(validator, make_mapping):
    mapping = make_mapping()
    assert validator.validate(mapping).is_valid


def test_invalid_stored_column_mapping(validator, make_mapping):
    mapping = make_mapping(column_mappings={"$rowID": {"data_type": "string"}})
    result = validator.validate(mapping)
    assert not result.is_valid
    assert result.message.startswith("Invalid column mapping")


def test_schema_lookup_failure_raises(db, candidate):
    store = DestinationStore(db)
    with patch.object(store, "_inspector", side_effect=SchemaLookupError("database unavailable")):
        with pytest.raises(SchemaLookupError):
            MappingValidator(store).validate(candidate())


def test_inspection_error_is_wrapped(db, candidate):
    store = DestinationStore(db)
    error = OperationalError("SELECT 1", {}, Exception("connection refused"))
    with patch.object(DestinationStore, "_inspector") as inspector:
        inspector.return_value.has_table.side_effect = error
        with pytest.raises(SchemaLookupError, match="connection refused"):
            MappingValidator(store).validate(candidate())
