import pytest

from app.services.destination_store import DestinationStore


@pytest.fixture
def store(db):
    return DestinationStore(db)


def test_list_tables_hides_service_tables(store):
    assert store.list_tables() == ["gl_accounts", "gl_users", "notes"]


def test_get_columns(store):
    columns = {col["name"] for col in store.get_columns("gl_users")}
    assert columns == {"id", "glide_row_id", "name"}
    assert store.get_columns("gl_missing") is None


def test_uniqueness_detection(store):
    assert store._is_unique(store.table("gl_accounts"), "glide_row_id")
    assert not store._is_unique(store.table("notes"), "glide_row_id")
    assert store.primary_key("notes") == ["id"]


@pytest.mark.parametrize("table, value_column", [("gl_users", "name"), ("notes", "body")])
def test_upsert_never_duplicates_identity(db, store, table, value_column):
    store.upsert_rows(table, [{"glide_row_id": "r1", value_column: "one"}, {"glide_row_id": "r2", value_column: "two"}])
    db.commit()
    store.upsert_rows(table, [{"glide_row_id": "r1", value_column: "uno"}, {"glide_row_id": "r3", value_column: "three"}])
    db.commit()

    rows = {row["glide_row_id"]: row[value_column] for row in store.fetch_rows(table)}
    assert rows == {"r1": "uno", "r2": "two", "r3": "three"}
    assert store.count_rows(table) == 3


def test_upsert_ignores_unknown_columns(db, store):
    store.upsert_rows("gl_users", [{"glide_row_id": "u1", "name": "Jane", "nickname": "JJ"}])
    db.commit()
    assert store.find_row("gl_users", "glide_row_id", "u1")["name"] == "Jane"


def test_upsert_requires_conflict_key(store):
    with pytest.raises(ValueError):
        store.upsert_rows("gl_users", [{"name": "Anonymous"}])


def test_partial_rows_keep_other_columns(db, store):
    store.upsert_rows("gl_accounts", [{"glide_row_id": "r1", "account_name": "Acme", "email": "ops@acme.test"}])
    db.commit()
    store.upsert_rows("gl_accounts", [{"glide_row_id": "r1", "account_name": "Acme Corp"}])
    db.commit()

    row = store.find_row("gl_accounts", "glide_row_id", "r1")
    assert row["account_name"] == "Acme Corp"
    assert row["email"] == "ops@acme.test"


def test_lookup_helpers(db, store):
    store.upsert_rows("notes", [{"glide_row_id": "n1", "body": "hello"}])
    db.execute(store.table("notes").insert(), [{"body": "local only"}])
    db.commit()

    assert store.find_existing_ids("notes", ["n1", "n2"]) == {"n1"}
    assert [row["body"] for row in store.fetch_rows("notes", missing_column="glide_row_id")] == ["local only"]
    assert store.find_row("notes", "glide_row_id", "n2") is None
    assert store.find_row("notes", "no_such_column", "x") is None

    assert store.set_column_values("notes", "glide_row_id", "n1", {"body": "changed"}) == 1
    assert store.find_row("notes", "glide_row_id", "n1")["body"] == "changed"
