import pytest

from fasten.errors import DefinitionError
from fasten.storage import SQLiteRecordStore


@pytest.fixture
def store():
    store = SQLiteRecordStore()
    store.ensure_table("things", ["name", "configuration"])
    yield store
    store.close()


def test_insert_and_fetch(store):
    id = store.insert("things", {"name": "first", "configuration": "{}"})

    assert store.fetch("things", id) == {"id": id, "name": "first", "configuration": "{}"}


def test_fetch_missing_row(store):
    assert store.fetch("things", 1) is None


def test_insert_without_values(store):
    id = store.insert("things", {})

    assert store.fetch("things", id) == {"id": id, "name": None, "configuration": None}


def test_update(store):
    id = store.insert("things", {"name": "first"})

    store.update("things", id, {"name": "second"})

    assert store.fetch("things", id)["name"] == "second"


def test_ensure_table_is_idempotent(store):
    store.ensure_table("things", ["name", "configuration"])

    assert store.insert("things", {"name": "again"}) == 1


def test_failed_transaction_is_rolled_back(store):
    with pytest.raises(RuntimeError, match="boom"):
        with store.connection() as conn:
            conn.execute('INSERT INTO "things" ("name") VALUES (?)', ("lost",))
            raise RuntimeError("boom")

    assert store.fetch("things", 1) is None


def test_rows_persist_in_database_files(tmp_path):
    path = tmp_path / "fasten.db"
    store = SQLiteRecordStore(path)
    store.ensure_table("things", ["name"])
    id = store.insert("things", {"name": "kept"})
    store.close()

    reopened = SQLiteRecordStore(path)
    try:
        assert reopened.fetch("things", id)["name"] == "kept"
    finally:
        reopened.close()


@pytest.mark.parametrize("name", ["drop table", "things;", "1things"])
def test_invalid_identifiers_are_rejected(store, name):
    with pytest.raises(DefinitionError, match="is not a valid table or column name"):
        store.ensure_table(name, ["name"])
