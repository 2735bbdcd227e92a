"""SQLite record storage backing persisted models."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from fasten.errors import DefinitionError

logger = logging.getLogger(__name__)

__all__ = ["SQLiteRecordStore"]


def _identifier(name: str) -> str:
    if not name.isidentifier():
        raise DefinitionError(f"{name!r} is not a valid table or column name")
    return f'"{name}"'


class SQLiteRecordStore:
    """Rows keyed by an integer ``id`` primary key, one table per model.

    The connection stays open for the store's lifetime so that ``":memory:"``
    databases persist between calls.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = path
        self._conn = sqlite3.connect(str(path))
        self._conn.row_factory = sqlite3.Row

    @contextmanager
    def connection(self):
        """Yield the connection, committing on success and rolling back on error."""
        try:
            yield self._conn
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise

    def close(self):
        self._conn.close()

    def ensure_table(self, table: str, columns: Iterable[str]):
        """Create ``table`` with an ``id`` key and untyped ``columns`` if missing."""
        names = [_identifier(column) for column in columns if column != "id"]
        with self.connection() as conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {_identifier(table)} "
                f"(id INTEGER PRIMARY KEY AUTOINCREMENT{''.join(', ' + name for name in names)})"
            )

    def insert(self, table: str, values: Mapping[str, Any]) -> int:
        columns = [_identifier(name) for name in values]
        placeholders = ", ".join("?" for _ in columns)
        with self.connection() as conn:
            if columns:
                cursor = conn.execute(
                    f"INSERT INTO {_identifier(table)} ({', '.join(columns)}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
            else:
                cursor = conn.execute(f"INSERT INTO {_identifier(table)} DEFAULT VALUES")
        logger.debug("Inserted row %s into %s", cursor.lastrowid, table)
        return cursor.lastrowid

    def update(self, table: str, id: int, values: Mapping[str, Any]):
        if not values:
            return
        assignments = ", ".join(f"{_identifier(name)} = ?" for name in values)
        with self.connection() as conn:
            conn.execute(
                f"UPDATE {_identifier(table)} SET {assignments} WHERE id = ?",
                (*values.values(), id),
            )
        logger.debug("Updated row %s in %s", id, table)

    def fetch(self, table: str, id: int) -> Optional[dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(f"SELECT * FROM {_identifier(table)} WHERE id = ?", (id,)).fetchone()
        return dict(row) if row is not None else None
