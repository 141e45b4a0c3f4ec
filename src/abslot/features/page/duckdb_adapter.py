from __future__ import annotations

import os

import duckdb

from .schema import LOCAL_STORAGE_TABLE_NAME, create_schema


class DuckDBAdapter:
    """
    DuckDB durable key/value adapter. Owns the connection and schema.
    Rows are namespaced by origin, the way a browser partitions localStorage.
    """

    def __init__(self, path: str, *, clean_slate: bool) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self._conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> None:
        if self._conn is not None:
            return
        if self.clean_slate and os.path.exists(self.path):
            os.remove(self.path)

        # Ensure parent dir exists
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self._conn = duckdb.connect(self.path)
        create_schema(self._conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBAdapter not opened. Call open() first.")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get(self, origin: str, key: str) -> str | None:
        res = self.conn.execute(
            f"SELECT value FROM {LOCAL_STORAGE_TABLE_NAME} WHERE origin = ? AND key = ?",
            [origin, key],
        ).fetchone()
        return str(res[0]) if res else None

    def put(self, origin: str, key: str, value: str) -> None:
        self.conn.execute(
            f"INSERT OR REPLACE INTO {LOCAL_STORAGE_TABLE_NAME} (origin, key, value) "
            "VALUES (?, ?, ?)",
            [origin, key, value],
        )

    def count_keys(self, origin: str) -> int:
        """
        Convenience method for sanity checks/tests.
        """
        res = self.conn.execute(
            f"SELECT COUNT(*) FROM {LOCAL_STORAGE_TABLE_NAME} WHERE origin = ?",
            [origin],
        ).fetchone()
        return int(res[0]) if res else 0
