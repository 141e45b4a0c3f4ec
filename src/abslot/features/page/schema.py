from __future__ import annotations

LOCAL_STORAGE_TABLE_NAME = "local_storage"

LOCAL_STORAGE_DDL = f"""
CREATE TABLE IF NOT EXISTS {LOCAL_STORAGE_TABLE_NAME} (
    origin TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (origin, key)
);
"""


def create_schema(conn) -> None:
    """
    Create tables. No migrations. Safe to call per page load.
    """
    conn.execute(LOCAL_STORAGE_DDL)
