"""Ad-hoc database migrations for TripLog."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_pending_op_columns(conn) -> None:
    """Databases from the first release lack the retry bookkeeping columns."""

    columns = {
        "attempts": "INTEGER NOT NULL DEFAULT 0",
        "status": "TEXT NOT NULL DEFAULT 'pending'",
        "last_error": "TEXT",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "pendingop", name):
            conn.execute(text(f"ALTER TABLE pendingop ADD COLUMN {name} {ddl_type}"))
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_pendingop_status
            ON pendingop (status)
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_pending_op_columns(conn)


__all__ = ["run_all"]
