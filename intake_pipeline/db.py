"""SQLite schema and migrations for stations, operators, batches and items."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Union

CREATE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS service_stations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        chat_id INTEGER NOT NULL UNIQUE,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS operators (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id INTEGER NOT NULL UNIQUE,
        handle TEXT,
        nickname TEXT NOT NULL,
        added_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS known_identities (
        external_id INTEGER PRIMARY KEY,
        handle TEXT,
        last_seen_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS order_batches (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        station_id INTEGER REFERENCES service_stations(id),
        operator_id INTEGER REFERENCES operators(id) ON DELETE SET NULL,
        created_at TIMESTAMP NOT NULL,
        week_label TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'UNREVIEWED',
        source_name TEXT,
        plate_number TEXT,
        review_reason TEXT,
        rejected_reason TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        batch_id INTEGER NOT NULL REFERENCES order_batches(id) ON DELETE CASCADE,
        work_name TEXT NOT NULL,
        quantity REAL NOT NULL DEFAULT 0,
        price REAL NOT NULL DEFAULT 0,
        total REAL NOT NULL DEFAULT 0,
        vin TEXT,
        mileage INTEGER,
        validation_error TEXT
    );
    """,
]

# Columns added after the first release; applied to databases created earlier.
ADD_COLUMNS = {
    "order_batches": {
        "source_name": "ALTER TABLE order_batches ADD COLUMN source_name TEXT",
        "plate_number": "ALTER TABLE order_batches ADD COLUMN plate_number TEXT",
        "review_reason": "ALTER TABLE order_batches ADD COLUMN review_reason TEXT",
        "rejected_reason": "ALTER TABLE order_batches ADD COLUMN rejected_reason TEXT",
    },
    "operators": {
        "added_by": "ALTER TABLE operators ADD COLUMN added_by INTEGER",
        "updated_at": "ALTER TABLE operators ADD COLUMN updated_at TIMESTAMP",
    },
}

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_order_batches_status ON order_batches(status)",
    "CREATE INDEX IF NOT EXISTS idx_order_batches_station ON order_batches(station_id)",
    "CREATE INDEX IF NOT EXISTS idx_order_batches_operator ON order_batches(operator_id)",
    "CREATE INDEX IF NOT EXISTS idx_order_batches_created_at ON order_batches(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_batch ON order_items(batch_id)",
    "CREATE INDEX IF NOT EXISTS idx_known_identities_handle ON known_identities(handle COLLATE NOCASE)",
]


def ensure_tables(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    for statement in CREATE_TABLES:
        cur.execute(statement)
    conn.commit()


def ensure_columns(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    for table, columns in ADD_COLUMNS.items():
        cur.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cur.fetchall()}

        for column, statement in columns.items():
            if column not in existing_cols:
                cur.execute(statement)

    conn.commit()


def ensure_indexes(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    for statement in CREATE_INDEXES:
        cur.execute(statement)
    conn.commit()


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open a connection with row access by name and foreign keys enforced."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def prepare(conn: sqlite3.Connection) -> sqlite3.Connection:
    ensure_tables(conn)
    ensure_columns(conn)
    ensure_indexes(conn)
    return conn


def initialise_database(db_path: Union[str, Path]) -> None:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)
    try:
        prepare(conn)
    finally:
        conn.close()
