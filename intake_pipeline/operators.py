"""Operator registry: upsert by external identity, handle resolution, activity."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import List, Optional, Tuple

from .errors import NotFound
from .reports import OperatorActivity
from .schema import Operator


def normalise_handle(handle: Optional[str]) -> Optional[str]:
    if handle is None:
        return None
    handle = handle.strip().lstrip("@").strip()
    return handle or None


def _row_to_operator(row: sqlite3.Row) -> Operator:
    return Operator(
        id=row["id"],
        external_id=row["external_id"],
        nickname=row["nickname"],
        handle=row["handle"],
        added_by=row["added_by"],
        created_at=row["created_at"],
    )


class OperatorRegistry:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def remember_identity(self, external_id: int, handle: Optional[str] = None) -> None:
        """Record that an identity has interacted with the system."""
        handle = normalise_handle(handle)
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO known_identities (external_id, handle) VALUES (?, ?)
            ON CONFLICT(external_id) DO UPDATE SET
                handle = COALESCE(excluded.handle, known_identities.handle),
                last_seen_at = CURRENT_TIMESTAMP
            """,
            (external_id, handle),
        )
        self.conn.commit()

    def known_handle(self, external_id: int) -> Optional[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT handle FROM known_identities WHERE external_id = ?", (external_id,))
        row = cur.fetchone()
        return row["handle"] if row else None

    def resolve_handle(self, handle: str) -> Optional[int]:
        """Map ``@handle`` to an external identity seen before, if any."""
        handle = normalise_handle(handle)
        if not handle:
            return None
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT external_id FROM known_identities
            WHERE handle = ? COLLATE NOCASE
            ORDER BY last_seen_at DESC
            LIMIT 1
            """,
            (handle,),
        )
        row = cur.fetchone()
        if row is None:
            cur.execute("SELECT external_id FROM operators WHERE handle = ? COLLATE NOCASE LIMIT 1", (handle,))
            row = cur.fetchone()
        return row["external_id"] if row else None

    def find(self, external_id: int) -> Optional[Operator]:
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM operators WHERE external_id = ?", (external_id,))
        row = cur.fetchone()
        return _row_to_operator(row) if row else None

    def upsert(
        self,
        external_id: int,
        nickname: str,
        handle: Optional[str] = None,
        added_by: Optional[int] = None,
    ) -> Operator:
        handle = normalise_handle(handle)
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO operators (external_id, handle, nickname, added_by) VALUES (?, ?, ?, ?)
            ON CONFLICT(external_id) DO UPDATE SET
                nickname = excluded.nickname,
                handle = COALESCE(excluded.handle, operators.handle),
                added_by = excluded.added_by,
                updated_at = CURRENT_TIMESTAMP
            """,
            (external_id, handle, nickname, added_by),
        )
        self.conn.commit()
        operator = self.find(external_id)
        assert operator is not None
        logging.info("Registered operator %s (%s)", operator.nickname, external_id)
        return operator

    def list_with_counts(self) -> List[Tuple[Operator, int]]:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT o.*, COUNT(b.id) AS batch_count
            FROM operators o
            LEFT JOIN order_batches b ON b.operator_id = o.id
            GROUP BY o.id
            ORDER BY o.created_at ASC, o.id ASC
            """
        )
        return [(_row_to_operator(row), row["batch_count"]) for row in cur.fetchall()]

    def remove(self, operator_id: int) -> Operator:
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM operators WHERE id = ?", (operator_id,))
        row = cur.fetchone()
        if row is None:
            raise NotFound("Оператор", operator_id)
        cur.execute("DELETE FROM operators WHERE id = ?", (operator_id,))
        self.conn.commit()
        return _row_to_operator(row)

    def activity_since(self, since: datetime) -> Tuple[List[OperatorActivity], int]:
        """Per-operator batch counts since ``since`` plus the overall batch total."""
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT o.nickname, o.handle, COUNT(b.id) AS batch_count
            FROM operators o
            LEFT JOIN order_batches b ON b.operator_id = o.id AND b.created_at >= ?
            GROUP BY o.id
            ORDER BY o.nickname ASC
            """,
            (since.isoformat(),),
        )
        activity = [
            OperatorActivity(nickname=row["nickname"], handle=row["handle"], batch_count=row["batch_count"])
            for row in cur.fetchall()
        ]
        cur.execute("SELECT COUNT(*) FROM order_batches WHERE created_at >= ?", (since.isoformat(),))
        return activity, cur.fetchone()[0]
