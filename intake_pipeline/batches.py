"""Batch lifecycle: ingest, approve, reject, listing and export selection."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from .access import Approvers
from .errors import NotFound
from .reports import build_export_rows, week_label
from .schema import (
    BatchStatus,
    BatchSummary,
    ExportRow,
    OrderBatch,
    OrderItem,
    ParsedOrder,
    ServiceStation,
)

DEFAULT_REJECT_REASON = "Отклонено администратором"
DEFAULT_REVIEW_REASON = "Требует проверки оператором"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BatchStats:
    stations: int
    batches: int
    needs_review: int
    approved: int
    items: int
    total_amount: float
    batches_last_week: int


def _row_to_batch(row: sqlite3.Row) -> OrderBatch:
    return OrderBatch(
        id=row["id"],
        station_id=row["station_id"],
        operator_id=row["operator_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        week_label=row["week_label"],
        status=BatchStatus(row["status"]),
        source_name=row["source_name"],
        plate_number=row["plate_number"],
        review_reason=row["review_reason"],
        rejected_reason=row["rejected_reason"],
    )


def _row_to_item(row: sqlite3.Row) -> OrderItem:
    return OrderItem(
        id=row["id"],
        batch_id=row["batch_id"],
        work_name=row["work_name"],
        quantity=row["quantity"],
        price=row["price"],
        total=row["total"],
        vin=row["vin"],
        mileage=row["mileage"],
        validation_error=row["validation_error"],
    )


def item_validation_errors(order: ParsedOrder, warnings: Sequence[Optional[str]]) -> List[Optional[str]]:
    """Per-item validation error: the overage warning, else the extraction's review reason."""
    fallback = (order.review_reason or DEFAULT_REVIEW_REASON) if order.needs_operator_review else None
    errors: List[Optional[str]] = []
    for index in range(len(order.items)):
        warning = warnings[index] if index < len(warnings) else None
        errors.append(warning or fallback)
    return errors


def initial_status(order: ParsedOrder, validation_errors: Sequence[Optional[str]]) -> BatchStatus:
    """Approval is never automatic: a clean batch still waits as UNREVIEWED."""
    if order.needs_operator_review or any(validation_errors):
        return BatchStatus.NEEDS_REVIEW
    return BatchStatus.UNREVIEWED


class BatchService:
    def __init__(
        self,
        conn: sqlite3.Connection,
        approvers: Approvers,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.conn = conn
        self.approvers = approvers
        self.clock = clock

    # -- stations -----------------------------------------------------------

    def upsert_station(self, chat_id: int, name: str) -> ServiceStation:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO service_stations (chat_id, name) VALUES (?, ?)
            ON CONFLICT(chat_id) DO UPDATE SET name = excluded.name
            """,
            (chat_id, name),
        )
        self.conn.commit()
        cur.execute("SELECT id, chat_id, name FROM service_stations WHERE chat_id = ?", (chat_id,))
        row = cur.fetchone()
        return ServiceStation(id=row["id"], chat_id=row["chat_id"], name=row["name"])

    def list_stations(self, actor: Optional[int]) -> List[Tuple[ServiceStation, int]]:
        self.approvers.require(actor)
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT s.id, s.chat_id, s.name, COUNT(b.id) AS batch_count
            FROM service_stations s
            LEFT JOIN order_batches b ON b.station_id = s.id
            GROUP BY s.id
            ORDER BY s.created_at DESC, s.id DESC
            """
        )
        return [
            (ServiceStation(id=row["id"], chat_id=row["chat_id"], name=row["name"]), row["batch_count"])
            for row in cur.fetchall()
        ]

    # -- ingest -------------------------------------------------------------

    def ingest(
        self,
        order: ParsedOrder,
        warnings: Sequence[Optional[str]] = (),
        station_id: Optional[int] = None,
        operator_id: Optional[int] = None,
        source_name: Optional[str] = None,
    ) -> Tuple[OrderBatch, List[OrderItem]]:
        """Persist one parsed document as a new batch with its items."""
        validation_errors = item_validation_errors(order, warnings)
        status = initial_status(order, validation_errors)
        created_at = self.clock()

        cur = self.conn.cursor()
        try:
            cur.execute(
                """
                INSERT INTO order_batches (
                    station_id, operator_id, created_at, week_label, status,
                    source_name, plate_number, review_reason
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    station_id,
                    operator_id,
                    created_at.isoformat(),
                    week_label(created_at),
                    status.value,
                    source_name,
                    order.plate_number,
                    order.review_reason if order.needs_operator_review else None,
                ),
            )
            batch_id = cur.lastrowid

            cur.executemany(
                """
                INSERT INTO order_items (
                    batch_id, work_name, quantity, price, total, vin, mileage, validation_error
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        batch_id,
                        item.work_name,
                        item.quantity,
                        item.price,
                        item.total,
                        order.vin,
                        order.mileage,
                        error,
                    )
                    for item, error in zip(order.items, validation_errors)
                ],
            )
            self.conn.commit()
        except (sqlite3.Error, OverflowError):
            self.conn.rollback()
            raise

        logging.info(
            "Ingested batch %s from %s: %d item(s), status %s",
            batch_id,
            source_name or "<unknown>",
            len(order.items),
            status.value,
        )
        return self.get_batch(batch_id), self.get_items(batch_id)

    # -- lookups ------------------------------------------------------------

    def get_batch(self, batch_id: int) -> OrderBatch:
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM order_batches WHERE id = ?", (batch_id,))
        row = cur.fetchone()
        if row is None:
            raise NotFound("Пакет", batch_id)
        return _row_to_batch(row)

    def get_items(self, batch_id: int) -> List[OrderItem]:
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM order_items WHERE batch_id = ? ORDER BY id ASC", (batch_id,))
        return [_row_to_item(row) for row in cur.fetchall()]

    def station_name(self, station_id: Optional[int]) -> Optional[str]:
        if station_id is None:
            return None
        cur = self.conn.cursor()
        cur.execute("SELECT name FROM service_stations WHERE id = ?", (station_id,))
        row = cur.fetchone()
        return row["name"] if row else None

    # -- transitions --------------------------------------------------------

    def approve(self, actor: Optional[int], batch_id: int) -> OrderBatch:
        self.approvers.require(actor)
        batch = self.get_batch(batch_id)
        if batch.status is BatchStatus.APPROVED:
            logging.debug("Batch %s already approved", batch_id)
            return batch

        self._set_status(batch_id, BatchStatus.APPROVED)
        logging.info("Batch %s approved by %s", batch_id, actor)
        return self.get_batch(batch_id)

    def reject(self, actor: Optional[int], batch_id: int, reason: Optional[str] = None) -> OrderBatch:
        self.approvers.require(actor)
        self.get_batch(batch_id)
        reason = (reason or "").strip() or DEFAULT_REJECT_REASON
        self._set_status(batch_id, BatchStatus.NEEDS_REVIEW, rejected_reason=reason)
        logging.info("Batch %s rejected by %s: %s", batch_id, actor, reason)
        return self.get_batch(batch_id)

    def _set_status(self, batch_id: int, status: BatchStatus, rejected_reason: Optional[str] = None) -> None:
        cur = self.conn.cursor()
        if rejected_reason is None:
            cur.execute(
                "UPDATE order_batches SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (status.value, batch_id),
            )
        else:
            cur.execute(
                """
                UPDATE order_batches
                SET status = ?, rejected_reason = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (status.value, rejected_reason, batch_id),
            )
        self.conn.commit()

    # -- listings -----------------------------------------------------------

    def _summaries(self, where: str, params: Sequence[object], limit: Optional[int]) -> List[BatchSummary]:
        query = f"""
            SELECT b.*, s.name AS station_name,
                   (SELECT COUNT(*) FROM order_items i WHERE i.batch_id = b.id) AS item_count
            FROM order_batches b
            LEFT JOIN service_stations s ON s.id = b.station_id
            {where}
            ORDER BY b.created_at DESC, b.id DESC
        """
        args = list(params)
        if limit is not None:
            query += " LIMIT ?"
            args.append(limit)

        cur = self.conn.cursor()
        cur.execute(query, args)
        return [
            BatchSummary(batch=_row_to_batch(row), station_name=row["station_name"], item_count=row["item_count"])
            for row in cur.fetchall()
        ]

    def list_batches(self, actor: Optional[int], limit: int = 15) -> List[BatchSummary]:
        self.approvers.require(actor)
        return self._summaries("", (), limit)

    def list_needing_review(self, actor: Optional[int], flagged_per_batch: int = 3) -> List[BatchSummary]:
        self.approvers.require(actor)
        summaries = self._summaries("WHERE b.status = ?", (BatchStatus.NEEDS_REVIEW.value,), None)

        cur = self.conn.cursor()
        result = []
        for summary in summaries:
            cur.execute(
                """
                SELECT * FROM order_items
                WHERE batch_id = ? AND validation_error IS NOT NULL
                ORDER BY id ASC
                LIMIT ?
                """,
                (summary.batch.id, flagged_per_batch),
            )
            flagged = tuple(_row_to_item(row) for row in cur.fetchall())
            result.append(
                BatchSummary(
                    batch=summary.batch,
                    station_name=summary.station_name,
                    item_count=summary.item_count,
                    flagged_items=flagged,
                )
            )
        return result

    def stats(self, actor: Optional[int]) -> BatchStats:
        self.approvers.require(actor)
        cur = self.conn.cursor()

        def scalar(query: str, params: Sequence[object] = ()) -> float:
            cur.execute(query, params)
            value = cur.fetchone()[0]
            return value or 0

        week_ago = (self.clock() - timedelta(days=7)).isoformat()
        return BatchStats(
            stations=int(scalar("SELECT COUNT(*) FROM service_stations")),
            batches=int(scalar("SELECT COUNT(*) FROM order_batches")),
            needs_review=int(
                scalar("SELECT COUNT(*) FROM order_batches WHERE status = ?", (BatchStatus.NEEDS_REVIEW.value,))
            ),
            approved=int(
                scalar("SELECT COUNT(*) FROM order_batches WHERE status = ?", (BatchStatus.APPROVED.value,))
            ),
            items=int(scalar("SELECT COUNT(*) FROM order_items")),
            total_amount=float(scalar("SELECT SUM(total) FROM order_items")),
            batches_last_week=int(scalar("SELECT COUNT(*) FROM order_batches WHERE created_at >= ?", (week_ago,))),
        )

    # -- export -------------------------------------------------------------

    def approved_batches(self, operator_id: Optional[int] = None) -> List[BatchSummary]:
        where = "WHERE b.status = ?"
        params: List[object] = [BatchStatus.APPROVED.value]
        if operator_id is not None:
            where += " AND b.operator_id = ?"
            params.append(operator_id)
        return self._summaries(where, params, None)

    def export_approved(self, actor: Optional[int], operator_id: Optional[int] = None) -> List[ExportRow]:
        """Flatten every APPROVED batch (optionally one operator's) into export rows."""
        self.approvers.require(actor)
        rows: List[ExportRow] = []
        for summary in self.approved_batches(operator_id):
            rows.extend(build_export_rows(summary.batch, summary.station_name, self.get_items(summary.batch.id)))
        return rows
