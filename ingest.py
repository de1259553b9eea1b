"""Run uploaded repair-order documents through the intake pipeline."""

from __future__ import annotations

import argparse
import logging
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional

from intake_pipeline import db
from intake_pipeline.access import Approvers
from intake_pipeline.batches import BatchService
from intake_pipeline.client import OpenAIExtractor
from intake_pipeline.config import configure_logging, get_settings
from intake_pipeline.drive import DriveClient
from intake_pipeline.errors import IntakeError
from intake_pipeline.operators import OperatorRegistry
from intake_pipeline.pipeline import IngestResult, IntakePipeline
from intake_pipeline.pricelist import CsvCatalogSource, PriceCatalog, format_amount
from intake_pipeline.reports import format_upload_notice
from intake_pipeline.schema import BatchStatus
from intake_pipeline.store import MemoryStore


def format_summary(result: IngestResult) -> str:
    order = result.order
    lines = [
        f"📋 {result.source_name} → пакет #{result.batch.id} ({result.batch.status.value})",
        f"🚗 Госномер: {order.plate_number or '❓ Не указан'}",
        f"📍 Город: {order.city or '❓ Не указан'}",
        f"🛣 Пробег: {str(order.mileage) + ' км' if order.mileage else '❓ Не указан'}",
        f"📦 Позиций: {len(order.items)}",
    ]
    if order.needs_operator_review:
        lines.append(f"⚠️ Требует проверки: {order.review_reason}")
    total = sum(item.total for item in order.items)
    lines.append(f"💰 Итого: {format_amount(total)} руб.")
    if result.warnings:
        lines.append("⚠️ Превышения по прайсу:")
        lines.extend(f"• {warning}" for warning in result.warnings)
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Extract, price-check and store repair-order documents.")
    parser.add_argument(
        "files",
        nargs="+",
        help="Images, PDF, DOCX/DOC, ZIP/RAR archives, or public Google Drive file/folder links.",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        type=Path,
        default=Path(settings.db_path),
        help=f"Path to the SQLite database (default: {settings.db_path}).",
    )
    parser.add_argument("--chat-id", type=int, help="Chat the documents came from (registers the service station).")
    parser.add_argument("--chat-name", default="Автосервис", help="Display name of the service station.")
    parser.add_argument("--operator-id", type=int, help="External identity of the submitting operator.")
    parser.add_argument("--handle", help="Submitter's @handle, remembered for operator onboarding.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


def is_link(target: str) -> bool:
    return target.startswith(("http://", "https://"))


def process_target(
    target: str,
    pipeline: IntakePipeline,
    drive: DriveClient,
    station_id: Optional[int],
    operator_id: Optional[int],
) -> List[IngestResult]:
    """Ingest a local path or a Drive link; problems are printed, not raised."""
    if not is_link(target):
        path = Path(target)
        if not path.exists():
            print(f"[ERROR] File not found: {path}")
            return []
        try:
            return pipeline.process_file(path, station_id=station_id, operator_id=operator_id)
        except IntakeError as exc:
            print(f"[ERROR] {path.name}: {exc}")
            return []

    results: List[IngestResult] = []
    with tempfile.TemporaryDirectory(prefix="intake_drive_") as tmp:
        try:
            paths = drive.fetch(target, Path(tmp))
        except IntakeError as exc:
            print(f"[ERROR] {target}: {exc}")
            return []
        if not paths:
            print(f"[WARN] No supported files behind {target}")
        for path in paths:
            try:
                results.extend(pipeline.process_file(path, station_id=station_id, operator_id=operator_id))
            except IntakeError as exc:
                print(f"[ERROR] {path.name}: {exc}")
    return results


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    settings = get_settings()

    db.initialise_database(args.db_path)
    conn = db.connect(args.db_path)
    try:
        batches = BatchService(conn, Approvers(settings.admin_ids))
        registry = OperatorRegistry(conn)
        catalog = PriceCatalog(
            CsvCatalogSource(settings.pricelist_url, timeout=settings.pricelist_timeout),
            MemoryStore(),
            ttl_seconds=settings.pricelist_ttl_seconds,
        )
        pipeline = IntakePipeline(OpenAIExtractor(settings), catalog, batches)
        drive = DriveClient(timeout=settings.drive_timeout)

        station_id = None
        if args.chat_id is not None:
            station_id = batches.upsert_station(args.chat_id, args.chat_name).id

        operator = None
        if args.operator_id is not None:
            registry.remember_identity(args.operator_id, args.handle)
            operator = registry.find(args.operator_id)
            if operator is None:
                logging.warning("Identity %s is not a registered operator", args.operator_id)

        results: List[IngestResult] = []
        for target in args.files:
            results.extend(
                process_target(target, pipeline, drive, station_id, operator.id if operator else None)
            )

        for result in results:
            print("=" * 80)
            print(format_summary(result))
            if operator is not None:
                notice = format_upload_notice(
                    operator.nickname, operator.handle, result.source_name, result.batch.id
                )
                recipients = ", ".join(str(i) for i in settings.admin_ids) or "<no admins configured>"
                logging.info("Upload notice for %s:\n%s", recipients, notice)

        flagged = sum(1 for r in results if r.batch.status is BatchStatus.NEEDS_REVIEW)
        print(f"Processed {len(results)} document(s). Needs review: {flagged}.")
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
