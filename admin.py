"""Administrative commands: review, approve/reject, export and operator management."""

from __future__ import annotations

import argparse
import csv
import logging
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Iterable, List, Optional

from intake_pipeline import db
from intake_pipeline.access import Approvers
from intake_pipeline.batches import BatchService
from intake_pipeline.config import Settings, configure_logging, get_settings
from intake_pipeline.errors import IntakeError, NotFound
from intake_pipeline.onboarding import OnboardingFlow
from intake_pipeline.operators import OperatorRegistry
from intake_pipeline.pricelist import format_amount
from intake_pipeline.reports import export_header, export_values, format_weekly_stats, week_label, writeback_rows
from intake_pipeline.schema import BatchStatus, ExportRow, Operator
from intake_pipeline.store import MemoryStore

STATUS_ICONS = {
    BatchStatus.APPROVED: "✅",
    BatchStatus.NEEDS_REVIEW: "⚠️",
    BatchStatus.UNREVIEWED: "⏳",
}


class AdminConsole:
    """Command handlers; each returns the text shown to the approver."""

    def __init__(self, conn: sqlite3.Connection, settings: Settings, actor: Optional[int]):
        approvers = Approvers(settings.admin_ids)
        self.actor = actor
        self.batches = BatchService(conn, approvers)
        self.registry = OperatorRegistry(conn)
        self.onboarding = OnboardingFlow(
            self.registry,
            approvers,
            MemoryStore(),
            ttl_seconds=settings.onboarding_ttl_seconds,
            on_registered=self._operator_registered,
        )

    def _operator_registered(self, operator: Operator) -> None:
        self.registry.remember_identity(operator.external_id, operator.handle)
        logging.info(
            "Operator %s (%s) registered by %s", operator.external_id, operator.nickname, operator.added_by
        )

    def stats(self) -> str:
        s = self.batches.stats(self.actor)
        return (
            "📊 Статистика системы\n\n"
            f"🏭 Автосервисов: {s.stations}\n"
            f"📦 Всего пакетов: {s.batches}\n"
            f"⚠️ Ожидают проверки: {s.needs_review}\n"
            f"✅ Подтверждено: {s.approved}\n"
            f"📋 Всего позиций: {s.items}\n"
            f"💰 Общая сумма: {format_amount(s.total_amount)} руб.\n"
            f"📅 Пакетов за неделю: {s.batches_last_week}"
        )

    def stations(self) -> str:
        stations = self.batches.list_stations(self.actor)
        if not stations:
            return "🏭 Нет зарегистрированных автосервисов."
        lines = [f"🏭 Автосервисы ({len(stations)}):", ""]
        for station, count in stations:
            lines.append(f"• {station.name or 'Без имени'}")
            lines.append(f"  ID: {station.id} | ChatID: {station.chat_id} | Пакетов: {count}")
        return "\n".join(lines)

    def list_batches(self) -> str:
        summaries = self.batches.list_batches(self.actor)
        if not summaries:
            return "📋 Нет пакетов."
        lines = [f"📋 Последние пакеты ({len(summaries)}):", ""]
        for s in summaries:
            lines.append(f"{STATUS_ICONS[s.batch.status]} #{s.batch.id} — {s.station_name or '?'}")
            lines.append(f"  {s.batch.week_label} | {s.item_count} позиций | {s.batch.status.value}")
        return "\n".join(lines)

    def review(self) -> str:
        summaries = self.batches.list_needing_review(self.actor)
        if not summaries:
            return "✅ Нет пакетов, требующих проверки!"
        lines = [f"⚠️ Требуют проверки ({len(summaries)}):", ""]
        for s in summaries:
            lines.append(f"#{s.batch.id} — {s.station_name or '?'} ({s.batch.week_label})")
            if s.batch.rejected_reason:
                lines.append(f"  ❌ Отклонён: {s.batch.rejected_reason}")
            elif s.batch.review_reason and not s.flagged_items:
                lines.append(f"  • {s.batch.review_reason}")
            for item in s.flagged_items:
                lines.append(f"  • {item.work_name}: {item.validation_error}")
            lines.append("")
        return "\n".join(lines)

    def approve(self, batch_id: int) -> str:
        batch = self.batches.approve(self.actor, batch_id)
        items = self.batches.get_items(batch_id)
        return (
            f"✅ Пакет #{batch.id} подтверждён!\n"
            f"🏭 Сервис: {self.batches.station_name(batch.station_id) or '?'}\n"
            f"📦 Позиций: {len(items)}"
        )

    def reject(self, batch_id: int, reason: Optional[str]) -> str:
        batch = self.batches.reject(self.actor, batch_id, reason)
        return f"❌ Пакет #{batch.id} отклонён\nПричина: {batch.rejected_reason}"

    def export(self, output: Path, operator_id: Optional[int] = None) -> str:
        if operator_id is not None:
            self.batches.approvers.require(self.actor)
            operator = self.registry.find(operator_id)
            if operator is None:
                raise NotFound("Оператор", operator_id)
            rows = self.batches.export_approved(self.actor, operator_id=operator.id)
        else:
            rows = self.batches.export_approved(self.actor)
        if not rows:
            return "❌ Нет подтверждённых пакетов для выгрузки."
        write_export_csv(rows, output)
        return f"📊 Выгрузка: {len(rows)} позиций → {output}"

    def writeback(self, batch_id: int) -> str:
        """Price-sheet rows for one batch, tab separated, ready to paste or append."""
        self.batches.approvers.require(self.actor)
        batch = self.batches.get_batch(batch_id)
        rows = writeback_rows(batch, self.batches.station_name(batch.station_id), self.batches.get_items(batch_id))
        return "\n".join("\t".join(row) for row in rows)

    def operators(self) -> str:
        self.batches.approvers.require(self.actor)
        entries = self.registry.list_with_counts()
        if not entries:
            return "👥 Операторов не зарегистрировано."
        lines = [f"👥 Операторы ({len(entries)}):", ""]
        for operator, count in entries:
            handle = f" (@{operator.handle})" if operator.handle else ""
            lines.append(f"• {operator.nickname}{handle}")
            lines.append(f"  #{operator.id} | Telegram ID: {operator.external_id} | ЗН: {count}")
        return "\n".join(lines)

    def add_operator(self, target: str, nickname: str) -> str:
        return self.onboarding.register_direct(self.actor, target, nickname).text

    def remove_operator(self, operator_id: int) -> str:
        self.batches.approvers.require(self.actor)
        operator = self.registry.remove(operator_id)
        return f"✅ Оператор {operator.nickname} удалён."

    def weekly_report(self, days: int = 7) -> str:
        self.batches.approvers.require(self.actor)
        until = self.batches.clock()
        since = until - timedelta(days=days)
        activity, total = self.registry.activity_since(since)
        return format_weekly_stats(activity, total, since, until)

    def onboard(self) -> str:
        reply = self.onboarding.start(self.actor)
        print(reply.text)
        while reply.state is not None:
            try:
                text = input("> ")
            except EOFError:
                reply = self.onboarding.cancel(self.actor)
                break
            next_reply = self.onboarding.handle_message(self.actor, text)
            if next_reply is None:
                return "⌛ Сессия добавления оператора истекла."
            reply = next_reply
            if reply.state is not None:
                print(reply.text)
        return reply.text


def write_export_csv(rows: List[ExportRow], output: Path) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8-sig", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(export_header())
        for row in rows:
            writer.writerow(export_values(row))


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Approve, reject and export repair-order batches.")
    parser.add_argument(
        "--db",
        dest="db_path",
        type=Path,
        default=Path(settings.db_path),
        help=f"Path to the SQLite database (default: {settings.db_path}).",
    )
    parser.add_argument("--as", dest="actor", type=int, help="Identity issuing the command (checked against ADMIN_IDS).")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("stats", help="System statistics.")
    sub.add_parser("stations", help="List service stations.")
    sub.add_parser("batches", help="List the latest batches.")
    sub.add_parser("review", help="List batches that need review.")

    approve = sub.add_parser("approve", help="Approve a batch.")
    approve.add_argument("batch_id", type=int)

    reject = sub.add_parser("reject", help="Send a batch back for review.")
    reject.add_argument("batch_id", type=int)
    reject.add_argument("reason", nargs="*", help="Optional rejection reason.")

    export = sub.add_parser("export", help="Export approved batches to CSV.")
    export.add_argument("--operator", type=int, help="Only batches submitted by this operator identity.")
    export.add_argument("--output", type=Path, help="CSV file to write.")

    writeback = sub.add_parser("writeback", help="Print the price-sheet rows for a batch.")
    writeback.add_argument("batch_id", type=int)

    sub.add_parser("operators", help="List registered operators.")

    add = sub.add_parser("add-operator", help="Register an operator in one step.")
    add.add_argument("target", help="Numeric identity or @handle.")
    add.add_argument("nickname", nargs="+")

    remove = sub.add_parser("remove-operator", help="Remove an operator by its record id.")
    remove.add_argument("operator_id", type=int)

    sub.add_parser("onboard", help="Register an operator interactively.")

    report = sub.add_parser("report", help="Per-operator activity report (run weekly from cron).")
    report.add_argument("--days", type=int, default=7, help="Reporting window in days (default: 7).")
    return parser


def run_command(console: AdminConsole, args: argparse.Namespace) -> str:
    if args.command == "stats":
        return console.stats()
    if args.command == "stations":
        return console.stations()
    if args.command == "batches":
        return console.list_batches()
    if args.command == "review":
        return console.review()
    if args.command == "approve":
        return console.approve(args.batch_id)
    if args.command == "reject":
        return console.reject(args.batch_id, " ".join(args.reason) or None)
    if args.command == "export":
        suffix = f"_op{args.operator}" if args.operator is not None else ""
        default = Path(f"1C_Заказ-наряды_{week_label(console.batches.clock())}{suffix}.csv")
        return console.export(args.output or default, operator_id=args.operator)
    if args.command == "writeback":
        return console.writeback(args.batch_id)
    if args.command == "operators":
        return console.operators()
    if args.command == "add-operator":
        return console.add_operator(args.target, " ".join(args.nickname))
    if args.command == "remove-operator":
        return console.remove_operator(args.operator_id)
    if args.command == "onboard":
        return console.onboard()
    if args.command == "report":
        return console.weekly_report(args.days)
    raise ValueError(f"Unknown command {args.command}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    settings = get_settings()

    db.initialise_database(args.db_path)
    conn = db.connect(args.db_path)
    try:
        console = AdminConsole(conn, settings, args.actor)
        try:
            print(run_command(console, args))
        except IntakeError as exc:
            print(exc)
            return 1
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
