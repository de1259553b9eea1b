"""Report shaping: week labels, export columns, write-back rows, weekly stats."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Tuple, Union

from .pricelist import format_amount
from .schema import ExportRow, OrderBatch, OrderItem

# Column order and labels are what the accounting import expects; do not change.
EXPORT_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("station", "Автосервис"),
    ("week_label", "Неделя"),
    ("plate_number", "Госномер"),
    ("mileage", "Пробег (км)"),
    ("work_name", "Наименование работы/запчасти"),
    ("quantity", "Кол-во"),
    ("price", "Цена (руб.)"),
    ("total", "Сумма (руб.)"),
)

WRITEBACK_COLUMNS = ("Наименование работы/запчасти", "Кол-во", "Цена (руб.)", "Сумма (руб.)", "Замечание")
UNKNOWN_STATION = "Неизвестно"
TOTAL_LABEL = "ИТОГО"


def week_start(value: Union[date, datetime]) -> date:
    day = value.date() if isinstance(value, datetime) else value
    return day - timedelta(days=day.weekday())


def week_label(value: Union[date, datetime]) -> str:
    """Monday of the week containing ``value``, as dd.mm.yyyy."""
    return week_start(value).strftime("%d.%m.%Y")


def export_header() -> List[str]:
    return [label for _, label in EXPORT_COLUMNS]


def export_values(row: ExportRow) -> List[object]:
    values: List[object] = []
    for key, _ in EXPORT_COLUMNS:
        value = getattr(row, key)
        values.append("" if value is None else value)
    return values


def build_export_rows(
    batch: OrderBatch, station_name: Optional[str], items: Sequence[OrderItem]
) -> List[ExportRow]:
    rows = []
    for item in items:
        rows.append(
            ExportRow(
                station=station_name or UNKNOWN_STATION,
                week_label=batch.week_label,
                plate_number=batch.plate_number or item.vin or "—",
                mileage=item.mileage,
                work_name=item.work_name,
                quantity=item.quantity,
                price=item.price,
                total=item.total,
            )
        )
    return rows


def writeback_rows(
    batch: OrderBatch, station_name: Optional[str], items: Sequence[OrderItem]
) -> List[List[str]]:
    """Rows appended to the catalog sheet for one batch.

    Layout: batch header line, column header line, one line per item, totals
    line and a blank separator line.
    """
    header = f"=== Пакет #{batch.id} | {station_name or UNKNOWN_STATION} | {batch.week_label} ==="
    rows: List[List[str]] = [[header], list(WRITEBACK_COLUMNS)]
    for item in items:
        rows.append(
            [
                item.work_name,
                format_amount(item.quantity),
                format_amount(item.price),
                format_amount(item.total),
                item.validation_error or "",
            ]
        )
    total_qty = sum(item.quantity for item in items)
    total_sum = sum(item.total for item in items)
    rows.append([TOTAL_LABEL, format_amount(total_qty), "", format_amount(total_sum), ""])
    rows.append([])
    return rows


@dataclass(frozen=True)
class OperatorActivity:
    nickname: str
    handle: Optional[str]
    batch_count: int


def format_weekly_stats(
    activity: Sequence[OperatorActivity], total_batches: int, since: datetime, until: datetime
) -> str:
    lines = [
        "📊 Статистика ЗН за неделю",
        f"({since.strftime('%d.%m.%Y')} — {until.strftime('%d.%m.%Y')})",
        "",
    ]
    if not activity:
        lines.append("Операторов не зарегистрировано")
    for entry in activity:
        count = entry.batch_count
        bar = "▓" * min(count, 10) + "░" * max(0, 10 - count)
        handle = f" (@{entry.handle})" if entry.handle else ""
        lines.append(f"👤 {entry.nickname}{handle}")
        lines.append(f"   {bar} {count} ЗН")
    lines.append("")
    lines.append(f"📦 Итого ЗН за неделю: {total_batches}")
    return "\n".join(lines)


def format_upload_notice(nickname: str, handle: Optional[str], file_name: str, batch_id: int) -> str:
    """Message for approvers when an operator uploads a repair order."""
    handle_part = f" (@{handle})" if handle else ""
    return (
        "📤 Новый Заказ-Наряд загружен\n\n"
        f"👤 Оператор: {nickname}{handle_part}\n"
        f"📄 Файл: {file_name}\n"
        f"🔖 Пакет: #{batch_id}"
    )
