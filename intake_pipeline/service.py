"""High-level helpers for turning an extraction response into a ParsedOrder."""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, List, Optional, Tuple

from .client import Extractor
from .errors import ExtractionContractViolation
from .schema import ExtractionRequest, ParsedItem, ParsedOrder

PARSE_FAILURE_REASON = "Не удалось разобрать ответ ИИ"
SERVICE_FAILURE_REASON = "Сервис распознавания недоступен"
DROPPED_ITEMS_REASON = "Часть позиций без наименования пропущена"
UNREADABLE_AMOUNT_REASON = "Не удалось распознать суммы"
UNREADABLE_MILEAGE_REASON = "Пробег не распознан"

SQLITE_INT_MAX = 2**63 - 1

_FENCE_RE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)
_NUMBER_CLEAN_RE = re.compile(r"[^\d.,\-]")


def review_stub(reason: str, raw_text: str = "") -> ParsedOrder:
    """Empty order flagged for a human; used whenever extraction cannot be trusted."""
    return ParsedOrder(
        items=(),
        needs_operator_review=True,
        review_reason=reason,
        raw_text=raw_text,
    )


def strip_code_fence(content: str) -> str:
    match = _FENCE_RE.match(content)
    if match:
        return match.group(1).strip()
    return content.strip()


def _extract_brace_block(content: str) -> Optional[str]:
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        return None
    return content[start : end + 1]


def parse_json_object(content: str) -> dict:
    """Recover the JSON object from a model response.

    The fenced wrapper is removed first; when the remainder is not JSON the
    first ``{`` through the last ``}`` is tried instead.
    """
    cleaned = strip_code_fence(content)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        block = _extract_brace_block(cleaned)
        if block is None:
            raise ExtractionContractViolation("No JSON object in model response", content) from None
        try:
            data = json.loads(block)
        except json.JSONDecodeError as exc:
            raise ExtractionContractViolation("Model response is not valid JSON", content) from exc

    if not isinstance(data, dict):
        raise ExtractionContractViolation("Model response is not a JSON object", content)
    return data


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text


def _parse_decimal(text: str) -> Optional[float]:
    """Read "1 200,50", "1.200,50" or "1,200.50"; the rightmost separator is the decimal point."""
    cleaned = _NUMBER_CLEAN_RE.sub("", text).strip(".,")
    if not cleaned:
        return None

    last_comma, last_dot = cleaned.rfind(","), cleaned.rfind(".")
    if last_comma != -1 and last_dot != -1:
        decimal, grouping = (",", ".") if last_comma > last_dot else (".", ",")
        cleaned = cleaned.replace(grouping, "").replace(decimal, ".")
    elif cleaned.count(",") > 1 or cleaned.count(".") > 1:
        cleaned = cleaned.replace(",", "").replace(".", "")
    else:
        cleaned = cleaned.replace(",", ".")

    try:
        return float(cleaned)
    except ValueError:
        return None


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number: Optional[float] = float(value)
    elif isinstance(value, str):
        number = _parse_decimal(value)
    else:
        return None
    if number is None or not math.isfinite(number):
        return None
    return number


def _to_int(value: Any) -> Optional[int]:
    """Whole number that fits a SQLite INTEGER column, else None."""
    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    else:
        as_float = _to_number(value)
        if as_float is None:
            return None
        number = int(as_float)
    if abs(number) > SQLITE_INT_MAX:
        return None
    return number


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and _clean_text(value) is None)


def _parse_items(value: Any) -> Tuple[List[ParsedItem], int, List[str]]:
    """Return ``(items, dropped_count, names_with_unreadable_numbers)``."""
    if not isinstance(value, list):
        return [], 0, []

    items: List[ParsedItem] = []
    dropped = 0
    unreadable: List[str] = []
    for entry in value:
        if not isinstance(entry, dict):
            dropped += 1
            continue
        name = _clean_text(_first(entry, "workName", "work_name", "name"))
        if not name:
            dropped += 1
            continue

        raw_quantity = _first(entry, "quantity", "qty")
        raw_price = entry.get("price")
        raw_total = _first(entry, "total", "sum")
        quantity = _to_number(raw_quantity)
        price = _to_number(raw_price)
        total = _to_number(raw_total)
        if any(
            number is None and not _is_blank(raw)
            for number, raw in ((quantity, raw_quantity), (price, raw_price), (total, raw_total))
        ):
            unreadable.append(name)

        if quantity is None:
            quantity = 1.0
        if price is None:
            price = 0.0
        if total is None:
            total = round(quantity * price, 2)

        items.append(ParsedItem(work_name=name, quantity=quantity, price=price, total=total))
    return items, dropped, unreadable


def normalise_model_response(content: str, raw_text: Optional[str] = None) -> ParsedOrder:
    data = parse_json_object(content)

    items, dropped, unreadable = _parse_items(data.get("items"))
    needs_review = bool(
        _first(data, "needsOperatorReview", "needs_operator_review", "needsManualReview")
    )
    model_reason = _clean_text(_first(data, "reviewReason", "review_reason"))

    problems: List[str] = []
    if dropped:
        logging.info("Dropped %d malformed item(s) from extraction response", dropped)
        problems.append(DROPPED_ITEMS_REASON)
    if unreadable:
        logging.info("Unreadable amounts in %d item(s)", len(unreadable))
        problems.append(f"{UNREADABLE_AMOUNT_REASON}: {', '.join(unreadable)}")

    raw_mileage = data.get("mileage")
    mileage = _to_int(raw_mileage)
    if mileage is None and not _is_blank(raw_mileage):
        logging.info("Discarding unreadable mileage %r", raw_mileage)
        problems.append(UNREADABLE_MILEAGE_REASON)

    reason = None
    if problems:
        needs_review = True
        reason = "; ".join(([model_reason] if model_reason else []) + problems)
    elif needs_review:
        reason = model_reason or "Требует проверки оператором"

    return ParsedOrder(
        items=tuple(items),
        needs_operator_review=needs_review,
        review_reason=reason,
        raw_text=raw_text if raw_text is not None else content,
        plate_number=_clean_text(_first(data, "plateNumber", "plate_number", "plate")),
        vin=_clean_text(data.get("vin")),
        mileage=mileage,
        city=_clean_text(data.get("city")),
        date=_clean_text(data.get("date")),
    )


def extract_order(extractor: Extractor, request: ExtractionRequest) -> ParsedOrder:
    """Run the extraction capability and parse the answer; never raises."""

    try:
        content = extractor.extract(request)
    except Exception as exc:  # noqa: BLE001
        logging.error("Extraction failed for %s: %s", request.source_name, exc)
        return review_stub(f"{SERVICE_FAILURE_REASON}: {exc}", request.text or "")

    content = content or ""
    try:
        return normalise_model_response(content, raw_text=request.text)
    except ExtractionContractViolation as exc:
        logging.warning("Unparseable extraction response for %s: %s", request.source_name, exc)
        snippet = content.strip()[:300] or "<пустой ответ>"
        return review_stub(f"{PARSE_FAILURE_REASON}: {snippet}", request.text or content)
