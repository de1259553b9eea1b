"""Typed structures used across the intake pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class BatchStatus(str, Enum):
    UNREVIEWED = "UNREVIEWED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    APPROVED = "APPROVED"


@dataclass(frozen=True)
class ParsedItem:
    work_name: str
    quantity: float
    price: float
    total: float


@dataclass(frozen=True)
class ParsedOrder:
    items: Tuple[ParsedItem, ...]
    needs_operator_review: bool
    raw_text: str
    review_reason: Optional[str] = None
    plate_number: Optional[str] = None
    vin: Optional[str] = None
    mileage: Optional[int] = None
    city: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class ExtractionRequest:
    """What the extraction service receives: text, or an inline image."""

    source_name: str
    text: Optional[str] = None
    image_base64: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.image_base64 is not None


@dataclass(frozen=True)
class PriceItem:
    code: str
    name: str
    price: float
    unit: str


@dataclass(frozen=True)
class ServiceStation:
    id: int
    chat_id: int
    name: str


@dataclass(frozen=True)
class Operator:
    id: int
    external_id: int
    nickname: str
    handle: Optional[str]
    added_by: Optional[int]
    created_at: Optional[str]


@dataclass(frozen=True)
class OrderBatch:
    id: int
    station_id: Optional[int]
    operator_id: Optional[int]
    created_at: datetime
    week_label: str
    status: BatchStatus
    source_name: Optional[str] = None
    plate_number: Optional[str] = None
    review_reason: Optional[str] = None
    rejected_reason: Optional[str] = None


@dataclass(frozen=True)
class OrderItem:
    id: int
    batch_id: int
    work_name: str
    quantity: float
    price: float
    total: float
    vin: Optional[str]
    mileage: Optional[int]
    validation_error: Optional[str]


@dataclass(frozen=True)
class BatchSummary:
    batch: OrderBatch
    station_name: Optional[str]
    item_count: int
    flagged_items: Tuple[OrderItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ExportRow:
    station: str
    week_label: str
    plate_number: str
    mileage: Optional[int]
    work_name: str
    quantity: float
    price: float
    total: float
