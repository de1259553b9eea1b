"""Repair-order intake: extraction, price validation and batch approval."""

from .schema import BatchStatus, ParsedOrder, ParsedItem, PriceItem, OrderBatch, OrderItem, Operator  # noqa: F401
from .service import extract_order, parse_json_object  # noqa: F401
from .pipeline import IntakePipeline, parse_document  # noqa: F401
