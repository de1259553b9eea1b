"""Document -> extraction -> price check -> batch."""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from . import normalizer
from .batches import BatchService
from .client import Extractor
from .errors import DocumentConversionError
from .pricelist import PriceCatalog
from .schema import OrderBatch, OrderItem, ParsedOrder
from .service import extract_order, review_stub

CONVERSION_FAILURE_REASON = "Не удалось обработать файл"


@dataclass(frozen=True)
class IngestResult:
    source_name: str
    order: ParsedOrder
    warnings: Tuple[str, ...]
    batch: OrderBatch
    items: Tuple[OrderItem, ...]


def parse_document(path: Path, extractor: Extractor) -> ParsedOrder:
    """Convert and extract a single file. Never raises."""
    try:
        request = normalizer.build_request(path)
    except DocumentConversionError as exc:
        logging.warning("Conversion failed for %s: %s", path.name, exc)
        return review_stub(f"{CONVERSION_FAILURE_REASON}: {exc}")
    except Exception as exc:  # noqa: BLE001
        logging.exception("Unexpected conversion error for %s", path.name)
        return review_stub(f"{CONVERSION_FAILURE_REASON}: {exc}")

    return extract_order(extractor, request)


class IntakePipeline:
    def __init__(self, extractor: Extractor, catalog: PriceCatalog, batches: BatchService):
        self.extractor = extractor
        self.catalog = catalog
        self.batches = batches

    def validate(self, order: ParsedOrder) -> List[Optional[str]]:
        return self.catalog.check_items(order.items)

    def process_document(
        self,
        path: Path,
        station_id: Optional[int] = None,
        operator_id: Optional[int] = None,
        source_name: Optional[str] = None,
    ) -> IngestResult:
        source_name = source_name or path.name
        order = parse_document(path, self.extractor)
        warnings = self.validate(order)
        batch, items = self.batches.ingest(
            order,
            warnings,
            station_id=station_id,
            operator_id=operator_id,
            source_name=source_name,
        )
        return IngestResult(
            source_name=source_name,
            order=order,
            warnings=tuple(w for w in warnings if w),
            batch=batch,
            items=tuple(items),
        )

    def _ingest_stub(
        self, source_name: str, reason: str, station_id: Optional[int], operator_id: Optional[int]
    ) -> IngestResult:
        order = review_stub(reason)
        batch, items = self.batches.ingest(
            order, (), station_id=station_id, operator_id=operator_id, source_name=source_name
        )
        return IngestResult(source_name, order, (), batch, tuple(items))

    def process_file(
        self,
        path: Path,
        station_id: Optional[int] = None,
        operator_id: Optional[int] = None,
    ) -> List[IngestResult]:
        """Ingest an upload; archives yield one result per contained document."""
        path = Path(path)
        if not normalizer.is_archive(path):
            return [self.process_document(path, station_id, operator_id)]

        results: List[IngestResult] = []
        with tempfile.TemporaryDirectory(prefix="intake_archive_") as tmp:
            try:
                contents = normalizer.expand_archive(path, Path(tmp))
            except DocumentConversionError as exc:
                logging.warning("Archive %s could not be expanded: %s", path.name, exc)
                return [
                    self._ingest_stub(path.name, f"{CONVERSION_FAILURE_REASON}: {exc}", station_id, operator_id)
                ]

            logging.info("Archive %s holds %d file(s)", path.name, len(contents))
            for member in contents:
                if normalizer.is_archive(member):
                    logging.warning("Skipping nested archive %s in %s", member.name, path.name)
                    continue
                source_name = f"{path.name}/{member.relative_to(tmp).as_posix()}"
                results.append(self.process_document(member, station_id, operator_id, source_name=source_name))
        return results
