"""Interactive harness for exercising extraction and price checks without saving."""

from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path
from typing import List

# Ensure project root is on the path when running as a script.
CURRENT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CURRENT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from intake_pipeline import normalizer
from intake_pipeline.client import OpenAIExtractor
from intake_pipeline.config import configure_logging, get_settings
from intake_pipeline.errors import DocumentConversionError
from intake_pipeline.pipeline import parse_document
from intake_pipeline.pricelist import CsvCatalogSource, PriceCatalog, format_amount
from intake_pipeline.prompt import build_user_prompt
from intake_pipeline.store import MemoryStore


def show(path: Path, label: str, extractor: OpenAIExtractor, catalog: PriceCatalog, show_prompt: bool) -> None:
    print("=" * 80)
    print(f"File: {label}")

    if show_prompt and normalizer.file_kind(path) == "word":
        try:
            print("User prompt:")
            print(build_user_prompt(normalizer.build_request(path)))
            print()
        except Exception as exc:  # noqa: BLE001
            print(f"Conversion error: {exc}")

    order = parse_document(path, extractor)
    print(f"Plate: {order.plate_number or '<none>'} | VIN: {order.vin or '<none>'}")
    print(f"Mileage: {order.mileage if order.mileage is not None else '<none>'} | City: {order.city or '<none>'}")
    print(f"Date: {order.date or '<none>'}")
    print(f"Needs review: {order.needs_operator_review}")
    if order.review_reason:
        print(f"Reason: {order.review_reason}")

    warnings = catalog.check_items(order.items)
    for item, warning in zip(order.items, warnings):
        line = (
            f"  - {item.work_name} x{format_amount(item.quantity)} "
            f"@ {format_amount(item.price)} = {format_amount(item.total)}"
        )
        print(line)
        if warning:
            print(f"    ⚠️ {warning}")
    print()


def run(args: argparse.Namespace) -> None:
    configure_logging(args.verbose)
    settings = get_settings()
    extractor = OpenAIExtractor(settings)
    catalog = PriceCatalog(
        CsvCatalogSource(settings.pricelist_url, timeout=settings.pricelist_timeout),
        MemoryStore(),
        ttl_seconds=settings.pricelist_ttl_seconds,
    )

    for path in args.files:
        if not path.exists():
            print(f"File not found: {path}")
            continue
        if not normalizer.is_archive(path):
            show(path, path.name, extractor, catalog, args.show_prompt)
            continue

        with tempfile.TemporaryDirectory(prefix="try_extraction_") as tmp:
            try:
                members: List[Path] = normalizer.expand_archive(path, Path(tmp))
            except DocumentConversionError as exc:
                print(f"Archive error: {exc}")
                continue
            for member in members:
                show(member, f"{path.name}/{member.name}", extractor, catalog, args.show_prompt)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Test the repair-order extraction on local files.")
    parser.add_argument("files", nargs="+", type=Path, help="Files to extract.")
    parser.add_argument("--show-prompt", action="store_true", help="Print the text prompt for Word documents.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


if __name__ == "__main__":
    parser = build_parser()
    run(parser.parse_args())
