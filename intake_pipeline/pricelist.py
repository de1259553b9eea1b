"""Price catalog: CSV ingestion, cached snapshot, matching and overage checks."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Sequence

import requests

from .errors import PriceSourceUnavailable
from .schema import ParsedItem, PriceItem
from .store import StateStore

CACHE_KEY = "pricelist:snapshot"
DEFAULT_TTL_SECONDS = 3600
DEFAULT_UNIT = "шт"

_PRICE_CLEAN_RE = re.compile(r"[^\d.]")


class CatalogSource(Protocol):
    def fetch_catalog(self) -> List[PriceItem]: ...


def parse_csv_line(line: str) -> List[str]:
    """Split one CSV line on commas that are not inside double quotes."""
    result: List[str] = []
    current: List[str] = []
    in_quotes = False

    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            result.append("".join(current))
            current = []
        else:
            current.append(ch)
    result.append("".join(current))
    return result


def parse_price(raw: str) -> float:
    cleaned = _PRICE_CLEAN_RE.sub("", raw.strip().replace(",", ".", 1))
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_csv(csv_text: str) -> List[PriceItem]:
    """Parse a ``code,name,price,unit`` export; the first line is the header."""
    lines = csv_text.strip().split("\n")
    items: List[PriceItem] = []

    for line in lines[1:]:
        line = line.rstrip("\r")
        if not line:
            continue

        cols = parse_csv_line(line)
        if len(cols) < 2:
            continue

        code = cols[0].strip()
        name = cols[1].strip()
        price = parse_price(cols[2] if len(cols) > 2 else "0")
        unit = cols[3].strip() if len(cols) > 3 and cols[3].strip() else DEFAULT_UNIT

        if name:
            items.append(PriceItem(code=code, name=name, price=price, unit=unit))

    return items


class CsvCatalogSource:
    """Fetches a published CSV export (e.g. a Google Sheet shared by link)."""

    def __init__(self, url: Optional[str], timeout: float = 15, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_catalog(self) -> List[PriceItem]:
        if not self.url:
            raise PriceSourceUnavailable("PRICELIST_CSV_URL / GOOGLE_SHEETS_ID not set")

        logging.debug("Requesting price list from %s", self.url)
        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise PriceSourceUnavailable(
                f"Failed to fetch price list: {exc}. "
                'Make sure the sheet is shared as "Anyone with the link can view".'
            ) from exc

        items = parse_csv(response.content.decode("utf-8-sig", errors="replace"))
        logging.info("Fetched %d price list item(s)", len(items))
        return items


def find_price_item(work_name: str, pricelist: Sequence[PriceItem]) -> Optional[PriceItem]:
    """Exact name/code match first, then the first containment match in catalog order."""
    needle = work_name.lower().strip()
    if not needle:
        return None

    for item in pricelist:
        if item.name.lower().strip() == needle or item.code.lower().strip() == needle:
            return item

    for item in pricelist:
        name = item.name.lower().strip()
        if not name:
            continue
        if needle in name or name in needle:
            return item

    return None


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def overage_warning(item: ParsedItem, match: Optional[PriceItem]) -> Optional[str]:
    if match is None or match.price <= 0 or item.price <= match.price:
        return None
    diff = item.price - match.price
    return (
        f'"{item.work_name}": в наряде {format_amount(item.price)} руб., '
        f"прайс {format_amount(match.price)} руб. (превышение +{format_amount(diff)} руб.)"
    )


class PriceCatalog:
    """Cached catalog snapshot plus item validation against it."""

    def __init__(self, source: CatalogSource, store: StateStore, ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self.source = source
        self.store = store
        self.ttl_seconds = ttl_seconds

    def snapshot(self) -> List[PriceItem]:
        cached = self.store.get(CACHE_KEY)
        if cached is not None:
            return cached

        items = self.source.fetch_catalog()
        self.store.set(CACHE_KEY, items, ttl=self.ttl_seconds)
        return items

    def invalidate(self) -> None:
        self.store.expire(CACHE_KEY)

    def check_items(self, items: Sequence[ParsedItem]) -> List[Optional[str]]:
        """Return one overage warning (or None) per item.

        When the catalog cannot be loaded the check is skipped and every item
        passes.
        """
        try:
            pricelist = self.snapshot()
        except PriceSourceUnavailable as exc:
            logging.warning("Price check skipped: %s", exc)
            return [None] * len(items)

        return [overage_warning(item, find_price_item(item.work_name, pricelist)) for item in items]
