"""Configuration helpers for the intake pipeline."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def parse_id_list(raw: Optional[str]) -> Tuple[int, ...]:
    """Parse a comma-separated list of numeric identities, ignoring junk."""
    values = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = int(part, 10)
        except ValueError:
            logging.warning("Ignoring non-numeric identity in ADMIN_IDS: %r", part)
            continue
        if value != 0:
            values.append(value)
    return tuple(values)


def sheet_csv_url(sheet_id: Optional[str]) -> Optional[str]:
    if not sheet_id:
        return None
    return f"https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv&gid=0"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the extraction service, price list and approvals."""

    model: str = _env("GPT_MODEL", "gpt-4o")  # Needs vision support for scanned documents.
    temperature: float = float(_env("GPT_TEMPERATURE", "0.1"))
    max_output_tokens: int = int(_env("GPT_MAX_OUTPUT_TOKENS", "2000"))
    reasoning_effort: Optional[str] = _env("GPT_REASONING_EFFORT", "low")
    request_timeout: int = int(_env("GPT_TIMEOUT_SECONDS", "60"))
    retry_attempts: int = int(_env("GPT_RETRY_ATTEMPTS", "3"))
    retry_backoff_seconds: float = float(_env("GPT_RETRY_BACKOFF", "2.0"))

    pricelist_url: Optional[str] = _env("PRICELIST_CSV_URL") or sheet_csv_url(_env("GOOGLE_SHEETS_ID"))
    pricelist_ttl_seconds: int = int(_env("PRICELIST_TTL_SECONDS", "3600"))
    pricelist_timeout: int = int(_env("PRICELIST_TIMEOUT_SECONDS", "15"))
    drive_timeout: int = int(_env("DRIVE_TIMEOUT_SECONDS", "60"))

    admin_ids: Tuple[int, ...] = parse_id_list(_env("ADMIN_IDS", ""))
    onboarding_ttl_seconds: int = int(_env("ONBOARDING_TTL_SECONDS", "86400"))

    db_path: str = _env("INTAKE_DB", "intake.db")


def get_settings() -> Settings:
    """Return the active configuration."""

    return Settings()


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(levelname)s - %(message)s")
