"""Initialise or migrate the intake SQLite database."""

from __future__ import annotations

import argparse
from pathlib import Path

from intake_pipeline import db
from intake_pipeline.config import get_settings


def parse_args() -> argparse.Namespace:
    default_db = get_settings().db_path
    parser = argparse.ArgumentParser(description="Initialise or migrate the intake SQLite tables.")
    parser.add_argument(
        "--db",
        dest="db_path",
        type=Path,
        default=Path(default_db),
        help=f"Path to the SQLite database file (default: {default_db}).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    db.initialise_database(args.db_path)
    print(f"Database ready: {args.db_path}")


if __name__ == "__main__":
    main()
