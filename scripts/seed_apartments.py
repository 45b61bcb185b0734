#!/usr/bin/env python3
"""
Register apartments in the binding store.

Every key is normalized ("a14-1" -> "A-14-1") and keys that do not match
an accepted apartment format are skipped with a warning. Existing
apartments are left untouched, so the script is safe to re-run.

Usage
-----
# Seed the demo apartments (only when the store is empty)
python scripts/seed_apartments.py

# Register specific apartments
python scripts/seed_apartments.py A-14-1 A-14-2 14F-3

# Register apartments from a file: one key per line, optional display name
#   A-14-1,Tower A 14F unit 1
#   A-14-2
python scripts/seed_apartments.py --file apartments.txt

# Target the embedded SQLite database instead of Supabase
python scripts/seed_apartments.py --backend sqlite --db-path ./data/app.db

Environment / .env
------------------
STORE_BACKEND                         Default backend (supabase or sqlite).
SUPABASE_URL, SUPABASE_SERVICE_KEY    Required for the supabase backend.
DB_PATH                               SQLite file (default ./data/app.db).
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, Optional

from app.services.apartment_key import is_valid_apartment_no, normalize_apartment_no
from app.services.binding_store import BindingStore, create_store

logger = logging.getLogger("seed_apartments")

DEFAULT_APARTMENTS = ["A-14-1", "A-1-1", "A-1-2", "B-1-1"]


def read_apartment_file(path: Path) -> list[tuple[str, Optional[str]]]:
    """Parse "key[,display name]" lines, ignoring blanks and # comments."""
    entries: list[tuple[str, Optional[str]]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, display_name = line.partition(",")
        entries.append((key.strip(), display_name.strip() or None))
    return entries


def seed(
    store: BindingStore,
    entries: Iterable[tuple[str, Optional[str]]],
) -> tuple[int, int, int]:
    """
    Insert apartments that are not already present.

    Returns:
        (created, existing, invalid) counts.
    """
    created = existing = invalid = 0
    for raw, display_name in entries:
        apartment_no = normalize_apartment_no(raw)
        if not is_valid_apartment_no(apartment_no):
            logger.warning(f"Skipping invalid apartment number {raw!r}")
            invalid += 1
            continue
        if store.add_apartment(apartment_no, display_name):
            created += 1
        else:
            existing += 1
    return created, existing, invalid


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument("apartments", nargs="*", help="Apartment numbers to register")
    parser.add_argument("--file", type=Path, help="File with one apartment per line")
    parser.add_argument("--backend", help="Store backend (default: STORE_BACKEND or supabase)")
    parser.add_argument("--db-path", help="SQLite database path (sqlite backend only)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if args.db_path:
        os.environ["DB_PATH"] = args.db_path

    try:
        store = create_store(args.backend)
    except ValueError as exc:
        logger.error(str(exc))
        return 1

    entries: list[tuple[str, Optional[str]]] = [(a, None) for a in args.apartments]
    if args.file:
        entries.extend(read_apartment_file(args.file))

    if not entries:
        if store.list_apartments():
            logger.info("Store already has apartments; nothing to seed")
            return 0
        entries = [(a, None) for a in DEFAULT_APARTMENTS]

    created, existing, invalid = seed(store, entries)
    logger.info(f"Seeded apartments: {created} created, {existing} already present, {invalid} invalid")
    return 0 if invalid == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
