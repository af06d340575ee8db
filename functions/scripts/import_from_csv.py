"""
Import users, profiles, user cards and listings from CSV exports.

Point --data-dir at the folder holding the exports; each file is found by its
export name prefix unless given explicitly. After a successful run, send
password reset e-mails to the migrated users and copy their stored images.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from collector.config import get_settings
from collector.db import PostgresDbClient
from collector.migration import find_export, run_import


logger = logging.getLogger(__name__)


def _resolve(explicit: Optional[str], data_dir: Optional[Path], kind: str) -> Optional[Path]:
    if explicit:
        return Path(explicit)
    if data_dir:
        found = find_export(data_dir, kind)
        if not found:
            logger.warning("No %s export found in %s", kind, data_dir)
        return found
    return None


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import CSV exports into the marketplace")
    parser.add_argument("--data-dir", help="Directory holding the CSV exports")
    parser.add_argument("--users", help="Users export (overrides --data-dir)")
    parser.add_argument("--profiles", help="Profiles export (overrides --data-dir)")
    parser.add_argument("--cards", help="User cards export (overrides --data-dir)")
    parser.add_argument("--listings", help="Listings export (overrides --data-dir)")
    parser.add_argument(
        "--mapping",
        default=None,
        help="Where to write the old-to-new user id mapping (default: <data-dir>/user_id_mapping.json)",
    )
    parser.add_argument(
        "--reuse-mapping",
        action="store_true",
        help="Skip the user step and read the id mapping back from --mapping",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    settings = get_settings()
    if not settings.database_url:
        logger.error("DATABASE_URL is not set; refusing to import into an in-memory store")
        return 1

    data_dir = Path(args.data_dir) if args.data_dir else None
    if data_dir and not data_dir.is_dir():
        logger.error("Data directory %s does not exist", data_dir)
        return 1

    mapping_path: Optional[Path] = Path(args.mapping) if args.mapping else None
    if mapping_path is None and data_dir:
        mapping_path = data_dir / "user_id_mapping.json"

    users_csv = _resolve(args.users, data_dir, "users")
    if not users_csv and not args.reuse_mapping:
        logger.error("A users export is required (or pass --reuse-mapping)")
        return 1

    try:
        report = run_import(
            PostgresDbClient(settings.database_url),
            users_csv=users_csv,
            profiles_csv=_resolve(args.profiles, data_dir, "profiles"),
            cards_csv=_resolve(args.cards, data_dir, "cards"),
            listings_csv=_resolve(args.listings, data_dir, "listings"),
            mapping_path=mapping_path,
            public_base_url=settings.storage_public_base_url,
            reuse_mapping=args.reuse_mapping,
        )
    except (OSError, ValueError) as e:
        logger.error("Import failed: %s", e)
        return 1

    logger.info(
        "Users: %d created, %d existing, %d failed",
        len(report.users.success),
        len(report.users.skipped),
        len(report.users.failed),
    )
    for label, stats in (
        ("Profiles", report.profiles),
        ("User cards", report.user_cards),
        ("Listings", report.listings),
    ):
        logger.info(
            "%s: %d imported, %d failed, %d orphaned, %d skipped",
            label,
            stats.imported,
            stats.failed,
            stats.orphaned,
            stats.skipped,
        )
    logger.info("Import complete in %.1fs", report.elapsed_seconds)
    return 0


if __name__ == "__main__":
    sys.exit(main())
