"""
Import users, profiles, collections and listings from semicolon-delimited CSV
exports of the previous hosted database.

Users are created first and every old user id is mapped to its new id; the
remaining tables are rewritten through that mapping before being upserted in
batches. Rows owned by users that did not survive the migration are assigned
to a fallback user (the first mapped user) rather than dropped.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar

from collector.db import DbClient
from collector.records import ListingRecord, ProfileRecord, UserCardRecord, UserRecord
from shared.types import CardCondition, ListingStatus, TcgGame

logger = logging.getLogger(__name__)

CSV_DELIMITER = ";"
PROFILE_BATCH_SIZE = 10
USER_CARD_BATCH_SIZE = 100
LISTING_BATCH_SIZE = 50

LEGACY_STORAGE_HOST = "uvjulnwoacftborhhhnr.supabase.co"
PUBLIC_OBJECT_PATTERN = re.compile(r"/storage/v1/object/public/(.+)")
OFFSET_WITHOUT_MINUTES = re.compile(r"([ T]\d{2}:\d{2}\S*[+-]\d{2})$")

# Export file name prefixes, matched inside a data directory.
EXPORT_PREFIXES = {
    "users": "User-Authentication-Data",
    "profiles": "User-Profiles",
    "cards": "user-cards",
    "listings": "marketplace-listings",
}

PROFILE_FIELDS = (
    "username",
    "bio",
    "status",
    "email_contact",
    "twitter_url",
    "instagram_url",
    "facebook_url",
    "youtube_url",
    "tiktok_url",
    "website_url",
    "rumble_url",
    "spotify_playlist_url",
    "youtube_playlist_url",
    "music_autoplay",
    "is_live",
    "is_online",
    "last_seen_at",
    "last_username_change_at",
)

T = TypeVar("T")


@dataclass
class UserMapping:
    old_id: str
    new_id: str
    email: str
    note: Optional[str] = None


@dataclass
class FailedUser:
    email: str
    old_id: Optional[str]
    error: str


@dataclass
class UserImportResult:
    success: list[UserMapping] = field(default_factory=list)
    skipped: list[UserMapping] = field(default_factory=list)
    failed: list[FailedUser] = field(default_factory=list)

    @property
    def mapped(self) -> list[UserMapping]:
        """Created users followed by pre-existing ones."""
        return [*self.success, *self.skipped]

    def id_map(self) -> dict[str, str]:
        return {m.old_id: m.new_id for m in self.mapped if m.old_id and m.new_id}

    def fallback_user_id(self) -> Optional[str]:
        mapped = self.mapped
        return mapped[0].new_id if mapped else None


@dataclass
class BatchStats:
    imported: int = 0
    failed: int = 0
    orphaned: int = 0
    skipped: int = 0


def parse_value(value: str) -> Any:
    """Converts one exported cell: empty/null to None, booleans, JSON objects."""
    if value == "" or value == "null":
        return None
    if value == "true":
        return True
    if value == "false":
        return False
    if value.startswith('"{') and value.endswith('}"'):
        value = value[1:-1].replace('""', '"')
    if value.startswith("{") and value.endswith("}"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def parse_csv(content: str, delimiter: str = CSV_DELIMITER) -> list[dict[str, Any]]:
    reader = csv.reader(io.StringIO(content.strip()), delimiter=delimiter)
    rows = list(reader)
    if not rows:
        return []
    headers = rows[0]
    return [
        {
            header: parse_value(values[index] if index < len(values) else "")
            for index, header in enumerate(headers)
        }
        for values in rows[1:]
    ]


def read_csv(path: Path) -> list[dict[str, Any]]:
    return parse_csv(Path(path).read_text(encoding="utf-8"))


def find_export(data_dir: Path, kind: str) -> Optional[Path]:
    """Newest export in `data_dir` whose name starts with the prefix for `kind`."""
    matches = sorted(Path(data_dir).glob(f"{EXPORT_PREFIXES[kind]}*.csv"))
    return matches[-1] if matches else None


def parse_timestamp(value: Any) -> Optional[float]:
    """Postgres export timestamps (`2026-01-05 10:00:00.123+00`) to epoch seconds."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = OFFSET_WITHOUT_MINUTES.sub(r"\1:00", str(value).strip())
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError:
        logger.warning("Unparseable timestamp %r", value)
        return None


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value not in (None, "") else None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value not in (None, "") else None


def rewrite_avatar_url(avatar_url: Optional[str], public_base_url: str) -> Optional[str]:
    """Points avatars stored on the old project at the new public bucket base."""
    if not avatar_url or LEGACY_STORAGE_HOST not in avatar_url:
        return avatar_url
    match = PUBLIC_OBJECT_PATTERN.search(avatar_url)
    if not match:
        return avatar_url
    return f"{public_base_url.rstrip('/')}/{match.group(1)}"


def _chunks(items: list[T], size: int) -> Iterable[list[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _upsert_batches(
    rows: list[dict[str, Any]],
    batch_size: int,
    convert: Callable[[dict[str, Any]], Optional[T]],
    upsert: Callable[[list[T]], int],
    label: str,
) -> BatchStats:
    """
    Converts and upserts rows batch by batch. A batch that fails to convert or
    write is counted as failed in full and the import moves on.
    """
    stats = BatchStats()
    for number, batch in enumerate(_chunks(rows, batch_size), start=1):
        try:
            records = [record for record in map(convert, batch) if record is not None]
            stats.skipped += len(batch) - len(records)
            if not records:
                continue
            upsert(records)
        except Exception as e:
            logger.error("Error importing %s batch %d: %s", label, number, e)
            stats.failed += len(batch)
            continue
        logger.info("Imported %s batch %d (%d rows)", label, number, len(records))
        stats.imported += len(records)
    return stats


def import_users(db: DbClient, rows: list[dict[str, Any]]) -> UserImportResult:
    result = UserImportResult()
    for row in rows:
        email = row.get("email")
        old_id = row.get("id")
        if not email:
            result.failed.append(FailedUser(email="", old_id=old_id, error="missing email"))
            continue
        try:
            existing = db.get_user_by_email(email)
            if existing:
                logger.info("%s already exists, using existing ID", email)
                result.skipped.append(
                    UserMapping(old_id, existing.id, email, note="already existed")
                )
                continue
            created = db.create_user(
                UserRecord(
                    email=email,
                    user_metadata=row.get("raw_user_meta_data") or {},
                    app_metadata=row.get("raw_app_meta_data") or {},
                )
            )
        except Exception as e:
            logger.error("Failed to import user %s: %s", email, e)
            result.failed.append(FailedUser(email=email, old_id=old_id, error=str(e)))
            continue
        result.success.append(UserMapping(old_id, created.id, email))

    logger.info(
        "Users created: %d, skipped (existing): %d, failed: %d",
        len(result.success),
        len(result.skipped),
        len(result.failed),
    )
    return result


def write_mapping(path: Path, result: UserImportResult) -> None:
    payload = {
        "success": [asdict(m) for m in result.mapped],
        "failed": [asdict(f) for f in result.failed],
        "skipped": len(result.skipped),
    }
    Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def load_mapping(path: Path) -> UserImportResult:
    """Reads a mapping file written by `write_mapping` for a resumed import."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return UserImportResult(
        success=[UserMapping(**m) for m in payload.get("success", [])],
        failed=[FailedUser(**f) for f in payload.get("failed", [])],
    )


def import_profiles(
    db: DbClient,
    rows: list[dict[str, Any]],
    users: UserImportResult,
    *,
    public_base_url: str,
) -> BatchStats:
    id_map = users.id_map()
    if not id_map:
        logger.warning("No user mapping available, cannot import profiles")
        return BatchStats()

    def convert(row: dict[str, Any]) -> Optional[ProfileRecord]:
        new_user_id = id_map.get(row.get("user_id"))
        if not new_user_id:
            logger.warning("Skipping profile for unmapped user_id %s", row.get("user_id"))
            return None
        values = {name: row.get(name) for name in PROFILE_FIELDS}
        return ProfileRecord(
            id=new_user_id,
            user_id=new_user_id,
            avatar_url=rewrite_avatar_url(row.get("avatar_url"), public_base_url),
            **values,
        )

    return _upsert_batches(
        rows, PROFILE_BATCH_SIZE, convert, db.upsert_profiles, "profiles"
    )


def _game_or_default(value: Any) -> TcgGame:
    try:
        return TcgGame(value)
    except ValueError:
        return TcgGame.ONEPIECE


def import_user_cards(
    db: DbClient, rows: list[dict[str, Any]], users: UserImportResult
) -> BatchStats:
    id_map = users.id_map()
    fallback = users.fallback_user_id()
    if not fallback:
        logger.warning("No user mapping available, cannot import user cards")
        return BatchStats()
    logger.info("Using fallback user %s for orphaned cards", fallback)
    orphaned = 0

    def convert(row: dict[str, Any]) -> UserCardRecord:
        nonlocal orphaned
        new_user_id = id_map.get(row.get("user_id"))
        if not new_user_id:
            orphaned += 1
            new_user_id = fallback
        card = UserCardRecord(
            user_id=new_user_id,
            card_name=row.get("card_name") or "",
            tcg_game=_game_or_default(row.get("tcg_game")),
            quantity=_optional_int(row.get("quantity")),
            price_estimate=_optional_float(row.get("price_estimate")),
            image_url=row.get("image_url"),
            card_cache_id=row.get("card_cache_id"),
        )
        if row.get("id"):
            card.id = row["id"]
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is not None:
            card.created_at = created_at
        return card

    stats = _upsert_batches(
        rows, USER_CARD_BATCH_SIZE, convert, db.upsert_user_cards, "user cards"
    )
    stats.orphaned = orphaned
    if orphaned:
        logger.warning("Orphaned cards mapped to fallback user: %d", orphaned)
    return stats


def import_listings(
    db: DbClient, rows: list[dict[str, Any]], users: UserImportResult
) -> BatchStats:
    id_map = users.id_map()
    fallback = users.fallback_user_id()
    if not fallback:
        logger.warning("No user mapping available, cannot import listings")
        return BatchStats()
    orphaned = 0

    def convert(row: dict[str, Any]) -> ListingRecord:
        nonlocal orphaned
        new_user_id = id_map.get(row.get("seller_id") or row.get("user_id"))
        if not new_user_id:
            orphaned += 1
            new_user_id = fallback
        listing = ListingRecord(
            seller_id=new_user_id,
            card_name=row["card_name"],
            tcg_game=_game_or_default(row.get("tcg_game")),
            asking_price=float(row["asking_price"]),
            condition=CardCondition(row.get("condition") or CardCondition.NEAR_MINT),
            card_id=row.get("card_id"),
            image_url=row.get("image_url"),
            description=row.get("description"),
            status=ListingStatus(row.get("status") or ListingStatus.ACTIVE),
            accepts_offers=row.get("accepts_offers") is not False,
            sold_price=_optional_float(row.get("sold_price")),
        )
        if row.get("id"):
            listing.id = row["id"]
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is not None:
            listing.created_at = created_at
        listing.updated_at = parse_timestamp(row.get("updated_at")) or listing.created_at
        return listing

    stats = _upsert_batches(
        rows, LISTING_BATCH_SIZE, convert, db.upsert_listings, "listings"
    )
    stats.orphaned = orphaned
    if orphaned:
        logger.warning("Orphaned listings mapped to fallback user: %d", orphaned)
    return stats


@dataclass
class MigrationReport:
    users: UserImportResult
    profiles: BatchStats
    user_cards: BatchStats
    listings: BatchStats
    elapsed_seconds: float = 0.0


def run_import(
    db: DbClient,
    *,
    users_csv: Optional[Path],
    profiles_csv: Optional[Path],
    cards_csv: Optional[Path],
    listings_csv: Optional[Path],
    mapping_path: Optional[Path],
    public_base_url: str,
    reuse_mapping: bool = False,
) -> MigrationReport:
    """
    Runs the four import steps in order. With `reuse_mapping` the user step is
    skipped and the id mapping is read back from `mapping_path` instead.
    """
    start = time.time()
    if reuse_mapping:
        if not mapping_path:
            raise ValueError("A mapping path is required to reuse a mapping")
        users = load_mapping(mapping_path)
    else:
        users = import_users(db, read_csv(users_csv) if users_csv else [])
        if mapping_path:
            write_mapping(mapping_path, users)
            logger.info("Wrote user id mapping to %s", mapping_path)

    profiles = (
        import_profiles(db, read_csv(profiles_csv), users, public_base_url=public_base_url)
        if profiles_csv
        else BatchStats()
    )
    user_cards = import_user_cards(db, read_csv(cards_csv), users) if cards_csv else BatchStats()
    listings = import_listings(db, read_csv(listings_csv), users) if listings_csv else BatchStats()
    return MigrationReport(
        users=users,
        profiles=profiles,
        user_cards=user_cards,
        listings=listings,
        elapsed_seconds=time.time() - start,
    )
