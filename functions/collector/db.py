"""
Database abstraction for Postgres and an in-memory test implementation.

All state-machine writes go through `apply_changes`, which commits a ChangeSet
in a single transaction. Status updates in a ChangeSet are guarded: each one
only applies while the row still carries the status it was read with, so two
racing accepts of the same offer cannot both succeed.
"""

from __future__ import annotations

import time
from dataclasses import fields as dataclass_fields
from dataclasses import replace
from enum import Enum
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from collector.errors import InsufficientCreditsError, StaleStateError, ValidationError
from collector.records import (
    CardCacheRecord,
    ChangeSet,
    DirectMessageRecord,
    GiftTransactionRecord,
    ListingMessageRecord,
    ListingRecord,
    OfferRecord,
    OrderRecord,
    ProfileRecord,
    ScanCacheRecord,
    StatusChange,
    TournamentEventRecord,
    UserCardRecord,
    UserRecord,
    WalletRecord,
    record_to_dict,
)
from shared.types import (
    CardCondition,
    EventStatus,
    ListingStatus,
    MessageType,
    OfferStatus,
    OrderStatus,
    TcgGame,
)

LISTING_SORTS = ("newest", "price_asc", "price_desc")


class DbClient(Protocol):
    """Interface for database access."""

    # Users and profiles
    def create_user(self, user: UserRecord) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def upsert_profiles(self, profiles: Iterable[ProfileRecord]) -> int:
        ...

    def get_profile_by_user(self, user_id: str) -> Optional[ProfileRecord]:
        ...

    def upsert_user_cards(self, cards: Iterable[UserCardRecord]) -> int:
        ...

    def list_user_cards(self, user_id: str) -> list[UserCardRecord]:
        ...

    def get_user_card(self, card_id: str) -> Optional[UserCardRecord]:
        ...

    def update_user_card(self, card_id: str, values: dict) -> Optional[UserCardRecord]:
        ...

    def delete_user_card(self, card_id: str) -> bool:
        ...

    # Listings
    def create_listing(self, listing: ListingRecord) -> ListingRecord:
        ...

    def upsert_listings(self, listings: Iterable[ListingRecord]) -> int:
        ...

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        ...

    def list_listings(
        self,
        *,
        status: Optional[ListingStatus] = ListingStatus.ACTIVE,
        tcg_game: Optional[TcgGame] = None,
        condition: Optional[CardCondition] = None,
        seller_id: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: str = "newest",
        limit: int = 50,
    ) -> list[ListingRecord]:
        ...

    def update_listing(self, listing_id: str, values: dict) -> Optional[ListingRecord]:
        ...

    def delete_listing(self, listing_id: str) -> bool:
        ...

    # Offers, messages and orders
    def get_offer(self, offer_id: str) -> Optional[OfferRecord]:
        ...

    def list_offers(self, listing_id: str) -> list[OfferRecord]:
        ...

    def list_offers_for_user(
        self,
        user_id: str,
        *,
        as_seller: bool,
        status: Optional[OfferStatus] = None,
    ) -> list[OfferRecord]:
        ...

    def list_due_offers(self, now: float) -> list[OfferRecord]:
        ...

    def list_listing_messages(self, listing_id: str) -> list[ListingMessageRecord]:
        ...

    def list_direct_messages(self, user_id: str) -> list[DirectMessageRecord]:
        ...

    def mark_thread_read(self, user_id: str, partner_id: str, now: float) -> int:
        ...

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        ...

    def list_orders(
        self,
        user_id: str,
        *,
        role: str = "all",
        status: Optional[OrderStatus] = None,
    ) -> list[OrderRecord]:
        ...

    def apply_changes(self, changes: ChangeSet) -> None:
        ...

    # Lookup caches
    def search_card_cache(
        self,
        query: str,
        *,
        tcg_game: Optional[TcgGame] = None,
        fresh_after: float,
        limit: int = 10,
    ) -> list[CardCacheRecord]:
        ...

    def upsert_card_cache(self, cards: Iterable[CardCacheRecord]) -> list[CardCacheRecord]:
        ...

    def get_card_cache_entry(self, cache_id: str) -> Optional[CardCacheRecord]:
        ...

    def get_scan_cache(
        self, game: str, identifier: str, now: float
    ) -> Optional[ScanCacheRecord]:
        ...

    def save_scan_cache(self, entry: ScanCacheRecord) -> None:
        ...

    # Wallets and gifts
    def get_wallet(self, user_id: str) -> WalletRecord:
        ...

    def add_credits(self, user_id: str, credits: int) -> WalletRecord:
        ...

    def record_gift(self, gift: GiftTransactionRecord) -> WalletRecord:
        ...

    def list_gifts(self, user_id: str) -> list[GiftTransactionRecord]:
        ...

    # Tournament events
    def upsert_tournament_events(self, events: Iterable[TournamentEventRecord]) -> int:
        ...

    def list_tournament_events(
        self, *, games: Optional[Iterable[TcgGame]] = None
    ) -> list[TournamentEventRecord]:
        ...


def _newest_first(records: Iterable, key=lambda r: r.created_at) -> list:
    # Ties keep the most recently written record first.
    return list(reversed(sorted(records, key=key)))


def _sort_listings(listings: list[ListingRecord], sort: str) -> list[ListingRecord]:
    if sort == "price_asc":
        return sorted(listings, key=lambda l: l.asking_price)
    if sort == "price_desc":
        return sorted(listings, key=lambda l: l.asking_price, reverse=True)
    return _newest_first(listings)


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.profiles: Dict[str, ProfileRecord] = {}
        self.user_cards: Dict[str, UserCardRecord] = {}
        self.listings: Dict[str, ListingRecord] = {}
        self.offers: Dict[str, OfferRecord] = {}
        self.listing_messages: list[ListingMessageRecord] = []
        self.direct_messages: list[DirectMessageRecord] = []
        self.orders: Dict[str, OrderRecord] = {}
        self.card_cache: Dict[tuple[str, str], CardCacheRecord] = {}
        self.scan_cache: Dict[tuple[str, str], ScanCacheRecord] = {}
        self.wallets: Dict[str, WalletRecord] = {}
        self.gifts: list[GiftTransactionRecord] = []
        self.tournament_events: Dict[str, TournamentEventRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.__init__()

    def create_user(self, user: UserRecord) -> UserRecord:
        if self.get_user_by_email(user.email):
            raise ValidationError(f"User {user.email} already exists")
        self.users[user.id] = replace(user)
        return replace(user)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        user = self.users.get(user_id)
        return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.email.lower() == email.lower():
                return replace(user)
        return None

    def upsert_profiles(self, profiles: Iterable[ProfileRecord]) -> int:
        count = 0
        for profile in profiles:
            self.profiles[profile.id] = replace(profile)
            count += 1
        return count

    def get_profile_by_user(self, user_id: str) -> Optional[ProfileRecord]:
        for profile in self.profiles.values():
            if profile.user_id == user_id:
                return replace(profile)
        return None

    def upsert_user_cards(self, cards: Iterable[UserCardRecord]) -> int:
        count = 0
        for card in cards:
            self.user_cards[card.id] = replace(card)
            count += 1
        return count

    def list_user_cards(self, user_id: str) -> list[UserCardRecord]:
        return _newest_first(
            replace(card) for card in self.user_cards.values() if card.user_id == user_id
        )

    def get_user_card(self, card_id: str) -> Optional[UserCardRecord]:
        card = self.user_cards.get(card_id)
        return replace(card) if card else None

    def update_user_card(self, card_id: str, values: dict) -> Optional[UserCardRecord]:
        card = self.user_cards.get(card_id)
        if not card:
            return None
        for key, value in values.items():
            setattr(card, key, value)
        return replace(card)

    def delete_user_card(self, card_id: str) -> bool:
        return self.user_cards.pop(card_id, None) is not None

    def create_listing(self, listing: ListingRecord) -> ListingRecord:
        self.listings[listing.id] = replace(listing)
        return replace(listing)

    def upsert_listings(self, listings: Iterable[ListingRecord]) -> int:
        count = 0
        for listing in listings:
            self.listings[listing.id] = replace(listing)
            count += 1
        return count

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        listing = self.listings.get(listing_id)
        return replace(listing) if listing else None

    def list_listings(
        self,
        *,
        status: Optional[ListingStatus] = ListingStatus.ACTIVE,
        tcg_game: Optional[TcgGame] = None,
        condition: Optional[CardCondition] = None,
        seller_id: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: str = "newest",
        limit: int = 50,
    ) -> list[ListingRecord]:
        matches = []
        for listing in self.listings.values():
            if status and listing.status != status:
                continue
            if tcg_game and listing.tcg_game != tcg_game:
                continue
            if condition and listing.condition != condition:
                continue
            if seller_id and listing.seller_id != seller_id:
                continue
            if min_price is not None and listing.asking_price < min_price:
                continue
            if max_price is not None and listing.asking_price > max_price:
                continue
            matches.append(replace(listing))
        return _sort_listings(matches, sort)[:limit]

    def update_listing(self, listing_id: str, values: dict) -> Optional[ListingRecord]:
        listing = self.listings.get(listing_id)
        if not listing:
            return None
        for key, value in values.items():
            setattr(listing, key, value)
        listing.updated_at = values.get("updated_at", time.time())
        return replace(listing)

    def delete_listing(self, listing_id: str) -> bool:
        return self.listings.pop(listing_id, None) is not None

    def get_offer(self, offer_id: str) -> Optional[OfferRecord]:
        offer = self.offers.get(offer_id)
        return replace(offer) if offer else None

    def list_offers(self, listing_id: str) -> list[OfferRecord]:
        return _newest_first(
            replace(offer) for offer in self.offers.values() if offer.listing_id == listing_id
        )

    def list_offers_for_user(
        self,
        user_id: str,
        *,
        as_seller: bool,
        status: Optional[OfferStatus] = None,
    ) -> list[OfferRecord]:
        matches = []
        for offer in self.offers.values():
            party = offer.seller_id if as_seller else offer.buyer_id
            if party != user_id:
                continue
            if status and offer.status != status:
                continue
            matches.append(replace(offer))
        return _newest_first(matches)

    def list_due_offers(self, now: float) -> list[OfferRecord]:
        return [
            replace(offer)
            for offer in self.offers.values()
            if offer.status == OfferStatus.PENDING and offer.expires_at <= now
        ]

    def list_listing_messages(self, listing_id: str) -> list[ListingMessageRecord]:
        return sorted(
            (replace(m) for m in self.listing_messages if m.listing_id == listing_id),
            key=lambda m: m.created_at,
        )

    def list_direct_messages(self, user_id: str) -> list[DirectMessageRecord]:
        return sorted(
            (
                replace(m)
                for m in self.direct_messages
                if user_id in (m.sender_id, m.recipient_id)
            ),
            key=lambda m: m.created_at,
        )

    def mark_thread_read(self, user_id: str, partner_id: str, now: float) -> int:
        marked = 0
        for message in self.direct_messages:
            if (
                message.recipient_id == user_id
                and message.sender_id == partner_id
                and message.read_at is None
            ):
                message.read_at = now
                marked += 1
        return marked

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        order = self.orders.get(order_id)
        return replace(order) if order else None

    def list_orders(
        self,
        user_id: str,
        *,
        role: str = "all",
        status: Optional[OrderStatus] = None,
    ) -> list[OrderRecord]:
        matches = []
        for order in self.orders.values():
            if role == "buyer" and order.buyer_id != user_id:
                continue
            if role == "seller" and order.seller_id != user_id:
                continue
            if role == "all" and user_id not in (order.buyer_id, order.seller_id):
                continue
            if status and order.status != status:
                continue
            matches.append(replace(order))
        return _newest_first(matches)

    def _check_guards(self, table: dict, changes: list[StatusChange]) -> None:
        for change in changes:
            row = table.get(change.record_id)
            if row is None or row.status.value != change.expected_status:
                raise StaleStateError(
                    f"Record {change.record_id} changed before this update could apply"
                )

    def apply_changes(self, changes: ChangeSet) -> None:
        # Validate every guard before touching anything so a failure leaves
        # the store unchanged.
        self._check_guards(self.offers, changes.offer_changes)
        self._check_guards(self.listings, changes.listing_changes)
        self._check_guards(self.orders, changes.order_changes)
        for table, updates in (
            (self.offers, changes.offer_changes),
            (self.listings, changes.listing_changes),
            (self.orders, changes.order_changes),
        ):
            for change in updates:
                row = table[change.record_id]
                for key, value in change.fields.items():
                    setattr(row, key, value)
        for offer in changes.new_offers:
            self.offers[offer.id] = replace(offer)
        for order in changes.new_orders:
            self.orders[order.id] = replace(order)
        self.listing_messages.extend(replace(m) for m in changes.listing_messages)
        self.direct_messages.extend(replace(m) for m in changes.direct_messages)

    def search_card_cache(
        self,
        query: str,
        *,
        tcg_game: Optional[TcgGame] = None,
        fresh_after: float,
        limit: int = 10,
    ) -> list[CardCacheRecord]:
        needle = query.lower()
        matches = []
        for card in self.card_cache.values():
            if needle not in card.card_name.lower():
                continue
            if tcg_game and card.tcg_game != tcg_game:
                continue
            if card.price_updated_at is None or card.price_updated_at < fresh_after:
                continue
            matches.append(replace(card))
            if len(matches) >= limit:
                break
        return matches

    def upsert_card_cache(self, cards: Iterable[CardCacheRecord]) -> list[CardCacheRecord]:
        saved = []
        for card in cards:
            key = (card.external_id, card.tcg_game.value)
            existing = self.card_cache.get(key)
            stored = replace(card, id=existing.id) if existing else replace(card)
            self.card_cache[key] = stored
            saved.append(replace(stored))
        return saved

    def get_card_cache_entry(self, cache_id: str) -> Optional[CardCacheRecord]:
        for card in self.card_cache.values():
            if card.id == cache_id:
                return replace(card)
        return None

    def get_scan_cache(
        self, game: str, identifier: str, now: float
    ) -> Optional[ScanCacheRecord]:
        entry = self.scan_cache.get((game, identifier))
        if entry is None or entry.expires_at <= now:
            return None
        return replace(entry)

    def save_scan_cache(self, entry: ScanCacheRecord) -> None:
        self.scan_cache[(entry.game, entry.identifier)] = replace(entry)

    def _wallet(self, user_id: str) -> WalletRecord:
        if user_id not in self.wallets:
            self.wallets[user_id] = WalletRecord(user_id=user_id)
        return self.wallets[user_id]

    def get_wallet(self, user_id: str) -> WalletRecord:
        return replace(self._wallet(user_id))

    def add_credits(self, user_id: str, credits: int) -> WalletRecord:
        wallet = self._wallet(user_id)
        wallet.eco_credits += credits
        wallet.updated_at = time.time()
        return replace(wallet)

    def record_gift(self, gift: GiftTransactionRecord) -> WalletRecord:
        sender = self._wallet(gift.sender_id)
        if sender.eco_credits < gift.credit_amount:
            raise InsufficientCreditsError(
                f"Gift costs {gift.credit_amount} credits; wallet holds {sender.eco_credits}"
            )
        recipient = self._wallet(gift.recipient_id)
        sender.eco_credits -= gift.credit_amount
        sender.updated_at = gift.created_at
        recipient.earned_balance = round(recipient.earned_balance + gift.recipient_earned, 2)
        recipient.updated_at = gift.created_at
        self.gifts.append(replace(gift))
        return replace(sender)

    def list_gifts(self, user_id: str) -> list[GiftTransactionRecord]:
        return _newest_first(
            replace(g) for g in self.gifts if user_id in (g.sender_id, g.recipient_id)
        )

    def upsert_tournament_events(self, events: Iterable[TournamentEventRecord]) -> int:
        count = 0
        for event in events:
            self.tournament_events[event.id] = replace(event)
            count += 1
        return count

    def list_tournament_events(
        self, *, games: Optional[Iterable[TcgGame]] = None
    ) -> list[TournamentEventRecord]:
        wanted = set(games) if games else None
        return sorted(
            (
                replace(event)
                for event in self.tournament_events.values()
                if wanted is None or event.game_type in wanted
            ),
            key=lambda event: event.start_date,
        )


_ENUM_FIELDS: dict[type, dict[str, type[Enum]]] = {
    UserCardRecord: {"tcg_game": TcgGame},
    ListingRecord: {
        "tcg_game": TcgGame,
        "condition": CardCondition,
        "status": ListingStatus,
    },
    OfferRecord: {"status": OfferStatus},
    ListingMessageRecord: {"message_type": MessageType},
    OrderRecord: {"status": OrderStatus},
    CardCacheRecord: {"tcg_game": TcgGame},
    TournamentEventRecord: {"game_type": TcgGame, "status": EventStatus},
}


def _to_record(row, record_cls):
    enums = _ENUM_FIELDS.get(record_cls, {})
    values = {}
    for item in dataclass_fields(record_cls):
        value = getattr(row, item.name)
        if value is not None and item.name in enums:
            value = enums[item.name](value)
        values[item.name] = value
    return record_cls(**values)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _column_values(values: dict) -> dict:
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in values.items()
    }


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def create_user(self, user: UserRecord) -> UserRecord:
        with self.Session() as session:
            existing = session.execute(
                select(UserRow).where(func.lower(UserRow.email) == user.email.lower())
            ).scalar_one_or_none()
            if existing:
                raise ValidationError(f"User {user.email} already exists")
            session.add(UserRow(**record_to_dict(user)))
            session.commit()
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return _to_record(row, UserRecord) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(func.lower(UserRow.email) == email.lower())
            ).scalar_one_or_none()
            return _to_record(row, UserRecord) if row else None

    def _merge_all(self, row_cls, records: Iterable) -> int:
        count = 0
        with self.Session() as session:
            for record in records:
                session.merge(row_cls(**record_to_dict(record)))
                count += 1
            session.commit()
        return count

    def upsert_profiles(self, profiles: Iterable[ProfileRecord]) -> int:
        return self._merge_all(ProfileRow, profiles)

    def get_profile_by_user(self, user_id: str) -> Optional[ProfileRecord]:
        with self.Session() as session:
            row = session.execute(
                select(ProfileRow).where(ProfileRow.user_id == user_id).limit(1)
            ).scalar_one_or_none()
            return _to_record(row, ProfileRecord) if row else None

    def upsert_user_cards(self, cards: Iterable[UserCardRecord]) -> int:
        return self._merge_all(UserCardRow, cards)

    def list_user_cards(self, user_id: str) -> list[UserCardRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserCardRow)
                .where(UserCardRow.user_id == user_id)
                .order_by(UserCardRow.created_at.desc())
            ).scalars()
            return [_to_record(row, UserCardRecord) for row in rows]

    def get_user_card(self, card_id: str) -> Optional[UserCardRecord]:
        with self.Session() as session:
            row = session.get(UserCardRow, card_id)
            return _to_record(row, UserCardRecord) if row else None

    def update_user_card(self, card_id: str, values: dict) -> Optional[UserCardRecord]:
        with self.Session() as session:
            row = session.get(UserCardRow, card_id)
            if not row:
                return None
            for key, value in _column_values(values).items():
                setattr(row, key, value)
            session.commit()
            return _to_record(row, UserCardRecord)

    def delete_user_card(self, card_id: str) -> bool:
        with self.Session() as session:
            row = session.get(UserCardRow, card_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def create_listing(self, listing: ListingRecord) -> ListingRecord:
        with self.Session() as session:
            session.add(ListingRow(**record_to_dict(listing)))
            session.commit()
        return listing

    def upsert_listings(self, listings: Iterable[ListingRecord]) -> int:
        return self._merge_all(ListingRow, listings)

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            return _to_record(row, ListingRecord) if row else None

    def list_listings(
        self,
        *,
        status: Optional[ListingStatus] = ListingStatus.ACTIVE,
        tcg_game: Optional[TcgGame] = None,
        condition: Optional[CardCondition] = None,
        seller_id: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: str = "newest",
        limit: int = 50,
    ) -> list[ListingRecord]:
        stmt = select(ListingRow)
        if status:
            stmt = stmt.where(ListingRow.status == status.value)
        if tcg_game:
            stmt = stmt.where(ListingRow.tcg_game == tcg_game.value)
        if condition:
            stmt = stmt.where(ListingRow.condition == condition.value)
        if seller_id:
            stmt = stmt.where(ListingRow.seller_id == seller_id)
        if min_price is not None:
            stmt = stmt.where(ListingRow.asking_price >= min_price)
        if max_price is not None:
            stmt = stmt.where(ListingRow.asking_price <= max_price)
        if sort == "price_asc":
            stmt = stmt.order_by(ListingRow.asking_price.asc())
        elif sort == "price_desc":
            stmt = stmt.order_by(ListingRow.asking_price.desc())
        else:
            stmt = stmt.order_by(ListingRow.created_at.desc())
        with self.Session() as session:
            rows = session.execute(stmt.limit(limit)).scalars()
            return [_to_record(row, ListingRecord) for row in rows]

    def update_listing(self, listing_id: str, values: dict) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return None
            for key, value in _column_values(values).items():
                setattr(row, key, value)
            row.updated_at = values.get("updated_at", time.time())
            session.commit()
            return _to_record(row, ListingRecord)

    def delete_listing(self, listing_id: str) -> bool:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def get_offer(self, offer_id: str) -> Optional[OfferRecord]:
        with self.Session() as session:
            row = session.get(OfferRow, offer_id)
            return _to_record(row, OfferRecord) if row else None

    def list_offers(self, listing_id: str) -> list[OfferRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(OfferRow)
                .where(OfferRow.listing_id == listing_id)
                .order_by(OfferRow.created_at.desc())
            ).scalars()
            return [_to_record(row, OfferRecord) for row in rows]

    def list_offers_for_user(
        self,
        user_id: str,
        *,
        as_seller: bool,
        status: Optional[OfferStatus] = None,
    ) -> list[OfferRecord]:
        party = OfferRow.seller_id if as_seller else OfferRow.buyer_id
        stmt = select(OfferRow).where(party == user_id)
        if status:
            stmt = stmt.where(OfferRow.status == status.value)
        with self.Session() as session:
            rows = session.execute(stmt.order_by(OfferRow.created_at.desc())).scalars()
            return [_to_record(row, OfferRecord) for row in rows]

    def list_due_offers(self, now: float) -> list[OfferRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(OfferRow).where(
                    OfferRow.status == OfferStatus.PENDING.value,
                    OfferRow.expires_at <= now,
                )
            ).scalars()
            return [_to_record(row, OfferRecord) for row in rows]

    def list_listing_messages(self, listing_id: str) -> list[ListingMessageRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(ListingMessageRow)
                .where(ListingMessageRow.listing_id == listing_id)
                .order_by(ListingMessageRow.created_at.asc())
            ).scalars()
            return [_to_record(row, ListingMessageRecord) for row in rows]

    def list_direct_messages(self, user_id: str) -> list[DirectMessageRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(DirectMessageRow)
                .where(
                    or_(
                        DirectMessageRow.sender_id == user_id,
                        DirectMessageRow.recipient_id == user_id,
                    )
                )
                .order_by(DirectMessageRow.created_at.asc())
            ).scalars()
            return [_to_record(row, DirectMessageRecord) for row in rows]

    def mark_thread_read(self, user_id: str, partner_id: str, now: float) -> int:
        with self.Session() as session:
            result = session.execute(
                update(DirectMessageRow)
                .where(
                    DirectMessageRow.recipient_id == user_id,
                    DirectMessageRow.sender_id == partner_id,
                    DirectMessageRow.read_at.is_(None),
                )
                .values(read_at=now)
            )
            session.commit()
            return result.rowcount or 0

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        with self.Session() as session:
            row = session.get(OrderRow, order_id)
            return _to_record(row, OrderRecord) if row else None

    def list_orders(
        self,
        user_id: str,
        *,
        role: str = "all",
        status: Optional[OrderStatus] = None,
    ) -> list[OrderRecord]:
        if role == "buyer":
            stmt = select(OrderRow).where(OrderRow.buyer_id == user_id)
        elif role == "seller":
            stmt = select(OrderRow).where(OrderRow.seller_id == user_id)
        else:
            stmt = select(OrderRow).where(
                or_(OrderRow.buyer_id == user_id, OrderRow.seller_id == user_id)
            )
        if status:
            stmt = stmt.where(OrderRow.status == status.value)
        with self.Session() as session:
            rows = session.execute(stmt.order_by(OrderRow.created_at.desc())).scalars()
            return [_to_record(row, OrderRecord) for row in rows]

    def _apply_guarded(self, session: Session, row_cls, change: StatusChange) -> None:
        result = session.execute(
            update(row_cls)
            .where(
                row_cls.id == change.record_id,
                row_cls.status == change.expected_status,
            )
            .values(**_column_values(change.fields))
        )
        if result.rowcount != 1:
            raise StaleStateError(
                f"Record {change.record_id} changed before this update could apply"
            )

    def apply_changes(self, changes: ChangeSet) -> None:
        with self.Session() as session:
            try:
                for change in changes.offer_changes:
                    self._apply_guarded(session, OfferRow, change)
                for change in changes.listing_changes:
                    self._apply_guarded(session, ListingRow, change)
                for change in changes.order_changes:
                    self._apply_guarded(session, OrderRow, change)
                for offer in changes.new_offers:
                    session.add(OfferRow(**record_to_dict(offer)))
                for order in changes.new_orders:
                    session.add(OrderRow(**record_to_dict(order)))
                for message in changes.listing_messages:
                    session.add(ListingMessageRow(**record_to_dict(message)))
                for message in changes.direct_messages:
                    session.add(DirectMessageRow(**record_to_dict(message)))
                session.commit()
            except Exception:
                session.rollback()
                raise

    def search_card_cache(
        self,
        query: str,
        *,
        tcg_game: Optional[TcgGame] = None,
        fresh_after: float,
        limit: int = 10,
    ) -> list[CardCacheRecord]:
        stmt = select(CardCacheRow).where(
            CardCacheRow.card_name.ilike(f"%{_escape_like(query)}%", escape="\\"),
            CardCacheRow.price_updated_at >= fresh_after,
        )
        if tcg_game:
            stmt = stmt.where(CardCacheRow.tcg_game == tcg_game.value)
        with self.Session() as session:
            rows = session.execute(stmt.limit(limit)).scalars()
            return [_to_record(row, CardCacheRecord) for row in rows]

    def upsert_card_cache(self, cards: Iterable[CardCacheRecord]) -> list[CardCacheRecord]:
        saved = []
        with self.Session() as session:
            for card in cards:
                values = record_to_dict(card)
                existing = session.execute(
                    select(CardCacheRow).where(
                        CardCacheRow.external_id == card.external_id,
                        CardCacheRow.tcg_game == card.tcg_game.value,
                    )
                ).scalar_one_or_none()
                if existing:
                    values.pop("id")
                    for key, value in values.items():
                        setattr(existing, key, value)
                    row = existing
                else:
                    row = CardCacheRow(**values)
                    session.add(row)
                session.flush()
                saved.append(_to_record(row, CardCacheRecord))
            session.commit()
        return saved

    def get_card_cache_entry(self, cache_id: str) -> Optional[CardCacheRecord]:
        with self.Session() as session:
            row = session.get(CardCacheRow, cache_id)
            return _to_record(row, CardCacheRecord) if row else None

    def get_scan_cache(
        self, game: str, identifier: str, now: float
    ) -> Optional[ScanCacheRecord]:
        with self.Session() as session:
            row = session.get(ScanCacheRow, (game, identifier))
            if row is None or row.expires_at <= now:
                return None
            return _to_record(row, ScanCacheRecord)

    def save_scan_cache(self, entry: ScanCacheRecord) -> None:
        self._merge_all(ScanCacheRow, [entry])

    def _wallet_row(self, session: Session, user_id: str) -> "WalletRow":
        row = session.get(WalletRow, user_id, with_for_update=True)
        if row is None:
            row = WalletRow(
                user_id=user_id,
                eco_credits=0,
                earned_balance=0.0,
                updated_at=time.time(),
            )
            session.add(row)
            session.flush()
        return row

    def get_wallet(self, user_id: str) -> WalletRecord:
        with self.Session() as session:
            row = self._wallet_row(session, user_id)
            session.commit()
            return _to_record(row, WalletRecord)

    def add_credits(self, user_id: str, credits: int) -> WalletRecord:
        with self.Session() as session:
            row = self._wallet_row(session, user_id)
            row.eco_credits += credits
            row.updated_at = time.time()
            session.commit()
            return _to_record(row, WalletRecord)

    def record_gift(self, gift: GiftTransactionRecord) -> WalletRecord:
        with self.Session() as session:
            sender = self._wallet_row(session, gift.sender_id)
            if sender.eco_credits < gift.credit_amount:
                session.rollback()
                raise InsufficientCreditsError(
                    f"Gift costs {gift.credit_amount} credits; wallet holds {sender.eco_credits}"
                )
            recipient = self._wallet_row(session, gift.recipient_id)
            sender.eco_credits -= gift.credit_amount
            sender.updated_at = gift.created_at
            recipient.earned_balance = round(
                recipient.earned_balance + gift.recipient_earned, 2
            )
            recipient.updated_at = gift.created_at
            session.add(GiftTransactionRow(**record_to_dict(gift)))
            session.commit()
            return _to_record(sender, WalletRecord)

    def list_gifts(self, user_id: str) -> list[GiftTransactionRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(GiftTransactionRow)
                .where(
                    or_(
                        GiftTransactionRow.sender_id == user_id,
                        GiftTransactionRow.recipient_id == user_id,
                    )
                )
                .order_by(GiftTransactionRow.created_at.desc())
            ).scalars()
            return [_to_record(row, GiftTransactionRecord) for row in rows]

    def upsert_tournament_events(self, events: Iterable[TournamentEventRecord]) -> int:
        return self._merge_all(TournamentEventRow, events)

    def list_tournament_events(
        self, *, games: Optional[Iterable[TcgGame]] = None
    ) -> list[TournamentEventRecord]:
        stmt = select(TournamentEventRow).order_by(TournamentEventRow.start_date.asc())
        if games:
            stmt = stmt.where(
                TournamentEventRow.game_type.in_([TcgGame(game).value for game in games])
            )
        with self.Session() as session:
            rows = session.execute(stmt).scalars()
            return [_to_record(row, TournamentEventRecord) for row in rows]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    user_metadata = Column(JSON, nullable=False, default=dict)
    app_metadata = Column(JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)


class ProfileRow(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    username = Column(String, nullable=False)
    avatar_url = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    status = Column(String, nullable=True)
    email_contact = Column(String, nullable=True)
    twitter_url = Column(String, nullable=True)
    instagram_url = Column(String, nullable=True)
    facebook_url = Column(String, nullable=True)
    youtube_url = Column(String, nullable=True)
    tiktok_url = Column(String, nullable=True)
    website_url = Column(String, nullable=True)
    rumble_url = Column(String, nullable=True)
    spotify_playlist_url = Column(String, nullable=True)
    youtube_playlist_url = Column(String, nullable=True)
    music_autoplay = Column(Boolean, nullable=True)
    is_live = Column(Boolean, nullable=True)
    is_online = Column(Boolean, nullable=True)
    last_seen_at = Column(String, nullable=True)
    last_username_change_at = Column(String, nullable=True)


class UserCardRow(Base):
    __tablename__ = "user_cards"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    card_name = Column(String, nullable=False)
    tcg_game = Column(String, nullable=False)
    quantity = Column(Integer, nullable=True)
    price_estimate = Column(Float, nullable=True)
    image_url = Column(String, nullable=True)
    card_cache_id = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class ListingRow(Base):
    __tablename__ = "marketplace_listings"

    id = Column(String, primary_key=True)
    seller_id = Column(String, nullable=False, index=True)
    card_id = Column(String, nullable=True)
    card_name = Column(String, nullable=False)
    image_url = Column(String, nullable=True)
    tcg_game = Column(String, nullable=False, index=True)
    asking_price = Column(Float, nullable=False)
    condition = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, index=True)
    accepts_offers = Column(Boolean, nullable=False, default=True)
    sold_price = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class OfferRow(Base):
    __tablename__ = "listing_offers"

    id = Column(String, primary_key=True)
    listing_id = Column(String, nullable=False, index=True)
    buyer_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    amount = Column(Float, nullable=False)
    status = Column(String, nullable=False, index=True)
    is_counter = Column(Boolean, nullable=False, default=False)
    parent_offer_id = Column(String, nullable=True)
    expires_at = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ListingMessageRow(Base):
    __tablename__ = "listing_messages"

    id = Column(String, primary_key=True)
    listing_id = Column(String, nullable=False, index=True)
    offer_id = Column(String, nullable=True)
    sender_id = Column(String, nullable=False)
    recipient_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False)
    read_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class DirectMessageRow(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    sender_id = Column(String, nullable=False, index=True)
    recipient_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    read_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    listing_id = Column(String, nullable=False, index=True)
    offer_id = Column(String, nullable=False)
    buyer_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    amount = Column(Float, nullable=False)
    status = Column(String, nullable=False, index=True)
    shipping_address = Column(Text, nullable=True)
    tracking_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
    paid_at = Column(Float, nullable=True)
    shipped_at = Column(Float, nullable=True)
    delivered_at = Column(Float, nullable=True)


class CardCacheRow(Base):
    __tablename__ = "card_cache"
    __table_args__ = (UniqueConstraint("external_id", "tcg_game"),)

    id = Column(String, primary_key=True)
    external_id = Column(String, nullable=False)
    tcg_game = Column(String, nullable=False, index=True)
    card_name = Column(String, nullable=False, index=True)
    set_name = Column(String, nullable=True)
    set_code = Column(String, nullable=True)
    card_number = Column(String, nullable=True)
    rarity = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    image_url_small = Column(String, nullable=True)
    price_low = Column(Float, nullable=True)
    price_mid = Column(Float, nullable=True)
    price_high = Column(Float, nullable=True)
    price_market = Column(Float, nullable=True)
    price_currency = Column(String, nullable=False, default="USD")
    price_source = Column(String, nullable=True)
    price_updated_at = Column(Float, nullable=True)


class ScanCacheRow(Base):
    __tablename__ = "scan_cache"

    game = Column(String, primary_key=True)
    identifier = Column(String, primary_key=True)
    result = Column(JSON, nullable=False)
    raw_ocr_text = Column(Text, nullable=True)
    expires_at = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False)


class WalletRow(Base):
    __tablename__ = "user_wallets"

    user_id = Column(String, primary_key=True)
    eco_credits = Column(Integer, nullable=False, default=0)
    earned_balance = Column(Float, nullable=False, default=0.0)
    updated_at = Column(Float, nullable=False)


class GiftTransactionRow(Base):
    __tablename__ = "gift_transactions"

    id = Column(String, primary_key=True)
    sender_id = Column(String, nullable=False, index=True)
    recipient_id = Column(String, nullable=False, index=True)
    gift_type = Column(String, nullable=False)
    source = Column(String, nullable=False)
    source_id = Column(String, nullable=True)
    credit_amount = Column(Integer, nullable=False)
    recipient_earned = Column(Float, nullable=False)
    platform_revenue = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False)


class TournamentEventRow(Base):
    __tablename__ = "tournament_events"

    id = Column(String, primary_key=True)
    game_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    location = Column(String, nullable=False)
    start_date = Column(Float, nullable=False, index=True)
    end_date = Column(Float, nullable=False)
    external_link = Column(String, nullable=True)
    is_major = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
