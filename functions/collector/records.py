"""
Typed records for rows held in the relational store.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from shared.types import (
    CardCondition,
    EventStatus,
    ListingStatus,
    MessageType,
    OfferStatus,
    OrderStatus,
    TcgGame,
)


def new_id() -> str:
    return uuid.uuid4().hex


def _now() -> float:
    return time.time()


def record_to_dict(record: Any) -> dict:
    """Serialize a record, flattening enums to their values."""
    payload = asdict(record)
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in payload.items()
    }


@dataclass
class UserRecord:
    email: str
    id: str = field(default_factory=new_id)
    user_metadata: dict = field(default_factory=dict)
    app_metadata: dict = field(default_factory=dict)
    created_at: float = field(default_factory=_now)


@dataclass
class ProfileRecord:
    id: str
    user_id: str
    username: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    status: Optional[str] = None
    email_contact: Optional[str] = None
    twitter_url: Optional[str] = None
    instagram_url: Optional[str] = None
    facebook_url: Optional[str] = None
    youtube_url: Optional[str] = None
    tiktok_url: Optional[str] = None
    website_url: Optional[str] = None
    rumble_url: Optional[str] = None
    spotify_playlist_url: Optional[str] = None
    youtube_playlist_url: Optional[str] = None
    music_autoplay: Optional[bool] = None
    is_live: Optional[bool] = None
    is_online: Optional[bool] = None
    last_seen_at: Optional[str] = None
    last_username_change_at: Optional[str] = None


@dataclass
class UserCardRecord:
    user_id: str
    card_name: str
    tcg_game: TcgGame
    id: str = field(default_factory=new_id)
    quantity: Optional[int] = None
    price_estimate: Optional[float] = None
    image_url: Optional[str] = None
    card_cache_id: Optional[str] = None
    created_at: float = field(default_factory=_now)


@dataclass
class ListingRecord:
    seller_id: str
    card_name: str
    tcg_game: TcgGame
    asking_price: float
    condition: CardCondition
    id: str = field(default_factory=new_id)
    card_id: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    status: ListingStatus = ListingStatus.ACTIVE
    accepts_offers: bool = True
    sold_price: Optional[float] = None
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)


@dataclass
class OfferRecord:
    listing_id: str
    buyer_id: str
    seller_id: str
    amount: float
    expires_at: float
    id: str = field(default_factory=new_id)
    status: OfferStatus = OfferStatus.PENDING
    is_counter: bool = False
    parent_offer_id: Optional[str] = None
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)

    @property
    def maker_id(self) -> str:
        """The party who proposed this amount."""
        return self.seller_id if self.is_counter else self.buyer_id

    @property
    def receiver_id(self) -> str:
        return self.buyer_id if self.is_counter else self.seller_id


@dataclass
class ListingMessageRecord:
    listing_id: str
    sender_id: str
    recipient_id: str
    content: str
    message_type: MessageType = MessageType.TEXT
    id: str = field(default_factory=new_id)
    offer_id: Optional[str] = None
    read_at: Optional[float] = None
    created_at: float = field(default_factory=_now)


@dataclass
class DirectMessageRecord:
    sender_id: str
    recipient_id: str
    content: str
    id: str = field(default_factory=new_id)
    read_at: Optional[float] = None
    created_at: float = field(default_factory=_now)


@dataclass
class OrderRecord:
    listing_id: str
    offer_id: str
    buyer_id: str
    seller_id: str
    amount: float
    id: str = field(default_factory=new_id)
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    shipping_address: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)
    paid_at: Optional[float] = None
    shipped_at: Optional[float] = None
    delivered_at: Optional[float] = None


@dataclass
class CardCacheRecord:
    external_id: str
    tcg_game: TcgGame
    card_name: str
    id: str = field(default_factory=new_id)
    set_name: Optional[str] = None
    set_code: Optional[str] = None
    card_number: Optional[str] = None
    rarity: Optional[str] = None
    image_url: Optional[str] = None
    image_url_small: Optional[str] = None
    price_low: Optional[float] = None
    price_mid: Optional[float] = None
    price_high: Optional[float] = None
    price_market: Optional[float] = None
    price_currency: str = "USD"
    price_source: Optional[str] = None
    price_updated_at: Optional[float] = None


@dataclass
class ScanCacheRecord:
    game: str
    identifier: str
    result: dict
    expires_at: float
    raw_ocr_text: Optional[str] = None
    created_at: float = field(default_factory=_now)


@dataclass
class TournamentEventRecord:
    game_type: TcgGame
    title: str
    location: str
    start_date: float
    end_date: float
    id: str = field(default_factory=new_id)
    external_link: Optional[str] = None
    is_major: bool = False
    status: EventStatus = EventStatus.UPCOMING
    description: Optional[str] = None
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)


@dataclass
class WalletRecord:
    user_id: str
    eco_credits: int = 0
    earned_balance: float = 0.0
    updated_at: float = field(default_factory=_now)


@dataclass
class GiftTransactionRecord:
    sender_id: str
    recipient_id: str
    gift_type: str
    source: str
    credit_amount: int
    recipient_earned: float
    platform_revenue: float
    id: str = field(default_factory=new_id)
    source_id: Optional[str] = None
    created_at: float = field(default_factory=_now)


@dataclass
class StatusChange:
    """
    A guarded update: applied only while the row still has `expected_status`.
    """

    record_id: str
    expected_status: str
    fields: dict

    @property
    def new_status(self) -> Optional[str]:
        return self.fields.get("status")


@dataclass
class ChangeSet:
    """All writes produced by one state-machine step, committed together."""

    offer_changes: list[StatusChange] = field(default_factory=list)
    listing_changes: list[StatusChange] = field(default_factory=list)
    order_changes: list[StatusChange] = field(default_factory=list)
    new_offers: list[OfferRecord] = field(default_factory=list)
    new_orders: list[OrderRecord] = field(default_factory=list)
    listing_messages: list[ListingMessageRecord] = field(default_factory=list)
    direct_messages: list[DirectMessageRecord] = field(default_factory=list)

    def extend(self, other: "ChangeSet") -> "ChangeSet":
        self.offer_changes.extend(other.offer_changes)
        self.listing_changes.extend(other.listing_changes)
        self.order_changes.extend(other.order_changes)
        self.new_offers.extend(other.new_offers)
        self.new_orders.extend(other.new_orders)
        self.listing_messages.extend(other.listing_messages)
        self.direct_messages.extend(other.direct_messages)
        return self

    def is_empty(self) -> bool:
        return not any(
            (
                self.offer_changes,
                self.listing_changes,
                self.order_changes,
                self.new_offers,
                self.new_orders,
                self.listing_messages,
                self.direct_messages,
            )
        )
