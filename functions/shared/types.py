# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

from enum import StrEnum
from dataclasses import dataclass, field
from typing import List, Optional


class TcgGame(StrEnum):
    POKEMON = "pokemon"
    MAGIC = "magic"
    YUGIOH = "yugioh"
    ONEPIECE = "onepiece"
    DRAGONBALL = "dragonball"
    LORCANA = "lorcana"
    UNIONARENA = "unionarena"
    MARVEL = "marvel"


class CardCondition(StrEnum):
    NEAR_MINT = "near_mint"
    LIGHTLY_PLAYED = "lightly_played"
    MODERATELY_PLAYED = "moderately_played"
    HEAVILY_PLAYED = "heavily_played"
    DAMAGED = "damaged"


class ListingStatus(StrEnum):
    ACTIVE = "active"
    SOLD = "sold"
    CANCELLED = "cancelled"


class OfferStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COUNTERED = "countered"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class OrderStatus(StrEnum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class MessageType(StrEnum):
    TEXT = "text"
    OFFER_SENT = "offer_sent"
    COUNTER_SENT = "counter_sent"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    OFFER_EXPIRED = "offer_expired"
    OFFER_CANCELLED = "offer_cancelled"
    BUY_NOW = "buy_now"


class EventStatus(StrEnum):
    UPCOMING = "upcoming"
    OPEN_REGISTRATION = "open_registration"
    SOLD_OUT = "sold_out"
    LIVE = "live"
    COMPLETED = "completed"


class GiftSource(StrEnum):
    LIVE_STREAM = "live_stream"
    COMMENT_REPLY = "comment_reply"
    DIRECT_MESSAGE = "direct_message"


@dataclass
class CardResult:
    """Normalized card metadata returned by catalog and identification lookups."""

    external_id: str
    tcg_game: TcgGame
    card_name: str
    set_name: Optional[str] = None
    set_code: Optional[str] = None
    card_number: Optional[str] = None
    rarity: Optional[str] = None
    variant: Optional[str] = None
    image_url: Optional[str] = None
    image_url_small: Optional[str] = None
    price_low: Optional[float] = None
    price_mid: Optional[float] = None
    price_high: Optional[float] = None
    price_market: Optional[float] = None
    price_foil: Optional[float] = None
    price_currency: str = "USD"
    price_source: Optional[str] = None
    confidence: Optional[float] = None

    @property
    def has_price(self) -> bool:
        return self.price_market is not None or self.price_mid is not None


@dataclass
class ScanPrices:
    low: Optional[float] = None
    market: Optional[float] = None
    high: Optional[float] = None


@dataclass
class ScanCandidate:
    card_name: str
    set_name: Optional[str] = None
    number: Optional[str] = None
    image_url: Optional[str] = None
    prices: ScanPrices = field(default_factory=ScanPrices)


@dataclass
class ScanResult:
    """Outcome of an OCR-driven scan of a single card photo."""

    game: Optional[str] = None
    card_name: Optional[str] = None
    set_name: Optional[str] = None
    number: Optional[str] = None
    image_url: Optional[str] = None
    prices: ScanPrices = field(default_factory=ScanPrices)
    confidence: float = 0.0
    source: str = "live"
    error: Optional[str] = None
    candidates: List[ScanCandidate] = field(default_factory=list)
