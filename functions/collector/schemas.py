"""
Pydantic schemas for the marketplace API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.types import (
    CardCondition,
    GiftSource,
    ListingStatus,
    OrderStatus,
    TcgGame,
)


class RecordModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ListingCreate(BaseModel):
    card_name: str = Field(..., min_length=1, max_length=200)
    tcg_game: TcgGame
    asking_price: float = Field(..., gt=0)
    condition: CardCondition
    card_id: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    accepts_offers: bool = True


class ListingUpdate(BaseModel):
    card_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    asking_price: Optional[float] = Field(default=None, gt=0)
    condition: Optional[CardCondition] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    image_url: Optional[str] = None
    accepts_offers: Optional[bool] = None


class ListingStatusUpdate(BaseModel):
    status: ListingStatus
    sold_price: Optional[float] = Field(default=None, gt=0)


class ListingResponse(RecordModel):
    id: str
    seller_id: str
    card_id: Optional[str] = None
    card_name: str
    image_url: Optional[str] = None
    tcg_game: str
    asking_price: float
    condition: str
    description: Optional[str] = None
    status: str
    accepts_offers: bool
    sold_price: Optional[float] = None
    created_at: float
    updated_at: float


class OfferAmount(BaseModel):
    amount: float = Field(..., gt=0)


class OfferResponse(RecordModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str
    amount: float
    status: str
    is_counter: bool
    parent_offer_id: Optional[str] = None
    expires_at: float
    created_at: float
    updated_at: float


class OrderResponse(RecordModel):
    id: str
    listing_id: str
    offer_id: str
    buyer_id: str
    seller_id: str
    amount: float
    status: str
    shipping_address: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: float
    updated_at: float
    paid_at: Optional[float] = None
    shipped_at: Optional[float] = None
    delivered_at: Optional[float] = None


class SettledOfferResponse(BaseModel):
    offer: OfferResponse
    order: OrderResponse


class ListingMessageCreate(BaseModel):
    recipient_id: str
    content: str = Field(..., min_length=1, max_length=2000)


class ListingMessageResponse(RecordModel):
    id: str
    listing_id: str
    offer_id: Optional[str] = None
    sender_id: str
    recipient_id: str
    content: str
    message_type: str
    read_at: Optional[float] = None
    created_at: float


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    shipping_address: Optional[str] = None
    notes: Optional[str] = None


class DirectMessageCreate(BaseModel):
    recipient_id: str
    content: str = Field(..., min_length=1, max_length=4000)


class DirectMessageResponse(RecordModel):
    id: str
    sender_id: str
    recipient_id: str
    content: str
    read_at: Optional[float] = None
    created_at: float
    is_system: bool = False


class ConversationResponse(RecordModel):
    partner_id: str
    partner_username: Optional[str] = None
    last_message: str
    last_message_at: float
    unread_count: int


class MarkReadResponse(BaseModel):
    marked: int


class WalletResponse(RecordModel):
    user_id: str
    eco_credits: int
    earned_balance: float


class CreditTopUp(BaseModel):
    credits: int = Field(..., gt=0)


class GiftRequest(BaseModel):
    recipient_id: str
    gift_type: str
    source: GiftSource
    source_id: Optional[str] = None


class GiftTransactionResponse(RecordModel):
    id: str
    sender_id: str
    recipient_id: str
    gift_type: str
    source: str
    source_id: Optional[str] = None
    credit_amount: int
    recipient_earned: float
    platform_revenue: float
    created_at: float


class GiftResponse(BaseModel):
    transaction: GiftTransactionResponse
    wallet: WalletResponse


class CardSearchRequest(BaseModel):
    query: str
    tcg_game: Optional[TcgGame] = None
    limit: int = Field(default=10, ge=1, le=50)


class CachedCardResponse(RecordModel):
    id: str
    external_id: str
    tcg_game: str
    card_name: str
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


class CardSearchResponse(BaseModel):
    success: bool
    cards: list[CachedCardResponse]
    source: Literal["cache", "api"]


class IdentifiedCardResponse(RecordModel):
    external_id: Optional[str] = None
    tcg_game: str
    card_name: Optional[str] = None
    set_name: Optional[str] = None
    set_code: Optional[str] = None
    card_number: Optional[str] = None
    rarity: Optional[str] = None
    variant: Optional[str] = None
    image_url: Optional[str] = None
    price_market: Optional[float] = None
    price_foil: Optional[float] = None
    confidence: Optional[float] = None


class IdentifyCardResponse(BaseModel):
    success: bool
    cards: list[IdentifiedCardResponse] = Field(default_factory=list)
    error: Optional[str] = None
    processing_time_ms: int


class ScanPricesResponse(RecordModel):
    low: Optional[float] = None
    market: Optional[float] = None
    high: Optional[float] = None


class ScanCandidateResponse(RecordModel):
    card_name: Optional[str] = None
    set_name: Optional[str] = None
    number: Optional[str] = None
    image_url: Optional[str] = None
    prices: ScanPricesResponse


class ScanResponse(RecordModel):
    game: Optional[str] = None
    card_name: Optional[str] = None
    set_name: Optional[str] = None
    number: Optional[str] = None
    image_url: Optional[str] = None
    prices: ScanPricesResponse
    confidence: float
    source: str
    error: Optional[str] = None
    candidates: list[ScanCandidateResponse] = Field(default_factory=list)


class CropBoxModel(RecordModel):
    x: float
    y: float
    width: float
    height: float


class CropDetectResponse(RecordModel):
    detected: bool
    crop_box: Optional[CropBoxModel] = None
    confidence: Optional[float] = None
    card_type: Optional[str] = None
    message: Optional[str] = None


class GrailPriceResponse(RecordModel):
    id: str
    name: str
    price: Optional[float] = None
    image_url: Optional[str] = None


class MarketPricesResponse(BaseModel):
    success: bool
    prices: list[GrailPriceResponse]


class UploadResponse(BaseModel):
    bucket: str
    path: str
    url: str


class CollectionCardCreate(BaseModel):
    card_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    tcg_game: Optional[TcgGame] = None
    quantity: int = Field(default=1, ge=1)
    price_estimate: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    card_cache_id: Optional[str] = None


class CollectionCardUpdate(BaseModel):
    quantity: Optional[int] = Field(default=None, ge=1)
    price_estimate: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None


class CollectionCardResponse(RecordModel):
    id: str
    user_id: str
    card_name: str
    tcg_game: str
    quantity: Optional[int] = None
    price_estimate: Optional[float] = None
    image_url: Optional[str] = None
    card_cache_id: Optional[str] = None
    created_at: float


class CollectionResponse(RecordModel):
    cards: list[CollectionCardResponse]
    total_cards: int
    total_value: float


class TournamentEventResponse(RecordModel):
    id: str
    game_type: str
    title: str
    location: str
    start_date: float
    end_date: float
    external_link: Optional[str] = None
    is_major: bool
    status: str
    description: Optional[str] = None
