"""
HTTP routes for the marketplace API.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile

from card_lookup import crop as crop_tool
from card_lookup import identify, market_prices, scan, search
from collector.config import Settings, get_settings
from collector.db import DbClient
from collector.dependencies import (
    get_current_user_id,
    get_db_client,
    get_marketplace_service,
    get_storage_client,
)
from collector.marketplace import MarketplaceService
from collector.records import DirectMessageRecord
from collector.schemas import (
    CardSearchRequest,
    CardSearchResponse,
    CachedCardResponse,
    CollectionCardCreate,
    CollectionCardResponse,
    CollectionCardUpdate,
    CollectionResponse,
    ConversationResponse,
    CreditTopUp,
    CropDetectResponse,
    DirectMessageCreate,
    DirectMessageResponse,
    GiftRequest,
    GiftResponse,
    GiftTransactionResponse,
    GrailPriceResponse,
    IdentifiedCardResponse,
    IdentifyCardResponse,
    ListingCreate,
    ListingMessageCreate,
    ListingMessageResponse,
    ListingResponse,
    ListingStatusUpdate,
    ListingUpdate,
    MarketPricesResponse,
    MarkReadResponse,
    OfferAmount,
    OfferResponse,
    OrderResponse,
    OrderStatusUpdate,
    ScanResponse,
    SettledOfferResponse,
    TournamentEventResponse,
    UploadResponse,
    WalletResponse,
)
from collector.storage import StorageClient, object_path, require_bucket
from shared import gifts as gift_catalog
from shared.system_messages import is_system_message
from shared.types import CardCondition, ListingStatus, OrderStatus, TcgGame

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


async def _read_image(file: UploadFile) -> tuple[bytes, str]:
    content_type = file.content_type or "image/jpeg"
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Image file required")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Image file is empty")
    return data, content_type


def _dm_response(message: DirectMessageRecord) -> DirectMessageResponse:
    return DirectMessageResponse(
        id=message.id,
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        content=message.content,
        read_at=message.read_at,
        created_at=message.created_at,
        is_system=is_system_message(message.content),
    )


# Listings


@router.post("/listings", response_model=ListingResponse, status_code=201)
def create_listing(
    payload: ListingCreate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    listing = service.create_listing(user_id, **payload.model_dump())
    return ListingResponse.model_validate(listing)


@router.get("/listings", response_model=list[ListingResponse])
def list_listings(
    status: str = Query(default=ListingStatus.ACTIVE.value),
    tcg_game: Optional[TcgGame] = None,
    condition: Optional[CardCondition] = None,
    seller_id: Optional[str] = None,
    min_price: Optional[float] = Query(default=None, ge=0),
    max_price: Optional[float] = Query(default=None, ge=0),
    sort: str = "newest",
    limit: int = Query(default=50, ge=1, le=200),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    """`status=all` lists every listing regardless of status."""
    if status == "all":
        status_filter = None
    else:
        try:
            status_filter = ListingStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    listings = service.list_listings(
        status=status_filter,
        tcg_game=tcg_game,
        condition=condition,
        seller_id=seller_id,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        limit=limit,
    )
    return [ListingResponse.model_validate(listing) for listing in listings]


@router.get("/listings/{listing_id}", response_model=ListingResponse)
def get_listing(
    listing_id: str, service: MarketplaceService = Depends(get_marketplace_service)
):
    return ListingResponse.model_validate(service.get_listing(listing_id))


@router.patch("/listings/{listing_id}", response_model=ListingResponse)
def update_listing(
    listing_id: str,
    payload: ListingUpdate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    values = payload.model_dump(exclude_unset=True)
    listing = service.update_listing(listing_id, user_id, values)
    return ListingResponse.model_validate(listing)


@router.post("/listings/{listing_id}/status", response_model=ListingResponse)
def set_listing_status(
    listing_id: str,
    payload: ListingStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    listing = service.set_listing_status(
        listing_id, user_id, payload.status, payload.sold_price
    )
    return ListingResponse.model_validate(listing)


@router.delete("/listings/{listing_id}", status_code=204)
def delete_listing(
    listing_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    service.delete_listing(listing_id, user_id)
    return Response(status_code=204)


# Offers


@router.post(
    "/listings/{listing_id}/offers", response_model=OfferResponse, status_code=201
)
def send_offer(
    listing_id: str,
    payload: OfferAmount,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return OfferResponse.model_validate(
        service.send_offer(listing_id, user_id, payload.amount)
    )


@router.get("/listings/{listing_id}/offers", response_model=list[OfferResponse])
def list_offers(
    listing_id: str, service: MarketplaceService = Depends(get_marketplace_service)
):
    return [OfferResponse.model_validate(o) for o in service.list_offers(listing_id)]


@router.get(
    "/listings/{listing_id}/offers/mine", response_model=Optional[OfferResponse]
)
def my_active_offer(
    listing_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    offer = service.my_active_offer(listing_id, user_id)
    return OfferResponse.model_validate(offer) if offer else None


@router.post(
    "/listings/{listing_id}/buy-now",
    response_model=SettledOfferResponse,
    status_code=201,
)
def buy_now(
    listing_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    offer, order = service.buy_now(listing_id, user_id)
    return SettledOfferResponse(
        offer=OfferResponse.model_validate(offer),
        order=OrderResponse.model_validate(order),
    )


@router.get("/offers/pending", response_model=list[OfferResponse])
def pending_offers(
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    """Pending offers awaiting the caller as seller."""
    return [
        OfferResponse.model_validate(o)
        for o in service.pending_offers_for_seller(user_id)
    ]


@router.get("/offers/sent", response_model=list[OfferResponse])
def sent_offers(
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return [
        OfferResponse.model_validate(o) for o in service.offers_made_by_buyer(user_id)
    ]


@router.post("/offers/{offer_id}/accept", response_model=SettledOfferResponse)
def accept_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    offer, order = service.accept_offer(offer_id, user_id)
    return SettledOfferResponse(
        offer=OfferResponse.model_validate(offer),
        order=OrderResponse.model_validate(order),
    )


@router.post("/offers/{offer_id}/decline", response_model=OfferResponse)
def decline_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return OfferResponse.model_validate(service.decline_offer(offer_id, user_id))


@router.post(
    "/offers/{offer_id}/counter", response_model=OfferResponse, status_code=201
)
def counter_offer(
    offer_id: str,
    payload: OfferAmount,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return OfferResponse.model_validate(
        service.counter_offer(offer_id, user_id, payload.amount)
    )


@router.post("/offers/{offer_id}/cancel", response_model=OfferResponse)
def cancel_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return OfferResponse.model_validate(service.cancel_offer(offer_id, user_id))


@router.get("/offers/{offer_id}/lineage", response_model=list[OfferResponse])
def offer_lineage(
    offer_id: str, service: MarketplaceService = Depends(get_marketplace_service)
):
    return [OfferResponse.model_validate(o) for o in service.offer_lineage(offer_id)]


# Listing chat


@router.get(
    "/listings/{listing_id}/messages", response_model=list[ListingMessageResponse]
)
def list_listing_messages(
    listing_id: str, service: MarketplaceService = Depends(get_marketplace_service)
):
    return [
        ListingMessageResponse.model_validate(m)
        for m in service.list_listing_messages(listing_id)
    ]


@router.post(
    "/listings/{listing_id}/messages",
    response_model=ListingMessageResponse,
    status_code=201,
)
def send_listing_message(
    listing_id: str,
    payload: ListingMessageCreate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    message = service.send_listing_message(
        listing_id, user_id, payload.recipient_id, payload.content
    )
    return ListingMessageResponse.model_validate(message)


# Orders


@router.get("/orders", response_model=list[OrderResponse])
def list_orders(
    role: str = "all",
    status: Optional[OrderStatus] = None,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    orders = service.list_orders(user_id, role=role, status=status)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return OrderResponse.model_validate(service.get_order(order_id, user_id))


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    order = service.update_order_status(
        order_id,
        user_id,
        payload.status,
        tracking_number=payload.tracking_number,
        shipping_address=payload.shipping_address,
        notes=payload.notes,
    )
    return OrderResponse.model_validate(order)


# Direct messages


@router.get("/messages/conversations", response_model=list[ConversationResponse])
def list_conversations(
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return [
        ConversationResponse.model_validate(c)
        for c in service.list_conversations(user_id)
    ]


@router.get("/messages/{partner_id}", response_model=list[DirectMessageResponse])
def get_thread(
    partner_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return [_dm_response(m) for m in service.get_thread(user_id, partner_id)]


@router.post("/messages", response_model=DirectMessageResponse, status_code=201)
def send_direct_message(
    payload: DirectMessageCreate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    message = service.send_direct_message(user_id, payload.recipient_id, payload.content)
    return _dm_response(message)


@router.post("/messages/{partner_id}/read", response_model=MarkReadResponse)
def mark_thread_read(
    partner_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return MarkReadResponse(marked=service.mark_thread_read(user_id, partner_id))


# Wallet and gifts


@router.get("/wallet", response_model=WalletResponse)
def get_wallet(
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return WalletResponse.model_validate(service.get_wallet(user_id))


@router.post("/wallet/credits", response_model=WalletResponse)
def add_credits(
    payload: CreditTopUp,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return WalletResponse.model_validate(service.add_credits(user_id, payload.credits))


@router.get("/gifts/catalog")
def gift_catalog_list():
    return {
        "credits_per_dollar": gift_catalog.CREDITS_PER_DOLLAR,
        "gifts": [
            {**asdict(gift), "id": gift.id.value, "tier": gift.tier.value}
            for gift in gift_catalog.GIFT_MASCOTS
        ],
    }


@router.post("/gifts", response_model=GiftResponse, status_code=201)
def send_gift(
    payload: GiftRequest,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    transaction, wallet = service.send_gift(
        user_id,
        payload.recipient_id,
        payload.gift_type,
        payload.source,
        payload.source_id,
    )
    return GiftResponse(
        transaction=GiftTransactionResponse.model_validate(transaction),
        wallet=WalletResponse.model_validate(wallet),
    )


@router.get("/gifts", response_model=list[GiftTransactionResponse])
def list_gifts(
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return [GiftTransactionResponse.model_validate(g) for g in service.list_gifts(user_id)]


# Collection


@router.get("/collection", response_model=CollectionResponse)
def get_my_collection(
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    return CollectionResponse.model_validate(service.list_collection(user_id))


@router.get("/users/{owner_id}/collection", response_model=CollectionResponse)
def get_collection(
    owner_id: str, service: MarketplaceService = Depends(get_marketplace_service)
):
    return CollectionResponse.model_validate(service.list_collection(owner_id))


@router.post("/collection", response_model=CollectionCardResponse, status_code=201)
def add_collection_card(
    payload: CollectionCardCreate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    card = service.add_collection_card(user_id, **payload.model_dump())
    return CollectionCardResponse.model_validate(card)


@router.patch("/collection/{card_id}", response_model=CollectionCardResponse)
def update_collection_card(
    card_id: str,
    payload: CollectionCardUpdate,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    card = service.update_collection_card(
        card_id, user_id, payload.model_dump(exclude_unset=True)
    )
    return CollectionCardResponse.model_validate(card)


@router.delete("/collection/{card_id}", status_code=204)
def delete_collection_card(
    card_id: str,
    user_id: str = Depends(get_current_user_id),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    service.delete_collection_card(card_id, user_id)
    return Response(status_code=204)


# Tournament events


@router.get("/events", response_model=list[TournamentEventResponse])
def list_tournament_events(
    game: Optional[list[TcgGame]] = Query(default=None),
    service: MarketplaceService = Depends(get_marketplace_service),
):
    """Repeat `game` to show several games; events are ordered by start date."""
    events = service.list_tournament_events(games=game)
    return [TournamentEventResponse.model_validate(event) for event in events]


# Card lookups


@router.post("/cards/search", response_model=CardSearchResponse)
def search_cards(
    payload: CardSearchRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    result = search.search_cards(
        db,
        payload.query,
        tcg_game=payload.tcg_game,
        limit=payload.limit,
        api_key=settings.justtcg_api_key,
        cache_ttl_seconds=settings.card_cache_ttl_seconds,
    )
    return CardSearchResponse(
        success=True,
        cards=[CachedCardResponse.model_validate(card) for card in result.cards],
        source=result.source,
    )


@router.post("/cards/identify", response_model=IdentifyCardResponse)
async def identify_card(
    file: UploadFile = File(...),
    game_hint: Optional[TcgGame] = Form(None),
    settings: Settings = Depends(get_settings),
):
    start_time = time.time()
    image_bytes, content_type = await _read_image(file)
    result = identify.identify_card(
        image_bytes,
        mime_type=content_type,
        game_hint=game_hint,
        api_key=settings.justtcg_api_key,
        gemini_api_key=settings.gemini_api_key,
    )
    return IdentifyCardResponse(
        success=result.success,
        cards=[IdentifiedCardResponse.model_validate(card) for card in result.cards],
        error=result.error,
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@router.post("/cards/scan", response_model=ScanResponse)
async def scan_card(
    file: UploadFile = File(...),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    image_bytes, _ = await _read_image(file)
    result = scan.scan_card(
        db,
        image_bytes,
        vision_api_key=settings.google_vision_api_key,
        justtcg_api_key=settings.justtcg_api_key,
    )
    return ScanResponse.model_validate(result)


@router.get("/cards/market-prices", response_model=MarketPricesResponse)
def get_market_prices(settings: Settings = Depends(get_settings)):
    prices = market_prices.fetch_market_prices(settings.justtcg_api_key)
    return MarketPricesResponse(
        success=True,
        prices=[GrailPriceResponse.model_validate(price) for price in prices],
    )


@router.post("/cards/crop/detect", response_model=CropDetectResponse)
async def detect_crop(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
):
    image_bytes, content_type = await _read_image(file)
    detection = crop_tool.detect_card_crop(
        image_bytes, mime_type=content_type, api_key=settings.gemini_api_key
    )
    return CropDetectResponse.model_validate(detection)


@router.post("/cards/crop/apply")
async def apply_crop(
    file: UploadFile = File(...),
    x: float = Form(..., ge=0, le=100),
    y: float = Form(..., ge=0, le=100),
    width: float = Form(..., gt=0, le=100),
    height: float = Form(..., gt=0, le=100),
):
    """Returns the cropped card as a compressed JPEG."""
    image_bytes, _ = await _read_image(file)
    try:
        cropped = crop_tool.apply_crop(
            image_bytes, crop_tool.CropBox(x=x, y=y, width=width, height=height)
        )
    except OSError as e:
        logger.warning("Could not decode uploaded image: %s", e)
        raise HTTPException(status_code=400, detail="Unreadable image")
    return Response(content=cropped, media_type="image/jpeg")


# Storage


@router.post("/storage/{bucket}", response_model=UploadResponse, status_code=201)
async def upload_image(
    bucket: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    storage: StorageClient = Depends(get_storage_client),
):
    require_bucket(bucket)
    data, content_type = await _read_image(file)
    path = object_path(user_id, content_type)
    url = storage.upload_bytes(bucket, path, data, content_type)
    return UploadResponse(bucket=bucket, path=path, url=url)
