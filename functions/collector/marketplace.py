"""
Marketplace service: loads rows, runs the offer and order state machines,
commits their ChangeSets, and announces the results on the realtime feed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from collector import offers as offer_machine
from collector import orders as order_machine
from collector.db import LISTING_SORTS, DbClient
from collector.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StaleStateError,
    ValidationError,
)
from collector.events import (
    DELETE,
    INSERT,
    LISTINGS_CHANNEL,
    UPDATE,
    ChangeEvent,
    EventBus,
    events_for_changes,
)
from collector.records import (
    ChangeSet,
    DirectMessageRecord,
    GiftTransactionRecord,
    ListingMessageRecord,
    ListingRecord,
    OfferRecord,
    OrderRecord,
    StatusChange,
    TournamentEventRecord,
    UserCardRecord,
    WalletRecord,
    record_to_dict,
)
from shared import gifts as gift_catalog
from shared.types import (
    CardCondition,
    GiftSource,
    ListingStatus,
    MessageType,
    OfferStatus,
    OrderStatus,
    TcgGame,
)

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "A collector"
EDITABLE_LISTING_FIELDS = (
    "card_name",
    "asking_price",
    "condition",
    "description",
    "image_url",
    "accepts_offers",
)
MANUAL_LISTING_STATUSES = (ListingStatus.SOLD, ListingStatus.CANCELLED)
EDITABLE_CARD_FIELDS = ("quantity", "price_estimate", "image_url")


@dataclass
class Conversation:
    partner_id: str
    last_message: str
    last_message_at: float
    unread_count: int
    partner_username: Optional[str] = None


@dataclass
class Collection:
    cards: list[UserCardRecord]
    total_cards: int
    total_value: float


class MarketplaceService:
    def __init__(
        self,
        db: DbClient,
        events: EventBus,
        *,
        offer_ttl_seconds: float = offer_machine.OFFER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.events = events
        self.offer_ttl_seconds = offer_ttl_seconds
        self.clock = clock

    # Helpers

    def _display_name(self, user_id: str) -> str:
        profile = self.db.get_profile_by_user(user_id)
        return profile.username if profile and profile.username else DEFAULT_DISPLAY_NAME

    def _require_listing(self, listing_id: str) -> ListingRecord:
        listing = self.db.get_listing(listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        return listing

    def _require_offer(self, offer_id: str) -> OfferRecord:
        offer = self.db.get_offer(offer_id)
        if offer is None:
            raise NotFoundError(f"Offer {offer_id} not found")
        return offer

    def _require_order(self, order_id: str) -> OrderRecord:
        order = self.db.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _commit(self, changes: ChangeSet) -> None:
        self.db.apply_changes(changes)
        offers = {}
        for change in changes.offer_changes:
            offers[change.record_id] = self.db.get_offer(change.record_id)
        listings = {}
        for change in changes.listing_changes:
            listings[change.record_id] = self.db.get_listing(change.record_id)
        orders = {}
        for change in changes.order_changes:
            orders[change.record_id] = self.db.get_order(change.record_id)
        for event in events_for_changes(
            changes, offers=offers, listings=listings, orders=orders
        ):
            self.events.publish(event)

    # Listings

    def create_listing(
        self,
        seller_id: str,
        *,
        card_name: str,
        tcg_game: TcgGame,
        asking_price: float,
        condition: CardCondition,
        card_id: Optional[str] = None,
        image_url: Optional[str] = None,
        description: Optional[str] = None,
        accepts_offers: bool = True,
    ) -> ListingRecord:
        if not card_name or not card_name.strip():
            raise ValidationError("Card name is required")
        if asking_price is None or asking_price <= 0:
            raise ValidationError("Asking price must be greater than zero")
        now = self.clock()
        listing = self.db.create_listing(
            ListingRecord(
                seller_id=seller_id,
                card_name=card_name.strip(),
                tcg_game=tcg_game,
                asking_price=round(float(asking_price), 2),
                condition=condition,
                card_id=card_id,
                image_url=image_url,
                description=description,
                accepts_offers=accepts_offers,
                created_at=now,
                updated_at=now,
            )
        )
        self.events.publish(
            ChangeEvent(LISTINGS_CHANNEL, INSERT, "marketplace_listings", record_to_dict(listing))
        )
        return listing

    def get_listing(self, listing_id: str) -> ListingRecord:
        return self._require_listing(listing_id)

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
        if sort not in LISTING_SORTS:
            raise ValidationError(f"Unknown sort order: {sort}")
        return self.db.list_listings(
            status=status,
            tcg_game=tcg_game,
            condition=condition,
            seller_id=seller_id,
            min_price=min_price,
            max_price=max_price,
            sort=sort,
            limit=limit,
        )

    def update_listing(self, listing_id: str, actor_id: str, values: dict) -> ListingRecord:
        listing = self._require_listing(listing_id)
        if listing.seller_id != actor_id:
            raise PermissionDeniedError("Only the seller can edit this listing")
        if listing.status == ListingStatus.SOLD:
            raise InvalidTransitionError("Sold listings cannot be edited")
        unknown = set(values) - set(EDITABLE_LISTING_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "asking_price" in values:
            if values["asking_price"] is None or values["asking_price"] <= 0:
                raise ValidationError("Asking price must be greater than zero")
            values = {**values, "asking_price": round(float(values["asking_price"]), 2)}
        updated = self.db.update_listing(listing_id, {**values, "updated_at": self.clock()})
        self.events.publish(
            ChangeEvent(LISTINGS_CHANNEL, UPDATE, "marketplace_listings", record_to_dict(updated))
        )
        return updated

    def set_listing_status(
        self,
        listing_id: str,
        actor_id: str,
        status: ListingStatus,
        sold_price: Optional[float] = None,
    ) -> ListingRecord:
        """
        Manual status change by the seller; sold defaults to the asking price.

        A sold listing is settled by its order. Only cancelling that order puts
        the card back on sale.
        """
        listing = self._require_listing(listing_id)
        if listing.seller_id != actor_id:
            raise PermissionDeniedError("Only the seller can change this listing")
        if status not in MANUAL_LISTING_STATUSES:
            raise ValidationError(f"Listings cannot be set to {status.value} by hand")
        if listing.status == ListingStatus.SOLD:
            raise InvalidTransitionError("Sold listings cannot change status")
        if listing.status == status:
            return listing
        fields: dict = {"status": status, "updated_at": self.clock()}
        if status == ListingStatus.SOLD:
            fields["sold_price"] = (
                round(float(sold_price), 2) if sold_price is not None else listing.asking_price
            )
        self._commit(
            ChangeSet(
                listing_changes=[
                    StatusChange(
                        record_id=listing.id,
                        expected_status=listing.status.value,
                        fields=fields,
                    )
                ]
            )
        )
        return self._require_listing(listing_id)

    def delete_listing(self, listing_id: str, actor_id: str) -> None:
        listing = self._require_listing(listing_id)
        if listing.seller_id != actor_id:
            raise PermissionDeniedError("Only the seller can delete this listing")
        self.db.delete_listing(listing_id)
        self.events.publish(
            ChangeEvent(LISTINGS_CHANNEL, DELETE, "marketplace_listings", {"id": listing_id})
        )

    # Offers

    def send_offer(self, listing_id: str, buyer_id: str, amount: float) -> OfferRecord:
        listing = self._require_listing(listing_id)
        outcome = offer_machine.send_offer(
            listing,
            buyer_id,
            amount,
            open_offers=self.db.list_offers(listing_id),
            now=self.clock(),
            ttl_seconds=self.offer_ttl_seconds,
            buyer_name=self._display_name(buyer_id),
        )
        self._commit(outcome.changes)
        logger.info("Offer %s sent on listing %s", outcome.offer.id, listing_id)
        return outcome.offer

    def accept_offer(self, offer_id: str, actor_id: str) -> tuple[OfferRecord, OrderRecord]:
        """Accepts an offer and opens its order in one commit."""
        offer = self._require_offer(offer_id)
        listing = self._require_listing(offer.listing_id)
        outcome = offer_machine.accept_offer(
            offer,
            listing,
            actor_id,
            competing_offers=self.db.list_offers(listing.id),
            now=self.clock(),
            actor_name=self._display_name(actor_id),
        )
        self._commit(outcome.changes)
        logger.info("Offer %s accepted, order %s created", offer_id, outcome.order.id)
        return outcome.offer, outcome.order

    def decline_offer(self, offer_id: str, actor_id: str) -> OfferRecord:
        offer = self._require_offer(offer_id)
        listing = self._require_listing(offer.listing_id)
        outcome = offer_machine.decline_offer(
            offer,
            listing,
            actor_id,
            now=self.clock(),
            actor_name=self._display_name(actor_id),
        )
        self._commit(outcome.changes)
        return outcome.offer

    def counter_offer(self, offer_id: str, actor_id: str, amount: float) -> OfferRecord:
        offer = self._require_offer(offer_id)
        listing = self._require_listing(offer.listing_id)
        outcome = offer_machine.counter_offer(
            offer,
            listing,
            actor_id,
            amount,
            now=self.clock(),
            ttl_seconds=self.offer_ttl_seconds,
            actor_name=self._display_name(actor_id),
        )
        self._commit(outcome.changes)
        return outcome.offer

    def buy_now(self, listing_id: str, buyer_id: str) -> tuple[OfferRecord, OrderRecord]:
        listing = self._require_listing(listing_id)
        outcome = offer_machine.buy_now(
            listing,
            buyer_id,
            competing_offers=self.db.list_offers(listing_id),
            now=self.clock(),
            ttl_seconds=self.offer_ttl_seconds,
            buyer_name=self._display_name(buyer_id),
        )
        self._commit(outcome.changes)
        logger.info("Listing %s bought now, order %s created", listing_id, outcome.order.id)
        return outcome.offer, outcome.order

    def cancel_offer(self, offer_id: str, actor_id: str) -> OfferRecord:
        offer = self._require_offer(offer_id)
        listing = self._require_listing(offer.listing_id)
        outcome = offer_machine.cancel_offer(
            offer,
            listing,
            actor_id,
            now=self.clock(),
            actor_name=self._display_name(actor_id),
        )
        self._commit(outcome.changes)
        return outcome.offer

    def expire_offers(self, now: Optional[float] = None) -> int:
        """Closes every pending offer past its expiry; returns how many."""
        now = self.clock() if now is None else now
        expired = 0
        for offer in self.db.list_due_offers(now):
            try:
                self._commit(offer_machine.expire_offer(offer, now=now))
            except StaleStateError:
                # Settled by one of the parties since the sweep read it.
                logger.info("Offer %s changed before it could expire", offer.id)
                continue
            expired += 1
        if expired:
            logger.info("Expired %d offers", expired)
        return expired

    def list_offers(self, listing_id: str) -> list[OfferRecord]:
        self._require_listing(listing_id)
        return self.db.list_offers(listing_id)

    def my_active_offer(self, listing_id: str, buyer_id: str) -> Optional[OfferRecord]:
        return offer_machine.latest_pending_for_buyer(self.db.list_offers(listing_id), buyer_id)

    def pending_offers_for_seller(self, seller_id: str) -> list[OfferRecord]:
        return self.db.list_offers_for_user(
            seller_id, as_seller=True, status=OfferStatus.PENDING
        )

    def offers_made_by_buyer(self, buyer_id: str) -> list[OfferRecord]:
        return self.db.list_offers_for_user(buyer_id, as_seller=False)

    def offer_lineage(self, offer_id: str) -> list[OfferRecord]:
        offer = self._require_offer(offer_id)
        return offer_machine.offer_lineage(offer_id, self.db.list_offers(offer.listing_id))

    # Listing chat

    def send_listing_message(
        self, listing_id: str, sender_id: str, recipient_id: str, content: str
    ) -> ListingMessageRecord:
        listing = self._require_listing(listing_id)
        if not content or not content.strip():
            raise ValidationError("Message cannot be empty")
        if sender_id == recipient_id:
            raise ValidationError("Cannot message yourself")
        if listing.seller_id not in (sender_id, recipient_id):
            raise PermissionDeniedError("Listing chats must include the seller")
        message = ListingMessageRecord(
            listing_id=listing_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content.strip(),
            message_type=MessageType.TEXT,
            created_at=self.clock(),
        )
        self._commit(ChangeSet(listing_messages=[message]))
        return message

    def list_listing_messages(self, listing_id: str) -> list[ListingMessageRecord]:
        self._require_listing(listing_id)
        return self.db.list_listing_messages(listing_id)

    # Orders

    def get_order(self, order_id: str, actor_id: str) -> OrderRecord:
        order = self._require_order(order_id)
        if actor_id not in (order.buyer_id, order.seller_id):
            raise PermissionDeniedError("Only the buyer or seller can view this order")
        return order

    def list_orders(
        self,
        user_id: str,
        *,
        role: str = "all",
        status: Optional[OrderStatus] = None,
    ) -> list[OrderRecord]:
        if role not in ("all", "buyer", "seller"):
            raise ValidationError(f"Unknown order role: {role}")
        return self.db.list_orders(user_id, role=role, status=status)

    def update_order_status(
        self,
        order_id: str,
        actor_id: str,
        status: OrderStatus,
        *,
        tracking_number: Optional[str] = None,
        shipping_address: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderRecord:
        order = self._require_order(order_id)
        listing = self.db.get_listing(order.listing_id)
        outcome = order_machine.transition_order(
            order,
            listing,
            actor_id,
            status,
            now=self.clock(),
            tracking_number=tracking_number,
            shipping_address=shipping_address,
            notes=notes,
        )
        self._commit(outcome.changes)
        logger.info("Order %s moved to %s", order_id, status.value)
        return outcome.order

    # Direct messages

    def send_direct_message(
        self, sender_id: str, recipient_id: str, content: str
    ) -> DirectMessageRecord:
        if not content or not content.strip():
            raise ValidationError("Message cannot be empty")
        if sender_id == recipient_id:
            raise ValidationError("Cannot message yourself")
        message = DirectMessageRecord(
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content.strip(),
            created_at=self.clock(),
        )
        self._commit(ChangeSet(direct_messages=[message]))
        return message

    def list_conversations(self, user_id: str) -> list[Conversation]:
        """One entry per partner, most recently active first."""
        conversations: dict[str, Conversation] = {}
        for message in self.db.list_direct_messages(user_id):
            partner_id = (
                message.recipient_id if message.sender_id == user_id else message.sender_id
            )
            conversation = conversations.get(partner_id)
            if conversation is None:
                conversation = Conversation(
                    partner_id=partner_id,
                    last_message=message.content,
                    last_message_at=message.created_at,
                    unread_count=0,
                )
                conversations[partner_id] = conversation
            if message.created_at >= conversation.last_message_at:
                conversation.last_message = message.content
                conversation.last_message_at = message.created_at
            if message.recipient_id == user_id and message.read_at is None:
                conversation.unread_count += 1
        for conversation in conversations.values():
            profile = self.db.get_profile_by_user(conversation.partner_id)
            conversation.partner_username = profile.username if profile else None
        return sorted(
            conversations.values(), key=lambda c: c.last_message_at, reverse=True
        )

    def get_thread(self, user_id: str, partner_id: str) -> list[DirectMessageRecord]:
        return [
            message
            for message in self.db.list_direct_messages(user_id)
            if partner_id in (message.sender_id, message.recipient_id)
        ]

    def mark_thread_read(self, user_id: str, partner_id: str) -> int:
        return self.db.mark_thread_read(user_id, partner_id, self.clock())

    # Gifting

    def get_wallet(self, user_id: str) -> WalletRecord:
        return self.db.get_wallet(user_id)

    def add_credits(self, user_id: str, credits: int) -> WalletRecord:
        if credits <= 0:
            raise ValidationError("Credits must be a positive whole number")
        return self.db.add_credits(user_id, credits)

    def send_gift(
        self,
        sender_id: str,
        recipient_id: str,
        gift_type: str,
        source: GiftSource,
        source_id: Optional[str] = None,
    ) -> tuple[GiftTransactionRecord, WalletRecord]:
        """
        Spends the sender's credits on a gift and credits the recipient's share.
        """
        gift = gift_catalog.get_gift(gift_type)
        if gift is None:
            raise ValidationError(f"Unknown gift type: {gift_type}")
        if sender_id == recipient_id:
            raise ValidationError("You cannot send a gift to yourself")
        split = gift_catalog.calculate_gift_split(gift.credit_cost)
        transaction = GiftTransactionRecord(
            sender_id=sender_id,
            recipient_id=recipient_id,
            gift_type=gift.id.value,
            source=source.value,
            source_id=source_id,
            credit_amount=gift.credit_cost,
            recipient_earned=split.recipient_earned,
            platform_revenue=split.platform_revenue,
            created_at=self.clock(),
        )
        wallet = self.db.record_gift(transaction)
        logger.info(
            "Gift %s sent from %s to %s", gift.id.value, sender_id, recipient_id
        )
        return transaction, wallet

    def list_gifts(self, user_id: str) -> list[GiftTransactionRecord]:
        return self.db.list_gifts(user_id)


    # Collection

    def _require_own_card(self, card_id: str, user_id: str) -> UserCardRecord:
        card = self.db.get_user_card(card_id)
        if card is None:
            raise NotFoundError(f"Card {card_id} not found")
        if card.user_id != user_id:
            raise PermissionDeniedError("Only the owner can change this card")
        return card

    @staticmethod
    def _check_card_values(values: dict) -> dict:
        checked = dict(values)
        if "quantity" in checked:
            if checked["quantity"] is None or checked["quantity"] < 1:
                raise ValidationError("Quantity must be at least 1")
            checked["quantity"] = int(checked["quantity"])
        if "price_estimate" in checked:
            if checked["price_estimate"] is None or checked["price_estimate"] < 0:
                raise ValidationError("Price estimate cannot be negative")
            checked["price_estimate"] = round(float(checked["price_estimate"]), 2)
        return checked

    def add_collection_card(
        self,
        user_id: str,
        *,
        card_name: Optional[str] = None,
        tcg_game: Optional[TcgGame] = None,
        quantity: int = 1,
        price_estimate: Optional[float] = None,
        image_url: Optional[str] = None,
        card_cache_id: Optional[str] = None,
    ) -> UserCardRecord:
        """
        Adds a card to the user's binder.

        With `card_cache_id` the card comes from a search result: its name,
        game, image and market price fill in whatever the caller left out.
        Scan and identify results carry their own fields and are added as is.
        """
        if card_cache_id:
            cached = self.db.get_card_cache_entry(card_cache_id)
            if cached is None:
                raise NotFoundError(f"Cached card {card_cache_id} not found")
            card_name = card_name or cached.card_name
            tcg_game = tcg_game or cached.tcg_game
            image_url = image_url or cached.image_url
            if price_estimate is None:
                price_estimate = (
                    cached.price_market if cached.price_market is not None else cached.price_mid
                )
        if not card_name or not card_name.strip():
            raise ValidationError("Card name is required")
        if tcg_game is None:
            raise ValidationError("Card game is required")
        values = self._check_card_values(
            {"quantity": quantity, "price_estimate": price_estimate or 0}
        )
        card = UserCardRecord(
            user_id=user_id,
            card_name=card_name.strip(),
            tcg_game=tcg_game,
            image_url=image_url,
            card_cache_id=card_cache_id,
            created_at=self.clock(),
            **values,
        )
        self.db.upsert_user_cards([card])
        logger.info("Added %s to the collection of %s", card.card_name, user_id)
        return card

    def update_collection_card(self, card_id: str, user_id: str, values: dict) -> UserCardRecord:
        self._require_own_card(card_id, user_id)
        unknown = set(values) - set(EDITABLE_CARD_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        return self.db.update_user_card(card_id, self._check_card_values(values))

    def delete_collection_card(self, card_id: str, user_id: str) -> None:
        self._require_own_card(card_id, user_id)
        self.db.delete_user_card(card_id)

    def list_collection(self, user_id: str) -> Collection:
        """The user's cards, newest first; a card without a quantity counts once."""
        cards = self.db.list_user_cards(user_id)
        total_cards = sum(card.quantity or 1 for card in cards)
        total_value = sum((card.price_estimate or 0) * (card.quantity or 1) for card in cards)
        return Collection(cards=cards, total_cards=total_cards, total_value=round(total_value, 2))

    # Tournament events

    def list_tournament_events(
        self, games: Optional[list[TcgGame]] = None
    ) -> list[TournamentEventRecord]:
        return self.db.list_tournament_events(games=games)
