"""
Offer negotiation state machine.

Every function here is pure: it validates a transition against the current
records and returns the records it creates together with a ChangeSet that the
DB client commits atomically. Nothing in this module talks to storage.

    pending ──accept──▶ accepted   (creates order, listing → sold)
       │ ──decline──▶ declined
       │ ──counter──▶ countered    (child offer: is_counter, parent_offer_id)
       │ ──cancel───▶ cancelled
       └──timeout───▶ expired
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from collector.errors import (
    InvalidTransitionError,
    PermissionDeniedError,
    ValidationError,
)
from collector.records import (
    ChangeSet,
    DirectMessageRecord,
    ListingMessageRecord,
    ListingRecord,
    OfferRecord,
    OrderRecord,
    StatusChange,
)
from shared import system_messages
from shared.types import ListingStatus, MessageType, OfferStatus, OrderStatus

OFFER_TTL_SECONDS = 48 * 60 * 60

TERMINAL_OFFER_STATUSES = frozenset(
    {
        OfferStatus.ACCEPTED,
        OfferStatus.DECLINED,
        OfferStatus.COUNTERED,
        OfferStatus.EXPIRED,
        OfferStatus.CANCELLED,
    }
)

LISTING_SOLD_NOTE = "Offer declined: listing sold"


@dataclass
class OfferOutcome:
    offer: OfferRecord
    changes: ChangeSet
    order: Optional[OrderRecord] = None


def is_expired(offer: OfferRecord, now: float) -> bool:
    return offer.status == OfferStatus.PENDING and offer.expires_at <= now


def _require_amount(amount: float) -> float:
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return round(float(amount), 2)


def _require_active_listing(listing: ListingRecord) -> None:
    if listing.status != ListingStatus.ACTIVE:
        raise InvalidTransitionError(
            f"Listing {listing.id} is {listing.status.value}, not active"
        )


def _require_pending(offer: OfferRecord, now: float) -> None:
    if offer.status != OfferStatus.PENDING:
        raise InvalidTransitionError(
            f"Offer {offer.id} is {offer.status.value}, not pending"
        )
    if offer.expires_at <= now:
        raise InvalidTransitionError(f"Offer {offer.id} has expired")


def _require_responder(offer: OfferRecord, actor_id: str) -> None:
    # The seller owns the listing and may settle any pending offer on it;
    # the buyer may only respond to a counter-offer.
    if actor_id == offer.seller_id:
        return
    if actor_id == offer.buyer_id and offer.is_counter:
        return
    raise PermissionDeniedError("Only the receiving party may respond to this offer")


def _counterpart(offer: OfferRecord, actor_id: str) -> str:
    return offer.buyer_id if actor_id == offer.seller_id else offer.seller_id


def _set_offer_status(
    offer: OfferRecord, status: OfferStatus, now: float
) -> StatusChange:
    return StatusChange(
        record_id=offer.id,
        expected_status=offer.status.value,
        fields={"status": status, "updated_at": now},
    )


def _thread_message(
    offer: OfferRecord,
    sender_id: str,
    recipient_id: str,
    content: str,
    message_type: MessageType,
    now: float,
) -> ListingMessageRecord:
    return ListingMessageRecord(
        listing_id=offer.listing_id,
        offer_id=offer.id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        content=content,
        message_type=message_type,
        created_at=now,
    )


def _system_notice(
    sender_id: str, recipient_id: str, content: str, now: float
) -> DirectMessageRecord:
    return DirectMessageRecord(
        sender_id=sender_id,
        recipient_id=recipient_id,
        content=system_messages.as_system_message(content),
        created_at=now,
    )


def _close_competing_offers(
    offers: Iterable[OfferRecord], keep_id: str, now: float
) -> ChangeSet:
    changes = ChangeSet()
    for other in offers:
        if other.id == keep_id or other.status != OfferStatus.PENDING:
            continue
        changes.offer_changes.append(
            _set_offer_status(other, OfferStatus.DECLINED, now)
        )
        changes.listing_messages.append(
            _thread_message(
                other,
                other.seller_id,
                other.buyer_id,
                LISTING_SOLD_NOTE,
                MessageType.OFFER_DECLINED,
                now,
            )
        )
    return changes


def _settle(
    offer: OfferRecord,
    listing: ListingRecord,
    *,
    competing_offers: Iterable[OfferRecord],
    now: float,
) -> tuple[OrderRecord, ChangeSet]:
    """Order creation and listing sale shared by accept and buy-now."""
    order = OrderRecord(
        listing_id=listing.id,
        offer_id=offer.id,
        buyer_id=offer.buyer_id,
        seller_id=offer.seller_id,
        amount=offer.amount,
        status=OrderStatus.PENDING_PAYMENT,
        created_at=now,
        updated_at=now,
    )
    changes = ChangeSet(new_orders=[order])
    changes.listing_changes.append(
        StatusChange(
            record_id=listing.id,
            expected_status=listing.status.value,
            fields={
                "status": ListingStatus.SOLD,
                "sold_price": offer.amount,
                "updated_at": now,
            },
        )
    )
    changes.extend(_close_competing_offers(competing_offers, offer.id, now))
    return order, changes


def send_offer(
    listing: ListingRecord,
    buyer_id: str,
    amount: float,
    *,
    open_offers: Iterable[OfferRecord] = (),
    now: float,
    ttl_seconds: float = OFFER_TTL_SECONDS,
    buyer_name: str = "A collector",
) -> OfferOutcome:
    """
    Opens a pending offer on a listing.

    Older pending offers from the same buyer on this listing are cancelled, so
    a buyer never has more than one live offer per listing.
    """
    amount = _require_amount(amount)
    _require_active_listing(listing)
    if not listing.accepts_offers:
        raise InvalidTransitionError("This listing does not accept offers")
    if buyer_id == listing.seller_id:
        raise PermissionDeniedError("Sellers cannot make offers on their own listing")

    offer = OfferRecord(
        listing_id=listing.id,
        buyer_id=buyer_id,
        seller_id=listing.seller_id,
        amount=amount,
        expires_at=now + ttl_seconds,
        status=OfferStatus.PENDING,
        is_counter=False,
        created_at=now,
        updated_at=now,
    )
    changes = ChangeSet(new_offers=[offer])
    for previous in open_offers:
        if previous.buyer_id == buyer_id and previous.status == OfferStatus.PENDING:
            changes.offer_changes.append(
                _set_offer_status(previous, OfferStatus.CANCELLED, now)
            )
    changes.listing_messages.append(
        _thread_message(
            offer,
            buyer_id,
            listing.seller_id,
            f"Offer sent: {system_messages.format_price(amount)}",
            MessageType.OFFER_SENT,
            now,
        )
    )
    changes.direct_messages.append(
        _system_notice(
            buyer_id,
            listing.seller_id,
            system_messages.new_offer_message(listing.card_name, amount, buyer_name),
            now,
        )
    )
    return OfferOutcome(offer=offer, changes=changes)


def accept_offer(
    offer: OfferRecord,
    listing: ListingRecord,
    actor_id: str,
    *,
    competing_offers: Iterable[OfferRecord] = (),
    now: float,
    actor_name: str = "A collector",
) -> OfferOutcome:
    _require_pending(offer, now)
    _require_responder(offer, actor_id)
    _require_active_listing(listing)

    accepted = OfferRecord(**{**vars(offer), "status": OfferStatus.ACCEPTED, "updated_at": now})
    order, changes = _settle(accepted, listing, competing_offers=competing_offers, now=now)
    changes.offer_changes.insert(0, _set_offer_status(offer, OfferStatus.ACCEPTED, now))

    recipient_id = _counterpart(offer, actor_id)
    changes.listing_messages.append(
        _thread_message(
            offer,
            actor_id,
            recipient_id,
            "Offer accepted!",
            MessageType.OFFER_ACCEPTED,
            now,
        )
    )
    if actor_id == offer.seller_id:
        notice = system_messages.offer_accepted_message(
            listing.card_name, offer.amount, actor_name
        )
    else:
        notice = system_messages.purchase_message(
            listing.card_name, offer.amount, actor_name
        )
    changes.direct_messages.append(_system_notice(actor_id, recipient_id, notice, now))
    return OfferOutcome(offer=accepted, changes=changes, order=order)


def decline_offer(
    offer: OfferRecord,
    listing: ListingRecord,
    actor_id: str,
    *,
    now: float,
    actor_name: str = "A collector",
) -> OfferOutcome:
    _require_pending(offer, now)
    _require_responder(offer, actor_id)

    declined = OfferRecord(**{**vars(offer), "status": OfferStatus.DECLINED, "updated_at": now})
    recipient_id = _counterpart(offer, actor_id)
    changes = ChangeSet(
        offer_changes=[_set_offer_status(offer, OfferStatus.DECLINED, now)]
    )
    changes.listing_messages.append(
        _thread_message(
            offer,
            actor_id,
            recipient_id,
            "Offer declined",
            MessageType.OFFER_DECLINED,
            now,
        )
    )
    changes.direct_messages.append(
        _system_notice(
            actor_id,
            recipient_id,
            system_messages.offer_declined_message(
                listing.card_name, offer.amount, actor_name
            ),
            now,
        )
    )
    return OfferOutcome(offer=declined, changes=changes)


def counter_offer(
    offer: OfferRecord,
    listing: ListingRecord,
    actor_id: str,
    amount: float,
    *,
    now: float,
    ttl_seconds: float = OFFER_TTL_SECONDS,
    actor_name: str = "A collector",
) -> OfferOutcome:
    """
    Replaces a buyer's pending offer with a seller counter-offer.

    The original becomes `countered`; the counter keeps the original buyer and
    seller and points back through `parent_offer_id`.
    """
    amount = _require_amount(amount)
    _require_pending(offer, now)
    if actor_id != offer.seller_id:
        raise PermissionDeniedError("Only the seller can counter an offer")
    if offer.is_counter:
        raise InvalidTransitionError("A counter-offer cannot be countered by its own author")
    _require_active_listing(listing)

    counter = OfferRecord(
        listing_id=offer.listing_id,
        buyer_id=offer.buyer_id,
        seller_id=offer.seller_id,
        amount=amount,
        expires_at=now + ttl_seconds,
        status=OfferStatus.PENDING,
        is_counter=True,
        parent_offer_id=offer.id,
        created_at=now,
        updated_at=now,
    )
    changes = ChangeSet(
        offer_changes=[_set_offer_status(offer, OfferStatus.COUNTERED, now)],
        new_offers=[counter],
    )
    changes.listing_messages.append(
        _thread_message(
            counter,
            actor_id,
            offer.buyer_id,
            f"Counter-offer sent: {system_messages.format_price(amount)}",
            MessageType.COUNTER_SENT,
            now,
        )
    )
    changes.direct_messages.append(
        _system_notice(
            actor_id,
            offer.buyer_id,
            system_messages.counter_offer_message(listing.card_name, amount, actor_name),
            now,
        )
    )
    return OfferOutcome(offer=counter, changes=changes)


def buy_now(
    listing: ListingRecord,
    buyer_id: str,
    *,
    competing_offers: Iterable[OfferRecord] = (),
    now: float,
    ttl_seconds: float = OFFER_TTL_SECONDS,
    buyer_name: str = "A collector",
) -> OfferOutcome:
    """Purchases at the asking price; the offer is born accepted."""
    _require_active_listing(listing)
    if buyer_id == listing.seller_id:
        raise PermissionDeniedError("Sellers cannot buy their own listing")

    offer = OfferRecord(
        listing_id=listing.id,
        buyer_id=buyer_id,
        seller_id=listing.seller_id,
        amount=round(float(listing.asking_price), 2),
        expires_at=now + ttl_seconds,
        status=OfferStatus.ACCEPTED,
        is_counter=False,
        created_at=now,
        updated_at=now,
    )
    order, changes = _settle(offer, listing, competing_offers=competing_offers, now=now)
    changes.new_offers.insert(0, offer)
    changes.listing_messages.append(
        _thread_message(
            offer,
            buyer_id,
            listing.seller_id,
            f"Bought at asking price: {system_messages.format_price(offer.amount)}",
            MessageType.BUY_NOW,
            now,
        )
    )
    changes.direct_messages.append(
        _system_notice(
            buyer_id,
            listing.seller_id,
            system_messages.purchase_message(listing.card_name, offer.amount, buyer_name),
            now,
        )
    )
    return OfferOutcome(offer=offer, changes=changes, order=order)


def cancel_offer(
    offer: OfferRecord,
    listing: ListingRecord,
    actor_id: str,
    *,
    now: float,
    actor_name: str = "A collector",
) -> OfferOutcome:
    if offer.status != OfferStatus.PENDING:
        raise InvalidTransitionError(
            f"Offer {offer.id} is {offer.status.value}, not pending"
        )
    if actor_id != offer.maker_id:
        raise PermissionDeniedError("Only the party who made an offer can withdraw it")

    cancelled = OfferRecord(**{**vars(offer), "status": OfferStatus.CANCELLED, "updated_at": now})
    recipient_id = offer.receiver_id
    changes = ChangeSet(
        offer_changes=[_set_offer_status(offer, OfferStatus.CANCELLED, now)]
    )
    changes.listing_messages.append(
        _thread_message(
            offer,
            actor_id,
            recipient_id,
            "Offer withdrawn",
            MessageType.OFFER_CANCELLED,
            now,
        )
    )
    changes.direct_messages.append(
        _system_notice(
            actor_id,
            recipient_id,
            system_messages.offer_withdrawn_message(
                listing.card_name, offer.amount, actor_name
            ),
            now,
        )
    )
    return OfferOutcome(offer=cancelled, changes=changes)


def expire_offer(offer: OfferRecord, *, now: float) -> ChangeSet:
    """Time-based close of a pending offer; no direct message is sent."""
    if not is_expired(offer, now):
        raise InvalidTransitionError(f"Offer {offer.id} is not due to expire")
    changes = ChangeSet(
        offer_changes=[_set_offer_status(offer, OfferStatus.EXPIRED, now)]
    )
    changes.listing_messages.append(
        _thread_message(
            offer,
            offer.maker_id,
            offer.receiver_id,
            "Offer expired",
            MessageType.OFFER_EXPIRED,
            now,
        )
    )
    return changes


def offer_lineage(offer_id: str, offers: Iterable[OfferRecord]) -> list[OfferRecord]:
    """
    Returns the negotiation chain containing `offer_id`, root first.
    """
    by_id = {offer.id: offer for offer in offers}
    current = by_id.get(offer_id)
    if current is None:
        return []
    while current.parent_offer_id and current.parent_offer_id in by_id:
        current = by_id[current.parent_offer_id]

    children: dict[str, list[OfferRecord]] = {}
    for offer in by_id.values():
        if offer.parent_offer_id:
            children.setdefault(offer.parent_offer_id, []).append(offer)

    chain = [current]
    while children.get(chain[-1].id):
        chain.append(max(children[chain[-1].id], key=lambda o: o.created_at))
    return chain


def latest_pending_for_buyer(
    offers: Iterable[OfferRecord], buyer_id: str
) -> Optional[OfferRecord]:
    """The buyer's active offer: their newest pending one."""
    pending = [
        offer
        for offer in offers
        if offer.buyer_id == buyer_id and offer.status == OfferStatus.PENDING
    ]
    if not pending:
        return None
    return max(pending, key=lambda o: o.created_at)
