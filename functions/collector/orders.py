"""
Order fulfillment transitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from collector.errors import InvalidTransitionError, PermissionDeniedError
from collector.records import (
    ChangeSet,
    DirectMessageRecord,
    ListingRecord,
    OrderRecord,
    StatusChange,
)
from shared import system_messages
from shared.types import ListingStatus, OrderStatus

SELLER = "seller"
BUYER = "buyer"

# (from, to) -> roles allowed to make the move
ORDER_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[str]] = {
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID): frozenset({SELLER}),
    (OrderStatus.PAID, OrderStatus.SHIPPED): frozenset({SELLER}),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED): frozenset({BUYER}),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED): frozenset({BUYER, SELLER}),
    (OrderStatus.PAID, OrderStatus.CANCELLED): frozenset({SELLER}),
    (OrderStatus.PAID, OrderStatus.REFUNDED): frozenset({SELLER}),
    (OrderStatus.SHIPPED, OrderStatus.REFUNDED): frozenset({SELLER}),
    (OrderStatus.DELIVERED, OrderStatus.REFUNDED): frozenset({SELLER}),
}

_TIMESTAMP_FIELDS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
}


@dataclass
class OrderOutcome:
    order: OrderRecord
    changes: ChangeSet


def role_of(order: OrderRecord, actor_id: str) -> Optional[str]:
    if actor_id == order.seller_id:
        return SELLER
    if actor_id == order.buyer_id:
        return BUYER
    return None


def allowed_next_statuses(order: OrderRecord, actor_id: str) -> list[OrderStatus]:
    role = role_of(order, actor_id)
    return [
        target
        for (source, target), roles in ORDER_TRANSITIONS.items()
        if source == order.status and role in roles
    ]


def transition_order(
    order: OrderRecord,
    listing: Optional[ListingRecord],
    actor_id: str,
    target: OrderStatus,
    *,
    now: float,
    tracking_number: Optional[str] = None,
    shipping_address: Optional[str] = None,
    notes: Optional[str] = None,
) -> OrderOutcome:
    """
    Moves an order to `target` if the actor's role allows it.

    A cancelled order puts its listing back on the market. Every transition
    sends a system notice to the other party.
    """
    role = role_of(order, actor_id)
    if role is None:
        raise PermissionDeniedError("Only the buyer or seller can update this order")
    roles = ORDER_TRANSITIONS.get((order.status, target))
    if roles is None:
        raise InvalidTransitionError(
            f"Order {order.id} cannot move from {order.status.value} to {target.value}"
        )
    if role not in roles:
        raise PermissionDeniedError(
            f"The {role} cannot move an order to {target.value}"
        )

    fields: dict = {"status": target, "updated_at": now}
    stamp = _TIMESTAMP_FIELDS.get(target)
    if stamp:
        fields[stamp] = now
    if tracking_number is not None:
        fields["tracking_number"] = tracking_number
    if shipping_address is not None:
        fields["shipping_address"] = shipping_address
    if notes is not None:
        fields["notes"] = notes

    updated = OrderRecord(**{**vars(order), **fields})
    changes = ChangeSet(
        order_changes=[
            StatusChange(
                record_id=order.id,
                expected_status=order.status.value,
                fields=fields,
            )
        ]
    )
    if (
        target == OrderStatus.CANCELLED
        and listing is not None
        and listing.status == ListingStatus.SOLD
    ):
        changes.listing_changes.append(
            StatusChange(
                record_id=listing.id,
                expected_status=listing.status.value,
                fields={
                    "status": ListingStatus.ACTIVE,
                    "sold_price": None,
                    "updated_at": now,
                },
            )
        )

    card_name = listing.card_name if listing else "your order"
    recipient_id = order.buyer_id if role == SELLER else order.seller_id
    changes.direct_messages.append(
        DirectMessageRecord(
            sender_id=actor_id,
            recipient_id=recipient_id,
            content=system_messages.as_system_message(
                system_messages.order_status_message(card_name, target)
            ),
            created_at=now,
        )
    )
    return OrderOutcome(order=updated, changes=changes)
