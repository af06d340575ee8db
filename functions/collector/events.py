"""
Realtime change feed.

Every committed write is announced on a per-resource channel so that open
clients can refresh. Redis pub/sub backs production; the in-memory bus records
events for tests and local runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import redis
from redis import exceptions as redis_exceptions

from collector.records import ChangeSet, record_to_dict

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

LISTINGS_CHANNEL = "marketplace-listings"


def listing_offers_channel(listing_id: str) -> str:
    return f"listing-offers-{listing_id}"


def listing_messages_channel(listing_id: str) -> str:
    return f"listing-messages-{listing_id}"


def orders_channel(user_id: str) -> str:
    return f"orders-{user_id}"


def messages_channel(user_id: str) -> str:
    return f"messages-{user_id}"


@dataclass
class ChangeEvent:
    channel: str
    event: str
    table: str
    row: dict

    def as_dict(self) -> dict:
        return {"event": self.event, "table": self.table, "row": self.row}


class EventBus(Protocol):
    """Fan-out of row changes to subscribers."""

    def publish(self, event: ChangeEvent) -> None:
        ...


@dataclass
class InMemoryEventBus:
    """Keeps published events in order of publication."""

    events: list[ChangeEvent] = field(default_factory=list)

    def publish(self, event: ChangeEvent) -> None:
        self.events.append(event)

    def on_channel(self, channel: str) -> list[ChangeEvent]:
        return [event for event in self.events if event.channel == channel]

    def reset(self) -> None:
        self.events.clear()


@dataclass
class RedisEventBus:
    """Redis pub/sub publisher."""

    url: str
    channel_prefix: str = "collector"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def publish(self, event: ChangeEvent) -> None:
        payload = json.dumps(event.as_dict(), default=str)
        channel = f"{self.channel_prefix}:{event.channel}"
        try:
            self.client.publish(channel, payload)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and retry once.
            self.client = redis.Redis.from_url(self.url)
            try:
                self.client.publish(channel, payload)
            except redis_exceptions.ConnectionError:
                logger.warning("Dropped realtime event on %s", channel)


def _row(record: Any) -> dict:
    return record_to_dict(record)


def events_for_changes(
    changes: ChangeSet,
    *,
    offers: dict[str, Any],
    listings: dict[str, Any],
    orders: dict[str, Any],
) -> list[ChangeEvent]:
    """
    Builds the events announcing a committed ChangeSet.

    `offers`, `listings` and `orders` map ids to the rows as they stand after
    the commit, used for UPDATE payloads.
    """
    events: list[ChangeEvent] = []
    for offer in changes.new_offers:
        events.append(
            ChangeEvent(listing_offers_channel(offer.listing_id), INSERT, "listing_offers", _row(offer))
        )
    for change in changes.offer_changes:
        offer = offers.get(change.record_id)
        if offer is not None:
            events.append(
                ChangeEvent(listing_offers_channel(offer.listing_id), UPDATE, "listing_offers", _row(offer))
            )
    for change in changes.listing_changes:
        listing = listings.get(change.record_id)
        if listing is not None:
            events.append(
                ChangeEvent(LISTINGS_CHANNEL, UPDATE, "marketplace_listings", _row(listing))
            )
    for order in changes.new_orders:
        for user_id in (order.buyer_id, order.seller_id):
            events.append(ChangeEvent(orders_channel(user_id), INSERT, "orders", _row(order)))
    for change in changes.order_changes:
        order = orders.get(change.record_id)
        if order is not None:
            for user_id in (order.buyer_id, order.seller_id):
                events.append(ChangeEvent(orders_channel(user_id), UPDATE, "orders", _row(order)))
    for message in changes.listing_messages:
        events.append(
            ChangeEvent(
                listing_messages_channel(message.listing_id),
                INSERT,
                "listing_messages",
                _row(message),
            )
        )
    for message in changes.direct_messages:
        events.append(
            ChangeEvent(messages_channel(message.recipient_id), INSERT, "messages", _row(message))
        )
    return events
