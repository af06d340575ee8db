import unittest

from collector.db import InMemoryDbClient
from collector.errors import (
    InsufficientCreditsError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from collector.events import LISTINGS_CHANNEL, InMemoryEventBus, messages_channel
from collector.marketplace import MarketplaceService
from collector.orders import allowed_next_statuses
from collector.records import CardCacheRecord, ProfileRecord, TournamentEventRecord
from shared.system_messages import is_system_message, strip_system_prefix
from shared.types import (
    CardCondition,
    GiftSource,
    ListingStatus,
    OrderStatus,
    TcgGame,
)

SELLER = "seller-1"
BUYER = "buyer-1"
STRANGER = "stranger-1"


class _Clock:
    def __init__(self):
        self.now = 2_000_000.0

    def __call__(self):
        self.now += 1
        return self.now


def _service():
    db = InMemoryDbClient()
    events = InMemoryEventBus()
    return db, events, MarketplaceService(db, events, clock=_Clock())


def _listing(service, **overrides):
    values = dict(
        card_name="Blue-Eyes White Dragon",
        tcg_game=TcgGame.YUGIOH,
        asking_price=40.0,
        condition=CardCondition.NEAR_MINT,
    )
    values.update(overrides)
    return service.create_listing(SELLER, **values)


class ListingTests(unittest.TestCase):
    def setUp(self):
        self.db, self.events, self.service = _service()

    def test_create_listing_publishes_insert(self):
        listing = _listing(self.service)
        self.assertEqual(listing.status, ListingStatus.ACTIVE)
        events = self.events.on_channel(LISTINGS_CHANNEL)
        self.assertEqual([e.event for e in events], ["INSERT"])
        self.assertEqual(events[0].row["id"], listing.id)

    def test_create_listing_requires_positive_price(self):
        with self.assertRaises(ValidationError):
            _listing(self.service, asking_price=0)

    def test_browse_filters_and_sorts(self):
        cheap = _listing(self.service, asking_price=5)
        pricey = _listing(self.service, asking_price=500)
        _listing(self.service, tcg_game=TcgGame.POKEMON, asking_price=50)

        by_price = self.service.list_listings(tcg_game=TcgGame.YUGIOH, sort="price_desc")
        self.assertEqual([l.id for l in by_price], [pricey.id, cheap.id])

        ranged = self.service.list_listings(min_price=10, max_price=100)
        self.assertEqual([l.asking_price for l in ranged], [50])

    def test_unknown_sort_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.list_listings(sort="random")

    def test_only_seller_edits(self):
        listing = _listing(self.service)
        with self.assertRaises(PermissionDeniedError):
            self.service.update_listing(listing.id, BUYER, {"asking_price": 1})
        updated = self.service.update_listing(listing.id, SELLER, {"asking_price": 35.555})
        self.assertEqual(updated.asking_price, 35.56)

    def test_status_cannot_be_edited_directly(self):
        listing = _listing(self.service)
        with self.assertRaises(ValidationError):
            self.service.update_listing(listing.id, SELLER, {"status": "sold"})

    def test_mark_sold_defaults_to_asking_price(self):
        listing = _listing(self.service)
        sold = self.service.set_listing_status(listing.id, SELLER, ListingStatus.SOLD)
        self.assertEqual(sold.sold_price, 40.0)

    def test_sold_listing_is_locked(self):
        listing = _listing(self.service)
        self.service.set_listing_status(listing.id, SELLER, ListingStatus.SOLD)
        with self.assertRaises(InvalidTransitionError):
            self.service.set_listing_status(listing.id, SELLER, ListingStatus.CANCELLED)
        with self.assertRaises(InvalidTransitionError):
            self.service.update_listing(listing.id, SELLER, {"asking_price": 10})
        self.assertEqual(self.db.get_listing(listing.id).asking_price, 40.0)

    def test_cannot_relist_by_hand(self):
        listing = _listing(self.service)
        self.service.set_listing_status(listing.id, SELLER, ListingStatus.CANCELLED)
        with self.assertRaises(ValidationError):
            self.service.set_listing_status(listing.id, SELLER, ListingStatus.ACTIVE)

    def test_card_with_open_order_cannot_be_sold_twice(self):
        listing = _listing(self.service)
        _, first = self.service.buy_now(listing.id, BUYER)
        with self.assertRaises(ValidationError):
            self.service.set_listing_status(listing.id, SELLER, ListingStatus.ACTIVE)
        with self.assertRaises(InvalidTransitionError):
            self.service.buy_now(listing.id, STRANGER)
        self.assertEqual(
            [o.id for o in self.db.orders.values() if o.listing_id == listing.id], [first.id]
        )

        self.service.update_order_status(first.id, BUYER, OrderStatus.CANCELLED)
        relisted = self.db.get_listing(listing.id)
        self.assertEqual(relisted.status, ListingStatus.ACTIVE)
        self.assertIsNone(relisted.sold_price)

    def test_delete_listing(self):
        listing = _listing(self.service)
        self.service.delete_listing(listing.id, SELLER)
        with self.assertRaises(NotFoundError):
            self.service.get_listing(listing.id)
        self.assertEqual(self.events.on_channel(LISTINGS_CHANNEL)[-1].event, "DELETE")


class OrderTests(unittest.TestCase):
    def setUp(self):
        self.db, self.events, self.service = _service()
        self.listing = _listing(self.service)
        _, self.order = self.service.buy_now(self.listing.id, BUYER)

    def test_happy_path_stamps_each_step(self):
        paid = self.service.update_order_status(self.order.id, SELLER, OrderStatus.PAID)
        self.assertIsNotNone(paid.paid_at)
        shipped = self.service.update_order_status(
            self.order.id, SELLER, OrderStatus.SHIPPED, tracking_number="1Z999"
        )
        self.assertIsNotNone(shipped.shipped_at)
        self.assertEqual(shipped.tracking_number, "1Z999")
        delivered = self.service.update_order_status(self.order.id, BUYER, OrderStatus.DELIVERED)
        self.assertIsNotNone(delivered.delivered_at)
        self.assertEqual(self.db.get_order(self.order.id).status, OrderStatus.DELIVERED)

    def test_buyer_cannot_mark_shipped(self):
        self.service.update_order_status(self.order.id, SELLER, OrderStatus.PAID)
        with self.assertRaises(PermissionDeniedError):
            self.service.update_order_status(self.order.id, BUYER, OrderStatus.SHIPPED)

    def test_skipping_steps_is_invalid(self):
        with self.assertRaises(InvalidTransitionError):
            self.service.update_order_status(self.order.id, SELLER, OrderStatus.SHIPPED)

    def test_stranger_cannot_touch_order(self):
        with self.assertRaises(PermissionDeniedError):
            self.service.update_order_status(self.order.id, STRANGER, OrderStatus.PAID)
        with self.assertRaises(PermissionDeniedError):
            self.service.get_order(self.order.id, STRANGER)

    def test_cancel_relists_card(self):
        cancelled = self.service.update_order_status(
            self.order.id, BUYER, OrderStatus.CANCELLED
        )
        self.assertEqual(cancelled.status, OrderStatus.CANCELLED)
        listing = self.db.get_listing(self.listing.id)
        self.assertEqual(listing.status, ListingStatus.ACTIVE)
        self.assertIsNone(listing.sold_price)

    def test_status_change_notifies_other_party(self):
        self.service.update_order_status(self.order.id, SELLER, OrderStatus.PAID)
        notices = [
            m
            for m in self.service.get_thread(BUYER, SELLER)
            if "marked as paid" in m.content
        ]
        self.assertEqual(len(notices), 1)
        self.assertEqual(notices[0].recipient_id, BUYER)
        self.assertTrue(is_system_message(notices[0].content))

    def test_allowed_next_statuses_by_role(self):
        self.assertEqual(
            set(allowed_next_statuses(self.order, SELLER)),
            {OrderStatus.PAID, OrderStatus.CANCELLED},
        )
        self.assertEqual(allowed_next_statuses(self.order, BUYER), [OrderStatus.CANCELLED])
        self.assertEqual(allowed_next_statuses(self.order, STRANGER), [])

    def test_list_orders_by_role(self):
        self.assertEqual(len(self.service.list_orders(BUYER, role="buyer")), 1)
        self.assertEqual(self.service.list_orders(BUYER, role="seller"), [])
        with self.assertRaises(ValidationError):
            self.service.list_orders(BUYER, role="admin")


class MessagingTests(unittest.TestCase):
    def setUp(self):
        self.db, self.events, self.service = _service()
        self.db.upsert_profiles(
            [ProfileRecord(id=SELLER, user_id=SELLER, username="cardshark")]
        )

    def test_conversations_group_by_partner(self):
        self.service.send_direct_message(BUYER, SELLER, "Is this still available?")
        self.service.send_direct_message(SELLER, BUYER, "Yes!")
        self.service.send_direct_message(STRANGER, BUYER, "hello")

        conversations = self.service.list_conversations(BUYER)
        self.assertEqual([c.partner_id for c in conversations], [STRANGER, SELLER])
        seller_thread = conversations[1]
        self.assertEqual(seller_thread.last_message, "Yes!")
        self.assertEqual(seller_thread.unread_count, 1)
        self.assertEqual(seller_thread.partner_username, "cardshark")

    def test_mark_thread_read(self):
        self.service.send_direct_message(SELLER, BUYER, "one")
        self.service.send_direct_message(SELLER, BUYER, "two")
        self.assertEqual(self.service.mark_thread_read(BUYER, SELLER), 2)
        self.assertEqual(self.service.list_conversations(BUYER)[0].unread_count, 0)

    def test_direct_message_published_to_recipient(self):
        message = self.service.send_direct_message(BUYER, SELLER, "hi")
        events = self.events.on_channel(messages_channel(SELLER))
        self.assertEqual(events[-1].row["id"], message.id)

    def test_empty_message_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.send_direct_message(BUYER, SELLER, "   ")

    def test_offer_notice_uses_buyer_username(self):
        listing = _listing(self.service)
        self.db.upsert_profiles(
            [ProfileRecord(id=BUYER, user_id=BUYER, username="grailhunter")]
        )
        self.service.send_offer(listing.id, BUYER, 30)
        notice = self.service.get_thread(SELLER, BUYER)[-1]
        self.assertIn("grailhunter", strip_system_prefix(notice.content))

    def test_listing_chat_must_include_seller(self):
        listing = _listing(self.service)
        with self.assertRaises(PermissionDeniedError):
            self.service.send_listing_message(listing.id, BUYER, STRANGER, "psst")
        message = self.service.send_listing_message(listing.id, BUYER, SELLER, "Trade?")
        self.assertEqual(
            [m.id for m in self.service.list_listing_messages(listing.id)], [message.id]
        )


class GiftingTests(unittest.TestCase):
    def setUp(self):
        self.db, self.events, self.service = _service()

    def test_gift_moves_credits_and_earnings(self):
        self.service.add_credits(BUYER, 100)
        transaction, wallet = self.service.send_gift(
            BUYER, SELLER, "wizard_owl", GiftSource.DIRECT_MESSAGE
        )
        self.assertEqual(transaction.credit_amount, 50)
        self.assertEqual(transaction.recipient_earned, 0.25)
        self.assertEqual(transaction.platform_revenue, 0.25)
        self.assertEqual(wallet.eco_credits, 50)
        self.assertEqual(self.service.get_wallet(SELLER).earned_balance, 0.25)
        self.assertEqual(len(self.service.list_gifts(SELLER)), 1)

    def test_insufficient_credits(self):
        self.service.add_credits(BUYER, 10)
        with self.assertRaises(InsufficientCreditsError):
            self.service.send_gift(BUYER, SELLER, "mecha_pup", GiftSource.DIRECT_MESSAGE)
        self.assertEqual(self.service.get_wallet(BUYER).eco_credits, 10)

    def test_unknown_gift_and_self_gift(self):
        self.service.add_credits(BUYER, 1000)
        with self.assertRaises(ValidationError):
            self.service.send_gift(BUYER, SELLER, "dragon", GiftSource.DIRECT_MESSAGE)
        with self.assertRaises(ValidationError):
            self.service.send_gift(BUYER, BUYER, "spark_hamster", GiftSource.DIRECT_MESSAGE)


class CollectionTests(unittest.TestCase):
    def setUp(self):
        self.db, self.events, self.service = _service()

    def test_add_edit_and_value_binder(self):
        pikachu = self.service.add_collection_card(
            BUYER, card_name="Pikachu", tcg_game=TcgGame.POKEMON, price_estimate=3.5, quantity=2
        )
        self.service.add_collection_card(BUYER, card_name="Zoro", tcg_game=TcgGame.ONEPIECE)

        binder = self.service.list_collection(BUYER)
        self.assertEqual([c.card_name for c in binder.cards], ["Zoro", "Pikachu"])
        self.assertEqual(binder.total_cards, 3)
        self.assertEqual(binder.total_value, 7.0)

        updated = self.service.update_collection_card(
            pikachu.id, BUYER, {"quantity": 4, "price_estimate": 5}
        )
        self.assertEqual((updated.quantity, updated.price_estimate), (4, 5.0))
        self.assertEqual(self.service.list_collection(BUYER).total_value, 20.0)

    def test_add_from_search_result(self):
        [cached] = self.db.upsert_card_cache(
            [
                CardCacheRecord(
                    external_id="op01-025",
                    tcg_game=TcgGame.ONEPIECE,
                    card_name="Roronoa Zoro",
                    image_url="https://img.example/zoro.png",
                    price_market=12.0,
                )
            ]
        )
        card = self.service.add_collection_card(BUYER, card_cache_id=cached.id)
        self.assertEqual(card.card_name, "Roronoa Zoro")
        self.assertEqual(card.tcg_game, TcgGame.ONEPIECE)
        self.assertEqual(card.price_estimate, 12.0)
        self.assertEqual(card.image_url, "https://img.example/zoro.png")

        with self.assertRaises(NotFoundError):
            self.service.add_collection_card(BUYER, card_cache_id="missing")

    def test_invalid_cards_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.add_collection_card(BUYER, card_name=" ", tcg_game=TcgGame.MAGIC)
        with self.assertRaises(ValidationError):
            self.service.add_collection_card(BUYER, card_name="Sol Ring")
        card = self.service.add_collection_card(
            BUYER, card_name="Sol Ring", tcg_game=TcgGame.MAGIC
        )
        with self.assertRaises(ValidationError):
            self.service.update_collection_card(card.id, BUYER, {"quantity": 0})
        with self.assertRaises(ValidationError):
            self.service.update_collection_card(card.id, BUYER, {"card_name": "Black Lotus"})

    def test_only_owner_changes_cards(self):
        card = self.service.add_collection_card(
            BUYER, card_name="Kuriboh", tcg_game=TcgGame.YUGIOH
        )
        with self.assertRaises(PermissionDeniedError):
            self.service.update_collection_card(card.id, STRANGER, {"quantity": 3})
        with self.assertRaises(PermissionDeniedError):
            self.service.delete_collection_card(card.id, STRANGER)
        self.service.delete_collection_card(card.id, BUYER)
        self.assertEqual(self.service.list_collection(BUYER).cards, [])
        with self.assertRaises(NotFoundError):
            self.service.delete_collection_card(card.id, BUYER)


class TournamentEventTests(unittest.TestCase):
    def setUp(self):
        self.db, self.events, self.service = _service()
        self.db.upsert_tournament_events(
            [
                TournamentEventRecord(
                    game_type=TcgGame.MAGIC,
                    title="Pro Tour",
                    location="Seattle",
                    start_date=300.0,
                    end_date=400.0,
                    is_major=True,
                ),
                TournamentEventRecord(
                    game_type=TcgGame.POKEMON,
                    title="Regionals",
                    location="Columbus",
                    start_date=100.0,
                    end_date=200.0,
                ),
                TournamentEventRecord(
                    game_type=TcgGame.LORCANA,
                    title="Challenge",
                    location="Lille",
                    start_date=200.0,
                    end_date=250.0,
                ),
            ]
        )

    def test_ordered_by_start_date(self):
        titles = [e.title for e in self.service.list_tournament_events()]
        self.assertEqual(titles, ["Regionals", "Challenge", "Pro Tour"])

    def test_filtered_by_game(self):
        events = self.service.list_tournament_events([TcgGame.MAGIC, TcgGame.POKEMON])
        self.assertEqual([e.title for e in events], ["Regionals", "Pro Tour"])


if __name__ == "__main__":
    unittest.main()
