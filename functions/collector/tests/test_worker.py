import unittest
from unittest.mock import patch

from collector.db import InMemoryDbClient
from collector.events import InMemoryEventBus
from collector.marketplace import MarketplaceService
from collector.offers import OFFER_TTL_SECONDS
from collector.worker import process_once, run_loop
from shared.types import CardCondition, OfferStatus, TcgGame


class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.service = MarketplaceService(self.db, InMemoryEventBus())
        self.listing = self.service.create_listing(
            "seller",
            card_name="Son Goku",
            tcg_game=TcgGame.DRAGONBALL,
            asking_price=15,
            condition=CardCondition.NEAR_MINT,
        )

    def test_process_once_expires_due_offers(self):
        offer = self.service.send_offer(self.listing.id, "buyer", 10)
        processed = process_once(self.service, now=offer.created_at + OFFER_TTL_SECONDS)
        self.assertEqual(processed, 1)
        self.assertEqual(self.db.get_offer(offer.id).status, OfferStatus.EXPIRED)
        thread = self.service.list_listing_messages(self.listing.id)
        self.assertEqual(thread[-1].content, "Offer expired")

    def test_process_once_no_due_offers(self):
        self.service.send_offer(self.listing.id, "buyer", 10)
        self.assertEqual(process_once(self.service), 0)

    @patch("collector.worker.time.sleep", side_effect=KeyboardInterrupt)
    @patch("collector.worker.get_marketplace_service")
    def test_run_loop_survives_sweep_errors(self, mock_service, _):
        mock_service.return_value.expire_offers.side_effect = RuntimeError("db down")
        with self.assertRaises(KeyboardInterrupt):
            run_loop(poll_interval_seconds=1)
        mock_service.return_value.expire_offers.assert_called_once()


if __name__ == "__main__":
    unittest.main()
