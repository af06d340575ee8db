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


import unittest
from unittest.mock import MagicMock, patch

import requests

from card_lookup import market_prices, providers
from shared.types import CardResult, TcgGame


def _response(payload, ok=True, status_code=200):
    response = MagicMock()
    response.ok = ok
    response.status_code = status_code
    response.json.return_value = payload
    return response


class PriceHelpersTest(unittest.TestCase):

    def test_price_spread_ignores_unpriced_variants(self):
        spread = providers.price_spread(
            [{"price": 1.0}, {"price": 3.0}, {"price": None}, {"price": 0}, "junk"]
        )
        self.assertEqual((spread.low, spread.market, spread.high), (1.0, 2.0, 3.0))

    def test_price_spread_empty(self):
        spread = providers.price_spread(None)
        self.assertIsNone(spread.market)

    def test_highest_variant_price(self):
        self.assertEqual(providers.highest_variant_price([{"price": 2}, {"price": 7.5}]), 7.5)
        self.assertIsNone(providers.highest_variant_price([]))


class JustTcgTest(unittest.TestCase):

    @patch("card_lookup.providers.requests.get")
    def test_no_key_skips_request(self, mock_get):
        self.assertEqual(providers.fetch_justtcg_raw("Luffy", TcgGame.ONEPIECE, None), [])
        mock_get.assert_not_called()

    @patch("card_lookup.providers.requests.get")
    def test_sends_key_header_and_game_slug(self, mock_get):
        mock_get.return_value = _response({"data": [{"name": "Luffy"}]})
        cards = providers.fetch_justtcg_raw("Luffy", TcgGame.ONEPIECE, "secret", limit=3)
        self.assertEqual(cards, [{"name": "Luffy"}])
        kwargs = mock_get.call_args.kwargs
        self.assertEqual(kwargs["headers"]["x-api-key"], "secret")
        self.assertEqual(kwargs["params"]["game"], providers.JUSTTCG_GAME_SLUGS[TcgGame.ONEPIECE])
        self.assertEqual(kwargs["params"]["limit"], 3)

    @patch("card_lookup.providers.requests.get", side_effect=requests.Timeout("slow"))
    def test_request_errors_become_empty_results(self, _):
        self.assertEqual(providers.fetch_justtcg_raw("Luffy", TcgGame.ONEPIECE, "k"), [])

    @patch("card_lookup.providers.requests.get")
    def test_http_errors_become_empty_results(self, mock_get):
        mock_get.return_value = _response({}, ok=False, status_code=500)
        self.assertEqual(providers.fetch_justtcg_raw("Luffy", TcgGame.ONEPIECE, "k"), [])

    @patch("card_lookup.providers.fetch_justtcg_cards")
    def test_enrich_only_unpriced_cards(self, mock_cards):
        priced = CardResult(external_id="a", tcg_game=TcgGame.YUGIOH, card_name="Kuriboh", price_market=1.0)
        providers.enrich_with_justtcg_price(priced, "k")
        mock_cards.assert_not_called()

        mock_cards.return_value = [
            CardResult(external_id="b", tcg_game=TcgGame.YUGIOH, card_name="Kuriboh", price_market=4.0)
        ]
        unpriced = CardResult(external_id="a", tcg_game=TcgGame.YUGIOH, card_name="Kuriboh")
        providers.enrich_with_justtcg_price(unpriced, "k")
        self.assertEqual(unpriced.price_market, 4.0)
        self.assertEqual(unpriced.price_source, "justtcg")


class RoutingTest(unittest.TestCase):

    @patch("card_lookup.providers.fetch_justtcg_cards", return_value=[])
    @patch("card_lookup.providers.fetch_onepiece_catalog", return_value=[])
    def test_one_piece_falls_back_to_justtcg(self, mock_catalog, mock_justtcg):
        providers.fetch_cards_for_game("Shanks", TcgGame.ONEPIECE, api_key="k")
        mock_catalog.assert_called_once()
        mock_justtcg.assert_called_once()

    def test_marvel_returns_stub(self):
        cards = providers.fetch_cards_for_game("Spider-Man", TcgGame.MARVEL)
        self.assertEqual(len(cards), 1)
        self.assertEqual(cards[0].tcg_game, TcgGame.MARVEL)


class MarketPricesTest(unittest.TestCase):

    @patch("card_lookup.market_prices.providers.fetch_justtcg_cards", return_value=[])
    @patch("card_lookup.market_prices.providers.fetch_yugioh_cards", return_value=[])
    @patch("card_lookup.market_prices.providers.fetch_magic_price", return_value=(12000.0, "img"))
    def test_every_grail_item_is_reported(self, *_):
        prices = market_prices.fetch_market_prices("k")
        self.assertEqual(len(prices), len(market_prices.GRAIL_ITEMS))
        lotus = prices[0]
        self.assertEqual((lotus.id, lotus.price, lotus.image_url), ("black-lotus", 12000.0, "img"))
        pokemon = [p for p in prices if p.id == "pikachu-illustrator"][0]
        self.assertIsNone(pokemon.price)


if __name__ == "__main__":
    unittest.main()
