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
from unittest.mock import patch

from card_lookup import search
from collector.db import InMemoryDbClient
from collector.errors import ValidationError
from shared.types import CardResult, TcgGame

NOW = 1_000_000.0


def _card(external_id, name, game=TcgGame.POKEMON, price=None):
    return CardResult(external_id=external_id, tcg_game=game, card_name=name, price_market=price)


class SearchCardsTest(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryDbClient()

    def test_short_query_rejected(self):
        with self.assertRaises(ValidationError):
            search.search_cards(self.db, " a ")

    @patch("card_lookup.search.providers.enrich_with_justtcg_price")
    @patch("card_lookup.search.providers.fetch_cards_for_game")
    def test_miss_queries_providers_then_cache_serves(self, mock_fetch, mock_enrich):
        mock_fetch.return_value = [
            _card("sv1-25", "Pikachu", price=1.5),
            _card("", "Pikachu (no id)"),
        ]

        first = search.search_cards(
            self.db, "Pikachu", tcg_game=TcgGame.POKEMON, now=NOW
        )
        self.assertEqual(first.source, search.SOURCE_API)
        self.assertEqual([c.external_id for c in first.cards], ["sv1-25"])
        self.assertEqual(first.cards[0].price_updated_at, NOW)
        mock_enrich.assert_called_once()

        second = search.search_cards(
            self.db, "pika", tcg_game=TcgGame.POKEMON, now=NOW + 60
        )
        self.assertEqual(second.source, search.SOURCE_CACHE)
        self.assertEqual(mock_fetch.call_count, 1)

    @patch("card_lookup.search.providers.enrich_with_justtcg_price")
    @patch("card_lookup.search.providers.fetch_cards_for_game")
    def test_stale_cache_is_refreshed(self, mock_fetch, _):
        mock_fetch.return_value = [_card("sv1-25", "Pikachu", price=1.5)]
        search.search_cards(self.db, "Pikachu", tcg_game=TcgGame.POKEMON, now=NOW)

        mock_fetch.return_value = [_card("sv1-25", "Pikachu", price=2.0)]
        refreshed = search.search_cards(
            self.db,
            "Pikachu",
            tcg_game=TcgGame.POKEMON,
            now=NOW + search.CARD_CACHE_TTL_SECONDS + 1,
        )
        self.assertEqual(refreshed.source, search.SOURCE_API)
        self.assertEqual(refreshed.cards[0].price_market, 2.0)
        self.assertEqual(len(self.db.card_cache), 1)

    @patch("card_lookup.search.providers.enrich_with_justtcg_price")
    @patch("card_lookup.search.providers.fetch_cards_for_game")
    def test_all_games_searched_until_limit(self, mock_fetch, _):
        mock_fetch.side_effect = lambda name, game, **kwargs: [
            _card(f"{game.value}-{i}", f"{name} {i}", game=game) for i in range(2)
        ]
        result = search.search_cards(self.db, "Dragon", limit=3, now=NOW)
        self.assertEqual(len(result.cards), 3)
        games = [call.args[1] for call in mock_fetch.call_args_list]
        self.assertEqual(games, list(search.DEFAULT_SEARCH_ORDER[:2]))


if __name__ == "__main__":
    unittest.main()
