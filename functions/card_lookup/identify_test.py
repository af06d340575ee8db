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

from card_lookup import identify
from shared.types import CardResult, TcgGame


class IdentifyCardTest(unittest.TestCase):

    @patch("card_lookup.identify.providers.fetch_cards_for_game")
    @patch("card_lookup.identify.gemini.identify_cards_in_image")
    def test_catalog_match_keeps_model_details(self, mock_model, mock_fetch):
        mock_model.return_value = (
            [{"card_name": "Black Lotus", "tcg_game": "Magic", "rarity": "Rare"}],
            None,
        )
        mock_fetch.return_value = [
            CardResult(external_id="lea-232", tcg_game=TcgGame.MAGIC, card_name="Black Lotus")
        ]

        response = identify.identify_card(b"img", game_hint=TcgGame.MAGIC)

        self.assertTrue(response.success)
        self.assertEqual(response.cards[0].external_id, "lea-232")
        self.assertEqual(response.cards[0].rarity, "Rare")
        self.assertEqual(mock_model.call_args.kwargs["game_hint"], "magic")

    @patch("card_lookup.identify.providers.fetch_cards_for_game", return_value=[])
    @patch("card_lookup.identify.gemini.identify_cards_in_image")
    def test_unknown_card_falls_back_to_model_reading(self, mock_model, _):
        mock_model.return_value = (
            [{"card_name": "Nami", "tcg_game": "onepiece", "card_number": "OP01-016"}],
            None,
        )
        response = identify.identify_card(b"img")
        card = response.cards[0]
        self.assertEqual(card.external_id, "onepiece-nami")
        self.assertEqual(card.card_number, "OP01-016")
        self.assertEqual(card.confidence, identify.AI_FALLBACK_CONFIDENCE)

    @patch("card_lookup.identify.gemini.identify_cards_in_image")
    def test_nothing_detected(self, mock_model):
        mock_model.return_value = ([], "Image is too blurry")
        response = identify.identify_card(b"img")
        self.assertFalse(response.success)
        self.assertEqual(response.error, "Image is too blurry")

    def test_unknown_game_is_ignored(self):
        self.assertEqual(
            identify.enrich_detected_card({"card_name": "X", "tcg_game": "chess"}), []
        )


if __name__ == "__main__":
    unittest.main()
