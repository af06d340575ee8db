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

from card_lookup import scan
from collector.db import InMemoryDbClient
from shared.types import TcgGame

ONE_PIECE_TEXT = "Monkey.D.Luffy\nLEADER\nStraw Hat Crew\nOP01-003\n5000"
POKEMON_TEXT = "Pikachu\n60 HP\nBasic Pokémon\nThunder Shock\n025/165"


def _vision_response(text):
    response = MagicMock()
    response.json.return_value = {"responses": [{"fullTextAnnotation": {"text": text}}]}
    response.raise_for_status.return_value = None
    return response


class ParseOcrTextTest(unittest.TestCase):

    def test_one_piece_code_wins(self):
        reading = scan.parse_ocr_text(ONE_PIECE_TEXT + "\nPokémon")
        self.assertEqual(reading.game, scan.GAME_ONE_PIECE)
        self.assertEqual(reading.identifier, "OP01-003")
        self.assertEqual(reading.confidence, 0.95)

    def test_lowercase_code_is_normalized(self):
        reading = scan.parse_ocr_text("zoro st01-013")
        self.assertEqual(reading.identifier, "ST01-013")

    def test_pokemon_name_and_number(self):
        reading = scan.parse_ocr_text(POKEMON_TEXT)
        self.assertEqual(reading.game, scan.GAME_POKEMON)
        self.assertEqual(reading.card_name, "Pikachu")
        self.assertEqual(reading.collector_number, "025/165")
        self.assertEqual(reading.identifier, "pikachu_025-165")
        self.assertEqual(reading.confidence, 0.85)

    def test_pokemon_name_skips_hp_and_stage_lines(self):
        reading = scan.parse_ocr_text("120 HP\nStage 1\nRaichu")
        self.assertEqual(reading.card_name, "Raichu")
        self.assertEqual(reading.identifier, "raichu")
        self.assertEqual(reading.confidence, 0.7)

    def test_unrelated_text_has_no_game(self):
        reading = scan.parse_ocr_text("Grocery list\nmilk\nbread")
        self.assertIsNone(reading.game)
        self.assertIsNone(reading.identifier)


class ScanCardTest(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryDbClient()

    def test_missing_vision_key_raises(self):
        with self.assertRaises(scan.ScanError):
            scan.scan_card(self.db, b"img", vision_api_key=None, justtcg_api_key="k")

    @patch("card_lookup.scan.requests.post", side_effect=requests.ConnectionError("down"))
    def test_vision_failure_raises(self, _):
        with self.assertRaises(scan.ScanError):
            scan.scan_card(self.db, b"img", vision_api_key="v", justtcg_api_key="k")

    @patch("card_lookup.scan.requests.post")
    def test_non_json_vision_body_raises(self, mock_post):
        mock_post.return_value = MagicMock()
        mock_post.return_value.json.side_effect = ValueError("Expecting value")
        with self.assertRaises(scan.ScanError):
            scan.scan_card(self.db, b"img", vision_api_key="v", justtcg_api_key="k")

    @patch("card_lookup.scan.requests.post")
    def test_no_card_detected(self, mock_post):
        mock_post.return_value = _vision_response("just a receipt")
        result = scan.scan_card(self.db, b"img", vision_api_key="v", justtcg_api_key="k")
        self.assertEqual(result.error, scan.NO_CARD_MESSAGE)

    @patch("card_lookup.scan.providers.fetch_justtcg_raw")
    @patch("card_lookup.scan.requests.post")
    def test_one_piece_scan_picks_matching_number_and_caches(self, mock_post, mock_raw):
        mock_post.return_value = _vision_response(ONE_PIECE_TEXT)
        mock_raw.return_value = [
            {"name": "Luffy (Alt Art)", "card_id": "OP01-024", "variants": [{"price": 9.0}]},
            {
                "name": "Monkey.D.Luffy",
                "card_id": "OP01-003",
                "set": {"name": "Romance Dawn"},
                "variants": [{"price": 2.0}, {"price": 4.0}, {"price": 0}],
            },
        ]

        result = scan.scan_card(
            self.db, b"img", vision_api_key="v", justtcg_api_key="k", now=1000.0
        )
        self.assertEqual(result.card_name, "Monkey.D.Luffy")
        self.assertEqual(result.set_name, "Romance Dawn")
        self.assertEqual(result.prices.low, 2.0)
        self.assertEqual(result.prices.market, 3.0)
        self.assertEqual(result.prices.high, 4.0)
        self.assertEqual(result.source, "live")
        self.assertEqual(len(result.candidates), 2)
        self.assertEqual(mock_raw.call_args[0][1], TcgGame.ONEPIECE)

        cached = scan.scan_card(
            self.db, b"img", vision_api_key="v", justtcg_api_key="k", now=2000.0
        )
        self.assertEqual(cached.source, "cache")
        self.assertEqual(cached.card_name, "Monkey.D.Luffy")
        self.assertEqual(cached.prices.market, 3.0)
        self.assertEqual(mock_raw.call_count, 1)

    @patch("card_lookup.scan.providers.fetch_justtcg_raw", return_value=[])
    @patch("card_lookup.scan.requests.post")
    def test_unknown_card_reports_not_found(self, mock_post, mock_raw):
        mock_post.return_value = _vision_response(POKEMON_TEXT)
        result = scan.scan_card(self.db, b"img", vision_api_key="v", justtcg_api_key="k")
        self.assertEqual(result.error, scan.NOT_FOUND_MESSAGE)
        self.assertEqual(result.card_name, "Pikachu")
        self.assertEqual(mock_raw.call_args[0][0], "Pikachu")
        self.assertEqual(self.db.scan_cache, {})


if __name__ == "__main__":
    unittest.main()
