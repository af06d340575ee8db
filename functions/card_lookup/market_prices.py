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

"""Live prices for the homepage ticker of chase cards."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from card_lookup import providers
from shared.types import TcgGame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrailItem:
    id: str
    game: TcgGame
    query: str
    set_code: Optional[str] = None


@dataclass
class GrailPrice:
    id: str
    name: str
    price: Optional[float] = None
    image_url: Optional[str] = None


GRAIL_ITEMS = (
    GrailItem("black-lotus", TcgGame.MAGIC, "Black Lotus", "lea"),
    GrailItem("mox-sapphire", TcgGame.MAGIC, "Mox Sapphire", "leb"),
    GrailItem("ancestral-recall", TcgGame.MAGIC, "Ancestral Recall", "lea"),
    GrailItem("blue-eyes-lob", TcgGame.YUGIOH, "Blue-Eyes White Dragon"),
    GrailItem("dark-magician-lob", TcgGame.YUGIOH, "Dark Magician"),
    GrailItem("luffy-op01-alt", TcgGame.ONEPIECE, "Monkey D. Luffy"),
    GrailItem("shanks-op01", TcgGame.ONEPIECE, "Shanks"),
    GrailItem("nami-op01", TcgGame.ONEPIECE, "Nami"),
    # Pokémon prices need a paid API.
    GrailItem("psa10-charizard-1st", TcgGame.POKEMON, "Charizard"),
    GrailItem("pikachu-illustrator", TcgGame.POKEMON, "Pikachu"),
)


def price_grail_item(item: GrailItem, api_key: Optional[str] = None) -> GrailPrice:
    result = GrailPrice(id=item.id, name=item.query)
    if item.game == TcgGame.MAGIC:
        result.price, result.image_url = providers.fetch_magic_price(item.query, item.set_code)
    elif item.game == TcgGame.YUGIOH:
        cards = providers.fetch_yugioh_cards(item.query, limit=1, exact=True)
        if cards:
            result.price, result.image_url = cards[0].price_market, cards[0].image_url
    elif item.game == TcgGame.ONEPIECE:
        cards = providers.fetch_justtcg_cards(item.query, item.game, api_key, limit=1)
        if cards:
            result.price, result.image_url = cards[0].price_market, cards[0].image_url
    return result


def fetch_market_prices(api_key: Optional[str] = None) -> list[GrailPrice]:
    prices = [price_grail_item(item, api_key) for item in GRAIL_ITEMS]
    logger.info("Fetched prices for %d items", len(prices))
    return prices
