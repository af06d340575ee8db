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

"""Card catalog search backed by a 24 hour price cache."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

from card_lookup import providers
from collector.db import DbClient
from collector.errors import ValidationError
from collector.records import CardCacheRecord
from shared.types import CardResult, TcgGame

logger = logging.getLogger(__name__)

CARD_CACHE_TTL_SECONDS = 24 * 60 * 60
MIN_QUERY_LENGTH = 2
DEFAULT_SEARCH_ORDER = (
    TcgGame.POKEMON,
    TcgGame.ONEPIECE,
    TcgGame.MAGIC,
    TcgGame.YUGIOH,
    TcgGame.DRAGONBALL,
    TcgGame.LORCANA,
)

SOURCE_CACHE = "cache"
SOURCE_API = "api"


@dataclass
class SearchResponse:
    cards: list[CardCacheRecord] = field(default_factory=list)
    source: str = SOURCE_API


def to_cache_record(card: CardResult, now: float) -> CardCacheRecord:
    values = asdict(card)
    for key in ("variant", "price_foil", "confidence"):
        values.pop(key)
    return CardCacheRecord(**values, price_updated_at=now)


def search_cards(
    db: DbClient,
    query: str,
    *,
    tcg_game: Optional[TcgGame] = None,
    limit: int = 10,
    api_key: Optional[str] = None,
    cache_ttl_seconds: float = CARD_CACHE_TTL_SECONDS,
    now: Optional[float] = None,
) -> SearchResponse:
    """
    Looks a card name up in the cache, then the public catalogs.

    Fresh cache hits are returned as-is. On a miss the catalogs are queried
    game by game until `limit` cards are found, unpriced cards are priced via
    JustTCG, and everything found is written back to the cache.

    Raises:
        ValidationError: If the trimmed query is shorter than two characters.
    """
    search_query = (query or "").strip()
    if len(search_query) < MIN_QUERY_LENGTH:
        raise ValidationError("Query must be at least 2 characters")
    now = time.time() if now is None else now

    cached = db.search_card_cache(
        search_query,
        tcg_game=tcg_game,
        fresh_after=now - cache_ttl_seconds,
        limit=limit,
    )
    if cached:
        logger.info("Returning %d cached cards for '%s'", len(cached), search_query)
        return SearchResponse(cards=cached, source=SOURCE_CACHE)

    games = (tcg_game,) if tcg_game else DEFAULT_SEARCH_ORDER
    results: list[CardResult] = []
    for game in games:
        found = [
            card
            for card in providers.fetch_cards_for_game(
                search_query, game, api_key=api_key, limit=limit
            )
            if card.external_id and card.card_name
        ]
        for card in found:
            providers.enrich_with_justtcg_price(card, api_key)
        results.extend(found)
        if len(results) >= limit:
            results = results[:limit]
            break

    saved = db.upsert_card_cache(to_cache_record(card, now) for card in results)
    logger.info("Fetched %d cards for '%s' from APIs", len(saved), search_query)
    return SearchResponse(cards=saved, source=SOURCE_API)
