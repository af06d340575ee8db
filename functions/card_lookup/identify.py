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

"""Vision-model card identification enriched with catalog data."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from card_lookup import providers
from models import gemini
from shared.types import CardResult, TcgGame

logger = logging.getLogger(__name__)

AI_FALLBACK_CONFIDENCE = 0.5


@dataclass
class IdentifyResponse:
    success: bool
    cards: list[CardResult] = field(default_factory=list)
    error: Optional[str] = None


def _parse_game(value) -> Optional[TcgGame]:
    try:
        return TcgGame(str(value).lower())
    except ValueError:
        return None


def enrich_detected_card(
    detected: dict, api_key: Optional[str] = None
) -> list[CardResult]:
    """
    Resolves one model-detected card against the catalog for its game.

    When the catalog has nothing, the model's own reading is kept with a
    lowered confidence so the user can still confirm it.
    """
    name = (detected.get("card_name") or "").strip()
    game = _parse_game(detected.get("tcg_game"))
    if not name or game is None:
        return []

    results = providers.fetch_cards_for_game(
        name, game, api_key=api_key, set_name=detected.get("set_name")
    )
    if game == TcgGame.POKEMON:
        for result in results:
            providers.enrich_with_justtcg_price(result, api_key)

    if not results:
        return [
            CardResult(
                external_id=f"{game.value}-{name.lower().replace(' ', '-')}",
                tcg_game=game,
                card_name=name,
                set_name=detected.get("set_name"),
                card_number=detected.get("card_number"),
                rarity=detected.get("rarity"),
                variant=detected.get("variant"),
                confidence=AI_FALLBACK_CONFIDENCE,
            )
        ]
    for result in results:
        result.set_name = result.set_name or detected.get("set_name")
        result.rarity = result.rarity or detected.get("rarity")
        result.variant = result.variant or detected.get("variant")
    return results


def identify_card(
    image_bytes: bytes,
    *,
    mime_type: str = "image/jpeg",
    game_hint: Optional[TcgGame] = None,
    api_key: Optional[str] = None,
    gemini_api_key: Optional[str] = None,
) -> IdentifyResponse:
    detected, error = gemini.identify_cards_in_image(
        image_bytes,
        mime_type=mime_type,
        game_hint=game_hint.value if game_hint else None,
        api_key=gemini_api_key,
    )
    if not detected:
        return IdentifyResponse(success=False, error=error or "No card detected in image")

    logger.info("Model identified %d cards, enriching with catalogs", len(detected))
    cards: list[CardResult] = []
    for card in detected:
        cards.extend(enrich_detected_card(card, api_key))
    return IdentifyResponse(success=bool(cards), cards=cards, error=None if cards else error)
