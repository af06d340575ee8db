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

"""
HTTP clients for the public card catalogs and the JustTCG price API.

Every provider is best effort: request failures and unexpected payloads are
logged and reported as "no results" so that one slow catalog never breaks a
search.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import requests

from shared.types import CardResult, ScanPrices, TcgGame

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds
PROVIDER_RESULT_LIMIT = 15

TCGDEX_BASE = "https://api.tcgdex.net/v2/en"
SCRYFALL_BASE = "https://api.scryfall.com"
YGOPRODECK_BASE = "https://db.ygoprodeck.com/api/v7"
LORCAST_BASE = "https://api.lorcast.com/v0"
TCGCODEX_BASE = "https://api.tcgcodex.com/api"
JUSTTCG_BASE = "https://api.justtcg.com/v1"

JUSTTCG_GAME_SLUGS = {
    TcgGame.POKEMON: "pokemon",
    TcgGame.MAGIC: "magic-the-gathering",
    TcgGame.YUGIOH: "yugioh",
    TcgGame.ONEPIECE: "one-piece-card-game",
    TcgGame.DRAGONBALL: "dragon-ball-super-fusion-world",
    TcgGame.LORCANA: "disney-lorcana",
    TcgGame.UNIONARENA: "union-arena",
    TcgGame.MARVEL: "marvel",
}


def _get_json(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> Optional[Any]:
    try:
        response = requests.get(url, params=params, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("Request to %s failed: %s", url, e)
        return None
    if not response.ok:
        logger.warning("%s returned HTTP %s", url, response.status_code)
        return None
    try:
        return response.json()
    except ValueError:
        logger.warning("%s returned a non-JSON body", url)
        return None


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _card_list(payload: Any) -> list:
    """Catalogs wrap results as `data`, `results`, or return a bare list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "results"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def first_image(card: dict) -> Optional[str]:
    images = card.get("images") or {}
    return (
        card.get("image_url")
        or card.get("image")
        or images.get("large")
        or images.get("small")
    )


def variant_prices(variants: Iterable[dict]) -> list[float]:
    prices = []
    for variant in variants or []:
        price = variant.get("price") if isinstance(variant, dict) else None
        if isinstance(price, (int, float)) and price > 0:
            prices.append(float(price))
    return prices


def highest_variant_price(variants: Iterable[dict]) -> Optional[float]:
    prices = variant_prices(variants)
    return max(prices) if prices else None


def price_spread(variants: Iterable[dict]) -> ScanPrices:
    """Low, mean and high across a card's priced variants."""
    prices = variant_prices(variants)
    if not prices:
        return ScanPrices()
    return ScanPrices(
        low=min(prices),
        market=sum(prices) / len(prices),
        high=max(prices),
    )


def fetch_pokemon_cards(
    name: str, limit: int = PROVIDER_RESULT_LIMIT, timeout: float = REQUEST_TIMEOUT
) -> list[CardResult]:
    """TCGdex: name search followed by one detail call per card."""
    summaries = _get_json(f"{TCGDEX_BASE}/cards", params={"name": name}, timeout=timeout)
    if not isinstance(summaries, list):
        return []
    results = []
    for summary in summaries[:limit]:
        card_id = summary.get("id")
        if not card_id:
            continue
        detail = _get_json(f"{TCGDEX_BASE}/cards/{card_id}", timeout=timeout)
        if not isinstance(detail, dict):
            continue
        image = detail.get("image")
        card_set = detail.get("set") or {}
        results.append(
            CardResult(
                external_id=detail.get("id") or card_id,
                tcg_game=TcgGame.POKEMON,
                card_name=detail.get("name") or summary.get("name"),
                set_name=card_set.get("name"),
                set_code=card_set.get("id"),
                card_number=detail.get("localId"),
                rarity=detail.get("rarity"),
                image_url=f"{image}/high.webp" if image else None,
                image_url_small=f"{image}/low.webp" if image else None,
                confidence=0.9,
            )
        )
    return results


def _scryfall_card(card: dict) -> CardResult:
    prices = card.get("prices") or {}
    image_uris = card.get("image_uris") or {}
    faces = card.get("card_faces") or [{}]
    face_images = faces[0].get("image_uris") or {}
    usd = _as_float(prices.get("usd"))
    return CardResult(
        external_id=card.get("id") or card.get("name"),
        tcg_game=TcgGame.MAGIC,
        card_name=card.get("name"),
        set_name=card.get("set_name"),
        set_code=(card.get("set") or "").upper() or None,
        card_number=card.get("collector_number"),
        rarity=card.get("rarity"),
        variant="foil" if card.get("foil") else "non-foil",
        image_url=image_uris.get("large") or image_uris.get("normal") or face_images.get("large"),
        image_url_small=image_uris.get("small") or face_images.get("small"),
        price_market=usd,
        price_foil=_as_float(prices.get("usd_foil")),
        price_source="scryfall" if usd is not None else None,
        confidence=0.95,
    )


def fetch_magic_cards(
    name: str, limit: int = PROVIDER_RESULT_LIMIT, timeout: float = REQUEST_TIMEOUT
) -> list[CardResult]:
    """Scryfall: fuzzy single-card match, falling back to a full search."""
    payload = _get_json(
        f"{SCRYFALL_BASE}/cards/named", params={"fuzzy": name}, timeout=timeout
    )
    if payload is None:
        payload = _get_json(
            f"{SCRYFALL_BASE}/cards/search",
            params={"q": name, "order": "released"},
            timeout=timeout,
        )
    if payload is None:
        return []
    cards = payload.get("data") if isinstance(payload, dict) and "data" in payload else [payload]
    return [_scryfall_card(card) for card in cards[:limit] if isinstance(card, dict)]


def fetch_magic_price(
    name: str, set_code: Optional[str] = None, timeout: float = REQUEST_TIMEOUT
) -> tuple[Optional[float], Optional[str]]:
    """Exact-name Scryfall lookup, optionally pinned to a set."""
    params = {"exact": name}
    if set_code:
        params["set"] = set_code
    card = _get_json(f"{SCRYFALL_BASE}/cards/named", params=params, timeout=timeout)
    if not isinstance(card, dict):
        return None, None
    result = _scryfall_card(card)
    return result.price_market, result.image_url


def _ygo_card(card: dict) -> CardResult:
    prices = (card.get("card_prices") or [{}])[0]
    images = (card.get("card_images") or [{}])[0]
    first_set = (card.get("card_sets") or [{}])[0]
    price = _as_float(prices.get("tcgplayer_price"))
    return CardResult(
        external_id=str(card.get("id") or card.get("name")),
        tcg_game=TcgGame.YUGIOH,
        card_name=card.get("name"),
        set_name=first_set.get("set_name"),
        set_code=first_set.get("set_code"),
        card_number=first_set.get("set_code") or (str(card["id"]) if card.get("id") else None),
        rarity=first_set.get("set_rarity"),
        variant="standard",
        image_url=images.get("image_url") or images.get("image_url_cropped"),
        image_url_small=images.get("image_url_small"),
        price_market=price,
        price_source="tcgplayer" if price is not None else None,
        confidence=0.95,
    )


def fetch_yugioh_cards(
    name: str,
    limit: int = PROVIDER_RESULT_LIMIT,
    timeout: float = REQUEST_TIMEOUT,
    exact: bool = False,
) -> list[CardResult]:
    """YGOProDeck: partial name search, or exact with `exact=True`."""
    params = {"name": name} if exact else {"fname": name}
    payload = _get_json(f"{YGOPRODECK_BASE}/cardinfo.php", params=params, timeout=timeout)
    return [_ygo_card(card) for card in _card_list(payload)[:limit]]


def fetch_lorcana_cards(
    name: str, limit: int = PROVIDER_RESULT_LIMIT, timeout: float = REQUEST_TIMEOUT
) -> list[CardResult]:
    payload = _get_json(f"{LORCAST_BASE}/cards/search", params={"q": name}, timeout=timeout)
    results = []
    for card in _card_list(payload)[:limit]:
        prices = card.get("prices") or {}
        card_set = card.get("set") or {}
        digital = (card.get("image_uris") or {}).get("digital") or {}
        usd = _as_float(prices.get("usd"))
        results.append(
            CardResult(
                external_id=card.get("id") or card.get("name"),
                tcg_game=TcgGame.LORCANA,
                card_name=card.get("name") or card.get("full_name"),
                set_name=card_set.get("name") or card.get("set_name"),
                set_code=card_set.get("code"),
                card_number=card.get("collector_number") or card.get("number"),
                rarity=card.get("rarity"),
                variant="enchanted" if card.get("foil") else "standard",
                image_url=digital.get("large") or card.get("image_url") or card.get("image"),
                image_url_small=digital.get("small"),
                price_market=usd,
                price_foil=_as_float(prices.get("usd_foil")),
                price_source="lorcast" if usd is not None else None,
                confidence=0.9,
            )
        )
    return results


def fetch_onepiece_catalog(
    name: str, limit: int = PROVIDER_RESULT_LIMIT, timeout: float = REQUEST_TIMEOUT
) -> list[CardResult]:
    """TCG Codex catalog entries; carries no prices."""
    payload = _get_json(
        f"{TCGCODEX_BASE}/cards",
        params={"name": name, "game": "onepiece"},
        timeout=timeout,
    )
    results = []
    for card in _card_list(payload)[:limit]:
        card_set = card.get("set") or {}
        results.append(
            CardResult(
                external_id=card.get("id") or card.get("code") or f"op-{card.get('name')}",
                tcg_game=TcgGame.ONEPIECE,
                card_name=card.get("name"),
                set_name=card_set.get("name") or card.get("setName"),
                set_code=card_set.get("code") or card.get("setCode"),
                card_number=card.get("number") or card.get("code"),
                rarity=card.get("rarity"),
                image_url=card.get("imageUrl") or card.get("image"),
                image_url_small=card.get("thumbnailUrl") or card.get("image"),
                confidence=0.9,
            )
        )
    return results


def fetch_justtcg_raw(
    query: str,
    game: TcgGame,
    api_key: Optional[str],
    limit: int = PROVIDER_RESULT_LIMIT,
    timeout: float = REQUEST_TIMEOUT,
) -> list[dict]:
    """Raw JustTCG card payloads; empty without an API key."""
    if not api_key:
        logger.info("JustTCG API key not configured, skipping lookup for %s", game)
        return []
    payload = _get_json(
        f"{JUSTTCG_BASE}/cards",
        params={"game": JUSTTCG_GAME_SLUGS[game], "q": query, "limit": limit},
        headers={"x-api-key": api_key, "Content-Type": "application/json"},
        timeout=timeout,
    )
    return [card for card in _card_list(payload) if isinstance(card, dict)]


def fetch_justtcg_cards(
    query: str,
    game: TcgGame,
    api_key: Optional[str],
    limit: int = PROVIDER_RESULT_LIMIT,
    timeout: float = REQUEST_TIMEOUT,
) -> list[CardResult]:
    results = []
    for card in fetch_justtcg_raw(query, game, api_key, limit=limit, timeout=timeout):
        card_set = card.get("set") if isinstance(card.get("set"), dict) else {}
        spread = price_spread(card.get("variants"))
        market = highest_variant_price(card.get("variants"))
        results.append(
            CardResult(
                external_id=str(card.get("id") or card.get("card_id") or card.get("name")),
                tcg_game=game,
                card_name=card.get("name"),
                set_name=card_set.get("name") or card.get("setName"),
                set_code=card_set.get("id") or card.get("setCode"),
                card_number=card.get("card_id") or card.get("number") or card.get("collector_number"),
                rarity=card.get("rarity"),
                variant="standard",
                image_url=first_image(card),
                price_low=spread.low,
                price_high=spread.high,
                price_market=market,
                price_source="justtcg" if market is not None else None,
                confidence=0.95,
            )
        )
    return results


def marvel_stub(name: str, set_name: Optional[str] = None) -> CardResult:
    """Marvel non-sport cards have no public catalog; return a priceable stub."""
    year = None
    if set_name:
        for token in set_name.split():
            if len(token) == 4 and token.isdigit():
                year = token
                break
    return CardResult(
        external_id=f"marvel-{name.lower().replace(' ', '-')}",
        tcg_game=TcgGame.MARVEL,
        card_name=name,
        set_name=set_name or "Marvel Non-Sport",
        set_code=year,
        rarity="base",
        variant="standard",
        confidence=0.7,
    )


def enrich_with_justtcg_price(
    card: CardResult, api_key: Optional[str], timeout: float = REQUEST_TIMEOUT
) -> CardResult:
    """Fills in a market price from JustTCG when the catalog had none."""
    if card.has_price:
        return card
    matches = fetch_justtcg_cards(card.card_name, card.tcg_game, api_key, limit=1, timeout=timeout)
    if matches and matches[0].price_market is not None:
        card.price_low = matches[0].price_low
        card.price_high = matches[0].price_high
        card.price_market = matches[0].price_market
        card.price_source = "justtcg"
    return card


def fetch_cards_for_game(
    name: str,
    game: TcgGame,
    *,
    api_key: Optional[str] = None,
    limit: int = PROVIDER_RESULT_LIMIT,
    set_name: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> list[CardResult]:
    """Routes a name lookup to the catalog that covers `game`."""
    if game == TcgGame.POKEMON:
        return fetch_pokemon_cards(name, limit=limit, timeout=timeout)
    if game == TcgGame.MAGIC:
        return fetch_magic_cards(name, limit=limit, timeout=timeout)
    if game == TcgGame.YUGIOH:
        return fetch_yugioh_cards(name, limit=limit, timeout=timeout)
    if game == TcgGame.LORCANA:
        return fetch_lorcana_cards(name, limit=limit, timeout=timeout)
    if game == TcgGame.ONEPIECE:
        catalog = fetch_onepiece_catalog(name, limit=limit, timeout=timeout)
        if catalog:
            return catalog
        return fetch_justtcg_cards(name, game, api_key, limit=limit, timeout=timeout)
    if game == TcgGame.MARVEL:
        return [marvel_stub(name, set_name)]
    return fetch_justtcg_cards(name, game, api_key, limit=limit, timeout=timeout)
