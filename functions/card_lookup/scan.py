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
OCR-driven scan of a single card photo.

The photo is read with Cloud Vision, the text is matched against One Piece
and Pokémon layout rules, and the resulting identifier is priced through
JustTCG. Results are cached per (game, identifier) for a day.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from dataclasses import asdict, dataclass
from typing import Optional

import requests

from card_lookup import providers
from collector.db import DbClient
from collector.records import ScanCacheRecord
from shared.types import ScanCandidate, ScanPrices, ScanResult, TcgGame

logger = logging.getLogger(__name__)

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
SCAN_CACHE_TTL_SECONDS = 24 * 60 * 60
MAX_CANDIDATES = 5
JUSTTCG_SCAN_LIMIT = 5

GAME_ONE_PIECE = "one_piece"
GAME_POKEMON = "pokemon"

ONE_PIECE_CODE_RE = re.compile(r"\b(OP|EB|ST)\d{2}-\d{3}\b", re.IGNORECASE)
POKEMON_SIGNALS = (
    "pokémon",
    "pokemon",
    "basic",
    "trainer",
    "stage 1",
    "stage 2",
    "vmax",
    "vstar",
    "ex",
    "gx",
    "v-union",
)
HP_RE = re.compile(r"\b\d{2,3}\s*hp\b", re.IGNORECASE)
COLLECTOR_NUMBER_PATTERNS = (
    re.compile(r"\b(\d{1,3})/(\d{1,3})\b"),
    re.compile(r"\b([A-Z]{1,3}\d{1,3})/([A-Z]{1,3}\d{1,3})\b"),
    re.compile(r"\b(\d{1,3})/([A-Z]+\d{1,3})\b"),
)
NOT_FOUND_MESSAGE = "Card not found. The card may be new or not yet in the database."
NO_CARD_MESSAGE = "No trading card detected. Try a clearer photo of the card."

_SCAN_GAMES = {
    GAME_ONE_PIECE: TcgGame.ONEPIECE,
    GAME_POKEMON: TcgGame.POKEMON,
}


class ScanError(Exception):
    """OCR or price lookup could not be completed."""


@dataclass
class OcrReading:
    full_text: str
    game: Optional[str] = None
    identifier: Optional[str] = None
    card_name: Optional[str] = None
    collector_number: Optional[str] = None
    confidence: float = 0.0


def _slug(text: str) -> str:
    return re.sub(r"\s+", "_", text.lower())


def _pokemon_name(lines: list[str]) -> Optional[str]:
    for line in lines[:5]:
        candidate = line.strip()
        lowered = candidate.lower()
        if (
            len(candidate) > 2
            and not candidate.isdigit()
            and not re.fullmatch(r"\d+\s*hp", candidate, re.IGNORECASE)
            and "basic" not in lowered
            and "stage" not in lowered
        ):
            return candidate
    return None


def parse_ocr_text(full_text: str) -> OcrReading:
    """
    Classifies OCR output and derives a cache identifier.

    One Piece card codes win outright. Otherwise any Pokémon keyword or HP
    marker makes it a Pokémon card, identified by name and collector number.
    """
    reading = OcrReading(full_text=full_text)

    code = ONE_PIECE_CODE_RE.search(full_text)
    if code:
        reading.game = GAME_ONE_PIECE
        reading.identifier = code.group(0).upper()
        reading.collector_number = reading.identifier
        reading.confidence = 0.95
        return reading

    lowered = full_text.lower()
    if not any(signal in lowered for signal in POKEMON_SIGNALS) and not HP_RE.search(full_text):
        return reading

    reading.game = GAME_POKEMON
    for pattern in COLLECTOR_NUMBER_PATTERNS:
        match = pattern.search(full_text)
        if match:
            reading.collector_number = match.group(0)
            break

    lines = [line for line in full_text.split("\n") if line.strip()]
    reading.card_name = _pokemon_name(lines)

    if reading.card_name and reading.collector_number:
        reading.identifier = (
            f"{_slug(reading.card_name)}_{reading.collector_number.replace('/', '-', 1)}"
        )
        reading.confidence = 0.85
    elif reading.card_name:
        reading.identifier = _slug(reading.card_name)
        reading.confidence = 0.7
    elif reading.collector_number:
        reading.identifier = reading.collector_number.replace("/", "-", 1)
        reading.confidence = 0.6
    return reading


def perform_ocr(
    image_bytes: bytes, api_key: Optional[str], timeout: float = providers.REQUEST_TIMEOUT
) -> str:
    """Runs Cloud Vision document text detection and returns the full text."""
    if not api_key:
        raise ScanError("Google Vision API key not configured")
    body = {
        "requests": [
            {
                "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
            }
        ]
    }
    try:
        response = requests.post(
            VISION_ENDPOINT, params={"key": api_key}, json=body, timeout=timeout
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error("Google Vision API error: %s", e)
        raise ScanError("Google Vision API request failed") from e
    try:
        payload = response.json()
    except ValueError as e:
        logger.error("Google Vision API returned a non-JSON body")
        raise ScanError("Google Vision API returned an unreadable response") from e
    if not isinstance(payload, dict):
        raise ScanError("Google Vision API returned an unreadable response")
    responses = payload.get("responses") or [{}]
    return (responses[0].get("fullTextAnnotation") or {}).get("text", "")


def _candidate(card: dict) -> ScanCandidate:
    card_set = card.get("set") if isinstance(card.get("set"), dict) else {}
    return ScanCandidate(
        card_name=card.get("name"),
        set_name=card_set.get("name") or card.get("setName"),
        number=card.get("card_id") or card.get("number") or card.get("collector_number"),
        image_url=providers.first_image(card),
        prices=providers.price_spread(card.get("variants")),
    )


def lookup_candidates(
    reading: OcrReading, api_key: Optional[str]
) -> tuple[list[ScanCandidate], Optional[ScanCandidate]]:
    """Prices a reading via JustTCG and picks the best match."""
    query = reading.identifier
    if reading.game == GAME_POKEMON and reading.card_name:
        query = reading.card_name
    raw = providers.fetch_justtcg_raw(
        query, _SCAN_GAMES[reading.game], api_key, limit=JUSTTCG_SCAN_LIMIT
    )
    candidates = [_candidate(card) for card in raw]
    if not candidates:
        return [], None
    best = candidates[0]
    if reading.game == GAME_ONE_PIECE:
        for candidate in candidates:
            if (candidate.number or "").upper() == reading.identifier.upper():
                best = candidate
                break
    return candidates, best


def _result_from_cache(entry: ScanCacheRecord) -> ScanResult:
    payload = dict(entry.result)
    prices = ScanPrices(**(payload.pop("prices", None) or {}))
    candidates = [
        ScanCandidate(
            **{**candidate, "prices": ScanPrices(**(candidate.get("prices") or {}))}
        )
        for candidate in payload.pop("candidates", None) or []
    ]
    payload["source"] = "cache"
    return ScanResult(**payload, prices=prices, candidates=candidates)


def scan_card(
    db: DbClient,
    image_bytes: bytes,
    *,
    vision_api_key: Optional[str],
    justtcg_api_key: Optional[str],
    now: Optional[float] = None,
) -> ScanResult:
    now = time.time() if now is None else now
    full_text = perform_ocr(image_bytes, vision_api_key)
    reading = parse_ocr_text(full_text)
    if not reading.game or not reading.identifier:
        logger.info("No TCG card detected in OCR text")
        return ScanResult(error=NO_CARD_MESSAGE)

    cached = db.get_scan_cache(reading.game, reading.identifier, now)
    if cached is not None:
        logger.info("Scan cache hit for %s:%s", reading.game, reading.identifier)
        return _result_from_cache(cached)

    candidates, best = lookup_candidates(reading, justtcg_api_key)
    if best is None:
        return ScanResult(
            game=reading.game,
            card_name=reading.card_name,
            number=reading.identifier,
            confidence=reading.confidence,
            error=NOT_FOUND_MESSAGE,
        )

    result = ScanResult(
        game=reading.game,
        card_name=best.card_name,
        set_name=best.set_name,
        number=best.number,
        image_url=best.image_url,
        prices=best.prices,
        confidence=reading.confidence,
        candidates=candidates[:MAX_CANDIDATES] if len(candidates) > 1 else [],
    )
    db.save_scan_cache(
        ScanCacheRecord(
            game=reading.game,
            identifier=reading.identifier,
            result=asdict(result),
            raw_ocr_text=full_text,
            expires_at=now + SCAN_CACHE_TTL_SECONDS,
            created_at=now,
        )
    )
    return result
