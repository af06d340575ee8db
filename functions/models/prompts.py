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

"""Prompts sent to the multimodal model."""

from typing import Optional

SUPPORTED_GAMES_BLOCK = """Supported TCGs:
- pokemon (Pokémon TCG)
- magic (Magic: The Gathering)
- yugioh (Yu-Gi-Oh!)
- onepiece (One Piece Card Game)
- dragonball (Dragon Ball Super Card Game)
- lorcana (Disney Lorcana)
- unionarena (Union Arena)
- marvel (Marvel Non-Sport cards like Skybox, Fleer Ultra, etc.)"""

IDENTIFY_CARD_RESPONSE_FORMAT = """Respond ONLY with valid JSON in this exact format:
{
  "cards": [
    {
      "card_name": "Card Name Here",
      "tcg_game": "pokemon",
      "set_name": "Set Name",
      "card_number": "123/456",
      "rarity": "Rare",
      "variant": "holo"
    }
  ]
}

If no trading card is detected, respond with:
{"cards": [], "error": "No trading card detected in image"}"""


def make_identify_card_prompt(game_hint: Optional[str] = None) -> str:
    """
    Builds the identification prompt, optionally steering towards one game.

    Args:
        game_hint (Optional[str]): A game id the user expects the card to be.

    Returns:
        str: The prompt text.
    """
    hint = ""
    if game_hint:
        hint = (
            f"\nHINT: The user expects this to be a {game_hint} card. "
            "Prioritize this game type in your identification.\n"
        )
    return f"""You are an expert trading card game identifier. Analyze this image and identify the trading card(s) shown.

{SUPPORTED_GAMES_BLOCK}
{hint}
For each card visible in the image, provide:
1. card_name: The exact card name as printed
2. tcg_game: One of the supported game identifiers above
3. set_name: The set/expansion name if visible (e.g., "1992 Skybox Marvel Masterpieces" for Marvel)
4. card_number: The card number/code if visible
5. rarity: The rarity (common, uncommon, rare, ultra rare, secret rare, etc.)
6. variant: If applicable (foil, non-foil, holo, reverse holo, alt-art, enchanted, etc.)

For Marvel Non-Sport cards, look for:
- Year and manufacturer (e.g., "1992 Skybox", "1994 Fleer Ultra")
- Character names
- Set names (Marvel Masterpieces, X-Men, Spider-Man, etc.)

{IDENTIFY_CARD_RESPONSE_FORMAT}"""


DETECT_CARD_CROP_PROMPT = """Analyze this image and detect if there's a trading card game (TCG) card in it.

Supported card types include:
- Pokémon TCG
- One Piece Card Game
- Magic: The Gathering
- Yu-Gi-Oh!
- Dragon Ball Super Card Game / Dragon Ball Z
- Disney Lorcana
- Union Arena
- Sports cards (Baseball, Basketball, Football, etc.)
- Other collectible trading cards

If a card is detected, return the crop coordinates as percentages (0-100) of the image dimensions in this exact JSON format:
{
  "detected": true,
  "cropBox": {
    "x": <left edge percentage>,
    "y": <top edge percentage>,
    "width": <width percentage>,
    "height": <height percentage>
  },
  "confidence": <0-100>,
  "cardType": "<specific type of card detected, e.g. 'Pokémon', 'Magic: The Gathering', 'Yu-Gi-Oh!', 'One Piece', 'Dragon Ball', 'Lorcana', 'Union Arena', 'Sports Card', etc.>"
}

If no card is detected, return:
{
  "detected": false,
  "message": "No trading card detected in image"
}

Only respond with valid JSON, no other text."""
