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

import json
import logging
import re
import time
from google import genai
from google.genai import types
from models import api_config
from models import prompts
from typing import Optional

logger = logging.getLogger(__name__)

API_KEY_LOGGING_MESSAGE = "Ran with user-specified API key"
IMAGE_RESPONSE_MAX_OUTPUT_TOKENS = 1500
CROP_RESPONSE_MAX_OUTPUT_TOKENS = 500

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class GeminiInvalidResponseException(Exception):
    pass


def extract_json_object(text: str) -> Optional[dict]:
    """
    Pulls the outermost JSON object out of a free-text model answer.

    Args:
        text (str): The model output, possibly wrapped in prose or code fences.

    Returns:
        Optional[dict]: The parsed object, or None when nothing parses.
    """
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def call_predict_with_image(
    prompt: str,
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
    model: str | None = None,
    api_key: str | None = None,
    max_output_tokens: int = IMAGE_RESPONSE_MAX_OUTPUT_TOKENS,
) -> str:
    """Calls Gemini with a prompt and an image."""
    if not api_key:
        api_key = api_config.DEFAULT_API_KEY
    else:
        logger.info(API_KEY_LOGGING_MESSAGE)

    client = genai.Client(api_key=api_key)

    start_time = time.time()
    truncated_query = (prompt[:200] + "...") if len(prompt) > 200 else prompt
    logger.info("Calling Gemini with image, prompt: '%s'", truncated_query)
    response = client.models.generate_content(
        model=model or api_config.DEFAULT_MODEL,
        contents=[
            prompt,
            types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
        ],
        config=types.GenerateContentConfig(
            temperature=0, max_output_tokens=max_output_tokens
        ),
    )
    logger.info("Gemini image call took: %.2fs", time.time() - start_time)
    if not response.text:
        raise GeminiInvalidResponseException()
    return response.text


def identify_cards_in_image(
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
    game_hint: str | None = None,
    api_key: str | None = None,
) -> tuple[list[dict], Optional[str]]:
    """
    Asks the model which trading cards appear in an image.

    Returns:
        tuple[list[dict], Optional[str]]: The detected cards as raw dicts and
            the model's error message, if any.
    """
    text = call_predict_with_image(
        prompts.make_identify_card_prompt(game_hint),
        image_bytes,
        mime_type=mime_type,
        api_key=api_key,
    )
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("Could not parse identification response: %s", text[:500])
        return [], "Could not parse AI response"
    cards = parsed.get("cards") or []
    return [card for card in cards if isinstance(card, dict)], parsed.get("error")


def detect_card_crop_box(
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
    api_key: str | None = None,
) -> dict:
    """Asks the model where the card sits in the frame, as percentages."""
    text = call_predict_with_image(
        prompts.DETECT_CARD_CROP_PROMPT,
        image_bytes,
        mime_type=mime_type,
        api_key=api_key,
        max_output_tokens=CROP_RESPONSE_MAX_OUTPUT_TOKENS,
    )
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("Failed to parse crop response: %s", text[:500])
        return {"detected": False, "message": "Could not analyze image"}
    return parsed
