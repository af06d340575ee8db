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
Card photo cropping.

Crop boxes are expressed as percentages of the source image so that they
survive the client rescaling the preview. At apply time the box is mapped to
pixels, the card is cut out, and the result is re-encoded as a compact JPEG.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from models import gemini

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 1200
DEFAULT_JPEG_QUALITY = 70


@dataclass
class CropBox:
    """Percentages (0-100) of the image width and height."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, payload: dict) -> "CropBox":
        return cls(
            x=float(payload.get("x", 0)),
            y=float(payload.get("y", 0)),
            width=float(payload.get("width", 100)),
            height=float(payload.get("height", 100)),
        )


@dataclass
class CropDetection:
    detected: bool
    crop_box: Optional[CropBox] = None
    confidence: Optional[float] = None
    card_type: Optional[str] = None
    message: Optional[str] = None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def crop_box_to_pixels(box: CropBox, image_width: int, image_height: int) -> tuple[int, int, int, int]:
    """
    Maps a percentage box onto a pixel rectangle (left, top, right, bottom).

    Coordinates are rounded and clamped to the image; the rectangle is always
    at least one pixel in each direction.
    """
    left = _clamp(round(box.x / 100 * image_width), 0, image_width - 1)
    top = _clamp(round(box.y / 100 * image_height), 0, image_height - 1)
    width = _clamp(round(box.width / 100 * image_width), 1, image_width - left)
    height = _clamp(round(box.height / 100 * image_height), 1, image_height - top)
    return left, top, left + width, top + height


def compress(image: Image.Image, max_width: int = DEFAULT_MAX_WIDTH, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    if image.width > max_width:
        height = round(image.height * max_width / image.width)
        image = image.resize((max_width, max(1, height)), Image.LANCZOS)
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def apply_crop(
    image_bytes: bytes,
    box: CropBox,
    *,
    max_width: int = DEFAULT_MAX_WIDTH,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> bytes:
    """Cuts `box` out of the encoded image and returns JPEG bytes."""
    with Image.open(io.BytesIO(image_bytes)) as source:
        source.load()
        rect = crop_box_to_pixels(box, source.width, source.height)
        cropped = source.crop(rect)
    return compress(cropped, max_width=max_width, quality=quality)


def detect_card_crop(
    image_bytes: bytes, mime_type: str = "image/jpeg", api_key: Optional[str] = None
) -> CropDetection:
    payload = gemini.detect_card_crop_box(image_bytes, mime_type=mime_type, api_key=api_key)
    if not payload.get("detected"):
        return CropDetection(
            detected=False,
            message=payload.get("message") or "No trading card detected in image",
        )
    raw_box = payload.get("cropBox")
    if not isinstance(raw_box, dict):
        logger.warning("Crop response flagged a card without a cropBox")
        return CropDetection(detected=False, message="Could not analyze image")
    try:
        box = CropBox.from_dict(raw_box)
    except (TypeError, ValueError):
        return CropDetection(detected=False, message="Could not analyze image")
    return CropDetection(
        detected=True,
        crop_box=box,
        confidence=payload.get("confidence"),
        card_type=payload.get("cardType"),
    )
