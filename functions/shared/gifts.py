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

"""Gift mascot catalog and revenue split."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Optional

CREDITS_PER_DOLLAR = 100
RECIPIENT_SHARE = 0.5


class GiftType(StrEnum):
    SPARK_HAMSTER = "spark_hamster"
    PIRATE_PANDA = "pirate_panda"
    WIZARD_OWL = "wizard_owl"
    MAGMA_MOLE = "magma_mole"
    GHOST_CAT = "ghost_cat"
    MECHA_PUP = "mecha_pup"


class GiftTier(StrEnum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


@dataclass(frozen=True)
class GiftMascot:
    id: GiftType
    name: str
    element: str
    emoji: str
    credit_cost: int
    tier: GiftTier


@dataclass(frozen=True)
class GiftSplit:
    recipient_earned: float
    platform_revenue: float


GIFT_MASCOTS = (
    GiftMascot(GiftType.SPARK_HAMSTER, "Spark-Hamster", "Lightning", "⚡🐹", 10, GiftTier.BRONZE),
    GiftMascot(GiftType.PIRATE_PANDA, "Pirate-Panda", "Water", "🏴‍☠️🐼", 25, GiftTier.BRONZE),
    GiftMascot(GiftType.WIZARD_OWL, "Wizard-Owl", "Magic", "🧙🦉", 50, GiftTier.SILVER),
    GiftMascot(GiftType.MAGMA_MOLE, "Magma-Mole", "Fire", "🔥🐀", 100, GiftTier.SILVER),
    GiftMascot(GiftType.GHOST_CAT, "Ghost-Cat", "Spirit", "👻🐱", 250, GiftTier.GOLD),
    GiftMascot(GiftType.MECHA_PUP, "Mecha-Pup", "Tech", "🤖🐕", 500, GiftTier.GOLD),
)


def get_gift(gift_type: str) -> Optional[GiftMascot]:
    for gift in GIFT_MASCOTS:
        if gift.id == gift_type:
            return gift
    return None


def calculate_gift_split(credit_cost: int) -> GiftSplit:
    """
    Splits the dollar value of a gift between the recipient and the platform.

    Args:
        credit_cost (int): The gift price in credits (100 credits = $1).

    Returns:
        GiftSplit: Dollar amounts earned by each side.
    """
    dollar_value = credit_cost / CREDITS_PER_DOLLAR
    recipient_earned = round(dollar_value * RECIPIENT_SHARE, 2)
    return GiftSplit(
        recipient_earned=recipient_earned,
        platform_revenue=round(dollar_value - recipient_earned, 2),
    )
