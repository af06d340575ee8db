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

"""Templates for notifications delivered to the direct-message inbox."""

from shared.types import OrderStatus

SYSTEM_PREFIX = "[SYSTEM] "
SYSTEM_SENDER_NAME = "CollectingTCG"

ORDER_STATUS_MESSAGES = {
    OrderStatus.PENDING_PAYMENT: "Order marked as pending payment",
    OrderStatus.PAID: "Order marked as paid",
    OrderStatus.SHIPPED: "Order marked as shipped",
    OrderStatus.DELIVERED: "Order marked as delivered",
    OrderStatus.CANCELLED: "Order cancelled",
    OrderStatus.REFUNDED: "Order refunded",
}


def format_price(amount: float) -> str:
    return f"${amount:.2f}"


def as_system_message(content: str) -> str:
    return f"{SYSTEM_PREFIX}{content}"


def is_system_message(content: str) -> bool:
    return content.startswith(SYSTEM_PREFIX.strip())


def strip_system_prefix(content: str) -> str:
    if content.startswith(SYSTEM_PREFIX):
        return content[len(SYSTEM_PREFIX):]
    return content


def new_offer_message(card_name: str, amount: float, buyer_name: str) -> str:
    return (
        f"💰 New offer! {buyer_name} offered {format_price(amount)} for "
        f'"{card_name}". Check Marketplace to accept, decline, or counter.'
    )


def counter_offer_message(card_name: str, amount: float, seller_name: str) -> str:
    return (
        f"🔄 {seller_name} has made a counter-offer of {format_price(amount)} for "
        f'"{card_name}". View the offer in Marketplace to respond.'
    )


def purchase_message(card_name: str, amount: float, buyer_name: str) -> str:
    return (
        f'🎉 Congratulations! Your listing "{card_name}" has been purchased by '
        f"{buyer_name} for {format_price(amount)}. Please check your orders to "
        "arrange shipping."
    )


def offer_accepted_message(card_name: str, amount: float, seller_name: str) -> str:
    return (
        f'✅ {seller_name} accepted your offer of {format_price(amount)} for "{card_name}". '
        "Check your orders to arrange payment."
    )


def offer_declined_message(card_name: str, amount: float, actor_name: str) -> str:
    return (
        f'❌ {actor_name} declined the offer of {format_price(amount)} for "{card_name}".'
    )


def offer_withdrawn_message(card_name: str, amount: float, actor_name: str) -> str:
    return (
        f'↩️ {actor_name} withdrew the offer of {format_price(amount)} for "{card_name}".'
    )


def order_status_message(card_name: str, status: OrderStatus) -> str:
    return f'📦 {ORDER_STATUS_MESSAGES[status]} for "{card_name}".'
