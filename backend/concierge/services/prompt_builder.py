"""System instruction and greeting generation for the concierge."""

from __future__ import annotations

import random
from datetime import datetime
from typing import List, Optional, Sequence

from ..models import CartLine, CatalogItem, Order, SessionSnapshot, UserProfile


LOW_STOCK_DIRECTIVE = "LOW STOCK: only {stock} left, tell the guest it is selling fast"
ANONYMOUS_USER_CONTEXT = "Guest identity: anonymous visitor (not signed in)"
EMPTY_CART_CONTEXT = "The cart is empty."
NO_ORDERS_CONTEXT = "No recent orders (possibly a new customer)."

DEFAULT_ORIGIN = "globally sourced"
DEFAULT_COOKING = "steam it or serve it as sashimi to keep the natural flavour"
DEFAULT_NUTRITION = "rich in high-quality protein and trace minerals"
DEFAULT_GUEST_NAME = "honoured guest"

MEMBER_TIERS = {
    "black_gold": "Black Gold member",
    "diamond": "Diamond member",
}

OUTPUT_CONTRACT = (
    "STRICT RULE - PRODUCT RECOMMENDATIONS:\n"
    "If your reply clearly recommends specific products that exist in the store catalogue, "
    "append exactly one JSON block at the very end of your reply, formatted strictly as:\n"
    "```json\n"
    '{ "recommendedProductIds": ["id1", "id2"] }\n'
    "```\n"
    "For ordinary conversation, never output this JSON block."
)

PERSONA = (
    'You are "Wei Lai", the senior private seafood butler of Wei Lai Seafood, and a seasoned '
    "chef who loves good food and reads people well.\n"
    "Your goal: talk like an old friend, solve the guest's cooking and shopping questions, "
    "offer warmth, and guide them naturally towards a purchase.\n\n"
    "PERSONA & TONE:\n"
    "1. Be human. Never sound like a system; avoid phrases like 'query results' or 'the system'.\n"
    "2. Be a friend. Speak warmly and use the occasional emoji (🐟, 🦀, ✨, 🥂, 👨‍🍳).\n"
    "3. Know your craft. Show genuine admiration for the produce.\n\n"
    "CONVERSATION STRATEGY:\n"
    "1. Ask about the occasion: is this a treat for themselves or a family banquet?\n"
    "2. If the guest finds it pricey, talk about quality and experience.\n"
    "3. If the guest worries about cooking, reassure them with a simple method."
)


def seasonal_context(now: datetime) -> str:
    """Return the festival hint for ``now``, or an empty string outside any window."""
    month, day = now.month, now.day
    if month in (1, 2):
        return (
            "Spring Festival and the Lantern Festival are near: feature auspicious banquet centrepieces "
            "(king crab, abalone) and premium gift boxes; speak of reunion and celebration."
        )
    if month == 5 and 15 < day < 21:
        return (
            "It is close to 520 (the May 20 sweethearts' day): suggest romantic candle-lit dinner "
            "ingredients such as scallops, salmon and steak; stress the sense of occasion."
        )
    if month in (9, 10):
        return "Golden autumn is crab season: feature crabs and prawns, stress plump and in-season."
    if now.weekday() == 4:
        return (
            "It is Friday: the guest may want to unwind this weekend; suggest sashimi that pairs "
            "with wine or an easy seafood hotpot."
        )
    return ""


def time_of_day_context(now: datetime) -> str:
    """Return the hint for the current hour; every hour maps to exactly one hint."""
    hour = now.hour
    if 5 <= hour < 10:
        return "It is early morning: be bright and energetic; suggest a nourishing breakfast (cod congee, shrimp custard)."
    if 10 <= hour < 14:
        return "It is lunchtime: keep it light; suggest quick, simple dishes for lunch."
    if 14 <= hour < 17:
        return "It is the afternoon: the guest may be planning dinner; suggest tonight's centrepiece and remind them to thaw it early."
    if 17 <= hour < 21:
        return "It is the evening: warm family-dinner mood; suggest sharing platters and dishes that go with drinks."
    return "It is late at night: cosy snacking mood; suggest light sashimi or small seafood bites, nothing greasy."


def ambient_context(now: datetime) -> str:
    return " ".join(part for part in (seasonal_context(now), time_of_day_context(now)) if part)


def format_catalog_item(item: CatalogItem, low_stock_threshold: int) -> str:
    stock_line = f"- Stock: {item.stock}"
    if item.stock < low_stock_threshold:
        stock_line += f" ({LOW_STOCK_DIRECTIVE.format(stock=item.stock)})"
    lines = [
        f"[Product ID: {item.id}]",
        f"- Name: {item.name}",
        f"- Price: ¥{item.price:g} / {item.unit}",
        stock_line,
        f"- Origin: {item.origin or DEFAULT_ORIGIN}",
        f"- Description: {item.description}",
        f"- Suggested preparation: {item.cooking_method or DEFAULT_COOKING}",
        f"- Nutrition: {item.nutrition or DEFAULT_NUTRITION}",
        f"- Tags: {', '.join(item.tags)}",
    ]
    return "\n".join(lines)


def user_context(user: Optional[UserProfile]) -> str:
    if user is None:
        return ANONYMOUS_USER_CONTEXT
    tier = MEMBER_TIERS.get(user.level, "member")
    return f"Guest identity: {tier} {user.name}, balance ¥{user.balance:g}"


def cart_context(cart: Sequence[CartLine]) -> str:
    if not cart:
        return EMPTY_CART_CONTEXT
    return "Cart currently holds: " + ", ".join(f"{line.name} x{line.quantity}" for line in cart)


def order_history_context(orders: Sequence[Order], limit: int = 3) -> str:
    recent = [
        f"on {order.date} bought {', '.join(line.name for line in order.items)}"
        for order in list(orders)[:limit]
    ]
    if not recent:
        return NO_ORDERS_CONTEXT
    return "The guest recently: " + "; ".join(recent) + "."


def build_system_instruction(
    snapshot: SessionSnapshot,
    now: Optional[datetime] = None,
    low_stock_threshold: int = 10,
    recent_order_limit: int = 3,
) -> str:
    """Render the system instruction for one request from the session snapshot."""
    now = now or datetime.now()
    catalog_block = "\n\n".join(
        format_catalog_item(item, low_stock_threshold) for item in snapshot.catalog
    ) or "(the catalogue is currently empty)"

    sections: List[str] = [
        PERSONA,
        "PERSONAL TOUCH (use the context):\n"
        f"- Moment: {ambient_context(now)}\n"
        f"- Returning guest: {order_history_context(snapshot.orders, recent_order_limit)} "
        "If they bought before, ask whether they enjoyed it.\n"
        f"- Cart: {cart_context(snapshot.cart)} If the cart has items, suggest what pairs with them.",
        OUTPUT_CONTRACT,
        f"STORE CATALOGUE:\n{catalog_block}",
        f"GUEST:\n{user_context(snapshot.user)}",
    ]
    return "\n\n".join(sections)


def product_context_prompt(product: CatalogItem) -> str:
    """Synthetic opening turn used when the chat starts from a product page."""
    return (
        f"(context note: the guest is viewing [{product.name}]. Open the conversation as their "
        "concierge: 1. greet them warmly; 2. introduce its standout quality (origin or texture) "
        "in a mouth-watering way; 3. ask how they would like to eat it, for example sashimi or "
        "cooked, so you can advise.)"
    )


GREETINGS = {
    "morning": (
        "Good morning, {name}! A great day starts with good protein. Fancy some light fish today? 🐟",
        "Morning, {name}! Did you sleep well? Our deep-sea cod just arrived and makes a perfect breakfast.",
    ),
    "noon": (
        "Good afternoon, {name}! After a busy morning, treat yourself. Shall we add something to lunch? 🥢",
        "Lunchtime, {name}! Missing the taste of the sea? How about some sashimi to perk you up?",
    ),
    "afternoon": (
        "Good afternoon, {name}! Planning tonight's menu? I'm Wei Lai, your private chef, at your service. 👨‍🍳",
        "Good afternoon! I saved a few especially fine crabs after the live show. Want a look? 🦀",
    ),
    "evening": (
        "Good evening, {name}! After a long day you deserve a seafood feast. 🥂",
        "What a lovely evening, {name}. Some sweet sashimi and a glass of white wine would be perfect.",
    ),
    "night": (
        "It's late, {name}. Feeling peckish? Our sweet shrimp are low in fat and perfect for a midnight snack. 🌙",
        "Still up? If you're hungry, let me suggest some small seafood bites.",
    ),
}


def greeting_period(hour: int) -> str:
    if 10 <= hour < 14:
        return "noon"
    if 14 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    if hour >= 22 or hour < 5:
        return "night"
    return "morning"


def local_greeting(
    user: Optional[UserProfile],
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """Pick an opening line for the hour without calling the provider."""
    now = now or datetime.now()
    rng = rng or random.Random()
    name = user.name if user else DEFAULT_GUEST_NAME
    pool = GREETINGS[greeting_period(now.hour)]
    return rng.choice(pool).format(name=name)
