"""Single-shot helper prompts built on the completion client."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import orjson

from ..models import AddressDraft, BanquetItem, BanquetMenu, CatalogItem, Turn, catalog_index
from .streaming_client import StreamingCompletionClient


logger = logging.getLogger(__name__)

UNAVAILABLE_MENU_TITLE = "Menu unavailable"
UNAVAILABLE_MENU_DESCRIPTION = "The concierge could not put a menu together just now. Please try again."


def strip_code_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def parse_json_reply(text: str) -> Optional[Any]:
    """Decode a reply that should be bare JSON, tolerating markdown fences."""
    cleaned = strip_code_fences(text)
    if not cleaned:
        return None
    try:
        return orjson.loads(cleaned)
    except orjson.JSONDecodeError:
        logger.warning("Task reply was not valid JSON: %s", cleaned[:200])
        return None


class AssistantTaskService:
    """Small prompts the storefront uses outside the chat: menus, search, forms."""

    def __init__(self, client: StreamingCompletionClient) -> None:
        self.client = client

    async def run_simple_task(self, prompt: str) -> str:
        """Return the model's text for ``prompt``, or an empty string when the provider is unavailable."""
        result = await self.client.request([Turn(role="user", content=prompt)], system_instruction=None)
        if result.degraded:
            return ""
        return result.raw_text

    async def plan_banquet(
        self,
        products: Sequence[CatalogItem],
        people: int,
        budget: float,
        preference: str,
    ) -> BanquetMenu:
        catalogue = "; ".join(f"{item.id}:{item.name}:¥{item.price:g}" for item in products)
        prompt = (
            "Task: put together a seafood banquet menu.\n"
            f"Available products: {catalogue}\n"
            f"Requirements: {people} diners, budget ¥{budget:g}, preference: {preference or 'none'}.\n"
            "Reply with JSON only, no Markdown, in this shape:\n"
            '{ "title": "menu title", "description": "short, appetising description", '
            '"items": [{ "productId": "id", "quantity": number }] }'
        )
        payload = parse_json_reply(await self.run_simple_task(prompt))
        if not isinstance(payload, dict) or "title" not in payload:
            return BanquetMenu(title=UNAVAILABLE_MENU_TITLE, description=UNAVAILABLE_MENU_DESCRIPTION)

        items: List[BanquetItem] = []
        for entry in payload.get("items") or []:
            if not isinstance(entry, dict) or not entry.get("productId"):
                continue
            try:
                quantity = int(entry.get("quantity", 1))
            except (TypeError, ValueError):
                quantity = 1
            items.append(BanquetItem(product_id=str(entry["productId"]), quantity=quantity))

        by_id = catalog_index(products)
        total = sum(
            by_id[item.product_id].price * item.quantity for item in items if item.product_id in by_id
        )
        return BanquetMenu(
            title=str(payload["title"]),
            description=str(payload.get("description") or ""),
            items=items,
            total_price=total,
        )

    async def smart_search(self, query: str, products: Sequence[CatalogItem]) -> List[str]:
        listing = "\n".join(f"{item.id}:{item.name} tags:{','.join(item.tags)}" for item in products)
        prompt = (
            f"Product list:\n{listing}\n"
            f'Customer search: "{query}"\n'
            "Work out what the customer means and return the best matching product ids. "
            "If the description is vague, match the most relevant ones.\n"
            'Reply with JSON: { "matchedIds": ["id1", "id2"] }'
        )
        payload = parse_json_reply(await self.run_simple_task(prompt))
        if not isinstance(payload, dict):
            return []
        known = catalog_index(products)
        return [str(item_id) for item_id in payload.get("matchedIds") or [] if str(item_id) in known]

    async def parse_address(self, text: str) -> AddressDraft:
        prompt = (
            f'Parse this delivery address: "{text}". '
            'Reply with JSON: { "name": "", "phone": "", "province": "", "city": "", "detail": "" }'
        )
        payload = parse_json_reply(await self.run_simple_task(prompt))
        if not isinstance(payload, dict):
            return AddressDraft()
        fields = AddressDraft.model_fields
        return AddressDraft(**{key: str(value) for key, value in payload.items() if key in fields and value is not None})

    async def draft_review(self, product_name: str, tags: Sequence[str], mood: str) -> str:
        prompt = (
            f'Write a short, upbeat customer review of "{product_name}" in the style of a '
            f"restaurant review site. Keywords: {', '.join(tags) or 'none'}. Mood: {mood}. "
            "About 50 words, with emoji."
        )
        return (await self.run_simple_task(prompt)).strip()
