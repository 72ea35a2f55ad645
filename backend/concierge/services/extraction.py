"""Recommendation side-channel extraction."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Sequence

import orjson

from ..models import CatalogItem, RecommendationResult


logger = logging.getLogger(__name__)

RECOMMENDATION_FIELD = "recommendedProductIds"
RECOMMENDATION_BLOCK = re.compile(r"```json\s*(\{[\s\S]*?\})\s*```")


def _recommended_ids(block: str) -> Optional[List[Any]]:
    try:
        payload = orjson.loads(block)
    except orjson.JSONDecodeError:
        return None
    ids = payload.get(RECOMMENDATION_FIELD) if isinstance(payload, dict) else None
    return ids if isinstance(ids, list) else None


def extract_recommendations(text: str, catalog: Sequence[CatalogItem]) -> RecommendationResult:
    """Split a finished reply into visible text and resolved catalogue items.

    The first fenced ``json`` block decides: when it is not valid JSON or lacks a
    ``recommendedProductIds`` list, the text is returned untouched with no items.
    Otherwise its ids are resolved in catalogue order (unknown ids are dropped)
    and every well-formed recommendation block is removed from the visible text,
    so running the extraction again on the result changes nothing.
    """
    matches = list(RECOMMENDATION_BLOCK.finditer(text))
    if not matches:
        return RecommendationResult(visible_text=text)

    ids = _recommended_ids(matches[0].group(1))
    if ids is None:
        logger.warning("First recommendation block is unusable; leaving reply untouched.")
        return RecommendationResult(visible_text=text)

    wanted = {str(product_id) for product_id in ids}
    items = [item for item in catalog if item.id in wanted]
    dropped = wanted - {item.id for item in items}
    if dropped:
        logger.info("Dropping unknown recommended ids: %s", sorted(dropped))

    visible = text
    for match in reversed(matches):
        if _recommended_ids(match.group(1)) is not None:
            visible = visible[: match.start()] + visible[match.end():]
    return RecommendationResult(visible_text=visible.strip(), recommended_items=items)
