"""Catalogue loading for requests that do not carry their own snapshot."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from ..models import CatalogItem


logger = logging.getLogger(__name__)


def load_catalog(path: Path) -> List[CatalogItem]:
    """Read the catalogue file; a missing file means an empty store."""
    if not path.exists():
        logger.warning("Catalogue file %s not found; starting with an empty catalogue.", path)
        return []
    with path.open("r", encoding="utf-8") as handle:
        raw_items = json.load(handle)
    return [CatalogItem(**item) for item in raw_items]


def find_item(catalog: Sequence[CatalogItem], item_id: str) -> Optional[CatalogItem]:
    for item in catalog:
        if item.id == item_id:
            return item
    return None
