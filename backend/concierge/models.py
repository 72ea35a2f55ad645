"""Pydantic models shared across the backend."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, validator


class CatalogItem(BaseModel):
    """Product entry as stored in the storefront catalogue."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    sku_id: Optional[str] = Field(default=None, alias="skuId")
    name: str
    description: str = ""
    price: float
    unit: str = ""
    stock: int = 0
    tags: Tuple[str, ...] = ()
    category: str = ""
    image: Optional[str] = None
    is_live: bool = Field(default=False, alias="isLive")
    origin: Optional[str] = None
    cooking_method: Optional[str] = Field(default=None, alias="cookingMethod")
    nutrition: Optional[str] = None

    @validator("price", pre=True)
    def _coerce_price(cls, value: Any) -> float:
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            cleaned = value.replace("¥", "").replace(",", "").strip()
            if not cleaned:
                return 0.0
            return float(cleaned)
        raise ValueError("Unsupported price format")


class UserProfile(BaseModel):
    """Signed-in storefront member."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    level: str = "member"
    balance: float = 0.0
    points: Optional[int] = None
    phone: Optional[str] = None


class OrderLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    quantity: int = 1
    price: float = 0.0
    product_id: Optional[str] = Field(default=None, alias="productId")


class Order(BaseModel):
    """Past order, most recent first when passed in a history list."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    status: str = "completed"
    total: float = 0.0
    date: str
    items: Tuple[OrderLine, ...] = ()


class CartLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    price: float = 0.0
    quantity: int = 1


class Turn(BaseModel):
    """One message of the transcript sent upstream. There is no system role."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class DisplayMessage(BaseModel):
    """Message as held by the storefront UI; translated down to a Turn on resume."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    role: Literal["user", "model", "assistant", "system"]
    text: str = ""
    is_streaming: bool = Field(default=False, alias="isStreaming")


class SessionSnapshot(BaseModel):
    """Point-in-time copy of the store state a session builds prompts from."""

    model_config = ConfigDict(frozen=True)

    catalog: Tuple[CatalogItem, ...] = ()
    user: Optional[UserProfile] = None
    orders: Tuple[Order, ...] = ()
    cart: Tuple[CartLine, ...] = ()


class RecommendationResult(BaseModel):
    """Visible reply plus the catalogue items the model recommended."""

    visible_text: str
    recommended_items: List[CatalogItem] = Field(default_factory=list)


# --------------------------------------------------------------------------- chat api
class StartSessionRequest(BaseModel):
    """Request body for opening a concierge session."""

    model_config = ConfigDict(populate_by_name=True)

    catalog: Optional[List[CatalogItem]] = None
    user: Optional[UserProfile] = None
    product_context_id: Optional[str] = Field(default=None, alias="productContextId")
    orders: List[Order] = Field(default_factory=list)
    cart: List[CartLine] = Field(default_factory=list)


class StartSessionResponse(BaseModel):
    session_id: str
    greeting: Optional[str] = None


class ResumeSessionRequest(BaseModel):
    """Request body for continuing a session from UI-held messages."""

    catalog: Optional[List[CatalogItem]] = None
    user: Optional[UserProfile] = None
    history: List[DisplayMessage] = Field(default_factory=list)
    orders: List[Order] = Field(default_factory=list)
    cart: List[CartLine] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    message: str = ""
    image: Optional[str] = None


class SendMessageResponse(BaseModel):
    """Response body returned for one concierge turn."""

    reply: str
    products: List[CatalogItem] = Field(default_factory=list)
    degraded: bool = False


class SessionHistoryResponse(BaseModel):
    """Stored transcript for a session."""

    session_id: str
    turns: List[Turn]
    updated_at: Optional[datetime] = None


# --------------------------------------------------------------------------- relay
class RelayHistoryEntry(BaseModel):
    role: str
    content: str = ""


class RelayRequest(BaseModel):
    """Single-turn passthrough body accepted by the edge relay."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    image: Optional[str] = None
    history: List[RelayHistoryEntry] = Field(default_factory=list)
    system_instruction: Optional[str] = Field(default=None, alias="systemInstruction")


# --------------------------------------------------------------------------- tasks
class BanquetRequest(BaseModel):
    people: int = Field(ge=1)
    budget: float = Field(gt=0)
    preference: str = ""
    products: Optional[List[CatalogItem]] = None


class BanquetItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId")
    quantity: int = 1


class BanquetMenu(BaseModel):
    """Menu proposed by the concierge for a group meal."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    items: List[BanquetItem] = Field(default_factory=list)
    total_price: float = Field(default=0.0, alias="totalPrice")


class SmartSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    products: Optional[List[CatalogItem]] = None


class SmartSearchResponse(BaseModel):
    matched_ids: List[str] = Field(default_factory=list)


class AddressParseRequest(BaseModel):
    text: str = Field(min_length=1)


class AddressDraft(BaseModel):
    """Delivery address fields pulled out of free text."""

    name: str = ""
    phone: str = ""
    province: str = ""
    city: str = ""
    detail: str = ""


class ReviewRequest(BaseModel):
    product_name: str = Field(alias="productName", min_length=1)
    tags: List[str] = Field(default_factory=list)
    mood: str = "excited"

    model_config = ConfigDict(populate_by_name=True)


class ReviewResponse(BaseModel):
    review: str


def catalog_index(catalog: Sequence[CatalogItem]) -> Dict[str, CatalogItem]:
    """Return catalogue items keyed by id."""
    return {item.id: item for item in catalog}
