"""Helper task endpoints used by the storefront outside the chat."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request

from ..models import (
    AddressDraft,
    AddressParseRequest,
    BanquetMenu,
    BanquetRequest,
    CatalogItem,
    ReviewRequest,
    ReviewResponse,
    SmartSearchRequest,
    SmartSearchResponse,
)
from ..services.assistant_tasks import AssistantTaskService

router = APIRouter()


def _get_task_service(request: Request) -> AssistantTaskService:
    try:
        return request.app.state.task_service
    except AttributeError as exc:
        raise HTTPException(status_code=500, detail="Task service not initialised") from exc


def _products(request: Request, products: Optional[List[CatalogItem]]) -> List[CatalogItem]:
    if products is not None:
        return products
    return list(getattr(request.app.state, "default_catalog", []))


@router.post("/banquet", response_model=BanquetMenu)
async def plan_banquet(payload: BanquetRequest, request: Request) -> BanquetMenu:
    service = _get_task_service(request)
    return await service.plan_banquet(
        _products(request, payload.products), payload.people, payload.budget, payload.preference
    )


@router.post("/search", response_model=SmartSearchResponse)
async def smart_search(payload: SmartSearchRequest, request: Request) -> SmartSearchResponse:
    service = _get_task_service(request)
    matched = await service.smart_search(payload.query, _products(request, payload.products))
    return SmartSearchResponse(matched_ids=matched)


@router.post("/address", response_model=AddressDraft)
async def parse_address(payload: AddressParseRequest, request: Request) -> AddressDraft:
    return await _get_task_service(request).parse_address(payload.text)


@router.post("/review", response_model=ReviewResponse)
async def draft_review(payload: ReviewRequest, request: Request) -> ReviewResponse:
    review = await _get_task_service(request).draft_review(payload.product_name, payload.tags, payload.mood)
    if not review:
        raise HTTPException(status_code=503, detail="Review drafting is unavailable right now")
    return ReviewResponse(review=review)
