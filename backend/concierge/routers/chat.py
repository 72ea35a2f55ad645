"""Chat endpoints for talking to the concierge."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from ..models import (
    CatalogItem,
    ResumeSessionRequest,
    SendMessageRequest,
    SendMessageResponse,
    SessionHistoryResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from ..services.catalog import find_item
from ..services.llm_types import SessionBusyError, SessionNotFoundError
from ..services.session import ConversationSession
from ..services.session_store import SessionRegistry

logger = logging.getLogger(__name__)
router = APIRouter()


# --------------------------------------------------------------------------- utils
def _get_registry(request: Request) -> SessionRegistry:
    try:
        return request.app.state.session_registry
    except AttributeError as exc:
        raise HTTPException(status_code=500, detail="Session registry not initialised") from exc


def _resolve_catalog(request: Request, catalog: Optional[List[CatalogItem]]) -> Sequence[CatalogItem]:
    if catalog is not None:
        return catalog
    return getattr(request.app.state, "default_catalog", [])


def _get_session(registry: SessionRegistry, session_id: str) -> ConversationSession:
    try:
        return registry.get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc


def _claim_session(registry: SessionRegistry, session_id: str) -> ConversationSession:
    try:
        return registry.claim(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _history_response(registry: SessionRegistry, session_id: str) -> SessionHistoryResponse:
    session = _get_session(registry, session_id)
    return SessionHistoryResponse(
        session_id=session_id,
        turns=list(session.transcript),
        updated_at=registry.updated_at(session_id),
    )


# --------------------------------------------------------------------------- routes
@router.post("/sessions", response_model=StartSessionResponse)
async def start_session(payload: StartSessionRequest, request: Request) -> StartSessionResponse:
    registry = _get_registry(request)
    catalog = _resolve_catalog(request, payload.catalog)

    product = None
    if payload.product_context_id:
        product = find_item(catalog, payload.product_context_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found in catalogue")

    session_id, session = registry.create()
    greeting = session.start(catalog, payload.user, product, payload.orders, payload.cart)
    registry.persist(session_id)
    return StartSessionResponse(session_id=session_id, greeting=greeting)


@router.post("/sessions/{session_id}/resume", response_model=SessionHistoryResponse)
async def resume_session(
    session_id: str, payload: ResumeSessionRequest, request: Request
) -> SessionHistoryResponse:
    registry = _get_registry(request)
    try:
        session = registry.get(session_id)
    except SessionNotFoundError:
        try:
            session_id, session = registry.create(session_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    catalog = _resolve_catalog(request, payload.catalog)
    session.resume(catalog, payload.user, payload.history, payload.orders, payload.cart)
    registry.persist(session_id)
    return _history_response(registry, session_id)


@router.post("/sessions/{session_id}/messages", response_model=SendMessageResponse)
async def post_message(
    session_id: str, payload: SendMessageRequest, request: Request
) -> SendMessageResponse:
    registry = _get_registry(request)
    session = _claim_session(registry, session_id)

    recommended: List[str] = []
    try:
        result = await session.send(payload.message, payload.image)
        recommended = [item.id for item in result.recommended_items]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        registry.release(session_id, recommended)

    degraded = bool(session.last_result and session.last_result.degraded)
    return SendMessageResponse(
        reply=result.visible_text, products=result.recommended_items, degraded=degraded
    )


@router.get("/sessions/{session_id}/history", response_model=SessionHistoryResponse)
async def get_history(session_id: str, request: Request) -> SessionHistoryResponse:
    return _history_response(_get_registry(request), session_id)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, request: Request) -> dict:
    registry = _get_registry(request)
    _get_session(registry, session_id)
    registry.drop(session_id)
    return {"status": "ok"}


@router.get("/sessions")
async def list_sessions(request: Request) -> dict:
    return {"sessions": _get_registry(request).list_sessions()}


@router.websocket("/sessions/{session_id}/stream")
async def websocket_stream(websocket: WebSocket, session_id: str) -> None:
    await websocket.accept()
    try:
        init_payload = SendMessageRequest(**await websocket.receive_json())
    except Exception:  # pragma: no cover
        await websocket.close(code=1003)
        return

    registry: SessionRegistry = websocket.app.state.session_registry  # type: ignore[attr-defined]
    try:
        session = registry.claim(session_id)
    except SessionNotFoundError:
        await websocket.send_json({"type": "error", "data": {"message": "Session not found"}})
        await websocket.close(code=1008)
        return
    except SessionBusyError as exc:
        await websocket.send_json({"type": "error", "data": {"message": str(exc)}})
        await websocket.close(code=1013)
        return

    async def _forward(text: str) -> None:
        await websocket.send_json({"type": "chunk", "data": text})

    recommended: List[str] = []
    try:
        result = await session.send(init_payload.message, init_payload.image, on_chunk=_forward)
        recommended = [item.id for item in result.recommended_items]
        degraded = bool(session.last_result and session.last_result.degraded)
        response_data = jsonable_encoder(
            {"reply": result.visible_text, "products": result.recommended_items, "degraded": degraded},
            by_alias=True,
        )
        await websocket.send_json({"type": "complete", "data": response_data})
        await websocket.close()
    except ValueError as exc:
        await websocket.send_json({"type": "error", "data": {"message": str(exc)}})
        await websocket.close(code=1008)
    except WebSocketDisconnect:
        logger.info("Client disconnected during streaming session %s", session_id)
    except Exception as exc:  # pragma: no cover
        logger.error("Streaming session failed for %s: %s", session_id, exc, exc_info=True)
        try:
            await websocket.send_json(
                {"type": "error", "data": {"message": "The concierge ran into an issue. Please try again."}}
            )
            await websocket.close(code=1011)
        except Exception:
            logger.debug("Could not report failure to disconnected client %s", session_id)
    finally:
        registry.release(session_id, recommended)
