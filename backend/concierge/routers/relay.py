"""Edge relay: forward one turn upstream with the server-held credential."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..models import RelayRequest
from ..services.relay_service import GeminiRelayService

logger = logging.getLogger(__name__)
router = APIRouter()

RELAY_MEDIA_TYPE = "text/plain; charset=utf-8"
RELAY_ERROR_MARKER = "\n\n[relay error] The reply was interrupted. Please try again."


def _get_relay_service(request: Request) -> GeminiRelayService:
    try:
        return request.app.state.relay_service
    except AttributeError as exc:
        raise HTTPException(status_code=500, detail="Relay service not initialised") from exc


@router.post("/chat")
async def relay_chat(payload: RelayRequest, request: Request):
    relay_service = _get_relay_service(request)
    stream = relay_service.stream(payload)

    # Headers cannot change once the body starts, so surface early failures as a 500 here.
    try:
        first_chunk = await stream.__anext__()
    except StopAsyncIteration:
        first_chunk = ""
    except Exception as exc:
        logger.error("Relay failed before streaming: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})

    async def _body() -> AsyncIterator[str]:
        if first_chunk:
            yield first_chunk
        try:
            async for chunk in stream:
                yield chunk
        except Exception as exc:
            logger.error("Relay stream broke mid-response: %s", exc, exc_info=True)
            yield RELAY_ERROR_MARKER
        finally:
            await stream.aclose()

    return StreamingResponse(_body(), media_type=RELAY_MEDIA_TYPE)
