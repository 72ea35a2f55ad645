"""Shared fixtures: settings, catalogue snapshots and provider fakes."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import httpx
import orjson
import pytest

from concierge.config import AppSettings
from concierge.models import CatalogItem, Turn
from concierge.services.extraction import extract_recommendations
from concierge.services.llm_types import CompletionResult
from concierge.services.streaming_client import StreamingCompletionClient, emit_chunk


FIXED_NOW = datetime(2026, 3, 10, 15, 0)  # a Tuesday afternoon outside every festival window


def sse_frame(content: str) -> bytes:
    return b"data: " + orjson.dumps({"choices": [{"delta": {"content": content}}]}) + b"\n\n"


DONE_FRAME = b"data: [DONE]\n\n"


@pytest.fixture
def app_settings(tmp_path) -> AppSettings:
    return AppSettings(
        llm_api_key="test-key",
        llm_base_url="https://llm.test/v1",
        llm_model="test-model",
        gemini_api_key=None,
        provider_max_attempts=1,
        sessions_storage_dir=tmp_path / "sessions",
        catalog_path=tmp_path / "catalog.json",
        fallback_reply="The concierge is busy, please try again.",
    )


@pytest.fixture
def catalog() -> List[CatalogItem]:
    return [
        CatalogItem(
            id="A",
            name="King Crab",
            description="Sweet Bering Sea crab.",
            price=2580,
            unit="each",
            stock=3,
            tags=["bestseller", "live"],
            origin="Alaska",
        ),
        CatalogItem(
            id="B",
            name="Blacklip Abalone",
            description="Crisp wild abalone.",
            price=1580,
            unit="pair",
            stock=40,
            tags=["wild"],
            cookingMethod="Braise gently",
            nutrition="High in minerals",
        ),
    ]


@pytest.fixture
def stream_transport() -> Callable[..., httpx.MockTransport]:
    """Build a transport that streams ``chunks`` one read at a time."""

    def _factory(
        chunks: Sequence[bytes] = (),
        status_code: int = 200,
        requests: Optional[List[httpx.Request]] = None,
        fail_after: Optional[Exception] = None,
        raise_on_connect: Optional[Exception] = None,
    ) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if requests is not None:
                requests.append(request)
            if raise_on_connect is not None:
                raise raise_on_connect

            async def body():
                for chunk in chunks:
                    yield chunk
                if fail_after is not None:
                    raise fail_after

            return httpx.Response(status_code, content=body())

        return httpx.MockTransport(handler)

    return _factory


@pytest.fixture
def make_client(app_settings, stream_transport) -> Callable[..., StreamingCompletionClient]:
    def _factory(**transport_kwargs: Any) -> StreamingCompletionClient:
        http_client = httpx.AsyncClient(transport=stream_transport(**transport_kwargs))
        return StreamingCompletionClient(app_settings, http_client=http_client)

    return _factory


class FakeCompletionClient:
    """Stand-in for the streaming client that replays scripted raw replies."""

    def __init__(self, replies: Iterable[Any] = ()) -> None:
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def request(
        self,
        transcript: Sequence[Turn],
        system_instruction: Optional[str],
        on_chunk=None,
        catalog: Sequence[CatalogItem] = (),
        image: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> CompletionResult:
        self.calls.append(
            {
                "transcript": list(transcript),
                "system_instruction": system_instruction,
                "image": image,
            }
        )
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, CompletionResult):
            return reply
        await emit_chunk(on_chunk, reply)
        result = extract_recommendations(reply, catalog)
        if result.visible_text != reply:
            await emit_chunk(on_chunk, result.visible_text)
        return CompletionResult(
            text=result.visible_text, raw_text=reply, recommendations=result.recommended_items
        )


@pytest.fixture
def fake_client() -> Callable[..., FakeCompletionClient]:
    return FakeCompletionClient


@pytest.fixture
def degraded_result(app_settings) -> CompletionResult:
    reply = app_settings.fallback_reply
    return CompletionResult(text=reply, raw_text=reply, degraded=True)
