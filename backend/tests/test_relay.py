import asyncio
import base64
import threading
import time
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from concierge.models import RelayHistoryEntry, RelayRequest
from concierge.routers import relay
from concierge.routers.relay import RELAY_ERROR_MARKER
from concierge.services import relay_service as relay_module
from concierge.services.relay_service import (
    DEFAULT_IMAGE_MIME,
    GeminiRelayService,
    build_contents,
    parse_data_url,
)


class ScriptedRelay:
    """Relay double yielding fixed chunks and optionally failing afterwards."""

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.payloads = []

    async def stream(self, payload):
        self.payloads.append(payload)
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


def _client(relay_service):
    app = FastAPI()
    app.include_router(relay.router, prefix="/api/relay")
    app.state.relay_service = relay_service
    return TestClient(app)


def test_relay_streams_plain_text():
    service = ScriptedRelay(["Fresh ", "crab ", "today."])
    client = _client(service)

    response = client.post(
        "/api/relay/chat",
        json={"message": "What's good?", "history": [], "systemInstruction": "Be brief."},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "Fresh crab today."
    assert service.payloads[0].system_instruction == "Be brief."


def test_relay_failure_before_first_chunk_is_json_500():
    client = _client(ScriptedRelay([], error=RuntimeError("upstream refused")))

    response = client.post("/api/relay/chat", json={"message": "Hi"})

    assert response.status_code == 500
    assert response.json() == {"error": "upstream refused"}


def test_relay_failure_mid_stream_appends_marker():
    client = _client(ScriptedRelay(["Half an "], error=RuntimeError("dropped")))

    response = client.post("/api/relay/chat", json={"message": "Hi"})

    assert response.status_code == 200
    assert response.text == "Half an " + RELAY_ERROR_MARKER


def test_relay_rejects_other_methods():
    client = _client(ScriptedRelay([]))

    assert client.get("/api/relay/chat").status_code == 405


def test_relay_without_credential_is_500(app_settings):
    client = _client(GeminiRelayService(app_settings))

    response = client.post("/api/relay/chat", json={"message": "Hi"})

    assert response.status_code == 500
    assert "error" in response.json()


def test_parse_data_url_reads_mime_and_bytes():
    encoded = base64.b64encode(b"\x89PNG").decode()

    assert parse_data_url(f"data:image/png;base64,{encoded}") == ("image/png", b"\x89PNG")
    assert parse_data_url(f"data:;base64,{encoded}") == (DEFAULT_IMAGE_MIME, b"\x89PNG")
    assert parse_data_url("not a data url") is None


def test_build_contents_maps_roles_and_appends_image():
    encoded = base64.b64encode(b"img").decode()
    payload = RelayRequest(
        message="What is this?",
        image=f"data:image/webp;base64,{encoded}",
        history=[
            RelayHistoryEntry(role="system", content="ignored"),
            RelayHistoryEntry(role="assistant", content="Hello"),
            RelayHistoryEntry(role="user", content="Hi"),
            RelayHistoryEntry(role="model", content=" "),
        ],
    )

    contents = build_contents(payload)

    assert contents[0] == {"role": "model", "parts": ["Hello"]}
    assert contents[1] == {"role": "user", "parts": ["Hi"]}
    assert contents[2] == {
        "role": "user",
        "parts": ["What is this?", {"mime_type": "image/webp", "data": b"img"}],
    }


def test_build_contents_requires_message_or_image():
    with pytest.raises(ValueError):
        build_contents(RelayRequest(message="  "))


class SlowModel:
    """Gemini model double that yields text chunks from the worker thread."""

    def __init__(self, total=50, delay=0.02):
        self.total = total
        self.delay = delay
        self.pulled = 0
        self.lock = threading.Lock()

    def generate_content(self, contents, stream=False):
        for index in range(self.total):
            time.sleep(self.delay)
            with self.lock:
                self.pulled += 1
            yield SimpleNamespace(text=f"chunk{index} ")


@pytest.fixture
def online_relay(app_settings, monkeypatch):
    monkeypatch.setattr(relay_module.genai, "configure", lambda **kwargs: None)
    service = GeminiRelayService(app_settings.model_copy(update={"gemini_api_key": "relay-key"}))
    model = SlowModel()
    monkeypatch.setattr(service, "_build_model", lambda system_instruction: model)
    return service, model


async def test_relay_service_streams_worker_chunks(online_relay):
    service, model = online_relay
    model.total = 3

    chunks = [chunk async for chunk in service.stream(RelayRequest(message="Hi"))]

    assert chunks == ["chunk0 ", "chunk1 ", "chunk2 "]


async def test_closing_relay_stream_stops_the_worker(online_relay):
    service, model = online_relay
    stream = service.stream(RelayRequest(message="Hi"))

    assert await stream.__anext__() == "chunk0 "
    await stream.aclose()

    with model.lock:
        pulled_at_close = model.pulled
    await asyncio.sleep(0.1)

    assert pulled_at_close < model.total
    assert model.pulled == pulled_at_close
