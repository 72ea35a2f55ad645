"""Streaming chat-completions client for the concierge."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import AppSettings, settings
from ..models import CatalogItem, Turn
from .extraction import extract_recommendations
from .llm_types import ChunkCallback, CompletionResult, ProviderResponseError
from .sse import SSEFrameDecoder


logger = logging.getLogger(__name__)


@dataclass
class _StreamState:
    text: str = ""
    deltas: int = 0


def build_request_messages(
    transcript: Sequence[Turn],
    system_instruction: Optional[str],
    image: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Shape the outbound message list; the system message is never part of the transcript."""
    messages: List[Dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})
    messages.extend({"role": turn.role, "content": turn.content} for turn in transcript)

    if image:
        image_part = {"type": "image_url", "image_url": {"url": image}}
        if messages and messages[-1]["role"] == "user":
            text = messages[-1]["content"]
            messages[-1] = {
                "role": "user",
                "content": [{"type": "text", "text": text}, image_part],
            }
        else:
            messages.append({"role": "user", "content": [image_part]})
    return messages


async def emit_chunk(on_chunk: Optional[ChunkCallback], text: str) -> None:
    if on_chunk is None:
        return
    result = on_chunk(text)
    if inspect.isawaitable(result):
        await result


class StreamingCompletionClient:
    """Perform one streamed exchange per turn and decode its output.

    ``request`` never raises for transport problems: a failure before any text
    arrives yields the configured fallback reply, and a failure after some text
    arrived keeps that partial text as the answer. Exceptions raised by the chunk
    callback are not swallowed.
    """

    def __init__(
        self,
        app_settings: Optional[AppSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = app_settings or settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.request_timeout_s)
        )
        if not self.settings.llm_api_key:
            logger.warning("LLM_API_KEY is not set; provider requests will likely be rejected.")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ----------------------------------------------------------------- public api
    async def request(
        self,
        transcript: Sequence[Turn],
        system_instruction: Optional[str],
        on_chunk: Optional[ChunkCallback] = None,
        catalog: Sequence[CatalogItem] = (),
        image: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> CompletionResult:
        messages = build_request_messages(transcript, system_instruction, image)
        state = _StreamState()
        deadline = deadline if deadline is not None else self.settings.stream_deadline_s

        started = time.perf_counter()
        try:
            if deadline:
                await asyncio.wait_for(self._exchange(messages, on_chunk, state), timeout=deadline)
            else:
                await self._exchange(messages, on_chunk, state)
        except asyncio.TimeoutError:
            logger.warning("Stream deadline of %.1fs reached after %d deltas.", deadline, state.deltas)
        except (httpx.HTTPError, ProviderResponseError) as exc:
            if state.text:
                logger.warning("Stream interrupted after %d deltas; keeping partial reply: %s", state.deltas, exc)
            else:
                logger.error("Completion request failed: %s", exc, exc_info=True)
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info("[TIMING] Stream finished in %.2fms with %d deltas", elapsed_ms, state.deltas)

        if not state.text:
            return self._fallback_result()

        result = extract_recommendations(state.text, catalog)
        if result.visible_text != state.text:
            await emit_chunk(on_chunk, result.visible_text)
        return CompletionResult(
            text=result.visible_text,
            raw_text=state.text,
            recommendations=result.recommended_items,
        )

    # ----------------------------------------------------------------- streaming
    async def _exchange(
        self,
        messages: List[Dict[str, Any]],
        on_chunk: Optional[ChunkCallback],
        state: _StreamState,
    ) -> None:
        request = self._client.build_request(
            "POST",
            f"{self.settings.llm_base_url}/chat/completions",
            headers=self._headers(),
            json={
                "model": self.settings.llm_model,
                "messages": messages,
                "temperature": self.settings.llm_temperature,
                "stream": True,
            },
        )
        response = await self._open(request)
        try:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise ProviderResponseError(response.status_code, body[:500])

            decoder = SSEFrameDecoder()
            async for chunk in response.aiter_bytes():
                for delta in decoder.feed(chunk):
                    await self._append(delta, on_chunk, state)
                if decoder.done:
                    break
            for delta in decoder.close():
                await self._append(delta, on_chunk, state)
            if decoder.skipped_frames:
                logger.warning("Skipped %d malformed frames in one stream.", decoder.skipped_frames)
        finally:
            await response.aclose()

    async def _open(self, request: httpx.Request) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.provider_max_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await self._client.send(request, stream=True)
        raise RuntimeError("unreachable")  # pragma: no cover

    @staticmethod
    async def _append(delta: str, on_chunk: Optional[ChunkCallback], state: _StreamState) -> None:
        state.text += delta
        state.deltas += 1
        await emit_chunk(on_chunk, state.text)

    # ------------------------------------------------------------------ helpers
    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.settings.llm_api_key:
            headers["Authorization"] = f"Bearer {self.settings.llm_api_key}"
        return headers

    def _fallback_result(self) -> CompletionResult:
        reply = self.settings.fallback_reply
        return CompletionResult(text=reply, raw_text=reply, recommendations=[], degraded=True)
