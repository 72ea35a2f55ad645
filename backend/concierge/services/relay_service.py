"""Gemini-backed edge relay: forward one turn with the server-held credential."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import threading
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import google.generativeai as genai

from ..config import AppSettings, settings
from ..models import RelayRequest
from .llm_types import RelayUnavailableError


logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/jpeg"
WORKER_JOIN_TIMEOUT_S = 1.0
_MIME_PATTERN = re.compile(r":(.*?);")


def _log_worker_exit(worker: asyncio.Future[None]) -> None:
    logger.info("Abandoned Gemini worker finished (cancelled=%s).", worker.cancelled())


def parse_data_url(data_url: str) -> Optional[Tuple[str, bytes]]:
    """Split ``data:<mime>;base64,<payload>`` into its MIME type and decoded bytes."""
    try:
        metadata, encoded = data_url.split(",", 1)
        data = base64.b64decode(encoded, validate=True)
    except (ValueError, binascii.Error) as exc:
        logger.error("Failed to parse image data URL: %s", exc)
        return None
    match = _MIME_PATTERN.search(metadata)
    mime_type = match.group(1) if match and match.group(1) else DEFAULT_IMAGE_MIME
    return mime_type, data


def build_contents(payload: RelayRequest) -> List[Dict[str, Any]]:
    """Shape history plus the new multi-part user turn the way Gemini expects."""
    contents: List[Dict[str, Any]] = []
    for entry in payload.history:
        if entry.role == "system" or not entry.content.strip():
            continue
        role = "model" if entry.role in ("assistant", "model") else "user"
        contents.append({"role": role, "parts": [entry.content]})

    parts: List[Any] = []
    if payload.message.strip():
        parts.append(payload.message)
    if payload.image:
        parsed = parse_data_url(payload.image)
        if parsed:
            mime_type, data = parsed
            parts.append({"mime_type": mime_type, "data": data})
    if not parts:
        raise ValueError("Relay request needs a message or an image.")
    contents.append({"role": "user", "parts": parts})
    return contents


class GeminiRelayService:
    """Stream raw text for one relayed turn."""

    def __init__(self, app_settings: Optional[AppSettings] = None) -> None:
        self.settings = app_settings or settings
        self._offline_mode = not self.settings.gemini_api_key
        if self._offline_mode:
            logger.warning("GEMINI_API_KEY not set; the edge relay will refuse requests.")
        else:
            genai.configure(api_key=self.settings.gemini_api_key)

    async def stream(self, payload: RelayRequest) -> AsyncIterator[str]:
        if self._offline_mode:
            raise RelayUnavailableError("Relay credential is not configured.")

        contents = build_contents(payload)
        model = self._build_model(payload.system_instruction)
        queue: asyncio.Queue[Union[str, BaseException, None]] = asyncio.Queue()
        loop = asyncio.get_running_loop()
        stop = threading.Event()

        def _worker() -> None:
            try:
                response = model.generate_content(contents, stream=True)
                for chunk in response:
                    if stop.is_set():
                        logger.info("Relay consumer went away; abandoning Gemini stream.")
                        break
                    text = self._chunk_text(chunk)
                    if text:
                        loop.call_soon_threadsafe(queue.put_nowait, text)
            except Exception as exc:
                logger.error("Gemini relay stream failed: %s", exc, exc_info=True)
                loop.call_soon_threadsafe(queue.put_nowait, exc)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, None)

        worker = loop.run_in_executor(None, _worker)

        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            stop.set()
            await self._join_worker(worker)

    # ------------------------------------------------------------------ helpers
    @staticmethod
    async def _join_worker(worker: asyncio.Future[None]) -> None:
        """Give the worker thread a moment to notice the stop flag before returning."""
        if worker.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(worker), timeout=WORKER_JOIN_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.warning(
                "Gemini worker still blocked upstream after %.1fs; it exits on its next chunk.",
                WORKER_JOIN_TIMEOUT_S,
            )
            worker.add_done_callback(_log_worker_exit)

    def _build_model(self, system_instruction: Optional[str]) -> genai.GenerativeModel:
        return genai.GenerativeModel(
            model_name=self.settings.relay_model,
            system_instruction=system_instruction or None,
            generation_config={"temperature": self.settings.relay_temperature},
        )

    @staticmethod
    def _chunk_text(chunk: Any) -> str:
        try:
            return chunk.text or ""
        except ValueError:
            pass

        for candidate in getattr(chunk, "candidates", []) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", []) or []:
                text = getattr(part, "text", None)
                if text:
                    return text
        return ""
