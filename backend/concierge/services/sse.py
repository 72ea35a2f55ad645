"""Incremental decoder for `data: ` framed completion streams."""

from __future__ import annotations

import codecs
import logging
from typing import Any, List, Optional

import orjson


logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class SSEFrameDecoder:
    """Turn raw body bytes into text deltas.

    Bytes are decoded with a stateful UTF-8 decoder so multi-byte characters
    split across reads survive. Only complete newline-terminated lines are
    interpreted; the remainder is buffered until the next read. Lines without
    the ``data: `` prefix are ignored and a frame that is not valid JSON is
    logged and skipped. Once ``[DONE]`` is seen, everything after it is ignored.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped_frames = 0

    def feed(self, chunk: bytes) -> List[str]:
        """Consume one read and return the deltas it completed, in order."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._consume(lines)

    def close(self) -> List[str]:
        """Flush the decoder at end of body; a trailing unterminated line counts as complete."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if not remainder.strip():
            return []
        return self._consume([remainder])

    def _consume(self, lines: List[str]) -> List[str]:
        deltas: List[str] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                self.done = True
                break
            delta = self._parse_frame(payload)
            if delta:
                deltas.append(delta)
        return deltas

    def _parse_frame(self, payload: str) -> Optional[str]:
        try:
            frame = orjson.loads(payload)
        except orjson.JSONDecodeError:
            self.skipped_frames += 1
            logger.warning("Skipping malformed stream frame: %s", payload[:200])
            return None
        delta = extract_delta(frame)
        if delta is None and not _is_completion_frame(frame):
            self.skipped_frames += 1
            logger.warning("Skipping stream frame with unexpected shape: %s", payload[:200])
        return delta


def extract_delta(frame: Any) -> Optional[str]:
    """Return ``choices[0].delta.content`` from a completion frame, if present."""
    if not _is_completion_frame(frame):
        return None
    choices = frame.get("choices")
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


def _is_completion_frame(frame: Any) -> bool:
    """A frame is well formed when ``choices`` is absent or a list whose first entry is an object."""
    if not isinstance(frame, dict):
        return False
    choices = frame.get("choices")
    if choices is None:
        return True
    if not isinstance(choices, list):
        return False
    return not choices or isinstance(choices[0], dict)
