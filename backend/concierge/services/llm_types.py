"""Shared LLM data structures and errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

from ..models import CatalogItem


ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class CompletionResult:
    """Outcome of one streamed exchange with the provider."""

    text: str
    raw_text: str
    recommendations: list[CatalogItem] = field(default_factory=list)
    degraded: bool = False


class ProviderResponseError(Exception):
    """The provider answered with a non-success status before streaming."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Provider returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class RelayUnavailableError(Exception):
    """The relay has no credential or model to forward to."""


class SessionNotFoundError(KeyError):
    """No session is registered under the requested id."""


class SessionBusyError(RuntimeError):
    """A send is already in flight for the session."""

    def __init__(self, session_id: str, detail: Optional[str] = None) -> None:
        super().__init__(detail or f"Session {session_id} already has a message in flight")
        self.session_id = session_id
