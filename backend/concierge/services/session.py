"""Conversation session: transcript ownership and turn lifecycle."""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from ..config import AppSettings, settings
from ..models import (
    CartLine,
    CatalogItem,
    DisplayMessage,
    Order,
    RecommendationResult,
    SessionSnapshot,
    Turn,
    UserProfile,
)
from .llm_types import ChunkCallback, CompletionResult
from .prompt_builder import build_system_instruction, local_greeting, product_context_prompt
from .streaming_client import StreamingCompletionClient


logger = logging.getLogger(__name__)


class ConversationSession:
    """One logical conversation with the concierge.

    The transcript only ever holds user and assistant turns; the system
    instruction is rebuilt from the snapshot on every request. Callers must not
    issue a second ``send`` before the previous one has resolved.
    """

    def __init__(
        self,
        client: StreamingCompletionClient,
        app_settings: Optional[AppSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.client = client
        self.settings = app_settings or settings
        self._clock = clock
        self._rng = rng or random.Random()
        self._turns: List[Turn] = []
        self._snapshot = SessionSnapshot()
        self.last_result: Optional[CompletionResult] = None

    # ----------------------------------------------------------------- state
    @property
    def transcript(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def reset(self) -> None:
        self._turns = []
        self.last_result = None

    def restore_transcript(self, turns: Sequence[Turn]) -> None:
        """Load previously persisted turns without touching the snapshot."""
        self._turns = list(turns)

    def refresh_snapshot(
        self,
        catalog: Sequence[CatalogItem],
        user: Optional[UserProfile] = None,
        orders: Sequence[Order] = (),
        cart: Sequence[CartLine] = (),
    ) -> None:
        """Replace the store snapshot while keeping the transcript."""
        self._sync(catalog, user, orders, cart)

    def _sync(
        self,
        catalog: Sequence[CatalogItem],
        user: Optional[UserProfile],
        orders: Sequence[Order],
        cart: Sequence[CartLine],
    ) -> None:
        if catalog is None:
            raise ValueError("catalog must not be None (pass an empty list for an empty store)")
        self._snapshot = SessionSnapshot(
            catalog=tuple(catalog), user=user, orders=tuple(orders), cart=tuple(cart)
        )

    # ----------------------------------------------------------------- lifecycle
    def start(
        self,
        catalog: Sequence[CatalogItem],
        user: Optional[UserProfile] = None,
        product_context: Optional[CatalogItem] = None,
        orders: Sequence[Order] = (),
        cart: Sequence[CartLine] = (),
    ) -> Optional[str]:
        """Open a fresh conversation.

        With ``product_context`` the transcript is seeded with a synthetic user turn
        and ``None`` is returned; the caller then sends an empty message to fetch
        the concierge's opening. Otherwise a local greeting is stored as the only
        assistant turn and returned.
        """
        self._sync(catalog, user, orders, cart)
        self.reset()

        if product_context is not None:
            self._turns.append(Turn(role="user", content=product_context_prompt(product_context)))
            return None

        greeting = local_greeting(user, now=self._clock(), rng=self._rng)
        self._turns.append(Turn(role="assistant", content=greeting))
        return greeting

    def resume(
        self,
        catalog: Sequence[CatalogItem],
        user: Optional[UserProfile],
        history: Sequence[DisplayMessage],
        orders: Sequence[Order] = (),
        cart: Sequence[CartLine] = (),
    ) -> None:
        """Rebuild the transcript from UI-held messages and refresh the snapshot."""
        self._sync(catalog, user, orders, cart)
        self._turns = [
            Turn(role="user" if message.role == "user" else "assistant", content=message.text)
            for message in history
            if message.role != "system" and not message.is_streaming and message.text.strip()
        ]
        self.last_result = None

    def system_instruction(self) -> str:
        return build_system_instruction(
            self._snapshot,
            now=self._clock(),
            low_stock_threshold=self.settings.low_stock_threshold,
            recent_order_limit=self.settings.recent_order_limit,
        )

    async def send(
        self,
        text: str,
        image: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
        deadline: Optional[float] = None,
    ) -> RecommendationResult:
        """Run one turn and return the visible reply with resolved recommendations.

        Blank ``text`` never produces a user turn. A blank send without an image is
        only allowed when a user turn is already waiting for its reply.
        """
        appended = False
        if text.strip():
            self._turns.append(Turn(role="user", content=text))
            appended = True
        elif not image and not (self._turns and self._turns[-1].role == "user"):
            raise ValueError("Message must include text or an image.")

        try:
            result = await self.client.request(
                self.transcript,
                self.system_instruction(),
                on_chunk=on_chunk,
                catalog=self._snapshot.catalog,
                image=image,
                deadline=deadline,
            )
        except BaseException:
            if appended:
                self._turns.pop()
            raise
        self.last_result = result

        if result.degraded:
            if appended:
                self._turns.pop()
            logger.warning("Concierge turn degraded to the fallback reply; transcript left unchanged.")
        else:
            self._turns.append(Turn(role="assistant", content=result.raw_text))

        return RecommendationResult(visible_text=result.text, recommended_items=result.recommendations)
