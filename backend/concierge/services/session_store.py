"""Registry of live concierge sessions with on-disk transcripts."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import orjson

from ..config import AppSettings, settings
from ..models import CatalogItem, Turn
from .llm_types import SessionBusyError, SessionNotFoundError
from .session import ConversationSession
from .streaming_client import StreamingCompletionClient


logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass
class SessionRecord:
    """Bookkeeping kept next to a live session."""

    session: ConversationSession
    recommended_products: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


class SessionRegistry:
    """Hold one ConversationSession per id; sessions never share mutable state."""

    def __init__(
        self,
        client: StreamingCompletionClient,
        app_settings: Optional[AppSettings] = None,
        default_catalog: Sequence[CatalogItem] = (),
    ) -> None:
        self.settings = app_settings or settings
        self.client = client
        self.default_catalog = tuple(default_catalog)
        self.storage_dir: Path = self.settings.sessions_storage_dir
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._records: Dict[str, SessionRecord] = {}
        self._in_flight: Set[str] = set()
        self._lock = Lock()

    # ----------------------------------------------------------------- sessions
    def create(self, session_id: Optional[str] = None) -> Tuple[str, ConversationSession]:
        session_id = session_id or uuid.uuid4().hex
        if not _SESSION_ID.match(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        session = ConversationSession(self.client, self.settings)
        with self._lock:
            self._records[session_id] = SessionRecord(session=session)
        logger.info("Created session %s", session_id)
        return session_id, session

    def get(self, session_id: str) -> ConversationSession:
        return self._record(session_id).session

    def drop(self, session_id: str) -> None:
        with self._lock:
            self._records.pop(session_id, None)
            self._in_flight.discard(session_id)
        path = self._path(session_id)
        if path is not None and path.exists():
            path.unlink()
        logger.info("Dropped session %s", session_id)

    def list_sessions(self) -> List[str]:
        with self._lock:
            live = set(self._records)
        stored = {path.stem for path in self.storage_dir.glob("*.json")}
        return sorted(live | stored)

    def updated_at(self, session_id: str) -> datetime:
        return self._record(session_id).updated_at

    # ---------------------------------------------------------------- in flight
    def claim(self, session_id: str) -> ConversationSession:
        """Mark a send as in flight; overlapping sends on one session are refused."""
        record = self._record(session_id)
        with self._lock:
            if session_id in self._in_flight:
                raise SessionBusyError(session_id)
            self._in_flight.add(session_id)
        return record.session

    def release(self, session_id: str, recommended: Iterable[str] = ()) -> None:
        with self._lock:
            self._in_flight.discard(session_id)
            record = self._records.get(session_id)
            if record is None:
                return
            record.recommended_products.extend(recommended)
            record.updated_at = datetime.utcnow()
        self.persist(session_id)

    # ------------------------------------------------------------------ storage
    def persist(self, session_id: str) -> None:
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return
            payload = {
                "session_id": session_id,
                "turns": [turn.model_dump() for turn in record.session.transcript],
                "recommended_products": record.recommended_products,
                "started_at": record.started_at.isoformat(),
                "updated_at": record.updated_at.isoformat(),
            }
        path = self._path(session_id)
        with path.open("wb") as handle:
            handle.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2))

    def _record(self, session_id: str) -> SessionRecord:
        with self._lock:
            record = self._records.get(session_id)
        if record is not None:
            return record
        record = self._load(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        with self._lock:
            return self._records.setdefault(session_id, record)

    def _load(self, session_id: str) -> Optional[SessionRecord]:
        path = self._path(session_id)
        if path is None or not path.exists():
            return None
        try:
            payload = orjson.loads(path.read_bytes())
            turns = [Turn(**turn) for turn in payload.get("turns", [])]
        except (orjson.JSONDecodeError, TypeError, ValueError) as exc:
            logger.error("Could not restore session %s from %s: %s", session_id, path, exc)
            return None

        session = ConversationSession(self.client, self.settings)
        session.restore_transcript(turns)
        session.refresh_snapshot(self.default_catalog)
        record = SessionRecord(
            session=session,
            recommended_products=list(payload.get("recommended_products", [])),
        )
        if payload.get("started_at"):
            record.started_at = datetime.fromisoformat(payload["started_at"])
        if payload.get("updated_at"):
            record.updated_at = datetime.fromisoformat(payload["updated_at"])
        logger.info("Restored session %s with %d turns from disk", session_id, len(turns))
        return record

    def _path(self, session_id: str) -> Optional[Path]:
        if not _SESSION_ID.match(session_id):
            return None
        return self.storage_dir / f"{session_id}.json"
