"""FastAPI application entry point with service lifecycle management."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .routers import chat, relay, tasks
from .services.assistant_tasks import AssistantTaskService
from .services.catalog import load_catalog
from .services.relay_service import GeminiRelayService
from .services.session_store import SessionRegistry
from .services.streaming_client import StreamingCompletionClient


_handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
if settings.log_file:
    _handlers.append(logging.FileHandler(settings.log_file))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=_handlers,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting Wei Lai concierge services.")
    completion_client = None
    try:
        completion_client = StreamingCompletionClient(settings)
        logger.info("Completion client initialized for %s.", settings.llm_base_url)

        app.state.default_catalog = load_catalog(settings.catalog_path)
        logger.info("Loaded %d catalogue items.", len(app.state.default_catalog))

        app.state.session_registry = SessionRegistry(
            completion_client, settings, default_catalog=app.state.default_catalog
        )
        app.state.task_service = AssistantTaskService(completion_client)
        app.state.relay_service = GeminiRelayService(settings)
        logger.info("Relay service initialized (%s).", settings.relay_model)

        logger.info("All services initialized successfully.")
        yield
    except Exception as exc:
        logger.error("Failed to initialize services: %s", exc, exc_info=True)
        raise
    finally:
        logger.info("Shutting down services.")
        if completion_client is not None:
            await completion_client.aclose()


app = FastAPI(title="Wei Lai Seafood Concierge", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:4173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(relay.router, prefix="/api/relay", tags=["relay"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "settings": settings.as_dict()}
