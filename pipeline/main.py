"""
Lead Message Pipeline — FastAPI Service

Polls inbound chat messages, qualifies them with a text-generation service,
writes leads and replies back to the store. HTTP is only used for health and
read-only inspection.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from pipeline.config import settings
from pipeline.db.repository import DocumentStore
from pipeline.db.session import async_session, init_db
from pipeline.routes import messages
from pipeline.services.call_sites import CallSites
from pipeline.services.crypto import Decryptor
from pipeline.services.dispatcher import IntakeDispatcher, PollingFeed
from pipeline.services.generation import GenerationClient
from pipeline.services.lead_store import LeadStateStore
from pipeline.services.processor import MessageProcessor

logger = logging.getLogger(__name__)


def build_dispatcher(store: DocumentStore, decryptor: Decryptor) -> tuple[IntakeDispatcher, PollingFeed]:
    """Wire the pipeline components around one shared store and generation client."""
    processor = MessageProcessor(
        store=store,
        leads=LeadStateStore(store),
        call_sites=CallSites(GenerationClient.from_settings(settings)),
        decryptor=decryptor,
    )
    feed = PollingFeed(
        store,
        interval=settings.poll_interval_seconds,
        batch_size=settings.effective_batch_size,
    )
    return IntakeDispatcher(processor, feed, settings.concurrency_limit), feed


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate the key, create tables, then run the dispatcher until shutdown."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Fail fast on a bad key rather than on every message
    decryptor = Decryptor(settings.encryption_key)
    await init_db()

    store = DocumentStore(async_session)
    dispatcher, feed = build_dispatcher(store, decryptor)
    app.state.store = store
    app.state.dispatcher = dispatcher

    task = None
    if settings.dispatcher_enabled:
        task = asyncio.create_task(dispatcher.run())
        logger.info("Lead processor polling every %.1fs", settings.poll_interval_seconds)
    try:
        yield
    finally:
        feed.stop()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await dispatcher.wait_idle()


app = FastAPI(
    title="Lead Message Pipeline",
    description="Queue-driven qualification of inbound chat messages.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(messages.router)


@app.get("/health", tags=["health"])
async def health(request: Request):
    """Health check for load balancers and container orchestration."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "ok",
        "timestamp": time.time(),
        "dispatcher_running": bool(dispatcher and dispatcher.running),
        "in_flight": dispatcher.in_flight if dispatcher else 0,
    }
