import os

# Set test environment variables before importing the app
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("DISPATCHER_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from pipeline.db.repository import RAW_MESSAGES, DocumentStore
from pipeline.db.session import init_db, make_session_factory
from pipeline.services.call_sites import CallSites
from pipeline.services.crypto import Decryptor
from pipeline.services.lead_store import LeadStateStore
from pipeline.services.processor import MessageProcessor
from tests.helpers import TEST_KEY, ScriptedGeneration


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def store(engine):
    return DocumentStore(make_session_factory(engine))


@pytest.fixture
def leads(store):
    return LeadStateStore(store)


@pytest.fixture
def generation():
    return ScriptedGeneration()


@pytest.fixture
def decryptor():
    return Decryptor(TEST_KEY)


@pytest.fixture
def processor(store, leads, generation, decryptor):
    return MessageProcessor(
        store=store,
        leads=leads,
        call_sites=CallSites(generation),
        decryptor=decryptor,
    )


@pytest.fixture
def add_message(store):
    """Insert a raw message the way the external producer would."""

    async def _add(sender_key="s1", body=None, **fields):
        if body is not None:
            fields["body"] = body
        return await store.insert(RAW_MESSAGES, {"sender_key": sender_key, **fields})

    return _add
