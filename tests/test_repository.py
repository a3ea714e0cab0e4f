import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pipeline.db.repository import LEADS, RAW_MESSAGES


@pytest.mark.asyncio
async def test_insert_and_get_by_id(store, add_message):
    message = await add_message("s1", body="hello")

    loaded = await store.get_by_id(RAW_MESSAGES, message.id)
    assert loaded.sender_key == "s1"
    assert loaded.body == "hello"
    assert loaded.processed is False
    assert loaded.processing is False


@pytest.mark.asyncio
async def test_get_by_id_missing(store):
    assert await store.get_by_id(RAW_MESSAGES, "does-not-exist") is None


@pytest.mark.asyncio
async def test_query_and_count_equals(store, add_message):
    await add_message("s1", body="one")
    await add_message("s1", body="two")
    await add_message("s2", body="other")

    assert len(await store.query_equals(RAW_MESSAGES, "sender_key", "s1")) == 2
    assert len(await store.query_equals(RAW_MESSAGES, "sender_key", "s1", limit=1)) == 1
    assert await store.count_equals(RAW_MESSAGES, "sender_key", "s1") == 2
    assert await store.count_equals(RAW_MESSAGES, "sender_key", "nobody") == 0


@pytest.mark.asyncio
async def test_update_fields_is_partial(store, add_message):
    message = await add_message("s1", body="hello")

    await store.update_fields(RAW_MESSAGES, message.id, {"auto_reply_text": "hi!"})

    loaded = await store.get_by_id(RAW_MESSAGES, message.id)
    assert loaded.auto_reply_text == "hi!"
    assert loaded.body == "hello"


@pytest.mark.asyncio
async def test_update_fields_requires_fields(store, add_message):
    message = await add_message("s1", body="hello")
    with pytest.raises(ValueError):
        await store.update_fields(RAW_MESSAGES, message.id, {})


@pytest.mark.asyncio
async def test_unknown_collection(store):
    with pytest.raises(ValueError, match="Unknown collection"):
        await store.get_by_id("contacts", "x")


# ── Claim ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_claim_sets_processing(store, add_message):
    message = await add_message("s1", body="hello")

    assert await store.claim(message.id) is True
    assert (await store.get_by_id(RAW_MESSAGES, message.id)).processing is True
    assert await store.claim(message.id) is False


@pytest.mark.asyncio
async def test_concurrent_claims_only_one_wins(store, add_message):
    message = await add_message("s1", body="hello")

    results = await asyncio.gather(*(store.claim(message.id) for _ in range(5)))

    assert sorted(results) == [False, False, False, False, True]


@pytest.mark.asyncio
async def test_processed_message_cannot_be_claimed(store, add_message):
    message = await add_message("s1", body="hello", processed=True)
    assert await store.claim(message.id) is False


# ── Polling ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fetch_eligible_filters_and_orders(store, add_message):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    newest = await add_message("s1", body="3", received_at=base + timedelta(minutes=3))
    oldest = await add_message("s1", body="1", received_at=base + timedelta(minutes=1))
    await add_message("s1", body="done", processed=True, received_at=base)
    await add_message("s1", body="busy", processing=True, received_at=base)

    eligible = await store.fetch_eligible(limit=10)

    assert [m.id for m in eligible] == [oldest.id, newest.id]
    assert len(await store.fetch_eligible(limit=1)) == 1


@pytest.mark.asyncio
async def test_sender_key_is_unique_for_leads(store):
    from sqlalchemy.exc import IntegrityError

    await store.insert(LEADS, {"sender_key": "s1", "message_count": 1})
    with pytest.raises(IntegrityError):
        await store.insert(LEADS, {"sender_key": "s1", "message_count": 2})
