import pytest

from pipeline.db.repository import LEADS, QUALIFIED_LEADS
from pipeline.schemas.leads import Priority, escalate


def test_escalate_never_degrades():
    assert escalate("High", "Low") is Priority.HIGH
    assert escalate("Low", "Medium") is Priority.MEDIUM
    assert escalate(None, "high") is Priority.HIGH
    assert escalate("Medium", None) is Priority.MEDIUM


@pytest.mark.asyncio
async def test_upsert_lead_creates_then_updates_in_place(leads, store):
    created = await leads.upsert_lead("s1", intent="study_visa", message_count=1, message_body="first")
    updated = await leads.upsert_lead("s1", intent="quote_request", message_count=2, message_body="second")

    assert updated.id == created.id
    rows = await store.query_equals(LEADS, "sender_key", "s1")
    assert len(rows) == 1
    assert rows[0].intent == "quote_request"
    assert rows[0].message_count == 2
    assert rows[0].first_message_body == "first"


@pytest.mark.asyncio
async def test_upsert_lead_counter_does_not_go_backwards(leads):
    await leads.upsert_lead("s1", intent="study_visa", message_count=3, message_body="x")
    lead = await leads.upsert_lead("s1", intent="study_visa", message_count=2, message_body="y")
    assert lead.message_count == 3


@pytest.mark.asyncio
async def test_qualified_lead_fills_but_never_erases_contact_fields(leads):
    await leads.upsert_qualified_lead(
        "s1", intent="study_visa", message_count=3, message_body="x",
        name=None, email="a@b.com", priority="High",
    )
    await leads.upsert_qualified_lead(
        "s1", intent="study_visa", message_count=4, message_body="y",
        name="Ana Perez", email=None, priority="High",
    )
    merged = await leads.upsert_qualified_lead(
        "s1", intent="study_visa", message_count=5, message_body="z",
        name=None, email=None, priority="Low",
    )

    stored = await leads.find_qualified_lead("s1")
    assert stored.name == "Ana Perez"
    assert stored.email == "a@b.com"
    assert stored.priority == "High"
    assert stored.message_count == 5
    assert merged.name == "Ana Perez"


@pytest.mark.asyncio
async def test_qualified_lead_priority_escalates(leads):
    await leads.upsert_qualified_lead(
        "s1", intent="work_visa", message_count=3, message_body="x",
        name=None, email=None, priority=Priority.LOW,
    )
    await leads.upsert_qualified_lead(
        "s1", intent="work_visa", message_count=4, message_body="y",
        name=None, email=None, priority=Priority.MEDIUM,
    )
    assert (await leads.find_qualified_lead("s1")).priority == "Medium"


@pytest.mark.asyncio
async def test_lost_create_race_merges_into_existing(leads, store, monkeypatch):
    # Another attempt created the record between our lookup and our insert
    await store.insert(
        QUALIFIED_LEADS,
        {"sender_key": "s1", "message_count": 3, "email": "a@b.com", "priority": "Medium"},
    )
    real_find = leads.find_qualified_lead
    lookups = []

    async def stale_first_lookup(sender_key):
        lookups.append(sender_key)
        if len(lookups) == 1:
            return None
        return await real_find(sender_key)

    monkeypatch.setattr(leads, "find_qualified_lead", stale_first_lookup)

    merged = await leads.upsert_qualified_lead(
        "s1", intent="quote_request", message_count=4, message_body="y",
        name="Ana", email=None, priority="High",
    )

    rows = await store.query_equals(QUALIFIED_LEADS, "sender_key", "s1")
    assert len(rows) == 1
    assert rows[0].name == "Ana"
    assert rows[0].email == "a@b.com"
    assert rows[0].priority == "High"
    assert merged.id == rows[0].id
