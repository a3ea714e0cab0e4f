import httpx
import pytest
import pytest_asyncio

from pipeline.main import app
from pipeline.routes.messages import get_store


@pytest_asyncio.fixture
async def client(store):
    app.dependency_overrides[get_store] = lambda: store
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["in_flight"] == 0
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_get_message_after_processing(client, processor, add_message):
    message = await add_message("s1", body="What is the process for a study visa?")
    await processor.process(message.id)

    response = await client.get(f"/messages/{message.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] is True
    assert data["processing"] is False
    assert data["is_lead"] is True
    assert data["reply_pending"] is True
    assert data["metadata"]["intent"] == "study_visa"


@pytest.mark.asyncio
async def test_get_unknown_message(client):
    response = await client.get("/messages/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_sender_leads(client, leads):
    await leads.upsert_lead("s1", intent="quote_request", message_count=3, message_body="quote?")
    await leads.upsert_qualified_lead(
        "s1", intent="quote_request", message_count=3, message_body="quote?",
        name=None, email="a@b.com", priority="High",
    )

    response = await client.get("/leads/s1")

    assert response.status_code == 200
    data = response.json()
    assert data["lead"]["message_count"] == 3
    assert data["qualified_lead"]["email"] == "a@b.com"
    assert data["qualified_lead"]["name"] is None
    assert data["qualified_lead"]["priority"] == "High"


@pytest.mark.asyncio
async def test_get_sender_without_leads(client):
    response = await client.get("/leads/unknown-sender")
    assert response.status_code == 404
