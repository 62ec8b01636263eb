import pytest
from httpx import ASGITransport, AsyncClient

from conftest import InMemoryNoteStore, make_settings
from notesync.main import create_app


@pytest.mark.asyncio
async def test_health_endpoint() -> None:
    app = create_app(make_settings(), store=InMemoryNoteStore())
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/health")
        head = await client.head("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert head.status_code == 200


@pytest.mark.asyncio
async def test_health_reports_unreachable_store() -> None:
    store = InMemoryNoteStore()
    store.fail.add("health")
    app = create_app(make_settings(), store=store)
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/health")

    assert response.status_code == 503
    assert response.json() == {"status": "unhealthy"}
