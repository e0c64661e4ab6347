import pytest
from datetime import datetime, timedelta, timezone
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from linkshort import crud
from linkshort.database import get_db
from linkshort.main import app
from linkshort.models import Link
from linkshort.services import background, links as link_services

OWNER = {"X-User-Id": "user-1"}
IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)

async def insert_link(sessions, short_code, original_url, expires_at=None, owner_id="user-1", custom_short_code=None):
    async with sessions() as db:
        return await crud.create_link(db, Link(
            owner_id=owner_id,
            original_url=original_url,
            short_code=short_code,
            custom_short_code=custom_short_code,
            expires_at=expires_at,
            click_count=0,
        ))

@pytest.fixture
def store_lookups(monkeypatch):
    calls = []
    original = crud.resolve_short_code

    async def counting(db, code):
        calls.append(code)
        return await original(db, code)

    monkeypatch.setattr(crud, "resolve_short_code", counting)
    return calls

@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert "x-request-id" in response.headers

@pytest.mark.asyncio
async def test_health_reports_unreachable_database(client: AsyncClient, unreachable_sessions):
    async def unreachable_db():
        async with unreachable_sessions() as session:
            yield session

    app.dependency_overrides[get_db] = unreachable_db

    response = await client.get("/health")
    assert response.status_code == 503
    assert response.json() == {"status": "db unavailable"}

@pytest.mark.asyncio
async def test_cached_redirect_survives_unreachable_database(client: AsyncClient, cache, unreachable_sessions):
    await cache.set("abc12345", "https://example.com", 60)

    async def unreachable_db():
        async with unreachable_sessions() as session:
            yield session

    app.dependency_overrides[get_db] = unreachable_db

    response = await client.get("/abc12345")
    assert response.status_code == 301
    assert response.headers["location"] == "https://example.com"

@pytest.mark.asyncio
async def test_redirect_end_to_end(client: AsyncClient, sessions):
    await insert_link(sessions, "abc12345", "https://example.com")

    response = await client.get("/abc12345")
    assert response.status_code == 301
    assert response.headers["location"] == "https://example.com"

    response = await client.get("/nonexist1")
    assert response.status_code == 404
    assert response.json() == {"detail": "Link not found"}

@pytest.mark.asyncio
async def test_second_redirect_is_served_from_cache(client: AsyncClient, sessions, cache, store_lookups):
    await insert_link(sessions, "abc12345", "https://example.com")

    first = await client.get("/abc12345")
    await background.drain()
    second = await client.get("/abc12345")

    assert first.headers["location"] == second.headers["location"] == "https://example.com"
    assert store_lookups == ["abc12345"]
    assert await cache.get("abc12345") == "https://example.com"

@pytest.mark.asyncio
async def test_expired_link_is_not_found(client: AsyncClient, sessions, cache):
    await insert_link(sessions, "expired1", "https://example.com", expires_at=datetime.now(timezone.utc) - timedelta(seconds=5))

    response = await client.get("/expired1")
    assert response.status_code == 404
    await background.drain()
    assert await cache.get("expired1") is None

@pytest.mark.asyncio
async def test_redirect_survives_click_log_failure(client: AsyncClient, sessions, monkeypatch):
    await insert_link(sessions, "abc12345", "https://example.com")

    async def failing_insert(db, event):
        raise OperationalError("INSERT INTO click_logs", {}, Exception("connection reset"))

    monkeypatch.setattr(crud, "insert_click_log", failing_insert)

    response = await client.get("/abc12345")
    assert response.status_code == 301
    assert response.headers["location"] == "https://example.com"

@pytest.mark.asyncio
async def test_create_link_and_redirect(client: AsyncClient):
    payload = {"original_url": "https://www.example.com/docs?page=2", "custom_short_code": "docs-page"}

    response = await client.post("/v1/links", json=payload, headers=OWNER)
    assert response.status_code == 201
    data = response.json()
    assert data["original_url"] == "https://www.example.com/docs?page=2"
    assert data["custom_short_code"] == "docs-page"
    assert len(data["short_code"]) == 8
    assert data["short_url"] == "http://localhost:8000/docs-page"
    assert data["click_count"] == 0
    assert data["expired_at"] is None

    for code in (data["short_code"], "docs-page"):
        response = await client.get(f"/{code}")
        assert response.status_code == 301
        assert response.headers["location"] == "https://www.example.com/docs?page=2"

@pytest.mark.asyncio
async def test_custom_code_conflict(client: AsyncClient):
    payload = {"original_url": "https://example.com", "custom_short_code": "taken"}
    assert (await client.post("/v1/links", json=payload, headers=OWNER)).status_code == 201

    response = await client.post("/v1/links", json=payload, headers={"X-User-Id": "user-2"})
    assert response.status_code == 409

@pytest.mark.asyncio
async def test_custom_code_may_not_shadow_generated_code(client: AsyncClient, sessions):
    await insert_link(sessions, "abc12345", "https://example.com")

    response = await client.post(
        "/v1/links",
        json={"original_url": "https://evil.example.com", "custom_short_code": "abc12345"},
        headers=OWNER,
    )
    assert response.status_code == 409

@pytest.mark.asyncio
async def test_generated_code_collision_is_retried(client: AsyncClient, sessions, monkeypatch):
    await insert_link(sessions, "abc12345", "https://example.com")
    codes = iter(["abc12345", "abc12345", "def67890"])
    monkeypatch.setattr(link_services, "generate_short_code", lambda: next(codes))

    response = await client.post("/v1/links", json={"original_url": "https://other.example.com"}, headers=OWNER)
    assert response.status_code == 201
    assert response.json()["short_code"] == "def67890"

@pytest.mark.asyncio
async def test_generated_code_collisions_are_bounded(client: AsyncClient, sessions, monkeypatch):
    await insert_link(sessions, "abc12345", "https://example.com")
    calls = []

    def always_colliding():
        calls.append(1)
        return "abc12345"

    monkeypatch.setattr(link_services, "generate_short_code", always_colliding)

    response = await client.post("/v1/links", json={"original_url": "https://other.example.com"}, headers=OWNER)
    assert response.status_code == 409
    assert len(calls) == 5

@pytest.mark.asyncio
async def test_generated_code_may_not_shadow_custom_code(client: AsyncClient, sessions, monkeypatch):
    await insert_link(sessions, "zzz99999", "https://example.com", custom_short_code="abc12345")
    codes = iter(["abc12345", "def67890"])
    monkeypatch.setattr(link_services, "generate_short_code", lambda: next(codes))

    response = await client.post("/v1/links", json={"original_url": "https://other.example.com"}, headers=OWNER)
    assert response.status_code == 201
    assert response.json()["short_code"] == "def67890"

    response = await client.get("/abc12345")
    assert response.headers["location"] == "https://example.com"

@pytest.mark.asyncio
async def test_redirect_location_matches_stored_url_exactly(client: AsyncClient):
    url = "https://example.com/p/a%20b?x=1&y=(2)*3;z=!@$,'~#frag"
    created = (await client.post("/v1/links", json={"original_url": url}, headers=OWNER)).json()

    response = await client.get(f"/{created['short_code']}")
    assert response.status_code == 301
    assert response.headers["location"] == url

@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"original_url": "not a url"},
    {"original_url": "ftp://example.com/file"},
    {"original_url": "https://example.com", "custom_short_code": "health"},
    {"original_url": "https://example.com", "custom_short_code": "has space"},
    {"original_url": "https://example.com", "custom_short_code": "ab"},
    {"original_url": "https://example.com", "expired_at": "2000-01-01T00:00:00Z"},
    {"original_url": "https://example.com/a|b"},
    {"original_url": "https://example.com/caf\u00e9"},
])
async def test_create_link_validation(client: AsyncClient, payload):
    response = await client.post("/v1/links", json=payload, headers=OWNER)
    assert response.status_code == 422

@pytest.mark.asyncio
async def test_owner_header_is_required(client: AsyncClient):
    response = await client.post("/v1/links", json={"original_url": "https://example.com"})
    assert response.status_code == 401
    assert (await client.get("/v1/links")).status_code == 401

@pytest.mark.asyncio
async def test_link_detail_reports_clicks(client: AsyncClient):
    created = (await client.post("/v1/links", json={"original_url": "https://example.com"}, headers=OWNER)).json()

    await client.get(f"/{created['short_code']}", headers={"User-Agent": IPHONE})
    await client.get(f"/{created['short_code']}", headers={"Referer": "https://www.facebook.com/"})
    await background.drain()

    response = await client.get(f"/v1/links/{created['id']}", headers=OWNER)
    assert response.status_code == 200
    data = response.json()
    assert data["click_count"] == 2
    devices = {item["type"]: item["value"] for item in data["device_breakdowns"]}
    assert devices == {"mobile": 1, "desktop": 1}
    assert data["top_countries"] == [{"type": "unknown", "value": 2}]

@pytest.mark.asyncio
async def test_link_detail_is_owner_scoped(client: AsyncClient):
    created = (await client.post("/v1/links", json={"original_url": "https://example.com"}, headers=OWNER)).json()

    response = await client.get(f"/v1/links/{created['id']}", headers={"X-User-Id": "user-2"})
    assert response.status_code == 404

@pytest.mark.asyncio
async def test_list_links_paginates_and_orders(client: AsyncClient):
    ids = []
    for n in range(3):
        created = await client.post("/v1/links", json={"original_url": f"https://example.com/{n}"}, headers=OWNER)
        ids.append(created.json()["id"])
    await client.post("/v1/links", json={"original_url": "https://example.com/other"}, headers={"X-User-Id": "user-2"})

    popular = (await client.get("/v1/links", headers=OWNER)).json()
    assert len(popular) == 3
    target = next(link for link in popular if link["id"] == ids[1])
    await client.get(f"/{target['short_code']}")

    by_counts = (await client.get("/v1/links", params={"order_by": "counts"}, headers=OWNER)).json()
    assert by_counts[0]["id"] == ids[1]
    assert by_counts[0]["click_count"] == 1

    page_two = (await client.get("/v1/links", params={"page": 2, "limit": 2}, headers=OWNER)).json()
    assert len(page_two) == 1

    response = await client.get("/v1/links", params={"order_by": "popularity"}, headers=OWNER)
    assert response.status_code == 400

@pytest.mark.asyncio
async def test_delete_link_invalidates_cache(client: AsyncClient, cache):
    created = (await client.post(
        "/v1/links",
        json={"original_url": "https://example.com", "custom_short_code": "gone-soon"},
        headers=OWNER,
    )).json()

    assert (await client.get("/gone-soon")).status_code == 301
    await background.drain()
    assert await cache.get("gone-soon") == "https://example.com"

    response = await client.delete(f"/v1/links/{created['id']}", headers={"X-User-Id": "user-2"})
    assert response.status_code == 404

    response = await client.delete(f"/v1/links/{created['id']}", headers=OWNER)
    assert response.status_code == 204
    assert await cache.get("gone-soon") is None
    assert (await client.get("/gone-soon")).status_code == 404
    assert (await client.get(f"/{created['short_code']}")).status_code == 404

@pytest.mark.asyncio
async def test_delete_clears_cache_fill_that_lands_late(client: AsyncClient, cache):
    created = (await client.post(
        "/v1/links",
        json={"original_url": "https://example.com", "custom_short_code": "late-fill"},
        headers=OWNER,
    )).json()

    response = await client.delete(f"/v1/links/{created['id']}", headers=OWNER)
    assert response.status_code == 204

    # A redirect that resolved before the delete finishes its cache write now
    await cache.set("late-fill", "https://example.com", 60)
    assert await cache.get("late-fill") == "https://example.com"

    await background.drain()
    assert await cache.get("late-fill") is None
    assert (await client.get("/late-fill")).status_code == 404

@pytest.mark.asyncio
async def test_metrics(client: AsyncClient, sessions):
    await insert_link(sessions, "abc12345", "https://example.com")
    await client.get("/abc12345")

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "redirect_total" in response.text
    assert 'path="/{code}"' in response.text
