import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from database import get_db
from main import app
from services.session_token import create_session_token


TEST_RECRUITER_ID = "api-flow-recruiter"
TEST_AUTH_HEADER = {
    "Authorization": f"Bearer {create_session_token(TEST_RECRUITER_ID, email='recruiter@agency.example')['token']}"
}

PROFILES = [
    {
        "id": "go-us-1",
        "full_name": "Ada Gopher",
        "headline": "Senior Go Engineer",
        "country": "US",
        "skills": ["Go"],
        "experience_years": 7,
        "email": "ada@candidates.example",
        "resume_file_url": "https://files.example/ada.pdf",
    },
    {
        "id": "go-us-2",
        "full_name": "Ben Channel",
        "headline": "Platform Engineer",
        "country": "US",
        "skills": ["Go"],
        "experience_years": 3,
        "email": "ben@candidates.example",
    },
    {
        "id": "go-de-1",
        "full_name": "Clara Routine",
        "country": "DE",
        "skills": ["Go"],
        "experience_years": 4,
    },
]


@pytest_asyncio.fixture
async def integration_client(session_maker, seed_profiles):
    await seed_profiles(*PROFILES)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.mark.asyncio
async def test_requests_without_session_are_rejected(integration_client):
    resp = await integration_client.get("/buckets")
    assert resp.status_code == 401

    resp = await integration_client.get("/buckets", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_search_unlock_and_bucket_flow(integration_client):
    topup = await integration_client.post("/billing/topup", json={"credits": 2}, headers=TEST_AUTH_HEADER)
    assert topup.status_code == 200
    assert topup.json()["balance_after"] == 2

    search = await integration_client.post(
        "/cv-search/search",
        json={"skills": ["go"], "country": "US"},
        headers=TEST_AUTH_HEADER,
    )
    assert search.status_code == 200
    search_body = search.json()
    assert search_body["total_count"] == 2
    assert all("email" not in row for row in search_body["results"])

    unlock = await integration_client.post("/cv-search/unlock/go-us-1", headers=TEST_AUTH_HEADER)
    assert unlock.status_code == 200
    assert unlock.json()["status"] == "unlocked"
    assert unlock.json()["credits"]["balance_after"] == 1

    profile = await integration_client.get("/cv-search/profiles/go-us-1", headers=TEST_AUTH_HEADER)
    assert profile.status_code == 200
    assert profile.json()["revealed_data"]["email"] == "ada@candidates.example"

    locked = await integration_client.get("/cv-search/profiles/go-us-2", headers=TEST_AUTH_HEADER)
    assert locked.status_code == 403
    assert locked.json()["detail"]["code"] == "locked"

    download = await integration_client.get("/cv-search/download/go-us-1", headers=TEST_AUTH_HEADER)
    assert download.status_code == 200
    assert download.json()["download_url"] == "https://files.example/ada.pdf"

    bucket = await integration_client.post("/buckets", json={"name": "Go shortlist"}, headers=TEST_AUTH_HEADER)
    assert bucket.status_code == 200
    bucket_id = bucket.json()["id"]

    added = await integration_client.post(
        f"/buckets/{bucket_id}/resumes",
        json={"resume_ids": ["go-us-1", "go-us-2"]},
        headers=TEST_AUTH_HEADER,
    )
    assert added.status_code == 200
    assert added.json()["added_count"] == 2

    items = await integration_client.get(f"/buckets/{bucket_id}/resumes", headers=TEST_AUTH_HEADER)
    assert items.status_code == 200
    assert [row["is_unlocked"] for row in items.json()["items"]] == [True, False]

    detail = await integration_client.get(f"/buckets/{bucket_id}", headers=TEST_AUTH_HEADER)
    assert detail.json()["unlocked_count"] == 1
    assert detail.json()["locked_count"] == 1

    bulk = await integration_client.post(
        "/cv-search/bulk-unlock",
        json={"resume_ids": ["go-us-2", "go-de-1"], "source": "bucket"},
        headers=TEST_AUTH_HEADER,
    )
    assert bulk.status_code == 402
    assert bulk.json()["detail"]["required"] == 2

    credits = await integration_client.get("/cv-search/credits", headers=TEST_AUTH_HEADER)
    assert credits.json()["credits_remaining"] == 1
    assert credits.json()["active_unlocks"] == 1

    history = await integration_client.get("/cv-search/search-history", headers=TEST_AUTH_HEADER)
    assert history.status_code == 200
    entries = history.json()["history"]
    assert [entry["id"] for entry in entries] == [search_body["search_id"]]

    trend = await integration_client.get(
        f"/cv-search/search-history/{search_body['search_id']}/trend",
        headers=TEST_AUTH_HEADER,
    )
    assert [sample["result_count"] for sample in trend.json()["samples"]] == [2]


@pytest.mark.asyncio
async def test_bucket_reorder_conflict_is_reported(integration_client):
    bucket = await integration_client.post("/buckets", json={"name": "Reorder"}, headers=TEST_AUTH_HEADER)
    bucket_id = bucket.json()["id"]
    await integration_client.post(
        f"/buckets/{bucket_id}/resumes",
        json={"resume_ids": ["go-us-1", "go-us-2", "go-de-1"]},
        headers=TEST_AUTH_HEADER,
    )
    listing = (await integration_client.get(f"/buckets/{bucket_id}/resumes", headers=TEST_AUTH_HEADER)).json()
    item_ids = [row["id"] for row in listing["items"]]

    conflict = await integration_client.post(
        f"/buckets/{bucket_id}/reorder",
        json={"item_ids": item_ids[:2]},
        headers=TEST_AUTH_HEADER,
    )
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["code"] == "conflict"

    reordered = await integration_client.post(
        f"/buckets/{bucket_id}/reorder",
        json={"item_ids": list(reversed(item_ids)), "expected_version": listing["version"]},
        headers=TEST_AUTH_HEADER,
    )
    assert reordered.status_code == 200
    listed = (await integration_client.get(f"/buckets/{bucket_id}/resumes", headers=TEST_AUTH_HEADER)).json()["items"]
    assert [row["id"] for row in listed] == list(reversed(item_ids))

    empty = await integration_client.post("/cv-search/search", json={"page": 1}, headers=TEST_AUTH_HEADER)
    assert empty.status_code == 422
