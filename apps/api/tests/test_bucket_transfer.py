import pytest

from services.bucket_transfer import bulk_remove_service, transfer_items_service
from services.buckets import (
    add_items_service,
    create_bucket_service,
    get_bucket_activity_service,
    list_items_service,
    update_item_service,
)
from services.errors import ValidationFailedError
from services.unlocks import unlock_resume_service


OWNER_ID = "transfer-owner"


async def _setup(db_session, seed_recruiter, seed_profiles):
    await seed_recruiter(OWNER_ID, credits=5)
    await seed_profiles(
        *[{"id": f"cv-{index}", "full_name": f"Candidate {index}", "country": "DE"} for index in range(1, 5)]
    )
    source = await create_bucket_service(owner_id=OWNER_ID, payload={"name": "Inbox"}, db=db_session)
    target = await create_bucket_service(owner_id=OWNER_ID, payload={"name": "Interview"}, db=db_session)
    await add_items_service(
        owner_id=OWNER_ID,
        bucket_id=source["id"],
        resume_ids=["cv-1", "cv-2", "cv-3", "cv-4"],
        db=db_session,
    )
    return source["id"], target["id"]


async def _items(db_session, bucket_id):
    listing = await list_items_service(
        owner_id=OWNER_ID,
        bucket_id=bucket_id,
        page=1,
        page_size=100,
        sort_by="display_order",
        order="asc",
        rating=None,
        status=None,
        db=db_session,
    )
    return listing["items"]


@pytest.mark.asyncio
async def test_copy_keeps_source_and_carries_item_details(db_session, seed_recruiter, seed_profiles):
    source_id, target_id = await _setup(db_session, seed_recruiter, seed_profiles)
    source_items = await _items(db_session, source_id)
    await update_item_service(
        owner_id=OWNER_ID,
        bucket_id=source_id,
        item_id=source_items[0]["id"],
        changes={"rating": 4, "notes": "Referred"},
        db=db_session,
    )
    await unlock_resume_service(owner_id=OWNER_ID, resume_id="cv-1", source="bucket", db=db_session)

    result = await transfer_items_service(
        owner_id=OWNER_ID,
        source_bucket_id=source_id,
        target_bucket_id=target_id,
        item_ids=[source_items[0]["id"], source_items[1]["id"]],
        keep_in_source=True,
        db=db_session,
    )
    assert result["mode"] == "copy"
    assert result["added_count"] == 2
    assert result["removed_count"] == 0
    assert result["unlocked_count"] == 1
    assert result["locked_count"] == 1

    assert len(await _items(db_session, source_id)) == 4
    target_items = await _items(db_session, target_id)
    assert [item["resume_id"] for item in target_items] == ["cv-1", "cv-2"]
    assert target_items[0]["rating"] == 4
    assert target_items[0]["notes"] == "Referred"


@pytest.mark.asyncio
async def test_move_skips_resumes_already_in_target(db_session, seed_recruiter, seed_profiles):
    source_id, target_id = await _setup(db_session, seed_recruiter, seed_profiles)
    await add_items_service(owner_id=OWNER_ID, bucket_id=target_id, resume_ids=["cv-2"], db=db_session)
    source_items = await _items(db_session, source_id)

    result = await transfer_items_service(
        owner_id=OWNER_ID,
        source_bucket_id=source_id,
        target_bucket_id=target_id,
        item_ids=[source_items[1]["id"], source_items[2]["id"], "missing-item"],
        keep_in_source=False,
        db=db_session,
    )
    statuses = {row["item_id"]: row["status"] for row in result["results"]}
    assert statuses == {
        source_items[1]["id"]: "already_in_target",
        source_items[2]["id"]: "added",
        "missing-item": "not_found",
    }
    assert result["added_count"] == 1
    assert result["removed_count"] == 2
    assert result["failed_count"] == 1

    remaining = await _items(db_session, source_id)
    assert [item["resume_id"] for item in remaining] == ["cv-1", "cv-4"]
    assert [item["display_order"] for item in remaining] == [0, 1]
    target_items = await _items(db_session, target_id)
    assert [item["resume_id"] for item in target_items] == ["cv-2", "cv-3"]

    activity = await get_bucket_activity_service(owner_id=OWNER_ID, bucket_id=source_id, page=1, limit=1, db=db_session)
    latest = activity["activity"][0]
    assert latest["action"] == "items_moved"
    assert latest["metadata"]["target_bucket_id"] == target_id
    assert latest["metadata"]["removed_count"] == 2


@pytest.mark.asyncio
async def test_transfer_into_the_same_bucket_is_rejected(db_session, seed_recruiter, seed_profiles):
    source_id, _ = await _setup(db_session, seed_recruiter, seed_profiles)
    items = await _items(db_session, source_id)

    with pytest.raises(ValidationFailedError):
        await transfer_items_service(
            owner_id=OWNER_ID,
            source_bucket_id=source_id,
            target_bucket_id=source_id,
            item_ids=[items[0]["id"]],
            keep_in_source=False,
            db=db_session,
        )
    assert len(await _items(db_session, source_id)) == 4


@pytest.mark.asyncio
async def test_bulk_remove_reports_absent_items_and_is_repeatable(db_session, seed_recruiter, seed_profiles):
    source_id, _ = await _setup(db_session, seed_recruiter, seed_profiles)
    items = await _items(db_session, source_id)
    doomed = [items[0]["id"], items[2]["id"]]

    first = await bulk_remove_service(owner_id=OWNER_ID, bucket_id=source_id, item_ids=doomed, db=db_session)
    assert first["removed_count"] == 2
    assert {row["status"] for row in first["results"]} == {"removed"}

    second = await bulk_remove_service(owner_id=OWNER_ID, bucket_id=source_id, item_ids=doomed, db=db_session)
    assert second["removed_count"] == 0
    assert {row["status"] for row in second["results"]} == {"absent"}
    assert second["version"] == first["version"] + 1

    remaining = await _items(db_session, source_id)
    assert [item["resume_id"] for item in remaining] == ["cv-2", "cv-4"]
    assert [item["display_order"] for item in remaining] == [0, 1]
