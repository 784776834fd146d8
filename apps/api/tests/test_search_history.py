from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from database import utcnow
from models.saved_search import SavedSearch
from services.errors import NotFoundError, TransientStoreError, ValidationFailedError
from services.search_filters import canonicalize_filters, filters_hash, parse_filters
from services.search_history import (
    delete_saved_search_service,
    list_search_history_service,
    rename_saved_search_service,
    resample_saved_searches_service,
    rerun_search_service,
    search_and_record_service,
    trend_service,
)


OWNER_ID = "history-owner"

PROFILES = [
    {
        "id": "go-us-1",
        "full_name": "Ada Gopher",
        "headline": "Senior Go Engineer",
        "country": "US",
        "skills": ["Go", "Kubernetes"],
        "experience_years": 7,
        "open_to_work": True,
    },
    {
        "id": "go-us-2",
        "full_name": "Ben Channel",
        "headline": "Platform Engineer",
        "country": "us",
        "skills": ["go", "Terraform"],
        "experience_years": 3,
    },
    {
        "id": "go-de-1",
        "full_name": "Clara Routine",
        "headline": "Backend Engineer",
        "country": "DE",
        "skills": ["Go"],
        "experience_years": 4,
    },
    {
        "id": "py-us-1",
        "full_name": "Dan Snake",
        "headline": "Python Developer",
        "country": "US",
        "skills": ["Python"],
        "experience_years": 2,
    },
]


async def _saved_searches(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(SavedSearch).where(SavedSearch.owner_id == OWNER_ID))
        return list(result.scalars().all())


def test_equivalent_filters_share_a_canonical_form():
    first, _ = parse_filters({"skills": ["Go", " go "], "country": "US", "page": 2, "sort_by": "experience"})
    second, _ = parse_filters(
        {
            "skills": "go",
            "country": " US ",
            "min_experience_years": 0,
            "skills_match_all": False,
            "language_proficiency": "native",
        }
    )
    assert canonicalize_filters(first) == canonicalize_filters(second) == {"skills": ["go"], "country": "us"}
    assert filters_hash(canonicalize_filters(first)) == filters_hash(canonicalize_filters(second))


def test_parse_filters_rejects_empty_unknown_and_inverted_ranges():
    with pytest.raises(ValidationFailedError):
        parse_filters({"page": 1, "skills": []})
    with pytest.raises(ValidationFailedError):
        parse_filters({"skils": ["go"]})
    with pytest.raises(ValidationFailedError):
        parse_filters({"skills": ["go"], "min_experience_years": 10, "max_experience_years": 2})
    with pytest.raises(ValidationFailedError):
        parse_filters({"skills": ["go"], "sort_by": "salary"})


@pytest.mark.asyncio
async def test_repeated_search_reuses_history_entry(db_session, session_maker, seed_recruiter, seed_profiles):
    await seed_recruiter(OWNER_ID)
    await seed_profiles(*PROFILES)

    first = await search_and_record_service(
        owner_id=OWNER_ID,
        payload={"skills": ["go"], "country": "US"},
        db=db_session,
    )
    assert first["total_count"] == 2
    assert {row["resume_id"] for row in first["results"]} == {"go-us-1", "go-us-2"}
    assert all(row["is_unlocked"] is False for row in first["results"])
    assert "email" not in first["results"][0]

    second = await search_and_record_service(
        owner_id=OWNER_ID,
        payload={"country": "US", "skills": ["Go"], "page": 1, "page_size": 1, "sort_by": "experience"},
        db=db_session,
    )
    assert second["search_id"] == first["search_id"]
    assert [row["resume_id"] for row in second["results"]] == ["go-us-1"]
    assert second["has_more"] is True

    saved = await _saved_searches(session_maker)
    assert len(saved) == 1
    assert saved[0].use_count == 2
    assert saved[0].latest_result_count == 2

    trend = await trend_service(owner_id=OWNER_ID, saved_search_id=first["search_id"], limit=10, db=db_session)
    assert [sample["result_count"] for sample in trend["samples"]] == [2, 2]
    assert trend["result_count_change"] == 0


@pytest.mark.asyncio
async def test_rerun_replays_stored_filters_and_tracks_change(db_session, session_maker, seed_recruiter, seed_profiles):
    await seed_recruiter(OWNER_ID)
    await seed_profiles(*PROFILES)

    recorded = await search_and_record_service(owner_id=OWNER_ID, payload={"skills": ["go"]}, db=db_session)
    assert recorded["total_count"] == 3

    await seed_profiles(
        {"id": "go-fr-1", "full_name": "Eve Lambda", "country": "FR", "skills": ["Go"], "experience_years": 1}
    )
    rerun = await rerun_search_service(
        owner_id=OWNER_ID,
        saved_search_id=recorded["search_id"],
        page=1,
        page_size=20,
        sort_by=None,
        sort_order=None,
        db=db_session,
    )
    assert rerun["total_count"] == 4
    assert rerun["filters"] == {"skills": ["go"]}

    trend = await trend_service(owner_id=OWNER_ID, saved_search_id=recorded["search_id"], limit=10, db=db_session)
    assert [sample["trigger"] for sample in trend["samples"]] == ["search", "rerun"]
    assert trend["previous_result_count"] == 3
    assert trend["latest_result_count"] == 4
    assert trend["result_count_change"] == 1

    saved = await _saved_searches(session_maker)
    assert saved[0].use_count == 2


@pytest.mark.asyncio
async def test_scheduled_resample_appends_samples_without_counting_use(db_session, session_maker, seed_recruiter, seed_profiles):
    await seed_recruiter(OWNER_ID)
    await seed_profiles(*PROFILES)
    recorded = await search_and_record_service(owner_id=OWNER_ID, payload={"country": "DE"}, db=db_session)

    outcome = await resample_saved_searches_service(db_session, now=utcnow() + timedelta(hours=1))
    assert outcome == {"sampled": 1, "failed": 0}

    trend = await trend_service(owner_id=OWNER_ID, saved_search_id=recorded["search_id"], limit=10, db=db_session)
    assert [sample["trigger"] for sample in trend["samples"]] == ["search", "scheduled"]
    saved = await _saved_searches(session_maker)
    assert saved[0].use_count == 1


@pytest.mark.asyncio
async def test_history_listing_rename_and_delete(db_session, seed_recruiter, seed_profiles):
    await seed_recruiter(OWNER_ID)
    await seed_profiles(*PROFILES)
    older = await search_and_record_service(owner_id=OWNER_ID, payload={"skills": ["python"]}, db=db_session)
    newer = await search_and_record_service(owner_id=OWNER_ID, payload={"keyword_search": "platform"}, db=db_session)

    history = await list_search_history_service(owner_id=OWNER_ID, page=1, page_size=10, db=db_session)
    assert [row["id"] for row in history["history"]] == [newer["search_id"], older["search_id"]]

    renamed = await rename_saved_search_service(
        owner_id=OWNER_ID,
        saved_search_id=older["search_id"],
        search_name="  Python   bench ",
        db=db_session,
    )
    assert renamed["search_name"] == "Python bench"

    await delete_saved_search_service(owner_id=OWNER_ID, saved_search_id=older["search_id"], db=db_session)
    with pytest.raises(NotFoundError):
        await trend_service(owner_id=OWNER_ID, saved_search_id=older["search_id"], limit=5, db=db_session)
    with pytest.raises(NotFoundError):
        await trend_service(owner_id="someone-else", saved_search_id=newer["search_id"], limit=5, db=db_session)


@pytest.mark.asyncio
async def test_case_variants_of_text_filters_share_one_history_entry(
    db_session, session_maker, seed_recruiter, seed_profiles
):
    await seed_recruiter(OWNER_ID)
    await seed_profiles(*PROFILES)

    upper = await search_and_record_service(
        owner_id=OWNER_ID, payload={"skills": ["go"], "country": "US"}, db=db_session
    )
    lower = await search_and_record_service(
        owner_id=OWNER_ID, payload={"skills": ["go"], "country": "us"}, db=db_session
    )
    assert upper["total_count"] == lower["total_count"] == 2
    assert upper["search_id"] == lower["search_id"]

    keyword = await search_and_record_service(owner_id=OWNER_ID, payload={"keyword_search": "Python"}, db=db_session)
    folded = await search_and_record_service(owner_id=OWNER_ID, payload={"keyword_search": "python"}, db=db_session)
    assert keyword["total_count"] == folded["total_count"] == 1
    assert keyword["search_id"] == folded["search_id"]

    saved = await _saved_searches(session_maker)
    assert len(saved) == 2
    assert sorted(row.use_count for row in saved) == [2, 2]


@pytest.mark.asyncio
async def test_history_writes_surface_store_failures_as_retriable(
    db_session, seed_recruiter, seed_profiles, monkeypatch
):
    await seed_recruiter(OWNER_ID)
    await seed_profiles(*PROFILES)
    recorded = await search_and_record_service(owner_id=OWNER_ID, payload={"skills": ["go"]}, db=db_session)

    async def _broken_commit():
        raise SQLAlchemyError("database unavailable")

    monkeypatch.setattr(db_session, "commit", _broken_commit)
    with pytest.raises(TransientStoreError) as exc_info:
        await rename_saved_search_service(
            owner_id=OWNER_ID,
            saved_search_id=recorded["search_id"],
            search_name="Gophers",
            db=db_session,
        )
    assert exc_info.value.status_code == 503
    with pytest.raises(TransientStoreError):
        await delete_saved_search_service(owner_id=OWNER_ID, saved_search_id=recorded["search_id"], db=db_session)

    monkeypatch.undo()
    trend = await trend_service(owner_id=OWNER_ID, saved_search_id=recorded["search_id"], limit=5, db=db_session)
    assert [sample["result_count"] for sample in trend["samples"]] == [3]
