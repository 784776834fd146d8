import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from database import utcnow
from models.credit_account import CreditAccount
from models.credit_ledger import CreditLedger
from models.resume_profile import ResumeProfile
from models.unlock_grant import UnlockGrant
from services import unlocks
from services.errors import InsufficientCreditsError, ResumeLockedError, TransientStoreError
from services.unlocks import (
    bulk_unlock_service,
    get_unlock_status_service,
    list_access_logs_service,
    revealed_data_service,
    unlock_resume_service,
)


def _profile(resume_id, **overrides):
    data = {
        "id": resume_id,
        "full_name": f"Candidate {resume_id}",
        "headline": "Backend Engineer",
        "country": "US",
        "skills": ["Go", "Python"],
        "experience_years": 5,
        "email": f"{resume_id}@candidates.example",
        "phone": "+1-555-0100",
        "resume_file_url": f"https://files.example/{resume_id}.pdf",
    }
    data.update(overrides)
    return data


async def _account(session_maker, owner_id):
    async with session_maker() as session:
        result = await session.execute(select(CreditAccount).where(CreditAccount.owner_id == owner_id))
        return result.scalar_one()


async def _grants(session_maker, owner_id):
    async with session_maker() as session:
        result = await session.execute(select(UnlockGrant).where(UnlockGrant.owner_id == owner_id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_unlock_charges_once_and_repeat_returns_same_snapshot(db_session, session_maker, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-owner", credits=5)
    await seed_profiles(_profile("resume-a"))

    first = await unlock_resume_service(owner_id=owner, resume_id="resume-a", source="search", db=db_session)
    assert first["status"] == "unlocked"
    assert first["credits"] == {"charged": 1, "balance_after": 4}
    assert first["revealed_data"]["email"] == "resume-a@candidates.example"

    second = await unlock_resume_service(owner_id=owner, resume_id="resume-a", source="bucket", db=db_session)
    assert second["status"] == "already_unlocked"
    assert second["credits"]["charged"] == 0
    assert second["revealed_data"] == first["revealed_data"]
    assert second["expires_at"] == first["expires_at"]
    assert second["source"] == "search"

    account = await _account(session_maker, owner)
    assert account.credits_remaining == 4
    assert account.credits_used_this_period == 1


@pytest.mark.asyncio
async def test_expired_grant_is_renewed_with_a_new_charge(db_session, session_maker, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-expiry", credits=5)
    await seed_profiles(_profile("resume-b"))
    start = utcnow()

    await unlock_resume_service(owner_id=owner, resume_id="resume-b", source="search", db=db_session, now=start)
    later = start + timedelta(days=91)

    status = await get_unlock_status_service(owner_id=owner, resume_id="resume-b", db=db_session, now=later)
    assert status["status"] == "locked"
    with pytest.raises(ResumeLockedError):
        await revealed_data_service(owner_id=owner, resume_id="resume-b", db=db_session, now=later)

    renewed = await unlock_resume_service(owner_id=owner, resume_id="resume-b", source="bucket", db=db_session, now=later)
    assert renewed["status"] == "unlocked"
    assert renewed["credits"]["charged"] == 1
    assert renewed["source"] == "bucket"

    grants = await _grants(session_maker, owner)
    assert len(grants) == 1
    assert grants[0].unlock_count == 2
    account = await _account(session_maker, owner)
    assert account.credits_remaining == 3


@pytest.mark.asyncio
async def test_last_credit_unlocks_one_resume_and_blocks_the_next(db_session, session_maker, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-one-credit", credits=1)
    await seed_profiles(_profile("resume-x"), _profile("resume-y"))

    unlocked = await unlock_resume_service(owner_id=owner, resume_id="resume-x", source="search", db=db_session)
    assert unlocked["credits"]["balance_after"] == 0

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await unlock_resume_service(owner_id=owner, resume_id="resume-y", source="search", db=db_session)
    assert exc_info.value.status_code == 402

    again = await unlock_resume_service(owner_id=owner, resume_id="resume-x", source="search", db=db_session)
    assert again["status"] == "already_unlocked"

    status_y = await get_unlock_status_service(owner_id=owner, resume_id="resume-y", db=db_session)
    assert status_y["is_unlocked"] is False
    assert [grant.resume_id for grant in await _grants(session_maker, owner)] == ["resume-x"]


@pytest.mark.asyncio
async def test_concurrent_unlocks_of_same_resume_charge_once(session_maker, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-race", credits=5)
    await seed_profiles(_profile("resume-r"))

    async def _unlock():
        async with session_maker() as session:
            return await unlock_resume_service(owner_id=owner, resume_id="resume-r", source="search", db=session)

    results = await asyncio.gather(_unlock(), _unlock())
    statuses = sorted(result["status"] for result in results)
    assert statuses == ["already_unlocked", "unlocked"]
    assert results[0]["revealed_data"] == results[1]["revealed_data"]

    account = await _account(session_maker, owner)
    assert account.credits_used_this_period == 1
    assert account.credits_remaining == 4
    assert len(await _grants(session_maker, owner)) == 1


@pytest.mark.asyncio
async def test_failed_grant_write_refunds_the_debit(db_session, session_maker, seed_recruiter, seed_profiles, monkeypatch):
    owner = await seed_recruiter("unlock-refund", credits=5)
    await seed_profiles(_profile("resume-f"))

    async def _broken_persist(**kwargs):
        raise SQLAlchemyError("grant table unavailable")

    monkeypatch.setattr(unlocks, "_persist_grant", _broken_persist)

    with pytest.raises(TransientStoreError) as exc_info:
        await unlock_resume_service(owner_id=owner, resume_id="resume-f", source="search", db=db_session)
    assert exc_info.value.status_code == 503
    assert exc_info.value.detail["retriable"] is True

    account = await _account(session_maker, owner)
    assert account.credits_remaining == 5
    assert account.credits_used_this_period == 0
    async with session_maker() as session:
        result = await session.execute(
            select(CreditLedger.entry_type, CreditLedger.delta_credits)
            .where(CreditLedger.owner_id == owner, CreditLedger.reference_id == "resume-f")
            .order_by(CreditLedger.created_at.asc())
        )
        assert [tuple(row) for row in result.all()] == [("debit", -1), ("refund", 1)]
    assert await _grants(session_maker, owner) == []


@pytest.mark.asyncio
async def test_losing_a_grant_race_refunds_and_returns_the_winner(db_session, session_maker, seed_recruiter, seed_profiles, monkeypatch):
    owner = await seed_recruiter("unlock-lost-race", credits=5)
    await seed_profiles(_profile("resume-w"))

    async def _beaten_to_it(**kwargs):
        now = kwargs["now"]
        async with session_maker() as session:
            session.add(
                UnlockGrant(
                    id="winner-grant",
                    owner_id=owner,
                    resume_id="resume-w",
                    source="bucket",
                    granted_at=now,
                    expires_at=now + timedelta(days=90),
                    revealed_payload={"resume_id": "resume-w", "winner": True},
                    unlock_count=1,
                )
            )
            await session.commit()
        raise unlocks.GrantRaceLost()

    monkeypatch.setattr(unlocks, "_persist_grant", _beaten_to_it)

    result = await unlock_resume_service(owner_id=owner, resume_id="resume-w", source="search", db=db_session)
    assert result["status"] == "already_unlocked"
    assert result["revealed_data"]["winner"] is True
    assert result["credits"]["charged"] == 0

    account = await _account(session_maker, owner)
    assert account.credits_remaining == 5
    assert account.credits_used_this_period == 0


@pytest.mark.asyncio
async def test_bulk_unlock_checks_affordability_before_charging(db_session, session_maker, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-bulk", credits=2)
    await seed_profiles(_profile("bulk-1"), _profile("bulk-2"), _profile("bulk-3"))

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await bulk_unlock_service(
            owner_id=owner,
            resume_ids=["bulk-1", "bulk-2", "bulk-3"],
            source="search",
            db=db_session,
        )
    assert exc_info.value.detail["required"] == 3
    assert exc_info.value.detail["available"] == 2
    assert await _grants(session_maker, owner) == []

    await unlock_resume_service(owner_id=owner, resume_id="bulk-1", source="search", db=db_session)
    result = await bulk_unlock_service(
        owner_id=owner,
        resume_ids=["bulk-1", "bulk-2", "bulk-2", "missing-resume"],
        source="bucket",
        db=db_session,
    )
    statuses = {row["resume_id"]: row["status"] for row in result["results"]}
    assert statuses == {
        "bulk-1": "already_unlocked",
        "bulk-2": "unlocked",
        "missing-resume": "not_found",
    }
    assert result["requested_count"] == 3
    assert result["credits_charged"] == 1
    assert result["balance_after"] == 0
    assert result["failed_count"] == 1


@pytest.mark.asyncio
async def test_viewing_revealed_data_is_logged(db_session, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-view", credits=1)
    await seed_profiles(_profile("resume-v"))

    with pytest.raises(ResumeLockedError) as exc_info:
        await revealed_data_service(owner_id=owner, resume_id="resume-v", db=db_session)
    assert exc_info.value.status_code == 403

    await unlock_resume_service(owner_id=owner, resume_id="resume-v", source="search", db=db_session)
    revealed = await revealed_data_service(owner_id=owner, resume_id="resume-v", db=db_session)
    assert revealed["revealed_data"]["phone"] == "+1-555-0100"
    assert "credits" not in revealed

    logs = await list_access_logs_service(owner_id=owner, page=1, page_size=10, db=db_session)
    assert logs["total_count"] == 2
    assert sorted(row["action"] for row in logs["logs"]) == ["unlock", "view"]


@pytest.mark.asyncio
async def test_revealed_data_stays_the_snapshot_taken_at_unlock(db_session, session_maker, seed_recruiter, seed_profiles):
    owner = await seed_recruiter("unlock-snapshot", credits=2)
    await seed_profiles(_profile("resume-s", email="old@candidates.example"))
    await unlock_resume_service(owner_id=owner, resume_id="resume-s", source="search", db=db_session)

    async with session_maker() as session:
        await session.execute(
            update(ResumeProfile).where(ResumeProfile.id == "resume-s").values(email="new@candidates.example")
        )
        await session.commit()

    revealed = await revealed_data_service(owner_id=owner, resume_id="resume-s", db=db_session)
    assert revealed["revealed_data"]["email"] == "old@candidates.example"

    again = await unlock_resume_service(owner_id=owner, resume_id="resume-s", source="search", db=db_session)
    assert again["status"] == "already_unlocked"
    assert again["revealed_data"]["email"] == "old@candidates.example"
    assert (await _account(session_maker, owner)).credits_remaining == 1
