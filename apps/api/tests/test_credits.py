import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.future import select

from database import as_utc
from models.credit_account import CreditAccount
from models.credit_ledger import CreditLedger
from services.credits import (
    ensure_credit_account,
    get_credit_summary,
    period_rollover,
    refund,
    reserve_and_debit,
)
from services.errors import InsufficientCreditsError, ValidationFailedError


async def _account(session_maker, owner_id):
    async with session_maker() as session:
        result = await session.execute(select(CreditAccount).where(CreditAccount.owner_id == owner_id))
        return result.scalar_one()


async def _ledger_types(session_maker, owner_id):
    async with session_maker() as session:
        result = await session.execute(
            select(CreditLedger.entry_type)
            .where(CreditLedger.owner_id == owner_id)
            .order_by(CreditLedger.created_at.asc(), CreditLedger.id.asc())
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_debit_never_overdraws(session_maker, db_session, seed_recruiter):
    owner = await seed_recruiter("ledger-owner", credits=2)

    first = await reserve_and_debit(owner, db_session, amount=1, reason="test")
    second = await reserve_and_debit(owner, db_session, amount=1, reason="test")
    assert first["balance_after"] == 1
    assert second["balance_after"] == 0

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await reserve_and_debit(owner, db_session, amount=1, reason="test")
    assert exc_info.value.status_code == 402
    assert exc_info.value.detail["required"] == 1
    assert exc_info.value.detail["available"] == 0

    account = await _account(session_maker, owner)
    assert account.credits_remaining == 0
    assert account.credits_used_this_period == 2
    assert await _ledger_types(session_maker, owner) == ["grant", "debit", "debit"]


@pytest.mark.asyncio
async def test_debit_rejects_non_positive_amount(db_session, seed_recruiter):
    owner = await seed_recruiter("ledger-zero", credits=1)
    with pytest.raises(ValidationFailedError):
        await reserve_and_debit(owner, db_session, amount=0, reason="test")


@pytest.mark.asyncio
async def test_concurrent_debits_respect_balance(session_maker, seed_recruiter):
    owner = await seed_recruiter("ledger-race", credits=3)

    async def _attempt():
        async with session_maker() as session:
            try:
                await reserve_and_debit(owner, session, amount=1, reason="race")
                return True
            except InsufficientCreditsError:
                return False

    outcomes = await asyncio.gather(*[_attempt() for _ in range(5)])
    assert outcomes.count(True) == 3

    account = await _account(session_maker, owner)
    assert account.credits_remaining == 0
    assert account.credits_used_this_period == 3


@pytest.mark.asyncio
async def test_refund_is_capped_and_logged(session_maker, db_session, seed_recruiter):
    owner = await seed_recruiter("ledger-refund", credits=3)
    await reserve_and_debit(owner, db_session, amount=1, reason="test")

    result = await refund(owner, db_session, amount=5, reason="over-refund")
    assert result["refunded"] == 5
    assert result["balance_after"] == 3

    account = await _account(session_maker, owner)
    assert account.credits_remaining == account.credits_total == 3
    assert account.credits_used_this_period == 0
    assert await _ledger_types(session_maker, owner) == ["grant", "debit", "refund"]


@pytest.mark.asyncio
async def test_period_rollover_resets_usage_once(session_maker, db_session, seed_recruiter):
    owner = await seed_recruiter("ledger-rollover", credits=5)
    await reserve_and_debit(owner, db_session, amount=2, reason="test")

    account = await ensure_credit_account(owner, db_session)
    after_period = as_utc(account.period_end) + timedelta(days=1)

    assert await period_rollover(owner, db_session, now=after_period) is True
    assert await period_rollover(owner, db_session, now=after_period) is False

    refreshed = await _account(session_maker, owner)
    assert refreshed.credits_used_this_period == 0
    assert refreshed.credits_remaining == 3
    assert as_utc(refreshed.period_end) > after_period
    assert (await _ledger_types(session_maker, owner))[-1] == "period_rollover"


@pytest.mark.asyncio
async def test_credit_summary_lists_recent_entries(db_session, seed_recruiter):
    owner = await seed_recruiter("ledger-summary", credits=4)
    await reserve_and_debit(owner, db_session, amount=1, reason="Resume unlock")

    summary = await get_credit_summary(owner, db_session)
    assert summary["credits_total"] == 4
    assert summary["credits_remaining"] == 3
    assert summary["credits_used_this_period"] == 1
    assert summary["unlock_cost"] == 1
    assert summary["active_unlocks"] == 0
    assert [entry["entry_type"] for entry in summary["recent_entries"]] == ["debit", "grant"]
