"""Credit ledger and usage accounting helpers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
import uuid

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import as_utc, utcnow
from models.credit_account import CreditAccount
from models.credit_ledger import CreditLedger
from models.unlock_grant import UnlockGrant
from services.errors import InsufficientCreditsError, NotFoundError, TransientStoreError, ValidationFailedError

logger = logging.getLogger(__name__)


def _current_period_key(now: Optional[datetime] = None) -> str:
    current = now or utcnow()
    return current.strftime("%Y-%m")


def _period_bounds(now: datetime) -> Tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


async def _load_account(owner_id: str, db: AsyncSession) -> Optional[CreditAccount]:
    result = await db.execute(
        select(CreditAccount)
        .where(CreditAccount.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _add_entry(
    owner_id: str,
    db: AsyncSession,
    *,
    entry_type: str,
    delta_credits: int,
    balance_after: Optional[int],
    reason: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    period_key: Optional[str] = None,
) -> CreditLedger:
    entry = CreditLedger(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        entry_type=entry_type,
        delta_credits=int(delta_credits),
        balance_after=balance_after,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        period_key=period_key or _current_period_key(),
        created_at=utcnow(),
    )
    db.add(entry)
    return entry


async def period_rollover(owner_id: str, db: AsyncSession, now: Optional[datetime] = None) -> bool:
    """Reset usage once the billing period has ended.

    The update is conditional on the stale ``period_end`` so that two callers
    racing over the same boundary reset the counter exactly once.
    """
    current = now or utcnow()
    account = await _load_account(owner_id, db)
    if account is None or current < as_utc(account.period_end):
        return False

    used_before = int(account.credits_used_this_period or 0)
    period_start, period_end = _period_bounds(current)
    result = await db.execute(
        update(CreditAccount)
        .where(
            CreditAccount.owner_id == owner_id,
            CreditAccount.period_end == account.period_end,
        )
        .values(
            credits_used_this_period=0,
            period_start=period_start,
            period_end=period_end,
            updated_at=current,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False

    _add_entry(
        owner_id,
        db,
        entry_type="period_rollover",
        delta_credits=0,
        balance_after=int(account.credits_remaining),
        reason=f"Usage reset; {used_before} credits used in previous period",
        period_key=_current_period_key(current),
    )
    await db.commit()
    logger.info("credit_period_rollover owner=%s used_before=%s period_end=%s", owner_id, used_before, period_end)
    return True


async def ensure_credit_account(owner_id: str, db: AsyncSession, now: Optional[datetime] = None) -> CreditAccount:
    current = now or utcnow()
    account = await _load_account(owner_id, db)
    if account is None:
        opening = max(int(settings.DEFAULT_PLAN_CREDITS), 0)
        period_start, period_end = _period_bounds(current)
        db.add(
            CreditAccount(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                credits_total=opening,
                credits_remaining=opening,
                credits_used_this_period=0,
                period_start=period_start,
                period_end=period_end,
            )
        )
        if opening:
            _add_entry(
                owner_id,
                db,
                entry_type="grant",
                delta_credits=opening,
                balance_after=opening,
                reason="Opening plan credits",
                period_key=_current_period_key(current),
            )
        try:
            await db.commit()
        except IntegrityError:
            # Another request opened the account first.
            await db.rollback()
        account = await _load_account(owner_id, db)
        if account is None:
            raise TransientStoreError("Credit account could not be opened; retry the request.")
        return account

    if current >= as_utc(account.period_end):
        await period_rollover(owner_id, db, now=current)
        account = await _load_account(owner_id, db)
    return account


async def get_credit_balance(owner_id: str, db: AsyncSession) -> int:
    account = await ensure_credit_account(owner_id, db)
    return int(account.credits_remaining)


async def reserve_and_debit(
    owner_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Atomically take ``amount`` credits or fail without touching the balance.

    A single conditional UPDATE does the check and the decrement, so two
    racing debits for the same owner can never overdraw the account.
    """
    debit = int(amount)
    if debit <= 0:
        raise ValidationFailedError("Debit amount must be greater than 0.", amount=debit)

    await ensure_credit_account(owner_id, db)
    try:
        result = await db.execute(
            update(CreditAccount)
            .where(
                CreditAccount.owner_id == owner_id,
                CreditAccount.credits_remaining >= debit,
            )
            .values(
                credits_remaining=CreditAccount.credits_remaining - debit,
                credits_used_this_period=CreditAccount.credits_used_this_period + debit,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            account = await _load_account(owner_id, db)
            available = int(account.credits_remaining) if account else 0
            logger.info("credit_debit_rejected owner=%s required=%s available=%s", owner_id, debit, available)
            raise InsufficientCreditsError(required=debit, available=available)

        account = await _load_account(owner_id, db)
        balance_after = int(account.credits_remaining)
        _add_entry(
            owner_id,
            db,
            entry_type="debit",
            delta_credits=-debit,
            balance_after=balance_after,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("credit_debit_failed owner=%s amount=%s error=%s", owner_id, debit, exc)
        raise TransientStoreError("Credit ledger is unavailable; retry the request.") from exc

    logger.info("credit_debit owner=%s amount=%s balance_after=%s ref=%s", owner_id, debit, balance_after, reference_id)
    return {"charged": debit, "balance_after": balance_after}


async def refund(
    owner_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Compensate a debit whose grant could not be created.

    Remaining is capped at the total and period usage never drops below zero.
    Every refund lands in the ledger so no compensation is silent.
    """
    credit = int(amount)
    if credit <= 0:
        return {"refunded": 0}

    try:
        result = await db.execute(
            update(CreditAccount)
            .where(CreditAccount.owner_id == owner_id)
            .values(
                credits_remaining=case(
                    (CreditAccount.credits_remaining + credit > CreditAccount.credits_total, CreditAccount.credits_total),
                    else_=CreditAccount.credits_remaining + credit,
                ),
                credits_used_this_period=case(
                    (CreditAccount.credits_used_this_period >= credit, CreditAccount.credits_used_this_period - credit),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.error("credit_refund_missing_account owner=%s amount=%s ref=%s", owner_id, credit, reference_id)
            raise NotFoundError("Credit account not found.", owner_id=owner_id)

        account = await _load_account(owner_id, db)
        balance_after = int(account.credits_remaining)
        _add_entry(
            owner_id,
            db,
            entry_type="refund",
            delta_credits=credit,
            balance_after=balance_after,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.critical(
            "credit_refund_failed owner=%s amount=%s ref=%s reason=%s error=%s",
            owner_id,
            credit,
            reference_id,
            reason,
            exc,
        )
        raise TransientStoreError("Credit refund could not be recorded; contact support.") from exc

    logger.warning(
        "credit_refund owner=%s amount=%s balance_after=%s ref=%s reason=%s",
        owner_id,
        credit,
        balance_after,
        reference_id,
        reason,
    )
    return {"refunded": credit, "balance_after": balance_after}


async def apply_credit_grant(
    owner_id: str,
    db: AsyncSession,
    *,
    credits: int,
    provider: str,
    billing_reference: str,
    reason: str = "Credit purchase",
) -> Dict[str, Any]:
    """Replenishment event from the billing collaborator."""
    grant = int(credits)
    if grant <= 0:
        raise ValidationFailedError("credits must be greater than 0", credits=grant)

    await ensure_credit_account(owner_id, db)
    await db.execute(
        update(CreditAccount)
        .where(CreditAccount.owner_id == owner_id)
        .values(
            credits_total=CreditAccount.credits_total + grant,
            credits_remaining=CreditAccount.credits_remaining + grant,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    account = await _load_account(owner_id, db)
    _add_entry(
        owner_id,
        db,
        entry_type="grant",
        delta_credits=grant,
        balance_after=int(account.credits_remaining),
        reason=reason,
        reference_type=provider,
        reference_id=billing_reference,
    )
    await db.commit()
    logger.info("credit_grant owner=%s credits=%s provider=%s ref=%s", owner_id, grant, provider, billing_reference)
    return {
        "credits_total": int(account.credits_total),
        "balance_after": int(account.credits_remaining),
    }


async def get_credit_summary(owner_id: str, db: AsyncSession) -> Dict[str, Any]:
    account = await ensure_credit_account(owner_id, db)
    now = utcnow()
    active_result = await db.execute(
        select(func.count(UnlockGrant.id)).where(
            UnlockGrant.owner_id == owner_id,
            UnlockGrant.expires_at > now,
        )
    )
    entries_result = await db.execute(
        select(CreditLedger)
        .where(CreditLedger.owner_id == owner_id)
        .order_by(CreditLedger.created_at.desc(), CreditLedger.id.desc())
        .limit(30)
    )
    entries = entries_result.scalars().all()
    return {
        "credits_total": int(account.credits_total),
        "credits_remaining": int(account.credits_remaining),
        "credits_used_this_period": int(account.credits_used_this_period),
        "period_start": as_utc(account.period_start).isoformat(),
        "period_end": as_utc(account.period_end).isoformat(),
        "period_key": _current_period_key(now),
        "active_unlocks": int(active_result.scalar() or 0),
        "unlock_cost": max(int(settings.UNLOCK_CREDIT_COST), 1),
        "grant_duration_days": max(int(settings.UNLOCK_GRANT_DAYS), 1),
        "recent_entries": [
            {
                "id": entry.id,
                "entry_type": entry.entry_type,
                "delta_credits": entry.delta_credits,
                "balance_after": entry.balance_after,
                "reason": entry.reason,
                "reference_type": entry.reference_type,
                "reference_id": entry.reference_id,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }
