"""Unlock grant manager: credit-gated, time-bounded access to resumes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
import uuid

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import as_utc, utcnow
from models.profile_access_log import ProfileAccessLog
from models.unlock_grant import UnlockGrant
from services.credits import get_credit_balance, refund, reserve_and_debit
from services.errors import (
    InsufficientCreditsError,
    NotFoundError,
    ResumeLockedError,
    ServiceError,
    TransientStoreError,
    ValidationFailedError,
)
from services.pagination import page_envelope, resolve_page
from services.profile_store import existing_resume_ids, fetch_revealed_payload

logger = logging.getLogger(__name__)

UNLOCK_SOURCES = {"search", "bucket"}


class GrantRaceLost(Exception):
    """Another request created or renewed the grant first."""


def _unlock_cost() -> int:
    return max(int(settings.UNLOCK_CREDIT_COST), 1)


def _grant_expiry(now: datetime) -> datetime:
    return now + timedelta(days=max(int(settings.UNLOCK_GRANT_DAYS), 1))


def _normalize_source(source: Optional[str]) -> str:
    value = str(source or "search").strip().lower()
    if value not in UNLOCK_SOURCES:
        raise ValidationFailedError("source must be 'search' or 'bucket'", source=value)
    return value


def _is_active(grant: Optional[UnlockGrant], now: datetime) -> bool:
    return grant is not None and as_utc(grant.expires_at) > now


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def _dedupe(resume_ids: Iterable[Any]) -> List[str]:
    return list(dict.fromkeys(str(rid).strip() for rid in resume_ids if str(rid or "").strip()))


async def _load_grant(owner_id: str, resume_id: str, db: AsyncSession) -> Optional[UnlockGrant]:
    result = await db.execute(
        select(UnlockGrant)
        .where(UnlockGrant.owner_id == owner_id, UnlockGrant.resume_id == resume_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _grant_payload(status: str, grant: UnlockGrant, charged: int = 0, balance_after: Optional[int] = None) -> Dict[str, Any]:
    credits: Dict[str, Any] = {"charged": charged}
    if balance_after is not None:
        credits["balance_after"] = balance_after
    return {
        "status": status,
        "resume_id": grant.resume_id,
        "source": grant.source,
        "granted_at": _iso(grant.granted_at),
        "expires_at": _iso(grant.expires_at),
        "revealed_data": grant.revealed_payload,
        "credits": credits,
    }


async def unlock_status_map(
    owner_id: str,
    resume_ids: Iterable[str],
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, datetime]:
    """Map each actively unlocked resume id to its expiry. Never grants access."""
    ids = _dedupe(resume_ids)
    if not ids:
        return {}
    current = now or utcnow()
    result = await db.execute(
        select(UnlockGrant.resume_id, UnlockGrant.expires_at).where(
            UnlockGrant.owner_id == owner_id,
            UnlockGrant.resume_id.in_(ids),
            UnlockGrant.expires_at > current,
        )
    )
    return {row.resume_id: as_utc(row.expires_at) for row in result.all()}


async def get_unlock_status_service(
    *,
    owner_id: str,
    resume_id: str,
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    current = now or utcnow()
    grant = await _load_grant(owner_id, resume_id, db)
    if _is_active(grant, current):
        return {
            "resume_id": resume_id,
            "status": "unlocked",
            "is_unlocked": True,
            "granted_at": _iso(grant.granted_at),
            "expires_at": _iso(grant.expires_at),
        }
    return {"resume_id": resume_id, "status": "locked", "is_unlocked": False, "expires_at": None}


async def _persist_grant(
    *,
    owner_id: str,
    resume_id: str,
    source: str,
    payload: Dict[str, Any],
    previous: Optional[UnlockGrant],
    db: AsyncSession,
    now: datetime,
) -> UnlockGrant:
    """Create the grant, or renew an expired one, only if nobody beat us to it."""
    expires_at = _grant_expiry(now)
    access = ProfileAccessLog(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        resume_id=resume_id,
        action="unlock",
        source=source,
        created_at=utcnow(),
    )
    if previous is None:
        grant = UnlockGrant(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            resume_id=resume_id,
            source=source,
            granted_at=now,
            expires_at=expires_at,
            revealed_payload=payload,
            unlock_count=1,
        )
        db.add(grant)
        db.add(access)
        try:
            await db.commit()
        except IntegrityError as exc:
            raise GrantRaceLost() from exc
        return grant

    result = await db.execute(
        update(UnlockGrant)
        .where(UnlockGrant.id == previous.id, UnlockGrant.expires_at <= now)
        .values(
            source=source,
            granted_at=now,
            expires_at=expires_at,
            revealed_payload=payload,
            unlock_count=UnlockGrant.unlock_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise GrantRaceLost()
    db.add(access)
    await db.commit()
    return await _load_grant(owner_id, resume_id, db)


async def unlock_resume_service(
    *,
    owner_id: str,
    resume_id: str,
    source: Optional[str],
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Reveal a resume, debiting one credit unless a live grant already exists.

    Debit and grant are two steps: if the grant cannot be written after the
    debit, the debit is refunded before the error reaches the caller.
    """
    resolved_source = _normalize_source(source)
    current = now or utcnow()

    grant = await _load_grant(owner_id, resume_id, db)
    if _is_active(grant, current):
        return _grant_payload("already_unlocked", grant)

    payload = await fetch_revealed_payload(resume_id, db)
    cost = _unlock_cost()
    charge = await reserve_and_debit(
        owner_id,
        db,
        amount=cost,
        reason="Resume unlock",
        reference_type="resume_unlock",
        reference_id=resume_id,
    )

    try:
        grant = await _persist_grant(
            owner_id=owner_id,
            resume_id=resume_id,
            source=resolved_source,
            payload=payload,
            previous=grant,
            db=db,
            now=current,
        )
    except GrantRaceLost:
        await db.rollback()
        await refund(
            owner_id,
            db,
            amount=cost,
            reason="Concurrent unlock already granted access",
            reference_type="resume_unlock",
            reference_id=resume_id,
        )
        winner = await _load_grant(owner_id, resume_id, db)
        if _is_active(winner, current):
            logger.info("resume_unlock_race_lost owner=%s resume=%s", owner_id, resume_id)
            return _grant_payload("already_unlocked", winner)
        raise TransientStoreError("Unlock could not be confirmed; retry the request.", resume_id=resume_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("resume_unlock_persist_failed owner=%s resume=%s error=%s", owner_id, resume_id, exc)
        await refund(
            owner_id,
            db,
            amount=cost,
            reason="Grant persistence failed",
            reference_type="resume_unlock",
            reference_id=resume_id,
        )
        raise TransientStoreError("Unlock could not be saved and the credit was refunded; retry the request.", resume_id=resume_id) from exc

    logger.info(
        "resume_unlock owner=%s resume=%s source=%s expires_at=%s",
        owner_id,
        resume_id,
        resolved_source,
        _iso(grant.expires_at),
    )
    return _grant_payload("unlocked", grant, charged=cost, balance_after=charge.get("balance_after"))


async def bulk_unlock_service(
    *,
    owner_id: str,
    resume_ids: Iterable[Any],
    source: Optional[str],
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Unlock many resumes, charging only for those not already unlocked."""
    resolved_source = _normalize_source(source)
    current = now or utcnow()
    requested = _dedupe(resume_ids)
    if not requested:
        raise ValidationFailedError("Select at least one resume to unlock.")
    max_items = max(int(settings.BULK_UNLOCK_MAX_ITEMS), 1)
    if len(requested) > max_items:
        raise ValidationFailedError(f"Bulk unlock is limited to {max_items} resumes.", max_items=max_items)

    active = await unlock_status_map(owner_id, requested, db, now=current)
    pending = [rid for rid in requested if rid not in active]
    known = await existing_resume_ids(db, pending)
    chargeable = [rid for rid in pending if rid in known]
    required = len(chargeable) * _unlock_cost()
    if required:
        available = await get_credit_balance(owner_id, db)
        if available < required:
            raise InsufficientCreditsError(required=required, available=available)

    results: List[Dict[str, Any]] = []
    charged = 0
    for rid in requested:
        if rid in active:
            results.append({"resume_id": rid, "status": "already_unlocked", "expires_at": active[rid].isoformat()})
            continue
        if rid not in known:
            results.append({"resume_id": rid, "status": "not_found"})
            continue
        try:
            outcome = await unlock_resume_service(
                owner_id=owner_id,
                resume_id=rid,
                source=resolved_source,
                db=db,
                now=current,
            )
        except InsufficientCreditsError:
            results.append({"resume_id": rid, "status": "insufficient_credits"})
            continue
        except ServiceError as exc:
            logger.warning("bulk_unlock_item_failed owner=%s resume=%s code=%s", owner_id, rid, exc.code)
            results.append(
                {
                    "resume_id": rid,
                    "status": "failed",
                    "error": exc.message,
                    "retriable": exc.retriable,
                }
            )
            continue
        charged += int(outcome["credits"]["charged"])
        results.append({"resume_id": rid, "status": outcome["status"], "expires_at": outcome["expires_at"]})

    unlocked_count = sum(1 for row in results if row["status"] == "unlocked")
    already_count = sum(1 for row in results if row["status"] == "already_unlocked")
    failed_count = len(results) - unlocked_count - already_count
    balance_after = await get_credit_balance(owner_id, db)
    logger.info(
        "resume_bulk_unlock owner=%s requested=%s unlocked=%s already=%s failed=%s charged=%s",
        owner_id,
        len(requested),
        unlocked_count,
        already_count,
        failed_count,
        charged,
    )
    return {
        "requested_count": len(requested),
        "unlocked_count": unlocked_count,
        "already_unlocked_count": already_count,
        "failed_count": failed_count,
        "credits_charged": charged,
        "balance_after": balance_after,
        "results": results,
    }


async def _record_access(owner_id: str, resume_id: str, action: str, source: Optional[str], db: AsyncSession) -> None:
    db.add(
        ProfileAccessLog(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            resume_id=resume_id,
            action=action,
            source=source,
            created_at=utcnow(),
        )
    )
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("profile_access_log_failed owner=%s resume=%s action=%s error=%s", owner_id, resume_id, action, exc)


async def _require_active_grant(owner_id: str, resume_id: str, db: AsyncSession, now: Optional[datetime]) -> UnlockGrant:
    grant = await _load_grant(owner_id, resume_id, db)
    if not _is_active(grant, now or utcnow()):
        raise ResumeLockedError("Resume is locked. Unlock it to view contact details.", resume_id=resume_id)
    return grant


async def revealed_data_service(
    *,
    owner_id: str,
    resume_id: str,
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return the snapshot captured at unlock time, never a live re-fetch."""
    grant = await _require_active_grant(owner_id, resume_id, db, now)
    payload = _grant_payload("unlocked", grant)
    payload.pop("credits", None)
    await _record_access(owner_id, resume_id, "view", grant.source, db)
    return payload


async def download_unlocked_resume_service(
    *,
    owner_id: str,
    resume_id: str,
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    grant = await _require_active_grant(owner_id, resume_id, db, now)
    snapshot = grant.revealed_payload if isinstance(grant.revealed_payload, dict) else {}
    download_url = snapshot.get("resume_file_url")
    if not download_url:
        raise NotFoundError("No resume file on record for this profile.", resume_id=resume_id)
    await _record_access(owner_id, resume_id, "download", grant.source, db)
    return {
        "resume_id": resume_id,
        "download_url": download_url,
        "expires_at": _iso(grant.expires_at),
    }


async def list_unlocked_profiles_service(
    *,
    owner_id: str,
    include_expired: bool,
    page: Any,
    page_size: Any,
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    current = now or utcnow()
    resolved_page, resolved_size, offset = resolve_page(page, page_size)
    conditions = [UnlockGrant.owner_id == owner_id]
    if not include_expired:
        conditions.append(UnlockGrant.expires_at > current)

    total = await db.execute(select(func.count(UnlockGrant.id)).where(*conditions))
    result = await db.execute(
        select(UnlockGrant)
        .where(*conditions)
        .order_by(UnlockGrant.granted_at.desc(), UnlockGrant.id.asc())
        .offset(offset)
        .limit(resolved_size)
    )
    rows = []
    for grant in result.scalars().all():
        snapshot = grant.revealed_payload if isinstance(grant.revealed_payload, dict) else {}
        rows.append(
            {
                "resume_id": grant.resume_id,
                "full_name": snapshot.get("full_name"),
                "headline": snapshot.get("headline"),
                "source": grant.source,
                "granted_at": _iso(grant.granted_at),
                "expires_at": _iso(grant.expires_at),
                "is_active": _is_active(grant, current),
            }
        )
    return page_envelope(
        key="profiles",
        rows=rows,
        page=resolved_page,
        page_size=resolved_size,
        total_count=int(total.scalar() or 0),
    )


async def list_access_logs_service(
    *,
    owner_id: str,
    page: Any,
    page_size: Any,
    db: AsyncSession,
) -> Dict[str, Any]:
    resolved_page, resolved_size, offset = resolve_page(page, page_size)
    total = await db.execute(select(func.count(ProfileAccessLog.id)).where(ProfileAccessLog.owner_id == owner_id))
    result = await db.execute(
        select(ProfileAccessLog)
        .where(ProfileAccessLog.owner_id == owner_id)
        .order_by(ProfileAccessLog.created_at.desc(), ProfileAccessLog.id.asc())
        .offset(offset)
        .limit(resolved_size)
    )
    rows = [
        {
            "id": log.id,
            "resume_id": log.resume_id,
            "action": log.action,
            "source": log.source,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log in result.scalars().all()
    ]
    return page_envelope(
        key="logs",
        rows=rows,
        page=resolved_page,
        page_size=resolved_size,
        total_count=int(total.scalar() or 0),
    )
