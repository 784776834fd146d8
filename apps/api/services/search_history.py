"""Search history recorder and result-count trend sampler."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional
import uuid

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import as_utc, async_session_maker, utcnow
from models.saved_search import SavedSearch
from models.search_result_sample import SearchResultSample
from services.cv_search import filter_profiles, result_payload, run_profile_search
from services.errors import NotFoundError, ServiceError, TransientStoreError, ValidationFailedError
from services.pagination import page_envelope, resolve_page
from services.profile_store import load_searchable_profiles
from services.search_filters import SearchFilters, canonicalize_filters, describe_filters, filters_hash, parse_filters
from services.unlocks import unlock_status_map

logger = logging.getLogger(__name__)

SAMPLE_TRIGGERS = {"search", "rerun", "scheduled"}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


async def _get_owned_search(owner_id: str, saved_search_id: str, db: AsyncSession) -> SavedSearch:
    result = await db.execute(
        select(SavedSearch)
        .where(SavedSearch.id == saved_search_id, SavedSearch.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    saved = result.scalar_one_or_none()
    if not saved:
        raise NotFoundError("Saved search not found", search_id=saved_search_id)
    return saved


def _add_sample(db: AsyncSession, saved_search_id: str, result_count: int, trigger: str, now: datetime) -> None:
    if trigger not in SAMPLE_TRIGGERS:
        raise ValueError(f"Unknown sample trigger: {trigger}")
    db.add(
        SearchResultSample(
            saved_search_id=saved_search_id,
            result_count=int(result_count),
            trigger=trigger,
            recorded_at=now,
        )
    )


async def _mark_used(saved_search_id: str, result_count: int, db: AsyncSession, now: datetime) -> None:
    await db.execute(
        update(SavedSearch)
        .where(SavedSearch.id == saved_search_id)
        .values(
            use_count=SavedSearch.use_count + 1,
            latest_result_count=int(result_count),
            last_used_at=now,
        )
        .execution_options(synchronize_session=False)
    )


async def _find_by_hash(owner_id: str, digest: str, db: AsyncSession) -> Optional[str]:
    result = await db.execute(
        select(SavedSearch.id).where(SavedSearch.owner_id == owner_id, SavedSearch.filters_hash == digest)
    )
    return result.scalar_one_or_none()


async def record_search(
    owner_id: str,
    filters: SearchFilters,
    result_count: int,
    db: AsyncSession,
    *,
    search_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Persist a search, reusing the row of an equivalent earlier search.

    Every call appends one result-count sample; a repeat of the same
    canonical filters bumps ``use_count`` instead of inserting a new row.
    """
    current = now or utcnow()
    canonical = canonicalize_filters(filters)
    digest = filters_hash(canonical)
    try:
        saved_id = await _find_by_hash(owner_id, digest, db)
        if saved_id is None:
            saved_id = str(uuid.uuid4())
            db.add(
                SavedSearch(
                    id=saved_id,
                    owner_id=owner_id,
                    filters_json=canonical,
                    filters_hash=digest,
                    search_name=(search_name or describe_filters(canonical))[:200],
                    use_count=1,
                    latest_result_count=int(result_count),
                    created_at=current,
                    last_used_at=current,
                )
            )
            try:
                await db.flush()
            except IntegrityError:
                # Same filters recorded concurrently; fall back to the winner's row.
                await db.rollback()
                saved_id = await _find_by_hash(owner_id, digest, db)
                if saved_id is None:
                    raise TransientStoreError("Search history could not be saved; retry the request.")
                await _mark_used(saved_id, result_count, db, current)
        else:
            await _mark_used(saved_id, result_count, db, current)
        _add_sample(db, saved_id, result_count, "search", current)
        await db.commit()
    except ServiceError:
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("search_history_record_failed owner=%s error=%s", owner_id, exc)
        raise TransientStoreError("Search history could not be saved; retry the request.") from exc

    logger.info("search_history_recorded owner=%s search=%s result_count=%s", owner_id, saved_id, result_count)
    return saved_id


async def _search_page(
    *,
    owner_id: str,
    filters: SearchFilters,
    page: Any,
    page_size: Any,
    sort_by: str,
    sort_order: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    resolved_page, resolved_size, offset = resolve_page(page, page_size)
    total_count, rows = await run_profile_search(
        db,
        filters,
        sort_by=sort_by,
        sort_order=sort_order,
        offset=offset,
        limit=resolved_size,
    )
    unlocked = await unlock_status_map(owner_id, [profile.id for profile, _ in rows], db)
    return page_envelope(
        key="results",
        rows=[result_payload(profile, score, unlocked) for profile, score in rows],
        page=resolved_page,
        page_size=resolved_size,
        total_count=total_count,
        extra={"sort_by": sort_by, "sort_order": sort_order},
    )


async def search_and_record_service(*, owner_id: str, payload: Mapping[str, Any], db: AsyncSession) -> Dict[str, Any]:
    filters, options = parse_filters(payload)
    response = await _search_page(
        owner_id=owner_id,
        filters=filters,
        page=options.get("page"),
        page_size=options.get("page_size"),
        sort_by=options["sort_by"],
        sort_order=options["sort_order"],
        db=db,
    )
    search_id = await record_search(owner_id, filters, response["total_count"], db)
    logger.info(
        "cv_search owner=%s search=%s total=%s page=%s",
        owner_id,
        search_id,
        response["total_count"],
        response["page"],
    )
    response["search_id"] = search_id
    response["filters"] = canonicalize_filters(filters)
    return response


async def rerun_search_service(
    *,
    owner_id: str,
    saved_search_id: str,
    page: Any,
    page_size: Any,
    sort_by: Optional[str],
    sort_order: Optional[str],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Replay the stored filters verbatim and append a fresh sample."""
    saved = await _get_owned_search(owner_id, saved_search_id, db)
    stored_filters = dict(saved.filters_json or {})
    search_name = saved.search_name
    _, options = parse_filters({**stored_filters, "sort_by": sort_by, "sort_order": sort_order})
    filters = SearchFilters.model_validate(stored_filters)

    response = await _search_page(
        owner_id=owner_id,
        filters=filters,
        page=page,
        page_size=page_size,
        sort_by=options["sort_by"],
        sort_order=options["sort_order"],
        db=db,
    )
    now = utcnow()
    try:
        await _mark_used(saved_search_id, response["total_count"], db, now)
        _add_sample(db, saved_search_id, response["total_count"], "rerun", now)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("search_history_rerun_failed owner=%s search=%s error=%s", owner_id, saved_search_id, exc)
        raise TransientStoreError("Search history could not be updated; retry the request.") from exc

    logger.info("search_history_rerun owner=%s search=%s total=%s", owner_id, saved_search_id, response["total_count"])
    response["search_id"] = saved_search_id
    response["search_name"] = search_name
    response["filters"] = stored_filters
    return response


def _change(samples: List[SearchResultSample]) -> Optional[int]:
    """Difference between the two most recent samples, newest first."""
    if len(samples) < 2:
        return None
    return int(samples[0].result_count) - int(samples[1].result_count)


async def _latest_samples(saved_search_id: str, db: AsyncSession, limit: int) -> List[SearchResultSample]:
    result = await db.execute(
        select(SearchResultSample)
        .where(SearchResultSample.saved_search_id == saved_search_id)
        .order_by(SearchResultSample.recorded_at.desc(), SearchResultSample.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def trend_service(*, owner_id: str, saved_search_id: str, limit: Any, db: AsyncSession) -> Dict[str, Any]:
    saved = await _get_owned_search(owner_id, saved_search_id, db)
    try:
        resolved_limit = int(limit) if limit is not None else int(settings.SEARCH_TREND_DEFAULT_LIMIT)
    except (TypeError, ValueError) as exc:
        raise ValidationFailedError("limit must be an integer", limit=limit) from exc
    resolved_limit = max(1, min(resolved_limit, 365))

    newest_first = await _latest_samples(saved.id, db, resolved_limit)
    samples = list(reversed(newest_first))
    return {
        "search_id": saved.id,
        "search_name": saved.search_name,
        "latest_result_count": saved.latest_result_count,
        "previous_result_count": int(newest_first[1].result_count) if len(newest_first) > 1 else None,
        "result_count_change": _change(newest_first),
        "samples": [
            {
                "result_count": sample.result_count,
                "trigger": sample.trigger,
                "recorded_at": _iso(sample.recorded_at),
            }
            for sample in samples
        ],
    }


def _serialize_saved_search(saved: SavedSearch, recent: List[SearchResultSample]) -> Dict[str, Any]:
    return {
        "id": saved.id,
        "search_name": saved.search_name,
        "filters": saved.filters_json or {},
        "use_count": saved.use_count,
        "latest_result_count": saved.latest_result_count,
        "result_count_change": _change(recent),
        "created_at": _iso(saved.created_at),
        "last_used_at": _iso(saved.last_used_at),
    }


async def list_search_history_service(*, owner_id: str, page: Any, page_size: Any, db: AsyncSession) -> Dict[str, Any]:
    resolved_page, resolved_size, offset = resolve_page(page, page_size)
    total = await db.execute(select(func.count(SavedSearch.id)).where(SavedSearch.owner_id == owner_id))
    result = await db.execute(
        select(SavedSearch)
        .where(SavedSearch.owner_id == owner_id)
        .order_by(SavedSearch.last_used_at.desc(), SavedSearch.id.asc())
        .offset(offset)
        .limit(resolved_size)
        .execution_options(populate_existing=True)
    )
    rows = []
    for saved in result.scalars().all():
        rows.append(_serialize_saved_search(saved, await _latest_samples(saved.id, db, 2)))
    return page_envelope(
        key="history",
        rows=rows,
        page=resolved_page,
        page_size=resolved_size,
        total_count=int(total.scalar() or 0),
    )


async def rename_saved_search_service(
    *,
    owner_id: str,
    saved_search_id: str,
    search_name: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    name = " ".join(str(search_name or "").split())
    if not name:
        raise ValidationFailedError("search_name cannot be empty.")
    if len(name) > 200:
        raise ValidationFailedError("search_name must be at most 200 characters.")
    saved = await _get_owned_search(owner_id, saved_search_id, db)
    saved.search_name = name
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Search could not be renamed; retry the request.", search_id=saved_search_id) from exc
    logger.info("search_history_renamed owner=%s search=%s", owner_id, saved_search_id)
    return _serialize_saved_search(saved, await _latest_samples(saved.id, db, 2))


async def delete_saved_search_service(*, owner_id: str, saved_search_id: str, db: AsyncSession) -> Dict[str, Any]:
    await _get_owned_search(owner_id, saved_search_id, db)
    try:
        await db.execute(delete(SearchResultSample).where(SearchResultSample.saved_search_id == saved_search_id))
        await db.execute(delete(SavedSearch).where(SavedSearch.id == saved_search_id, SavedSearch.owner_id == owner_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Search could not be deleted; retry the request.", search_id=saved_search_id) from exc
    logger.info("search_history_deleted owner=%s search=%s", owner_id, saved_search_id)
    return {"deleted": True, "search_id": saved_search_id}


async def resample_saved_searches_service(
    db: Optional[AsyncSession] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Append a ``scheduled`` sample to every search used within the look-back window."""
    if db is None:
        async with async_session_maker() as session:
            return await resample_saved_searches_service(session, now=now)

    current = now or utcnow()
    cutoff = current - timedelta(days=max(int(settings.SEARCH_TREND_LOOKBACK_DAYS), 1))
    result = await db.execute(
        select(SavedSearch.id, SavedSearch.filters_json).where(SavedSearch.last_used_at >= cutoff)
    )
    searches = result.all()
    if not searches:
        return {"sampled": 0, "failed": 0}

    profiles = await load_searchable_profiles(db)
    sampled = 0
    failed = 0
    for saved_id, stored_filters in searches:
        try:
            filters = SearchFilters.model_validate(dict(stored_filters or {}))
        except ValueError as exc:
            failed += 1
            logger.warning("search_trend_sample_skipped search=%s error=%s", saved_id, exc)
            continue
        count = len(filter_profiles(profiles, filters))
        try:
            await db.execute(
                update(SavedSearch)
                .where(SavedSearch.id == saved_id)
                .values(latest_result_count=count)
                .execution_options(synchronize_session=False)
            )
            _add_sample(db, saved_id, count, "scheduled", current)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            failed += 1
            logger.warning("search_trend_sample_failed search=%s error=%s", saved_id, exc)
            continue
        sampled += 1

    logger.info("search_trend_resample sampled=%s failed=%s", sampled, failed)
    return {"sampled": sampled, "failed": failed}
