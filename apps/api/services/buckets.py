"""Bucket store: recruiter-owned, ordered resume collections."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import uuid

from sqlalchemy import and_, delete, func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import as_utc, utcnow
from models.bucket import Bucket
from models.bucket_activity_log import BucketActivityLog
from models.bucket_item import BucketItem
from models.unlock_grant import UnlockGrant
from services.activity import log_bucket_activity, serialize_activity
from services.errors import ConflictError, NotFoundError, ServiceError, TransientStoreError, ValidationFailedError
from services.pagination import page_envelope, resolve_page
from services.profile_store import existing_resume_ids, fetch_profiles, project_profile
from services.unlocks import unlock_status_map

logger = logging.getLogger(__name__)

BUCKET_SORT_KEYS = {"display_order", "name", "created_at", "updated_at"}
ITEM_SORT_KEYS = {"added_at", "display_order", "rating"}
BUCKET_FIELDS = ("name", "description", "color", "icon", "display_order", "is_archived")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


def _clean_name(value: Any) -> str:
    name = _normalize_text(value)
    if not name:
        raise ValidationFailedError("Bucket name cannot be empty.")
    max_length = max(int(settings.BUCKET_NAME_MAX_LENGTH), 1)
    if len(name) > max_length:
        raise ValidationFailedError(f"Bucket name must be at most {max_length} characters.", max_length=max_length)
    return name


def _clean_color(value: Any) -> str:
    color = _normalize_text(value) or settings.DEFAULT_BUCKET_COLOR
    if not HEX_COLOR_PATTERN.match(color):
        raise ValidationFailedError("color must be a hex value like #3B82F6", color=color)
    return color.upper()


def _clean_rating(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        rating = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailedError("rating must be an integer between 1 and 5", rating=value) from exc
    if rating < 1 or rating > 5:
        raise ValidationFailedError("rating must be an integer between 1 and 5", rating=rating)
    return rating


def _optional_text(value: Any) -> Optional[str]:
    text = _normalize_text(value)
    return text or None


def _descending(order: Optional[str]) -> bool:
    return _normalize_text(order).lower() == "desc"


def dedupe_ids(values: Iterable[Any]) -> List[str]:
    return list(dict.fromkeys(_normalize_text(value) for value in values if _normalize_text(value)))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


async def get_owned_bucket(owner_id: str, bucket_id: str, db: AsyncSession) -> Bucket:
    result = await db.execute(
        select(Bucket)
        .where(Bucket.id == bucket_id, Bucket.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    bucket = result.scalar_one_or_none()
    if not bucket:
        raise NotFoundError("Bucket not found", bucket_id=bucket_id)
    return bucket


async def bump_bucket_version(bucket_id: str, db: AsyncSession, expected_version: Optional[int] = None) -> int:
    """Compare-and-set on the bucket version; also takes the bucket's write lock."""
    stmt = update(Bucket).where(Bucket.id == bucket_id)
    if expected_version is not None:
        stmt = stmt.where(Bucket.version == int(expected_version))
    result = await db.execute(
        stmt.values(version=Bucket.version + 1, updated_at=utcnow()).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError(
            "Bucket changed since it was loaded; refetch and retry.",
            bucket_id=bucket_id,
            expected_version=expected_version,
        )
    version = await db.execute(select(Bucket.version).where(Bucket.id == bucket_id))
    return int(version.scalar_one())


async def _bucket_items(bucket_id: str, db: AsyncSession) -> List[BucketItem]:
    result = await db.execute(
        select(BucketItem)
        .where(BucketItem.bucket_id == bucket_id)
        .order_by(BucketItem.display_order.asc(), BucketItem.added_at.asc(), BucketItem.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def redensify_items(bucket_id: str, db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Rewrite display_order as 0..n-1 keeping the current relative order."""
    current = now or utcnow()
    items = await _bucket_items(bucket_id, db)
    for index, item in enumerate(items):
        if item.display_order != index:
            item.display_order = index
            item.updated_at = current
    return len(items)


def _apply_order(items: List[BucketItem], ordered_ids: List[str], now: datetime) -> None:
    positions = {item_id: index for index, item_id in enumerate(ordered_ids)}
    for item in items:
        target = positions[item.id]
        if item.display_order != target:
            item.display_order = target
            item.updated_at = now


async def _bucket_stats(
    owner_id: str,
    bucket_ids: List[str],
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> Dict[str, Dict[str, Any]]:
    stats: Dict[str, Dict[str, Any]] = {
        bucket_id: {"item_count": 0, "avg_rating": None, "unlocked_count": 0, "locked_count": 0}
        for bucket_id in bucket_ids
    }
    if not bucket_ids:
        return stats
    current = now or utcnow()

    totals = await db.execute(
        select(BucketItem.bucket_id, func.count(BucketItem.id), func.avg(BucketItem.rating))
        .where(BucketItem.bucket_id.in_(bucket_ids))
        .group_by(BucketItem.bucket_id)
    )
    for bucket_id, item_count, avg_rating in totals.all():
        stats[bucket_id]["item_count"] = int(item_count or 0)
        stats[bucket_id]["avg_rating"] = round(float(avg_rating), 2) if avg_rating is not None else None

    unlocked = await db.execute(
        select(BucketItem.bucket_id, func.count(BucketItem.id))
        .select_from(BucketItem)
        .join(
            UnlockGrant,
            and_(
                UnlockGrant.resume_id == BucketItem.resume_id,
                UnlockGrant.owner_id == owner_id,
                UnlockGrant.expires_at > current,
            ),
        )
        .where(BucketItem.bucket_id.in_(bucket_ids))
        .group_by(BucketItem.bucket_id)
    )
    for bucket_id, unlocked_count in unlocked.all():
        stats[bucket_id]["unlocked_count"] = int(unlocked_count or 0)

    for row in stats.values():
        row["locked_count"] = row["item_count"] - row["unlocked_count"]
    return stats


def _serialize_bucket(bucket: Bucket, stats: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {
        "id": bucket.id,
        "name": bucket.name,
        "description": bucket.description,
        "color": bucket.color,
        "icon": bucket.icon,
        "is_archived": bool(bucket.is_archived),
        "display_order": bucket.display_order,
        "version": bucket.version,
        "created_at": _iso(bucket.created_at),
        "updated_at": _iso(bucket.updated_at),
    }
    if stats is not None:
        payload.update(stats)
    return payload


def _serialize_item(item: BucketItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "bucket_id": item.bucket_id,
        "resume_id": item.resume_id,
        "display_order": item.display_order,
        "notes": item.notes,
        "rating": item.rating,
        "status": item.status,
        "added_by": item.added_by,
        "added_at": _iso(item.added_at),
        "updated_at": _iso(item.updated_at),
    }


async def _bucket_payload(owner_id: str, bucket_id: str, db: AsyncSession) -> Dict[str, Any]:
    bucket = await get_owned_bucket(owner_id, bucket_id, db)
    stats = await _bucket_stats(owner_id, [bucket.id], db)
    return _serialize_bucket(bucket, stats[bucket.id])


async def _name_taken(owner_id: str, name: str, db: AsyncSession, exclude_id: Optional[str] = None) -> bool:
    conditions = [Bucket.owner_id == owner_id, func.lower(Bucket.name) == name.lower()]
    if exclude_id:
        conditions.append(Bucket.id != exclude_id)
    result = await db.execute(select(func.count(Bucket.id)).where(*conditions))
    return int(result.scalar() or 0) > 0


async def insert_members(
    bucket_id: str,
    resume_ids: Iterable[Any],
    db: AsyncSession,
    *,
    actor_id: str,
    now: datetime,
    validate_resumes: bool = True,
    item_meta: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Tuple[List[BucketItem], List[Dict[str, Any]]]:
    """Stage new members at the end of the order. Does not commit."""
    requested = dedupe_ids(resume_ids)
    present_result = await db.execute(
        select(BucketItem.resume_id).where(
            BucketItem.bucket_id == bucket_id,
            BucketItem.resume_id.in_(requested),
        )
    )
    present = set(present_result.scalars().all())
    candidates = [rid for rid in requested if rid not in present]
    known = await existing_resume_ids(db, candidates) if validate_resumes else set(candidates)

    max_order = await db.execute(
        select(func.max(BucketItem.display_order)).where(BucketItem.bucket_id == bucket_id)
    )
    current_max = max_order.scalar()
    next_order = int(current_max) + 1 if current_max is not None else 0

    added: List[BucketItem] = []
    results: List[Dict[str, Any]] = []
    for rid in requested:
        if rid in present:
            results.append({"resume_id": rid, "status": "already_in_bucket"})
            continue
        if rid not in known:
            results.append({"resume_id": rid, "status": "not_found"})
            continue
        meta = dict((item_meta or {}).get(rid) or {})
        item = BucketItem(
            id=str(uuid.uuid4()),
            bucket_id=bucket_id,
            resume_id=rid,
            display_order=next_order,
            notes=meta.get("notes"),
            rating=meta.get("rating"),
            status=meta.get("status"),
            added_by=actor_id,
            added_at=now,
        )
        db.add(item)
        added.append(item)
        results.append({"resume_id": rid, "status": "added", "item_id": item.id})
        next_order += 1
    return added, results


async def create_bucket_service(
    *,
    owner_id: str,
    payload: Mapping[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    name = _clean_name(payload.get("name"))
    color = _clean_color(payload.get("color"))
    icon = _normalize_text(payload.get("icon")) or "folder"
    description = _optional_text(payload.get("description"))
    if await _name_taken(owner_id, name, db):
        raise ConflictError("A bucket with this name already exists.", name=name)

    display_order = payload.get("display_order")
    if display_order is None:
        max_order = await db.execute(select(func.max(Bucket.display_order)).where(Bucket.owner_id == owner_id))
        current_max = max_order.scalar()
        display_order = int(current_max) + 1 if current_max is not None else 0

    now = utcnow()
    bucket_id = str(uuid.uuid4())
    db.add(
        Bucket(
            id=bucket_id,
            owner_id=owner_id,
            name=name,
            description=description,
            color=color,
            icon=icon,
            is_archived=False,
            display_order=max(int(display_order), 0),
            version=0,
            created_at=now,
            updated_at=now,
        )
    )
    try:
        await db.flush()
        log_bucket_activity(
            db,
            bucket_id=bucket_id,
            action="created",
            actor_id=owner_id,
            metadata={"name": name},
            now=now,
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("A bucket with this name already exists.", name=name) from exc

    logger.info("bucket_created owner=%s bucket=%s", owner_id, bucket_id)
    return await _bucket_payload(owner_id, bucket_id, db)


async def update_bucket_service(
    *,
    owner_id: str,
    bucket_id: str,
    changes: Mapping[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Apply only the fields present in ``changes``."""
    bucket = await get_owned_bucket(owner_id, bucket_id, db)
    updates: Dict[str, Any] = {}
    for field in BUCKET_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "name":
            value = _clean_name(value)
            if value != bucket.name and await _name_taken(owner_id, value, db, exclude_id=bucket.id):
                raise ConflictError("A bucket with this name already exists.", name=value)
        elif field == "color":
            value = _clean_color(value)
        elif field == "icon":
            value = _normalize_text(value) or "folder"
        elif field == "description":
            value = _optional_text(value)
        elif field == "display_order":
            if value is None:
                continue
            value = max(int(value), 0)
        elif field == "is_archived":
            if value is None:
                continue
            value = bool(value)
        if getattr(bucket, field) != value:
            updates[field] = value

    if not updates:
        return await _bucket_payload(owner_id, bucket_id, db)

    now = utcnow()
    archive_flip = updates.pop("is_archived", None)
    diff = {field: {"before": getattr(bucket, field), "after": value} for field, value in updates.items()}
    for field, value in updates.items():
        setattr(bucket, field, value)
    if archive_flip is not None:
        bucket.is_archived = archive_flip
    bucket.updated_at = now

    if diff:
        log_bucket_activity(db, bucket_id=bucket_id, action="updated", actor_id=owner_id, metadata={"changes": diff}, now=now)
    if archive_flip is not None:
        log_bucket_activity(
            db,
            bucket_id=bucket_id,
            action="archived" if archive_flip else "unarchived",
            actor_id=owner_id,
            metadata={"name": bucket.name},
            now=now,
        )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("A bucket with this name already exists.", name=updates.get("name")) from exc

    logger.info("bucket_updated owner=%s bucket=%s fields=%s", owner_id, bucket_id, sorted(diff) or ["is_archived"])
    return await _bucket_payload(owner_id, bucket_id, db)


async def set_bucket_archived_service(
    *,
    owner_id: str,
    bucket_id: str,
    archived: bool,
    db: AsyncSession,
) -> Dict[str, Any]:
    return await update_bucket_service(
        owner_id=owner_id,
        bucket_id=bucket_id,
        changes={"is_archived": archived},
        db=db,
    )


async def delete_bucket_service(*, owner_id: str, bucket_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Delete a bucket together with its items and activity rows."""
    await get_owned_bucket(owner_id, bucket_id, db)
    try:
        removed_items = await db.execute(delete(BucketItem).where(BucketItem.bucket_id == bucket_id))
        await db.execute(delete(BucketActivityLog).where(BucketActivityLog.bucket_id == bucket_id))
        await db.execute(delete(Bucket).where(Bucket.id == bucket_id, Bucket.owner_id == owner_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Bucket could not be deleted; retry the request.", bucket_id=bucket_id) from exc
    logger.info("bucket_deleted owner=%s bucket=%s items=%s", owner_id, bucket_id, removed_items.rowcount)
    return {"deleted": True, "bucket_id": bucket_id, "removed_items": int(removed_items.rowcount or 0)}


async def get_bucket_service(*, owner_id: str, bucket_id: str, db: AsyncSession) -> Dict[str, Any]:
    return await _bucket_payload(owner_id, bucket_id, db)


def _bucket_order(sort_by: Optional[str], order: Optional[str]):
    key = _normalize_text(sort_by) or "display_order"
    if key not in BUCKET_SORT_KEYS:
        raise ValidationFailedError("Unsupported bucket sort key.", sort_by=key, allowed=sorted(BUCKET_SORT_KEYS))
    column = getattr(Bucket, key)
    return (column.desc() if _descending(order) else column.asc()), Bucket.id.asc()


async def _paged_buckets(
    owner_id: str,
    conditions: List[Any],
    *,
    sort_by: Optional[str],
    order: Optional[str],
    page: Any,
    page_size: Any,
    db: AsyncSession,
) -> Dict[str, Any]:
    resolved_page, resolved_size, offset = resolve_page(page, page_size)
    ordering = _bucket_order(sort_by, order)
    total = await db.execute(select(func.count(Bucket.id)).where(*conditions))
    result = await db.execute(
        select(Bucket)
        .where(*conditions)
        .order_by(*ordering)
        .offset(offset)
        .limit(resolved_size)
        .execution_options(populate_existing=True)
    )
    buckets = result.scalars().all()
    stats = await _bucket_stats(owner_id, [bucket.id for bucket in buckets], db)
    return page_envelope(
        key="buckets",
        rows=[_serialize_bucket(bucket, stats[bucket.id]) for bucket in buckets],
        page=resolved_page,
        page_size=resolved_size,
        total_count=int(total.scalar() or 0),
    )


async def list_buckets_service(
    *,
    owner_id: str,
    include_archived: bool,
    sort_by: Optional[str],
    order: Optional[str],
    page: Any,
    page_size: Any,
    db: AsyncSession,
) -> Dict[str, Any]:
    conditions = [Bucket.owner_id == owner_id]
    if not include_archived:
        conditions.append(Bucket.is_archived.is_(False))
    return await _paged_buckets(
        owner_id,
        conditions,
        sort_by=sort_by,
        order=order,
        page=page,
        page_size=page_size,
        db=db,
    )


async def search_buckets_service(
    *,
    owner_id: str,
    query: Optional[str],
    rating: Optional[int],
    status: Optional[str],
    include_archived: bool,
    page: Any,
    page_size: Any,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Match bucket name/description, or buckets holding items with a rating/status."""
    conditions = [Bucket.owner_id == owner_id]
    if not include_archived:
        conditions.append(Bucket.is_archived.is_(False))
    text = _normalize_text(query).lower()
    if text:
        pattern = f"%{text}%"
        conditions.append(
            or_(
                func.lower(Bucket.name).like(pattern),
                func.lower(func.coalesce(Bucket.description, "")).like(pattern),
            )
        )
    item_conditions = []
    resolved_rating = _clean_rating(rating)
    if resolved_rating is not None:
        item_conditions.append(BucketItem.rating == resolved_rating)
    status_text = _normalize_text(status).lower()
    if status_text:
        item_conditions.append(func.lower(BucketItem.status) == status_text)
    if item_conditions:
        conditions.append(Bucket.id.in_(select(BucketItem.bucket_id).where(*item_conditions)))

    payload = await _paged_buckets(
        owner_id,
        conditions,
        sort_by="display_order",
        order="asc",
        page=page,
        page_size=page_size,
        db=db,
    )
    logger.info(
        "bucket_search owner=%s query=%s rating=%s status=%s total=%s",
        owner_id,
        text,
        resolved_rating,
        status_text,
        payload["total_count"],
    )
    return payload


async def get_resume_bucket_info_service(*, owner_id: str, resume_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(BucketItem, Bucket)
        .join(Bucket, Bucket.id == BucketItem.bucket_id)
        .where(Bucket.owner_id == owner_id, BucketItem.resume_id == resume_id)
        .order_by(Bucket.display_order.asc(), Bucket.id.asc())
    )
    return [
        {
            "bucket_id": bucket.id,
            "bucket_name": bucket.name,
            "color": bucket.color,
            "icon": bucket.icon,
            "is_archived": bool(bucket.is_archived),
            "item_id": item.id,
            "rating": item.rating,
            "status": item.status,
            "notes": item.notes,
            "added_at": _iso(item.added_at),
        }
        for item, bucket in result.all()
    ]


async def add_items_service(
    *,
    owner_id: str,
    bucket_id: str,
    resume_ids: Iterable[Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Append resumes to a bucket; present or unknown resumes are skipped."""
    await get_owned_bucket(owner_id, bucket_id, db)
    requested = dedupe_ids(resume_ids)
    if not requested:
        raise ValidationFailedError("Select at least one resume to add.")

    now = utcnow()
    try:
        version = await bump_bucket_version(bucket_id, db)
        added, results = await insert_members(bucket_id, requested, db, actor_id=owner_id, now=now)
        if not added:
            await db.rollback()
            version = int((await get_owned_bucket(owner_id, bucket_id, db)).version)
        else:
            log_bucket_activity(
                db,
                bucket_id=bucket_id,
                action="items_added",
                actor_id=owner_id,
                metadata={
                    "resume_ids": [item.resume_id for item in added],
                    "requested_count": len(requested),
                    "added_count": len(added),
                    "skipped_count": len(requested) - len(added),
                },
                now=now,
            )
            await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Bucket membership changed concurrently; retry the request.", bucket_id=bucket_id) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Resumes could not be added; retry the request.", bucket_id=bucket_id) from exc

    logger.info(
        "bucket_items_added owner=%s bucket=%s requested=%s added=%s",
        owner_id,
        bucket_id,
        len(requested),
        len(added),
    )
    return {
        "bucket_id": bucket_id,
        "added_count": len(added),
        "skipped_count": len(requested) - len(added),
        "version": version,
        "results": results,
    }


async def remove_item_service(*, owner_id: str, bucket_id: str, item_id: str, db: AsyncSession) -> Dict[str, Any]:
    await get_owned_bucket(owner_id, bucket_id, db)
    try:
        version = await bump_bucket_version(bucket_id, db)
        result = await db.execute(
            select(BucketItem.resume_id).where(BucketItem.id == item_id, BucketItem.bucket_id == bucket_id)
        )
        resume_id = result.scalar_one_or_none()
        if resume_id is None:
            raise NotFoundError("Bucket item not found", bucket_id=bucket_id, item_id=item_id)

        now = utcnow()
        await db.execute(delete(BucketItem).where(BucketItem.id == item_id))
        await redensify_items(bucket_id, db, now=now)
        log_bucket_activity(
            db,
            bucket_id=bucket_id,
            action="item_removed",
            actor_id=owner_id,
            metadata={"item_id": item_id, "resume_id": resume_id},
            now=now,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Resume could not be removed; retry the request.", bucket_id=bucket_id) from exc
    logger.info("bucket_item_removed owner=%s bucket=%s item=%s", owner_id, bucket_id, item_id)
    return {"removed": True, "bucket_id": bucket_id, "item_id": item_id, "version": version}


async def update_item_service(
    *,
    owner_id: str,
    bucket_id: str,
    item_id: str,
    changes: Mapping[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Update notes/rating/status; ``display_order`` moves the item within the bucket."""
    await get_owned_bucket(owner_id, bucket_id, db)
    result = await db.execute(
        select(BucketItem)
        .where(BucketItem.id == item_id, BucketItem.bucket_id == bucket_id)
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("Bucket item not found", bucket_id=bucket_id, item_id=item_id)

    diff: Dict[str, Dict[str, Any]] = {}
    for field in ("notes", "status"):
        if field in changes:
            value = _optional_text(changes[field])
            if value != getattr(item, field):
                diff[field] = {"before": getattr(item, field), "after": value}
    if "rating" in changes:
        rating = _clean_rating(changes["rating"])
        if rating != item.rating:
            diff["rating"] = {"before": item.rating, "after": rating}

    move_to = changes.get("display_order")
    now = utcnow()
    try:
        if move_to is not None and int(move_to) != item.display_order:
            await bump_bucket_version(bucket_id, db)
            items = await _bucket_items(bucket_id, db)
            ordered = [row.id for row in items if row.id != item_id]
            position = max(0, min(int(move_to), len(ordered)))
            ordered.insert(position, item_id)
            before = next(index for index, row in enumerate(items) if row.id == item_id)
            _apply_order(items, ordered, now)
            diff["display_order"] = {"before": before, "after": position}

        if not diff:
            return _serialize_item(item)

        for field in ("notes", "status", "rating"):
            if field in diff:
                setattr(item, field, diff[field]["after"])
        item.updated_at = now
        log_bucket_activity(
            db,
            bucket_id=bucket_id,
            action="item_updated",
            actor_id=owner_id,
            metadata={"item_id": item_id, "resume_id": item.resume_id, "changes": diff},
            now=now,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Bucket item could not be updated; retry the request.", bucket_id=bucket_id) from exc
    logger.info("bucket_item_updated owner=%s bucket=%s item=%s fields=%s", owner_id, bucket_id, item_id, sorted(diff))
    return _serialize_item(item)


async def reorder_items_service(
    *,
    owner_id: str,
    bucket_id: str,
    ordered_item_ids: List[str],
    expected_version: Optional[int],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Apply a full ordering; any mismatch with the current item set is rejected whole."""
    ordered = [_normalize_text(item_id) for item_id in ordered_item_ids]
    if len(set(ordered)) != len(ordered):
        raise ValidationFailedError("item_ids must not contain duplicates.")

    await get_owned_bucket(owner_id, bucket_id, db)
    try:
        version = await bump_bucket_version(bucket_id, db, expected_version=expected_version)
        items = await _bucket_items(bucket_id, db)
        current_ids = {item.id for item in items}
        submitted = set(ordered)
        if submitted != current_ids:
            raise ConflictError(
                "Submitted order does not match the bucket's current items; refetch and retry.",
                bucket_id=bucket_id,
                missing=sorted(current_ids - submitted),
                unexpected=sorted(submitted - current_ids),
            )

        now = utcnow()
        _apply_order(items, ordered, now)
        log_bucket_activity(
            db,
            bucket_id=bucket_id,
            action="items_reordered",
            actor_id=owner_id,
            metadata={"item_count": len(ordered), "version": version},
            now=now,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Bucket order could not be saved; retry the request.", bucket_id=bucket_id) from exc
    logger.info("bucket_items_reordered owner=%s bucket=%s count=%s version=%s", owner_id, bucket_id, len(ordered), version)
    return {"bucket_id": bucket_id, "version": version, "item_ids": ordered}


async def list_items_service(
    *,
    owner_id: str,
    bucket_id: str,
    page: Any,
    page_size: Any,
    sort_by: Optional[str],
    order: Optional[str],
    rating: Optional[int],
    status: Optional[str],
    db: AsyncSession,
) -> Dict[str, Any]:
    bucket = await get_owned_bucket(owner_id, bucket_id, db)
    key = _normalize_text(sort_by) or "display_order"
    if key not in ITEM_SORT_KEYS:
        raise ValidationFailedError("Unsupported item sort key.", sort_by=key, allowed=sorted(ITEM_SORT_KEYS))
    resolved_page, resolved_size, offset = resolve_page(page, page_size)

    conditions = [BucketItem.bucket_id == bucket_id]
    resolved_rating = _clean_rating(rating)
    if resolved_rating is not None:
        conditions.append(BucketItem.rating == resolved_rating)
    status_text = _normalize_text(status).lower()
    if status_text:
        conditions.append(func.lower(BucketItem.status) == status_text)

    column = getattr(BucketItem, key)
    primary = column.desc() if _descending(order) else column.asc()
    total = await db.execute(select(func.count(BucketItem.id)).where(*conditions))
    result = await db.execute(
        select(BucketItem)
        .where(*conditions)
        .order_by(primary, BucketItem.id.asc())
        .offset(offset)
        .limit(resolved_size)
        .execution_options(populate_existing=True)
    )
    items = result.scalars().all()
    resume_ids = [item.resume_id for item in items]
    profiles = await fetch_profiles(db, resume_ids)
    unlocked = await unlock_status_map(owner_id, resume_ids, db)

    rows = []
    for item in items:
        row = _serialize_item(item)
        profile = profiles.get(item.resume_id)
        row["resume"] = project_profile(profile) if profile else None
        row["is_unlocked"] = item.resume_id in unlocked
        row["unlock_expires_at"] = unlocked[item.resume_id].isoformat() if item.resume_id in unlocked else None
        rows.append(row)

    return page_envelope(
        key="items",
        rows=rows,
        page=resolved_page,
        page_size=resolved_size,
        total_count=int(total.scalar() or 0),
        extra={"bucket_id": bucket_id, "version": bucket.version},
    )


async def get_bucket_activity_service(
    *,
    owner_id: str,
    bucket_id: str,
    page: Any,
    limit: Any,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Activity rows newest first."""
    await get_owned_bucket(owner_id, bucket_id, db)
    resolved_page, resolved_size, offset = resolve_page(page, limit)
    total = await db.execute(
        select(func.count(BucketActivityLog.id)).where(BucketActivityLog.bucket_id == bucket_id)
    )
    result = await db.execute(
        select(BucketActivityLog)
        .where(BucketActivityLog.bucket_id == bucket_id)
        .order_by(BucketActivityLog.created_at.desc(), BucketActivityLog.id.desc())
        .offset(offset)
        .limit(resolved_size)
    )
    return page_envelope(
        key="activity",
        rows=[serialize_activity(entry) for entry in result.scalars().all()],
        page=resolved_page,
        page_size=resolved_size,
        total_count=int(total.scalar() or 0),
        extra={"bucket_id": bucket_id},
    )
