"""Move/copy and bulk removal of bucket members."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import utcnow
from models.bucket_item import BucketItem
from services.activity import log_bucket_activity
from services.buckets import bump_bucket_version, dedupe_ids, insert_members, redensify_items, get_owned_bucket
from services.errors import ServiceError, TransientStoreError, ValidationFailedError
from services.unlocks import unlock_status_map

logger = logging.getLogger(__name__)


async def transfer_items_service(
    *,
    owner_id: str,
    source_bucket_id: str,
    target_bucket_id: str,
    item_ids: Iterable[Any],
    keep_in_source: bool,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Copy (``keep_in_source``) or move items into another bucket.

    Each item is added to the target before it is removed from the source,
    inside its own savepoint, so a failed add never loses membership.
    """
    if source_bucket_id == target_bucket_id:
        raise ValidationFailedError("Source and target bucket must differ.", bucket_id=source_bucket_id)
    await get_owned_bucket(owner_id, source_bucket_id, db)
    target = await get_owned_bucket(owner_id, target_bucket_id, db)
    target_name = target.name
    requested = dedupe_ids(item_ids)
    if not requested:
        raise ValidationFailedError("Select at least one item to transfer.")

    mode = "copy" if keep_in_source else "move"
    now = utcnow()
    results: List[Dict[str, Any]] = []
    added_count = 0
    removed_count = 0
    try:
        # Version bumps open the write transaction; fixed order avoids lock cycles.
        locked = [target_bucket_id] if keep_in_source else sorted([source_bucket_id, target_bucket_id])
        for bucket_id in locked:
            await bump_bucket_version(bucket_id, db)

        source_result = await db.execute(
            select(BucketItem).where(
                BucketItem.bucket_id == source_bucket_id,
                BucketItem.id.in_(requested),
            )
        )
        source_rows = {
            item.id: {
                "resume_id": item.resume_id,
                "notes": item.notes,
                "rating": item.rating,
                "status": item.status,
            }
            for item in source_result.scalars().all()
        }

        for item_id in requested:
            row = source_rows.get(item_id)
            if row is None:
                results.append({"item_id": item_id, "status": "not_found"})
                continue
            resume_id = row["resume_id"]
            try:
                async with db.begin_nested():
                    added, _ = await insert_members(
                        target_bucket_id,
                        [resume_id],
                        db,
                        actor_id=owner_id,
                        now=now,
                        validate_resumes=False,
                        item_meta={resume_id: row},
                    )
                    await db.flush()
                    if not keep_in_source:
                        await db.execute(delete(BucketItem).where(BucketItem.id == item_id))
            except SQLAlchemyError as exc:
                logger.warning(
                    "bucket_transfer_item_failed owner=%s source=%s target=%s item=%s error=%s",
                    owner_id,
                    source_bucket_id,
                    target_bucket_id,
                    item_id,
                    exc,
                )
                results.append({"item_id": item_id, "resume_id": resume_id, "status": "failed", "error": str(exc)})
                continue

            added_count += len(added)
            if not keep_in_source:
                removed_count += 1
            results.append(
                {
                    "item_id": item_id,
                    "resume_id": resume_id,
                    "status": "added" if added else "already_in_target",
                    "removed_from_source": not keep_in_source,
                }
            )

        if removed_count:
            await redensify_items(source_bucket_id, db, now=now)

        transferred = [row["resume_id"] for row in results if row["status"] in {"added", "already_in_target"}]
        unlocked = await unlock_status_map(owner_id, transferred, db)
        failures = [row for row in results if row["status"] in {"failed", "not_found"}]
        log_bucket_activity(
            db,
            bucket_id=source_bucket_id,
            action="items_copied" if keep_in_source else "items_moved",
            actor_id=owner_id,
            metadata={
                "source_bucket_id": source_bucket_id,
                "target_bucket_id": target_bucket_id,
                "target_bucket_name": target_name,
                "direction": mode,
                "keep_in_source": keep_in_source,
                "resume_ids": transferred,
                "requested_count": len(requested),
                "added_count": added_count,
                "removed_count": removed_count,
                "failed_count": len(failures),
                "failures": failures or None,
            },
            now=now,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("bucket_transfer_failed owner=%s source=%s target=%s error=%s", owner_id, source_bucket_id, target_bucket_id, exc)
        raise TransientStoreError("Transfer could not be completed; retry the request.") from exc

    logger.info(
        "bucket_transfer owner=%s mode=%s source=%s target=%s requested=%s added=%s removed=%s failed=%s",
        owner_id,
        mode,
        source_bucket_id,
        target_bucket_id,
        len(requested),
        added_count,
        removed_count,
        len(failures),
    )
    return {
        "source_bucket_id": source_bucket_id,
        "target_bucket_id": target_bucket_id,
        "mode": mode,
        "requested_count": len(requested),
        "added_count": added_count,
        "removed_count": removed_count,
        "failed_count": len(failures),
        "unlocked_count": len([rid for rid in transferred if rid in unlocked]),
        "locked_count": len([rid for rid in transferred if rid not in unlocked]),
        "results": results,
    }


async def bulk_remove_service(
    *,
    owner_id: str,
    bucket_id: str,
    item_ids: Iterable[Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Remove items by id; ids that are already gone are reported, not rejected."""
    await get_owned_bucket(owner_id, bucket_id, db)
    requested = dedupe_ids(item_ids)
    if not requested:
        raise ValidationFailedError("Select at least one item to remove.")

    now = utcnow()
    try:
        version = await bump_bucket_version(bucket_id, db)
        present_result = await db.execute(
            select(BucketItem.id, BucketItem.resume_id).where(
                BucketItem.bucket_id == bucket_id,
                BucketItem.id.in_(requested),
            )
        )
        present = {row.id: row.resume_id for row in present_result.all()}
        removed_count = 0
        if present:
            deleted = await db.execute(
                delete(BucketItem).where(
                    BucketItem.bucket_id == bucket_id,
                    BucketItem.id.in_(list(present)),
                )
            )
            removed_count = int(deleted.rowcount or 0)
            await redensify_items(bucket_id, db, now=now)

        results = [
            {
                "item_id": item_id,
                "resume_id": present.get(item_id),
                "status": "removed" if item_id in present else "absent",
            }
            for item_id in requested
        ]
        log_bucket_activity(
            db,
            bucket_id=bucket_id,
            action="items_bulk_removed",
            actor_id=owner_id,
            metadata={
                "resume_ids": list(present.values()),
                "requested_count": len(requested),
                "removed_count": removed_count,
            },
            now=now,
        )
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        raise TransientStoreError("Items could not be removed; retry the request.", bucket_id=bucket_id) from exc

    logger.info(
        "bucket_bulk_remove owner=%s bucket=%s requested=%s removed=%s",
        owner_id,
        bucket_id,
        len(requested),
        removed_count,
    )
    return {
        "bucket_id": bucket_id,
        "requested_count": len(requested),
        "removed_count": removed_count,
        "version": version,
        "results": results,
    }
