"""Append-only bucket activity log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from database import utcnow
from models.bucket_activity_log import BucketActivityLog

logger = logging.getLogger(__name__)

ACTIVITY_ACTIONS = {
    "created",
    "updated",
    "archived",
    "unarchived",
    "items_added",
    "item_removed",
    "item_updated",
    "items_reordered",
    "items_moved",
    "items_copied",
    "items_bulk_removed",
}


class ActivityMetadata(BaseModel):
    """Recognized activity metadata keys; anything else is dropped."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    changes: Optional[Dict[str, Dict[str, Any]]] = None
    resume_ids: Optional[List[str]] = None
    item_id: Optional[str] = None
    resume_id: Optional[str] = None
    requested_count: Optional[int] = None
    added_count: Optional[int] = None
    skipped_count: Optional[int] = None
    removed_count: Optional[int] = None
    failed_count: Optional[int] = None
    failures: Optional[List[Dict[str, Any]]] = None
    item_count: Optional[int] = None
    source_bucket_id: Optional[str] = None
    target_bucket_id: Optional[str] = None
    target_bucket_name: Optional[str] = None
    direction: Optional[str] = None
    keep_in_source: Optional[bool] = None
    version: Optional[int] = None


def log_bucket_activity(
    db: AsyncSession,
    *,
    bucket_id: str,
    action: str,
    actor_id: str,
    metadata: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> BucketActivityLog:
    """Stage an activity row in the caller's transaction."""
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown bucket activity action: {action}")
    cleaned = ActivityMetadata.model_validate(dict(metadata or {})).model_dump(exclude_none=True)
    entry = BucketActivityLog(
        bucket_id=bucket_id,
        action=action,
        actor_id=actor_id,
        metadata_json=cleaned or None,
        created_at=now or utcnow(),
    )
    db.add(entry)
    logger.debug("bucket_activity bucket=%s action=%s actor=%s", bucket_id, action, actor_id)
    return entry


def serialize_activity(entry: BucketActivityLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "bucket_id": entry.bucket_id,
        "action": entry.action,
        "actor_id": entry.actor_id,
        "metadata": entry.metadata_json or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
