"""CV search, unlock and search-history router."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_recruiter_scope
from routers.rate_limit import rate_limit
from services.credits import get_credit_summary
from services.search_history import (
    delete_saved_search_service,
    list_search_history_service,
    rename_saved_search_service,
    rerun_search_service,
    search_and_record_service,
    trend_service,
)
from services.unlocks import (
    bulk_unlock_service,
    download_unlocked_resume_service,
    get_unlock_status_service,
    list_access_logs_service,
    list_unlocked_profiles_service,
    revealed_data_service,
    unlock_resume_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)

UnlockSource = Literal["search", "bucket"]


class BulkUnlockRequest(BaseModel):
    resume_ids: List[str] = Field(min_length=1)
    source: UnlockSource = "search"


class RenameSearchRequest(BaseModel):
    search_name: str = Field(min_length=1, max_length=200)


@router.post("/search")
async def search_cvs(
    payload: Dict[str, Any] = Body(...),
    _rate_limit: None = Depends(rate_limit("cv_search", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    """Run a filtered search; the filter set is recorded in search history."""
    return await search_and_record_service(owner_id=auth.recruiter_id, payload=payload, db=db)


@router.get("/credits")
async def credit_balance(
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(auth.recruiter_id, db)


@router.get("/status/{resume_id}")
async def unlock_status(
    resume_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await get_unlock_status_service(owner_id=auth.recruiter_id, resume_id=resume_id, db=db)


@router.post("/unlock/{resume_id}")
async def unlock_resume(
    resume_id: str,
    source: UnlockSource = Query(default="search"),
    _rate_limit: None = Depends(rate_limit("cv_unlock", limit=300, window_seconds=3600)),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await unlock_resume_service(owner_id=auth.recruiter_id, resume_id=resume_id, source=source, db=db)


@router.post("/bulk-unlock")
async def bulk_unlock(
    request: BulkUnlockRequest,
    _rate_limit: None = Depends(rate_limit("cv_bulk_unlock", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await bulk_unlock_service(
        owner_id=auth.recruiter_id,
        resume_ids=request.resume_ids,
        source=request.source,
        db=db,
    )


@router.get("/profiles/{resume_id}")
async def revealed_profile(
    resume_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await revealed_data_service(owner_id=auth.recruiter_id, resume_id=resume_id, db=db)


@router.get("/download/{resume_id}")
async def download_resume(
    resume_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await download_unlocked_resume_service(owner_id=auth.recruiter_id, resume_id=resume_id, db=db)


@router.get("/unlocked")
async def unlocked_profiles(
    include_expired: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await list_unlocked_profiles_service(
        owner_id=auth.recruiter_id,
        include_expired=include_expired,
        page=page,
        page_size=page_size,
        db=db,
    )


@router.get("/access-logs")
async def access_logs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await list_access_logs_service(owner_id=auth.recruiter_id, page=page, page_size=page_size, db=db)


@router.get("/search-history")
async def search_history(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await list_search_history_service(owner_id=auth.recruiter_id, page=page, page_size=page_size, db=db)


@router.post("/search-history/{search_id}/rerun")
async def rerun_search(
    search_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort_by: Optional[str] = Query(default=None),
    sort_order: Optional[str] = Query(default=None),
    _rate_limit: None = Depends(rate_limit("cv_search", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await rerun_search_service(
        owner_id=auth.recruiter_id,
        saved_search_id=search_id,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
        db=db,
    )


@router.get("/search-history/{search_id}/trend")
async def search_trend(
    search_id: str,
    limit: int = Query(default=settings.SEARCH_TREND_DEFAULT_LIMIT, ge=1, le=365),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await trend_service(owner_id=auth.recruiter_id, saved_search_id=search_id, limit=limit, db=db)


@router.patch("/search-history/{search_id}")
async def rename_search(
    search_id: str,
    request: RenameSearchRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await rename_saved_search_service(
        owner_id=auth.recruiter_id,
        saved_search_id=search_id,
        search_name=request.search_name,
        db=db,
    )


@router.delete("/search-history/{search_id}")
async def delete_search(
    search_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await delete_saved_search_service(owner_id=auth.recruiter_id, saved_search_id=search_id, db=db)
