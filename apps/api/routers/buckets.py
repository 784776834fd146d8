"""Bucket management router."""

from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_recruiter_scope
from services.bucket_transfer import bulk_remove_service, transfer_items_service
from services.buckets import (
    add_items_service,
    create_bucket_service,
    delete_bucket_service,
    get_bucket_activity_service,
    get_bucket_service,
    get_resume_bucket_info_service,
    list_buckets_service,
    list_items_service,
    remove_item_service,
    reorder_items_service,
    search_buckets_service,
    update_bucket_service,
    update_item_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)

SortOrder = Literal["asc", "desc"]


class CreateBucketRequest(BaseModel):
    name: str = Field(min_length=1, max_length=settings.BUCKET_NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=2000)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    display_order: Optional[int] = Field(default=None, ge=0)


class UpdateBucketRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=settings.BUCKET_NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=2000)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    display_order: Optional[int] = Field(default=None, ge=0)
    is_archived: Optional[bool] = None


class AddResumesRequest(BaseModel):
    resume_ids: List[str] = Field(min_length=1, max_length=500)


class UpdateItemRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=5000)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    status: Optional[str] = Field(default=None, max_length=100)
    display_order: Optional[int] = Field(default=None, ge=0)


class ItemIdsRequest(BaseModel):
    item_ids: List[str] = Field(min_length=1, max_length=500)


class ReorderRequest(BaseModel):
    item_ids: List[str]
    expected_version: Optional[int] = Field(default=None, ge=0)


class TransferRequest(BaseModel):
    target_bucket_id: str
    item_ids: List[str] = Field(min_length=1, max_length=500)
    keep_in_source: bool = False


@router.post("")
async def create_bucket(
    request: CreateBucketRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await create_bucket_service(owner_id=auth.recruiter_id, payload=request.model_dump(), db=db)


@router.get("")
async def list_buckets(
    include_archived: bool = Query(default=False),
    sort_by: Literal["display_order", "name", "created_at", "updated_at"] = Query(default="display_order"),
    order: SortOrder = Query(default="asc"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await list_buckets_service(
        owner_id=auth.recruiter_id,
        include_archived=include_archived,
        sort_by=sort_by,
        order=order,
        page=page,
        page_size=page_size,
        db=db,
    )


@router.get("/search")
async def search_buckets(
    query: Optional[str] = Query(default=None, max_length=200),
    rating: Optional[int] = Query(default=None, ge=1, le=5),
    status: Optional[str] = Query(default=None, max_length=100),
    include_archived: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await search_buckets_service(
        owner_id=auth.recruiter_id,
        query=query,
        rating=rating,
        status=status,
        include_archived=include_archived,
        page=page,
        page_size=page_size,
        db=db,
    )


@router.get("/resumes/{resume_id}/buckets")
async def resume_bucket_info(
    resume_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await get_resume_bucket_info_service(owner_id=auth.recruiter_id, resume_id=resume_id, db=db)


@router.get("/{bucket_id}")
async def get_bucket(
    bucket_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await get_bucket_service(owner_id=auth.recruiter_id, bucket_id=bucket_id, db=db)


@router.patch("/{bucket_id}")
async def update_bucket(
    bucket_id: str,
    request: UpdateBucketRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await update_bucket_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        changes=request.model_dump(exclude_unset=True),
        db=db,
    )


@router.delete("/{bucket_id}")
async def delete_bucket(
    bucket_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await delete_bucket_service(owner_id=auth.recruiter_id, bucket_id=bucket_id, db=db)


@router.post("/{bucket_id}/resumes")
async def add_resumes(
    bucket_id: str,
    request: AddResumesRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await add_items_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        resume_ids=request.resume_ids,
        db=db,
    )


@router.get("/{bucket_id}/resumes")
async def list_bucket_resumes(
    bucket_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort_by: Literal["added_at", "display_order", "rating"] = Query(default="display_order"),
    order: SortOrder = Query(default="asc"),
    rating: Optional[int] = Query(default=None, ge=1, le=5),
    status: Optional[str] = Query(default=None, max_length=100),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await list_items_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        order=order,
        rating=rating,
        status=status,
        db=db,
    )


@router.post("/{bucket_id}/resumes/bulk-remove")
async def bulk_remove_resumes(
    bucket_id: str,
    request: ItemIdsRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await bulk_remove_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        item_ids=request.item_ids,
        db=db,
    )


@router.patch("/{bucket_id}/resumes/{item_id}")
async def update_bucket_item(
    bucket_id: str,
    item_id: str,
    request: UpdateItemRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await update_item_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        item_id=item_id,
        changes=request.model_dump(exclude_unset=True),
        db=db,
    )


@router.delete("/{bucket_id}/resumes/{item_id}")
async def remove_bucket_item(
    bucket_id: str,
    item_id: str,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await remove_item_service(owner_id=auth.recruiter_id, bucket_id=bucket_id, item_id=item_id, db=db)


@router.post("/{bucket_id}/reorder")
async def reorder_bucket_items(
    bucket_id: str,
    request: ReorderRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await reorder_items_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        ordered_item_ids=request.item_ids,
        expected_version=request.expected_version,
        db=db,
    )


@router.post("/{bucket_id}/transfer")
async def transfer_items(
    bucket_id: str,
    request: TransferRequest,
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await transfer_items_service(
        owner_id=auth.recruiter_id,
        source_bucket_id=bucket_id,
        target_bucket_id=request.target_bucket_id,
        item_ids=request.item_ids,
        keep_in_source=request.keep_in_source,
        db=db,
    )


@router.get("/{bucket_id}/activity")
async def bucket_activity(
    bucket_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=settings.MAX_PAGE_SIZE),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await get_bucket_activity_service(
        owner_id=auth.recruiter_id,
        bucket_id=bucket_id,
        page=page,
        limit=limit,
        db=db,
    )
