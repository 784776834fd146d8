"""Credit balance and replenishment router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_recruiter_scope
from routers.rate_limit import rate_limit
from services.credits import apply_credit_grant, get_credit_summary

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditTopUpRequest(BaseModel):
    credits: int = Field(ge=1, le=10000)
    provider: str = Field(default="manual", min_length=1, max_length=50)
    billing_reference: Optional[str] = Field(default=None, max_length=200)


@router.get("/credits")
async def credits_summary(
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(auth.recruiter_id, db)


@router.post("/topup")
async def credit_topup(
    request: CreditTopUpRequest,
    _rate_limit: None = Depends(rate_limit("billing_topup", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_recruiter_scope),
    db: AsyncSession = Depends(get_db),
):
    """Replenishment event from the subscription/payment collaborator."""
    billing_reference = request.billing_reference or f"{request.provider}:{request.credits}"
    result = await apply_credit_grant(
        auth.recruiter_id,
        db,
        credits=request.credits,
        provider=request.provider,
        billing_reference=billing_reference,
    )
    logger.info("billing_topup recruiter=%s credits=%s ref=%s", auth.recruiter_id, request.credits, billing_reference)
    return {
        "ok": True,
        "credits_added": request.credits,
        "credits_total": result["credits_total"],
        "balance_after": result["balance_after"],
    }
