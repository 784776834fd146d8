"""Recruiter authentication and scoping dependencies."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.recruiter import Recruiter
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    recruiter_id: str
    email: Optional[str] = None


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the recruiter from the Bearer session token; owner ids are never taken from the request."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        claims = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        recruiter_id=str(claims.get("sub", "")),
        email=str(claims.get("email", "")) or None,
    )


async def get_recruiter_scope(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Make sure the authenticated recruiter has a local row before owner-scoped writes."""
    result = await db.execute(select(Recruiter.id).where(Recruiter.id == auth.recruiter_id))
    if result.scalar_one_or_none():
        return auth

    db.add(Recruiter(id=auth.recruiter_id, email=auth.email or f"{auth.recruiter_id}@local.invalid"))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
    return auth
