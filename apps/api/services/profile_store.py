"""Adapter over the resume/profile store collaborator.

Search-result projections are public; the revealed payload is only ever handed
to the unlock manager, which snapshots it into the grant.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import utcnow
from models.resume_profile import ResumeProfile
from services.errors import NotFoundError, TransientStoreError

logger = logging.getLogger(__name__)


def string_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        names = []
        for entry in value:
            if isinstance(entry, dict):
                entry = entry.get("name")
            text = str(entry or "").strip()
            if text:
                names.append(text)
        return names
    return []


def profile_languages(profile: ResumeProfile) -> List[Dict[str, Optional[str]]]:
    languages = []
    for entry in profile.languages or []:
        if isinstance(entry, dict):
            name = str(entry.get("name") or "").strip()
            proficiency = str(entry.get("proficiency") or "").strip() or None
        else:
            name = str(entry or "").strip()
            proficiency = None
        if name:
            languages.append({"name": name, "proficiency": proficiency})
    return languages


def project_profile(profile: ResumeProfile) -> Dict[str, Any]:
    location = ", ".join(part for part in (profile.city, profile.state, profile.country) if part)
    return {
        "resume_id": profile.id,
        "full_name": profile.full_name,
        "headline": profile.headline,
        "location": location or None,
        "city": profile.city,
        "state": profile.state,
        "country": profile.country,
        "skills": string_list(profile.skills),
        "job_titles": string_list(profile.job_titles),
        "experience_years": profile.experience_years,
        "education_level": profile.education_level,
        "open_to_work": bool(profile.open_to_work),
        "is_currently_employed": profile.is_currently_employed,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }


def snapshot_payload(profile: ResumeProfile) -> Dict[str, Any]:
    payload = project_profile(profile)
    payload.update(
        {
            "email": profile.email,
            "phone": profile.phone,
            "address": profile.address,
            "linkedin_url": profile.linkedin_url,
            "resume_file_url": profile.resume_file_url,
            "summary": profile.summary,
            "companies": string_list(profile.companies),
            "degrees": string_list(profile.degrees),
            "languages": profile_languages(profile),
            "snapshot_at": utcnow().isoformat(),
        }
    )
    return payload


async def _bounded(awaitable, what: str):
    try:
        return await asyncio.wait_for(awaitable, timeout=float(settings.PROFILE_STORE_TIMEOUT_SECONDS))
    except asyncio.TimeoutError as exc:
        logger.warning("profile_store_timeout op=%s", what)
        raise TransientStoreError("Profile store timed out; retry the request.", operation=what) from exc
    except SQLAlchemyError as exc:
        logger.warning("profile_store_error op=%s error=%s", what, exc)
        raise TransientStoreError("Profile store is unavailable; retry the request.", operation=what) from exc


async def _select_profiles(db: AsyncSession, resume_ids: List[str]) -> List[ResumeProfile]:
    result = await db.execute(
        select(ResumeProfile)
        .where(ResumeProfile.id.in_(resume_ids))
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def fetch_profiles(db: AsyncSession, resume_ids: Iterable[str]) -> Dict[str, ResumeProfile]:
    ids = list(dict.fromkeys(str(rid) for rid in resume_ids if rid))
    if not ids:
        return {}
    rows = await _bounded(_select_profiles(db, ids), "fetch_profiles")
    return {row.id: row for row in rows}


async def existing_resume_ids(db: AsyncSession, resume_ids: Iterable[str]) -> Set[str]:
    return set((await fetch_profiles(db, resume_ids)).keys())


async def fetch_revealed_payload(resume_id: str, db: AsyncSession) -> Dict[str, Any]:
    profiles = await fetch_profiles(db, [resume_id])
    profile = profiles.get(resume_id)
    if profile is None:
        raise NotFoundError("Resume not found", resume_id=resume_id)
    return snapshot_payload(profile)


async def _select_searchable(db: AsyncSession) -> List[ResumeProfile]:
    result = await db.execute(
        select(ResumeProfile)
        .where(ResumeProfile.is_searchable.is_(True))
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def load_searchable_profiles(db: AsyncSession) -> List[ResumeProfile]:
    return await _bounded(_select_searchable(db), "load_searchable_profiles")
