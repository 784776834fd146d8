"""Profile matching, relevance scoring and sorting for CV search."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from database import as_utc
from models.resume_profile import ResumeProfile
from services.profile_store import load_searchable_profiles, profile_languages, project_profile, string_list
from services.search_filters import SearchFilters

logger = logging.getLogger(__name__)

EDUCATION_RANKS = {
    "high school": 1,
    "diploma": 1,
    "associate": 2,
    "bachelor": 3,
    "master": 4,
    "mba": 4,
    "doctorate": 5,
    "phd": 5,
}
EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _folded(values: Any) -> List[str]:
    return [value.casefold() for value in string_list(values)]


def _education_rank(level: Optional[str]) -> int:
    text = str(level or "").casefold()
    return max((rank for key, rank in EDUCATION_RANKS.items() if key in text), default=0)


def _contains_any(wanted: Sequence[str], have: Sequence[str]) -> List[str]:
    return [term for term in wanted if any(term in value for value in have)]


def _search_text(profile: ResumeProfile) -> str:
    return " ".join(
        [
            str(profile.full_name or ""),
            str(profile.headline or ""),
            " ".join(string_list(profile.skills)),
            " ".join(string_list(profile.job_titles)),
            " ".join(string_list(profile.companies)),
            str(profile.education_level or ""),
            " ".join(string_list(profile.degrees)),
        ]
    ).casefold()


def _same(wanted: Optional[str], have: Optional[str]) -> bool:
    return str(wanted or "").casefold() == str(have or "").strip().casefold()


def score_profile(profile: ResumeProfile, filters: SearchFilters) -> Optional[float]:
    """Return a relevance score, or None when the profile does not match."""
    score = 0.0

    if filters.keyword_search:
        text = _search_text(profile)
        tokens = filters.keyword_search.casefold().split()
        hits = [token for token in tokens if token in text]
        if len(hits) != len(tokens):
            return None
        score += len(hits)

    if filters.skills:
        have = set(_folded(profile.skills))
        matched = [skill for skill in filters.skills if skill in have]
        if filters.skills_match_all and len(matched) != len(filters.skills):
            return None
        if not matched:
            return None
        score += 3 * len(matched)

    if filters.job_titles:
        matched = _contains_any(filters.job_titles, _folded(profile.job_titles) + [str(profile.headline or "").casefold()])
        if not matched:
            return None
        score += 2 * len(matched)

    if filters.companies:
        matched = _contains_any(filters.companies, _folded(profile.companies))
        if not matched:
            return None
        score += len(matched)

    years = float(profile.experience_years or 0)
    if years < filters.min_experience_years or years > filters.max_experience_years:
        return None

    for key in ("country", "state", "city", "education_level"):
        wanted = getattr(filters, key)
        if wanted and not _same(wanted, getattr(profile, key)):
            return None

    if filters.degrees and not _contains_any(filters.degrees, _folded(profile.degrees)):
        return None

    if filters.languages:
        spoken = profile_languages(profile)
        matched = [
            entry
            for entry in spoken
            if entry["name"].casefold() in filters.languages
            and (not filters.language_proficiency or _same(filters.language_proficiency, entry["proficiency"]))
        ]
        if not matched:
            return None
        score += 0.5 * len(matched)

    if filters.open_to_work_only and not profile.open_to_work:
        return None
    if filters.is_currently_employed is not None and bool(profile.is_currently_employed) != filters.is_currently_employed:
        return None

    if profile.open_to_work:
        score += 0.25
    return score


def _updated(profile: ResumeProfile) -> datetime:
    return as_utc(profile.updated_at) or EPOCH


def sort_matches(
    matches: List[Tuple[ResumeProfile, float]],
    sort_by: str,
    sort_order: str,
) -> List[Tuple[ResumeProfile, float]]:
    reverse = sort_order != "asc"

    def _key(match: Tuple[ResumeProfile, float]) -> Any:
        profile, score = match
        if sort_by == "recent_activity":
            return _updated(profile)
        if sort_by == "experience":
            return float(profile.experience_years or 0)
        if sort_by == "education":
            return _education_rank(profile.education_level)
        return (score, _updated(profile))

    # Stable id ordering first so equal keys paginate deterministically.
    ordered = sorted(matches, key=lambda match: match[0].id)
    return sorted(ordered, key=_key, reverse=reverse)


def filter_profiles(profiles: Sequence[ResumeProfile], filters: SearchFilters) -> List[Tuple[ResumeProfile, float]]:
    matches = []
    for profile in profiles:
        score = score_profile(profile, filters)
        if score is not None:
            matches.append((profile, score))
    return matches


async def count_matches(db: AsyncSession, filters: SearchFilters) -> int:
    profiles = await load_searchable_profiles(db)
    return len(filter_profiles(profiles, filters))


async def run_profile_search(
    db: AsyncSession,
    filters: SearchFilters,
    *,
    sort_by: str = "relevance",
    sort_order: str = "desc",
    offset: int = 0,
    limit: int = 20,
) -> Tuple[int, List[Tuple[ResumeProfile, float]]]:
    """Return ``(total_count, page)`` of scored matches."""
    profiles = await load_searchable_profiles(db)
    matches = sort_matches(filter_profiles(profiles, filters), sort_by, sort_order)
    logger.debug("cv_search_run scanned=%s matched=%s sort=%s", len(profiles), len(matches), sort_by)
    return len(matches), matches[offset:offset + limit]


def result_payload(profile: ResumeProfile, score: float, unlocked: Dict[str, datetime]) -> Dict[str, Any]:
    row = project_profile(profile)
    row["relevance_score"] = round(score, 2)
    row["is_unlocked"] = profile.id in unlocked
    row["unlock_expires_at"] = unlocked[profile.id].isoformat() if profile.id in unlocked else None
    return row
