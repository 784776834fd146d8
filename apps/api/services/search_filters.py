"""CV search filter schema and canonical form used as saved-search identity."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from services.errors import ValidationFailedError

ARRAY_FIELDS = ("skills", "job_titles", "companies", "degrees", "languages")
TEXT_FIELDS = ("keyword_search", "country", "state", "city", "education_level", "language_proficiency")
FLAG_FIELDS = ("skills_match_all", "open_to_work_only")
REQUEST_FIELDS = ("page", "page_size", "sort_by", "sort_order")
SORT_KEYS = {"relevance", "recent_activity", "experience", "education"}
MIN_EXPERIENCE_DEFAULT = 0.0
MAX_EXPERIENCE_DEFAULT = 50.0


def _collapse(value: Any) -> str:
    return " ".join(str(value or "").split())


class SearchFilters(BaseModel):
    """Recognized CV search filters; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    keyword_search: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    skills_match_all: bool = False
    job_titles: List[str] = Field(default_factory=list)
    companies: List[str] = Field(default_factory=list)
    min_experience_years: float = Field(default=MIN_EXPERIENCE_DEFAULT, ge=0)
    max_experience_years: float = Field(default=MAX_EXPERIENCE_DEFAULT, ge=0)
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    education_level: Optional[str] = None
    degrees: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    language_proficiency: Optional[str] = None
    open_to_work_only: bool = False
    is_currently_employed: Optional[bool] = None

    @field_validator(*ARRAY_FIELDS, mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part for part in value.split(",")]
        return value

    @field_validator(*ARRAY_FIELDS)
    @classmethod
    def _normalize_list(cls, value: List[str]) -> List[str]:
        cleaned = {_collapse(entry).casefold() for entry in value}
        cleaned.discard("")
        return sorted(cleaned)

    @field_validator(*TEXT_FIELDS)
    @classmethod
    def _normalize_text(cls, value: Optional[str]) -> Optional[str]:
        # Matching ignores case, so identity must too.
        text = _collapse(value).casefold()
        return text or None

    @model_validator(mode="after")
    def _check_range(self) -> "SearchFilters":
        if self.min_experience_years > self.max_experience_years:
            raise ValueError("min_experience_years cannot exceed max_experience_years")
        return self


def canonicalize_filters(filters: SearchFilters) -> Dict[str, Any]:
    """Drop empty and default values so equivalent searches compare equal."""
    canonical: Dict[str, Any] = {}
    for key, value in filters.model_dump().items():
        if value is None or value == [] or value == "":
            continue
        if key in FLAG_FIELDS and value is False:
            continue
        if key == "min_experience_years" and float(value) == MIN_EXPERIENCE_DEFAULT:
            continue
        if key == "max_experience_years" and float(value) == MAX_EXPERIENCE_DEFAULT:
            continue
        canonical[key] = value
    if "skills" not in canonical:
        canonical.pop("skills_match_all", None)
    if "languages" not in canonical:
        canonical.pop("language_proficiency", None)
    return canonical


def filters_hash(canonical: Mapping[str, Any]) -> str:
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def describe_filters(canonical: Mapping[str, Any]) -> str:
    """Human-readable default name for a saved search."""
    parts: List[str] = []
    if canonical.get("keyword_search"):
        parts.append(f'"{canonical["keyword_search"]}"')
    for key in ("skills", "job_titles", "companies"):
        values = canonical.get(key) or []
        if values:
            shown = ", ".join(values[:3])
            parts.append(shown + (f" +{len(values) - 3}" if len(values) > 3 else ""))
    location = ", ".join(str(canonical[key]) for key in ("city", "state", "country") if canonical.get(key))
    if location:
        parts.append(location)
    if "min_experience_years" in canonical or "max_experience_years" in canonical:
        low = canonical.get("min_experience_years", MIN_EXPERIENCE_DEFAULT)
        high = canonical.get("max_experience_years", MAX_EXPERIENCE_DEFAULT)
        parts.append(f"{low:g}-{high:g} yrs")
    if canonical.get("open_to_work_only"):
        parts.append("open to work")
    name = " · ".join(parts) or "Search"
    return name[:200]


def parse_filters(payload: Mapping[str, Any]) -> Tuple[SearchFilters, Dict[str, Any]]:
    """Split a search request into filters and request-only options.

    Raises ValidationFailedError for unknown keys, malformed values and
    filter sets that are empty once canonicalized.
    """
    data = dict(payload or {})
    options = {key: data.pop(key) for key in REQUEST_FIELDS if key in data}
    try:
        filters = SearchFilters.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
            for error in exc.errors()
        ]
        raise ValidationFailedError("Invalid search filters.", errors=errors) from exc
    if not canonicalize_filters(filters):
        raise ValidationFailedError("Enter a search keyword or select at least one filter.")

    sort_by = str(options.get("sort_by") or "relevance").strip().lower()
    if sort_by not in SORT_KEYS:
        raise ValidationFailedError("Unsupported sort key.", sort_by=sort_by, allowed=sorted(SORT_KEYS))
    sort_order = str(options.get("sort_order") or "desc").strip().lower()
    if sort_order not in {"asc", "desc"}:
        raise ValidationFailedError("sort_order must be 'asc' or 'desc'", sort_order=sort_order)
    options["sort_by"] = sort_by
    options["sort_order"] = sort_order
    return filters, options
