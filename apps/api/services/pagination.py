"""Page/page-size handling shared by every list endpoint."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from config import settings


def _safe_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def resolve_page(page: Any, page_size: Any) -> Tuple[int, int, int]:
    """Clamp page inputs and return ``(page, page_size, offset)``."""
    resolved_page = max(_safe_int(page, 1), 1)
    default_size = max(int(settings.DEFAULT_PAGE_SIZE), 1)
    resolved_size = max(1, min(_safe_int(page_size, default_size), max(int(settings.MAX_PAGE_SIZE), 1)))
    return resolved_page, resolved_size, (resolved_page - 1) * resolved_size


def page_envelope(
    *,
    key: str,
    rows: List[Dict[str, Any]],
    page: int,
    page_size: int,
    total_count: int,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        key: rows,
        "page": page,
        "page_size": page_size,
        "total_count": int(total_count),
        "has_more": page * page_size < int(total_count),
    }
    if extra:
        payload.update(extra)
    return payload
