"""Routers package."""

from . import (
    health,
    billing,
    cv_search,
    buckets,
)
