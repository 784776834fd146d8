"""SavedSearch model: one row per distinct normalized filter set per owner."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


class SavedSearch(Base):
    """Replayable CV search with usage counters."""

    __tablename__ = "saved_searches"
    __table_args__ = (
        UniqueConstraint("owner_id", "filters_hash", name="uq_saved_searches_owner_filters"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("recruiters.id"), nullable=False, index=True)
    filters_json = Column(JSON, nullable=False)
    filters_hash = Column(String(64), nullable=False)
    search_name = Column(String, nullable=False)
    use_count = Column(Integer, nullable=False, default=1)
    latest_result_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_used_at = Column(DateTime(timezone=True), nullable=False, index=True)
