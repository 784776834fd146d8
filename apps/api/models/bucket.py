"""Bucket model for recruiter-curated resume collections."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Bucket(Base):
    """Named, ordered, owner-scoped collection of resumes."""

    __tablename__ = "buckets"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_buckets_owner_name"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("recruiters.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=False, default="#3B82F6")
    icon = Column(String, nullable=False, default="folder")
    is_archived = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)
    # Bumped by every membership change; reorders must match it.
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    recruiter = relationship("Recruiter", back_populates="buckets")
    items = relationship("BucketItem", back_populates="bucket", passive_deletes=True)
