"""BucketItem model: one resume's membership in one bucket."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class BucketItem(Base):
    """Membership row carrying per-bucket notes, rating and status."""

    __tablename__ = "bucket_items"
    __table_args__ = (
        UniqueConstraint("bucket_id", "resume_id", name="uq_bucket_items_bucket_resume"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    bucket_id = Column(String, ForeignKey("buckets.id", ondelete="CASCADE"), nullable=False, index=True)
    resume_id = Column(String, nullable=False, index=True)
    display_order = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)
    status = Column(String, nullable=True)
    added_by = Column(String, nullable=True)
    added_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    bucket = relationship("Bucket", back_populates="items")
