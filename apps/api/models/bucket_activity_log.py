"""BucketActivityLog model: append-only audit of bucket mutations."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String

from database import Base


class BucketActivityLog(Base):
    __tablename__ = "bucket_activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bucket_id = Column(String, ForeignKey("buckets.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)
    actor_id = Column(String, nullable=False)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
