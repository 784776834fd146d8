"""ProfileAccessLog model: unlock/view/download events on revealed profiles."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.sql import func

from database import Base


class ProfileAccessLog(Base):
    """Append-only access record for unlocked resumes."""

    __tablename__ = "profile_access_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("recruiters.id"), nullable=False, index=True)
    resume_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    source = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
