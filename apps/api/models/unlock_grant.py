"""UnlockGrant model: time-bounded access to one resume for one recruiter."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint

from database import Base


class UnlockGrant(Base):
    """One row per (owner, resume); renewed in place after it expires."""

    __tablename__ = "unlock_grants"
    __table_args__ = (
        UniqueConstraint("owner_id", "resume_id", name="uq_unlock_grants_owner_resume"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("recruiters.id"), nullable=False, index=True)
    resume_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False, default="search")
    granted_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revealed_payload = Column(JSON, nullable=False)
    unlock_count = Column(Integer, nullable=False, default=1)
