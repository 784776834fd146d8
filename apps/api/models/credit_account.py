"""CreditAccount model: the single balance row debited by unlocks."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class CreditAccount(Base):
    """Per-recruiter credit balance and current-period usage."""

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_credit_accounts_remaining_non_negative"),
        CheckConstraint("credits_remaining <= credits_total", name="ck_credit_accounts_remaining_le_total"),
        CheckConstraint("credits_used_this_period >= 0", name="ck_credit_accounts_used_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("recruiters.id"), nullable=False, unique=True, index=True)
    credits_total = Column(Integer, nullable=False, default=0)
    credits_remaining = Column(Integer, nullable=False, default=0)
    credits_used_this_period = Column(Integer, nullable=False, default=0)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    recruiter = relationship("Recruiter", back_populates="credit_account")
