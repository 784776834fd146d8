"""Recruiter model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Recruiter(Base):
    """Recruiter account as identified by the authentication collaborator."""

    __tablename__ = "recruiters"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_account = relationship("CreditAccount", back_populates="recruiter", uselist=False)
    credit_entries = relationship("CreditLedger", back_populates="recruiter")
    buckets = relationship("Bucket", back_populates="recruiter")
