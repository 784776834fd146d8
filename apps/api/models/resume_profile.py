"""ResumeProfile model: local read model of the external resume store."""

from sqlalchemy import Boolean, Column, DateTime, Float, JSON, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class ResumeProfile(Base):
    """Searchable projection plus the private fields revealed on unlock."""

    __tablename__ = "resume_profiles"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    full_name = Column(String, nullable=False)
    headline = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    country = Column(String, nullable=True, index=True)
    skills = Column(JSON, nullable=True)
    job_titles = Column(JSON, nullable=True)
    companies = Column(JSON, nullable=True)
    experience_years = Column(Float, nullable=True)
    education_level = Column(String, nullable=True)
    degrees = Column(JSON, nullable=True)
    languages = Column(JSON, nullable=True)
    open_to_work = Column(Boolean, nullable=False, default=False)
    is_currently_employed = Column(Boolean, nullable=True)
    is_searchable = Column(Boolean, nullable=False, default=True, index=True)

    # Private fields, only ever returned through an unlock snapshot.
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    linkedin_url = Column(String, nullable=True)
    resume_file_url = Column(String, nullable=True)
    summary = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
