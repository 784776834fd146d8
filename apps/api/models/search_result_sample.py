"""SearchResultSample model: result-count time series of a saved search."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from database import Base


class SearchResultSample(Base):
    __tablename__ = "search_result_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    saved_search_id = Column(
        String,
        ForeignKey("saved_searches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    result_count = Column(Integer, nullable=False)
    trigger = Column(String, nullable=False, default="search")
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True)
