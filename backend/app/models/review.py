from sqlalchemy import Column, String, DateTime, Text, Index
from sqlalchemy.sql import func

from .base import Base


class Review(Base):
    __tablename__ = "reviews"

    id = Column(String(32), primary_key=True)
    repo_name = Column(String, nullable=False)
    branch_name = Column(String, nullable=False)
    student_name = Column(String, nullable=True)
    review_content = Column(Text, nullable=False)  # JSON: feedback, results, summary
    score = Column(String, nullable=False)  # "achieved/max"
    status = Column(String, nullable=False, default="COMPLETED")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_reviews_lookup", "repo_name", "branch_name", "student_name", "created_at"),
    )
