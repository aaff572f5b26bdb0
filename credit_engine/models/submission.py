# credit_engine/models/submission.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Boolean, DateTime

from credit_engine.core.database import Base


class Submission(Base):
    """Assignment submitted for review; approved ones earn reward credits."""
    __tablename__ = "assignment_submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    title: Mapped[str] = mapped_column(String(255), default="")

    # Status: pending, approved, rejected, needs_revision
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    # 0-5, set on review
    quality_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    word_count: Mapped[int] = mapped_column(Integer, default=0)

    # Type: individual, group
    submission_type: Mapped[str] = mapped_column(String(20), default="individual")
    member_count: Mapped[int] = mapped_column(Integer, default=1)
    training_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)

    credits_awarded: Mapped[int] = mapped_column(Integer, default=0)
    credits_awarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    reviewer_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reviewer_feedback: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
