# credit_engine/models/achievement.py
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, UniqueConstraint

from credit_engine.core.database import Base


class Achievement(Base):
    """One-time bonus. The unique (user_id, achievement_type) pair is the award guard."""
    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_type", name="uq_user_achievement"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)

    # first_submission, perfect_score, ten_submissions, fifty_submissions
    achievement_type: Mapped[str] = mapped_column(String(40))
    achievement_name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(255), default="")
    credits_bonus: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
