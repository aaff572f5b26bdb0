# credit_engine/schemas/submissions.py
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, validator


class ReviewRequest(BaseModel):
    status: str  # approved | rejected | needs_revision
    quality_score: Optional[float] = Field(default=None, ge=0, le=5)
    content_quality: Optional[float] = Field(default=None, ge=0, le=5)
    formatting_compliance: Optional[float] = Field(default=None, ge=0, le=5)
    originality: Optional[float] = Field(default=None, ge=0, le=5)
    academic_rigor: Optional[float] = Field(default=None, ge=0, le=5)
    feedback: str = ""

    @validator("status")
    def validate_status(cls, v: str):
        v = (v or "").lower().strip()
        allowed = {"approved", "rejected", "needs_revision"}
        if v not in allowed:
            raise ValueError(f"status must be one of {sorted(allowed)}")
        return v


class AchievementResponse(BaseModel):
    achievement_type: str
    achievement_name: str
    description: str
    credits_bonus: int
    created_at: datetime


class ReviewResponse(BaseModel):
    submission_id: str
    status: str
    quality_score: Optional[float]
    credits_awarded: int = 0
    already_awarded: bool = False
    achievements: List[AchievementResponse] = Field(default_factory=list)
