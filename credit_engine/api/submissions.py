# /credit_engine/api/submissions.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from credit_engine.api.deps import Services, get_current_user, get_services, require_admin
from credit_engine.models.achievement import Achievement
from credit_engine.schemas.submissions import AchievementResponse, ReviewRequest, ReviewResponse
from credit_engine.services.errors import SubmissionNotFound
from credit_engine.services.reward_calculator import average_quality

router = APIRouter(prefix="/api", tags=["submissions"])


def _achievement(a: Achievement) -> AchievementResponse:
    return AchievementResponse(
        achievement_type=a.achievement_type,
        achievement_name=a.achievement_name,
        description=a.description,
        credits_bonus=a.credits_bonus,
        created_at=a.created_at,
    )


@router.post("/submissions/{submission_id}/review", response_model=ReviewResponse)
async def review_submission(
        submission_id: str,
        req: ReviewRequest,
        reviewer=Depends(require_admin),
        services: Services = Depends(get_services),
):
    score = req.quality_score
    if score is None:
        score = average_quality(req.content_quality, req.formatting_compliance, req.originality, req.academic_rigor)

    try:
        result = await services.submissions.review_submission(
            submission_id,
            status=req.status,
            quality_score=score,
            reviewer_id=reviewer["id"],
            feedback=req.feedback,
        )
    except SubmissionNotFound:
        raise HTTPException(status_code=404, detail="Submission not found")

    return ReviewResponse(
        submission_id=submission_id,
        status=result.status,
        quality_score=result.quality_score,
        credits_awarded=result.award.credits if result.award else 0,
        already_awarded=bool(result.award and result.award.replayed),
        achievements=[_achievement(a) for a in result.achievements],
    )


@router.get("/achievements", response_model=List[AchievementResponse])
async def my_achievements(
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    return [_achievement(a) for a in await services.achievements.list_achievements(user["id"])]
