# credit_engine/services/submission_rewards.py

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from credit_engine.core.config import LEDGER_MAX_ATTEMPTS
from credit_engine.core.database import SessionFactory, run_in_transaction
from credit_engine.models.achievement import Achievement
from credit_engine.models.submission import Submission
from credit_engine.services.achievements import AchievementEngine
from credit_engine.services.credit_ledger import CreditLedger, TransactionType
from credit_engine.services.errors import SubmissionNotFound
from credit_engine.services.reward_calculator import calculate_submission_credits

logger = logging.getLogger("credit-engine.submissions")

REVIEW_STATUSES = {"approved", "rejected", "needs_revision"}


@dataclass(frozen=True)
class AwardResult:
    submission_id: str
    credits: int
    replayed: bool
    balance: Optional[int] = None


@dataclass
class ReviewResult:
    submission_id: str
    status: str
    quality_score: Optional[float]
    award: Optional[AwardResult] = None
    achievements: List[Achievement] = field(default_factory=list)


def submission_key(submission_id: str) -> str:
    return f"submission:{submission_id}"


class SubmissionRewards:
    def __init__(
            self,
            session_factory: SessionFactory,
            ledger: CreditLedger,
            achievements: AchievementEngine,
            max_attempts: int = LEDGER_MAX_ATTEMPTS,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.achievements = achievements
        self.max_attempts = max_attempts

    async def review_submission(
            self,
            submission_id: str,
            status: str,
            quality_score: float,
            reviewer_id: Optional[str] = None,
            feedback: str = "",
    ) -> ReviewResult:
        if status not in REVIEW_STATUSES:
            raise ValueError(f"status must be one of {sorted(REVIEW_STATUSES)}")
        if not 0 <= quality_score <= 5:
            raise ValueError("quality_score must be between 0 and 5")

        async def _record(session: AsyncSession) -> Submission:
            submission = await session.get(Submission, submission_id, with_for_update=True)
            if submission is None:
                raise SubmissionNotFound(submission_id)
            # An awarded submission keeps the score it was paid on
            if not submission.credits_awarded_at:
                submission.status = status
                submission.quality_score = quality_score
            submission.reviewer_id = reviewer_id
            submission.reviewer_feedback = feedback
            submission.reviewed_at = datetime.utcnow()
            return submission

        stored = await run_in_transaction(self.session_factory, _record, self.max_attempts)
        result = ReviewResult(
            submission_id=submission_id,
            status=stored.status,
            quality_score=stored.quality_score,
        )

        if stored.status == "approved":
            result.award = await self.award_submission(submission_id)
            result.achievements = await self.achievements.evaluate(stored.user_id)
        return result

    async def award_submission(self, submission_id: str) -> AwardResult:
        """Credit an approved submission once; later calls report replayed=True."""

        async def _unit(session: AsyncSession) -> AwardResult:
            submission = await session.get(Submission, submission_id, with_for_update=True)
            if submission is None:
                raise SubmissionNotFound(submission_id)
            if submission.status != "approved":
                raise ValueError(f"Submission {submission_id} is {submission.status}, not approved")

            if submission.credits_awarded_at is not None:
                return AwardResult(submission_id=submission_id, credits=submission.credits_awarded, replayed=True)

            credits = calculate_submission_credits(
                quality_score=submission.quality_score or 0.0,
                word_count=submission.word_count,
                submission_type=submission.submission_type,
                member_count=submission.member_count,
                training_opt_in=submission.training_opt_in,
            )
            balance = None
            replayed = False
            if credits > 0:
                ledger_result = await self.ledger.apply(
                    session,
                    submission.user_id,
                    credits,
                    TransactionType.EARNED,
                    f"Assignment submission approved: {submission.title or submission_id}",
                    idempotency_key=submission_key(submission_id),
                )
                balance = ledger_result.balance
                replayed = ledger_result.replayed

            submission.credits_awarded = credits
            submission.credits_awarded_at = datetime.utcnow()
            logger.info("Submission %s awarded %d credits to %s", submission_id, credits, submission.user_id)
            return AwardResult(submission_id=submission_id, credits=credits, replayed=replayed, balance=balance)

        return await run_in_transaction(self.session_factory, _unit, self.max_attempts)
