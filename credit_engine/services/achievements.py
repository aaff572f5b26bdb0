# =========================================================
# FILE: credit_engine/services/achievements.py
# =========================================================

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_engine.core.config import LEDGER_MAX_ATTEMPTS
from credit_engine.core.database import SessionFactory, run_in_transaction
from credit_engine.models.achievement import Achievement
from credit_engine.models.submission import Submission
from credit_engine.services.credit_ledger import CreditLedger, TransactionType
from credit_engine.services.errors import AchievementAlreadyAwarded
from credit_engine.services.reward_calculator import CREDIT_REWARD_RULES

logger = logging.getLogger("credit-engine.achievements")

PERFECT_SCORE = 5.0


@dataclass(frozen=True)
class SubmissionStats:
    total_approved: int
    has_perfect_score: bool


@dataclass(frozen=True)
class AchievementRule:
    type: str
    name: str
    description: str
    bonus: int
    earned: Callable[[SubmissionStats], bool]


ACHIEVEMENTS: List[AchievementRule] = [
    AchievementRule(
        type="first_submission",
        name="First Steps",
        description="Submitted your first assignment",
        bonus=CREDIT_REWARD_RULES["achievements"]["first_submission"],
        earned=lambda s: s.total_approved == 1,
    ),
    AchievementRule(
        type="perfect_score",
        name="Perfectionist",
        description="Achieved a perfect 5.0 quality score",
        bonus=CREDIT_REWARD_RULES["achievements"]["perfect_score"],
        earned=lambda s: s.has_perfect_score,
    ),
    AchievementRule(
        type="ten_submissions",
        name="Dedicated Scholar",
        description="Submitted 10 approved assignments",
        bonus=CREDIT_REWARD_RULES["achievements"]["ten_submissions"],
        earned=lambda s: s.total_approved >= 10,
    ),
    AchievementRule(
        type="fifty_submissions",
        name="Master Contributor",
        description="Submitted 50 approved assignments",
        bonus=CREDIT_REWARD_RULES["achievements"]["fifty_submissions"],
        earned=lambda s: s.total_approved >= 50,
    ),
]


def achievement_key(achievement_type: str, user_id: str) -> str:
    return f"achievement:{achievement_type}:{user_id}"


class AchievementEngine:
    def __init__(
            self,
            session_factory: SessionFactory,
            ledger: CreditLedger,
            catalog: List[AchievementRule] = ACHIEVEMENTS,
            max_attempts: int = LEDGER_MAX_ATTEMPTS,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.catalog = catalog
        self.max_attempts = max_attempts

    async def _stats(self, user_id: str) -> SubmissionStats:
        async with self.session_factory() as db:
            scores = (
                await db.execute(
                    select(Submission.quality_score).where(
                        Submission.user_id == user_id,
                        Submission.status == "approved",
                    )
                )
            ).scalars().all()
        return SubmissionStats(
            total_approved=len(scores),
            has_perfect_score=any(s is not None and s == PERFECT_SCORE for s in scores),
        )

    async def _existing_types(self, user_id: str) -> Set[str]:
        async with self.session_factory() as db:
            rows = (
                await db.execute(select(Achievement.achievement_type).where(Achievement.user_id == user_id))
            ).scalars().all()
        return set(rows)

    async def evaluate(self, user_id: str) -> List[Achievement]:
        """Award every achievement the user now qualifies for and doesn't hold yet."""
        stats = await self._stats(user_id)
        if stats.total_approved == 0:
            return []

        existing = await self._existing_types(user_id)
        awarded: List[Achievement] = []

        for rule in self.catalog:
            if rule.type in existing or not rule.earned(stats):
                continue
            try:
                achievement = await run_in_transaction(
                    self.session_factory,
                    lambda session, rule=rule: self._award(session, user_id, rule),
                    self.max_attempts,
                )
            except AchievementAlreadyAwarded:
                logger.info("Achievement %s already held by %s", rule.type, user_id)
                continue
            except Exception:
                # one broken award must not block the others
                logger.exception("Failed to award achievement %s to %s", rule.type, user_id)
                continue
            awarded.append(achievement)

        return awarded

    async def _award(self, session: AsyncSession, user_id: str, rule: AchievementRule) -> Achievement:
        achievement = Achievement(
            user_id=user_id,
            achievement_type=rule.type,
            achievement_name=rule.name,
            description=rule.description,
            credits_bonus=rule.bonus,
            created_at=datetime.utcnow(),
        )
        try:
            async with session.begin_nested():
                session.add(achievement)
        except IntegrityError as exc:
            raise AchievementAlreadyAwarded(user_id, rule.type) from exc

        if rule.bonus > 0:
            await self.ledger.apply(
                session,
                user_id,
                rule.bonus,
                TransactionType.EARNED,
                f"Achievement unlocked: {rule.name}",
                idempotency_key=achievement_key(rule.type, user_id),
            )
        logger.info("Achievement %s awarded to %s (+%d credits)", rule.type, user_id, rule.bonus)
        return achievement

    async def list_achievements(self, user_id: str) -> List[Achievement]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Achievement)
                .where(Achievement.user_id == user_id)
                .order_by(Achievement.created_at.asc())
            )
            return list(result.scalars().all())
