import asyncio

import pytest

from credit_engine.services.errors import SubmissionNotFound


class TestReview:
    @pytest.mark.asyncio
    async def test_approval_awards_credits_and_achievements(self, rewards, ledger, make_submission, user_id):
        submission_id = await make_submission(user_id, word_count=6000, training_opt_in=True)

        result = await rewards.review_submission(submission_id, "approved", 5.0, reviewer_id="admin-1")

        assert result.award.credits == 137
        assert {a.achievement_type for a in result.achievements} == {"first_submission", "perfect_score"}
        assert await ledger.get_balance(user_id) == 50 + 137 + 25 + 100

    @pytest.mark.asyncio
    async def test_rejection_awards_nothing(self, rewards, ledger, make_submission, user_id):
        submission_id = await make_submission(user_id)

        result = await rewards.review_submission(submission_id, "rejected", 1.0)

        assert result.award is None
        assert await ledger.get_balance(user_id) == 50

    @pytest.mark.asyncio
    async def test_second_approval_is_a_replay(self, rewards, ledger, make_submission, user_id):
        submission_id = await make_submission(user_id, submission_type="group", member_count=4)

        first = await rewards.review_submission(submission_id, "approved", 3.0)
        again = await rewards.review_submission(submission_id, "approved", 5.0)

        assert first.award.credits == 180
        assert again.award.replayed
        assert again.award.credits == 180
        assert again.quality_score == 3.0
        assert await ledger.get_balance(user_id) == 50 + 180 + 25

    @pytest.mark.asyncio
    async def test_result_reports_stored_decision(self, rewards, make_submission, user_id):
        submission_id = await make_submission(user_id)
        await rewards.review_submission(submission_id, "approved", 4.0)

        # a late rejection cannot undo a paid approval
        late = await rewards.review_submission(submission_id, "rejected", 1.0)

        assert late.status == "approved"
        assert late.quality_score == 4.0
        assert late.award.replayed

    @pytest.mark.asyncio
    async def test_concurrent_awards_credit_once(self, rewards, ledger, make_submission, user_id):
        submission_id = await make_submission(user_id, status="approved", quality_score=3.0)

        results = await asyncio.gather(*[rewards.award_submission(submission_id) for _ in range(4)])

        assert sum(1 for r in results if not r.replayed) == 1
        assert await ledger.get_balance(user_id) == 100

    @pytest.mark.asyncio
    async def test_award_requires_approval(self, rewards, make_submission, user_id):
        submission_id = await make_submission(user_id, status="pending")

        with pytest.raises(ValueError):
            await rewards.award_submission(submission_id)

    @pytest.mark.asyncio
    async def test_unknown_submission(self, rewards):
        with pytest.raises(SubmissionNotFound):
            await rewards.review_submission("missing", "approved", 4.0)
