import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from credit_engine.models.assignment import Assignment
from credit_engine.models.assignment_download import AssignmentDownload
from credit_engine.services.download_gate import decide
from credit_engine.services.errors import AssignmentNotFound, InsufficientCredits


def _assignment(**fields) -> Assignment:
    return Assignment(id="a1", user_id="u1", **fields)


class TestDecide:
    def test_unedited_is_free(self):
        decision = decide(_assignment(content_changed_percentage=0, edit_count=0, download_count=5))
        assert not decision.requires_charge
        assert not decision.charge

    def test_big_change_charges(self):
        decision = decide(_assignment(content_changed_percentage=35, edit_count=0, download_count=0))
        assert decision.charge

    def test_exactly_thirty_percent_is_not_significant(self):
        decision = decide(_assignment(content_changed_percentage=30, edit_count=0, download_count=0))
        assert not decision.requires_charge

    def test_small_edit_first_download_is_free(self):
        decision = decide(_assignment(content_changed_percentage=5, edit_count=1, download_count=0))
        assert decision.requires_charge
        assert not decision.charge

    def test_small_edit_redownload_charges(self):
        decision = decide(_assignment(content_changed_percentage=5, edit_count=1, download_count=1))
        assert decision.charge

    def test_recent_download_inside_window_charges(self):
        now = datetime(2024, 5, 1, 12, 0)
        assignment = _assignment(
            content_changed_percentage=5,
            edit_count=2,
            download_count=0,
            last_downloaded_at=now - timedelta(hours=3),
        )
        assert decide(assignment, now).charge


async def _download_rows(session_factory, assignment_id):
    async with session_factory() as db:
        return (
            await db.execute(
                select(func.count(AssignmentDownload.id)).where(AssignmentDownload.assignment_id == assignment_id)
            )
        ).scalar_one()


class TestChargeForDownload:
    @pytest.mark.asyncio
    async def test_unedited_never_charged(self, downloads, ledger, make_assignment, user_id):
        assignment_id = await make_assignment(user_id)

        for _ in range(3):
            receipt = await downloads.charge_for_download(user_id, assignment_id)
            assert receipt.credits_charged == 0

        assert await ledger.get_balance(user_id) == 50
        assert receipt.download_count == 3

    @pytest.mark.asyncio
    async def test_edited_charged_every_time(self, downloads, ledger, session_factory, make_assignment, user_id):
        assignment_id = await make_assignment(user_id, content_changed_percentage=35, edit_count=3)

        first = await downloads.charge_for_download(user_id, assignment_id)
        second = await downloads.charge_for_download(user_id, assignment_id)

        assert (first.remaining_credits, second.remaining_credits) == (47, 44)
        assert await _download_rows(session_factory, assignment_id) == 2
        spent = [t for t in await ledger.history(user_id) if t.amount < 0]
        assert [t.amount for t in spent] == [-3, -3]

    @pytest.mark.asyncio
    async def test_insufficient_credits_records_nothing(self, downloads, ledger, session_factory, make_assignment, user_id):
        assignment_id = await make_assignment(user_id, content_changed_percentage=60)
        await ledger.deduct(user_id, 49)

        with pytest.raises(InsufficientCredits) as exc_info:
            await downloads.charge_for_download(user_id, assignment_id)

        assert exc_info.value.remaining == 1
        assert await _download_rows(session_factory, assignment_id) == 0
        assert (await downloads.get_assignment(user_id, assignment_id)).download_count == 0

    @pytest.mark.asyncio
    async def test_idempotency_key_charges_once(self, downloads, ledger, make_assignment, user_id):
        assignment_id = await make_assignment(user_id, content_changed_percentage=40)

        first = await downloads.charge_for_download(user_id, assignment_id, idempotency_key="click-1")
        retry = await downloads.charge_for_download(user_id, assignment_id, idempotency_key="click-1")

        assert not first.replayed
        assert retry.replayed
        assert retry.credits_charged == 3
        assert await ledger.get_balance(user_id) == 47

    @pytest.mark.asyncio
    async def test_concurrent_free_downloads_all_counted(self, downloads, ledger, make_assignment, user_id):
        assignment_id = await make_assignment(user_id)

        await asyncio.gather(*[downloads.charge_for_download(user_id, assignment_id) for _ in range(5)])

        assert (await downloads.get_assignment(user_id, assignment_id)).download_count == 5
        assert await ledger.get_balance(user_id) == 50

    @pytest.mark.asyncio
    async def test_concurrent_downloads_of_small_edit_charge_all_but_one(self, downloads, ledger, make_assignment, user_id):
        assignment_id = await make_assignment(user_id, content_changed_percentage=5, edit_count=1, download_count=0)

        receipts = await asyncio.gather(*[downloads.charge_for_download(user_id, assignment_id) for _ in range(4)])

        assert sorted(r.credits_charged for r in receipts) == [0, 3, 3, 3]
        assert await ledger.get_balance(user_id) == 41
        assert (await downloads.get_assignment(user_id, assignment_id)).download_count == 4
        audit = await ledger.audit(user_id)
        assert audit.consistent

    @pytest.mark.asyncio
    async def test_other_users_assignment(self, downloads, make_assignment, user_id):
        assignment_id = await make_assignment(user_id)

        with pytest.raises(AssignmentNotFound):
            await downloads.charge_for_download("intruder", assignment_id)
