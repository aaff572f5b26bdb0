# =========================================================
# FILE: credit_engine/services/download_gate.py
# =========================================================
"""
Decides whether downloading an assignment costs credits, and charges for it.

Unedited assignments are always free. Once an assignment has been edited, a
download is charged when the edit was substantial (>30% changed), or when the
edited assignment has been downloaded before, or when the last download was
less than 24 hours ago.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_engine.core.config import ASSIGNMENT_DOWNLOAD_COST, LEDGER_MAX_ATTEMPTS
from credit_engine.core.database import SessionFactory, run_in_transaction
from credit_engine.models.assignment import Assignment
from credit_engine.models.assignment_download import AssignmentDownload
from credit_engine.services.credit_ledger import CreditLedger, TransactionType
from credit_engine.services.errors import AssignmentNotFound, InvalidAmount

logger = logging.getLogger("credit-engine.downloads")

SIGNIFICANT_CHANGE_PERCENT = 30
REDOWNLOAD_WINDOW_HOURS = 24


@dataclass(frozen=True)
class DownloadDecision:
    requires_charge: bool
    should_charge: bool

    @property
    def charge(self) -> bool:
        return self.requires_charge and self.should_charge


@dataclass(frozen=True)
class DownloadReceipt:
    assignment_id: str
    credits_charged: int
    remaining_credits: Optional[int]
    download_count: int
    replayed: bool = False


def hours_since(moment: Optional[datetime], now: datetime) -> float:
    if moment is None:
        return float("inf")
    return (now - moment).total_seconds() / 3600


def decide(assignment: Assignment, now: Optional[datetime] = None) -> DownloadDecision:
    now = now or datetime.utcnow()
    changed = assignment.content_changed_percentage or 0
    edits = assignment.edit_count or 0
    downloads = assignment.download_count or 0

    requires_charge = changed > SIGNIFICANT_CHANGE_PERCENT or edits > 0
    if not requires_charge:
        return DownloadDecision(requires_charge=False, should_charge=False)

    should_charge = (
        changed > SIGNIFICANT_CHANGE_PERCENT
        or downloads > 0
        or hours_since(assignment.last_downloaded_at, now) < REDOWNLOAD_WINDOW_HOURS
    )
    return DownloadDecision(requires_charge=True, should_charge=should_charge)


class DocumentRenderer(Protocol):
    def render(self, assignment: Assignment, download_type: str) -> bytes:
        ...

    def media_type(self, download_type: str) -> str:
        ...


class PlainTextRenderer:
    """Stand-in renderer: the document pipeline lives outside this service."""

    def render(self, assignment: Assignment, download_type: str) -> bytes:
        title = assignment.title or "Assignment"
        return f"{title}\n\n{assignment.content or ''}".encode("utf-8")

    def media_type(self, download_type: str) -> str:
        return "text/plain; charset=utf-8"


class DownloadGate:
    def __init__(
            self,
            session_factory: SessionFactory,
            ledger: CreditLedger,
            cost: int = ASSIGNMENT_DOWNLOAD_COST,
            max_attempts: int = LEDGER_MAX_ATTEMPTS,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.cost = cost
        self.max_attempts = max_attempts

    async def get_assignment(self, user_id: str, assignment_id: str) -> Assignment:
        async with self.session_factory() as db:
            assignment = await db.get(Assignment, assignment_id)
        if assignment is None or assignment.user_id != user_id:
            raise AssignmentNotFound(assignment_id)
        return assignment

    async def requires_charge(self, user_id: str, assignment_id: str) -> DownloadDecision:
        return decide(await self.get_assignment(user_id, assignment_id))

    async def charge_for_download(
            self,
            user_id: str,
            assignment_id: str,
            cost: Optional[int] = None,
            download_type: str = "docx",
            idempotency_key: Optional[str] = None,
    ) -> DownloadReceipt:
        """
        Charge (if due) and record one download, atomically with the counter update.
        InsufficientCredits propagates and nothing is recorded.
        """
        cost = self.cost if cost is None else cost
        if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
            raise InvalidAmount(cost)
        await self.ledger.open_account(user_id)

        async def _unit(session: AsyncSession) -> DownloadReceipt:
            return await self._charge(session, user_id, assignment_id, cost, download_type, idempotency_key)

        return await run_in_transaction(self.session_factory, _unit, self.max_attempts)

    async def _charge(
            self,
            session: AsyncSession,
            user_id: str,
            assignment_id: str,
            cost: int,
            download_type: str,
            idempotency_key: Optional[str],
    ) -> DownloadReceipt:
        assignment = await session.get(Assignment, assignment_id, with_for_update=True)
        if assignment is None or assignment.user_id != user_id:
            raise AssignmentNotFound(assignment_id)

        if idempotency_key:
            previous = (
                await session.execute(
                    select(AssignmentDownload).where(
                        AssignmentDownload.assignment_id == assignment_id,
                        AssignmentDownload.idempotency_key == idempotency_key,
                    )
                )
            ).scalar_one_or_none()
            if previous is not None:
                return DownloadReceipt(
                    assignment_id=assignment_id,
                    credits_charged=previous.credits_charged,
                    remaining_credits=None,
                    download_count=assignment.download_count,
                    replayed=True,
                )

        now = datetime.utcnow()
        decision = decide(assignment, now)
        remaining: Optional[int] = None
        charged = 0

        if decision.charge:
            result = await self.ledger.apply(
                session,
                user_id,
                -cost,
                TransactionType.SPENT,
                f"Downloaded edited assignment: {assignment.title or assignment_id}",
                idempotency_key=f"download:{assignment_id}:{idempotency_key}" if idempotency_key else None,
            )
            remaining = result.balance
            charged = cost

        session.add(AssignmentDownload(
            assignment_id=assignment_id,
            user_id=user_id,
            credits_charged=charged,
            download_type=download_type,
            idempotency_key=idempotency_key,
            created_at=now,
        ))
        assignment.download_count = (assignment.download_count or 0) + 1
        assignment.last_downloaded_at = now

        logger.info(
            "Assignment %s downloaded by %s as %s: charged %d (download #%d)",
            assignment_id, user_id, download_type, charged, assignment.download_count,
        )
        return DownloadReceipt(
            assignment_id=assignment_id,
            credits_charged=charged,
            remaining_credits=remaining,
            download_count=assignment.download_count,
        )
