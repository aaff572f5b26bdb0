# =========================================================
# FILE: credit_engine/services/credit_ledger.py
# =========================================================
"""
Credit ledger: per-user balance plus the append-only credit_transactions log.

Every mutation is one read-modify-append unit:
  lock balance row -> check idempotency key -> update balance -> append transaction
run inside a single storage transaction. The idempotency lookup happens after
the balance row is locked, so it is the linearization point for retries coming
from different paths (poll vs webhook, re-evaluated achievements, ...).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_engine.core.config import FREE_CREDITS_ON_SIGNUP, LEDGER_MAX_ATTEMPTS
from credit_engine.core.database import SessionFactory, run_in_transaction
from credit_engine.models.credit_transaction import CreditTransaction
from credit_engine.models.user_credits import UserCredits
from credit_engine.services.errors import InsufficientCredits, InvalidAmount

logger = logging.getLogger("credit-engine.ledger")

SIGNUP_DESCRIPTION = "Welcome bonus credits"


class TransactionType(str, Enum):
    EARNED = "earned"
    PURCHASED = "purchased"
    SPENT = "spent"


@dataclass(frozen=True)
class LedgerResult:
    balance: int
    transaction_id: Optional[int]
    # True when the idempotency key had already been applied and nothing changed
    replayed: bool = False


@dataclass(frozen=True)
class LedgerAudit:
    user_id: str
    balance: int
    transaction_sum: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.transaction_sum


def signup_key(user_id: str) -> str:
    return f"signup:{user_id}"


def _check_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)


class CreditLedger:
    def __init__(
            self,
            session_factory: SessionFactory,
            signup_bonus: int = FREE_CREDITS_ON_SIGNUP,
            max_attempts: int = LEDGER_MAX_ATTEMPTS,
    ):
        self.session_factory = session_factory
        self.signup_bonus = signup_bonus
        self.max_attempts = max_attempts

    # ─────────────────────────────────────────────
    # Public API (each call is its own transaction)
    # ─────────────────────────────────────────────

    async def open_account(self, user_id: str) -> UserCredits:
        """Create the account, signup bonus included, in a transaction of its own."""

        async def _unit(session: AsyncSession) -> UserCredits:
            return await self.lock_account(session, user_id)

        return await run_in_transaction(self.session_factory, _unit, self.max_attempts)

    async def get_balance(self, user_id: str) -> int:
        return (await self.open_account(user_id)).balance

    async def has_paid_one_time_fee(self, user_id: str) -> bool:
        return bool((await self.open_account(user_id)).has_paid_one_time_fee)

    async def deduct(
            self,
            user_id: str,
            amount: int,
            description: str = "Credits spent",
            idempotency_key: Optional[str] = None,
    ) -> LedgerResult:
        _check_amount(amount)
        # opened on its own so a rejected first deduction keeps the signup bonus
        await self.open_account(user_id)

        async def _unit(session: AsyncSession) -> LedgerResult:
            return await self.apply(
                session, user_id, -amount, TransactionType.SPENT, description, idempotency_key
            )

        return await run_in_transaction(self.session_factory, _unit, self.max_attempts)

    async def add(
            self,
            user_id: str,
            amount: int,
            description: str,
            kind: TransactionType = TransactionType.PURCHASED,
            idempotency_key: Optional[str] = None,
    ) -> LedgerResult:
        _check_amount(amount)
        kind = TransactionType(kind)
        if kind == TransactionType.SPENT:
            raise ValueError("add() credits the balance; use deduct() for spending")
        await self.open_account(user_id)

        async def _unit(session: AsyncSession) -> LedgerResult:
            return await self.apply(session, user_id, amount, kind, description, idempotency_key)

        return await run_in_transaction(self.session_factory, _unit, self.max_attempts)

    async def history(self, user_id: str, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def audit(self, user_id: str) -> LedgerAudit:
        async with self.session_factory() as session:
            account = await session.get(UserCredits, user_id)
            total, count = (
                await session.execute(
                    select(
                        func.coalesce(func.sum(CreditTransaction.amount), 0),
                        func.count(CreditTransaction.id),
                    ).where(CreditTransaction.user_id == user_id)
                )
            ).one()
            return LedgerAudit(
                user_id=user_id,
                balance=account.balance if account else 0,
                transaction_sum=int(total or 0),
                transaction_count=int(count or 0),
            )

    # ─────────────────────────────────────────────
    # Building blocks for callers that own the transaction
    # ─────────────────────────────────────────────

    async def lock_account(self, session: AsyncSession, user_id: str) -> UserCredits:
        """
        Return the user's balance row locked for update, creating it on first access
        with the signup bonus and its matching 'earned' transaction.
        """
        account = await session.get(UserCredits, user_id, with_for_update=True)
        if account is not None:
            return account

        now = datetime.utcnow()
        try:
            async with session.begin_nested():
                account = UserCredits(
                    user_id=user_id, balance=self.signup_bonus, has_paid_one_time_fee=False,
                    created_at=now, updated_at=now,
                )
                session.add(account)
                if self.signup_bonus > 0:
                    session.add(CreditTransaction(
                        user_id=user_id,
                        amount=self.signup_bonus,
                        type=TransactionType.EARNED.value,
                        description=SIGNUP_DESCRIPTION,
                        idempotency_key=signup_key(user_id),
                        created_at=now,
                    ))
        except IntegrityError:
            # A concurrent first access created the row first
            account = await session.get(UserCredits, user_id, with_for_update=True, populate_existing=True)
            if account is None:
                raise
            return account

        logger.info("Initialized credits for user %s with %d signup credits", user_id, self.signup_bonus)
        return account

    async def apply(
            self,
            session: AsyncSession,
            user_id: str,
            amount: int,
            kind: TransactionType,
            description: str,
            idempotency_key: Optional[str] = None,
    ) -> LedgerResult:
        """
        Signed balance change inside the caller's transaction.

        A previously applied idempotency_key returns the current balance with
        replayed=True. A negative amount larger than the balance raises
        InsufficientCredits and changes nothing.
        """
        if amount == 0:
            raise InvalidAmount(amount)

        account = await self.lock_account(session, user_id)

        if idempotency_key:
            existing = (
                await session.execute(
                    select(CreditTransaction).where(CreditTransaction.idempotency_key == idempotency_key)
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(
                    "Ledger replay for user %s key=%s (transaction %s); balance unchanged at %d",
                    user_id, idempotency_key, existing.id, account.balance,
                )
                return LedgerResult(balance=account.balance, transaction_id=existing.id, replayed=True)

        if amount < 0 and account.balance < -amount:
            raise InsufficientCredits(required=-amount, remaining=account.balance)

        now = datetime.utcnow()
        account.balance += amount
        account.updated_at = now

        entry = CreditTransaction(
            user_id=user_id,
            amount=amount,
            type=TransactionType(kind).value,
            description=description,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        session.add(entry)
        await session.flush()

        logger.info(
            "Ledger %s for user %s: %+d (%s) key=%s balance=%d",
            "debited" if amount < 0 else "credited",
            user_id, amount, description, idempotency_key, account.balance,
        )
        return LedgerResult(balance=account.balance, transaction_id=entry.id, replayed=False)

    async def mark_one_time_fee_paid(self, session: AsyncSession, user_id: str) -> bool:
        """Set the one-time fee flag inside the caller's transaction. False if it was already set."""
        account = await self.lock_account(session, user_id)
        if account.has_paid_one_time_fee:
            logger.info("One-time fee for user %s already recorded", user_id)
            return False
        account.has_paid_one_time_fee = True
        account.updated_at = datetime.utcnow()
        logger.info("One-time fee recorded for user %s", user_id)
        return True
