# =========================================================
# FILE: credit_engine/services/payment_reconciler.py
# =========================================================
"""
Payment orders: initiation and reconciliation with the gateway.

    initiated -> pending -> completed | failed      (completed / failed are terminal)

An order whose initiation reply was lost (timeout, 5xx) stays initiated: the
USSD push may already be on the buyer's phone, so it is settled like a pending one.

reconcile() is the only place an order leaves pending. The client poll loop,
the gateway webhook, the status endpoint and the manual "I already paid"
button all call it. The ledger credit uses the order id as its idempotency key
and commits in the same transaction as the status change, so whichever caller
gets there first credits the user and everyone else sees a no-op.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_engine.core.config import LEDGER_MAX_ATTEMPTS, LOG_DIR
from credit_engine.core.database import SessionFactory, run_in_transaction
from credit_engine.core.log import get_file_logger
from credit_engine.models.payment_order import PaymentOrder
from credit_engine.services.catalog import ONE_TIME_KIND, resolve_offer
from credit_engine.services.credit_ledger import CreditLedger, TransactionType
from credit_engine.services.errors import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidAmount,
    InvalidBuyer,
    OneTimeFeeAlreadyPaid,
    PaymentAlreadyProcessed,
    PaymentNotFound,
)
from credit_engine.services.gateway import BuyerInfo, GatewayPaymentState, GatewayStatus, PaymentGateway
from credit_engine.services.phone import normalize_buyer_phone

logger = logging.getLogger("credit-engine.payments")


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)


class ReconcileOutcome(str, Enum):
    CREDITED = "credited"
    FAILED = "failed"
    PENDING = "pending"
    # completed now, but its credit or fee flag was already on the books
    REPLAYED = "replayed"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_FAILED = "already_failed"


@dataclass(frozen=True)
class OrderView:
    order_id: str
    user_id: str
    status: str
    amount: int
    credits: int
    package_id: str
    payment_kind: str
    transaction_id: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, order: PaymentOrder) -> "OrderView":
        return cls(
            order_id=order.id,
            user_id=order.user_id,
            status=order.status,
            amount=order.amount,
            credits=order.credits,
            package_id=order.package_id,
            payment_kind=order.payment_kind,
            transaction_id=order.transaction_id,
            failure_reason=order.failure_reason,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    @property
    def terminal(self) -> bool:
        return PaymentStatus(self.status).terminal


@dataclass(frozen=True)
class InitiatedPayment:
    order_id: str
    payment_url: str
    status: str


@dataclass(frozen=True)
class ReconcileResult:
    order: OrderView
    outcome: ReconcileOutcome

    @property
    def already_processed(self) -> bool:
        return self.outcome in (ReconcileOutcome.ALREADY_COMPLETED, ReconcileOutcome.ALREADY_FAILED)


def _already(order: PaymentOrder) -> ReconcileOutcome:
    if order.status == PaymentStatus.COMPLETED.value:
        return ReconcileOutcome.ALREADY_COMPLETED
    return ReconcileOutcome.ALREADY_FAILED


class PaymentReconciler:
    def __init__(
            self,
            session_factory: SessionFactory,
            ledger: CreditLedger,
            gateway: PaymentGateway,
            max_attempts: int = LEDGER_MAX_ATTEMPTS,
            log_dir: str = LOG_DIR,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.audit_log = get_file_logger("credit-engine.payments.audit", "payments.log", log_dir)

    # ─────────────────────────────────────────────
    # Initiation
    # ─────────────────────────────────────────────

    async def initiate(self, user_id: str, package_or_plan: str, buyer: BuyerInfo) -> InitiatedPayment:
        offer = resolve_offer(package_or_plan)
        if offer.price <= 0 or (offer.credits <= 0 and offer.kind != ONE_TIME_KIND):
            raise InvalidAmount(offer.price)
        if offer.kind == ONE_TIME_KIND and await self.ledger.has_paid_one_time_fee(user_id):
            raise OneTimeFeeAlreadyPaid(user_id)
        if not (buyer.name or "").strip() or not (buyer.email or "").strip() or not (buyer.phone or "").strip():
            raise InvalidBuyer("Email, name, and phone number are required")
        buyer = BuyerInfo(name=buyer.name.strip(), email=buyer.email.strip(), phone=normalize_buyer_phone(buyer.phone))

        order_id = str(uuid.uuid4())
        now = datetime.utcnow()

        # Persist first so a webhook racing the gateway response finds the order
        async with self.session_factory() as db:
            db.add(PaymentOrder(
                id=order_id,
                user_id=user_id,
                amount=offer.price,
                credits=offer.credits,
                package_id=offer.id,
                payment_kind=offer.kind,
                buyer_name=buyer.name,
                buyer_email=buyer.email,
                buyer_phone=buyer.phone,
                status=PaymentStatus.INITIATED.value,
                created_at=now,
                updated_at=now,
            ))
            await db.commit()

        try:
            payment_url = await self.gateway.initiate(order_id, offer.price, buyer)
        except GatewayRejected as exc:
            await self._mark_initiation_failed(order_id, str(exc))
            self.audit_log.error("Initiation rejected for order %s (user %s): %s", order_id, user_id, exc)
            raise
        except GatewayUnavailable as exc:
            # The push may have gone out before the reply was lost. The order stays
            # initiated so a later webhook or poll can still settle it.
            self.audit_log.warning(
                "Initiation of order %s (user %s) has unknown outcome: %s", order_id, user_id, exc.reason
            )
            raise

        async def _to_pending(session: AsyncSession) -> None:
            order = await session.get(PaymentOrder, order_id, with_for_update=True)
            # a webhook may already have settled it
            if order.status == PaymentStatus.INITIATED.value:
                order.status = PaymentStatus.PENDING.value
                order.updated_at = datetime.utcnow()

        await run_in_transaction(self.session_factory, _to_pending, self.max_attempts)

        self.audit_log.info(
            "Order %s initiated for user %s: %s (%d credits, %d TZS)",
            order_id, user_id, offer.id, offer.credits, offer.price,
        )
        return InitiatedPayment(order_id=order_id, payment_url=payment_url, status=PaymentStatus.PENDING.value)

    async def _mark_initiation_failed(self, order_id: str, reason: str) -> None:
        async def _unit(session: AsyncSession) -> None:
            order = await session.get(PaymentOrder, order_id, with_for_update=True)
            if order is not None and order.status == PaymentStatus.INITIATED.value:
                order.status = PaymentStatus.FAILED.value
                order.failure_reason = reason[:255]
                order.updated_at = datetime.utcnow()

        await run_in_transaction(self.session_factory, _unit, self.max_attempts)

    # ─────────────────────────────────────────────
    # Reconciliation
    # ─────────────────────────────────────────────

    async def reconcile(self, order_id: str) -> ReconcileResult:
        """
        Align the order with the gateway's authoritative status. Safe to call any
        number of times, concurrently, from any path.

        Raises PaymentNotFound for unknown orders and GatewayUnavailable when the
        gateway status cannot be determined (the order is left untouched).
        """
        order = await self._load(order_id)
        if PaymentStatus(order.status).terminal:
            return ReconcileResult(order=OrderView.from_model(order), outcome=_already(order))

        status = await self.gateway.query_status(order_id)

        try:
            return await run_in_transaction(
                self.session_factory,
                lambda session: self._apply_status(session, order_id, status),
                self.max_attempts,
            )
        except PaymentAlreadyProcessed:
            # lost the race to another caller; report its result
            order = await self._load(order_id)
            return ReconcileResult(order=OrderView.from_model(order), outcome=_already(order))

    async def _apply_status(self, session: AsyncSession, order_id: str, status: GatewayStatus) -> ReconcileResult:
        order = await session.get(PaymentOrder, order_id, with_for_update=True)
        if order is None:
            raise PaymentNotFound(order_id)
        if PaymentStatus(order.status).terminal:
            raise PaymentAlreadyProcessed(order_id, order.status)

        now = datetime.utcnow()

        if status.status == GatewayPaymentState.COMPLETED:
            if status.amount is not None and status.amount < order.amount:
                logger.warning(
                    "Order %s confirmed for %s TZS but was created for %s TZS",
                    order_id, status.amount, order.amount,
                )
            order.status = PaymentStatus.COMPLETED.value
            order.transaction_id = status.transaction_id or order.transaction_id
            order.updated_at = now
            if order.payment_kind == ONE_TIME_KIND:
                applied = await self.ledger.mark_one_time_fee_paid(session, order.user_id)
            else:
                result = await self.ledger.apply(
                    session,
                    order.user_id,
                    order.credits,
                    TransactionType.PURCHASED,
                    f"Purchased {order.credits} credits - Order {order_id}",
                    idempotency_key=order_id,
                )
                applied = not result.replayed

            if not applied:
                self.audit_log.warning("Order %s was pending but was already applied; not re-applying", order_id)
                return ReconcileResult(order=OrderView.from_model(order), outcome=ReconcileOutcome.REPLAYED)

            self.audit_log.info(
                "Order %s completed (txn %s): applied %s (%d credits) for user %s",
                order_id, order.transaction_id, order.package_id, order.credits, order.user_id,
            )
            return ReconcileResult(order=OrderView.from_model(order), outcome=ReconcileOutcome.CREDITED)

        if status.status == GatewayPaymentState.FAILED:
            order.status = PaymentStatus.FAILED.value
            order.failure_reason = "Gateway reported payment failed"
            order.updated_at = now
            self.audit_log.info("Order %s failed at gateway", order_id)
            return ReconcileResult(order=OrderView.from_model(order), outcome=ReconcileOutcome.FAILED)

        return ReconcileResult(order=OrderView.from_model(order), outcome=ReconcileOutcome.PENDING)

    # ─────────────────────────────────────────────
    # Read views
    # ─────────────────────────────────────────────

    async def _load(self, order_id: str) -> PaymentOrder:
        async with self.session_factory() as db:
            order = await db.get(PaymentOrder, order_id)
        if order is None:
            raise PaymentNotFound(order_id)
        return order

    async def get_order(self, order_id: str, user_id: Optional[str] = None) -> OrderView:
        order = await self._load(order_id)
        if user_id is not None and order.user_id != user_id:
            raise PaymentNotFound(order_id)
        return OrderView.from_model(order)

    async def list_orders(self, user_id: str, limit: int = 50) -> List[OrderView]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PaymentOrder)
                .where(PaymentOrder.user_id == user_id)
                .order_by(PaymentOrder.created_at.desc())
                .limit(limit)
            )
            return [OrderView.from_model(o) for o in result.scalars().all()]
