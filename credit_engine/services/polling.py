# =========================================================
# FILE: credit_engine/services/polling.py
# =========================================================
"""
Bounded, cancellable polling for payment confirmation.

Polling is driven by the client (or a script acting for it); the server never
keeps a background retry loop. The same loop serves the normal status watch and
the one-shot manual "I already paid" verification.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from credit_engine.core.config import PAYMENT_POLL_INTERVAL_SECONDS, PAYMENT_POLL_MAX_ATTEMPTS, Settings
from credit_engine.services.errors import GatewayUnavailable
from credit_engine.services.payment_reconciler import (
    PaymentReconciler,
    PaymentStatus,
    ReconcileResult,
)

logger = logging.getLogger("credit-engine.polling")

T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float = PAYMENT_POLL_INTERVAL_SECONDS
    max_attempts: int = PAYMENT_POLL_MAX_ATTEMPTS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")


MANUAL_VERIFY_POLICY = PollPolicy(interval_seconds=0, max_attempts=1)


def policy_from_settings(settings: Settings) -> PollPolicy:
    return PollPolicy(interval_seconds=settings.poll_interval_seconds, max_attempts=settings.poll_max_attempts)


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to timeout; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    exhausted: bool = False
    cancelled: bool = False


async def poll_until(
        check: Callable[[], Awaitable[T]],
        is_done: Callable[[T], bool],
        policy: PollPolicy,
        cancel: Optional[CancelToken] = None,
) -> PollOutcome[T]:
    """
    Call check() up to policy.max_attempts times, policy.interval_seconds apart,
    until is_done(value). GatewayUnavailable counts as an unknown tick, not an error.
    """
    cancel = cancel or CancelToken()
    value: Optional[T] = None

    for attempt in range(1, policy.max_attempts + 1):
        if cancel.cancelled:
            return PollOutcome(value=value, attempts=attempt - 1, cancelled=True)

        try:
            value = await check()
        except GatewayUnavailable as exc:
            logger.info("Poll attempt %d/%d: status unknown (%s)", attempt, policy.max_attempts, exc.reason)
        else:
            if is_done(value):
                return PollOutcome(value=value, attempts=attempt)

        if attempt < policy.max_attempts and await cancel.wait(policy.interval_seconds):
            return PollOutcome(value=value, attempts=attempt, cancelled=True)

    return PollOutcome(value=value, attempts=policy.max_attempts, exhausted=True)


class WatchState(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING_VERIFY_MANUALLY = "pending_verify_manually"
    CANCELLED = "cancelled"


WATCH_MESSAGES = {
    WatchState.COMPLETED: "Payment confirmed. Your credits have been added.",
    WatchState.FAILED: "Payment failed. Please try again.",
    WatchState.PENDING_VERIFY_MANUALLY: (
        "Payment is still pending. If you have already paid, use 'I already paid' to verify manually."
    ),
    WatchState.CANCELLED: "Stopped checking payment status.",
}


@dataclass(frozen=True)
class PaymentWatchResult:
    order_id: str
    state: WatchState
    attempts: int
    result: Optional[ReconcileResult] = None

    @property
    def message(self) -> str:
        return WATCH_MESSAGES[self.state]


def _watch_state(outcome: PollOutcome[ReconcileResult]) -> WatchState:
    if outcome.cancelled:
        return WatchState.CANCELLED
    if outcome.value is not None and outcome.value.order.status == PaymentStatus.COMPLETED.value:
        return WatchState.COMPLETED
    if outcome.value is not None and outcome.value.order.status == PaymentStatus.FAILED.value:
        return WatchState.FAILED
    return WatchState.PENDING_VERIFY_MANUALLY


async def watch_payment(
        reconciler: PaymentReconciler,
        order_id: str,
        policy: Optional[PollPolicy] = None,
        cancel: Optional[CancelToken] = None,
) -> PaymentWatchResult:
    """Poll reconcile() until the order is terminal, attempts run out, or cancel."""
    outcome = await poll_until(
        lambda: reconciler.reconcile(order_id),
        lambda r: r.order.terminal,
        policy or PollPolicy(),
        cancel,
    )
    state = _watch_state(outcome)
    logger.info("Payment watch for %s ended %s after %d attempt(s)", order_id, state.value, outcome.attempts)
    return PaymentWatchResult(order_id=order_id, state=state, attempts=outcome.attempts, result=outcome.value)


async def verify_manually(reconciler: PaymentReconciler, order_id: str) -> PaymentWatchResult:
    """User-triggered recovery after the poll gave up: exactly one more reconcile."""
    return await watch_payment(reconciler, order_id, MANUAL_VERIFY_POLICY)
