# credit_engine/services/errors.py
from typing import Optional


class CreditEngineError(Exception):
    pass


class InsufficientCredits(CreditEngineError):
    def __init__(self, required: int, remaining: int):
        self.required = required
        self.remaining = remaining
        super().__init__(
            f"Insufficient credits: {required} required, {remaining} available "
            f"({self.shortfall} short)"
        )

    @property
    def shortfall(self) -> int:
        return max(self.required - self.remaining, 0)


class InvalidAmount(CreditEngineError):
    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be a positive integer, got {amount!r}")


class LedgerConflict(CreditEngineError):
    """Storage kept rejecting the write; nothing was applied."""


class PaymentNotFound(CreditEngineError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Payment {order_id} not found")


class PaymentAlreadyProcessed(CreditEngineError):
    """Order is terminal. Callers treat this as success, never as a failure."""

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Payment {order_id} already {status}")


class GatewayUnavailable(CreditEngineError):
    """Gateway status is unknown right now (timeout, 5xx, malformed reply). Retry later."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Payment gateway unavailable: {reason}")


class GatewayRejected(CreditEngineError):
    """Gateway answered and refused the request."""


class InvalidBuyer(CreditEngineError):
    pass


class UnknownPackage(CreditEngineError):
    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"Unknown package or plan: {package_id}")


class AssignmentNotFound(CreditEngineError):
    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Assignment {assignment_id} not found")


class SubmissionNotFound(CreditEngineError):
    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(f"Submission {submission_id} not found")


class AchievementAlreadyAwarded(CreditEngineError):
    def __init__(self, user_id: str, achievement_type: str, detail: Optional[str] = None):
        self.user_id = user_id
        self.achievement_type = achievement_type
        super().__init__(detail or f"{achievement_type} already awarded to {user_id}")


class OneTimeFeeAlreadyPaid(CreditEngineError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("You have already paid the one-time signup fee.")
