from credit_engine.models.user import User
from credit_engine.models.user_credits import UserCredits
from credit_engine.models.credit_transaction import CreditTransaction
from credit_engine.models.payment_order import PaymentOrder
from credit_engine.models.assignment import Assignment
from credit_engine.models.assignment_download import AssignmentDownload
from credit_engine.models.submission import Submission
from credit_engine.models.achievement import Achievement

__all__ = [
    "User", "UserCredits", "CreditTransaction", "PaymentOrder",
    "Assignment", "AssignmentDownload", "Submission", "Achievement",
]
