# credit_engine/models/payment_order.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime

from credit_engine.core.database import Base


class PaymentOrder(Base):
    """Mobile-money order. The id doubles as the ledger idempotency key."""
    __tablename__ = "payment_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)

    # Amount in TZS
    amount: Mapped[int] = mapped_column(Integer)
    credits: Mapped[int] = mapped_column(Integer)

    package_id: Mapped[str] = mapped_column(String(40))
    # Kind: credits, subscription, one_time
    payment_kind: Mapped[str] = mapped_column(String(20), default="credits")

    buyer_name: Mapped[str] = mapped_column(String(120))
    buyer_email: Mapped[str] = mapped_column(String(190))
    buyer_phone: Mapped[str] = mapped_column(String(20))

    # Status: initiated, pending, completed, failed
    status: Mapped[str] = mapped_column(String(20), default="initiated", index=True)

    # Gateway transaction id, set on completion
    transaction_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
