# credit_engine/models/credit_transaction.py
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime

from credit_engine.core.database import Base


class CreditTransaction(Base):
    """Append-only credit ledger. Rows are never updated or deleted."""
    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)

    # Signed: positive for earned/purchased, negative for spent
    amount: Mapped[int] = mapped_column(Integer)

    # Type: earned, purchased, spent
    type: Mapped[str] = mapped_column(String(20))

    description: Mapped[str] = mapped_column(String(255), default="")

    # One real-world event (order id, signup:<user>, submission:<id>, ...)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(190), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
