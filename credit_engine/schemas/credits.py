# =========================================================
# FILE: credit_engine/schemas/credits.py
# =========================================================

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class CreditBalance(BaseModel):
    balance: int
    has_paid_one_time_fee: bool = False


class CreditTransactionItem(BaseModel):
    id: int
    amount: int
    amount_display: str  # e.g. "+100", "-3"
    type: str
    description: str
    idempotency_key: Optional[str]
    created_at: datetime


class OfferResponse(BaseModel):
    id: str
    name: str
    credits: int
    price: int
    currency: str
    label: str
    kind: str
    popular: bool = False
