# =========================================================
# FILE: credit_engine/schemas/payments.py
# =========================================================

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, validator


class BuyerDetails(BaseModel):
    buyer_name: str
    buyer_email: str
    buyer_phone: str

    @validator("buyer_name", "buyer_email", "buyer_phone")
    def not_blank(cls, v: str):
        if not v or not str(v).strip():
            raise ValueError("Email, name, and phone number are required")
        return str(v).strip()


class InitiatePaymentRequest(BuyerDetails):
    package_id: str | int


class InitiatePaymentResponse(BaseModel):
    order_id: str
    payment_url: str
    status: str
    # client poll cadence for /status
    poll_interval_seconds: float
    poll_max_attempts: int


class PaymentOrderResponse(BaseModel):
    order_id: str
    status: str
    amount: int
    credits: int
    package_id: str
    payment_kind: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaymentStatusResponse(PaymentOrderResponse):
    # False when the status view was served without a fresh gateway answer
    gateway_reachable: bool = True


class AdminReconcileResponse(PaymentOrderResponse):
    outcome: str


class VerifyPaymentResponse(BaseModel):
    order_id: str
    state: str
    message: str
    status: str


class WebhookPayload(BaseModel):
    """ZenoPay callback body; field names vary between callback versions."""
    order_id: Optional[str] = Field(default=None)
    orderId: Optional[str] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
    transid: Optional[str] = None
    transaction_id: Optional[str] = None
    reference: Optional[str] = None

    @property
    def resolved_order_id(self) -> Optional[str]:
        return self.order_id or self.orderId


class WebhookAck(BaseModel):
    received: bool = True
    order_id: str
    status: str
    outcome: str
