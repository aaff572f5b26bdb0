# /credit_engine/api/payments.py
"""Mobile-money payment endpoints: initiate, poll status, manual verify, gateway webhook."""

import hashlib
import hmac
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from credit_engine.api.deps import Services, get_current_user, get_services, require_admin
from credit_engine.schemas.payments import (
    AdminReconcileResponse,
    BuyerDetails,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentOrderResponse,
    PaymentStatusResponse,
    VerifyPaymentResponse,
    WebhookAck,
    WebhookPayload,
)
from credit_engine.services.errors import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidAmount,
    InvalidBuyer,
    OneTimeFeeAlreadyPaid,
    PaymentNotFound,
    UnknownPackage,
)
from credit_engine.services.catalog import ONE_TIME_FEE
from credit_engine.services.gateway import BuyerInfo
from credit_engine.services.payment_reconciler import OrderView
from credit_engine.services.polling import policy_from_settings, verify_manually

router = APIRouter(prefix="/api/payments", tags=["payments"])
admin_router = APIRouter(prefix="/api/admin/payments", tags=["admin"])
logger = logging.getLogger("credit-engine.payments.api")


def _order_response(view: OrderView) -> PaymentOrderResponse:
    return PaymentOrderResponse(
        order_id=view.order_id,
        status=view.status,
        amount=view.amount,
        credits=view.credits,
        package_id=view.package_id,
        payment_kind=view.payment_kind,
        transaction_id=view.transaction_id,
        failure_reason=view.failure_reason,
        created_at=view.created_at,
        updated_at=view.updated_at,
    )


async def _initiate(services: Services, user_id: str, offer_id: str, req: BuyerDetails) -> InitiatePaymentResponse:
    buyer = BuyerInfo(name=req.buyer_name, email=req.buyer_email, phone=req.buyer_phone)
    try:
        initiated = await services.reconciler.initiate(user_id, offer_id, buyer)
    except (UnknownPackage, InvalidBuyer, InvalidAmount, OneTimeFeeAlreadyPaid) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except GatewayRejected as exc:
        raise HTTPException(status_code=502, detail=f"Payment initiation failed: {exc}")
    except GatewayUnavailable:
        raise HTTPException(status_code=503, detail="Payment service unavailable, please try again")

    policy = policy_from_settings(services.settings)
    return InitiatePaymentResponse(
        order_id=initiated.order_id,
        payment_url=initiated.payment_url,
        status=initiated.status,
        poll_interval_seconds=policy.interval_seconds,
        poll_max_attempts=policy.max_attempts,
    )


@router.post("/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
        req: InitiatePaymentRequest,
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    return await _initiate(services, user["id"], str(req.package_id), req)


@router.post("/one-time/initiate", response_model=InitiatePaymentResponse)
async def initiate_one_time_fee(
        req: BuyerDetails,
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    """Signup fee: completes by flagging the account, no credits are granted."""
    return await _initiate(services, user["id"], ONE_TIME_FEE.id, req)


@router.get("", response_model=List[PaymentOrderResponse])
async def payment_history(
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    return [_order_response(v) for v in await services.reconciler.list_orders(user["id"])]


@router.get("/{order_id}/status", response_model=PaymentStatusResponse)
async def payment_status(
        order_id: str,
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    """Polled by the client. Reconciles with the gateway before answering."""
    try:
        view = await services.reconciler.get_order(order_id, user_id=user["id"])
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")

    reachable = True
    if not view.terminal:
        try:
            view = (await services.reconciler.reconcile(order_id)).order
        except GatewayUnavailable as exc:
            reachable = False
            logger.info("Status check for %s served from storage: %s", order_id, exc.reason)

    return PaymentStatusResponse(**_order_response(view).model_dump(), gateway_reachable=reachable)


@router.post("/{order_id}/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
        order_id: str,
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    """'I already paid': one extra reconcile outside the poll cadence."""
    try:
        await services.reconciler.get_order(order_id, user_id=user["id"])
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")

    result = await verify_manually(services.reconciler, order_id)
    status = result.result.order.status if result.result else "pending"
    return VerifyPaymentResponse(order_id=order_id, state=result.state.value, message=result.message, status=status)


def _webhook_authenticated(request: Request, body: bytes, secret: str) -> bool:
    api_key = request.headers.get("x-api-key")
    if api_key and hmac.compare_digest(api_key.encode("utf-8"), secret.encode("utf-8")):
        return True

    signature = request.headers.get("x-zenopay-signature")
    if signature:
        expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature.strip().lower().encode("utf-8"), expected.encode("utf-8"))
    return False


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(request: Request, services: Services = Depends(get_services)):
    """
    Gateway callback. Delivery is at-least-once, so every processed call (replays
    included) answers 200. The payload's own status is only logged; reconcile()
    asks the gateway.
    """
    secret = services.settings.effective_webhook_secret
    if not secret:
        raise HTTPException(status_code=400, detail="Payment webhook not configured")

    body = await request.body()
    if not _webhook_authenticated(request, body, secret):
        logger.warning("Rejected payment webhook with invalid credentials")
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = WebhookPayload(**json.loads(body or b"{}"))
    except (ValueError, TypeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid webhook payload: {exc}")

    order_id: Optional[str] = payload.resolved_order_id
    if not order_id:
        raise HTTPException(status_code=400, detail="Missing order_id")

    logger.info(
        "Payment webhook for %s: reported status=%s transid=%s",
        order_id, payload.payment_status or payload.status, payload.transid or payload.transaction_id,
    )

    try:
        result = await services.reconciler.reconcile(order_id)
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    except GatewayUnavailable as exc:
        # not processed: let the gateway deliver again
        raise HTTPException(status_code=503, detail=f"Could not confirm payment status: {exc.reason}")

    return WebhookAck(order_id=order_id, status=result.order.status, outcome=result.outcome.value)


@admin_router.post("/{order_id}/reconcile", response_model=AdminReconcileResponse)
async def admin_reconcile(
        order_id: str,
        admin=Depends(require_admin),
        services: Services = Depends(get_services),
):
    """Recovery for orders whose webhook never arrived: asks the gateway again."""
    try:
        result = await services.reconciler.reconcile(order_id)
    except PaymentNotFound:
        raise HTTPException(status_code=404, detail="Payment not found")
    except GatewayUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Could not confirm payment status: {exc.reason}")

    logger.info("Admin %s reconciled %s: %s", admin["id"], order_id, result.outcome.value)
    return AdminReconcileResponse(**_order_response(result.order).model_dump(), outcome=result.outcome.value)
