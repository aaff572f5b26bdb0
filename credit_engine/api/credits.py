# /credit_engine/api/credits.py
"""Read-only credit endpoints. Balances change only through the services."""

from typing import List

from fastapi import APIRouter, Depends, Query

from credit_engine.api.deps import Services, get_current_user, get_services
from credit_engine.schemas.credits import CreditBalance, CreditTransactionItem, OfferResponse
from credit_engine.services.catalog import CREDIT_PACKAGES, CURRENCY, SUBSCRIPTION_PLANS, Offer

router = APIRouter(prefix="/api/credits", tags=["credits"])


def _offer(o: Offer) -> OfferResponse:
    return OfferResponse(
        id=o.id,
        name=o.name,
        credits=o.credits,
        price=o.price,
        currency=CURRENCY,
        label=o.label,
        kind=o.kind,
        popular=o.popular,
    )


@router.get("/balance", response_model=CreditBalance)
async def get_credit_balance(
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    """Current balance; the first call for a user grants the signup bonus."""
    account = await services.ledger.open_account(user["id"])
    return CreditBalance(balance=account.balance, has_paid_one_time_fee=bool(account.has_paid_one_time_fee))


@router.get("/transactions", response_model=List[CreditTransactionItem])
async def get_credit_transactions(
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        user=Depends(get_current_user),
        services: Services = Depends(get_services),
):
    transactions = await services.ledger.history(user["id"], limit=limit, offset=offset)
    return [
        CreditTransactionItem(
            id=t.id,
            amount=t.amount,
            amount_display=f"{'+' if t.amount > 0 else ''}{t.amount}",
            type=t.type,
            description=t.description,
            idempotency_key=t.idempotency_key,
            created_at=t.created_at,
        )
        for t in transactions
    ]


@router.get("/packages", response_model=List[OfferResponse])
async def get_credit_packages():
    return [_offer(p) for p in CREDIT_PACKAGES]


@router.get("/plans", response_model=List[OfferResponse])
async def get_subscription_plans():
    return [_offer(p) for p in SUBSCRIPTION_PLANS]
