# =========================================================
# FILE: credit_engine/services/gateway.py
# =========================================================
"""
Mobile-money gateway adapters.

The reconciler only sees PaymentGateway.initiate / query_status. Whatever the
gateway sends back is validated here into GatewayPaymentState; anything we do
not recognise is reported as GatewayUnavailable, never passed on as a state.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx

from credit_engine.services.errors import GatewayRejected, GatewayUnavailable

logger = logging.getLogger("credit-engine.gateway")


class GatewayPaymentState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class BuyerInfo:
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class GatewayStatus:
    status: GatewayPaymentState
    transaction_id: Optional[str] = None
    amount: Optional[int] = None


class PaymentGateway(Protocol):
    async def initiate(self, order_id: str, amount: int, buyer: BuyerInfo) -> str:
        ...

    async def query_status(self, order_id: str) -> GatewayStatus:
        ...


# ZenoPay spells states in a few ways depending on the endpoint
_STATE_MAP = {
    "COMPLETED": GatewayPaymentState.COMPLETED,
    "SUCCESS": GatewayPaymentState.COMPLETED,
    "FAILED": GatewayPaymentState.FAILED,
    "CANCELLED": GatewayPaymentState.FAILED,
    "ERROR": GatewayPaymentState.FAILED,
    "PENDING": GatewayPaymentState.PENDING,
}


def parse_gateway_state(raw: Any) -> GatewayPaymentState:
    if not isinstance(raw, str) or raw.strip().upper() not in _STATE_MAP:
        raise GatewayUnavailable(f"unrecognised payment status {raw!r}")
    return _STATE_MAP[raw.strip().upper()]


def _parse_amount(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        raise GatewayUnavailable(f"malformed amount {raw!r}")


class ZenoPayGateway:
    """ZenoPay mobile money (Tanzania). USSD push on initiate, order-status for polling."""

    def __init__(
            self,
            api_key: str,
            base_url: str = "https://zenoapi.com/api/payments",
            timeout_seconds: float = 15.0,
            redirect_base: str = "",
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.redirect_base = redirect_base.rstrip("/")
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            headers={"x-api-key": self.api_key, "Content-Type": "application/json"},
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.enabled:
            raise GatewayUnavailable("ZenoPay API key not configured")

        url = f"{self.base_url}/{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("ZenoPay %s %s timed out: %s", method, path, exc)
            raise GatewayUnavailable("timeout") from exc
        except httpx.HTTPError as exc:
            logger.warning("ZenoPay %s %s transport error: %s", method, path, exc)
            raise GatewayUnavailable(f"transport error: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayUnavailable(f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayUnavailable("non-JSON response") from exc
        if not isinstance(payload, dict):
            raise GatewayUnavailable("unexpected response shape")

        if response.status_code >= 400:
            raise GatewayRejected(payload.get("message") or f"HTTP {response.status_code}")
        return payload

    async def initiate(self, order_id: str, amount: int, buyer: BuyerInfo) -> str:
        payload = await self._request(
            "POST",
            "mobile_money_tanzania",
            json={
                "order_id": order_id,
                "buyer_email": buyer.email,
                "buyer_name": buyer.name,
                "buyer_phone": buyer.phone,
                "amount": amount,
            },
        )
        if str(payload.get("status", "")).lower() != "success":
            raise GatewayRejected(payload.get("message") or "Payment initiation failed")

        logger.info("ZenoPay order %s initiated (%s)", order_id, payload.get("message"))
        return payload.get("payment_url") or f"{self.redirect_base}/payment-status?order_id={order_id}"

    async def query_status(self, order_id: str) -> GatewayStatus:
        payload = await self._request("GET", "order-status", params={"order_id": order_id})

        if payload.get("resultcode") != "000":
            raise GatewayUnavailable(f"resultcode {payload.get('resultcode')!r}: {payload.get('message')}")
        data = payload.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise GatewayUnavailable("order-status returned no data")

        row = data[0]
        return GatewayStatus(
            status=parse_gateway_state(row.get("payment_status")),
            transaction_id=row.get("transid") or row.get("reference"),
            amount=_parse_amount(row.get("amount")),
        )


class MockGateway:
    """In-memory gateway for local development and tests."""

    def __init__(self, redirect_base: str = "http://localhost:3000") -> None:
        self.redirect_base = redirect_base.rstrip("/")
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.query_count = 0

    async def initiate(self, order_id: str, amount: int, buyer: BuyerInfo) -> str:
        self.orders[order_id] = {
            "amount": amount,
            "buyer": buyer,
            "status": GatewayPaymentState.PENDING,
            "transaction_id": None,
        }
        return f"{self.redirect_base}/payment-status?order_id={order_id}"

    def settle(self, order_id: str, state: GatewayPaymentState, transaction_id: Optional[str] = None) -> None:
        order = self.orders[order_id]
        order["status"] = GatewayPaymentState(state)
        order["transaction_id"] = transaction_id or f"MOCK-{order_id[:8].upper()}"

    async def query_status(self, order_id: str) -> GatewayStatus:
        self.query_count += 1
        order = self.orders.get(order_id)
        if order is None:
            raise GatewayUnavailable(f"unknown order {order_id}")
        return GatewayStatus(
            status=order["status"],
            transaction_id=order["transaction_id"],
            amount=order["amount"],
        )
