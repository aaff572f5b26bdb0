import json

import httpx
import pytest

from credit_engine.services.errors import GatewayRejected, GatewayUnavailable
from credit_engine.services.gateway import (
    BuyerInfo,
    GatewayPaymentState,
    ZenoPayGateway,
    parse_gateway_state,
)

BASE = "https://zenoapi.test/api/payments"
BUYER = BuyerInfo(name="Juma", email="juma@example.com", phone="0754000111")


def _gateway(handler) -> ZenoPayGateway:
    return ZenoPayGateway(
        api_key="zk_test",
        base_url=BASE,
        timeout_seconds=1,
        redirect_base="https://app.test",
        transport=httpx.MockTransport(handler),
    )


def _status_reply(payment_status, **row):
    return httpx.Response(
        200,
        json={"resultcode": "000", "data": [dict(payment_status=payment_status, **row)]},
    )


class TestParseState:
    @pytest.mark.parametrize(
        "raw,state",
        [
            ("COMPLETED", GatewayPaymentState.COMPLETED),
            ("success", GatewayPaymentState.COMPLETED),
            ("PENDING", GatewayPaymentState.PENDING),
            ("CANCELLED", GatewayPaymentState.FAILED),
            (" failed ", GatewayPaymentState.FAILED),
        ],
    )
    def test_known_values(self, raw, state):
        assert parse_gateway_state(raw) == state

    @pytest.mark.parametrize("raw", ["REFUNDED", "", None, 3])
    def test_unknown_values_are_unavailable(self, raw):
        with pytest.raises(GatewayUnavailable):
            parse_gateway_state(raw)


class TestInitiate:
    @pytest.mark.asyncio
    async def test_posts_order_with_api_key(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "message": "Request in progress"})

        url = await _gateway(handler).initiate("ord-1", 10000, BUYER)

        assert seen["url"] == f"{BASE}/mobile_money_tanzania"
        assert seen["key"] == "zk_test"
        assert seen["body"]["amount"] == 10000
        assert seen["body"]["buyer_phone"] == "0754000111"
        assert url == "https://app.test/payment-status?order_id=ord-1"

    @pytest.mark.asyncio
    async def test_error_status_is_rejected(self):
        handler = lambda request: httpx.Response(200, json={"status": "error", "message": "Invalid phone"})

        with pytest.raises(GatewayRejected):
            await _gateway(handler).initiate("ord-1", 500, BUYER)

    @pytest.mark.asyncio
    async def test_4xx_is_rejected(self):
        handler = lambda request: httpx.Response(403, json={"message": "Invalid API key"})

        with pytest.raises(GatewayRejected):
            await _gateway(handler).initiate("ord-1", 500, BUYER)

    @pytest.mark.asyncio
    async def test_missing_api_key_is_unavailable(self):
        gateway = ZenoPayGateway(api_key="", base_url=BASE)

        with pytest.raises(GatewayUnavailable):
            await gateway.initiate("ord-1", 500, BUYER)


class TestQueryStatus:
    @pytest.mark.asyncio
    async def test_completed_with_transaction(self):
        def handler(request: httpx.Request):
            assert request.url.params["order_id"] == "ord-9"
            return _status_reply("COMPLETED", transid="CLK123", amount="10000")

        status = await _gateway(handler).query_status("ord-9")

        assert status.status == GatewayPaymentState.COMPLETED
        assert status.transaction_id == "CLK123"
        assert status.amount == 10000

    @pytest.mark.asyncio
    async def test_unknown_status_is_unavailable(self):
        with pytest.raises(GatewayUnavailable):
            await _gateway(lambda request: _status_reply("REVERSED")).query_status("ord-9")

    @pytest.mark.asyncio
    async def test_bad_resultcode_is_unavailable(self):
        handler = lambda request: httpx.Response(200, json={"resultcode": "999", "message": "busy"})

        with pytest.raises(GatewayUnavailable):
            await _gateway(handler).query_status("ord-9")

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        with pytest.raises(GatewayUnavailable):
            await _gateway(lambda request: httpx.Response(502, text="Bad Gateway")).query_status("ord-9")

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request: httpx.Request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayUnavailable) as exc_info:
            await _gateway(handler).query_status("ord-9")
        assert exc_info.value.reason == "timeout"
