"""
Тесты клиента платёжного шлюза (httpx.MockTransport)
"""

import hashlib
import hmac
import json

import httpx
import pytest

from marketplace.core.constants import TransferState
from marketplace.domain.errors import GatewayRequestNotSentError, UpstreamUnavailableError
from marketplace.services.payment_gateway import PaystackGateway, normalize_status


BASE_URL = "https://gateway.test"


def _gateway(handler) -> PaystackGateway:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return PaystackGateway("sk_test_secret", base_url=BASE_URL, client=client)


def _json(status_code: int, body: dict) -> httpx.Response:
    return httpx.Response(status_code, json=body)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("success", TransferState.SUCCESS),
        ("SUCCESS", TransferState.SUCCESS),
        ("pending", TransferState.PENDING),
        ("otp", TransferState.PENDING),
        ("received", TransferState.PENDING),
        ("processing", TransferState.PENDING),
        ("failed", TransferState.FAILED),
        ("reversed", TransferState.FAILED),
        ("abandoned", TransferState.FAILED),
        ("something-new", TransferState.PENDING),
        (None, TransferState.PENDING),
    ],
)
def test_normalize_status(raw, expected):
    """Успех - только success; неизвестное считается неокончательным"""
    assert normalize_status(raw) == expected


class TestVerifyPayment:
    """Тесты проверки платежа"""

    @pytest.mark.asyncio()
    async def test_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transaction/verify/ord-abc"
            return _json(
                200,
                {
                    "status": True,
                    "message": "Verification successful",
                    "data": {"status": "success", "amount": 33500, "reference": "ord-abc", "metadata": {"cart": 1}},
                },
            )

        result = await _gateway(handler).verify_payment("ord-abc")

        assert result.is_successful
        assert result.amount == 33500
        assert result.metadata == {"cart": 1}

    @pytest.mark.asyncio()
    async def test_not_found(self):
        result = await _gateway(lambda r: _json(404, {"status": False, "message": "Transaction reference not found"})).verify_payment("ord-x")

        assert result.status == TransferState.NOT_FOUND
        assert not result.is_successful

    @pytest.mark.asyncio()
    async def test_abandoned_payment(self):
        result = await _gateway(
            lambda r: _json(200, {"status": True, "data": {"status": "abandoned", "amount": 100}})
        ).verify_payment("ord-x")

        assert result.status == TransferState.FAILED

    @pytest.mark.asyncio()
    async def test_own_client_carries_secret_key(self):
        gateway = PaystackGateway("sk_test_secret", base_url=BASE_URL + "/")
        try:
            assert gateway._client.headers["Authorization"] == "Bearer sk_test_secret"
            assert gateway.base_url == BASE_URL
        finally:
            await gateway.close()


class TestTransfers:
    """Тесты переводов продавцам"""

    @pytest.mark.asyncio()
    async def test_initiate_transfer_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return _json(
                200,
                {"status": True, "data": {"status": "success", "transfer_code": "TRF_1", "reference": "payout-1-1"}},
            )

        result = await _gateway(handler).initiate_transfer("RCP_abc", 19300, "payout-1-1", "Payout")

        assert result.status == TransferState.SUCCESS
        assert result.transfer_code == "TRF_1"
        assert captured["path"] == "/transfer"
        assert captured["body"] == {
            "source": "balance",
            "amount": 19300,
            "recipient": "RCP_abc",
            "reference": "payout-1-1",
            "reason": "Payout",
        }

    @pytest.mark.asyncio()
    async def test_otp_transfer_is_pending(self):
        result = await _gateway(
            lambda r: _json(200, {"status": True, "data": {"status": "otp", "transfer_code": "TRF_2"}})
        ).initiate_transfer("RCP_abc", 100, "payout-2-1")

        assert result.status == TransferState.PENDING
        assert result.transfer_code == "TRF_2"

    @pytest.mark.asyncio()
    async def test_rejected_transfer_is_failed(self):
        result = await _gateway(
            lambda r: _json(400, {"status": False, "message": "Your balance is not enough"})
        ).initiate_transfer("RCP_abc", 100, "payout-3-1")

        assert result.status == TransferState.FAILED
        assert "balance" in result.message

    @pytest.mark.asyncio()
    async def test_server_error_is_ambiguous(self):
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await _gateway(lambda r: httpx.Response(503)).initiate_transfer("RCP_abc", 100, "payout-4-1")

        assert not isinstance(exc_info.value, GatewayRequestNotSentError)

    @pytest.mark.asyncio()
    async def test_read_timeout_is_ambiguous(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await _gateway(handler).initiate_transfer("RCP_abc", 100, "payout-5-1")

        assert not isinstance(exc_info.value, GatewayRequestNotSentError)

    @pytest.mark.asyncio()
    async def test_connect_error_means_not_sent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayRequestNotSentError):
            await _gateway(handler).initiate_transfer("RCP_abc", 100, "payout-6-1")

    @pytest.mark.asyncio()
    async def test_invalid_json_is_ambiguous(self):
        with pytest.raises(UpstreamUnavailableError):
            await _gateway(lambda r: httpx.Response(200, content=b"<html>")).initiate_transfer(
                "RCP_abc", 100, "payout-7-1"
            )

    @pytest.mark.asyncio()
    async def test_transfer_status_lookup(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transfer/TRF_9"
            return _json(200, {"status": True, "data": {"status": "success", "transfer_code": "TRF_9"}})

        result = await _gateway(handler).get_transfer_status("TRF_9")

        assert result.status == TransferState.SUCCESS

    @pytest.mark.asyncio()
    async def test_verify_transfer_not_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transfer/verify/payout-8-1"
            return _json(404, {"status": False, "message": "Transfer not found"})

        result = await _gateway(handler).verify_transfer("payout-8-1")

        assert result.status == TransferState.NOT_FOUND
        assert result.reference == "payout-8-1"


class TestRefund:
    """Тесты возвратов"""

    @pytest.mark.asyncio()
    async def test_refund_pending_is_accepted(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return _json(
                200,
                {"status": True, "data": {"status": "pending", "transaction": {"reference": "ord-abc"}}},
            )

        result = await _gateway(handler).refund("ord-abc", 33500, "seller declined")

        assert result.status == TransferState.PENDING
        assert captured["body"] == {"transaction": "ord-abc", "amount": 33500, "merchant_note": "seller declined"}

    @pytest.mark.asyncio()
    async def test_refund_reference_sent_to_gateway(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return _json(200, {"status": True, "data": {"status": "processed"}})

        result = await _gateway(handler).refund("ord-abc", 33500, "commit window expired", reference="refund-abc-2")

        assert result.status == TransferState.SUCCESS
        assert captured["body"]["merchant_note"] == "commit window expired [refund-abc-2]"

    @pytest.mark.asyncio()
    async def test_already_refunded_counts_as_success(self):
        result = await _gateway(
            lambda r: _json(400, {"status": False, "message": "Transaction has been fully reversed"})
        ).refund("ord-abc", 100)

        assert result.status == TransferState.SUCCESS

    @pytest.mark.asyncio()
    async def test_refund_rejected(self):
        result = await _gateway(
            lambda r: _json(400, {"status": False, "message": "Transaction not found"})
        ).refund("ord-abc", 100)

        assert result.status == TransferState.FAILED


class TestWebhookSignature:
    """Тесты подписи webhook"""

    def test_valid_signature(self):
        body = b'{"event":"charge.success"}'
        signature = hmac.new(b"sk_test_secret", body, hashlib.sha512).hexdigest()

        assert _gateway(lambda r: httpx.Response(200)).verify_webhook_signature(body, signature)

    def test_invalid_signature(self):
        gateway = _gateway(lambda r: httpx.Response(200))

        assert not gateway.verify_webhook_signature(b"{}", "deadbeef")
        assert not gateway.verify_webhook_signature(b"{}", None)
