from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.services.errors import GatewayError, GatewayRejectedError
from app.services.payment_gateway import PaymentGateway
from app.services.zarinpal_client import (
    PRODUCTION_STARTPAY_URL,
    SANDBOX_STARTPAY_URL,
    ZarinPalClient,
    error_message,
)

MERCHANT = "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"
AUTHORITY = "A00000000000000000000000000000123456"


def _client(handler, **kwargs) -> ZarinPalClient:
    kwargs.setdefault("max_attempts", 3)
    return ZarinPalClient(
        MERCHANT,
        callback_url="http://localhost:8000/v1/payments/callback",
        backoff_multiplier=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_client_satisfies_gateway_protocol() -> None:
    assert isinstance(_client(lambda r: httpx.Response(200, json={})), PaymentGateway)


# ---- request ----


def test_request_payment_returns_startpay_url() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 100, "authority": AUTHORITY})

    intent = asyncio.run(
        _client(handler).request_payment(
            amount=150_000, description="Wallet top-up", metadata={"user_id": "u-1"}
        )
    )

    assert intent.authority == AUTHORITY
    assert intent.payment_url == f"{SANDBOX_STARTPAY_URL}{AUTHORITY}"
    assert seen[0].url.path.endswith("/PaymentRequest.json")
    body = json.loads(seen[0].content)
    assert body["merchant_id"] == MERCHANT
    assert body["amount"] == 150_000
    assert body["callback_url"].endswith("/v1/payments/callback")
    assert body["metadata"] == {"user_id": "u-1"}


def test_production_client_uses_production_urls() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"code": 100, "authority": AUTHORITY})

    intent = asyncio.run(
        _client(handler, sandbox=False).request_payment(amount=1_000, description="x")
    )
    assert seen[0].url.host == "api.zarinpal.com"
    assert intent.payment_url == f"{PRODUCTION_STARTPAY_URL}{AUTHORITY}"


def test_request_payment_rejected() -> None:
    client = _client(lambda r: httpx.Response(200, json={"code": -3}))
    with pytest.raises(GatewayRejectedError) as exc_info:
        asyncio.run(client.request_payment(amount=10, description="x"))
    assert exc_info.value.gateway_code == -3
    assert exc_info.value.message == error_message(-3)


# ---- verify ----


@pytest.mark.parametrize("code", [100, 101])
def test_verify_success_codes(code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body == {"merchant_id": MERCHANT, "authority": AUTHORITY, "amount": 5_000}
        return httpx.Response(
            200, json={"code": code, "ref_id": 201, "card_pan": "502229******5995"}
        )

    result = asyncio.run(_client(handler).verify_payment(authority=AUTHORITY, amount=5_000))
    assert result.code == code
    assert result.ref_id == "201"
    assert result.card_pan == "502229******5995"


@pytest.mark.parametrize(
    ("code", "message"),
    [
        (-11, "Payment request not found"),
        (-22, "Transaction was unsuccessful"),
        (-33, "Transaction amount does not match the paid amount"),
        (-999, "Unknown gateway error (code -999)"),
    ],
)
def test_verify_rejection_messages(code: int, message: str) -> None:
    client = _client(lambda r: httpx.Response(200, json={"code": code}))
    with pytest.raises(GatewayRejectedError) as exc_info:
        asyncio.run(client.verify_payment(authority=AUTHORITY, amount=5_000))
    assert exc_info.value.message == message
    assert exc_info.value.internal_code == str(code)


# ---- retries ----


def test_transport_error_retried_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"code": 100, "ref_id": 7})

    result = asyncio.run(_client(handler).verify_payment(authority=AUTHORITY, amount=1_000))
    assert calls["n"] == 3
    assert result.ref_id == "7"


def test_server_error_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503, text="maintenance")
        return httpx.Response(200, json={"code": 100, "authority": AUTHORITY})

    intent = asyncio.run(_client(handler).request_payment(amount=1_000, description="x"))
    assert calls["n"] == 2
    assert intent.authority == AUTHORITY


def test_retries_exhausted_raise_gateway_error() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(
            _client(handler, max_attempts=4).verify_payment(authority=AUTHORITY, amount=1)
        )
    assert calls["n"] == 4
    assert exc_info.value.internal_code == "ReadTimeout"
    assert not isinstance(exc_info.value, GatewayRejectedError)


def test_client_error_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400, json={"code": -1})

    with pytest.raises(GatewayRejectedError):
        asyncio.run(_client(handler).verify_payment(authority=AUTHORITY, amount=1))
    assert calls["n"] == 1


def test_non_json_body_is_gateway_error() -> None:
    client = _client(lambda r: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(client.verify_payment(authority=AUTHORITY, amount=1))
    assert exc_info.value.internal_code == "INVALID_RESPONSE"
