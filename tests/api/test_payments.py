"""Tests for gateway top-up endpoints and the gateway callback."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.services import payment_service
from app.services.errors import GatewayError, GatewayRejectedError
from app.services.notifications import WALLET_RECEIPT_QUEUE
from app.services.task_queue import task_queue
from tests.conftest import auth, mint_token


def _start(client: TestClient, token: str, amount: int = 100_000) -> dict:
    resp = client.post("/v1/payments", json={"amount": amount}, headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_payment(client: TestClient, token: str) -> None:
    payment = _start(client, token)
    assert payment["amount"] == 100_000
    assert payment["payment_url"].endswith(payment["authority"])


def test_create_payment_requires_auth(client: TestClient) -> None:
    resp = client.post("/v1/payments", json={"amount": 100_000})
    assert resp.status_code == 401


def test_create_payment_out_of_range(client: TestClient, token: str) -> None:
    resp = client.post("/v1/payments", json={"amount": 500}, headers=auth(token))
    assert resp.status_code == 422
    assert resp.json()["code"] == "AMOUNT_OUT_OF_RANGE"


def test_verify_credits_wallet(client: TestClient, token: str) -> None:
    payment = _start(client, token)

    resp = client.post(
        "/v1/payments/verify",
        json={"authority": payment["authority"], "amount": 100_000, "status": "OK"},
        headers=auth(token),
    )
    assert resp.status_code == 200
    result = resp.json()
    assert result["success"] is True
    assert result["new_balance"] == 100_000
    assert client.get("/v1/wallet", headers=auth(token)).json()["balance"] == 100_000

    # receipt goes out once the request has committed
    assert asyncio.run(task_queue.queue_length(WALLET_RECEIPT_QUEUE)) == 1


def test_verify_other_users_payment_not_found(client: TestClient, token: str) -> None:
    payment = _start(client, mint_token("alice"))
    resp = client.post(
        "/v1/payments/verify",
        json={"authority": payment["authority"], "amount": 100_000},
        headers=auth(token),
    )
    assert resp.status_code == 404


def test_callback_needs_no_token_and_is_idempotent(client: TestClient, token: str) -> None:
    payment = _start(client, token, amount=250_000)
    params = {"Authority": payment["authority"], "Status": "OK"}

    first = client.get("/v1/payments/callback", params=params)
    second = client.get("/v1/payments/callback", params=params)

    assert first.status_code == second.status_code == 200
    assert first.json()["ref_id"] == second.json()["ref_id"]
    assert second.json()["new_balance"] == 250_000
    assert client.get("/v1/wallet", headers=auth(token)).json()["balance"] == 250_000


def test_callback_nok(client: TestClient, token: str) -> None:
    payment = _start(client, token)
    resp = client.get(
        "/v1/payments/callback",
        params={"Authority": payment["authority"], "Status": "NOK"},
    )
    assert resp.status_code == 200
    assert resp.json()["error_code"] == "PAYMENT_CANCELLED"
    assert client.get("/v1/wallet", headers=auth(token)).json()["balance"] == 0


def test_callback_unknown_authority(client: TestClient) -> None:
    resp = client.get(
        "/v1/payments/callback",
        params={"Authority": "A" + "9" * 35, "Status": "OK"},
    )
    assert resp.status_code == 404


def test_callback_gateway_down(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    payment = _start(client, token)

    async def unreachable(*, authority: str, amount: int):
        raise GatewayError(internal_code="ConnectError")

    monkeypatch.setattr(payment_service.payment_gateway, "verify_payment", unreachable)
    resp = client.get(
        "/v1/payments/callback",
        params={"Authority": payment["authority"], "Status": "OK"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["error_code"] == "VERIFICATION_ERROR"
    assert body["status"] == "pending"


def test_create_payment_gateway_down(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def unreachable(*, amount: int, description: str, metadata=None):
        raise GatewayError(internal_code="ConnectError")

    monkeypatch.setattr(payment_service.payment_gateway, "request_payment", unreachable)
    resp = client.post("/v1/payments", json={"amount": 100_000}, headers=auth(token))
    assert resp.status_code == 502
    assert resp.json()["code"] == "GATEWAY_ERROR"


def test_gateway_rejection_hides_provider_message(
    client: TestClient, token: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def rejected(*, amount: int, description: str, metadata=None):
        raise GatewayRejectedError("Merchant IP or merchant code is not valid", gateway_code=-2)

    monkeypatch.setattr(payment_service.payment_gateway, "request_payment", rejected)
    resp = client.post("/v1/payments", json={"amount": 100_000}, headers=auth(token))

    assert resp.status_code == 502
    assert resp.json() == {
        "detail": GatewayError().message,
        "code": "GATEWAY_ERROR",
    }


def test_callback_ok_after_nok_does_not_credit(client: TestClient, token: str) -> None:
    payment = _start(client, token)
    client.get(
        "/v1/payments/callback",
        params={"Authority": payment["authority"], "Status": "NOK"},
    )
    resp = client.get(
        "/v1/payments/callback",
        params={"Authority": payment["authority"], "Status": "OK"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["error_code"] == "PAYMENT_CANCELLED"
    assert client.get("/v1/wallet", headers=auth(token)).json()["balance"] == 0
