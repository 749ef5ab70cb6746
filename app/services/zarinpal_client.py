"""ZarinPal REST client.

Two calls, both JSON over HTTPS:

  POST {base}PaymentRequest.json        -> code, authority
  POST {base}PaymentVerification.json   -> code, ref_id, card_pan

The shopper is sent to ``StartPay/{authority}`` and comes back to our
callback URL with ``Authority`` and ``Status`` (OK|NOK) query params.

Codes 100 (success) and 101 (already verified) both mean the payment
is good.  Any other code is a rejection and is raised as
GatewayRejectedError with a readable message.  Transport failures and
5xx answers are retried with exponential backoff (tenacity), at most
GATEWAY_MAX_ATTEMPTS attempts in total, then raised as GatewayError.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.metrics import GATEWAY_LATENCY, GATEWAY_REQUESTS
from app.services.errors import GatewayError, GatewayRejectedError

logger = logging.getLogger(__name__)

SANDBOX_API_URL = "https://sandbox.zarinpal.com/pg/rest/WebGate/"
PRODUCTION_API_URL = "https://api.zarinpal.com/pg/rest/WebGate/"
SANDBOX_STARTPAY_URL = "https://sandbox.zarinpal.com/pg/StartPay/"
PRODUCTION_STARTPAY_URL = "https://www.zarinpal.com/pg/StartPay/"

SUCCESS_CODES = frozenset({100, 101})

ERROR_MESSAGES: dict[int, str] = {
    -1: "Incomplete information submitted",
    -2: "Merchant IP or merchant code is not valid",
    -3: "Amount must be at least 1,000 IRR",
    -4: "Merchant level is lower than silver",
    -11: "Payment request not found",
    -12: "Payment request cannot be edited",
    -21: "No financial operation found for this transaction",
    -22: "Transaction was unsuccessful",
    -33: "Transaction amount does not match the paid amount",
    -34: "Transaction split limit exceeded (count or amount)",
    -40: "Access to this method is not allowed",
    -41: "Invalid AdditionalData",
    -42: "Payment id lifetime must be between 30 minutes and 45 days",
    -54: "Payment request has been archived",
}


def error_message(code: int) -> str:
    return ERROR_MESSAGES.get(code, f"Unknown gateway error (code {code})")


@dataclass(frozen=True, slots=True)
class PaymentIntent:
    authority: str
    payment_url: str


@dataclass(frozen=True, slots=True)
class GatewayVerification:
    code: int
    ref_id: str
    card_pan: str | None = None


class _ServerError(Exception):
    """5xx from the provider; retried like a transport failure."""


class ZarinPalClient:
    """Async client for the ZarinPal WebGate API.

    ``transport`` lets tests plug in ``httpx.MockTransport``;
    ``backoff_multiplier=0`` turns the retry waits off.
    """

    def __init__(
        self,
        merchant_id: str,
        *,
        callback_url: str,
        sandbox: bool = True,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_multiplier: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._merchant_id = merchant_id
        self._callback_url = callback_url
        self._sandbox = sandbox
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._backoff_multiplier = backoff_multiplier
        self._transport = transport

    @property
    def base_url(self) -> str:
        return SANDBOX_API_URL if self._sandbox else PRODUCTION_API_URL

    def payment_url(self, authority: str) -> str:
        base = SANDBOX_STARTPAY_URL if self._sandbox else PRODUCTION_STARTPAY_URL
        return f"{base}{authority}"

    async def request_payment(
        self, *, amount: int, description: str, metadata: dict | None = None
    ) -> PaymentIntent:
        data = await self._post(
            "request",
            "PaymentRequest.json",
            {
                "merchant_id": self._merchant_id,
                "amount": amount,
                "description": description,
                "callback_url": self._callback_url,
                "metadata": metadata or {},
            },
        )
        code = _code(data)
        authority = data.get("authority")
        if code != 100 or not authority:
            GATEWAY_REQUESTS.labels(operation="request", result="rejected").inc()
            logger.warning("Payment request rejected code=%s amount=%d", code, amount)
            raise GatewayRejectedError(error_message(code), gateway_code=code)

        GATEWAY_REQUESTS.labels(operation="request", result="ok").inc()
        return PaymentIntent(authority=authority, payment_url=self.payment_url(authority))

    async def verify_payment(self, *, authority: str, amount: int) -> GatewayVerification:
        data = await self._post(
            "verify",
            "PaymentVerification.json",
            {
                "merchant_id": self._merchant_id,
                "authority": authority,
                "amount": amount,
            },
        )
        code = _code(data)
        if code not in SUCCESS_CODES:
            GATEWAY_REQUESTS.labels(operation="verify", result="rejected").inc()
            logger.warning(
                "Payment verification rejected code=%s",
                code,
                extra={"authority": authority},
            )
            raise GatewayRejectedError(error_message(code), gateway_code=code)

        GATEWAY_REQUESTS.labels(operation="verify", result="ok").inc()
        return GatewayVerification(
            code=code,
            ref_id=str(data.get("ref_id", "")),
            card_pan=data.get("card_pan"),
        )

    async def _post(self, operation: str, path: str, body: dict) -> dict:
        start = time.monotonic()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._backoff_multiplier, max=8),
                retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
                reraise=True,
            ):
                with attempt:
                    async with httpx.AsyncClient(
                        base_url=self.base_url,
                        timeout=self._timeout,
                        transport=self._transport,
                    ) as client:
                        response = await client.post(
                            path, json=body, headers={"Accept": "application/json"}
                        )
                    if response.status_code >= 500:
                        raise _ServerError(f"HTTP {response.status_code}")
        except (httpx.TransportError, _ServerError) as exc:
            GATEWAY_REQUESTS.labels(operation=operation, result="error").inc()
            logger.warning(
                "Gateway %s failed after %d attempts: %s",
                operation,
                self._max_attempts,
                exc,
            )
            raise GatewayError(internal_code=type(exc).__name__) from exc
        finally:
            GATEWAY_LATENCY.labels(operation=operation).observe(time.monotonic() - start)

        try:
            data = response.json()
        except ValueError as exc:
            GATEWAY_REQUESTS.labels(operation=operation, result="error").inc()
            logger.warning("Gateway %s returned a non-JSON body", operation)
            raise GatewayError(internal_code="INVALID_RESPONSE") from exc
        if not isinstance(data, dict):
            GATEWAY_REQUESTS.labels(operation=operation, result="error").inc()
            raise GatewayError(internal_code="INVALID_RESPONSE")
        return data


def _code(data: dict) -> int:
    try:
        return int(data.get("code", 0))
    except (TypeError, ValueError):
        return 0
