"""Payment gateway seam.

``PaymentGateway`` is what the payment service talks to.  Production
uses ZarinPalClient; without a merchant id (local dev, tests) the
in-memory gateway below issues authorities itself and verifies any
authority it issued, for the amount it was issued for.
"""

from __future__ import annotations

import itertools
import secrets
from typing import Protocol, runtime_checkable

from app.services.errors import GatewayRejectedError
from app.services.zarinpal_client import (
    SANDBOX_STARTPAY_URL,
    GatewayVerification,
    PaymentIntent,
    error_message,
)


@runtime_checkable
class PaymentGateway(Protocol):
    async def request_payment(
        self, *, amount: int, description: str, metadata: dict | None = None
    ) -> PaymentIntent: ...

    async def verify_payment(
        self, *, authority: str, amount: int
    ) -> GatewayVerification: ...


class InMemoryPaymentGateway:
    """Stand-in gateway with ZarinPal's answer codes."""

    def __init__(self) -> None:
        self._issued: dict[str, int] = {}
        self._verified: dict[str, GatewayVerification] = {}
        self._ref_ids = itertools.count(100_000_001)

    def clear(self) -> None:
        self._issued.clear()
        self._verified.clear()

    async def request_payment(
        self, *, amount: int, description: str, metadata: dict | None = None
    ) -> PaymentIntent:
        # ZarinPal authorities are "A" followed by 35 digits.
        authority = "A" + "".join(secrets.choice("0123456789") for _ in range(35))
        self._issued[authority] = amount
        return PaymentIntent(
            authority=authority, payment_url=f"{SANDBOX_STARTPAY_URL}{authority}"
        )

    async def verify_payment(self, *, authority: str, amount: int) -> GatewayVerification:
        issued = self._issued.get(authority)
        if issued is None:
            raise GatewayRejectedError(error_message(-11), gateway_code=-11)
        if issued != amount:
            raise GatewayRejectedError(error_message(-33), gateway_code=-33)

        previous = self._verified.get(authority)
        if previous is not None:
            return GatewayVerification(
                code=101, ref_id=previous.ref_id, card_pan=previous.card_pan
            )
        result = GatewayVerification(
            code=100, ref_id=str(next(self._ref_ids)), card_pan="502229******5995"
        )
        self._verified[authority] = result
        return result
