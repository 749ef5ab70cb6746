"""Wallet top-up payments.

  POST /v1/payments            open a gateway payment, get payment_url
  POST /v1/payments/verify     settle it (client-driven)
  GET  /v1/payments/callback   gateway redirect target, no bearer token

The callback carries only ``Authority`` and ``Status``; the amount is
taken from the stored record.  Verification is idempotent, so the
browser redirect and a client-side verify may both arrive.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_context, open_context
from app.models.principal import Principal
from app.services import payment_service
from app.services.context import ServiceContext
from app.services.errors import NotFoundError
from app.services.payment_service import PaymentVerification

router = APIRouter(prefix="/v1/payments", tags=["payments"])

_CALLBACK_PRINCIPAL = Principal(
    user_id="payment-callback",
    roles=frozenset({payment_service.CALLBACK_ROLE}),
)


class PaymentCreateIn(BaseModel):
    amount: int
    description: str = Field(default="Wallet top-up", max_length=255)
    metadata: dict | None = None


class PaymentCreateOut(BaseModel):
    authority: str
    payment_url: str
    amount: int
    wallet_id: str


class VerifyIn(BaseModel):
    authority: str
    amount: int
    status: str = "OK"


class VerificationOut(BaseModel):
    success: bool
    authority: str
    amount: int
    status: str
    message: str
    error_code: str | None
    ref_id: str | None
    card_pan: str | None
    new_balance: int | None
    transaction_id: str | None

    @classmethod
    def from_result(cls, v: PaymentVerification) -> VerificationOut:
        return cls(
            success=v.success,
            authority=v.authority,
            amount=v.amount,
            status=v.status,
            message=v.message,
            error_code=v.error_code,
            ref_id=v.ref_id,
            card_pan=v.card_pan,
            new_balance=v.new_balance,
            transaction_id=v.transaction_id,
        )


@router.post("", response_model=PaymentCreateOut, status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreateIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> PaymentCreateOut:
    result = await payment_service.create_payment(
        ctx, body.amount, body.description, body.metadata
    )
    return PaymentCreateOut(
        authority=result.authority,
        payment_url=result.payment_url,
        amount=result.amount,
        wallet_id=result.wallet_id,
    )


@router.post("/verify", response_model=VerificationOut)
async def verify_payment(
    body: VerifyIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> VerificationOut:
    result = await payment_service.verify_payment(
        ctx, body.authority, body.amount, body.status
    )
    return VerificationOut.from_result(result)


@router.get("/callback", response_model=VerificationOut)
async def payment_callback(
    authority: Annotated[str, Query(alias="Authority")],
    gateway_status: Annotated[str, Query(alias="Status")],
) -> VerificationOut:
    async with open_context(_CALLBACK_PRINCIPAL) as ctx:
        record = await ctx.repos.payments.get(authority)
        if record is None:
            raise NotFoundError("payment not found")
        result = await payment_service.verify_payment(
            ctx, authority, record.amount, gateway_status
        )
    return VerificationOut.from_result(result)
