"""Wallet top-ups through the payment gateway.

LIFECYCLE OF ONE AUTHORITY
--------------------------

  create_payment        gateway PaymentRequest -> authority
                        PaymentAuthority(status=pending, consumed=false)
  shopper pays at StartPay/{authority}, comes back to the callback
  verify_payment(NOK)   -> cancelled, nothing credited
  verify_payment(OK)    gateway PaymentVerification
                          rejected -> failed
                          unreachable -> unchanged, caller may retry
                          success -> claim, deposit, verified

Settled records (verified, cancelled or failed) never move: later calls
answer from the record, a verified one by replaying its result.

The claim (``consumed`` false -> true) is one conditional write.  Of
two callbacks racing on the same authority exactly one wins it and
credits the wallet; the other reads the winner's ledger entry back and
answers with the same ref_id and balance.  The deposit itself carries
``reference_id=authority``, so even a released claim cannot credit
twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from app.core.config import SETTINGS
from app.core.metrics import PAYMENT_VERIFICATIONS
from app.models.payment import PaymentAuthority
from app.repos.exceptions import DuplicateKeyError
from app.services import notifications, wallet_service
from app.services.context import ServiceContext, now
from app.services.errors import (
    ConflictError,
    GatewayError,
    GatewayRejectedError,
    NotFoundError,
    ValidationError,
)
from app.services.payment_gateway import InMemoryPaymentGateway, PaymentGateway
from app.services.zarinpal_client import ZarinPalClient

logger = logging.getLogger(__name__)

CALLBACK_ROLE = "payment_callback"


@dataclass(frozen=True, slots=True)
class PaymentRequestResult:
    authority: str
    payment_url: str
    amount: int
    wallet_id: str


@dataclass(frozen=True, slots=True)
class PaymentVerification:
    success: bool
    authority: str
    amount: int
    status: str
    message: str
    error_code: str | None = None
    ref_id: str | None = None
    card_pan: str | None = None
    new_balance: int | None = None
    transaction_id: str | None = None


def _check_bounds(amount: int) -> None:
    if not SETTINGS.payment_min_amount <= amount <= SETTINGS.payment_max_amount:
        raise ValidationError(
            f"amount must be between {SETTINGS.payment_min_amount} and "
            f"{SETTINGS.payment_max_amount} IRR",
            code="AMOUNT_OUT_OF_RANGE",
        )


async def create_payment(
    ctx: ServiceContext,
    amount: int,
    description: str = "Wallet top-up",
    metadata: dict | None = None,
) -> PaymentRequestResult:
    """Open a gateway payment that will top up the caller's wallet."""
    _check_bounds(amount)

    wallet = await wallet_service.get_or_create_wallet(ctx)
    if wallet.status != "active":
        raise ConflictError(f"wallet is {wallet.status}", code="WALLET_INACTIVE")

    intent = await payment_gateway.request_payment(
        amount=amount,
        description=description,
        metadata={**(metadata or {}), "user_id": ctx.user_id, "wallet_id": str(wallet.id)},
    )
    record = PaymentAuthority(
        authority=intent.authority,
        wallet_id=wallet.id,
        user_id=ctx.user_id,
        amount=amount,
        created_at=now(),
        description=description,
    )
    try:
        await ctx.repos.payments.add(record)
    except DuplicateKeyError:
        raise ConflictError("authority already recorded") from None

    logger.info(
        "Payment requested authority=%s wallet=%s amount=%d",
        intent.authority,
        wallet.id,
        amount,
        extra={"authority": intent.authority, "wallet_id": str(wallet.id)},
    )
    return PaymentRequestResult(
        authority=intent.authority,
        payment_url=intent.payment_url,
        amount=amount,
        wallet_id=str(wallet.id),
    )


async def get_authority(ctx: ServiceContext, authority: str) -> PaymentAuthority:
    record = await ctx.repos.payments.get(authority)
    visible = record is not None and (
        record.user_id == ctx.user_id
        or ctx.is_admin
        or ctx.principal.has_role(CALLBACK_ROLE)
    )
    if not visible:
        raise NotFoundError("payment not found")
    return record


async def verify_payment(
    ctx: ServiceContext, authority: str, amount: int, status: str
) -> PaymentVerification:
    """Settle one gateway authority; safe to call any number of times."""
    record = await get_authority(ctx, authority)

    if status == "NOK":
        if record.status == "verified":
            return await _replay(ctx, record)
        if record.status == "pending":
            await ctx.repos.payments.mark_status(authority, "cancelled")
            PAYMENT_VERIFICATIONS.labels(outcome="cancelled").inc()
            logger.info(
                "Payment cancelled authority=%s", authority, extra={"authority": authority}
            )
        return _settled(record, "failed" if record.status == "failed" else "cancelled")
    if status != "OK":
        raise ValidationError("status must be OK or NOK")
    if amount != record.amount:
        raise ValidationError(
            "amount does not match the payment request", code="AMOUNT_MISMATCH"
        )
    _check_bounds(amount)

    if record.status == "verified":
        return await _replay(ctx, record)
    if record.status in ("cancelled", "failed"):
        return _settled(record, record.status)

    try:
        result = await payment_gateway.verify_payment(authority=authority, amount=amount)
    except GatewayRejectedError as exc:
        await ctx.repos.payments.mark_status(authority, "failed")
        PAYMENT_VERIFICATIONS.labels(outcome="failed").inc()
        logger.warning(
            "Payment rejected authority=%s gateway_code=%s",
            authority,
            exc.gateway_code,
            extra={"authority": authority, "error_code": "VERIFICATION_FAILED"},
        )
        return PaymentVerification(
            success=False,
            authority=authority,
            amount=amount,
            status="failed",
            message=exc.message,
            error_code="VERIFICATION_FAILED",
        )
    except GatewayError as exc:
        PAYMENT_VERIFICATIONS.labels(outcome="error").inc()
        logger.warning(
            "Payment verification unavailable authority=%s internal=%s",
            authority,
            exc.internal_code,
            extra={"authority": authority, "error_code": "VERIFICATION_ERROR"},
        )
        return PaymentVerification(
            success=False,
            authority=authority,
            amount=amount,
            status=record.status,
            message=exc.message,
            error_code="VERIFICATION_ERROR",
        )

    if not await ctx.repos.payments.claim(authority):
        return await _replay(ctx, record, ref_id=result.ref_id, card_pan=result.card_pan)

    try:
        tx = await wallet_service.apply_transaction(
            ctx,
            record.wallet_id,
            "deposit",
            amount,
            reference_id=authority,
            description=f"Gateway top-up (ref {result.ref_id})",
            payment_method="zarinpal",
        )
    except Exception:
        await ctx.repos.payments.release(authority)
        raise

    await ctx.repos.payments.mark_verified(
        authority,
        ref_id=result.ref_id,
        card_pan=result.card_pan,
        wallet_transaction_id=tx.id,
        now=now(),
    )
    PAYMENT_VERIFICATIONS.labels(outcome="verified").inc()
    logger.info(
        "Payment verified authority=%s ref=%s wallet=%s amount=%d balance=%d",
        authority,
        result.ref_id,
        record.wallet_id,
        amount,
        tx.balance_after,
        extra={"authority": authority, "wallet_id": str(record.wallet_id)},
    )
    ctx.defer(
        partial(
            notifications.send_wallet_receipt,
            user_id=record.user_id,
            wallet_id=str(record.wallet_id),
            transaction_id=str(tx.id),
            amount=amount,
            new_balance=tx.balance_after,
            ref_id=result.ref_id,
        )
    )
    return PaymentVerification(
        success=True,
        authority=authority,
        amount=amount,
        status="verified",
        message="Payment verified and wallet credited",
        ref_id=result.ref_id,
        card_pan=result.card_pan,
        new_balance=tx.balance_after,
        transaction_id=str(tx.id),
    )


async def _replay(
    ctx: ServiceContext,
    record: PaymentAuthority,
    *,
    ref_id: str | None = None,
    card_pan: str | None = None,
) -> PaymentVerification:
    """Answer a repeated verification from the ledger entry already written."""
    tx = await ctx.repos.wallets.get_by_reference(record.wallet_id, record.authority)
    if tx is None:
        raise ConflictError(
            "payment verification is already in progress",
            code="VERIFICATION_IN_PROGRESS",
        )
    current = await ctx.repos.payments.get(record.authority) or record
    PAYMENT_VERIFICATIONS.labels(outcome="replayed").inc()
    logger.info(
        "Payment verification replayed authority=%s tx=%s",
        record.authority,
        tx.id,
        extra={"authority": record.authority, "wallet_id": str(record.wallet_id)},
    )
    return PaymentVerification(
        success=True,
        authority=record.authority,
        amount=record.amount,
        status="verified",
        message="Payment already verified",
        ref_id=current.ref_id or ref_id,
        card_pan=current.card_pan or card_pan,
        new_balance=tx.balance_after,
        transaction_id=str(tx.id),
    )


def _settled(record: PaymentAuthority, status: str) -> PaymentVerification:
    """Result for an authority that already ended cancelled or failed."""
    if status == "cancelled":
        message, error_code = "Payment was cancelled by the user", "PAYMENT_CANCELLED"
    else:
        message, error_code = "Payment could not be verified", "VERIFICATION_FAILED"
    return PaymentVerification(
        success=False,
        authority=record.authority,
        amount=record.amount,
        status=status,
        message=message,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------


def _build_gateway() -> PaymentGateway:
    if SETTINGS.zarinpal_merchant_id:
        return ZarinPalClient(
            SETTINGS.zarinpal_merchant_id,
            callback_url=SETTINGS.payment_callback_url,
            sandbox=SETTINGS.zarinpal_sandbox,
            timeout=SETTINGS.gateway_timeout_seconds,
            max_attempts=SETTINGS.gateway_max_attempts,
        )
    return InMemoryPaymentGateway()


payment_gateway: PaymentGateway = _build_gateway()
