"""Wallet endpoints.

The caller's own wallet lives under ``/v1/wallet``; it is created empty
on first access.  Ledger entries for other users, refunds, audits and
status changes are under ``/v1/wallet/admin`` and need the ``admin``
platform role.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_context, require_role
from app.models.wallet import Wallet, WalletTransaction
from app.services import wallet_service
from app.services.context import ServiceContext

router = APIRouter(prefix="/v1/wallet", tags=["wallet"])


# --- Pydantic schemas ---


class WalletOut(BaseModel):
    id: str
    user_id: str
    balance: int
    currency: str
    status: str
    last_transaction_at: int | None

    @classmethod
    def from_wallet(cls, w: Wallet) -> WalletOut:
        return cls(
            id=str(w.id),
            user_id=w.user_id,
            balance=w.balance,
            currency=w.currency,
            status=w.status,
            last_transaction_at=w.last_transaction_at,
        )


class TransactionOut(BaseModel):
    id: str
    wallet_id: str
    type: str
    amount: int
    balance_before: int
    balance_after: int
    sequence: int
    status: str
    reference_id: str | None
    description: str | None
    payment_method: str | None
    created_at: int

    @classmethod
    def from_tx(cls, t: WalletTransaction) -> TransactionOut:
        return cls(
            id=str(t.id),
            wallet_id=str(t.wallet_id),
            type=t.type,
            amount=t.amount,
            balance_before=t.balance_before,
            balance_after=t.balance_after,
            sequence=t.sequence,
            status=t.status,
            reference_id=t.reference_id,
            description=t.description,
            payment_method=t.payment_method,
            created_at=t.created_at,
        )


class TransactionPageOut(BaseModel):
    items: list[TransactionOut]
    total: int
    page: int
    limit: int
    pages: int


class WalletStatsOut(BaseModel):
    wallet_id: str
    balance: int
    currency: str
    status: str
    total_credits: int
    credit_count: int
    total_debits: int
    debit_count: int
    transaction_count: int
    recent_transactions: list[TransactionOut]


class DebitIn(BaseModel):
    amount: int = Field(gt=0)
    reference_id: str | None = None
    description: str | None = None


class AdminTransactionIn(BaseModel):
    type: str
    amount: int = Field(gt=0)
    reference_id: str | None = None
    description: str | None = None
    payment_method: str | None = None


class RefundIn(BaseModel):
    transaction_id: UUID
    amount: int | None = Field(default=None, gt=0)
    reason: str | None = None


class StatusIn(BaseModel):
    status: str


class AuditOut(BaseModel):
    wallet_id: str
    recorded_balance: int
    calculated_balance: int
    discrepancy: int
    last_balance_after: int
    transaction_count: int
    chain_breaks: list[int]
    is_consistent: bool


# --- Own wallet ---


@router.get("", response_model=WalletOut)
async def get_my_wallet(
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> WalletOut:
    return WalletOut.from_wallet(await wallet_service.get_or_create_wallet(ctx))


@router.get("/transactions", response_model=TransactionPageOut)
async def list_my_transactions(
    ctx: Annotated[ServiceContext, Depends(get_context)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=wallet_service.MAX_PAGE_SIZE)] = 20,
    type: str | None = None,
    tx_status: Annotated[str | None, Query(alias="status")] = None,
) -> TransactionPageOut:
    wallet = await wallet_service.get_or_create_wallet(ctx)
    result = await wallet_service.list_transactions(
        ctx, wallet.id, page=page, limit=limit, type=type, status=tx_status
    )
    return TransactionPageOut(
        items=[TransactionOut.from_tx(t) for t in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.get("/stats", response_model=WalletStatsOut)
async def get_my_stats(
    ctx: Annotated[ServiceContext, Depends(get_context)],
    recent: Annotated[int, Query(ge=0, le=50)] = 5,
) -> WalletStatsOut:
    wallet = await wallet_service.get_or_create_wallet(ctx)
    stats = await wallet_service.get_stats(ctx, wallet.id, recent=recent)
    return WalletStatsOut(
        wallet_id=str(stats.wallet_id),
        balance=stats.balance,
        currency=stats.currency,
        status=stats.status,
        total_credits=stats.total_credits,
        credit_count=stats.credit_count,
        total_debits=stats.total_debits,
        debit_count=stats.debit_count,
        transaction_count=stats.transaction_count,
        recent_transactions=[TransactionOut.from_tx(t) for t in stats.recent_transactions],
    )


async def _debit(ctx: ServiceContext, type: str, body: DebitIn) -> TransactionOut:
    wallet = await wallet_service.get_or_create_wallet(ctx)
    tx = await wallet_service.apply_transaction(
        ctx,
        wallet.id,
        type,
        body.amount,
        reference_id=body.reference_id,
        description=body.description,
        payment_method="wallet",
    )
    return TransactionOut.from_tx(tx)


@router.post(
    "/withdraw", response_model=TransactionOut, status_code=status.HTTP_201_CREATED
)
async def withdraw(
    body: DebitIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> TransactionOut:
    return await _debit(ctx, "withdrawal", body)


@router.post(
    "/purchase", response_model=TransactionOut, status_code=status.HTTP_201_CREATED
)
async def purchase(
    body: DebitIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> TransactionOut:
    return await _debit(ctx, "purchase", body)


# --- Admin ---


@router.post(
    "/admin/{user_id}/transactions",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_role("admin"))],
)
async def admin_apply_transaction(
    user_id: str,
    body: AdminTransactionIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> TransactionOut:
    wallet = await wallet_service.get_or_create_wallet(ctx, user_id)
    tx = await wallet_service.apply_transaction(
        ctx,
        wallet.id,
        body.type,
        body.amount,
        reference_id=body.reference_id,
        description=body.description,
        payment_method=body.payment_method or "admin",
    )
    return TransactionOut.from_tx(tx)


@router.post(
    "/admin/refund",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_role("admin"))],
)
async def admin_refund(
    body: RefundIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> TransactionOut:
    tx = await wallet_service.refund(
        ctx, body.transaction_id, amount=body.amount, reason=body.reason
    )
    return TransactionOut.from_tx(tx)


@router.get(
    "/admin/{user_id}/audit",
    response_model=AuditOut,
    dependencies=[Depends(require_role("admin"))],
)
async def admin_audit(
    user_id: str,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> AuditOut:
    wallet = await wallet_service.get_or_create_wallet(ctx, user_id)
    result = await wallet_service.audit(ctx, wallet.id)
    return AuditOut(
        wallet_id=str(result.wallet_id),
        recorded_balance=result.recorded_balance,
        calculated_balance=result.calculated_balance,
        discrepancy=result.discrepancy,
        last_balance_after=result.last_balance_after,
        transaction_count=result.transaction_count,
        chain_breaks=result.chain_breaks,
        is_consistent=result.is_consistent,
    )


@router.put(
    "/admin/{user_id}/status",
    response_model=WalletOut,
    dependencies=[Depends(require_role("admin"))],
)
async def admin_set_status(
    user_id: str,
    body: StatusIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> WalletOut:
    wallet = await wallet_service.get_or_create_wallet(ctx, user_id)
    return WalletOut.from_wallet(await wallet_service.set_status(ctx, wallet.id, body.status))
