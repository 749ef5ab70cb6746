"""Wallet ledger.

Every balance change is an append-only ``WalletTransaction`` row written
together with the wallet's new balance.  The pair is committed through
``WalletRepo.append``, a compare-and-swap on the wallet version: when a
concurrent writer moved the balance first, nothing is written and the
whole step (re-read, re-check, re-append) is retried, up to
WALLET_CAS_MAX_RETRIES times.

Invariants kept by this module:

  - balance == balance_after of the newest completed transaction
  - balance == sum(credits) - sum(debits) over completed transactions
  - tx[n].balance_before == tx[n-1].balance_after
  - a debit never takes the balance below zero

``reference_id`` is the idempotency key.  Re-applying a reference that
already produced a terminal transaction returns that transaction
unchanged; this is how a re-delivered payment callback avoids a second
credit.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from uuid import UUID

from app.core.config import SETTINGS
from app.core.metrics import WALLET_CAS_CONFLICTS, WALLET_TRANSACTIONS
from app.models.wallet import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    TERMINAL_STATUSES,
    TRANSACTION_STATUSES,
    TRANSACTION_TYPES,
    WALLET_STATUSES,
    Wallet,
    WalletTransaction,
    signed_amount,
)
from app.repos.exceptions import DuplicateKeyError
from app.services.cache import cache_service
from app.services.context import ServiceContext, now
from app.services.errors import (
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATS_CACHE_TTL_SECONDS = 60
MAX_PAGE_SIZE = 100
REFUNDABLE_TYPES = ("deposit", "withdrawal", "purchase")


@dataclass(frozen=True, slots=True)
class WalletStats:
    wallet_id: UUID
    balance: int
    currency: str
    status: str
    total_credits: int
    credit_count: int
    total_debits: int
    debit_count: int
    transaction_count: int
    recent_transactions: list[WalletTransaction] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TransactionPage:
    items: list[WalletTransaction]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True, slots=True)
class WalletAudit:
    wallet_id: UUID
    recorded_balance: int
    calculated_balance: int
    discrepancy: int  # recorded - calculated
    last_balance_after: int
    transaction_count: int
    chain_breaks: list[int] = field(default_factory=list)  # offending sequences

    @property
    def is_consistent(self) -> bool:
        return (
            self.discrepancy == 0
            and not self.chain_breaks
            and self.last_balance_after == self.recorded_balance
        )


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------


async def get_wallet(ctx: ServiceContext, wallet_id: UUID) -> Wallet:
    wallet = await ctx.repos.wallets.get(wallet_id)
    if wallet is None:
        raise NotFoundError("wallet not found")
    return wallet


async def get_or_create_wallet(ctx: ServiceContext, user_id: str | None = None) -> Wallet:
    """Return the user's wallet, creating an empty one on first use."""
    user_id = user_id or ctx.user_id
    wallet = await ctx.repos.wallets.get_by_user(user_id)
    if wallet is not None:
        return wallet

    wallet = Wallet.new(user_id=user_id, now=now())
    try:
        await ctx.repos.wallets.add(wallet)
    except DuplicateKeyError:
        # Lost a creation race; the other request's wallet is the wallet.
        existing = await ctx.repos.wallets.get_by_user(user_id)
        if existing is None:
            raise ConflictError("wallet creation failed, please retry") from None
        return existing

    logger.info(
        "Wallet created wallet=%s user=%s",
        wallet.id,
        user_id,
        extra={"wallet_id": str(wallet.id)},
    )
    return wallet


async def set_status(ctx: ServiceContext, wallet_id: UUID, status: str) -> Wallet:
    if not ctx.is_admin:
        raise PermissionDeniedError("only platform admins can change wallet status")
    if status not in WALLET_STATUSES:
        raise ValidationError(f"status must be one of {'|'.join(WALLET_STATUSES)}")
    wallet = await ctx.repos.wallets.set_status(wallet_id, status)
    if wallet is None:
        raise NotFoundError("wallet not found")
    await _invalidate_stats(wallet_id)
    logger.info(
        "Wallet status changed wallet=%s status=%s by=%s",
        wallet_id,
        status,
        ctx.user_id,
        extra={"wallet_id": str(wallet_id)},
    )
    return wallet


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


def _replay(
    existing: WalletTransaction | None, type: str, amount: int
) -> WalletTransaction:
    if existing is None:
        raise ConflictError("transaction with this reference could not be read back")
    if existing.type != type or existing.amount != amount:
        raise ConflictError(
            "reference_id was already used for a different transaction",
            code="REFERENCE_MISMATCH",
        )
    if existing.status not in TERMINAL_STATUSES:
        raise ConflictError(
            "transaction with this reference is still in progress",
            code="TRANSACTION_IN_PROGRESS",
        )
    WALLET_TRANSACTIONS.labels(type=type, result="replayed").inc()
    logger.info(
        "Ledger replay wallet=%s reference=%s tx=%s",
        existing.wallet_id,
        existing.reference_id,
        existing.id,
        extra={"wallet_id": str(existing.wallet_id)},
    )
    return existing


async def apply_transaction(
    ctx: ServiceContext,
    wallet_id: UUID,
    type: str,
    amount: int,
    *,
    reference_id: str | None = None,
    description: str | None = None,
    payment_method: str | None = None,
) -> WalletTransaction:
    """Append one ledger entry and move the balance with it.

    Raises:
        ValidationError: unknown type or non-positive amount.
        NotFoundError: wallet does not exist.
        ConflictError: wallet not active, reference mismatch, or the CAS
            retry budget ran out.
        InsufficientBalanceError: a debit larger than the balance.
    """
    if type not in TRANSACTION_TYPES:
        raise ValidationError(f"unknown transaction type {type!r}")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer")

    repo = ctx.repos.wallets
    if reference_id is not None:
        existing = await repo.get_by_reference(wallet_id, reference_id)
        if existing is not None:
            return _replay(existing, type, amount)

    for _ in range(SETTINGS.wallet_cas_max_retries):
        wallet = await get_wallet(ctx, wallet_id)
        if wallet.status != "active":
            WALLET_TRANSACTIONS.labels(type=type, result="rejected").inc()
            raise ConflictError(f"wallet is {wallet.status}", code="WALLET_INACTIVE")
        if type in DEBIT_TYPES and amount > wallet.balance:
            WALLET_TRANSACTIONS.labels(type=type, result="rejected").inc()
            logger.warning(
                "Insufficient balance wallet=%s type=%s amount=%d balance=%d",
                wallet_id,
                type,
                amount,
                wallet.balance,
                extra={"wallet_id": str(wallet_id)},
            )
            raise InsufficientBalanceError(
                f"insufficient balance: requested {amount}, available {wallet.balance}"
            )

        tx = WalletTransaction.new(
            wallet=wallet,
            type=type,
            amount=amount,
            now=now(),
            reference_id=reference_id,
            description=description,
            payment_method=payment_method,
        )
        try:
            applied = await repo.append(tx, expected_version=wallet.version)
        except DuplicateKeyError:
            # A concurrent request recorded the same reference first.
            winner = await repo.get_by_reference(wallet_id, reference_id or "")
            return _replay(winner, type, amount)

        if applied:
            WALLET_TRANSACTIONS.labels(type=type, result="applied").inc()
            await _invalidate_stats(wallet_id)
            # and again once the write is committed
            ctx.defer(lambda: _invalidate_stats(wallet_id))
            logger.info(
                "Ledger entry wallet=%s type=%s amount=%d balance=%d->%d seq=%d ref=%s",
                wallet_id,
                type,
                amount,
                tx.balance_before,
                tx.balance_after,
                tx.sequence,
                reference_id,
                extra={"wallet_id": str(wallet_id)},
            )
            return tx

        WALLET_CAS_CONFLICTS.inc()
        logger.debug("CAS conflict wallet=%s version=%d", wallet_id, wallet.version)

    WALLET_TRANSACTIONS.labels(type=type, result="rejected").inc()
    logger.warning(
        "CAS retries exhausted wallet=%s type=%s amount=%d",
        wallet_id,
        type,
        amount,
        extra={"wallet_id": str(wallet_id)},
    )
    raise ConflictError(
        "wallet is being updated concurrently, please retry", code="CAS_EXHAUSTED"
    )


async def refund(
    ctx: ServiceContext,
    transaction_id: UUID,
    *,
    amount: int | None = None,
    reason: str | None = None,
) -> WalletTransaction:
    """Reverse a completed deposit, withdrawal or purchase.

    Deposits are reversed with a withdrawal, debits with a ``refund``
    credit.  The reference ``refund_<id>`` makes a repeated refund of the
    same transaction a replay instead of a second reversal.
    """
    if not ctx.is_admin:
        raise PermissionDeniedError("only platform admins can issue refunds")

    original = await ctx.repos.wallets.get_transaction(transaction_id)
    if original is None:
        raise NotFoundError("transaction not found")
    if original.type not in REFUNDABLE_TYPES:
        raise ValidationError(f"cannot refund a {original.type} transaction")
    if original.status != "completed":
        raise ValidationError("only completed transactions can be refunded")

    refund_amount = original.amount if amount is None else amount
    if refund_amount <= 0 or refund_amount > original.amount:
        raise ValidationError("refund amount must be between 1 and the original amount")

    reversal_type = "withdrawal" if original.type == "deposit" else "refund"
    try:
        tx = await apply_transaction(
            ctx,
            original.wallet_id,
            reversal_type,
            refund_amount,
            reference_id=f"refund_{original.id}",
            description=f"Refund for transaction {original.id}: {reason or 'No reason provided'}",
            payment_method="refund",
        )
    except ConflictError as exc:
        if exc.code != "REFERENCE_MISMATCH":
            raise
        # One refund per transaction; a repeat with another amount lands here.
        raise ConflictError(
            f"transaction {original.id} was already refunded",
            code="ALREADY_REFUNDED",
        ) from None
    logger.info(
        "Refund issued tx=%s original=%s amount=%d by=%s",
        tx.id,
        original.id,
        refund_amount,
        ctx.user_id,
        extra={"wallet_id": str(original.wallet_id)},
    )
    return tx


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_transactions(
    ctx: ServiceContext,
    wallet_id: UUID,
    *,
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
    status: str | None = None,
) -> TransactionPage:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if type is not None and type not in TRANSACTION_TYPES:
        raise ValidationError(f"unknown transaction type {type!r}")
    if status is not None and status not in TRANSACTION_STATUSES:
        raise ValidationError(f"unknown transaction status {status!r}")

    items, total = await ctx.repos.wallets.list_transactions(
        wallet_id,
        type=type,
        status=status,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return TransactionPage(items=items, total=total, page=page, limit=limit)


async def get_stats(
    ctx: ServiceContext, wallet_id: UUID, *, recent: int = 5
) -> WalletStats:
    """Credit/debit totals plus the newest ``recent`` transactions.

    Read-through cached; every applied transaction invalidates the entry.
    """
    cache_key = f"wallet_stats:{wallet_id}:{recent}"
    cached = await cache_service.get(cache_key)
    if cached is not None:
        return _stats_from_json(cached)

    wallet = await get_wallet(ctx, wallet_id)
    completed = await ctx.repos.wallets.list_completed(wallet_id)
    credits = [t for t in completed if t.type in CREDIT_TYPES]
    debits = [t for t in completed if t.type in DEBIT_TYPES]

    stats = WalletStats(
        wallet_id=wallet.id,
        balance=wallet.balance,
        currency=wallet.currency,
        status=wallet.status,
        total_credits=sum(t.amount for t in credits),
        credit_count=len(credits),
        total_debits=sum(t.amount for t in debits),
        debit_count=len(debits),
        transaction_count=len(completed),
        recent_transactions=list(reversed(completed[-recent:])) if recent > 0 else [],
    )
    await cache_service.set(cache_key, _stats_to_json(stats), STATS_CACHE_TTL_SECONDS)
    return stats


async def audit(ctx: ServiceContext, wallet_id: UUID) -> WalletAudit:
    """Recompute the balance from the ledger and walk the balance chain."""
    if not ctx.is_admin:
        raise PermissionDeniedError("only platform admins can audit wallets")

    wallet = await get_wallet(ctx, wallet_id)
    completed = await ctx.repos.wallets.list_completed(wallet_id)

    calculated = 0
    previous_after = 0
    breaks: list[int] = []
    for tx in completed:
        calculated += signed_amount(tx.type, tx.amount)
        if (
            tx.balance_before != previous_after
            or tx.balance_after != tx.balance_before + signed_amount(tx.type, tx.amount)
        ):
            breaks.append(tx.sequence)
        previous_after = tx.balance_after

    result = WalletAudit(
        wallet_id=wallet.id,
        recorded_balance=wallet.balance,
        calculated_balance=calculated,
        discrepancy=wallet.balance - calculated,
        last_balance_after=previous_after,
        transaction_count=len(completed),
        chain_breaks=breaks,
    )
    log = logger.info if result.is_consistent else logger.error
    log(
        "Wallet audit wallet=%s recorded=%d calculated=%d discrepancy=%d breaks=%d",
        wallet.id,
        wallet.balance,
        calculated,
        result.discrepancy,
        len(breaks),
        extra={"wallet_id": str(wallet.id)},
    )
    return result


# ---------------------------------------------------------------------------
# Cache helpers
# ---------------------------------------------------------------------------


async def _invalidate_stats(wallet_id: UUID) -> None:
    await cache_service.delete_pattern(f"wallet_stats:{wallet_id}:*")


def _tx_to_dict(tx: WalletTransaction) -> dict:
    return {
        "id": str(tx.id),
        "wallet_id": str(tx.wallet_id),
        "type": tx.type,
        "amount": tx.amount,
        "balance_before": tx.balance_before,
        "balance_after": tx.balance_after,
        "sequence": tx.sequence,
        "created_at": tx.created_at,
        "status": tx.status,
        "reference_id": tx.reference_id,
        "description": tx.description,
        "payment_method": tx.payment_method,
    }


def _tx_from_dict(data: dict) -> WalletTransaction:
    return WalletTransaction(
        **{
            **data,
            "id": UUID(data["id"]),
            "wallet_id": UUID(data["wallet_id"]),
        }
    )


def _stats_to_json(stats: WalletStats) -> str:
    return json.dumps(
        {
            "wallet_id": str(stats.wallet_id),
            "balance": stats.balance,
            "currency": stats.currency,
            "status": stats.status,
            "total_credits": stats.total_credits,
            "credit_count": stats.credit_count,
            "total_debits": stats.total_debits,
            "debit_count": stats.debit_count,
            "transaction_count": stats.transaction_count,
            "recent_transactions": [_tx_to_dict(t) for t in stats.recent_transactions],
        }
    )


def _stats_from_json(raw: str) -> WalletStats:
    data = json.loads(raw)
    return WalletStats(
        **{
            **data,
            "wallet_id": UUID(data["wallet_id"]),
            "recent_transactions": [
                _tx_from_dict(t) for t in data["recent_transactions"]
            ],
        }
    )
