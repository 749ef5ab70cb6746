from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

CREDIT_TYPES = frozenset({"deposit", "refund", "bonus", "transfer_in"})
DEBIT_TYPES = frozenset({"withdrawal", "purchase", "penalty", "transfer_out"})
TRANSACTION_TYPES = CREDIT_TYPES | DEBIT_TYPES

TRANSACTION_STATUSES = ("pending", "completed", "failed", "cancelled")
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})

WALLET_STATUSES = ("active", "suspended", "blocked")


def signed_amount(type: str, amount: int) -> int:
    """Effect of a transaction on the balance: +amount for credits, -amount for debits."""
    return amount if type in CREDIT_TYPES else -amount


@dataclass(frozen=True, slots=True)
class Wallet:
    id: UUID
    user_id: str
    balance: int = 0
    currency: str = "IRR"
    status: str = "active"  # active|suspended|blocked
    version: int = 0  # bumped on every balance change; CAS key
    last_transaction_at: int | None = None
    created_at: int = 0

    @staticmethod
    def new(*, user_id: str, now: int) -> Wallet:
        return Wallet(id=uuid4(), user_id=user_id, created_at=now)


@dataclass(frozen=True, slots=True)
class WalletTransaction:
    """One ledger entry.  Immutable once completed.

    ``sequence`` is the wallet version produced by this entry, so the
    entries of one wallet form a gapless chain 1, 2, 3, ...
    """

    id: UUID
    wallet_id: UUID
    type: str
    amount: int
    balance_before: int
    balance_after: int
    sequence: int
    created_at: int
    status: str = "completed"
    reference_id: str | None = None
    description: str | None = None
    payment_method: str | None = None

    @property
    def is_credit(self) -> bool:
        return self.type in CREDIT_TYPES

    @staticmethod
    def new(
        *,
        wallet: Wallet,
        type: str,
        amount: int,
        now: int,
        reference_id: str | None = None,
        description: str | None = None,
        payment_method: str | None = None,
    ) -> WalletTransaction:
        return WalletTransaction(
            id=uuid4(),
            wallet_id=wallet.id,
            type=type,
            amount=amount,
            balance_before=wallet.balance,
            balance_after=wallet.balance + signed_amount(type, amount),
            sequence=wallet.version + 1,
            created_at=now,
            reference_id=reference_id,
            description=description,
            payment_method=payment_method,
        )
