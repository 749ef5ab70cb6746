from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

PAYMENT_STATUSES = ("pending", "verified", "cancelled", "failed")


@dataclass(frozen=True, slots=True)
class PaymentAuthority:
    """Maps one gateway authority token to the wallet it will credit.

    ``consumed`` flips false -> true exactly once, before the wallet is
    credited; that claim is what keeps a duplicated callback from
    crediting twice.
    """

    authority: str
    wallet_id: UUID
    user_id: str
    amount: int
    created_at: int
    description: str = ""
    status: str = "pending"  # pending|verified|cancelled|failed
    consumed: bool = False
    ref_id: str | None = None
    card_pan: str | None = None
    wallet_transaction_id: UUID | None = None
    verified_at: int | None = None
