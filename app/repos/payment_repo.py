from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.payment import PaymentAuthority
from app.repos.exceptions import DuplicateKeyError


class PaymentRepo(Protocol):
    async def add(self, record: PaymentAuthority) -> None: ...
    async def get(self, authority: str) -> PaymentAuthority | None: ...

    async def claim(self, authority: str) -> bool:
        """Flip ``consumed`` false -> true.  True only for the single winner."""
        ...

    async def release(self, authority: str) -> None: ...
    async def mark_verified(
        self,
        authority: str,
        *,
        ref_id: str,
        card_pan: str | None,
        wallet_transaction_id: UUID,
        now: int,
    ) -> PaymentAuthority | None: ...

    async def mark_status(self, authority: str, status: str) -> bool:
        """Move a pending record to ``status``; settled records never move."""
        ...


class InMemoryPaymentRepo:
    def __init__(self) -> None:
        self._store: dict[str, PaymentAuthority] = {}

    def clear(self) -> None:
        self._store.clear()

    async def add(self, record: PaymentAuthority) -> None:
        if record.authority in self._store:
            raise DuplicateKeyError("authority already recorded")
        self._store[record.authority] = record

    async def get(self, authority: str) -> PaymentAuthority | None:
        return self._store.get(authority)

    async def claim(self, authority: str) -> bool:
        record = self._store.get(authority)
        if record is None or record.consumed:
            return False
        self._store[authority] = replace(record, consumed=True)
        return True

    async def release(self, authority: str) -> None:
        record = self._store.get(authority)
        if record is not None and record.status != "verified":
            self._store[authority] = replace(record, consumed=False)

    async def mark_verified(
        self,
        authority: str,
        *,
        ref_id: str,
        card_pan: str | None,
        wallet_transaction_id: UUID,
        now: int,
    ) -> PaymentAuthority | None:
        record = self._store.get(authority)
        if record is None:
            return None
        updated = replace(
            record,
            status="verified",
            consumed=True,
            ref_id=ref_id,
            card_pan=card_pan,
            wallet_transaction_id=wallet_transaction_id,
            verified_at=now,
        )
        self._store[authority] = updated
        return updated

    async def mark_status(self, authority: str, status: str) -> bool:
        record = self._store.get(authority)
        if record is None or record.status != "pending":
            return False
        self._store[authority] = replace(record, status=status)
        return True
