from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.wallet import Wallet, WalletTransaction
from app.repos.exceptions import DuplicateKeyError


class WalletRepo(Protocol):
    async def get(self, wallet_id: UUID) -> Wallet | None: ...
    async def get_by_user(self, user_id: str) -> Wallet | None: ...
    async def add(self, wallet: Wallet) -> None: ...
    async def set_status(self, wallet_id: UUID, status: str) -> Wallet | None: ...

    async def append(self, tx: WalletTransaction, expected_version: int) -> bool:
        """Write the ledger entry and the new wallet balance as one unit.

        Compare-and-swap on the wallet version: returns False (and writes
        nothing) when another writer got there first.  Raises
        DuplicateKeyError when the wallet already holds ``tx.reference_id``.
        """
        ...

    async def get_transaction(self, tx_id: UUID) -> WalletTransaction | None: ...
    async def get_by_reference(
        self, wallet_id: UUID, reference_id: str
    ) -> WalletTransaction | None: ...
    async def list_transactions(
        self,
        wallet_id: UUID,
        *,
        type: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[WalletTransaction], int]: ...
    async def list_completed(self, wallet_id: UUID) -> list[WalletTransaction]: ...


class InMemoryWalletRepo:
    def __init__(self) -> None:
        self._wallets: dict[UUID, Wallet] = {}
        self._transactions: dict[UUID, WalletTransaction] = {}

    def clear(self) -> None:
        self._wallets.clear()
        self._transactions.clear()

    async def get(self, wallet_id: UUID) -> Wallet | None:
        return self._wallets.get(wallet_id)

    async def get_by_user(self, user_id: str) -> Wallet | None:
        for wallet in self._wallets.values():
            if wallet.user_id == user_id:
                return wallet
        return None

    async def add(self, wallet: Wallet) -> None:
        if any(w.user_id == wallet.user_id for w in self._wallets.values()):
            raise DuplicateKeyError("user already has a wallet")
        self._wallets[wallet.id] = wallet

    async def set_status(self, wallet_id: UUID, status: str) -> Wallet | None:
        wallet = self._wallets.get(wallet_id)
        if wallet is None:
            return None
        updated = replace(wallet, status=status)
        self._wallets[wallet_id] = updated
        return updated

    async def append(self, tx: WalletTransaction, expected_version: int) -> bool:
        if tx.reference_id is not None and any(
            t.wallet_id == tx.wallet_id and t.reference_id == tx.reference_id
            for t in self._transactions.values()
        ):
            raise DuplicateKeyError("reference_id already recorded for this wallet")

        wallet = self._wallets.get(tx.wallet_id)
        if wallet is None or wallet.version != expected_version:
            return False

        self._wallets[wallet.id] = replace(
            wallet,
            balance=tx.balance_after,
            version=tx.sequence,
            last_transaction_at=tx.created_at,
        )
        self._transactions[tx.id] = tx
        return True

    async def get_transaction(self, tx_id: UUID) -> WalletTransaction | None:
        return self._transactions.get(tx_id)

    async def get_by_reference(
        self, wallet_id: UUID, reference_id: str
    ) -> WalletTransaction | None:
        for tx in self._transactions.values():
            if tx.wallet_id == wallet_id and tx.reference_id == reference_id:
                return tx
        return None

    async def list_transactions(
        self,
        wallet_id: UUID,
        *,
        type: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[WalletTransaction], int]:
        matches = [
            t
            for t in self._transactions.values()
            if t.wallet_id == wallet_id
            and (type is None or t.type == type)
            and (status is None or t.status == status)
        ]
        matches.sort(key=lambda t: t.sequence, reverse=True)
        return matches[offset : offset + limit], len(matches)

    async def list_completed(self, wallet_id: UUID) -> list[WalletTransaction]:
        completed = [
            t
            for t in self._transactions.values()
            if t.wallet_id == wallet_id and t.status == "completed"
        ]
        return sorted(completed, key=lambda t: t.sequence)
