"""PostgreSQL implementation of WalletRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import WalletRow, WalletTransactionRow
from app.models.wallet import Wallet, WalletTransaction
from app.repos.exceptions import DuplicateKeyError


class PgWalletRepo:
    """Satisfies the WalletRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, wallet_id: UUID) -> Wallet | None:
        stmt = (
            select(WalletRow)
            .where(WalletRow.id == wallet_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_wallet(row)

    async def get_by_user(self, user_id: str) -> Wallet | None:
        stmt = (
            select(WalletRow)
            .where(WalletRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_wallet(row)

    async def add(self, wallet: Wallet) -> None:
        try:
            async with self._session.begin_nested():
                self._session.add(
                    WalletRow(
                        id=wallet.id,
                        user_id=wallet.user_id,
                        balance=wallet.balance,
                        currency=wallet.currency,
                        status=wallet.status,
                        version=wallet.version,
                        last_transaction_at=wallet.last_transaction_at,
                        created_at=wallet.created_at,
                    )
                )
                await self._session.flush()
        except IntegrityError:
            raise DuplicateKeyError("user already has a wallet") from None

    async def set_status(self, wallet_id: UUID, status: str) -> Wallet | None:
        result = await self._session.execute(
            update(WalletRow).where(WalletRow.id == wallet_id).values(status=status)
        )
        if result.rowcount == 0:
            return None
        return await self.get(wallet_id)

    async def append(self, tx: WalletTransaction, expected_version: int) -> bool:
        try:
            async with self._session.begin_nested():
                result = await self._session.execute(
                    update(WalletRow)
                    .where(
                        WalletRow.id == tx.wallet_id,
                        WalletRow.version == expected_version,
                    )
                    .values(
                        balance=tx.balance_after,
                        version=tx.sequence,
                        last_transaction_at=tx.created_at,
                    )
                )
                if result.rowcount == 0:
                    return False
                self._session.add(_tx_to_row(tx))
                await self._session.flush()
                return True
        except IntegrityError:
            raise DuplicateKeyError(
                "reference_id already recorded for this wallet"
            ) from None

    async def get_transaction(self, tx_id: UUID) -> WalletTransaction | None:
        stmt = select(WalletTransactionRow).where(WalletTransactionRow.id == tx_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_tx(row)

    async def get_by_reference(
        self, wallet_id: UUID, reference_id: str
    ) -> WalletTransaction | None:
        stmt = select(WalletTransactionRow).where(
            WalletTransactionRow.wallet_id == wallet_id,
            WalletTransactionRow.reference_id == reference_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_tx(row)

    async def list_transactions(
        self,
        wallet_id: UUID,
        *,
        type: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[WalletTransaction], int]:
        filters = [WalletTransactionRow.wallet_id == wallet_id]
        if type is not None:
            filters.append(WalletTransactionRow.type == type)
        if status is not None:
            filters.append(WalletTransactionRow.status == status)

        total = (
            await self._session.execute(
                select(func.count()).select_from(WalletTransactionRow).where(*filters)
            )
        ).scalar_one()
        stmt = (
            select(WalletTransactionRow)
            .where(*filters)
            .order_by(WalletTransactionRow.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_tx(r) for r in rows], total

    async def list_completed(self, wallet_id: UUID) -> list[WalletTransaction]:
        stmt = (
            select(WalletTransactionRow)
            .where(
                WalletTransactionRow.wallet_id == wallet_id,
                WalletTransactionRow.status == "completed",
            )
            .order_by(WalletTransactionRow.sequence)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_tx(r) for r in rows]


def _row_to_wallet(row: WalletRow) -> Wallet:
    return Wallet(
        id=row.id,
        user_id=row.user_id,
        balance=row.balance,
        currency=row.currency,
        status=row.status,
        version=row.version,
        last_transaction_at=row.last_transaction_at,
        created_at=row.created_at,
    )


def _tx_to_row(tx: WalletTransaction) -> WalletTransactionRow:
    return WalletTransactionRow(
        id=tx.id,
        wallet_id=tx.wallet_id,
        type=tx.type,
        amount=tx.amount,
        balance_before=tx.balance_before,
        balance_after=tx.balance_after,
        sequence=tx.sequence,
        status=tx.status,
        reference_id=tx.reference_id,
        description=tx.description,
        payment_method=tx.payment_method,
        created_at=tx.created_at,
    )


def _row_to_tx(row: WalletTransactionRow) -> WalletTransaction:
    return WalletTransaction(
        id=row.id,
        wallet_id=row.wallet_id,
        type=row.type,
        amount=row.amount,
        balance_before=row.balance_before,
        balance_after=row.balance_after,
        sequence=row.sequence,
        status=row.status,
        reference_id=row.reference_id,
        description=row.description,
        payment_method=row.payment_method,
        created_at=row.created_at,
    )
