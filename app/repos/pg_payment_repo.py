"""PostgreSQL implementation of PaymentRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import PaymentAuthorityRow
from app.models.payment import PaymentAuthority
from app.repos.exceptions import DuplicateKeyError


class PgPaymentRepo:
    """The claim is a single conditional UPDATE; rowcount decides the winner."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, record: PaymentAuthority) -> None:
        try:
            async with self._session.begin_nested():
                self._session.add(
                    PaymentAuthorityRow(
                        authority=record.authority,
                        wallet_id=record.wallet_id,
                        user_id=record.user_id,
                        amount=record.amount,
                        description=record.description,
                        status=record.status,
                        consumed=record.consumed,
                        created_at=record.created_at,
                    )
                )
                await self._session.flush()
        except IntegrityError:
            raise DuplicateKeyError("authority already recorded") from None

    async def get(self, authority: str) -> PaymentAuthority | None:
        stmt = (
            select(PaymentAuthorityRow)
            .where(PaymentAuthorityRow.authority == authority)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_record(row)

    async def claim(self, authority: str) -> bool:
        result = await self._session.execute(
            update(PaymentAuthorityRow)
            .where(
                PaymentAuthorityRow.authority == authority,
                PaymentAuthorityRow.consumed.is_(False),
            )
            .values(consumed=True)
        )
        return result.rowcount == 1

    async def release(self, authority: str) -> None:
        await self._session.execute(
            update(PaymentAuthorityRow)
            .where(
                PaymentAuthorityRow.authority == authority,
                PaymentAuthorityRow.status != "verified",
            )
            .values(consumed=False)
        )

    async def mark_verified(
        self,
        authority: str,
        *,
        ref_id: str,
        card_pan: str | None,
        wallet_transaction_id: UUID,
        now: int,
    ) -> PaymentAuthority | None:
        await self._session.execute(
            update(PaymentAuthorityRow)
            .where(PaymentAuthorityRow.authority == authority)
            .values(
                status="verified",
                consumed=True,
                ref_id=ref_id,
                card_pan=card_pan,
                wallet_transaction_id=wallet_transaction_id,
                verified_at=now,
            )
        )
        return await self.get(authority)

    async def mark_status(self, authority: str, status: str) -> bool:
        result = await self._session.execute(
            update(PaymentAuthorityRow)
            .where(
                PaymentAuthorityRow.authority == authority,
                PaymentAuthorityRow.status == "pending",
            )
            .values(status=status)
        )
        return result.rowcount == 1


def _row_to_record(row: PaymentAuthorityRow) -> PaymentAuthority:
    return PaymentAuthority(
        authority=row.authority,
        wallet_id=row.wallet_id,
        user_id=row.user_id,
        amount=row.amount,
        description=row.description or "",
        status=row.status,
        consumed=row.consumed,
        ref_id=row.ref_id,
        card_pan=row.card_pan,
        wallet_transaction_id=row.wallet_transaction_id,
        created_at=row.created_at,
        verified_at=row.verified_at,
    )
