"""PostgreSQL implementation of GroupRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import GroupMemberRow, GroupRow
from app.models.group import Group, GroupMember
from app.repos.exceptions import CapacityExceededError, DuplicateKeyError
from app.services.discount_service import TIERS


class PgGroupRepo:
    """Satisfies the GroupRepo Protocol using PostgreSQL via SQLAlchemy.

    Member-count changes are conditional UPDATEs run inside a savepoint
    together with the membership write, so a full group rejects the
    join without leaving a half-written membership behind.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, group_id: UUID) -> Group | None:
        stmt = (
            select(GroupRow)
            .where(GroupRow.id == group_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_group(row)

    async def get_by_code(self, group_code: str) -> Group | None:
        stmt = select(GroupRow).where(GroupRow.group_code == group_code)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_group(row)

    async def create(self, group: Group, leader: GroupMember) -> None:
        try:
            async with self._session.begin_nested():
                self._session.add(_group_to_row(group))
                await self._session.flush()
                self._session.add(_member_to_row(leader))
                await self._session.flush()
        except IntegrityError:
            raise DuplicateKeyError("group_code already exists") from None

    async def get_member(self, group_id: UUID, user_id: str) -> GroupMember | None:
        row = await self._member_row(group_id, user_id)
        return None if row is None else _row_to_member(row)

    async def list_members(
        self, group_id: UUID, status: str | None = None
    ) -> list[GroupMember]:
        stmt = (
            select(GroupMemberRow)
            .where(GroupMemberRow.group_id == group_id)
            .order_by(GroupMemberRow.join_date)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(GroupMemberRow.status == status)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_member(r) for r in rows]

    async def add_member(self, member: GroupMember, now: int) -> GroupMember:
        try:
            async with self._session.begin_nested():
                if member.is_active:
                    await self._take_seat(member.group_id, now)

                existing = await self._member_row(member.group_id, member.user_id)
                if existing is None:
                    self._session.add(_member_to_row(member))
                    await self._session.flush()
                    return member
                if existing.status in ("Active", "Pending"):
                    raise DuplicateKeyError("membership already exists")

                existing.status = member.status
                existing.role = member.role
                existing.can_approve_members = member.can_approve_members
                existing.join_date = member.join_date
                existing.removed_date = None
                await self._session.flush()
                return _row_to_member(existing)
        except IntegrityError:
            raise DuplicateKeyError("membership already exists") from None

    async def set_member_status(
        self, group_id: UUID, user_id: str, status: str, now: int
    ) -> GroupMember | None:
        async with self._session.begin_nested():
            row = await self._member_row(group_id, user_id)
            if row is None:
                return None

            was_active = row.status == "Active"
            if status == "Active" and not was_active:
                await self._take_seat(group_id, now)
            elif was_active and status != "Active":
                await self._session.execute(
                    update(GroupRow)
                    .where(GroupRow.id == group_id)
                    .values(_count_values(-1, now))
                )

            row.status = status
            if status == "Removed":
                row.removed_date = now
            await self._session.flush()
            return _row_to_member(row)

    async def record_enrollment(
        self,
        group_id: UUID,
        user_id: str,
        savings: int,
        discount_percentage: int,
        now: int,
    ) -> None:
        await self._session.execute(
            update(GroupMemberRow)
            .where(
                GroupMemberRow.group_id == group_id,
                GroupMemberRow.user_id == user_id,
            )
            .values(
                enrollments_count=GroupMemberRow.enrollments_count + 1,
                total_savings=GroupMemberRow.total_savings + savings,
            )
        )
        await self._session.execute(
            update(GroupRow)
            .where(GroupRow.id == group_id)
            .values(
                total_enrollments=GroupRow.total_enrollments + 1,
                total_savings=GroupRow.total_savings + savings,
                current_discount_percentage=discount_percentage,
                updated_at=now,
            )
        )

    async def _take_seat(self, group_id: UUID, now: int) -> None:
        result = await self._session.execute(
            update(GroupRow)
            .where(
                GroupRow.id == group_id,
                GroupRow.current_member_count < GroupRow.max_members,
            )
            .values(_count_values(1, now))
        )
        if result.rowcount == 0:
            raise CapacityExceededError("group is full")

    async def _member_row(self, group_id: UUID, user_id: str) -> GroupMemberRow | None:
        stmt = (
            select(GroupMemberRow)
            .where(
                GroupMemberRow.group_id == group_id,
                GroupMemberRow.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()


def _count_values(delta: int, now: int) -> dict:
    """SET clause moving the member count and restamping the tier discount.

    SET expressions see the old row, so the tier is computed from the
    new count expression rather than the column.
    """
    count = GroupRow.current_member_count + delta
    return {
        "current_member_count": count,
        "current_discount_percentage": case(
            *[(count >= tier.min_members, tier.percentage) for tier in TIERS],
            else_=0,
        ),
        "updated_at": now,
    }


def _group_to_row(group: Group) -> GroupRow:
    return GroupRow(
        id=group.id,
        name=group.name,
        description=group.description,
        group_code=group.group_code,
        type=group.type,
        status=group.status,
        leader_id=group.leader_id,
        max_members=group.max_members,
        current_member_count=group.current_member_count,
        company_name=group.company_name,
        centralized_billing=group.centralized_billing,
        auto_approve_members=group.auto_approve_members,
        current_discount_percentage=group.current_discount_percentage,
        total_enrollments=group.total_enrollments,
        total_savings=group.total_savings,
        created_at=group.created_at,
        updated_at=group.updated_at,
    )


def _row_to_group(row: GroupRow) -> Group:
    return Group(
        id=row.id,
        name=row.name,
        description=row.description or "",
        group_code=row.group_code,
        type=row.type,
        status=row.status,
        leader_id=row.leader_id,
        max_members=row.max_members,
        current_member_count=row.current_member_count,
        company_name=row.company_name,
        centralized_billing=row.centralized_billing,
        auto_approve_members=row.auto_approve_members,
        current_discount_percentage=row.current_discount_percentage,
        total_enrollments=row.total_enrollments,
        total_savings=row.total_savings,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _member_to_row(member: GroupMember) -> GroupMemberRow:
    return GroupMemberRow(
        id=member.id,
        group_id=member.group_id,
        user_id=member.user_id,
        status=member.status,
        role=member.role,
        can_approve_members=member.can_approve_members,
        join_date=member.join_date,
        removed_date=member.removed_date,
        enrollments_count=member.enrollments_count,
        completed_courses=member.completed_courses,
        total_savings=member.total_savings,
    )


def _row_to_member(row: GroupMemberRow) -> GroupMember:
    return GroupMember(
        id=row.id,
        group_id=row.group_id,
        user_id=row.user_id,
        status=row.status,
        role=row.role,
        can_approve_members=row.can_approve_members,
        join_date=row.join_date,
        removed_date=row.removed_date,
        enrollments_count=row.enrollments_count,
        completed_courses=row.completed_courses,
        total_savings=row.total_savings,
    )
