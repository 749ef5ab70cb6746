from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.group import Group, GroupMember
from app.repos.exceptions import CapacityExceededError, DuplicateKeyError
from app.services.discount_service import resolve_tier


class GroupRepo(Protocol):
    async def get(self, group_id: UUID) -> Group | None: ...
    async def get_by_code(self, group_code: str) -> Group | None: ...
    async def create(self, group: Group, leader: GroupMember) -> None: ...
    async def get_member(self, group_id: UUID, user_id: str) -> GroupMember | None: ...
    async def list_members(
        self, group_id: UUID, status: str | None = None
    ) -> list[GroupMember]: ...
    async def add_member(self, member: GroupMember, now: int) -> GroupMember: ...
    async def set_member_status(
        self, group_id: UUID, user_id: str, status: str, now: int
    ) -> GroupMember | None: ...
    async def record_enrollment(
        self,
        group_id: UUID,
        user_id: str,
        savings: int,
        discount_percentage: int,
        now: int,
    ) -> None: ...


class InMemoryGroupRepo:
    """Dict-backed groups and memberships.

    No method awaits anything, so each call runs to completion before
    another coroutine can observe the store.
    """

    def __init__(self) -> None:
        self._groups: dict[UUID, Group] = {}
        self._members: dict[tuple[UUID, str], GroupMember] = {}

    def clear(self) -> None:
        self._groups.clear()
        self._members.clear()

    async def get(self, group_id: UUID) -> Group | None:
        return self._groups.get(group_id)

    async def get_by_code(self, group_code: str) -> Group | None:
        for group in self._groups.values():
            if group.group_code == group_code:
                return group
        return None

    async def create(self, group: Group, leader: GroupMember) -> None:
        if any(g.group_code == group.group_code for g in self._groups.values()):
            raise DuplicateKeyError("group_code already exists")
        self._groups[group.id] = group
        self._members[(group.id, leader.user_id)] = leader

    async def get_member(self, group_id: UUID, user_id: str) -> GroupMember | None:
        return self._members.get((group_id, user_id))

    async def list_members(
        self, group_id: UUID, status: str | None = None
    ) -> list[GroupMember]:
        members = [
            m
            for (gid, _), m in self._members.items()
            if gid == group_id and (status is None or m.status == status)
        ]
        return sorted(members, key=lambda m: m.join_date)

    async def add_member(self, member: GroupMember, now: int) -> GroupMember:
        """Insert a membership, or reactivate a Removed/Suspended one.

        An Active member takes a seat under ``max_members`` in the same step.
        """
        key = (member.group_id, member.user_id)
        existing = self._members.get(key)
        if existing is not None and existing.status in ("Active", "Pending"):
            raise DuplicateKeyError("membership already exists")

        group = self._groups[member.group_id]
        if member.is_active:
            if group.current_member_count >= group.max_members:
                raise CapacityExceededError("group is full")
            self._groups[group.id] = _with_count(group, group.current_member_count + 1, now)

        if existing is not None:
            member = replace(
                existing,
                status=member.status,
                role=member.role,
                can_approve_members=member.can_approve_members,
                join_date=member.join_date,
                removed_date=None,
            )
        self._members[key] = member
        return member

    async def set_member_status(
        self, group_id: UUID, user_id: str, status: str, now: int
    ) -> GroupMember | None:
        key = (group_id, user_id)
        existing = self._members.get(key)
        if existing is None:
            return None

        group = self._groups[group_id]
        delta = int(status == "Active") - int(existing.is_active)
        if delta > 0 and group.current_member_count >= group.max_members:
            raise CapacityExceededError("group is full")
        if delta:
            self._groups[group_id] = _with_count(group, group.current_member_count + delta, now)

        updated = replace(
            existing,
            status=status,
            removed_date=now if status == "Removed" else existing.removed_date,
        )
        self._members[key] = updated
        return updated

    async def record_enrollment(
        self,
        group_id: UUID,
        user_id: str,
        savings: int,
        discount_percentage: int,
        now: int,
    ) -> None:
        key = (group_id, user_id)
        member = self._members.get(key)
        if member is not None:
            self._members[key] = replace(
                member,
                enrollments_count=member.enrollments_count + 1,
                total_savings=member.total_savings + savings,
            )
        group = self._groups.get(group_id)
        if group is not None:
            self._groups[group_id] = replace(
                group,
                total_enrollments=group.total_enrollments + 1,
                total_savings=group.total_savings + savings,
                current_discount_percentage=discount_percentage,
                updated_at=now,
            )


def _with_count(group: Group, count: int, now: int) -> Group:
    """New active member count, with the tier discount restamped for it."""
    return replace(
        group,
        current_member_count=count,
        current_discount_percentage=resolve_tier(count).percentage,
        updated_at=now,
    )
