"""Groups and their memberships.

The creator of a group becomes its leader and first Admin member.  The
leader, Admin members and members holding ``can_approve_members`` may
add, approve and remove members; platform admins may do anything.
``current_member_count`` tracks Active members only and is moved by
the repository in the same step as the membership change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from app.models.group import GROUP_TYPES, MEMBER_ROLES, Group, GroupMember
from app.repos.exceptions import CapacityExceededError, DuplicateKeyError
from app.services import discount_service
from app.services.context import ServiceContext, now
from app.services.discount_service import DiscountTier, NextTier
from app.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 10
_STATS_ROLES = ("Admin", "CoLeader")


@dataclass(frozen=True, slots=True)
class MemberSummary:
    user_id: str
    role: str
    status: str
    enrollments_count: int
    completed_courses: int
    total_savings: int


@dataclass(frozen=True, slots=True)
class GroupStats:
    group: Group
    active_members: int
    pending_members: int
    tier: DiscountTier
    next_tier: NextTier | None
    total_enrollments: int
    completed_enrollments: int
    completion_rate: float
    total_group_savings: int
    average_savings_per_member: int
    top_members: list[MemberSummary]


async def get_group(ctx: ServiceContext, group_id: UUID) -> Group:
    group = await ctx.repos.groups.get(group_id)
    if group is None:
        raise NotFoundError("group not found")
    return group


def _is_manager(ctx: ServiceContext, group: Group, member: GroupMember | None) -> bool:
    if ctx.is_admin or group.leader_id == ctx.user_id:
        return True
    if member is None or not member.is_active:
        return False
    return member.role == "Admin" or member.can_approve_members


async def _require_manager(ctx: ServiceContext, group: Group) -> None:
    caller = await ctx.repos.groups.get_member(group.id, ctx.user_id)
    if not _is_manager(ctx, group, caller):
        logger.warning(
            "Group management denied user=%s group=%s",
            ctx.user_id,
            group.id,
            extra={"group_id": str(group.id)},
        )
        raise PermissionDeniedError("you are not allowed to manage this group")


async def create_group(
    ctx: ServiceContext,
    *,
    name: str,
    type: str = "Regular",
    description: str = "",
    max_members: int = 50,
    company_name: str | None = None,
    centralized_billing: bool = False,
    auto_approve_members: bool = True,
) -> Group:
    name = name.strip()
    if not name:
        raise ValidationError("name must be non-empty")
    if type not in GROUP_TYPES:
        raise ValidationError(f"type must be one of {'|'.join(GROUP_TYPES)}")
    if type == "Corporate" and not (company_name or "").strip():
        raise ValidationError("company_name is required for Corporate groups")
    if max_members < 1:
        raise ValidationError("max_members must be >= 1")

    ts = now()
    for _ in range(_CODE_ATTEMPTS):
        group = Group.new(
            name=name,
            leader_id=ctx.user_id,
            now=ts,
            type=type,
            description=description,
            max_members=max_members,
            company_name=company_name,
            centralized_billing=centralized_billing,
            auto_approve_members=auto_approve_members,
        )
        leader = GroupMember.new(
            group_id=group.id,
            user_id=ctx.user_id,
            now=ts,
            role="Admin",
            can_approve_members=True,
        )
        try:
            await ctx.repos.groups.create(group, leader)
        except DuplicateKeyError:
            continue
        logger.info(
            "Group created group=%s code=%s leader=%s type=%s",
            group.id,
            group.group_code,
            ctx.user_id,
            type,
            extra={"group_id": str(group.id)},
        )
        return group

    raise ConflictError("unable to generate a unique group code, please retry")


async def add_member(
    ctx: ServiceContext,
    group_id: UUID,
    *,
    user_id: str,
    role: str = "Member",
    can_approve_members: bool = False,
    auto_approve: bool = True,
) -> GroupMember:
    if role not in MEMBER_ROLES:
        raise ValidationError(f"role must be one of {'|'.join(MEMBER_ROLES)}")

    group = await get_group(ctx, group_id)
    await _require_manager(ctx, group)

    if group.current_member_count >= group.max_members:
        raise ConflictError(f"group is full (max {group.max_members} members)")

    existing = await ctx.repos.groups.get_member(group_id, user_id)
    if existing is not None and existing.status == "Active":
        raise ConflictError("user is already a member of this group")
    if existing is not None and existing.status == "Pending":
        raise ConflictError("membership request is awaiting approval")

    is_leader = group.leader_id == ctx.user_id
    approved = auto_approve and (group.auto_approve_members or is_leader)
    member = GroupMember.new(
        group_id=group_id,
        user_id=user_id,
        now=now(),
        status="Active" if approved else "Pending",
        role=role,
        can_approve_members=can_approve_members,
    )
    try:
        member = await ctx.repos.groups.add_member(member, now())
    except CapacityExceededError:
        raise ConflictError(
            f"group is full (max {group.max_members} members)"
        ) from None
    except DuplicateKeyError:
        raise ConflictError("user is already a member of this group") from None

    logger.info(
        "Member added group=%s user=%s status=%s role=%s by=%s",
        group_id,
        user_id,
        member.status,
        role,
        ctx.user_id,
        extra={"group_id": str(group_id)},
    )
    return member


async def approve_member(
    ctx: ServiceContext, group_id: UUID, user_id: str
) -> GroupMember:
    group = await get_group(ctx, group_id)
    await _require_manager(ctx, group)

    member = await ctx.repos.groups.get_member(group_id, user_id)
    if member is None or member.status != "Pending":
        raise NotFoundError("no pending membership for this user")

    try:
        updated = await ctx.repos.groups.set_member_status(
            group_id, user_id, "Active", now()
        )
    except CapacityExceededError:
        raise ConflictError(
            f"group is full (max {group.max_members} members)"
        ) from None
    if updated is None:
        raise NotFoundError("no pending membership for this user")

    logger.info(
        "Member approved group=%s user=%s by=%s",
        group_id,
        user_id,
        ctx.user_id,
        extra={"group_id": str(group_id)},
    )
    return updated


async def remove_member(
    ctx: ServiceContext, group_id: UUID, user_id: str
) -> GroupMember:
    """Soft-remove: the membership row stays with status Removed."""
    group = await get_group(ctx, group_id)
    if user_id == group.leader_id:
        raise ValidationError("the group leader cannot be removed")
    if user_id != ctx.user_id:
        await _require_manager(ctx, group)

    member = await ctx.repos.groups.get_member(group_id, user_id)
    if member is None or member.status == "Removed":
        raise NotFoundError("membership not found")

    updated = await ctx.repos.groups.set_member_status(
        group_id, user_id, "Removed", now()
    )
    if updated is None:
        raise NotFoundError("membership not found")

    logger.info(
        "Member removed group=%s user=%s by=%s",
        group_id,
        user_id,
        ctx.user_id,
        extra={"group_id": str(group_id)},
    )
    return updated


async def get_group_stats(
    ctx: ServiceContext, group_id: UUID, *, top: int = 5
) -> GroupStats:
    group = await get_group(ctx, group_id)

    caller = await ctx.repos.groups.get_member(group_id, ctx.user_id)
    allowed = (
        ctx.is_admin
        or group.leader_id == ctx.user_id
        or (caller is not None and caller.is_active and caller.role in _STATS_ROLES)
    )
    if not allowed:
        raise PermissionDeniedError("you are not allowed to view this group's stats")

    members = await ctx.repos.groups.list_members(group_id)
    active = [m for m in members if m.is_active]
    pending = [m for m in members if m.status == "Pending"]
    member_savings = sum(m.total_savings for m in active)

    enrollments = await ctx.repos.enrollments.list_by_group(group_id)
    completed = sum(1 for e in enrollments if e.status == "Completed")
    completion_rate = (
        round(completed / len(enrollments) * 100, 2) if enrollments else 0.0
    )

    ranked = sorted(active, key=lambda m: m.enrollments_count, reverse=True)
    top_members = [
        MemberSummary(
            user_id=m.user_id,
            role=m.role,
            status=m.status,
            enrollments_count=m.enrollments_count,
            completed_courses=m.completed_courses,
            total_savings=m.total_savings,
        )
        for m in ranked[:top]
    ]

    active_count = group.current_member_count
    return GroupStats(
        group=group,
        active_members=len(active),
        pending_members=len(pending),
        tier=discount_service.resolve_tier(active_count),
        next_tier=discount_service.next_tier(active_count),
        total_enrollments=len(enrollments),
        completed_enrollments=completed,
        completion_rate=completion_rate,
        total_group_savings=member_savings,
        average_savings_per_member=member_savings // len(active) if active else 0,
        top_members=top_members,
    )


async def get_group_discount(
    ctx: ServiceContext, group_id: UUID, course_price: int
) -> discount_service.DiscountQuote:
    """Quote ``course_price`` at the group's current tier."""
    group = await get_group(ctx, group_id)
    return discount_service.quote_group_discount(course_price, group.current_member_count)
