from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from uuid import UUID, uuid4

GROUP_TYPES = ("Regular", "Corporate")
GROUP_STATUSES = ("Active", "Inactive", "Suspended", "Completed")
MEMBER_STATUSES = ("Active", "Pending", "Removed", "Suspended")
MEMBER_ROLES = ("Member", "CoLeader", "Admin")

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_group_code() -> str:
    """Human-shareable join code, e.g. GROUP-7Q2XK9LD."""
    return "GROUP-" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))


@dataclass(frozen=True, slots=True)
class Group:
    id: UUID
    name: str
    group_code: str
    leader_id: str
    type: str = "Regular"  # Regular|Corporate
    status: str = "Active"  # Active|Inactive|Suspended|Completed
    description: str = ""
    max_members: int = 50
    current_member_count: int = 1  # active members, leader included
    company_name: str | None = None
    centralized_billing: bool = False
    auto_approve_members: bool = True
    # Last discount applied to an enrollment batch; informational only.
    current_discount_percentage: int = 0
    total_enrollments: int = 0
    total_savings: int = 0
    created_at: int = 0
    updated_at: int = 0

    @staticmethod
    def new(
        *,
        name: str,
        leader_id: str,
        now: int,
        type: str = "Regular",
        description: str = "",
        max_members: int = 50,
        company_name: str | None = None,
        centralized_billing: bool = False,
        auto_approve_members: bool = True,
    ) -> Group:
        return Group(
            id=uuid4(),
            name=name,
            group_code=generate_group_code(),
            leader_id=leader_id,
            type=type,
            description=description,
            max_members=max_members,
            company_name=company_name,
            centralized_billing=centralized_billing,
            auto_approve_members=auto_approve_members,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True, slots=True)
class GroupMember:
    """Association between a group and a user, owning per-member counters."""

    id: UUID
    group_id: UUID
    user_id: str
    status: str = "Active"  # Active|Pending|Removed|Suspended
    role: str = "Member"  # Member|CoLeader|Admin
    can_approve_members: bool = False
    join_date: int = 0
    removed_date: int | None = None
    enrollments_count: int = 0
    completed_courses: int = 0
    total_savings: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == "Active"

    @staticmethod
    def new(
        *,
        group_id: UUID,
        user_id: str,
        now: int,
        status: str = "Active",
        role: str = "Member",
        can_approve_members: bool = False,
    ) -> GroupMember:
        return GroupMember(
            id=uuid4(),
            group_id=group_id,
            user_id=user_id,
            status=status,
            role=role,
            can_approve_members=can_approve_members,
            join_date=now,
        )
