from __future__ import annotations

import asyncio

import pytest

from app.repos.repositories import group_repo
from app.services import group_service
from app.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tests.conftest import admin_ctx, make_ctx

LEADER = "leader-1"


def _create(**kwargs):
    return asyncio.run(group_service.create_group(make_ctx(LEADER), name="Study Circle", **kwargs))


def _add(group_id, user_id: str, *, by: str = LEADER, **kwargs):
    return asyncio.run(
        group_service.add_member(make_ctx(by), group_id, user_id=user_id, **kwargs)
    )


# ---- create ----


def test_create_group_makes_caller_leader_and_admin_member() -> None:
    group = _create()
    assert group.leader_id == LEADER
    assert group.group_code.startswith("GROUP-")
    assert len(group.group_code) == len("GROUP-") + 8
    assert group.current_member_count == 1

    leader = asyncio.run(group_repo.get_member(group.id, LEADER))
    assert leader is not None
    assert leader.role == "Admin"
    assert leader.can_approve_members is True


def test_create_corporate_group_requires_company_name() -> None:
    with pytest.raises(ValidationError, match="company_name"):
        _create(type="Corporate")
    group = _create(type="Corporate", company_name="Acme")
    assert group.company_name == "Acme"


@pytest.mark.parametrize(
    "kwargs",
    [{"type": "Secret"}, {"max_members": 0}],
)
def test_create_group_rejects_bad_input(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        _create(**kwargs)


def test_create_group_rejects_blank_name() -> None:
    with pytest.raises(ValidationError):
        asyncio.run(group_service.create_group(make_ctx(LEADER), name="   "))


# ---- membership ----


def test_add_member_counts_active_members() -> None:
    group = _create()
    member = _add(group.id, "u-2")
    assert member.status == "Active"
    assert asyncio.run(group_repo.get(group.id)).current_member_count == 2


def test_add_member_pending_when_auto_approve_off_for_non_leader() -> None:
    group = _create(auto_approve_members=False)
    _add(group.id, "co-admin", role="Admin")  # leader adds: approved
    pending = _add(group.id, "u-3", by="co-admin")
    assert pending.status == "Pending"
    assert asyncio.run(group_repo.get(group.id)).current_member_count == 2

    approved = asyncio.run(group_service.approve_member(make_ctx(LEADER), group.id, "u-3"))
    assert approved.status == "Active"
    assert asyncio.run(group_repo.get(group.id)).current_member_count == 3


def test_add_member_rejects_duplicates() -> None:
    group = _create()
    _add(group.id, "u-2")
    with pytest.raises(ConflictError, match="already a member"):
        _add(group.id, "u-2")


def test_add_member_respects_capacity() -> None:
    group = _create(max_members=2)
    _add(group.id, "u-2")
    with pytest.raises(ConflictError, match="group is full"):
        _add(group.id, "u-3")


def test_plain_member_cannot_add_members() -> None:
    group = _create()
    _add(group.id, "u-2")
    with pytest.raises(PermissionDeniedError):
        _add(group.id, "u-3", by="u-2")


def test_platform_admin_can_manage_any_group() -> None:
    group = _create()
    member = asyncio.run(
        group_service.add_member(admin_ctx(), group.id, user_id="u-9")
    )
    assert member.is_active


def test_remove_member_is_soft_and_frees_a_seat() -> None:
    group = _create()
    _add(group.id, "u-2")
    removed = asyncio.run(group_service.remove_member(make_ctx(LEADER), group.id, "u-2"))
    assert removed.status == "Removed"
    assert removed.removed_date is not None
    assert asyncio.run(group_repo.get(group.id)).current_member_count == 1
    # row kept
    assert asyncio.run(group_repo.get_member(group.id, "u-2")) is not None


def test_discount_follows_member_count_changes() -> None:
    group = _create()
    for i in range(10):
        _add(group.id, f"u-{i}")
    assert asyncio.run(group_repo.get(group.id)).current_discount_percentage == 15

    _add(group.id, "u-10")
    stored = asyncio.run(group_repo.get(group.id))
    assert stored.current_member_count == 12
    assert stored.current_discount_percentage == 20

    asyncio.run(group_service.remove_member(make_ctx(LEADER), group.id, "u-10"))
    asyncio.run(group_service.remove_member(make_ctx(LEADER), group.id, "u-9"))
    assert asyncio.run(group_repo.get(group.id)).current_discount_percentage == 15


def test_approval_restamps_discount() -> None:
    group = _create(auto_approve_members=False)
    _add(group.id, "u-1")
    _add(group.id, "u-2", auto_approve=False)
    assert asyncio.run(group_repo.get(group.id)).current_discount_percentage == 0

    asyncio.run(group_service.approve_member(make_ctx(LEADER), group.id, "u-2"))
    assert asyncio.run(group_repo.get(group.id)).current_discount_percentage == 10


def test_removed_member_can_be_re_added() -> None:
    group = _create()
    _add(group.id, "u-2")
    asyncio.run(group_service.remove_member(make_ctx(LEADER), group.id, "u-2"))
    again = _add(group.id, "u-2")
    assert again.status == "Active"
    assert again.removed_date is None
    assert asyncio.run(group_repo.get(group.id)).current_member_count == 2


def test_member_may_leave_on_their_own() -> None:
    group = _create()
    _add(group.id, "u-2")
    left = asyncio.run(group_service.remove_member(make_ctx("u-2"), group.id, "u-2"))
    assert left.status == "Removed"


def test_leader_cannot_be_removed() -> None:
    group = _create()
    with pytest.raises(ValidationError, match="leader"):
        asyncio.run(group_service.remove_member(admin_ctx(), group.id, LEADER))


def test_remove_unknown_member_not_found() -> None:
    group = _create()
    with pytest.raises(NotFoundError):
        asyncio.run(group_service.remove_member(make_ctx(LEADER), group.id, "ghost"))


# ---- stats and discount ----


def test_group_stats_reports_tier_and_next_tier() -> None:
    group = _create()
    for i in range(4):
        _add(group.id, f"u-{i}")
    stats = asyncio.run(group_service.get_group_stats(make_ctx(LEADER), group.id))
    assert stats.active_members == 5
    assert stats.tier.tier == "Tier1"
    assert stats.next_tier is not None
    assert stats.next_tier.members_needed == 1
    assert stats.total_enrollments == 0
    assert stats.completion_rate == 0.0


def test_group_stats_hidden_from_plain_members() -> None:
    group = _create()
    _add(group.id, "u-2")
    with pytest.raises(PermissionDeniedError):
        asyncio.run(group_service.get_group_stats(make_ctx("u-2"), group.id))


def test_group_discount_uses_active_member_count() -> None:
    group = _create()
    for i in range(5):
        _add(group.id, f"u-{i}")
    quote = asyncio.run(
        group_service.get_group_discount(make_ctx("anyone"), group.id, 1_000_000)
    )
    assert quote.member_count == 6
    assert quote.discount_percentage == 15
    assert quote.final_price == 850_000


def test_unknown_group_not_found() -> None:
    import uuid

    with pytest.raises(NotFoundError):
        asyncio.run(group_service.get_group(make_ctx(), uuid.uuid4()))
