from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from app.repos.repositories import course_repo, enrollment_repo, group_repo
from app.services import enrollment_service, group_service
from app.services.enrollment_service import GroupEnrollmentOptions
from app.services.errors import ConflictError, PermissionDeniedError, ValidationError
from app.services.notifications import ENROLLMENT_CONFIRMATION_QUEUE
from app.services.task_queue import task_queue
from tests.conftest import admin_ctx, make_ctx

LEADER = "leader-1"


def _course(price: int = 1_000_000, **kwargs):
    return asyncio.run(
        enrollment_service.create_course(
            admin_ctx(),
            slug=kwargs.pop("slug", "python-101"),
            title="Python 101",
            price=price,
            status=kwargs.pop("status", "Active"),
            **kwargs,
        )
    )


def _group_with(members: int, **kwargs):
    """A group whose active member count, leader included, is ``members``."""
    ctx = make_ctx(LEADER)
    group = asyncio.run(group_service.create_group(ctx, name="Cohort", **kwargs))
    for i in range(members - 1):
        asyncio.run(group_service.add_member(ctx, group.id, user_id=f"m-{i}"))
    return group


def _enroll(group, course, member_ids, options=None, ctx=None):
    return asyncio.run(
        enrollment_service.process_group_enrollment(
            ctx or make_ctx(LEADER), group.id, course.id, member_ids, options
        )
    )


def _assert_summary_balanced(summary) -> None:
    assert summary.total_enrolled == len(summary.results)
    assert (
        summary.successful_enrollments + summary.failed_enrollments
        == summary.total_enrolled
    )
    assert (
        summary.total_final_price
        == summary.total_original_price - summary.total_discount_amount
    )


def test_twelve_members_get_gold_discount() -> None:
    group = _group_with(12)
    course = _course(1_000_000)
    ids = [f"m-{i}" for i in range(11)] + [LEADER]

    summary = _enroll(group, course, ids)

    assert summary.discount_percentage == 20
    assert summary.tier == "Tier3/Gold"
    assert summary.successful_enrollments == 12
    assert all(r.final_price == 800_000 for r in summary.results)
    assert summary.total_original_price == 12_000_000
    assert summary.total_final_price == 9_600_000
    assert summary.total_discount_amount == 2_400_000
    assert summary.is_partial is False
    _assert_summary_balanced(summary)


def test_already_enrolled_member_fails_alone() -> None:
    group = _group_with(6)
    course = _course(500_000)
    asyncio.run(enrollment_service.enroll_user(make_ctx("m-2"), course.id))

    summary = _enroll(group, course, [f"m-{i}" for i in range(5)])

    assert summary.successful_enrollments == 4
    assert summary.failed_enrollments == 1
    assert summary.is_partial is True
    failed = [r for r in summary.results if r.status == "failed"]
    assert [r.user_id for r in failed] == ["m-2"]
    assert failed[0].error_message == "user is already enrolled in this course"
    # results follow input order
    assert [r.user_id for r in summary.results] == [f"m-{i}" for i in range(5)]
    _assert_summary_balanced(summary)


def test_totals_count_successes_only() -> None:
    group = _group_with(3)
    course = _course(100_000)

    summary = _enroll(group, course, ["m-0", "stranger", "m-1"])

    assert summary.successful_enrollments == 2
    assert summary.total_original_price == 200_000
    assert summary.total_final_price == 180_000
    assert summary.payment_info.total_amount == 180_000
    assert summary.payment_info.requires_payment is True
    _assert_summary_balanced(summary)


def test_non_member_fails_with_message() -> None:
    group = _group_with(3)
    course = _course()

    summary = _enroll(group, course, ["stranger"])

    assert summary.results[0].status == "failed"
    assert summary.results[0].error_message == "not an active member of this group"
    assert summary.total_final_price == 0
    assert summary.payment_info.requires_payment is False


def test_empty_member_list_enrolls_all_active_members() -> None:
    group = _group_with(4)
    course = _course()

    summary = _enroll(group, course, [])

    assert summary.total_enrolled == 4
    assert {r.user_id for r in summary.results} == {LEADER, "m-0", "m-1", "m-2"}


def test_discount_follows_group_size_not_batch_size() -> None:
    group = _group_with(11)
    course = _course(1_000_000)

    summary = _enroll(group, course, ["m-0"])

    assert summary.discount_percentage == 20
    assert summary.results[0].final_price == 800_000


def test_small_group_pays_full_price() -> None:
    group = _group_with(2)
    course = _course(300_000)

    summary = _enroll(group, course, ["m-0"])

    assert summary.discount_percentage == 0
    assert summary.tier == "None"
    assert summary.total_final_price == 300_000


def test_enrollment_rows_and_counters_recorded() -> None:
    group = _group_with(3)
    course = _course(1_000_000)

    _enroll(group, course, ["m-0", "m-1"])

    row = asyncio.run(enrollment_repo.get("m-0", course.id))
    assert row is not None
    assert row.group_id == group.id
    assert row.amount == 900_000
    assert row.discount_applied == 100_000
    assert row.payment_method == "individual"
    assert row.payment_status == "unpaid"

    assert asyncio.run(course_repo.get(course.id)).total_students == 2
    member = asyncio.run(group_repo.get_member(group.id, "m-0"))
    assert member.enrollments_count == 1
    assert member.total_savings == 100_000
    updated = asyncio.run(group_repo.get(group.id))
    assert updated.total_enrollments == 2
    assert updated.total_savings == 200_000
    assert updated.current_discount_percentage == 10


def test_centralized_billing_marks_rows_pending() -> None:
    group = _group_with(3)
    course = _course()

    summary = _enroll(
        group,
        course,
        ["m-0"],
        GroupEnrollmentOptions(use_centralized_billing=True, notes="Q3 cohort"),
    )

    assert summary.payment_info.payment_method == "centralized"
    row = asyncio.run(enrollment_repo.get("m-0", course.id))
    assert row.payment_method == "centralized"
    assert row.payment_status == "pending"
    assert row.notes == "Q3 cohort"


def test_group_billing_flag_is_the_default() -> None:
    group = _group_with(3, centralized_billing=True)
    course = _course()

    summary = _enroll(group, course, ["m-0"])

    assert summary.payment_info.payment_method == "centralized"


def test_capacity_reached_mid_batch() -> None:
    group = _group_with(5)
    course = _course(max_students=2)

    summary = _enroll(group, course, ["m-0", "m-1", "m-2", "m-3"])

    assert [r.status for r in summary.results] == ["success", "success", "failed", "failed"]
    assert summary.results[2].error_message == "course is full"
    assert asyncio.run(course_repo.get(course.id)).total_students == 2
    _assert_summary_balanced(summary)


def test_full_course_rejected_before_any_write() -> None:
    group = _group_with(3)
    course = _course(max_students=1)
    asyncio.run(enrollment_service.enroll_user(make_ctx("outsider"), course.id))

    with pytest.raises(ConflictError, match="course is full"):
        _enroll(group, course, ["m-0"])
    assert asyncio.run(enrollment_repo.get("m-0", course.id)) is None


def test_closed_course_rejected() -> None:
    group = _group_with(3)
    course = _course(status="Draft")

    with pytest.raises(ValidationError, match="not open"):
        _enroll(group, course, ["m-0"])


def test_inactive_group_rejected() -> None:
    group = _group_with(3)
    group_repo._groups[group.id] = replace(group, status="Inactive")
    course = _course()

    with pytest.raises(ValidationError, match="group is not active"):
        _enroll(group, course, ["m-0"])


def test_plain_member_cannot_enroll_the_group() -> None:
    group = _group_with(3)
    course = _course()

    with pytest.raises(PermissionDeniedError):
        _enroll(group, course, ["m-1"], ctx=make_ctx("m-0"))


def test_confirmations_queued_after_commit() -> None:
    group = _group_with(3)
    course = _course()
    ctx = make_ctx(LEADER)

    _enroll(group, course, ["m-0", "stranger", "m-1"], ctx=ctx)
    assert asyncio.run(task_queue.queue_length(ENROLLMENT_CONFIRMATION_QUEUE)) == 0

    asyncio.run(ctx.run_post_commit())
    assert asyncio.run(task_queue.queue_length(ENROLLMENT_CONFIRMATION_QUEUE)) == 2
