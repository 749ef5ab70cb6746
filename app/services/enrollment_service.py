"""Courses, single enrollment and group enrollment batches.

Every enrollment, single or batched, goes through ``EnrollmentRepo.enroll``,
which inserts the row and takes a course seat as one unit.  Capacity is
therefore re-checked at write time, not only when the request starts.

GROUP ENROLLMENT
----------------
``process_group_enrollment`` enrolls a list of group members into one
course at the group's discounted price.

  1. Whole-call preconditions: caller may manage the group, group is
     Active, course is Active and not full.  Any of these failing
     rejects the call before anything is written.
  2. The discount tier comes from the group's current Active member
     count, not from the size of the batch.
  3. Members are processed in input order, each on its own.  A member
     that is not Active in the group, is already enrolled, or hits a
     full course gets a ``failed`` result; earlier successes stay.
  4. The summary always satisfies
        successful + failed == total_enrolled == len(member_ids)
        total_final_price == total_original_price - total_discount_amount

The wallet is never touched here.  With centralized billing the rows
are stamped ``centralized``/``pending`` for the group to settle later;
otherwise ``individual``/``unpaid`` for each member to pay.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.core.metrics import COURSE_ENROLLMENTS, GROUP_ENROLLMENTS
from app.models.course import COURSE_STATUSES, Course
from app.models.enrollment import Enrollment
from app.repos.exceptions import CapacityExceededError, DuplicateKeyError
from app.services import discount_service, notifications
from app.services.context import ServiceContext, now
from app.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)
from app.services.group_service import get_group

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GroupEnrollmentOptions:
    # None falls back to the group's own centralized_billing flag.
    use_centralized_billing: bool | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class MemberEnrollmentResult:
    user_id: str
    status: str  # success|failed
    enrollment_id: UUID | None = None
    final_price: int | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentInfo:
    payment_method: str  # centralized|individual
    total_amount: int
    requires_payment: bool


@dataclass(frozen=True, slots=True)
class EnrollmentSummary:
    group_id: UUID
    course_id: UUID
    total_enrolled: int
    successful_enrollments: int
    failed_enrollments: int
    total_original_price: int
    total_discount_amount: int
    total_final_price: int
    discount_percentage: int
    tier: str
    payment_info: PaymentInfo
    results: list[MemberEnrollmentResult] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return self.successful_enrollments > 0 and self.failed_enrollments > 0


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


async def create_course(
    ctx: ServiceContext,
    *,
    slug: str,
    title: str,
    price: int,
    status: str = "Active",
    max_students: int | None = None,
) -> Course:
    if not ctx.is_admin:
        raise PermissionDeniedError("only platform admins can create courses")
    slug = slug.strip()
    if not slug or not title.strip():
        raise ValidationError("slug and title must be non-empty")
    if price < 0:
        raise ValidationError("price must be >= 0")
    if status not in COURSE_STATUSES:
        raise ValidationError(f"status must be one of {'|'.join(COURSE_STATUSES)}")
    if max_students is not None and max_students < 1:
        raise ValidationError("max_students must be >= 1")

    course = Course.new(
        slug=slug,
        title=title.strip(),
        price=price,
        status=status,
        max_students=max_students,
    )
    try:
        await ctx.repos.courses.add(course)
    except DuplicateKeyError:
        raise ConflictError("slug already taken") from None

    logger.info(
        "Course created course=%s slug=%s price=%d max_students=%s",
        course.id,
        slug,
        price,
        max_students,
        extra={"course_id": str(course.id)},
    )
    return course


async def list_courses(ctx: ServiceContext, status: str | None = None) -> list[Course]:
    return await ctx.repos.courses.list_all(status)


async def get_course(ctx: ServiceContext, course_id: UUID) -> Course:
    course = await ctx.repos.courses.get(course_id)
    if course is None:
        raise NotFoundError("course not found")
    return course


def _check_open(course: Course) -> None:
    if course.status != "Active":
        raise ValidationError("course is not open for enrollment")
    if course.is_full:
        raise ConflictError("course is full")


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


async def _insert_enrollment(ctx: ServiceContext, enrollment: Enrollment) -> None:
    """Guarded insert; storage outcomes become ConflictErrors."""
    try:
        await ctx.repos.enrollments.enroll(enrollment)
    except DuplicateKeyError:
        COURSE_ENROLLMENTS.labels(result="duplicate").inc()
        raise ConflictError(
            "user is already enrolled in this course", code="DUPLICATE_ENROLLMENT"
        ) from None
    except CapacityExceededError:
        COURSE_ENROLLMENTS.labels(result="full").inc()
        raise ConflictError("course is full", code="COURSE_FULL") from None
    COURSE_ENROLLMENTS.labels(result="success").inc()


async def enroll_user(
    ctx: ServiceContext,
    course_id: UUID,
    *,
    user_id: str | None = None,
    discount_percentage: int = 0,
    notes: str | None = None,
) -> Enrollment:
    """Enroll one user (the caller unless an admin names someone else)."""
    target = user_id or ctx.user_id
    if target != ctx.user_id and not ctx.is_admin:
        raise PermissionDeniedError("only platform admins can enroll other users")

    course = await get_course(ctx, course_id)
    _check_open(course)

    final_price = discount_service.apply_discount(course.price, discount_percentage)
    enrollment = Enrollment.new(
        user_id=target,
        course_id=course.id,
        now=now(),
        original_price=course.price,
        amount=final_price,
        discount_percentage=discount_percentage,
        notes=notes,
    )
    await _insert_enrollment(ctx, enrollment)

    logger.info(
        "User enrolled user=%s course=%s amount=%d",
        target,
        course.id,
        final_price,
        extra={"course_id": str(course.id)},
    )
    ctx.defer(
        partial(
            notifications.send_enrollment_confirmation,
            user_id=target,
            course_id=str(course.id),
            enrollment_id=str(enrollment.id),
            final_price=final_price,
        )
    )
    return enrollment


async def process_group_enrollment(
    ctx: ServiceContext,
    group_id: UUID,
    course_id: UUID,
    member_ids: list[str],
    options: GroupEnrollmentOptions | None = None,
) -> EnrollmentSummary:
    options = options or GroupEnrollmentOptions()
    repos = ctx.repos

    group = await get_group(ctx, group_id)
    caller = await repos.groups.get_member(group_id, ctx.user_id)
    may_enroll = (
        ctx.is_admin
        or group.leader_id == ctx.user_id
        or (
            caller is not None
            and caller.is_active
            and (caller.role == "Admin" or caller.can_approve_members)
        )
    )
    if not may_enroll:
        raise PermissionDeniedError("you are not allowed to enroll this group")
    if group.status != "Active":
        raise ValidationError("group is not active")

    course = await get_course(ctx, course_id)
    _check_open(course)

    if not member_ids:
        active = await repos.groups.list_members(group_id, status="Active")
        member_ids = [m.user_id for m in active]

    tier = discount_service.resolve_tier(group.current_member_count)
    final_price = discount_service.apply_discount(course.price, tier.percentage)
    savings = course.price - final_price

    centralized = (
        options.use_centralized_billing
        if options.use_centralized_billing is not None
        else group.centralized_billing
    )
    payment_method = "centralized" if centralized else "individual"
    payment_status = "pending" if centralized else "unpaid"

    results: list[MemberEnrollmentResult] = []
    for member_id in member_ids:
        result = await _enroll_member(
            ctx,
            group_id=group_id,
            course=course,
            member_id=member_id,
            final_price=final_price,
            discount_percentage=tier.percentage,
            payment_method=payment_method,
            payment_status=payment_status,
            notes=options.notes,
        )
        results.append(result)
        if result.status == "success":
            await repos.groups.record_enrollment(
                group_id, member_id, savings, tier.percentage, now()
            )

    successes = [r for r in results if r.status == "success"]
    succeeded = len(successes)
    total_original = course.price * succeeded
    total_final = final_price * succeeded

    GROUP_ENROLLMENTS.labels(result="success").inc(succeeded)
    GROUP_ENROLLMENTS.labels(result="failed").inc(len(results) - succeeded)

    for r in successes:
        ctx.defer(
            partial(
                notifications.send_enrollment_confirmation,
                user_id=r.user_id,
                course_id=str(course.id),
                enrollment_id=str(r.enrollment_id),
                final_price=final_price,
                group_id=str(group_id),
            )
        )

    summary = EnrollmentSummary(
        group_id=group_id,
        course_id=course.id,
        total_enrolled=len(results),
        successful_enrollments=succeeded,
        failed_enrollments=len(results) - succeeded,
        total_original_price=total_original,
        total_discount_amount=total_original - total_final,
        total_final_price=total_final,
        discount_percentage=tier.percentage,
        tier=tier.label,
        payment_info=PaymentInfo(
            payment_method=payment_method,
            total_amount=total_final,
            requires_payment=total_final > 0,
        ),
        results=results,
    )
    logger.info(
        "Group enrollment group=%s course=%s tier=%s discount=%d%% "
        "succeeded=%d failed=%d total_final=%d billing=%s",
        group_id,
        course.id,
        summary.tier,
        tier.percentage,
        summary.successful_enrollments,
        summary.failed_enrollments,
        total_final,
        payment_method,
        extra={"group_id": str(group_id), "course_id": str(course.id)},
    )
    return summary


async def _enroll_member(
    ctx: ServiceContext,
    *,
    group_id: UUID,
    course: Course,
    member_id: str,
    final_price: int,
    discount_percentage: int,
    payment_method: str,
    payment_status: str,
    notes: str | None,
) -> MemberEnrollmentResult:
    member = await ctx.repos.groups.get_member(group_id, member_id)
    if member is None or not member.is_active:
        return MemberEnrollmentResult(
            user_id=member_id,
            status="failed",
            error_message="not an active member of this group",
        )

    enrollment = Enrollment.new(
        user_id=member_id,
        course_id=course.id,
        now=now(),
        original_price=course.price,
        amount=final_price,
        discount_percentage=discount_percentage,
        group_id=group_id,
        payment_method=payment_method,
        payment_status=payment_status,
        notes=notes,
    )
    try:
        await _insert_enrollment(ctx, enrollment)
    except ServiceError as exc:
        return MemberEnrollmentResult(
            user_id=member_id, status="failed", error_message=exc.message
        )
    except SQLAlchemyError:
        logger.exception(
            "Enrollment write failed user=%s course=%s", member_id, course.id
        )
        return MemberEnrollmentResult(
            user_id=member_id, status="failed", error_message="enrollment could not be saved"
        )

    return MemberEnrollmentResult(
        user_id=member_id,
        status="success",
        enrollment_id=enrollment.id,
        final_price=final_price,
    )
