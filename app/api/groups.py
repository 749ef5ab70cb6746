"""Group endpoints: membership, discount quotes and group enrollment."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_context
from app.models.group import Group, GroupMember
from app.services import enrollment_service, group_service
from app.services.context import ServiceContext
from app.services.discount_service import DiscountQuote, DiscountTier, NextTier
from app.services.enrollment_service import EnrollmentSummary, GroupEnrollmentOptions

router = APIRouter(prefix="/v1/groups", tags=["groups"])


# --- Pydantic schemas ---


class GroupCreateIn(BaseModel):
    name: str
    type: str = "Regular"
    description: str = ""
    max_members: int = Field(default=50, ge=1)
    company_name: str | None = None
    centralized_billing: bool = False
    auto_approve_members: bool = True


class GroupOut(BaseModel):
    id: str
    name: str
    group_code: str
    leader_id: str
    type: str
    status: str
    max_members: int
    current_member_count: int
    company_name: str | None
    centralized_billing: bool
    auto_approve_members: bool
    current_discount_percentage: int
    total_enrollments: int
    total_savings: int

    @classmethod
    def from_group(cls, g: Group) -> GroupOut:
        return cls(
            id=str(g.id),
            name=g.name,
            group_code=g.group_code,
            leader_id=g.leader_id,
            type=g.type,
            status=g.status,
            max_members=g.max_members,
            current_member_count=g.current_member_count,
            company_name=g.company_name,
            centralized_billing=g.centralized_billing,
            auto_approve_members=g.auto_approve_members,
            current_discount_percentage=g.current_discount_percentage,
            total_enrollments=g.total_enrollments,
            total_savings=g.total_savings,
        )


class AddMemberIn(BaseModel):
    user_id: str
    role: str = "Member"
    can_approve_members: bool = False
    auto_approve: bool = True


class MemberOut(BaseModel):
    group_id: str
    user_id: str
    status: str
    role: str
    can_approve_members: bool
    join_date: int
    removed_date: int | None
    enrollments_count: int
    total_savings: int

    @classmethod
    def from_member(cls, m: GroupMember) -> MemberOut:
        return cls(
            group_id=str(m.group_id),
            user_id=m.user_id,
            status=m.status,
            role=m.role,
            can_approve_members=m.can_approve_members,
            join_date=m.join_date,
            removed_date=m.removed_date,
            enrollments_count=m.enrollments_count,
            total_savings=m.total_savings,
        )


class TierOut(BaseModel):
    percentage: int
    tier: str
    tier_name: str
    min_members: int

    @classmethod
    def from_tier(cls, t: DiscountTier) -> TierOut:
        return cls(
            percentage=t.percentage,
            tier=t.tier,
            tier_name=t.tier_name,
            min_members=t.min_members,
        )


class NextTierOut(BaseModel):
    tier: str
    tier_name: str
    percentage: int
    min_members: int
    members_needed: int

    @classmethod
    def from_next(cls, n: NextTier | None) -> NextTierOut | None:
        if n is None:
            return None
        return cls(
            tier=n.tier,
            tier_name=n.tier_name,
            percentage=n.percentage,
            min_members=n.min_members,
            members_needed=n.members_needed,
        )


class DiscountQuoteOut(BaseModel):
    member_count: int
    original_price: int
    discount_percentage: int
    discount_amount: int
    final_price: int
    tier: TierOut
    next_tier: NextTierOut | None

    @classmethod
    def from_quote(cls, q: DiscountQuote) -> DiscountQuoteOut:
        return cls(
            member_count=q.member_count,
            original_price=q.original_price,
            discount_percentage=q.discount_percentage,
            discount_amount=q.discount_amount,
            final_price=q.final_price,
            tier=TierOut.from_tier(q.tier),
            next_tier=NextTierOut.from_next(q.next_tier),
        )


class TopMemberOut(BaseModel):
    user_id: str
    role: str
    enrollments_count: int
    completed_courses: int
    total_savings: int


class GroupStatsOut(BaseModel):
    group: GroupOut
    active_members: int
    pending_members: int
    tier: TierOut
    next_tier: NextTierOut | None
    total_enrollments: int
    completed_enrollments: int
    completion_rate: float
    total_group_savings: int
    average_savings_per_member: int
    top_members: list[TopMemberOut]


class GroupEnrollmentIn(BaseModel):
    course_id: UUID
    # Empty means every Active member of the group.
    member_ids: list[str] = Field(default_factory=list)
    use_centralized_billing: bool | None = None
    notes: str | None = None


class MemberResultOut(BaseModel):
    user_id: str
    status: str
    enrollment_id: str | None
    final_price: int | None
    error_message: str | None


class PaymentInfoOut(BaseModel):
    payment_method: str
    total_amount: int
    requires_payment: bool


class EnrollmentSummaryOut(BaseModel):
    group_id: str
    course_id: str
    total_enrolled: int
    successful_enrollments: int
    failed_enrollments: int
    total_original_price: int
    total_discount_amount: int
    total_final_price: int
    discount_percentage: int
    tier: str
    is_partial: bool
    payment_info: PaymentInfoOut
    results: list[MemberResultOut]

    @classmethod
    def from_summary(cls, s: EnrollmentSummary) -> EnrollmentSummaryOut:
        return cls(
            group_id=str(s.group_id),
            course_id=str(s.course_id),
            total_enrolled=s.total_enrolled,
            successful_enrollments=s.successful_enrollments,
            failed_enrollments=s.failed_enrollments,
            total_original_price=s.total_original_price,
            total_discount_amount=s.total_discount_amount,
            total_final_price=s.total_final_price,
            discount_percentage=s.discount_percentage,
            tier=s.tier,
            is_partial=s.is_partial,
            payment_info=PaymentInfoOut(
                payment_method=s.payment_info.payment_method,
                total_amount=s.payment_info.total_amount,
                requires_payment=s.payment_info.requires_payment,
            ),
            results=[
                MemberResultOut(
                    user_id=r.user_id,
                    status=r.status,
                    enrollment_id=str(r.enrollment_id) if r.enrollment_id else None,
                    final_price=r.final_price,
                    error_message=r.error_message,
                )
                for r in s.results
            ],
        )


# --- Endpoints ---


@router.post("", response_model=GroupOut, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: GroupCreateIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> GroupOut:
    """Create a group; the caller becomes its leader."""
    group = await group_service.create_group(
        ctx,
        name=body.name,
        type=body.type,
        description=body.description,
        max_members=body.max_members,
        company_name=body.company_name,
        centralized_billing=body.centralized_billing,
        auto_approve_members=body.auto_approve_members,
    )
    return GroupOut.from_group(group)


@router.get("/{group_id}", response_model=GroupStatsOut)
async def get_group_stats(
    group_id: UUID,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> GroupStatsOut:
    stats = await group_service.get_group_stats(ctx, group_id)
    return GroupStatsOut(
        group=GroupOut.from_group(stats.group),
        active_members=stats.active_members,
        pending_members=stats.pending_members,
        tier=TierOut.from_tier(stats.tier),
        next_tier=NextTierOut.from_next(stats.next_tier),
        total_enrollments=stats.total_enrollments,
        completed_enrollments=stats.completed_enrollments,
        completion_rate=stats.completion_rate,
        total_group_savings=stats.total_group_savings,
        average_savings_per_member=stats.average_savings_per_member,
        top_members=[
            TopMemberOut(
                user_id=m.user_id,
                role=m.role,
                enrollments_count=m.enrollments_count,
                completed_courses=m.completed_courses,
                total_savings=m.total_savings,
            )
            for m in stats.top_members
        ],
    )


@router.post(
    "/{group_id}/members",
    response_model=MemberOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    group_id: UUID,
    body: AddMemberIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> MemberOut:
    member = await group_service.add_member(
        ctx,
        group_id,
        user_id=body.user_id,
        role=body.role,
        can_approve_members=body.can_approve_members,
        auto_approve=body.auto_approve,
    )
    return MemberOut.from_member(member)


@router.post("/{group_id}/members/{user_id}/approve", response_model=MemberOut)
async def approve_member(
    group_id: UUID,
    user_id: str,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> MemberOut:
    member = await group_service.approve_member(ctx, group_id, user_id)
    return MemberOut.from_member(member)


@router.delete("/{group_id}/members/{user_id}", response_model=MemberOut)
async def remove_member(
    group_id: UUID,
    user_id: str,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> MemberOut:
    member = await group_service.remove_member(ctx, group_id, user_id)
    return MemberOut.from_member(member)


@router.get("/{group_id}/discount", response_model=DiscountQuoteOut)
async def get_group_discount(
    group_id: UUID,
    ctx: Annotated[ServiceContext, Depends(get_context)],
    course_price: Annotated[int, Query(ge=0)],
) -> DiscountQuoteOut:
    quote = await group_service.get_group_discount(ctx, group_id, course_price)
    return DiscountQuoteOut.from_quote(quote)


@router.post("/{group_id}/enrollments", response_model=EnrollmentSummaryOut)
async def enroll_group(
    group_id: UUID,
    body: GroupEnrollmentIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> EnrollmentSummaryOut:
    """Enroll members into a course; per-member failures are in ``results``."""
    summary = await enrollment_service.process_group_enrollment(
        ctx,
        group_id,
        body.course_id,
        body.member_ids,
        GroupEnrollmentOptions(
            use_centralized_billing=body.use_centralized_billing,
            notes=body.notes,
        ),
    )
    return EnrollmentSummaryOut.from_summary(summary)
