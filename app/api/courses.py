"""Course catalogue and single enrollment.

  POST /v1/courses/{course_id}/enroll
    -> capacity-guarded insert (seat taken in the same step)
    -> 201 Enrolled | 409 DUPLICATE_ENROLLMENT | 409 COURSE_FULL
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_context
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.services import enrollment_service
from app.services.context import ServiceContext

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class CourseCreateIn(BaseModel):
    slug: str
    title: str
    price: int = Field(ge=0)
    status: str = "Active"
    max_students: int | None = Field(default=None, ge=1)


class CourseOut(BaseModel):
    id: str
    slug: str
    title: str
    price: int
    status: str
    max_students: int | None
    total_students: int

    @classmethod
    def from_course(cls, c: Course) -> CourseOut:
        return cls(
            id=str(c.id),
            slug=c.slug,
            title=c.title,
            price=c.price,
            status=c.status,
            max_students=c.max_students,
            total_students=c.total_students,
        )


class EnrollIn(BaseModel):
    # Platform admins may enroll someone else.
    user_id: str | None = None
    notes: str | None = None


class EnrollmentOut(BaseModel):
    id: str
    user_id: str
    course_id: str
    status: str
    enrollment_date: int
    original_price: int
    amount: int
    discount_applied: int
    payment_method: str
    payment_status: str
    group_id: str | None

    @classmethod
    def from_enrollment(cls, e: Enrollment) -> EnrollmentOut:
        return cls(
            id=str(e.id),
            user_id=e.user_id,
            course_id=str(e.course_id),
            status=e.status,
            enrollment_date=e.enrollment_date,
            original_price=e.original_price,
            amount=e.amount,
            discount_applied=e.discount_applied,
            payment_method=e.payment_method,
            payment_status=e.payment_status,
            group_id=str(e.group_id) if e.group_id else None,
        )


@router.get("", response_model=list[CourseOut])
async def list_courses(
    ctx: Annotated[ServiceContext, Depends(get_context)],
    course_status: Annotated[str | None, Query(alias="status")] = None,
) -> list[CourseOut]:
    courses = await enrollment_service.list_courses(ctx, course_status)
    return [CourseOut.from_course(c) for c in courses]


@router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
async def create_course(
    body: CourseCreateIn,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> CourseOut:
    course = await enrollment_service.create_course(
        ctx,
        slug=body.slug,
        title=body.title,
        price=body.price,
        status=body.status,
        max_students=body.max_students,
    )
    return CourseOut.from_course(course)


@router.get("/{course_id}", response_model=CourseOut)
async def get_course(
    course_id: UUID,
    ctx: Annotated[ServiceContext, Depends(get_context)],
) -> CourseOut:
    return CourseOut.from_course(await enrollment_service.get_course(ctx, course_id))


@router.post(
    "/{course_id}/enroll",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_in_course(
    course_id: UUID,
    ctx: Annotated[ServiceContext, Depends(get_context)],
    body: EnrollIn | None = None,
) -> EnrollmentOut:
    body = body or EnrollIn()
    enrollment = await enrollment_service.enroll_user(
        ctx, course_id, user_id=body.user_id, notes=body.notes
    )
    return EnrollmentOut.from_enrollment(enrollment)
