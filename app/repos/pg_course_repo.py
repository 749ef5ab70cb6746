"""PostgreSQL implementations of CourseRepo and EnrollmentRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CourseRow, EnrollmentRow
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.repos.exceptions import CapacityExceededError, DuplicateKeyError


class PgCourseRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, course_id: UUID) -> Course | None:
        stmt = (
            select(CourseRow)
            .where(CourseRow.id == course_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_course(row)

    async def get_by_slug(self, slug: str) -> Course | None:
        stmt = select(CourseRow).where(CourseRow.slug == slug)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_course(row)

    async def add(self, course: Course) -> None:
        try:
            async with self._session.begin_nested():
                self._session.add(
                    CourseRow(
                        id=course.id,
                        slug=course.slug,
                        title=course.title,
                        price=course.price,
                        status=course.status,
                        max_students=course.max_students,
                        total_students=course.total_students,
                    )
                )
                await self._session.flush()
        except IntegrityError:
            raise DuplicateKeyError("slug already exists") from None

    async def list_all(self, status: str | None = None) -> list[Course]:
        stmt = select(CourseRow).order_by(CourseRow.slug)
        if status is not None:
            stmt = stmt.where(CourseRow.status == status)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_course(r) for r in rows]


class PgEnrollmentRepo:
    """Insert + seat increment in one savepoint.

    The increment is conditional (``total_students < max_students``), so
    two requests racing for the last seat cannot both succeed; the
    unique (user_id, course_id) constraint catches double enrollment.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str, course_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.user_id == user_id,
            EnrollmentRow.course_id == course_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_enrollment(row)

    async def enroll(self, enrollment: Enrollment) -> None:
        try:
            async with self._session.begin_nested():
                self._session.add(_enrollment_to_row(enrollment))
                await self._session.flush()

                result = await self._session.execute(
                    update(CourseRow)
                    .where(
                        CourseRow.id == enrollment.course_id,
                        or_(
                            CourseRow.max_students.is_(None),
                            CourseRow.total_students < CourseRow.max_students,
                        ),
                    )
                    .values(total_students=CourseRow.total_students + 1)
                )
                if result.rowcount == 0:
                    raise CapacityExceededError("course is full")
        except IntegrityError:
            raise DuplicateKeyError("user is already enrolled in this course") from None

    async def list_by_course(self, course_id: UUID) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.course_id == course_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]

    async def list_by_user(self, user_id: str) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.user_id == user_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]

    async def list_by_group(self, group_id: UUID) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.group_id == group_id)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        slug=row.slug,
        title=row.title,
        price=row.price,
        status=row.status,
        max_students=row.max_students,
        total_students=row.total_students,
    )


def _enrollment_to_row(e: Enrollment) -> EnrollmentRow:
    return EnrollmentRow(
        id=e.id,
        user_id=e.user_id,
        course_id=e.course_id,
        group_id=e.group_id,
        order_id=e.order_id,
        certificate_id=e.certificate_id,
        enrollment_date=e.enrollment_date,
        status=e.status,
        progress_percentage=e.progress_percentage,
        original_price=e.original_price,
        amount=e.amount,
        discount_applied=e.discount_applied,
        discount_percentage=e.discount_percentage,
        payment_method=e.payment_method,
        payment_status=e.payment_status,
        notes=e.notes,
    )


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        user_id=row.user_id,
        course_id=row.course_id,
        group_id=row.group_id,
        order_id=row.order_id,
        certificate_id=row.certificate_id,
        enrollment_date=row.enrollment_date,
        status=row.status,
        progress_percentage=row.progress_percentage,
        original_price=row.original_price,
        amount=row.amount,
        discount_applied=row.discount_applied,
        discount_percentage=row.discount_percentage,
        payment_method=row.payment_method,
        payment_status=row.payment_status,
        notes=row.notes,
    )
