from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.enrollment import Enrollment
from app.repos.course_repo import InMemoryCourseRepo
from app.repos.exceptions import CapacityExceededError, DuplicateKeyError


class EnrollmentRepo(Protocol):
    async def get(self, user_id: str, course_id: UUID) -> Enrollment | None: ...
    async def enroll(self, enrollment: Enrollment) -> None:
        """Insert the enrollment and take a course seat as one unit.

        Raises DuplicateKeyError if (user_id, course_id) exists and
        CapacityExceededError if the course has no seat left; neither
        leaves a partial write behind.
        """
        ...

    async def list_by_course(self, course_id: UUID) -> list[Enrollment]: ...
    async def list_by_user(self, user_id: str) -> list[Enrollment]: ...
    async def list_by_group(self, group_id: UUID) -> list[Enrollment]: ...


class InMemoryEnrollmentRepo:
    """Shares the course store so the seat counter moves with the insert."""

    def __init__(self, courses: InMemoryCourseRepo) -> None:
        self._courses = courses
        self._store: dict[tuple[str, UUID], Enrollment] = {}

    def clear(self) -> None:
        self._store.clear()

    async def get(self, user_id: str, course_id: UUID) -> Enrollment | None:
        return self._store.get((user_id, course_id))

    async def enroll(self, enrollment: Enrollment) -> None:
        key = (enrollment.user_id, enrollment.course_id)
        if key in self._store:
            raise DuplicateKeyError("user is already enrolled in this course")

        course = self._courses._by_id[enrollment.course_id]
        if course.is_full:
            raise CapacityExceededError("course is full")

        self._courses._by_id[course.id] = replace(
            course, total_students=course.total_students + 1
        )
        self._store[key] = enrollment

    async def list_by_course(self, course_id: UUID) -> list[Enrollment]:
        return [e for e in self._store.values() if e.course_id == course_id]

    async def list_by_user(self, user_id: str) -> list[Enrollment]:
        return [e for e in self._store.values() if e.user_id == user_id]

    async def list_by_group(self, group_id: UUID) -> list[Enrollment]:
        return [e for e in self._store.values() if e.group_id == group_id]
