from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.course import Course
from app.repos.exceptions import DuplicateKeyError


class CourseRepo(Protocol):
    async def get(self, course_id: UUID) -> Course | None: ...
    async def get_by_slug(self, slug: str) -> Course | None: ...
    async def add(self, course: Course) -> None: ...
    async def list_all(self, status: str | None = None) -> list[Course]: ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Course] = {}

    def clear(self) -> None:
        self._by_id.clear()

    async def get(self, course_id: UUID) -> Course | None:
        return self._by_id.get(course_id)

    async def get_by_slug(self, slug: str) -> Course | None:
        for course in self._by_id.values():
            if course.slug == slug:
                return course
        return None

    async def add(self, course: Course) -> None:
        if any(c.slug == course.slug for c in self._by_id.values()):
            raise DuplicateKeyError("slug already exists")
        self._by_id[course.id] = course

    async def list_all(self, status: str | None = None) -> list[Course]:
        return [c for c in self._by_id.values() if status is None or c.status == status]
