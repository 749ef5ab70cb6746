from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

COURSE_STATUSES = ("Draft", "Active", "Archived", "Sold_Out")


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    price: int  # IRR
    status: str = "Draft"  # Draft|Active|Archived|Sold_Out
    max_students: int | None = None  # None = unlimited
    total_students: int = 0

    @property
    def is_full(self) -> bool:
        return self.max_students is not None and self.total_students >= self.max_students

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        price: int,
        status: str = "Draft",
        max_students: int | None = None,
    ) -> Course:
        return Course(
            id=uuid4(),
            slug=slug,
            title=title,
            price=price,
            status=status,
            max_students=max_students,
        )
