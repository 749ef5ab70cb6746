from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

ENROLLMENT_STATUSES = ("Active", "Pending", "Completed", "Suspended", "Cancelled")


@dataclass(frozen=True, slots=True)
class Enrollment:
    """A user's seat in a course.  Never hard-deleted; status moves instead."""

    id: UUID
    user_id: str
    course_id: UUID
    enrollment_date: int
    original_price: int
    amount: int  # price actually charged
    status: str = "Active"
    group_id: UUID | None = None
    order_id: str | None = None
    certificate_id: str | None = None
    progress_percentage: int = 0
    discount_applied: int = 0
    discount_percentage: int = 0
    payment_method: str = "individual"  # individual|centralized|wallet
    payment_status: str = "unpaid"  # unpaid|pending|paid
    notes: str | None = None

    @staticmethod
    def new(
        *,
        user_id: str,
        course_id: UUID,
        now: int,
        original_price: int,
        amount: int,
        discount_percentage: int = 0,
        group_id: UUID | None = None,
        payment_method: str = "individual",
        payment_status: str = "unpaid",
        notes: str | None = None,
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            user_id=user_id,
            course_id=course_id,
            enrollment_date=now,
            original_price=original_price,
            amount=amount,
            group_id=group_id,
            discount_applied=original_price - amount,
            discount_percentage=discount_percentage,
            payment_method=payment_method,
            payment_status=payment_status,
            notes=notes,
        )
