"""Repository bundle handed to services through the ServiceContext.

Without DATABASE_URL every request shares the module-level in-memory
stores below; with a database each request gets PostgreSQL repos bound
to its own session.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.repos.course_repo import CourseRepo, InMemoryCourseRepo
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.group_repo import GroupRepo, InMemoryGroupRepo
from app.repos.payment_repo import InMemoryPaymentRepo, PaymentRepo
from app.repos.pg_course_repo import PgCourseRepo, PgEnrollmentRepo
from app.repos.pg_group_repo import PgGroupRepo
from app.repos.pg_payment_repo import PgPaymentRepo
from app.repos.pg_wallet_repo import PgWalletRepo
from app.repos.wallet_repo import InMemoryWalletRepo, WalletRepo


@dataclass(frozen=True, slots=True)
class Repositories:
    groups: GroupRepo
    courses: CourseRepo
    enrollments: EnrollmentRepo
    wallets: WalletRepo
    payments: PaymentRepo

    @staticmethod
    def in_memory() -> Repositories:
        return _IN_MEMORY

    @staticmethod
    def for_session(session: AsyncSession) -> Repositories:
        return Repositories(
            groups=PgGroupRepo(session),
            courses=PgCourseRepo(session),
            enrollments=PgEnrollmentRepo(session),
            wallets=PgWalletRepo(session),
            payments=PgPaymentRepo(session),
        )


# --- Module-level in-memory stores (dev/test) ---
group_repo = InMemoryGroupRepo()
course_repo = InMemoryCourseRepo()
enrollment_repo = InMemoryEnrollmentRepo(course_repo)
wallet_repo = InMemoryWalletRepo()
payment_repo = InMemoryPaymentRepo()

_IN_MEMORY = Repositories(
    groups=group_repo,
    courses=course_repo,
    enrollments=enrollment_repo,
    wallets=wallet_repo,
    payments=payment_repo,
)


def reset_in_memory() -> None:
    """Empty every in-memory store.  Used by the test suite."""
    for repo in (group_repo, course_repo, enrollment_repo, wallet_repo, payment_repo):
        repo.clear()
