"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in app/models/.
The domain models stay as-is; these tables are the persistence layer.
Repos convert between SQLAlchemy rows and domain dataclasses.

Users live in the platform's identity service, so user ids are stored
as the opaque JWT subject string with no foreign key.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base

# --- Groups ---


class GroupRow(Base):
    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    group_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Regular"
    )  # Regular|Corporate
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Active"
    )  # Active|Inactive|Suspended|Completed
    leader_id: Mapped[str] = mapped_column(String(320), nullable=False)
    max_members: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    current_member_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    centralized_billing: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    auto_approve_members: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    current_discount_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_enrollments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_savings: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[int] = mapped_column(Integer, nullable=False)


class GroupMemberRow(Base):
    __tablename__ = "group_members"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("groups.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Active"
    )  # Active|Pending|Removed|Suspended
    role: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Member"
    )  # Member|CoLeader|Admin
    can_approve_members: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    join_date: Mapped[int] = mapped_column(Integer, nullable=False)
    removed_date: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enrollments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_courses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_savings: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("group_id", "user_id"),)


# --- Courses and enrollments ---


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Draft"
    )  # Draft|Active|Archived|Sold_Out
    max_students: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(320), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False
    )
    group_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("groups.id"), nullable=True
    )
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    certificate_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    enrollment_date: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Active"
    )  # Active|Pending|Completed|Suspended|Cancelled
    progress_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    original_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    discount_applied: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    discount_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    payment_method: Mapped[str] = mapped_column(
        String(16), nullable=False, default="individual"
    )  # individual|centralized|wallet
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="unpaid"
    )  # unpaid|pending|paid
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("user_id", "course_id"),)


# --- Wallet ledger ---


class WalletRow(Base):
    __tablename__ = "wallets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="IRR")
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active"
    )  # active|suspended|blocked
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_transaction_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)


class WalletTransactionRow(Base):
    """Append-only ledger.  Rows are never updated once completed."""

    __tablename__ = "wallet_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("wallets.id"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="completed"
    )  # pending|completed|failed|cancelled
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("wallet_id", "reference_id"),
        UniqueConstraint("wallet_id", "sequence"),
    )


# --- Payment gateway authorities ---


class PaymentAuthorityRow(Base):
    __tablename__ = "payment_authorities"

    authority: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("wallets.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(320), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )  # pending|verified|cancelled|failed
    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    card_pan: Mapped[str | None] = mapped_column(String(32), nullable=True)
    wallet_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("wallet_transactions.id"), nullable=True
    )
    created_at: Mapped[int] = mapped_column(Integer, nullable=False)
    verified_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
