"""create commerce tables

Revision ID: 3b7e2c91d4a0
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e2c91d4a0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("group_code", sa.String(32), nullable=False, unique=True),
        sa.Column("type", sa.String(16), nullable=False, server_default="Regular"),
        sa.Column("status", sa.String(16), nullable=False, server_default="Active"),
        sa.Column("leader_id", sa.String(320), nullable=False),
        sa.Column("max_members", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("current_member_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("centralized_billing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_approve_members", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "current_discount_percentage", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("total_enrollments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_savings", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "current_member_count <= max_members", name="ck_groups_member_capacity"
        ),
    )
    op.create_index("ix_groups_leader_id", "groups", ["leader_id"])

    op.create_table(
        "group_members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "group_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("groups.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(320), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Active"),
        sa.Column("role", sa.String(16), nullable=False, server_default="Member"),
        sa.Column("can_approve_members", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("join_date", sa.Integer(), nullable=False),
        sa.Column("removed_date", sa.Integer(), nullable=True),
        sa.Column("enrollments_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_courses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_savings", sa.BigInteger(), nullable=False, server_default="0"),
        sa.UniqueConstraint("group_id", "user_id"),
    )

    op.create_table(
        "courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Draft"),
        sa.Column("max_students", sa.Integer(), nullable=True),
        sa.Column("total_students", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "max_students IS NULL OR total_students <= max_students",
            name="ck_courses_capacity",
        ),
    )

    op.create_table(
        "enrollments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(320), nullable=False),
        sa.Column(
            "course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False
        ),
        sa.Column(
            "group_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("groups.id"), nullable=True
        ),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("certificate_id", sa.String(64), nullable=True),
        sa.Column("enrollment_date", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="Active"),
        sa.Column("progress_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("original_price", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("discount_applied", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("discount_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(16), nullable=False, server_default="individual"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="unpaid"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("user_id", "course_id"),
    )
    op.create_index("ix_enrollments_group_id", "enrollments", ["group_id"])

    op.create_table(
        "wallets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(320), nullable=False, unique=True),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="IRR"),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_transaction_at", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "wallet_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("wallets.id"), nullable=False
        ),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_before", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="completed"),
        sa.Column("reference_id", sa.String(128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.UniqueConstraint("wallet_id", "reference_id"),
        sa.UniqueConstraint("wallet_id", "sequence"),
        sa.CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
    )

    op.create_table(
        "payment_authorities",
        sa.Column("authority", sa.String(64), primary_key=True),
        sa.Column(
            "wallet_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("wallets.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(320), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ref_id", sa.String(64), nullable=True),
        sa.Column("card_pan", sa.String(32), nullable=True),
        sa.Column(
            "wallet_transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("wallet_transactions.id"),
            nullable=True,
        ),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("verified_at", sa.Integer(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("payment_authorities")
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_index("ix_enrollments_group_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_table("courses")
    op.drop_table("group_members")
    op.drop_index("ix_groups_leader_id", table_name="groups")
    op.drop_table("groups")
