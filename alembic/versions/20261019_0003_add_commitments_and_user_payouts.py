"""add commitment payments and user payouts

Revision ID: 20261019_0003
Revises: 20261001_0002
Create Date: 2026-10-19 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0003"
down_revision: Union[str, None] = "20261001_0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "commitment_payments"):
        op.create_table(
            "commitment_payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=True),
            sa.Column("route_type", sa.String(length=30), nullable=False),
            sa.Column("customer_name", sa.String(length=120), nullable=True),
            sa.Column("whatsapp_number", sa.String(length=40), nullable=True),
            sa.Column("context", sa.Text(), nullable=True),
            sa.Column("method", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("provider_ref", sa.String(length=120), nullable=False),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("provider_ref"),
        )
        op.create_index("ix_commitment_payments_user_id", "commitment_payments", ["user_id"], unique=False)

    if not _table_exists(inspector, "user_payout_accounts"):
        op.create_table(
            "user_payout_accounts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("bank_code", sa.String(length=20), nullable=False),
            sa.Column("account_number", sa.String(length=20), nullable=False),
            sa.Column("account_name", sa.String(length=120), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("recipient_code", sa.String(length=80), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id"),
        )

    if not _table_exists(inspector, "user_payout_requests"):
        op.create_table(
            "user_payout_requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("amount_kobo", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("requested_note", sa.String(length=500), nullable=True),
            sa.Column("admin_note", sa.String(length=500), nullable=True),
            sa.Column("approved_by_user_id", sa.String(length=36), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("transfer_reference", sa.String(length=120), nullable=True),
            sa.Column("transfer_code", sa.String(length=80), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_user_payout_requests_user_id", "user_payout_requests", ["user_id"], unique=False)
        op.create_index(
            "ix_user_payout_requests_user_status",
            "user_payout_requests",
            ["user_id", "status"],
            unique=False,
        )


def downgrade() -> None:
    for table_name in ("user_payout_requests", "user_payout_accounts", "commitment_payments"):
        op.drop_table(table_name)
