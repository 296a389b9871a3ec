"""add quotes, wallets, and payouts

Revision ID: 20261001_0002
Revises: 20261001_0001
Create Date: 2026-10-01 09:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_0002"
down_revision: Union[str, None] = "20261001_0001"
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

    if not _table_exists(inspector, "quotes"):
        op.create_table(
            "quotes",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=False),
            sa.Column("token", sa.String(length=40), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("payment_purpose", sa.String(length=30), nullable=True),
            sa.Column("exchange_rate_rmb", sa.Numeric(18, 6), nullable=False),
            sa.Column("exchange_rate_usd", sa.Numeric(18, 6), nullable=False),
            sa.Column("shipping_type_id", sa.String(length=36), nullable=True),
            sa.Column("shipping_rate_usd", sa.Numeric(14, 4), nullable=False),
            sa.Column("shipping_rate_unit", sa.String(length=10), nullable=False),
            sa.Column("markup_percent", sa.Numeric(6, 2), nullable=False),
            sa.Column("agent_percent", sa.Numeric(6, 2), nullable=True),
            sa.Column("agent_commitment_percent", sa.Numeric(6, 2), nullable=True),
            sa.Column("commitment_due_ngn", sa.Numeric(14, 2), nullable=False),
            sa.Column("deposit_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("deposit_percent", sa.Numeric(6, 2), nullable=True),
            sa.Column("agent_note", sa.Text(), nullable=True),
            sa.Column("items_json", sa.JSON(), nullable=False),
            sa.Column("total_product_rmb", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_product_ngn", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_weight_kg", sa.Numeric(14, 4), nullable=False),
            sa.Column("total_cbm", sa.Numeric(14, 4), nullable=False),
            sa.Column("total_shipping_usd", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_shipping_ngn", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_markup_ngn", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_due_ngn", sa.Numeric(14, 2), nullable=False),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("updated_by", sa.String(length=36), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.ForeignKeyConstraint(["shipping_type_id"], ["shipping_types.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.ForeignKeyConstraint(["updated_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_quotes_token", "quotes", ["token"], unique=True)
        op.create_index("ix_quotes_handoff_id", "quotes", ["handoff_id"], unique=False)
        op.create_index("ix_quotes_handoff_created_at", "quotes", ["handoff_id", "created_at"], unique=False)

    if not _table_exists(inspector, "quote_payments"):
        op.create_table(
            "quote_payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("quote_id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=True),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("purpose", sa.String(length=30), nullable=False),
            sa.Column("method", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("provider_ref", sa.String(length=120), nullable=True),
            sa.Column("shipping_type_id", sa.String(length=36), nullable=True),
            _created_at(),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["quote_id"], ["quotes.id"]),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["shipping_type_id"], ["shipping_types.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("provider_ref"),
        )
        op.create_index("ix_quote_payments_quote_id", "quote_payments", ["quote_id"], unique=False)
        op.create_index("ix_quote_payments_handoff_id", "quote_payments", ["handoff_id"], unique=False)
        op.create_index("ix_quote_payments_user_id", "quote_payments", ["user_id"], unique=False)
        op.create_index("ix_quote_payments_quote_status", "quote_payments", ["quote_id", "status"], unique=False)
        op.create_index(
            "ix_quote_payments_user_method_status",
            "quote_payments",
            ["user_id", "method", "status"],
            unique=False,
        )

    if not _table_exists(inspector, "handoff_payments"):
        op.create_table(
            "handoff_payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=False),
            sa.Column("purpose", sa.String(length=30), nullable=False),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("note", sa.String(length=500), nullable=True),
            sa.Column("quote_payment_id", sa.String(length=36), nullable=True),
            sa.Column("recorded_by_user_id", sa.String(length=36), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            _created_at(),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.ForeignKeyConstraint(["quote_payment_id"], ["quote_payments.id"]),
            sa.ForeignKeyConstraint(["recorded_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_handoff_payments_handoff_id", "handoff_payments", ["handoff_id"], unique=False)
        op.create_index(
            "ix_handoff_payments_quote_payment_id",
            "handoff_payments",
            ["quote_payment_id"],
            unique=False,
        )

    if not _table_exists(inspector, "wallets"):
        op.create_table(
            "wallets",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_type", sa.String(length=10), nullable=False),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("balance", sa.Numeric(14, 2), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("owner_type", "owner_id", name="uq_wallets_owner"),
        )

    if not _table_exists(inspector, "wallet_transactions"):
        op.create_table(
            "wallet_transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("wallet_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=10), nullable=False),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("reason", sa.String(length=80), nullable=False),
            sa.Column("reference_type", sa.String(length=40), nullable=True),
            sa.Column("reference_id", sa.String(length=120), nullable=True),
            sa.Column("meta_json", sa.JSON(), nullable=True),
            sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["wallet_id"], ["wallets.id"]),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"], unique=False)
        op.create_index(
            "ix_wallet_transactions_reference",
            "wallet_transactions",
            ["reference_type", "reference_id"],
            unique=False,
        )
        op.create_index(
            "ix_wallet_transactions_wallet_created_at",
            "wallet_transactions",
            ["wallet_id", "created_at"],
            unique=False,
        )

    if not _table_exists(inspector, "virtual_accounts"):
        op.create_table(
            "virtual_accounts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_type", sa.String(length=10), nullable=False),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=20), nullable=False),
            sa.Column("account_number", sa.String(length=20), nullable=False),
            sa.Column("account_name", sa.String(length=120), nullable=True),
            sa.Column("bank_name", sa.String(length=80), nullable=True),
            sa.Column("provider_ref", sa.String(length=120), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("provider", "account_number", name="uq_virtual_accounts_provider_account"),
            sa.UniqueConstraint("owner_type", "owner_id", "provider", name="uq_virtual_accounts_owner_provider"),
        )

    if not _table_exists(inspector, "provider_transactions"):
        op.create_table(
            "provider_transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=20), nullable=False),
            sa.Column("provider_ref", sa.String(length=120), nullable=False),
            sa.Column("owner_type", sa.String(length=10), nullable=True),
            sa.Column("owner_id", sa.String(length=36), nullable=True),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("raw_payload", sa.JSON(), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("provider", "provider_ref", name="uq_provider_transactions_provider_ref"),
        )

    if not _table_exists(inspector, "payment_settings"):
        op.create_table(
            "payment_settings",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("provider_default", sa.String(length=20), nullable=False),
            sa.Column("allow_overrides", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("updated_by_user_id", sa.String(length=36), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "payment_provider_overrides"):
        op.create_table(
            "payment_provider_overrides",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_type", sa.String(length=10), nullable=False),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=20), nullable=False),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("owner_type", "owner_id", name="uq_payment_provider_overrides_owner"),
        )

    if not _table_exists(inspector, "payout_accounts"):
        op.create_table(
            "payout_accounts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("agent_id", sa.String(length=36), nullable=False),
            sa.Column("bank_code", sa.String(length=20), nullable=False),
            sa.Column("account_number", sa.String(length=20), nullable=False),
            sa.Column("account_name", sa.String(length=120), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("recipient_code", sa.String(length=80), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["agent_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("agent_id"),
        )

    if not _table_exists(inspector, "payout_requests"):
        op.create_table(
            "payout_requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("agent_id", sa.String(length=36), nullable=False),
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
            sa.ForeignKeyConstraint(["agent_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["approved_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_payout_requests_agent_id", "payout_requests", ["agent_id"], unique=False)
        op.create_index("ix_payout_requests_agent_status", "payout_requests", ["agent_id", "status"], unique=False)

    if not _table_exists(inspector, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("target", sa.String(length=10), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=160), nullable=False),
            sa.Column("body", sa.String(length=1000), nullable=False),
            sa.Column("data_json", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_notifications_user_read_created",
            "notifications",
            ["user_id", "is_read", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    for table_name in (
        "notifications",
        "payout_requests",
        "payout_accounts",
        "payment_provider_overrides",
        "payment_settings",
        "provider_transactions",
        "virtual_accounts",
        "wallet_transactions",
        "wallets",
        "handoff_payments",
        "quote_payments",
        "quotes",
    ):
        op.drop_table(table_name)
