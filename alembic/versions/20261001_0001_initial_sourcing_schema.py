"""initial sourcing schema

Revision ID: 20261001_0001
Revises:
Create Date: 2026-10-01 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_0001"
down_revision: Union[str, None] = None
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

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=100), nullable=True),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="customer"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("is_placeholder", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_role", "users", ["role"], unique=False)
        op.create_index("ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
        op.create_index("ux_users_username_lower", "users", [sa.text("lower(username)")], unique=True)

    if not _table_exists(inspector, "refresh_tokens"):
        op.create_table(
            "refresh_tokens",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("token_jti", sa.String(length=36), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("revoked_reason", sa.String(length=30), nullable=True),
            sa.Column("replaced_by_jti", sa.String(length=36), nullable=True),
            sa.Column("created_by_ip", sa.String(length=64), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"], unique=False)
        op.create_index("ix_refresh_tokens_token_jti", "refresh_tokens", ["token_jti"], unique=True)
        op.create_index(
            "ix_refresh_tokens_user_revoked_expires",
            "refresh_tokens",
            ["user_id", "revoked_at", "expires_at"],
            unique=False,
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"], unique=False)
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
        op.create_index("ix_audit_logs_action_created_at", "audit_logs", ["action", "created_at"], unique=False)
        op.create_index("ix_audit_logs_target", "audit_logs", ["target_type", "target_id"], unique=False)

    if not _table_exists(inspector, "platform_settings"):
        op.create_table(
            "platform_settings",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("commitment_due_ngn", sa.Numeric(14, 2), nullable=False),
            sa.Column("agent_percent", sa.Numeric(6, 2), nullable=False),
            sa.Column("agent_commitment_percent", sa.Numeric(6, 2), nullable=False),
            sa.Column("markup_percent", sa.Numeric(6, 2), nullable=False),
            sa.Column("exchange_rate_rmb", sa.Numeric(18, 6), nullable=False),
            sa.Column("exchange_rate_usd", sa.Numeric(18, 6), nullable=False),
            sa.Column("updated_by_user_id", sa.String(length=36), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["updated_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "fx_rates"):
        op.create_table(
            "fx_rates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("base_currency", sa.String(length=3), nullable=False),
            sa.Column("quote_currency", sa.String(length=3), nullable=False),
            sa.Column("rate", sa.Numeric(18, 6), nullable=False),
            sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by_user_id", sa.String(length=36), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_fx_rates_pair_effective_at",
            "fx_rates",
            ["base_currency", "quote_currency", "effective_at"],
            unique=False,
        )

    if not _table_exists(inspector, "shipping_types"):
        op.create_table(
            "shipping_types",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=80), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if not _table_exists(inspector, "shipping_rates"):
        op.create_table(
            "shipping_rates",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("shipping_type_id", sa.String(length=36), nullable=False),
            sa.Column("rate_value", sa.Numeric(14, 4), nullable=False),
            sa.Column("rate_unit", sa.String(length=10), nullable=False, server_default="per_kg"),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["shipping_type_id"], ["shipping_types.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shipping_rates_shipping_type_id", "shipping_rates", ["shipping_type_id"], unique=False)
        op.create_index(
            "ix_shipping_rates_type_active",
            "shipping_rates",
            ["shipping_type_id", "is_active"],
            unique=False,
        )

    if not _table_exists(inspector, "shipping_companies"):
        op.create_table(
            "shipping_companies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("contact_phone", sa.String(length=40), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if not _table_exists(inspector, "handoffs"):
        op.create_table(
            "handoffs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("token", sa.String(length=40), nullable=False),
            sa.Column("route_type", sa.String(length=30), nullable=False, server_default="machine_sourcing"),
            sa.Column("customer_user_id", sa.String(length=36), nullable=True),
            sa.Column("customer_name", sa.String(length=120), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("whatsapp_number", sa.String(length=40), nullable=True),
            sa.Column("context", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("assigned_agent_id", sa.String(length=36), nullable=True),
            sa.Column("claimed_by", sa.String(length=120), nullable=True),
            sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("manufacturer_found_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("bank_id", sa.String(length=36), nullable=True),
            sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("shipper", sa.String(length=120), nullable=True),
            sa.Column("shipping_company_id", sa.String(length=36), nullable=True),
            sa.Column("tracking_number", sa.String(length=120), nullable=True),
            sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancel_reason", sa.String(length=500), nullable=True),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["customer_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["assigned_agent_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["shipping_company_id"], ["shipping_companies.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_handoffs_token", "handoffs", ["token"], unique=True)
        op.create_index("ix_handoffs_customer_user_id", "handoffs", ["customer_user_id"], unique=False)
        op.create_index("ix_handoffs_assigned_agent_id", "handoffs", ["assigned_agent_id"], unique=False)
        op.create_index("ix_handoffs_status_created_at", "handoffs", ["status", "created_at"], unique=False)

    if not _table_exists(inspector, "handoff_financials"):
        op.create_table(
            "handoff_financials",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="NGN"),
            sa.Column("total_due", sa.Numeric(14, 2), nullable=False),
            _created_at(),
            _updated_at(),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("handoff_id"),
        )

    if not _table_exists(inspector, "handoff_claim_audits"):
        op.create_table(
            "handoff_claim_audits",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=False),
            sa.Column("claimed_by_id", sa.String(length=36), nullable=True),
            sa.Column("claimed_by_name", sa.String(length=120), nullable=True),
            sa.Column("claimed_by_role", sa.String(length=32), nullable=True),
            sa.Column("previous_status", sa.String(length=32), nullable=True),
            sa.Column("new_status", sa.String(length=32), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.ForeignKeyConstraint(["claimed_by_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_handoff_claim_audits_handoff_id", "handoff_claim_audits", ["handoff_id"], unique=False)
        op.create_index("ix_handoff_claim_audits_created_at", "handoff_claim_audits", ["created_at"], unique=False)

    if not _table_exists(inspector, "handoff_status_events"):
        op.create_table(
            "handoff_status_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("handoff_id", sa.String(length=36), nullable=False),
            sa.Column("previous_status", sa.String(length=32), nullable=False),
            sa.Column("new_status", sa.String(length=32), nullable=False),
            sa.Column("changed_by_user_id", sa.String(length=36), nullable=True),
            sa.Column("note", sa.String(length=500), nullable=True),
            _created_at(),
            sa.ForeignKeyConstraint(["handoff_id"], ["handoffs.id"]),
            sa.ForeignKeyConstraint(["changed_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_handoff_status_events_handoff_id", "handoff_status_events", ["handoff_id"], unique=False)


def downgrade() -> None:
    for table_name in (
        "handoff_status_events",
        "handoff_claim_audits",
        "handoff_financials",
        "handoffs",
        "shipping_companies",
        "shipping_rates",
        "shipping_types",
        "fx_rates",
        "platform_settings",
        "audit_logs",
        "refresh_tokens",
        "users",
    ):
        op.drop_table(table_name)
