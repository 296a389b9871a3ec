from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from linescout.db.base import Base


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    handoff_id: Mapped[str] = mapped_column(String(36), ForeignKey("handoffs.id"), index=True)
    token: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    # draft | sent | partially_paid | paid
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", server_default="draft")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN", server_default="NGN")
    payment_purpose: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    exchange_rate_rmb: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    exchange_rate_usd: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    shipping_type_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("shipping_types.id"), nullable=True)
    shipping_rate_usd: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    shipping_rate_unit: Mapped[str] = mapped_column(String(10), nullable=False, default="per_kg")
    markup_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=0)
    agent_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    agent_commitment_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    commitment_due_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    deposit_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deposit_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    agent_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    items_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    total_product_rmb: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_product_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_weight_kg: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=0)
    total_cbm: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=0)
    total_shipping_usd: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_shipping_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_markup_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_due_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_quotes_handoff_created_at", "handoff_id", "created_at"),
    )


class QuotePayment(Base):
    __tablename__ = "quote_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    quote_id: Mapped[str] = mapped_column(String(36), ForeignKey("quotes.id"), index=True)
    handoff_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("handoffs.id"), nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    # deposit | product_balance | full_product_payment | shipping_payment
    purpose: Mapped[str] = mapped_column(String(30), nullable=False)
    # wallet | paystack | providus | paypal
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    # pending | paid | failed | superseded
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN", server_default="NGN")
    provider_ref: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, unique=True)
    shipping_type_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("shipping_types.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_quote_payments_quote_status", "quote_id", "status"),
        Index("ix_quote_payments_user_method_status", "user_id", "method", "status"),
    )
