from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from linescout.db.base import Base


class Handoff(Base):
    __tablename__ = "handoffs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    token: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, index=True)
    route_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="machine_sourcing",
        server_default="machine_sourcing",
    )
    customer_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    whatsapp_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending", server_default="pending")
    assigned_agent_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    claimed_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    manufacturer_found_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    bank_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipper: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    shipping_company_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("shipping_companies.id"),
        nullable=True,
    )
    tracking_number: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_handoffs_status_created_at", "status", "created_at"),
    )


class HandoffFinancial(Base):
    __tablename__ = "handoff_financials"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    handoff_id: Mapped[str] = mapped_column(String(36), ForeignKey("handoffs.id"), nullable=False, unique=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN", server_default="NGN")
    total_due: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class HandoffPayment(Base):
    __tablename__ = "handoff_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    handoff_id: Mapped[str] = mapped_column(String(36), ForeignKey("handoffs.id"), index=True)
    # commitment_fee | downpayment | full_payment | shipping_payment | additional_payment
    purpose: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN", server_default="NGN")
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    quote_payment_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("quote_payments.id"),
        nullable=True,
        index=True,
    )
    recorded_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class HandoffClaimAudit(Base):
    __tablename__ = "handoff_claim_audits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    handoff_id: Mapped[str] = mapped_column(String(36), ForeignKey("handoffs.id"), index=True)
    claimed_by_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    claimed_by_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    claimed_by_role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    previous_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    new_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class HandoffStatusEvent(Base):
    __tablename__ = "handoff_status_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    handoff_id: Mapped[str] = mapped_column(String(36), ForeignKey("handoffs.id"), index=True)
    previous_status: Mapped[str] = mapped_column(String(32), nullable=False)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CommitmentPayment(Base):
    """The upfront fee a signed-in customer pays to open a handoff; credited against the first quote."""

    __tablename__ = "commitment_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    handoff_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("handoffs.id"), nullable=True)
    route_type: Mapped[str] = mapped_column(String(30), nullable=False)
    customer_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    whatsapp_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # paystack | paypal
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    # pending | paid
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN", server_default="NGN")
    provider_ref: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
