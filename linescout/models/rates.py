from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from linescout.db.base import Base


class PlatformSettings(Base):
    """Commercial defaults. The newest row is in effect."""

    __tablename__ = "platform_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    commitment_due_ngn: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    agent_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=5)
    agent_commitment_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=40)
    markup_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=20)
    exchange_rate_rmb: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    exchange_rate_usd: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    updated_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class FxRate(Base):
    __tablename__ = "fx_rates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    quote_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_fx_rates_pair_effective_at", "base_currency", "quote_currency", "effective_at"),
    )


class ShippingType(Base):
    __tablename__ = "shipping_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ShippingRate(Base):
    __tablename__ = "shipping_rates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    shipping_type_id: Mapped[str] = mapped_column(String(36), ForeignKey("shipping_types.id"), index=True)
    rate_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    # per_kg | per_cbm
    rate_unit: Mapped[str] = mapped_column(String(10), nullable=False, default="per_kg")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_shipping_rates_type_active", "shipping_type_id", "is_active"),
    )


class ShippingCompany(Base):
    __tablename__ = "shipping_companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
