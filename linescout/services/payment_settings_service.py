import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.core.config import settings
from linescout.models.payments import PaymentProviderOverride, PaymentSettings
from linescout.services.payment_provider import PAYMENT_PROVIDER_NAMES


@dataclass(frozen=True)
class ProviderSelection:
    provider: str
    allow_overrides: bool


def normalize_provider(value: str | None) -> str | None:
    normalized = (value or "").strip().lower()
    return normalized if normalized in PAYMENT_PROVIDER_NAMES else None


def get_payment_settings(db: Session) -> PaymentSettings | None:
    return db.execute(
        select(PaymentSettings).order_by(PaymentSettings.created_at.desc(), PaymentSettings.id.desc()).limit(1)
    ).scalar_one_or_none()


def update_payment_settings(
    db: Session, *, actor_user_id: str, provider_default: str, allow_overrides: bool
) -> PaymentSettings:
    provider = normalize_provider(provider_default)
    if not provider:
        raise ValueError(f"provider_default must be one of: {', '.join(PAYMENT_PROVIDER_NAMES)}")
    row = get_payment_settings(db)
    if not row:
        row = PaymentSettings(id=str(uuid.uuid4()))
        db.add(row)
    row.provider_default = provider
    row.allow_overrides = allow_overrides
    row.updated_by_user_id = actor_user_id
    db.flush()
    return row


def set_provider_override(db: Session, *, owner_type: str, owner_id: str, provider: str) -> PaymentProviderOverride:
    normalized = normalize_provider(provider)
    if not normalized:
        raise ValueError(f"provider must be one of: {', '.join(PAYMENT_PROVIDER_NAMES)}")
    override = db.execute(
        select(PaymentProviderOverride).where(
            PaymentProviderOverride.owner_type == owner_type,
            PaymentProviderOverride.owner_id == owner_id,
        )
    ).scalar_one_or_none()
    if not override:
        override = PaymentProviderOverride(id=str(uuid.uuid4()), owner_type=owner_type, owner_id=owner_id)
        db.add(override)
    override.provider = normalized
    db.flush()
    return override


def clear_provider_override(db: Session, *, owner_type: str, owner_id: str) -> bool:
    override = db.execute(
        select(PaymentProviderOverride).where(
            PaymentProviderOverride.owner_type == owner_type,
            PaymentProviderOverride.owner_id == owner_id,
        )
    ).scalar_one_or_none()
    if not override:
        return False
    db.delete(override)
    db.flush()
    return True


def select_payment_provider(db: Session, *, owner_type: str, owner_id: str | None) -> ProviderSelection:
    """Settings default, then the owner's override when overrides are allowed, then Paystack."""
    provider = normalize_provider(settings.payment_provider_default)
    allow_overrides = True

    row = get_payment_settings(db)
    if row:
        provider = normalize_provider(row.provider_default) or provider
        allow_overrides = bool(row.allow_overrides)

    if allow_overrides and owner_id:
        override = db.execute(
            select(PaymentProviderOverride.provider).where(
                PaymentProviderOverride.owner_type == owner_type,
                PaymentProviderOverride.owner_id == owner_id,
            )
        ).scalar_one_or_none()
        provider = normalize_provider(override) or provider

    return ProviderSelection(provider=provider or "paystack", allow_overrides=allow_overrides)
