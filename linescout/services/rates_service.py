import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linescout.core.currencies import SUPPORTED_CURRENCY_CODES, normalize_currency_code
from linescout.core.money import to_decimal, to_money
from linescout.models.rates import FxRate, PlatformSettings, ShippingCompany, ShippingRate, ShippingType
from linescout.services.quote_calculator import SHIPPING_RATE_UNITS

DEFAULT_PLATFORM_SETTINGS = {
    "commitment_due_ngn": Decimal("0"),
    "agent_percent": Decimal("5"),
    "agent_commitment_percent": Decimal("40"),
    "markup_percent": Decimal("20"),
    "exchange_rate_rmb": Decimal("0"),
    "exchange_rate_usd": Decimal("0"),
}


def get_platform_settings(db: Session) -> PlatformSettings:
    """Latest settings row; the defaults are written on first read."""
    row = db.execute(
        select(PlatformSettings)
        .order_by(PlatformSettings.created_at.desc(), PlatformSettings.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if row:
        return row
    row = PlatformSettings(id=str(uuid.uuid4()), **DEFAULT_PLATFORM_SETTINGS)
    db.add(row)
    db.flush()
    return row


def update_platform_settings(db: Session, *, actor_user_id: str, changes: dict) -> PlatformSettings:
    current = get_platform_settings(db)
    values = {field: getattr(current, field) for field in DEFAULT_PLATFORM_SETTINGS}
    for field, value in changes.items():
        if field not in DEFAULT_PLATFORM_SETTINGS or value is None:
            continue
        if to_decimal(value) < 0:
            raise ValueError(f"{field} cannot be negative")
        values[field] = to_decimal(value)
    current.commitment_due_ngn = values["commitment_due_ngn"]
    current.agent_percent = values["agent_percent"]
    current.agent_commitment_percent = values["agent_commitment_percent"]
    current.markup_percent = values["markup_percent"]
    current.exchange_rate_rmb = values["exchange_rate_rmb"]
    current.exchange_rate_usd = values["exchange_rate_usd"]
    current.updated_by_user_id = actor_user_id
    db.flush()
    return current


def get_fx_rate(db: Session, base_currency: str, quote_currency: str) -> Decimal | None:
    base = normalize_currency_code(base_currency)
    quote = normalize_currency_code(quote_currency)
    if not base or not quote:
        return None
    if base == quote:
        return Decimal("1")

    row = db.execute(
        select(FxRate)
        .where(FxRate.base_currency == base, FxRate.quote_currency == quote)
        .order_by(FxRate.effective_at.desc(), FxRate.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if not row:
        return None
    rate = to_decimal(row.rate)
    return rate if rate > 0 else None


def convert_amount(
    db: Session, amount: Decimal | int | float | str, from_currency: str, to_currency: str
) -> Decimal | None:
    value = to_decimal(amount)
    if value <= 0:
        return None
    source = normalize_currency_code(from_currency)
    target = normalize_currency_code(to_currency)
    if not source or not target:
        return None
    if source == target:
        return value
    rate = get_fx_rate(db, source, target)
    if rate is None:
        return None
    return to_money(value * rate)


def get_active_shipping_rate(db: Session, shipping_type_id: str | None) -> ShippingRate | None:
    if not shipping_type_id:
        return None
    return db.execute(
        select(ShippingRate)
        .join(ShippingType, ShippingType.id == ShippingRate.shipping_type_id)
        .where(
            ShippingRate.shipping_type_id == shipping_type_id,
            ShippingRate.is_active.is_(True),
            ShippingType.is_active.is_(True),
        )
        .order_by(ShippingRate.created_at.desc(), ShippingRate.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_fx_rate(
    db: Session,
    *,
    base_currency: str,
    quote_currency: str,
    rate: Decimal,
    effective_at: datetime | None,
    actor_user_id: str | None,
) -> FxRate:
    base = normalize_currency_code(base_currency)
    quote = normalize_currency_code(quote_currency)
    if base not in SUPPORTED_CURRENCY_CODES or quote not in SUPPORTED_CURRENCY_CODES:
        raise ValueError(f"Currencies must be one of: {', '.join(sorted(SUPPORTED_CURRENCY_CODES))}")
    if base == quote:
        raise ValueError("Base and quote currency must differ")
    value = to_decimal(rate)
    if value <= 0:
        raise ValueError("Rate must be greater than 0")
    row = FxRate(
        id=str(uuid.uuid4()),
        base_currency=base,
        quote_currency=quote,
        rate=value,
        effective_at=effective_at or datetime.now(timezone.utc),
        created_by_user_id=actor_user_id,
    )
    db.add(row)
    db.flush()
    return row


def list_fx_rates(db: Session, *, limit: int = 100) -> list[FxRate]:
    return db.execute(
        select(FxRate).order_by(FxRate.effective_at.desc(), FxRate.created_at.desc()).limit(limit)
    ).scalars().all()


def create_shipping_type(db: Session, *, name: str) -> ShippingType:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("name is required")
    exists = db.execute(
        select(ShippingType.id).where(func.lower(ShippingType.name) == cleaned.lower())
    ).scalar_one_or_none()
    if exists:
        raise ValueError("Shipping type already exists")
    row = ShippingType(id=str(uuid.uuid4()), name=cleaned, is_active=True)
    db.add(row)
    db.flush()
    return row


def list_shipping_types(db: Session, *, active_only: bool = False) -> list[ShippingType]:
    stmt = select(ShippingType)
    if active_only:
        stmt = stmt.where(ShippingType.is_active.is_(True))
    return db.execute(stmt.order_by(ShippingType.name.asc())).scalars().all()


def create_shipping_rate(
    db: Session,
    *,
    shipping_type_id: str,
    rate_value: Decimal,
    rate_unit: str,
    currency: str = "USD",
) -> ShippingRate:
    """Adds a rate for the type; it supersedes older active rates because lookups take the newest."""
    if db.get(ShippingType, shipping_type_id) is None:
        raise LookupError("Shipping type not found")
    value = to_decimal(rate_value)
    if value <= 0:
        raise ValueError("Shipping rate must be greater than 0")
    unit = (rate_unit or "").strip().lower()
    if unit not in SHIPPING_RATE_UNITS:
        raise ValueError(f"rate_unit must be one of: {', '.join(SHIPPING_RATE_UNITS)}")
    row = ShippingRate(
        id=str(uuid.uuid4()),
        shipping_type_id=shipping_type_id,
        rate_value=value,
        rate_unit=unit,
        currency=normalize_currency_code(currency) or "USD",
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.flush()
    return row


def set_shipping_rate_active(db: Session, rate_id: str, *, is_active: bool) -> ShippingRate:
    row = db.get(ShippingRate, rate_id)
    if row is None:
        raise LookupError("Shipping rate not found")
    row.is_active = is_active
    db.flush()
    return row


def list_shipping_rates(db: Session, *, shipping_type_id: str | None = None) -> list[ShippingRate]:
    stmt = select(ShippingRate)
    if shipping_type_id:
        stmt = stmt.where(ShippingRate.shipping_type_id == shipping_type_id)
    return db.execute(stmt.order_by(ShippingRate.created_at.desc(), ShippingRate.id.desc())).scalars().all()


def create_shipping_company(db: Session, *, name: str, contact_phone: str | None) -> ShippingCompany:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("name is required")
    exists = db.execute(
        select(ShippingCompany.id).where(func.lower(ShippingCompany.name) == cleaned.lower())
    ).scalar_one_or_none()
    if exists:
        raise ValueError("Shipping company already exists")
    row = ShippingCompany(
        id=str(uuid.uuid4()),
        name=cleaned,
        contact_phone=(contact_phone or "").strip() or None,
        is_active=True,
    )
    db.add(row)
    db.flush()
    return row


def list_shipping_companies(db: Session, *, active_only: bool = False) -> list[ShippingCompany]:
    stmt = select(ShippingCompany)
    if active_only:
        stmt = stmt.where(ShippingCompany.is_active.is_(True))
    return db.execute(stmt.order_by(ShippingCompany.name.asc())).scalars().all()
