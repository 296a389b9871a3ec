import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from linescout.core.id_utils import generate_quote_token
from linescout.core.money import to_decimal
from linescout.models.handoff import Handoff
from linescout.models.quote import Quote
from linescout.models.user import User
from linescout.services.audit_service import log_audit_event
from linescout.services.email_service import EmailDeliveryResult, send_quote_ready_email
from linescout.services.handoff_service import collected_commitment_fees, upsert_financial_total_due
from linescout.services.quote_calculator import (
    QuoteValidationError,
    compute_totals,
    parse_items,
    validate_quote_rates,
)
from linescout.services.rates_service import get_active_shipping_rate, get_platform_settings

_EDITABLE_FIELDS = (
    "currency",
    "payment_purpose",
    "exchange_rate_rmb",
    "exchange_rate_usd",
    "shipping_type_id",
    "shipping_rate_usd",
    "shipping_rate_unit",
    "markup_percent",
    "agent_percent",
    "agent_commitment_percent",
    "commitment_due_ngn",
    "deposit_enabled",
    "deposit_percent",
    "agent_note",
)


def _resolve_inputs(
    db: Session, data: dict[str, Any], existing: Quote | None, handoff_id: str | None
) -> dict[str, Any]:
    """Fills gaps from the existing quote, then platform settings and the shipping table."""
    platform = get_platform_settings(db)
    values: dict[str, Any] = {}
    for field in _EDITABLE_FIELDS:
        if data.get(field) is not None:
            values[field] = data[field]
        elif existing is not None:
            values[field] = getattr(existing, field)
        else:
            values[field] = None

    if values["exchange_rate_rmb"] is None:
        values["exchange_rate_rmb"] = platform.exchange_rate_rmb
    if values["exchange_rate_usd"] is None:
        values["exchange_rate_usd"] = platform.exchange_rate_usd
    if values["markup_percent"] is None:
        values["markup_percent"] = platform.markup_percent
    if values["agent_percent"] is None:
        values["agent_percent"] = platform.agent_percent
    if values["agent_commitment_percent"] is None:
        values["agent_commitment_percent"] = platform.agent_commitment_percent
    # The order is only credited with commitment fees actually collected on the handoff.
    collected = collected_commitment_fees(db, handoff_id)
    if values["commitment_due_ngn"] is None or to_decimal(values["commitment_due_ngn"]) > collected:
        values["commitment_due_ngn"] = collected

    type_selected = data.get("shipping_type_id") is not None and data.get("shipping_rate_usd") is None
    if values["shipping_type_id"] and (values["shipping_rate_usd"] is None or type_selected):
        rate = get_active_shipping_rate(db, values["shipping_type_id"])
        if rate is None:
            raise QuoteValidationError("No active shipping rate for the selected shipping type")
        values["shipping_rate_usd"] = rate.rate_value
        values["shipping_rate_unit"] = data.get("shipping_rate_unit") or rate.rate_unit

    values["currency"] = (values["currency"] or "NGN").upper()
    values["shipping_rate_unit"] = values["shipping_rate_unit"] or "per_kg"
    values["deposit_enabled"] = bool(values["deposit_enabled"])
    for field in (
        "exchange_rate_rmb",
        "exchange_rate_usd",
        "shipping_rate_usd",
        "markup_percent",
        "agent_percent",
        "agent_commitment_percent",
        "commitment_due_ngn",
    ):
        values[field] = to_decimal(values[field])
    if values["deposit_percent"] is not None:
        values["deposit_percent"] = to_decimal(values["deposit_percent"])
    if not values["deposit_enabled"]:
        values["deposit_percent"] = None
    return values


def _apply(
    db: Session,
    quote: Quote,
    data: dict[str, Any],
    raw_items: list[dict[str, Any]] | None,
    *,
    existing: Quote | None,
) -> Quote:
    values = _resolve_inputs(db, data, existing, quote.handoff_id)
    validate_quote_rates(
        exchange_rate_rmb=values["exchange_rate_rmb"],
        exchange_rate_usd=values["exchange_rate_usd"],
        shipping_rate_usd=values["shipping_rate_usd"],
        shipping_rate_unit=values["shipping_rate_unit"],
        deposit_enabled=values["deposit_enabled"],
        deposit_percent=values["deposit_percent"],
    )
    items = parse_items(raw_items if raw_items is not None else (quote.items_json or []))
    totals = compute_totals(
        items,
        exchange_rate_rmb=values["exchange_rate_rmb"],
        exchange_rate_usd=values["exchange_rate_usd"],
        shipping_rate_usd=values["shipping_rate_usd"],
        shipping_rate_unit=values["shipping_rate_unit"],
        markup_percent=values["markup_percent"],
    )

    for field, value in values.items():
        setattr(quote, field, value)
    quote.items_json = [item.as_dict() for item in items]
    quote.total_product_rmb = totals.total_product_rmb
    quote.total_product_ngn = totals.total_product_ngn
    quote.total_weight_kg = totals.total_weight_kg
    quote.total_cbm = totals.total_cbm
    quote.total_shipping_usd = totals.total_shipping_usd
    quote.total_shipping_ngn = totals.total_shipping_ngn
    quote.total_markup_ngn = totals.total_markup_ngn
    quote.total_due_ngn = totals.total_due_ngn
    return quote


def create_quote(db: Session, *, handoff: Handoff, actor: User, data: dict[str, Any]) -> Quote:
    quote = Quote(
        id=str(uuid.uuid4()),
        handoff_id=handoff.id,
        token=generate_quote_token(),
        status="draft",
        created_by=actor.id,
        updated_by=actor.id,
    )
    _apply(db, quote, data, data.get("items") or [], existing=None)
    db.add(quote)
    db.flush()
    upsert_financial_total_due(db, handoff.id, quote.total_due_ngn)
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="quote.create",
        target_type="quote",
        target_id=quote.id,
        metadata_json={"handoff_id": handoff.id, "total_due_ngn": str(quote.total_due_ngn)},
    )
    return quote


def update_quote(db: Session, quote: Quote, *, actor: User, data: dict[str, Any]) -> Quote:
    _apply(db, quote, data, data.get("items"), existing=quote)
    quote.updated_by = actor.id
    db.flush()
    upsert_financial_total_due(db, quote.handoff_id, quote.total_due_ngn)
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="quote.update",
        target_type="quote",
        target_id=quote.id,
        metadata_json={"total_due_ngn": str(quote.total_due_ngn)},
    )
    return quote


def send_quote(db: Session, quote: Quote, *, actor: User, handoff: Handoff | None) -> EmailDeliveryResult:
    if quote.status == "draft":
        quote.status = "sent"
    quote.sent_at = datetime.now(timezone.utc)
    quote.updated_by = actor.id
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="quote.send",
        target_type="quote",
        target_id=quote.id,
    )
    db.flush()
    return send_quote_ready_email(
        recipient_email=handoff.email if handoff else None,
        customer_name=handoff.customer_name if handoff else None,
        quote_token=quote.token,
        total_due_ngn=quote.total_due_ngn,
        agent_note=quote.agent_note,
    )


def get_quote_by_token(db: Session, token: str) -> Quote | None:
    cleaned = (token or "").strip()
    if not cleaned:
        return None
    return db.execute(select(Quote).where(Quote.token == cleaned)).scalar_one_or_none()


def visible_quotes_filter(user: User):
    """Admins see every quote; agents see quotes they wrote or that sit on their handoffs."""
    if (user.role or "").lower() == "admin":
        return None
    assigned = select(Handoff.id).where(Handoff.assigned_agent_id == user.id)
    return or_(Quote.created_by == user.id, Quote.handoff_id.in_(assigned))


def can_view_quote(db: Session, user: User, quote: Quote) -> bool:
    if (user.role or "").lower() == "admin" or quote.created_by == user.id:
        return True
    handoff = db.get(Handoff, quote.handoff_id)
    return bool(handoff and handoff.assigned_agent_id == user.id)
