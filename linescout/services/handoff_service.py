import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from linescout.core.id_utils import generate_handoff_token
from linescout.core.money import ZERO_MONEY, to_money
from linescout.models.handoff import (
    Handoff,
    HandoffClaimAudit,
    HandoffFinancial,
    HandoffPayment,
    HandoffStatusEvent,
)
from linescout.models.user import User
from linescout.services.audit_service import log_audit_event

ROUTE_TYPES = ("machine_sourcing", "white_label", "simple_sourcing")
HANDOFF_STATUSES = ("pending", "claimed", "manufacturer_found", "paid", "shipped", "delivered", "cancelled")
TERMINAL_STATUSES = {"delivered", "cancelled"}
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"claimed", "cancelled"},
    "claimed": {"manufacturer_found", "cancelled"},
    "manufacturer_found": {"paid", "cancelled"},
    "paid": {"shipped", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}
COMMITMENT_FEE_PURPOSE = "commitment_fee"
HANDOFF_PAYMENT_PURPOSES = (
    COMMITMENT_FEE_PURPOSE,
    "downpayment",
    "full_payment",
    "shipping_payment",
    "additional_payment",
)

_STATUS_TIMESTAMPS = {
    "manufacturer_found": "manufacturer_found_at",
    "paid": "paid_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}


class InvalidStatusTransition(ValueError):
    pass


class HandoffClaimConflict(ValueError):
    pass


@dataclass(frozen=True)
class FinancialSummary:
    currency: str
    total_due: Decimal
    total_paid: Decimal
    balance: Decimal


def display_name(user: User) -> str:
    return (user.full_name or user.username or user.email).strip()


def create_handoff(
    db: Session,
    *,
    route_type: str,
    customer: User | None,
    customer_name: str | None,
    email: str | None,
    whatsapp_number: str | None,
    context: str | None,
) -> Handoff:
    if route_type not in ROUTE_TYPES:
        raise ValueError(f"route_type must be one of: {', '.join(ROUTE_TYPES)}")
    handoff = Handoff(
        id=str(uuid.uuid4()),
        token=generate_handoff_token(route_type),
        route_type=route_type,
        customer_user_id=customer.id if customer else None,
        customer_name=customer_name or (customer.full_name if customer else None),
        email=email or (customer.email if customer else None),
        whatsapp_number=whatsapp_number,
        context=context,
        status="pending",
    )
    db.add(handoff)
    db.flush()
    return handoff


def claim_handoff(db: Session, handoff_id: str, agent: User) -> Handoff:
    """Claims a pending handoff. The status guard lives in the UPDATE so two agents cannot both win."""
    now = datetime.now(timezone.utc)
    name = display_name(agent)
    result = db.execute(
        update(Handoff)
        .where(Handoff.id == handoff_id, Handoff.status == "pending")
        .values(
            status="claimed",
            claimed_by=name,
            claimed_at=now,
            assigned_agent_id=agent.id,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise HandoffClaimConflict("Already claimed or not pending.")

    db.add(
        HandoffClaimAudit(
            id=str(uuid.uuid4()),
            handoff_id=handoff_id,
            claimed_by_id=agent.id,
            claimed_by_name=name,
            claimed_by_role=agent.role,
            previous_status="pending",
            new_status="claimed",
        )
    )
    _record_status_event(db, handoff_id, "pending", "claimed", agent.id, None)
    log_audit_event(
        db,
        actor_user_id=agent.id,
        action="handoff.claim",
        target_type="handoff",
        target_id=handoff_id,
    )
    handoff = db.get(Handoff, handoff_id)
    db.refresh(handoff)
    return handoff


def _record_status_event(
    db: Session,
    handoff_id: str,
    previous_status: str,
    new_status: str,
    actor_user_id: str | None,
    note: str | None,
) -> None:
    db.add(
        HandoffStatusEvent(
            id=str(uuid.uuid4()),
            handoff_id=handoff_id,
            previous_status=previous_status,
            new_status=new_status,
            changed_by_user_id=actor_user_id,
            note=note,
            created_at=datetime.now(timezone.utc),
        )
    )


def update_handoff_status(
    db: Session,
    handoff: Handoff,
    *,
    target_status: str,
    actor: User,
    shipper: str | None = None,
    shipping_company_id: str | None = None,
    tracking_number: str | None = None,
    cancel_reason: str | None = None,
    bank_id: str | None = None,
    note: str | None = None,
) -> Handoff:
    current = handoff.status
    if target_status not in HANDOFF_STATUSES:
        raise InvalidStatusTransition(f"Unknown status '{target_status}'")
    if current in TERMINAL_STATUSES:
        raise InvalidStatusTransition(f"Handoff is already {current} and cannot be updated")
    if target_status == "claimed":
        raise InvalidStatusTransition("Use the claim action to claim a handoff")
    if target_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(f"Cannot move handoff from {current} to {target_status}")
    if target_status != "cancelled" and not handoff.claimed_by:
        raise InvalidStatusTransition("Handoff must be claimed first")

    shipper = (shipper or "").strip() or None
    tracking_number = (tracking_number or "").strip() or None
    cancel_reason = (cancel_reason or "").strip() or None
    if target_status == "shipped":
        if not shipper and not shipping_company_id:
            raise InvalidStatusTransition("Shipper is required when marking as shipped")
        if not tracking_number:
            raise InvalidStatusTransition("Tracking number is required when marking as shipped")
        handoff.shipper = shipper
        handoff.shipping_company_id = shipping_company_id
        handoff.tracking_number = tracking_number
    if target_status == "cancelled":
        if not cancel_reason:
            raise InvalidStatusTransition("Cancel reason is required")
        handoff.cancel_reason = cancel_reason
    if target_status == "paid" and bank_id:
        handoff.bank_id = bank_id

    setattr(handoff, _STATUS_TIMESTAMPS[target_status], datetime.now(timezone.utc))
    handoff.status = target_status
    _record_status_event(db, handoff.id, current, target_status, actor.id, note or cancel_reason)
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="handoff.status.update",
        target_type="handoff",
        target_id=handoff.id,
        metadata_json={"from": current, "to": target_status},
    )
    db.flush()
    return handoff


def upsert_financial_total_due(db: Session, handoff_id: str, total_due: Decimal) -> HandoffFinancial:
    financial = db.execute(
        select(HandoffFinancial).where(HandoffFinancial.handoff_id == handoff_id)
    ).scalar_one_or_none()
    if not financial:
        financial = HandoffFinancial(id=str(uuid.uuid4()), handoff_id=handoff_id, currency="NGN")
        db.add(financial)
    financial.total_due = to_money(total_due)
    db.flush()
    return financial


def add_handoff_payment(
    db: Session,
    *,
    handoff_id: str,
    purpose: str,
    amount: Decimal,
    note: str | None = None,
    quote_payment_id: str | None = None,
    recorded_by_user_id: str | None = None,
    paid_at: datetime | None = None,
) -> HandoffPayment:
    if purpose not in HANDOFF_PAYMENT_PURPOSES:
        raise ValueError(f"purpose must be one of: {', '.join(HANDOFF_PAYMENT_PURPOSES)}")
    value = to_money(amount)
    if value <= 0:
        raise ValueError("Amount must be greater than 0")
    payment = HandoffPayment(
        id=str(uuid.uuid4()),
        handoff_id=handoff_id,
        purpose=purpose,
        amount=value,
        currency="NGN",
        note=note,
        quote_payment_id=quote_payment_id,
        recorded_by_user_id=recorded_by_user_id,
        paid_at=paid_at or datetime.now(timezone.utc),
    )
    db.add(payment)
    db.flush()
    return payment


def get_financial_summary(db: Session, handoff_id: str) -> FinancialSummary:
    financial = db.execute(
        select(HandoffFinancial).where(HandoffFinancial.handoff_id == handoff_id)
    ).scalar_one_or_none()
    total_paid = to_money(
        db.execute(
            select(func.coalesce(func.sum(HandoffPayment.amount), 0)).where(HandoffPayment.handoff_id == handoff_id)
        ).scalar_one()
    )
    total_due = to_money(financial.total_due) if financial else ZERO_MONEY
    return FinancialSummary(
        currency=financial.currency if financial else "NGN",
        total_due=total_due,
        total_paid=total_paid,
        balance=to_money(total_due - total_paid),
    )


def list_handoff_payments(db: Session, handoff_id: str) -> list[HandoffPayment]:
    return db.execute(
        select(HandoffPayment)
        .where(HandoffPayment.handoff_id == handoff_id)
        .order_by(HandoffPayment.paid_at.desc(), HandoffPayment.created_at.desc())
    ).scalars().all()


def can_manage_handoff(user: User, handoff: Handoff) -> bool:
    if (user.role or "").lower() == "admin":
        return True
    return handoff.assigned_agent_id == user.id


def collected_commitment_fees(db: Session, handoff_id: str | None) -> Decimal:
    if not handoff_id:
        return ZERO_MONEY
    return to_money(
        db.execute(
            select(func.coalesce(func.sum(HandoffPayment.amount), 0)).where(
                HandoffPayment.handoff_id == handoff_id,
                HandoffPayment.purpose == COMMITMENT_FEE_PURPOSE,
            )
        ).scalar_one()
    )
