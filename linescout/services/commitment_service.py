"""Commitment fee checkout.

A signed-in customer pays the platform's ``commitment_due_ngn`` before a
handoff exists. Confirming the payment opens the handoff and books the fee on
its ledger as ``commitment_fee``; quotes on that handoff are credited with it.
"""

import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.core.config import settings
from linescout.core.money import to_money
from linescout.core.observability import log_event
from linescout.models.handoff import CommitmentPayment, Handoff
from linescout.models.user import User
from linescout.services.audit_service import log_audit_event
from linescout.services.email_service import send_commitment_confirmed_email
from linescout.services.handoff_service import (
    COMMITMENT_FEE_PURPOSE,
    ROUTE_TYPES,
    add_handoff_payment,
    create_handoff,
)
from linescout.services.notification_service import create_notification
from linescout.services.payment_provider import PaymentInitRequest, get_payment_provider
from linescout.services.payment_settings_service import select_payment_provider
from linescout.services.rates_service import convert_amount, get_platform_settings


class CommitmentPaymentError(ValueError):
    pass


@dataclass(frozen=True)
class CommitmentCheckout:
    payment: CommitmentPayment
    provider: str
    reference: str
    authorization_url: str | None
    charge_amount: Decimal
    charge_currency: str


@dataclass(frozen=True)
class CommitmentConfirmation:
    payment: CommitmentPayment
    handoff: Handoff
    already_paid: bool


def commitment_fee(db: Session) -> Decimal:
    fee = to_money(get_platform_settings(db).commitment_due_ngn or 0)
    if fee <= 0:
        raise CommitmentPaymentError("Commitment fee is not configured. Please contact support.")
    return fee


def _new_reference(user_id: str) -> str:
    return f"LSC_{user_id[:8]}_{int(time.time() * 1000)}_{secrets.token_hex(3).upper()}"


def initiate_commitment_payment(
    db: Session,
    *,
    user: User,
    route_type: str,
    customer_name: str | None,
    whatsapp_number: str | None,
    context: str | None,
) -> CommitmentCheckout:
    if route_type not in ROUTE_TYPES:
        raise CommitmentPaymentError(f"route_type must be one of: {', '.join(ROUTE_TYPES)}")
    email = (user.email or "").strip()
    if "@" not in email:
        raise CommitmentPaymentError("User email is required to pay the commitment fee")
    fee = commitment_fee(db)

    # Providus has no checkout; those customers pay the fee by card through Paystack.
    selection = select_payment_provider(db, owner_type="user", owner_id=user.id)
    method = "paypal" if selection.provider == "paypal" else "paystack"
    description = "LineScout sourcing commitment"

    if method == "paypal":
        charge_amount = convert_amount(db, fee, "NGN", "USD")
        if charge_amount is None:
            raise CommitmentPaymentError("NGN to USD exchange rate is not configured")
        charge_currency = "USD"
        init = get_payment_provider("paypal").initialize_payment(
            PaymentInitRequest(
                reference=_new_reference(user.id),
                amount=charge_amount,
                currency=charge_currency,
                email=email,
                callback_url=f"{settings.public_app_url}/commitments/paypal/verify",
                cancel_url=f"{settings.public_app_url}/commitments",
                description=description,
            )
        )
        reference = init.payment_reference
    else:
        charge_amount = fee
        charge_currency = "NGN"
        reference = _new_reference(user.id)
        init = get_payment_provider("paystack").initialize_payment(
            PaymentInitRequest(
                reference=reference,
                amount=fee,
                currency=charge_currency,
                email=email,
                callback_url=(
                    f"{settings.public_app_url}/commitments/paystack/verify?{urlencode({'reference': reference})}"
                ),
                description=description,
                metadata={
                    "payment_kind": "commitment",
                    "route_type": route_type,
                    "user_id": user.id,
                },
            )
        )

    payment = CommitmentPayment(
        id=str(uuid.uuid4()),
        user_id=user.id,
        route_type=route_type,
        customer_name=customer_name,
        whatsapp_number=whatsapp_number,
        context=context,
        method=method,
        status="pending",
        amount=fee,
        currency="NGN",
        provider_ref=reference,
    )
    db.add(payment)
    db.flush()
    log_event(
        "commitment_payment_initiated",
        commitment_payment_id=payment.id,
        method=method,
        amount=str(fee),
        route_type=route_type,
    )
    return CommitmentCheckout(
        payment=payment,
        provider=method,
        reference=reference,
        authorization_url=init.checkout_url,
        charge_amount=to_money(charge_amount),
        charge_currency=charge_currency,
    )


def find_commitment_by_reference(db: Session, reference: str) -> CommitmentPayment | None:
    cleaned = (reference or "").strip()
    if not cleaned:
        return None
    return db.execute(
        select(CommitmentPayment).where(CommitmentPayment.provider_ref == cleaned)
    ).scalar_one_or_none()


def confirm_commitment_payment(
    db: Session,
    payment: CommitmentPayment,
    *,
    settled_amount: Decimal | None = None,
    paid_at: datetime | None = None,
) -> CommitmentConfirmation:
    """Opens the paid handoff. A second call returns the handoff opened by the first."""
    if payment.status == "paid" and payment.handoff_id:
        return CommitmentConfirmation(payment=payment, handoff=db.get(Handoff, payment.handoff_id), already_paid=True)

    user = db.get(User, payment.user_id)
    amount = to_money(settled_amount if settled_amount is not None else payment.amount)
    handoff = create_handoff(
        db,
        route_type=payment.route_type,
        customer=user,
        customer_name=payment.customer_name,
        email=None,
        whatsapp_number=payment.whatsapp_number,
        context=payment.context,
    )
    payment.status = "paid"
    payment.amount = amount
    payment.paid_at = paid_at or datetime.now(timezone.utc)
    payment.handoff_id = handoff.id
    add_handoff_payment(
        db,
        handoff_id=handoff.id,
        purpose=COMMITMENT_FEE_PURPOSE,
        amount=amount,
        note=f"Commitment fee ({payment.method} {payment.provider_ref})",
        paid_at=payment.paid_at,
    )
    create_notification(
        db,
        user_id=payment.user_id,
        title="Sourcing project active",
        body=f"Your commitment fee of NGN {amount:,.2f} was received. Project {handoff.token} is open.",
        data={"type": "commitment_payment", "handoff_id": handoff.id, "amount": str(amount)},
    )
    log_audit_event(
        db,
        actor_user_id=payment.user_id,
        action="commitment_payment.confirm",
        target_type="handoff",
        target_id=handoff.id,
        metadata_json={"reference": payment.provider_ref, "amount": str(amount), "method": payment.method},
    )
    db.flush()
    log_event(
        "commitment_payment_confirmed",
        commitment_payment_id=payment.id,
        handoff_id=handoff.id,
        method=payment.method,
        amount=str(amount),
    )
    return CommitmentConfirmation(payment=payment, handoff=handoff, already_paid=False)


def verify_commitment_payment(db: Session, provider_name: str, reference: str, *, user: User) -> CommitmentConfirmation:
    payment = find_commitment_by_reference(db, reference)
    if payment is None or payment.user_id != user.id:
        raise LookupError("Payment record not found.")
    if payment.status == "paid":
        return confirm_commitment_payment(db, payment)

    verification = get_payment_provider(provider_name).verify_payment(payment.provider_ref)
    if not verification.successful:
        raise CommitmentPaymentError("Payment not successful yet.")
    settled = verification.amount if verification.currency == "NGN" else None
    return confirm_commitment_payment(db, payment, settled_amount=settled)


def send_commitment_email(db: Session, confirmation: CommitmentConfirmation) -> None:
    """Runs after commit."""
    if confirmation.already_paid:
        return
    user = db.get(User, confirmation.payment.user_id)
    send_commitment_confirmed_email(
        recipient_email=user.email if user else None,
        customer_name=confirmation.handoff.customer_name,
        amount=to_money(confirmation.payment.amount),
        handoff_token=confirmation.handoff.token,
        reference=confirmation.payment.provider_ref,
    )
