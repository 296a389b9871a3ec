"""Quote payment ledger.

A quote collects product money (deposit, balance or full payment) and, once the
handoff has shipped, shipping money. Each attempt is a ``QuotePayment`` row:
wallet payments are written as ``paid`` immediately, provider payments start as
``pending`` and are confirmed later by a verify call or a webhook. Confirmation
is idempotent and, in the same transaction, mirrors the payment onto the
handoff ledger and credits the assigned agent.
"""

import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import urlencode

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from linescout.core.config import settings
from linescout.core.money import ZERO_MONEY, to_decimal, to_money
from linescout.core.observability import log_event
from linescout.core.security import hash_password
from linescout.models.handoff import Handoff
from linescout.models.quote import Quote, QuotePayment
from linescout.models.user import User
from linescout.models.wallet import VirtualAccount
from linescout.services.commission_service import CommissionResult, credit_agent_commission
from linescout.services.email_service import send_payment_received_email
from linescout.services.handoff_service import add_handoff_payment
from linescout.services.notification_service import create_notification
from linescout.services.payment_provider import (
    PaymentInitRequest,
    get_payment_provider,
    providus_client,
)
from linescout.services.payment_settings_service import select_payment_provider
from linescout.services.quote_calculator import (
    DEPOSIT_PURPOSE,
    PRODUCT_PURPOSES,
    SHIPPING_PURPOSE,
    QuotePaymentError,
    compute_deposit_amount,
    compute_product_target,
    compute_totals,
    derive_quote_status,
    parse_items,
    resolve_required_amount,
)
from linescout.services.rates_service import convert_amount, get_active_shipping_rate
from linescout.services.wallet_service import debit_wallet, get_or_create_wallet, get_wallet

_PURPOSE_LABELS = {
    "deposit": "Deposit",
    "shipping_payment": "Shipping payment",
}


class WalletSignInRequired(QuotePaymentError):
    pass


@dataclass(frozen=True)
class PaidTotals:
    deposit: Decimal
    product: Decimal
    shipping: Decimal


@dataclass(frozen=True)
class EffectiveTotals:
    total_product_ngn: Decimal
    total_markup_ngn: Decimal
    total_shipping_ngn: Decimal
    shipping_type_id: str | None


@dataclass(frozen=True)
class Confirmation:
    payment: QuotePayment
    already_paid: bool
    commission: CommissionResult | None = None


@dataclass
class PaymentInitiation:
    purpose: str
    required: Decimal
    wallet_applied: Decimal = ZERO_MONEY
    remaining: Decimal = ZERO_MONEY
    provider: str | None = None
    reference: str | None = None
    authorization_url: str | None = None
    account_number: str | None = None
    account_name: str | None = None
    bank_name: str | None = None
    note: str | None = None
    confirmations: list[Confirmation] = field(default_factory=list)


def handoff_purpose_for(purpose: str) -> str:
    if purpose == DEPOSIT_PURPOSE:
        return "downpayment"
    if purpose == SHIPPING_PURPOSE:
        return "shipping_payment"
    return "full_payment"


def purpose_label(purpose: str) -> str:
    return _PURPOSE_LABELS.get(purpose, "Product payment")


def get_paid_totals(db: Session, quote_id: str) -> PaidTotals:
    paid = QuotePayment.status == "paid"
    row = db.execute(
        select(
            func.coalesce(
                func.sum(case((paid & (QuotePayment.purpose == DEPOSIT_PURPOSE), QuotePayment.amount), else_=0)),
                0,
            ),
            func.coalesce(
                func.sum(case((paid & QuotePayment.purpose.in_(PRODUCT_PURPOSES), QuotePayment.amount), else_=0)),
                0,
            ),
            func.coalesce(
                func.sum(case((paid & (QuotePayment.purpose == SHIPPING_PURPOSE), QuotePayment.amount), else_=0)),
                0,
            ),
        ).where(QuotePayment.quote_id == quote_id)
    ).one()
    return PaidTotals(deposit=to_money(row[0]), product=to_money(row[1]), shipping=to_money(row[2]))


def get_effective_totals(db: Session, quote: Quote, shipping_type_id: str | None = None) -> EffectiveTotals:
    """Stored totals, with shipping re-priced from the live rate table when a rate exists."""
    selected_type = shipping_type_id or quote.shipping_type_id
    rate = get_active_shipping_rate(db, selected_type)
    if rate is None:
        return EffectiveTotals(
            total_product_ngn=to_money(quote.total_product_ngn),
            total_markup_ngn=to_money(quote.total_markup_ngn),
            total_shipping_ngn=to_money(quote.total_shipping_ngn),
            shipping_type_id=selected_type,
        )
    totals = compute_totals(
        parse_items(quote.items_json or []),
        exchange_rate_rmb=to_decimal(quote.exchange_rate_rmb),
        exchange_rate_usd=to_decimal(quote.exchange_rate_usd),
        shipping_rate_usd=to_decimal(rate.rate_value),
        shipping_rate_unit=rate.rate_unit or quote.shipping_rate_unit,
        markup_percent=to_decimal(quote.markup_percent),
    )
    return EffectiveTotals(
        total_product_ngn=totals.total_product_ngn,
        total_markup_ngn=totals.total_markup_ngn,
        total_shipping_ngn=totals.total_shipping_ngn,
        shipping_type_id=selected_type,
    )


def get_payment_overview(db: Session, quote: Quote) -> dict:
    totals = get_effective_totals(db, quote)
    paid = get_paid_totals(db, quote.id)
    product_target = compute_product_target(
        totals.total_product_ngn, totals.total_markup_ngn, to_decimal(quote.commitment_due_ngn)
    )
    deposit_amount = None
    if quote.deposit_enabled and to_decimal(quote.deposit_percent) > 0:
        deposit_amount = compute_deposit_amount(
            totals.total_product_ngn, totals.total_markup_ngn, to_decimal(quote.deposit_percent)
        )
    payments = db.execute(
        select(QuotePayment)
        .where(QuotePayment.quote_id == quote.id)
        .order_by(QuotePayment.created_at.desc())
        .limit(50)
    ).scalars().all()
    return {
        "product_target": to_money(product_target),
        "deposit_amount": to_money(deposit_amount) if deposit_amount is not None else None,
        "deposit_paid": paid.deposit,
        "product_paid": paid.product,
        "product_remaining": to_money(max(ZERO_MONEY, product_target - paid.product)),
        "shipping_due": totals.total_shipping_ngn,
        "shipping_paid": paid.shipping,
        "shipping_remaining": to_money(max(ZERO_MONEY, totals.total_shipping_ngn - paid.shipping)),
        "payments": payments,
    }


def refresh_quote_status(db: Session, quote: Quote) -> str:
    totals = get_effective_totals(db, quote)
    paid = get_paid_totals(db, quote.id)
    quote.status = derive_quote_status(
        current_status=quote.status,
        product_target=compute_product_target(
            totals.total_product_ngn, totals.total_markup_ngn, to_decimal(quote.commitment_due_ngn)
        ),
        product_paid=paid.product,
        shipping_due=totals.total_shipping_ngn,
        shipping_paid=paid.shipping,
    )
    return quote.status


def _notify_customer(db: Session, payment: QuotePayment, amount: Decimal, handoff: Handoff | None) -> None:
    recipient_id = payment.user_id or (handoff.customer_user_id if handoff else None)
    if not recipient_id:
        return
    create_notification(
        db,
        user_id=recipient_id,
        title="Payment received",
        body=f"{purpose_label(payment.purpose)} of NGN {amount:,.2f} has been received.",
        data={
            "type": "quote_payment",
            "quote_id": payment.quote_id,
            "handoff_id": payment.handoff_id,
            "amount": str(amount),
            "purpose": payment.purpose,
        },
    )


def confirm_quote_payment(
    db: Session,
    payment: QuotePayment,
    *,
    settled_amount: Decimal | None = None,
    paid_at: datetime | None = None,
) -> Confirmation:
    """Marks a payment paid and books its side effects. A second call is a no-op."""
    if payment.status == "paid":
        return Confirmation(payment=payment, already_paid=True)

    amount = to_money(settled_amount if settled_amount is not None else payment.amount)
    payment.status = "paid"
    payment.paid_at = paid_at or datetime.now(timezone.utc)
    db.flush()

    handoff = db.get(Handoff, payment.handoff_id) if payment.handoff_id else None
    commission = None
    if handoff:
        add_handoff_payment(
            db,
            handoff_id=handoff.id,
            purpose=handoff_purpose_for(payment.purpose),
            amount=amount,
            note=f"Quote payment ({payment.method})",
            quote_payment_id=payment.id,
            paid_at=payment.paid_at,
        )
        commission = credit_agent_commission(db, payment, amount=amount)

    _notify_customer(db, payment, amount, handoff)
    quote = db.get(Quote, payment.quote_id)
    if quote:
        refresh_quote_status(db, quote)
    db.flush()
    log_event(
        "quote_payment_confirmed",
        quote_payment_id=payment.id,
        quote_id=payment.quote_id,
        method=payment.method,
        purpose=payment.purpose,
        amount=str(amount),
    )
    return Confirmation(payment=payment, already_paid=False, commission=commission)


def send_confirmation_emails(db: Session, confirmations: list[Confirmation]) -> None:
    """Runs after commit; SMTP problems never undo a booked payment."""
    for confirmation in confirmations:
        if confirmation.already_paid:
            continue
        payment = confirmation.payment
        quote = db.get(Quote, payment.quote_id)
        handoff = db.get(Handoff, payment.handoff_id) if payment.handoff_id else None
        user = db.get(User, payment.user_id) if payment.user_id else None
        send_payment_received_email(
            recipient_email=(user.email if user else None) or (handoff.email if handoff else None),
            customer_name=(handoff.customer_name if handoff else None) or (user.full_name if user else None),
            amount=to_money(payment.amount),
            purpose=payment.purpose,
            quote_token=quote.token if quote else "",
            handoff_token=handoff.token if handoff else None,
        )


def ensure_customer_by_email(db: Session, email: str, display_name: str | None) -> User:
    normalized = email.strip().lower()
    user = db.execute(select(User).where(func.lower(User.email) == normalized)).scalar_one_or_none()
    if user:
        if display_name and not user.full_name:
            user.full_name = display_name
        return user

    base = "".join(ch for ch in normalized.split("@")[0] if ch.isalnum() or ch in "._") or "customer"
    user = User(
        email=normalized,
        username=f"{base[:40]}_{secrets.token_hex(3)}",
        hashed_password=hash_password(secrets.token_urlsafe(24)),
        full_name=display_name,
        role="customer",
        is_active=True,
        is_placeholder=True,
    )
    db.add(user)
    db.flush()
    return user


def _ensure_providus_account(db: Session, owner: User, account_name: str) -> VirtualAccount:
    account = db.execute(
        select(VirtualAccount).where(
            VirtualAccount.owner_type == "user",
            VirtualAccount.owner_id == owner.id,
            VirtualAccount.provider == "providus",
        )
    ).scalar_one_or_none()
    if account:
        return account
    reserved = providus_client.reserve_account(account_name)
    account = VirtualAccount(
        id=str(uuid.uuid4()),
        owner_type="user",
        owner_id=owner.id,
        provider="providus",
        account_number=reserved.account_number,
        account_name=reserved.account_name,
        bank_name=reserved.bank_name,
        provider_ref=reserved.provider_ref,
    )
    db.add(account)
    db.flush()
    return account


def _new_payment(
    quote: Quote,
    *,
    user_id: str | None,
    purpose: str,
    method: str,
    status: str,
    amount: Decimal,
    provider_ref: str | None,
    shipping_type_id: str | None,
) -> QuotePayment:
    return QuotePayment(
        id=str(uuid.uuid4()),
        quote_id=quote.id,
        handoff_id=quote.handoff_id,
        user_id=user_id,
        purpose=purpose,
        method=method,
        status=status,
        amount=to_money(amount),
        currency="NGN",
        provider_ref=provider_ref,
        shipping_type_id=shipping_type_id,
    )


def amount_due(
    db: Session, quote: Quote, purpose: str, shipping_type_id: str | None = None
) -> tuple[Decimal, EffectiveTotals]:
    """What is still owed for ``purpose`` given the payments already booked on the quote."""
    handoff = db.get(Handoff, quote.handoff_id)
    if handoff is not None and handoff.status == "cancelled":
        raise QuotePaymentError("This order has been cancelled")
    totals = get_effective_totals(db, quote, shipping_type_id)
    paid = get_paid_totals(db, quote.id)
    required = resolve_required_amount(
        purpose=purpose,
        total_product_ngn=totals.total_product_ngn,
        total_markup_ngn=totals.total_markup_ngn,
        total_shipping_ngn=totals.total_shipping_ngn,
        commitment_due_ngn=to_decimal(quote.commitment_due_ngn),
        deposit_enabled=bool(quote.deposit_enabled),
        deposit_percent=quote.deposit_percent,
        product_paid=paid.product,
        shipping_paid=paid.shipping,
        handoff_status=handoff.status if handoff else None,
    )
    return required, totals


def initiate_quote_payment(
    db: Session,
    quote: Quote,
    *,
    purpose: str,
    use_wallet: bool,
    shipping_type_id: str | None,
    user: User | None,
) -> PaymentInitiation:
    handoff = db.get(Handoff, quote.handoff_id)
    required, totals = amount_due(db, quote, purpose, shipping_type_id)
    result = PaymentInitiation(purpose=purpose, required=required, remaining=required)

    if use_wallet:
        if user is None:
            raise WalletSignInRequired("Sign in to use wallet")
        wallet = get_wallet(db, owner_type="user", owner_id=user.id)
        if wallet is None:
            raise QuotePaymentError("Wallet not found")
        applied = min(to_money(wallet.balance), required)
        if applied > 0:
            payment = _new_payment(
                quote,
                user_id=user.id,
                purpose=purpose,
                method="wallet",
                status="pending",
                amount=applied,
                provider_ref=None,
                shipping_type_id=totals.shipping_type_id,
            )
            db.add(payment)
            db.flush()
            debit_wallet(
                db,
                wallet,
                applied,
                reason="Quote payment",
                reference_type="quote_payment",
                reference_id=payment.id,
                meta={"quote_id": quote.id, "purpose": purpose},
                created_by_user_id=user.id,
            )
            result.confirmations.append(confirm_quote_payment(db, payment))
            result.wallet_applied = to_money(applied)
            result.remaining = to_money(required - applied)

    if result.remaining <= 0:
        result.provider = "wallet"
        return result

    payer_email = (user.email if user else (handoff.email if handoff else "")) or ""
    payer_email = payer_email.strip()
    if "@" not in payer_email:
        raise QuotePaymentError("Customer email is required to complete payment")

    owner = user or ensure_customer_by_email(db, payer_email, handoff.customer_name if handoff else None)
    selection = select_payment_provider(db, owner_type="user", owner_id=owner.id)
    result.provider = selection.provider

    if selection.provider == "providus":
        get_or_create_wallet(db, owner_type="user", owner_id=owner.id)
        account_name = (handoff.customer_name if handoff else None) or payer_email.split("@")[0]
        account = _ensure_providus_account(db, owner, account_name)
        # One open transfer per quote and purpose; asking again re-prices it.
        open_payment = db.execute(
            select(QuotePayment)
            .where(
                QuotePayment.quote_id == quote.id,
                QuotePayment.purpose == purpose,
                QuotePayment.method == "providus",
                QuotePayment.status == "pending",
            )
            .order_by(QuotePayment.created_at.desc(), QuotePayment.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if open_payment is not None:
            open_payment.user_id = owner.id
            open_payment.amount = to_money(result.remaining)
            open_payment.shipping_type_id = totals.shipping_type_id
        else:
            db.add(
                _new_payment(
                    quote,
                    user_id=owner.id,
                    purpose=purpose,
                    method="providus",
                    status="pending",
                    amount=result.remaining,
                    provider_ref=None,
                    shipping_type_id=totals.shipping_type_id,
                )
            )
        db.flush()
        result.account_number = account.account_number
        result.account_name = account.account_name or account_name
        result.bank_name = account.bank_name or providus_client.bank_name
        result.note = "Transfer the exact amount to the account above. Payment will reflect automatically."
        return result

    if selection.provider == "paypal":
        amount_usd = convert_amount(db, result.remaining, "NGN", "USD")
        if amount_usd is None:
            raise QuotePaymentError("NGN to USD exchange rate is not configured")
        # PayPal appends its own `token` (the order id) to the return URL.
        callback_url = f"{settings.public_app_url}/quote/paypal/verify?{urlencode({'quote': quote.token})}"
        init = get_payment_provider("paypal").initialize_payment(
            PaymentInitRequest(
                reference=f"LSQ_{quote.id}_{int(time.time() * 1000)}",
                amount=amount_usd,
                currency="USD",
                email=payer_email,
                callback_url=callback_url,
                cancel_url=f"{settings.public_app_url}/quote/{quote.token}",
                description=f"LineScout {purpose_label(purpose).lower()}",
            )
        )
        db.add(
            _new_payment(
                quote,
                user_id=owner.id,
                purpose=purpose,
                method="paypal",
                status="pending",
                amount=result.remaining,
                provider_ref=init.payment_reference,
                shipping_type_id=totals.shipping_type_id,
            )
        )
        db.flush()
        result.reference = init.payment_reference
        result.authorization_url = init.checkout_url
        return result

    reference = f"LSQ_{quote.id}_{int(time.time() * 1000)}"
    db.add(
        _new_payment(
            quote,
            user_id=owner.id,
            purpose=purpose,
            method="paystack",
            status="pending",
            amount=result.remaining,
            provider_ref=reference,
            shipping_type_id=totals.shipping_type_id,
        )
    )
    db.flush()
    callback_url = (
        f"{settings.public_app_url}/quote/paystack/verify?"
        f"{urlencode({'reference': reference, 'token': quote.token})}"
    )
    init = get_payment_provider("paystack").initialize_payment(
        PaymentInitRequest(
            reference=reference,
            amount=result.remaining,
            currency="NGN",
            email=payer_email,
            callback_url=callback_url,
            metadata={
                "payment_kind": "quote",
                "quote_id": quote.id,
                "handoff_id": quote.handoff_id,
                "purpose": purpose,
                "shipping_type_id": totals.shipping_type_id,
                "quote_token": quote.token,
            },
        )
    )
    result.reference = reference
    result.authorization_url = init.checkout_url
    return result


def find_payment_by_reference(db: Session, reference: str) -> QuotePayment | None:
    cleaned = (reference or "").strip()
    if not cleaned:
        return None
    return db.execute(select(QuotePayment).where(QuotePayment.provider_ref == cleaned)).scalar_one_or_none()


def verify_provider_payment(db: Session, provider_name: str, reference: str) -> Confirmation:
    """Asks the provider about ``reference`` and confirms the matching pending payment."""
    payment = find_payment_by_reference(db, reference)
    if payment is None:
        raise LookupError("Payment record not found.")
    if payment.status == "paid":
        return Confirmation(payment=payment, already_paid=True)

    verification = get_payment_provider(provider_name).verify_payment(reference)
    if not verification.successful:
        raise QuotePaymentError("Payment not successful yet.")

    # Only naira settlements replace the requested amount.
    settled = verification.amount if verification.currency == "NGN" else None
    if settled is not None:
        settled = to_money(settled.quantize(Decimal("1")))
    return confirm_quote_payment(db, payment, settled_amount=settled)


def settle_pending_providus_payments(db: Session, owner_id: str) -> list[Confirmation]:
    """Pays the owner's pending Providus quote payments from their wallet, oldest first.

    Each row is re-priced against what the quote still owes before any money
    moves: a row that is no longer owed is marked ``superseded`` and one that
    asks for more than is owed is cut down, so a customer who transferred twice
    keeps the surplus in their wallet.
    """
    wallet = get_wallet(db, owner_type="user", owner_id=owner_id)
    if wallet is None:
        return []
    pending = db.execute(
        select(QuotePayment)
        .where(
            QuotePayment.user_id == owner_id,
            QuotePayment.method == "providus",
            QuotePayment.status == "pending",
        )
        .order_by(QuotePayment.created_at.asc(), QuotePayment.id.asc())
    ).scalars().all()

    confirmations: list[Confirmation] = []
    for payment in pending:
        quote = db.get(Quote, payment.quote_id)
        if quote is None:
            continue
        try:
            due, _ = amount_due(db, quote, payment.purpose, payment.shipping_type_id)
        except QuotePaymentError as exc:
            payment.status = "superseded"
            db.flush()
            log_event(
                "quote_payment_superseded",
                level=logging.WARNING,
                quote_payment_id=payment.id,
                quote_id=payment.quote_id,
                purpose=payment.purpose,
                reason=str(exc),
            )
            continue
        amount = min(to_money(payment.amount), due)
        if to_money(wallet.balance) < amount:
            break
        payment.amount = amount
        debit_wallet(
            db,
            wallet,
            amount,
            reason="Quote payment",
            reference_type="quote_payment",
            reference_id=payment.id,
            meta={"quote_id": payment.quote_id, "purpose": payment.purpose},
        )
        confirmations.append(confirm_quote_payment(db, payment))
    return confirmations
