"""Inbound money from payment providers.

Both handlers de-duplicate on the provider's reference before touching a
wallet, and write the ``ProviderTransaction`` row in the same transaction as
the credit so a retried callback is always recognised.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from linescout.core.money import ZERO_MONEY, kobo_to_naira, to_decimal, to_money, to_whole_naira
from linescout.core.observability import log_event
from linescout.models.wallet import ProviderTransaction, VirtualAccount
from linescout.services.commitment_service import (
    CommitmentConfirmation,
    confirm_commitment_payment,
    find_commitment_by_reference,
)
from linescout.services.quote_payment_service import (
    Confirmation,
    confirm_quote_payment,
    find_payment_by_reference,
    settle_pending_providus_payments,
)
from linescout.services.wallet_service import credit_wallet, get_or_create_wallet


@dataclass
class WebhookOutcome:
    status: str
    detail: str | None = None
    amount: Decimal = ZERO_MONEY
    confirmations: list[Confirmation] = field(default_factory=list)
    commitments: list[CommitmentConfirmation] = field(default_factory=list)


PROVIDUS_SUCCESS = "00"
PROVIDUS_DUPLICATE = "01"
PROVIDUS_REJECTED = "02"
PROVIDUS_SYSTEM_FAILURE = "03"

_PROVIDUS_MESSAGES = {
    PROVIDUS_SUCCESS: "success",
    PROVIDUS_DUPLICATE: "duplicate transaction",
    PROVIDUS_REJECTED: "rejected transaction",
    PROVIDUS_SYSTEM_FAILURE: "System Failure, Retry",
}


def providus_response(session_id: str, code: str, message: str | None = None) -> dict[str, Any]:
    return {
        "requestSuccessful": True,
        "sessionId": session_id,
        "responseMessage": message or _PROVIDUS_MESSAGES[code],
        "responseCode": code,
    }


def _first_text(*candidates: Any) -> str | None:
    for candidate in candidates:
        value = str(candidate or "").strip()
        if value:
            return value
    return None


def _provider_transaction_exists(db: Session, provider: str, reference: str) -> bool:
    return (
        db.execute(
            select(ProviderTransaction.id).where(
                ProviderTransaction.provider == provider,
                ProviderTransaction.provider_ref == reference,
            )
        ).scalar_one_or_none()
        is not None
    )


def _record_provider_transaction(
    db: Session,
    *,
    provider: str,
    reference: str,
    amount: Decimal,
    currency: str,
    owner_type: str | None,
    owner_id: str | None,
    payload: dict[str, Any],
) -> ProviderTransaction:
    row = ProviderTransaction(
        id=str(uuid.uuid4()),
        provider=provider,
        provider_ref=reference,
        owner_type=owner_type,
        owner_id=owner_id,
        amount=to_money(amount),
        currency=currency,
        status="received",
        raw_payload=payload,
    )
    db.add(row)
    db.flush()
    return row


def _find_virtual_account(db: Session, provider: str, *, account_number: str | None, provider_ref: str | None):
    if account_number:
        account = db.execute(
            select(VirtualAccount).where(
                VirtualAccount.provider == provider,
                VirtualAccount.account_number == account_number,
            )
        ).scalar_one_or_none()
        if account:
            return account
    if provider_ref:
        return db.execute(
            select(VirtualAccount).where(
                VirtualAccount.provider == provider,
                VirtualAccount.provider_ref == provider_ref,
            )
        ).scalar_one_or_none()
    return None


def process_paystack_event(db: Session, payload: dict[str, Any]) -> WebhookOutcome:
    if str(payload.get("event") or "").strip() != "charge.success":
        return WebhookOutcome(status="ignored", detail="Unhandled event")

    data = payload.get("data") or {}
    reference = _first_text(data.get("reference"), data.get("transaction_reference"), data.get("id"))
    try:
        amount = to_whole_naira(kobo_to_naira(data.get("amount") or 0))
    except ArithmeticError:
        amount = ZERO_MONEY
    if amount <= 0:
        return WebhookOutcome(status="ignored", detail="Non-positive amount")
    if not reference:
        return WebhookOutcome(status="ignored", detail="Missing reference")
    currency = str(data.get("currency") or "NGN").strip().upper()

    if _provider_transaction_exists(db, "paystack", reference):
        return WebhookOutcome(status="duplicate")

    pending = find_payment_by_reference(db, reference)
    if pending is not None and pending.method == "paystack":
        _record_provider_transaction(
            db,
            provider="paystack",
            reference=reference,
            amount=amount,
            currency=currency,
            owner_type="user" if pending.user_id else None,
            owner_id=pending.user_id,
            payload=payload,
        )
        confirmation = confirm_quote_payment(db, pending, settled_amount=amount)
        log_event("paystack_quote_payment_webhook", reference=reference, amount=str(amount))
        return WebhookOutcome(status="processed", amount=amount, confirmations=[confirmation])

    commitment = find_commitment_by_reference(db, reference)
    if commitment is not None and commitment.method == "paystack":
        _record_provider_transaction(
            db,
            provider="paystack",
            reference=reference,
            amount=amount,
            currency=currency,
            owner_type="user",
            owner_id=commitment.user_id,
            payload=payload,
        )
        opened = confirm_commitment_payment(db, commitment, settled_amount=amount)
        log_event("paystack_commitment_webhook", reference=reference, handoff_id=opened.handoff.id)
        return WebhookOutcome(status="processed", amount=amount, commitments=[opened])

    account_number = _first_text(
        (data.get("dedicated_account") or {}).get("account_number"),
        (data.get("authorization") or {}).get("account_number"),
        (data.get("metadata") or {}).get("account_number"),
    )
    customer_code = _first_text(
        (data.get("customer") or {}).get("customer_code"),
        (data.get("customer") or {}).get("id"),
        (data.get("metadata") or {}).get("customer_code"),
    )
    account = _find_virtual_account(db, "paystack", account_number=account_number, provider_ref=customer_code)
    if account is None:
        return WebhookOutcome(status="ignored", detail="No matching virtual account")

    _record_provider_transaction(
        db,
        provider="paystack",
        reference=reference,
        amount=amount,
        currency=currency,
        owner_type=account.owner_type,
        owner_id=account.owner_id,
        payload=payload,
    )
    wallet = get_or_create_wallet(db, owner_type=account.owner_type, owner_id=account.owner_id)
    credit_wallet(
        db,
        wallet,
        amount,
        reason="paystack_deposit",
        reference_type="paystack",
        reference_id=reference,
    )
    log_event("paystack_wallet_credited", reference=reference, wallet_id=wallet.id, amount=str(amount))
    return WebhookOutcome(status="processed", amount=amount)


def process_providus_settlement(db: Session, body: dict[str, Any]) -> WebhookOutcome:
    """Returns the Providus response code as ``status``; the caller has already checked the signature."""
    session_id = str(body.get("sessionId") or "").strip()
    settlement_id = str(body.get("settlementId") or "").strip()
    account_number = str(body.get("accountNumber") or "").strip()
    if not settlement_id or not account_number:
        return WebhookOutcome(status=PROVIDUS_REJECTED, detail="Missing settlementId or accountNumber")

    account = _find_virtual_account(db, "providus", account_number=account_number, provider_ref=None)
    if account is None:
        return WebhookOutcome(status=PROVIDUS_REJECTED, detail="Unknown account")

    if _provider_transaction_exists(db, "providus", settlement_id):
        return WebhookOutcome(status=PROVIDUS_DUPLICATE)

    settled = to_decimal(body.get("settledAmount") or 0)
    credit_amount = to_money(settled if settled > 0 else to_decimal(body.get("transactionAmount") or 0))
    if credit_amount <= 0:
        return WebhookOutcome(status=PROVIDUS_REJECTED, detail="Non-positive amount")
    currency = str(body.get("currency") or "NGN").strip().upper() or "NGN"

    _record_provider_transaction(
        db,
        provider="providus",
        reference=settlement_id,
        amount=credit_amount,
        currency=currency,
        owner_type=account.owner_type,
        owner_id=account.owner_id,
        payload=body,
    )
    wallet = get_or_create_wallet(db, owner_type=account.owner_type, owner_id=account.owner_id)
    credit_wallet(
        db,
        wallet,
        credit_amount,
        reason="Providus transfer",
        reference_type="providus_settlement",
        reference_id=settlement_id,
        meta={"sessionId": session_id, "accountNumber": account_number},
    )
    confirmations: list[Confirmation] = []
    if account.owner_type == "user":
        confirmations = settle_pending_providus_payments(db, account.owner_id)
    log_event(
        "providus_settlement_credited",
        settlement_id=settlement_id,
        wallet_id=wallet.id,
        amount=str(credit_amount),
        quote_payments_settled=len(confirmations),
    )
    return WebhookOutcome(status=PROVIDUS_SUCCESS, amount=credit_amount, confirmations=confirmations)
