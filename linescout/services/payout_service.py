"""Agent payout accounts and payout requests.

Requested money is held in kobo. A pending or approved request locks its
amount against the agent's commission earnings until it is paid or rejected.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linescout.core.config import settings
from linescout.core.money import kobo_to_naira, naira_to_kobo, to_money
from linescout.core.observability import log_event
from linescout.models.payments import PayoutAccount, PayoutRequest, UserPayoutAccount
from linescout.models.user import User
from linescout.services.audit_service import log_audit_event
from linescout.services.commission_service import get_agent_earnings
from linescout.services.notification_service import create_notification
from linescout.services.payment_provider import get_paystack

PAYOUT_STATUSES = ("pending", "approved", "rejected", "paid", "failed")


class PayoutStateError(ValueError):
    """The request or account is not in a state that allows the action."""


def get_payout_account(db: Session, agent_id: str) -> PayoutAccount | None:
    return db.execute(select(PayoutAccount).where(PayoutAccount.agent_id == agent_id)).scalar_one_or_none()


def clean_bank_details(bank_code: str, account_number: str) -> tuple[str, str]:
    bank_code = (bank_code or "").strip()
    account_number = (account_number or "").strip()
    if not bank_code or not account_number:
        raise ValueError("bank_code and account_number are required")
    if not account_number.isdigit() or len(account_number) != 10:
        raise ValueError("account_number must be a 10 digit NUBAN")
    return bank_code, account_number


def upsert_payout_account(
    db: Session,
    *,
    agent_id: str,
    bank_code: str,
    account_number: str,
    account_name: str | None,
) -> PayoutAccount:
    bank_code, account_number = clean_bank_details(bank_code, account_number)
    account = get_payout_account(db, agent_id)
    if account is None:
        account = PayoutAccount(id=str(uuid.uuid4()), agent_id=agent_id)
        db.add(account)
    changed = account.bank_code != bank_code or account.account_number != account_number
    account.bank_code = bank_code
    account.account_number = account_number
    account.account_name = (account_name or "").strip() or None
    if changed:
        # New bank details need a fresh verification and recipient.
        account.status = "pending"
        account.verified_at = None
        account.recipient_code = None
    db.flush()
    return account


def verify_payout_account(db: Session, agent_id: str, *, actor: User) -> PayoutAccount:
    account = get_payout_account(db, agent_id)
    if account is None:
        raise LookupError("Payout account not found")
    account.status = "verified"
    account.verified_at = datetime.now(timezone.utc)
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="payout_account.verify",
        target_type="payout_account",
        target_id=account.id,
        metadata_json={"agent_id": agent_id},
    )
    db.flush()
    return account


def create_payout_request(db: Session, *, agent: User, amount: Decimal, note: str | None) -> PayoutRequest:
    value = to_money(amount)
    minimum = to_money(settings.payout_min_amount_ngn)
    if value < minimum:
        raise ValueError(f"Minimum payout is NGN {minimum:,.2f}")

    account = get_payout_account(db, agent.id)
    if account is None or account.status != "verified":
        raise PayoutStateError("Payout account must be verified before requesting a payout")

    earnings = get_agent_earnings(db, agent.id)
    if value > earnings.available:
        raise ValueError("Amount exceeds available earnings")

    request = PayoutRequest(
        id=str(uuid.uuid4()),
        agent_id=agent.id,
        amount_kobo=naira_to_kobo(value),
        currency="NGN",
        status="pending",
        requested_note=(note or "").strip() or None,
    )
    db.add(request)
    db.flush()
    log_audit_event(
        db,
        actor_user_id=agent.id,
        action="payout_request.create",
        target_type="payout_request",
        target_id=request.id,
        metadata_json={"amount": str(value)},
    )
    return request


def list_payout_requests(
    db: Session,
    *,
    agent_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PayoutRequest], int]:
    filters = []
    if agent_id:
        filters.append(PayoutRequest.agent_id == agent_id)
    if status:
        filters.append(PayoutRequest.status == status)

    total = int(db.execute(select(func.count(PayoutRequest.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(PayoutRequest)
        .where(*filters)
        .order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, total


def _load_request(db: Session, request_id: str) -> PayoutRequest:
    request = db.get(PayoutRequest, request_id)
    if request is None:
        raise LookupError("Payout request not found")
    return request


def approve_payout_request(db: Session, request_id: str, *, actor: User, note: str | None = None) -> PayoutRequest:
    request = _load_request(db, request_id)
    if request.status != "pending":
        raise PayoutStateError(f"Payout request is {request.status}, only pending requests can be approved")
    request.status = "approved"
    request.approved_by_user_id = actor.id
    request.approved_at = datetime.now(timezone.utc)
    if note:
        request.admin_note = note.strip()
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="payout_request.approve",
        target_type="payout_request",
        target_id=request.id,
    )
    db.flush()
    return request


def reject_payout_request(db: Session, request_id: str, *, actor: User, note: str | None) -> PayoutRequest:
    request = _load_request(db, request_id)
    if request.status != "pending":
        raise PayoutStateError(f"Payout request is {request.status}, only pending requests can be rejected")
    note = (note or "").strip()
    if not note:
        raise ValueError("admin_note is required when rejecting a payout")
    request.status = "rejected"
    request.rejected_at = datetime.now(timezone.utc)
    request.admin_note = note
    create_notification(
        db,
        user_id=request.agent_id,
        title="Payout request rejected",
        body=note,
        target="agent",
        data={"type": "payout_request", "payout_request_id": request.id, "status": "rejected"},
    )
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="payout_request.reject",
        target_type="payout_request",
        target_id=request.id,
        metadata_json={"admin_note": note},
    )
    db.flush()
    return request


def transfers_mocked() -> bool:
    return settings.env.lower().strip() not in {"prod", "production"} and settings.paystack_mock_transfers


def send_bank_transfer(
    db: Session,
    account: PayoutAccount | UserPayoutAccount,
    *,
    request_id: str,
    amount_kobo: int,
    reason: str,
    fallback_name: str,
) -> tuple[str, str]:
    """Returns ``(transfer_code, reference)``. The Paystack recipient is created once and cached on the account."""
    if not account.bank_code or not account.account_number:
        raise PayoutStateError("Payout account is missing bank details")
    if transfers_mocked():
        return f"MOCK_TRF_{request_id}", f"MOCK_REF_{request_id}"

    paystack = get_paystack()
    recipient_code = account.recipient_code or ""
    if not recipient_code.startswith("RCP_"):
        recipient_code = paystack.create_transfer_recipient(
            name=account.account_name or fallback_name,
            account_number=account.account_number,
            bank_code=account.bank_code,
        )
        account.recipient_code = recipient_code
        db.flush()
    transfer = paystack.initiate_transfer(amount_kobo=amount_kobo, recipient_code=recipient_code, reason=reason)
    return transfer.transfer_code, transfer.reference


def pay_payout_request(db: Session, request_id: str, *, actor: User) -> PayoutRequest:
    """Sends the transfer for an approved request. Provider errors propagate with the request left approved."""
    request = _load_request(db, request_id)
    if request.status != "approved":
        raise PayoutStateError(f"Payout request is {request.status}, only approved requests can be paid")

    account = get_payout_account(db, request.agent_id)
    if account is None or account.status != "verified":
        raise PayoutStateError("Payout account is not verified")
    agent = db.get(User, request.agent_id)
    request.transfer_code, request.transfer_reference = send_bank_transfer(
        db,
        account,
        request_id=request.id,
        amount_kobo=int(request.amount_kobo),
        reason=request.requested_note or f"Payout request #{request.id}",
        fallback_name=(agent.full_name if agent else None) or "LineScout Agent",
    )

    request.status = "paid"
    request.paid_at = datetime.now(timezone.utc)
    amount = kobo_to_naira(request.amount_kobo)
    create_notification(
        db,
        user_id=request.agent_id,
        title="Payout sent",
        body=f"NGN {amount:,.2f} has been sent to your bank account.",
        target="agent",
        data={"type": "payout_request", "payout_request_id": request.id, "status": "paid"},
    )
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="payout_request.pay",
        target_type="payout_request",
        target_id=request.id,
        metadata_json={"transfer_code": request.transfer_code, "amount": str(amount)},
    )
    db.flush()
    log_event("payout_paid", payout_request_id=request.id, amount=str(amount), mocked=transfers_mocked())
    return request
