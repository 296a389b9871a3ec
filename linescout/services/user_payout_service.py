"""Customer withdrawals from the user wallet.

Unlike agent payouts, the requested amount is debited from the wallet when the
request is created. Rejecting the request credits it back; paying it only sends
the bank transfer.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linescout.core.money import kobo_to_naira, naira_to_kobo, to_money
from linescout.core.observability import log_event
from linescout.models.payments import UserPayoutAccount, UserPayoutRequest
from linescout.models.user import User
from linescout.services.audit_service import log_audit_event
from linescout.services.notification_service import create_notification
from linescout.services.payout_service import (
    PayoutStateError,
    clean_bank_details,
    send_bank_transfer,
    transfers_mocked,
)
from linescout.services.wallet_service import (
    InsufficientWalletBalance,
    credit_wallet,
    debit_wallet,
    get_wallet,
)

USER_PAYOUT_STATUSES = ("pending", "approved", "rejected", "paid")
USER_PAYOUT_REFERENCE_TYPE = "user_payout_request"


def get_user_payout_account(db: Session, user_id: str) -> UserPayoutAccount | None:
    return db.execute(
        select(UserPayoutAccount).where(UserPayoutAccount.user_id == user_id)
    ).scalar_one_or_none()


def upsert_user_payout_account(
    db: Session,
    *,
    user_id: str,
    bank_code: str,
    account_number: str,
    account_name: str | None,
) -> UserPayoutAccount:
    bank_code, account_number = clean_bank_details(bank_code, account_number)
    account = get_user_payout_account(db, user_id)
    if account is None:
        account = UserPayoutAccount(id=str(uuid.uuid4()), user_id=user_id)
        db.add(account)
    changed = account.bank_code != bank_code or account.account_number != account_number
    account.bank_code = bank_code
    account.account_number = account_number
    account.account_name = (account_name or "").strip() or None
    if changed:
        account.status = "pending"
        account.verified_at = None
        account.recipient_code = None
    db.flush()
    return account


def verify_user_payout_account(db: Session, user_id: str, *, actor: User) -> UserPayoutAccount:
    account = get_user_payout_account(db, user_id)
    if account is None:
        raise LookupError("Payout account not found")
    account.status = "verified"
    account.verified_at = datetime.now(timezone.utc)
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="user_payout_account.verify",
        target_type="user_payout_account",
        target_id=account.id,
        metadata_json={"user_id": user_id},
    )
    db.flush()
    return account


def create_user_payout_request(
    db: Session, *, user: User, amount: Decimal, note: str | None
) -> UserPayoutRequest:
    value = to_money(amount)
    if value <= 0:
        raise ValueError("Amount must be greater than 0")
    if get_user_payout_account(db, user.id) is None:
        raise PayoutStateError("Add your bank account first.")
    wallet = get_wallet(db, owner_type="user", owner_id=user.id)
    if wallet is None:
        raise InsufficientWalletBalance("Insufficient balance")

    request = UserPayoutRequest(
        id=str(uuid.uuid4()),
        user_id=user.id,
        amount_kobo=naira_to_kobo(value),
        currency="NGN",
        status="pending",
        requested_note=(note or "").strip() or None,
    )
    db.add(request)
    db.flush()
    debit_wallet(
        db,
        wallet,
        value,
        reason="User payout request",
        reference_type=USER_PAYOUT_REFERENCE_TYPE,
        reference_id=request.id,
        created_by_user_id=user.id,
    )
    log_audit_event(
        db,
        actor_user_id=user.id,
        action="user_payout_request.create",
        target_type="user_payout_request",
        target_id=request.id,
        metadata_json={"amount": str(value)},
    )
    return request


def list_user_payout_requests(
    db: Session,
    *,
    user_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[UserPayoutRequest], int]:
    filters = []
    if user_id:
        filters.append(UserPayoutRequest.user_id == user_id)
    if status:
        filters.append(UserPayoutRequest.status == status)

    total = int(db.execute(select(func.count(UserPayoutRequest.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(UserPayoutRequest)
        .where(*filters)
        .order_by(UserPayoutRequest.created_at.desc(), UserPayoutRequest.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return rows, total


def _load_request(db: Session, request_id: str) -> UserPayoutRequest:
    request = db.get(UserPayoutRequest, request_id)
    if request is None:
        raise LookupError("Payout request not found")
    return request


def approve_user_payout_request(
    db: Session, request_id: str, *, actor: User, note: str | None = None
) -> UserPayoutRequest:
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
        action="user_payout_request.approve",
        target_type="user_payout_request",
        target_id=request.id,
    )
    db.flush()
    return request


def reject_user_payout_request(
    db: Session, request_id: str, *, actor: User, note: str | None
) -> UserPayoutRequest:
    request = _load_request(db, request_id)
    if request.status != "pending":
        raise PayoutStateError(f"Payout request is {request.status}, only pending requests can be rejected")
    note = (note or "").strip()
    if not note:
        raise ValueError("admin_note is required when rejecting a payout")

    amount = kobo_to_naira(request.amount_kobo)
    wallet = get_wallet(db, owner_type="user", owner_id=request.user_id)
    if wallet is None:
        raise LookupError("Wallet not found")
    credit_wallet(
        db,
        wallet,
        amount,
        reason="User payout request rejected",
        reference_type=USER_PAYOUT_REFERENCE_TYPE,
        reference_id=request.id,
        created_by_user_id=actor.id,
    )
    request.status = "rejected"
    request.rejected_at = datetime.now(timezone.utc)
    request.admin_note = note
    create_notification(
        db,
        user_id=request.user_id,
        title="Withdrawal rejected",
        body=f"NGN {amount:,.2f} is back in your wallet. {note}",
        data={"type": "user_payout_request", "user_payout_request_id": request.id, "status": "rejected"},
    )
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="user_payout_request.reject",
        target_type="user_payout_request",
        target_id=request.id,
        metadata_json={"admin_note": note, "refunded": str(amount)},
    )
    db.flush()
    return request


def pay_user_payout_request(db: Session, request_id: str, *, actor: User) -> UserPayoutRequest:
    request = _load_request(db, request_id)
    if request.status != "approved":
        raise PayoutStateError(f"Payout request is {request.status}, only approved requests can be paid")
    account = get_user_payout_account(db, request.user_id)
    if account is None or account.status != "verified":
        raise PayoutStateError("Payout account is not verified")

    user = db.get(User, request.user_id)
    request.transfer_code, request.transfer_reference = send_bank_transfer(
        db,
        account,
        request_id=request.id,
        amount_kobo=int(request.amount_kobo),
        reason=request.requested_note or f"Wallet withdrawal #{request.id}",
        fallback_name=(user.full_name if user else None) or "LineScout Customer",
    )
    request.status = "paid"
    request.paid_at = datetime.now(timezone.utc)
    amount = kobo_to_naira(request.amount_kobo)
    create_notification(
        db,
        user_id=request.user_id,
        title="Withdrawal sent",
        body=f"NGN {amount:,.2f} has been sent to your bank account.",
        data={"type": "user_payout_request", "user_payout_request_id": request.id, "status": "paid"},
    )
    log_audit_event(
        db,
        actor_user_id=actor.id,
        action="user_payout_request.pay",
        target_type="user_payout_request",
        target_id=request.id,
        metadata_json={"transfer_code": request.transfer_code, "amount": str(amount)},
    )
    db.flush()
    log_event("user_payout_paid", user_payout_request_id=request.id, amount=str(amount), mocked=transfers_mocked())
    return request
