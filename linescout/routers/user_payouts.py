from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.money import kobo_to_naira
from linescout.core.permissions import require_admin
from linescout.core.security_current import get_current_user
from linescout.models.payments import UserPayoutAccount, UserPayoutRequest
from linescout.models.user import User
from linescout.schemas.payments import (
    PayoutAccountIn,
    PayoutDecisionIn,
    PayoutRequestIn,
    UserPayoutAccountOut,
    UserPayoutRequestListOut,
    UserPayoutRequestOut,
)
from linescout.services.payment_provider import PaymentProviderError
from linescout.services.payout_service import PayoutStateError
from linescout.services.user_payout_service import (
    USER_PAYOUT_STATUSES,
    approve_user_payout_request,
    create_user_payout_request,
    get_user_payout_account,
    list_user_payout_requests,
    pay_user_payout_request,
    reject_user_payout_request,
    upsert_user_payout_account,
    verify_user_payout_account,
)

router = APIRouter(tags=["user payouts"])


def _account_out(account: UserPayoutAccount) -> UserPayoutAccountOut:
    return UserPayoutAccountOut(
        id=account.id,
        user_id=account.user_id,
        bank_code=account.bank_code,
        account_number=account.account_number,
        account_name=account.account_name,
        status=account.status,
        verified_at=account.verified_at,
    )


def _request_out(request: UserPayoutRequest) -> UserPayoutRequestOut:
    return UserPayoutRequestOut(
        id=request.id,
        user_id=request.user_id,
        amount=float(kobo_to_naira(request.amount_kobo)),
        currency=request.currency,
        status=request.status,
        requested_note=request.requested_note,
        admin_note=request.admin_note,
        approved_at=request.approved_at,
        rejected_at=request.rejected_at,
        paid_at=request.paid_at,
        transfer_reference=request.transfer_reference,
        transfer_code=request.transfer_code,
        created_at=request.created_at,
    )


def _status_filter(status: str | None) -> str | None:
    if status is None:
        return None
    normalized = status.strip().lower()
    if normalized not in USER_PAYOUT_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(USER_PAYOUT_STATUSES)}")
    return normalized


def _require_customer(user: User) -> None:
    if user.role == "agent":
        raise HTTPException(status_code=403, detail="Agents withdraw commission through payout requests")


@router.get(
    "/wallet/payout-account",
    response_model=UserPayoutAccountOut,
    summary="My withdrawal bank account",
    responses=error_responses(401, 403, 404, 500),
)
def my_account(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _require_customer(user)
    account = get_user_payout_account(db, user.id)
    if not account:
        raise HTTPException(status_code=404, detail="Payout account not found")
    return _account_out(account)


@router.put(
    "/wallet/payout-account",
    response_model=UserPayoutAccountOut,
    summary="Set my withdrawal bank account",
    description="Changing the bank or account number sends the account back to `pending`.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def put_account(payload: PayoutAccountIn, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _require_customer(user)
    try:
        account = upsert_user_payout_account(
            db,
            user_id=user.id,
            bank_code=payload.bank_code,
            account_number=payload.account_number,
            account_name=payload.account_name,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(account)
    return _account_out(account)


@router.post(
    "/wallet/payout-requests",
    response_model=UserPayoutRequestOut,
    summary="Withdraw from my wallet",
    description="The amount is debited from the wallet immediately and returned if an admin rejects the request.",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def post_request(payload: PayoutRequestIn, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _require_customer(user)
    try:
        request = create_user_payout_request(db, user=user, amount=payload.amount, note=payload.note)
    except PayoutStateError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(request)
    return _request_out(request)


@router.get(
    "/wallet/payout-requests",
    response_model=UserPayoutRequestListOut,
    summary="My withdrawals",
    responses=error_responses(400, 401, 403, 422, 500),
)
def my_requests(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows, total = list_user_payout_requests(
        db, user_id=user.id, status=_status_filter(status), limit=limit, offset=offset
    )
    return UserPayoutRequestListOut(items=[_request_out(row) for row in rows], total=total)


@router.post(
    "/user-payout-accounts/{user_id}/verify",
    response_model=UserPayoutAccountOut,
    summary="Verify a customer's withdrawal account",
    responses=error_responses(401, 403, 404, 500),
)
def post_verify(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        account = verify_user_payout_account(db, user_id, actor=admin)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    db.refresh(account)
    return _account_out(account)


@router.get(
    "/user-payout-requests",
    response_model=UserPayoutRequestListOut,
    summary="List customer withdrawals",
    responses=error_responses(400, 401, 403, 422, 500),
)
def get_requests(
    status: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    rows, total = list_user_payout_requests(
        db, user_id=user_id, status=_status_filter(status), limit=limit, offset=offset
    )
    return UserPayoutRequestListOut(items=[_request_out(row) for row in rows], total=total)


def _decide(db: Session, action, request_id: str, **kwargs) -> UserPayoutRequestOut:
    try:
        request = action(db, request_id, **kwargs)
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PayoutStateError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    db.commit()
    db.refresh(request)
    return _request_out(request)


@router.post(
    "/user-payout-requests/{request_id}/approve",
    response_model=UserPayoutRequestOut,
    summary="Approve a customer withdrawal",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def post_approve(
    request_id: str,
    payload: PayoutDecisionIn | None = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    note = payload.admin_note if payload else None
    return _decide(db, approve_user_payout_request, request_id, actor=admin, note=note)


@router.post(
    "/user-payout-requests/{request_id}/reject",
    response_model=UserPayoutRequestOut,
    summary="Reject a customer withdrawal",
    description="Credits the amount back to the customer's wallet. `admin_note` is required.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def post_reject(
    request_id: str,
    payload: PayoutDecisionIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return _decide(db, reject_user_payout_request, request_id, actor=admin, note=payload.admin_note)


@router.post(
    "/user-payout-requests/{request_id}/pay",
    response_model=UserPayoutRequestOut,
    summary="Send the transfer for an approved withdrawal",
    responses=error_responses(401, 403, 404, 409, 422, 500, 502),
)
def post_pay(request_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return _decide(db, pay_user_payout_request, request_id, actor=admin)
