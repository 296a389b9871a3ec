from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.money import kobo_to_naira, to_decimal
from linescout.core.permissions import require_admin, require_agent
from linescout.models.payments import PayoutAccount, PayoutRequest
from linescout.models.user import User
from linescout.models.wallet import WalletTransaction
from linescout.schemas.payments import (
    CommissionListOut,
    CommissionOut,
    EarningsOut,
    PayoutAccountIn,
    PayoutAccountOut,
    PayoutDecisionIn,
    PayoutRequestIn,
    PayoutRequestListOut,
    PayoutRequestOut,
)
from linescout.services.commission_service import EarningsSnapshot, get_agent_earnings, list_agent_commissions
from linescout.services.payment_provider import PaymentProviderError
from linescout.services.payout_service import (
    PAYOUT_STATUSES,
    PayoutStateError,
    approve_payout_request,
    create_payout_request,
    get_payout_account,
    list_payout_requests,
    pay_payout_request,
    reject_payout_request,
    upsert_payout_account,
    verify_payout_account,
)

router = APIRouter(tags=["payouts"])


def _earnings_out(snapshot: EarningsSnapshot) -> EarningsOut:
    return EarningsOut(
        gross_earned=float(snapshot.gross_earned),
        paid_out=float(snapshot.paid_out),
        locked=float(snapshot.locked),
        available=float(snapshot.available),
    )


def _commission_out(row: WalletTransaction) -> CommissionOut:
    meta = row.meta_json or {}
    base_amount = meta.get("base_amount")
    agent_percent = meta.get("agent_percent")
    return CommissionOut(
        id=row.id,
        amount=float(row.amount),
        quote_payment_id=row.reference_id,
        quote_id=meta.get("quote_id"),
        handoff_id=meta.get("handoff_id"),
        purpose=meta.get("purpose"),
        base_amount=float(to_decimal(base_amount)) if base_amount is not None else None,
        agent_percent=float(to_decimal(agent_percent)) if agent_percent is not None else None,
        created_at=row.created_at,
    )


def _account_out(account: PayoutAccount) -> PayoutAccountOut:
    return PayoutAccountOut(
        id=account.id,
        agent_id=account.agent_id,
        bank_code=account.bank_code,
        account_number=account.account_number,
        account_name=account.account_name,
        status=account.status,
        verified_at=account.verified_at,
    )


def _request_out(request: PayoutRequest) -> PayoutRequestOut:
    return PayoutRequestOut(
        id=request.id,
        agent_id=request.agent_id,
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
    if normalized not in PAYOUT_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(PAYOUT_STATUSES)}")
    return normalized


@router.get(
    "/agents/me/earnings",
    response_model=EarningsOut,
    summary="My commission earnings",
    description="`available` is gross commission less paid and pending/approved payout requests.",
    responses=error_responses(401, 403, 500),
)
def my_earnings(db: Session = Depends(get_db), agent: User = Depends(require_agent)):
    return _earnings_out(get_agent_earnings(db, agent.id))


@router.get(
    "/agents/me/commissions",
    response_model=CommissionListOut,
    summary="My commission history",
    responses=error_responses(401, 403, 422, 500),
)
def my_commissions(
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    agent: User = Depends(require_agent),
):
    rows = list_agent_commissions(db, agent.id, limit=limit)
    return CommissionListOut(
        earnings=_earnings_out(get_agent_earnings(db, agent.id)),
        items=[_commission_out(row) for row in rows],
    )


@router.get(
    "/agents/me/payout-account",
    response_model=PayoutAccountOut,
    summary="My payout bank account",
    responses=error_responses(401, 403, 404, 500),
)
def my_payout_account(db: Session = Depends(get_db), agent: User = Depends(require_agent)):
    account = get_payout_account(db, agent.id)
    if not account:
        raise HTTPException(status_code=404, detail="Payout account not found")
    return _account_out(account)


@router.put(
    "/agents/me/payout-account",
    response_model=PayoutAccountOut,
    summary="Set my payout bank account",
    description="Changing the bank or account number sends the account back to `pending` until an admin verifies it.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def put_payout_account(
    payload: PayoutAccountIn,
    db: Session = Depends(get_db),
    agent: User = Depends(require_agent),
):
    try:
        account = upsert_payout_account(
            db,
            agent_id=agent.id,
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
    "/agents/me/payout-requests",
    response_model=PayoutRequestOut,
    summary="Request a payout",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def post_payout_request(
    payload: PayoutRequestIn,
    db: Session = Depends(get_db),
    agent: User = Depends(require_agent),
):
    try:
        request = create_payout_request(db, agent=agent, amount=payload.amount, note=payload.note)
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
    "/agents/me/payout-requests",
    response_model=PayoutRequestListOut,
    summary="My payout requests",
    responses=error_responses(400, 401, 403, 422, 500),
)
def my_payout_requests(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    agent: User = Depends(require_agent),
):
    rows, total = list_payout_requests(
        db, agent_id=agent.id, status=_status_filter(status), limit=limit, offset=offset
    )
    return PayoutRequestListOut(items=[_request_out(row) for row in rows], total=total)


@router.post(
    "/payout-accounts/{agent_id}/verify",
    response_model=PayoutAccountOut,
    summary="Verify an agent's payout account",
    responses=error_responses(401, 403, 404, 500),
)
def post_verify_account(agent_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    try:
        account = verify_payout_account(db, agent_id, actor=admin)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    db.refresh(account)
    return _account_out(account)


@router.get(
    "/payout-requests",
    response_model=PayoutRequestListOut,
    summary="List payout requests",
    responses=error_responses(400, 401, 403, 422, 500),
)
def get_payout_requests(
    status: str | None = Query(default=None),
    agent_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    rows, total = list_payout_requests(
        db, agent_id=agent_id, status=_status_filter(status), limit=limit, offset=offset
    )
    return PayoutRequestListOut(items=[_request_out(row) for row in rows], total=total)


def _decide(db: Session, action, request_id: str, **kwargs) -> PayoutRequestOut:
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
    "/payout-requests/{request_id}/approve",
    response_model=PayoutRequestOut,
    summary="Approve a payout request",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def post_approve(
    request_id: str,
    payload: PayoutDecisionIn | None = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    note = payload.admin_note if payload else None
    return _decide(db, approve_payout_request, request_id, actor=admin, note=note)


@router.post(
    "/payout-requests/{request_id}/reject",
    response_model=PayoutRequestOut,
    summary="Reject a payout request",
    description="`admin_note` is required and is shown to the agent.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def post_reject(
    request_id: str,
    payload: PayoutDecisionIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return _decide(db, reject_payout_request, request_id, actor=admin, note=payload.admin_note)


@router.post(
    "/payout-requests/{request_id}/pay",
    response_model=PayoutRequestOut,
    summary="Send the transfer for an approved payout request",
    description="Uses Paystack transfers; outside production `PAYSTACK_MOCK_TRANSFERS` skips the provider.",
    responses=error_responses(401, 403, 404, 409, 422, 500, 502),
)
def post_pay(request_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return _decide(db, pay_payout_request, request_id, actor=admin)
