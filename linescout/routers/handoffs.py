from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.permissions import is_admin, require_admin, require_staff
from linescout.core.security_current import get_current_user, get_optional_user
from linescout.models.handoff import Handoff, HandoffPayment, HandoffStatusEvent
from linescout.models.rates import ShippingCompany
from linescout.models.user import User
from linescout.schemas.common import PaginationMeta
from linescout.schemas.handoff import (
    HandoffCreateIn,
    HandoffFinancialTotalIn,
    HandoffFinancialsOut,
    HandoffHistoryOut,
    HandoffListOut,
    HandoffOut,
    HandoffPaymentCreateIn,
    HandoffPaymentOut,
    HandoffStatusEventOut,
    HandoffStatusUpdateIn,
)
from linescout.services.audit_service import log_audit_event
from linescout.services.handoff_service import (
    HandoffClaimConflict,
    InvalidStatusTransition,
    add_handoff_payment,
    can_manage_handoff,
    claim_handoff,
    create_handoff,
    get_financial_summary,
    list_handoff_payments,
    update_handoff_status,
    upsert_financial_total_due,
)

router = APIRouter(prefix="/handoffs", tags=["handoffs"])


def _payment_out(row: HandoffPayment) -> HandoffPaymentOut:
    return HandoffPaymentOut(
        id=row.id,
        purpose=row.purpose,
        amount=float(row.amount),
        currency=row.currency,
        note=row.note,
        quote_payment_id=row.quote_payment_id,
        recorded_by_user_id=row.recorded_by_user_id,
        paid_at=row.paid_at,
    )


def _financials_out(db: Session, handoff_id: str) -> HandoffFinancialsOut:
    summary = get_financial_summary(db, handoff_id)
    return HandoffFinancialsOut(
        handoff_id=handoff_id,
        currency=summary.currency,
        total_due=float(summary.total_due),
        total_paid=float(summary.total_paid),
        balance=float(summary.balance),
        payments=[_payment_out(row) for row in list_handoff_payments(db, handoff_id)],
    )


def _load_handoff(db: Session, handoff_id: str) -> Handoff:
    handoff = db.get(Handoff, handoff_id)
    if not handoff:
        raise HTTPException(status_code=404, detail="Handoff not found")
    return handoff


def _load_visible_handoff(db: Session, handoff_id: str, user: User) -> Handoff:
    """Agents see the unclaimed queue and their own handoffs."""
    handoff = _load_handoff(db, handoff_id)
    if handoff.status == "pending" or can_manage_handoff(user, handoff):
        return handoff
    raise HTTPException(status_code=404, detail="Handoff not found")


def _load_managed_handoff(db: Session, handoff_id: str, user: User) -> Handoff:
    handoff = _load_handoff(db, handoff_id)
    if not can_manage_handoff(user, handoff):
        raise HTTPException(status_code=403, detail="Only the assigned agent or an admin can do this")
    return handoff


@router.post(
    "",
    response_model=HandoffOut,
    summary="Open a sourcing handoff",
    description=(
        "Starts a sourcing request. Signed-in customers are linked to the handoff; "
        "anonymous requests must leave an email or WhatsApp number."
    ),
    responses=error_responses(400, 401, 422, 500),
)
def post_handoff(
    payload: HandoffCreateIn,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
):
    customer = user if user is not None and user.role == "customer" else None
    if customer is None and not payload.email and not payload.whatsapp_number:
        raise HTTPException(status_code=400, detail="Email or WhatsApp number is required")
    try:
        handoff = create_handoff(
            db,
            route_type=payload.route_type,
            customer=customer,
            customer_name=payload.customer_name,
            email=str(payload.email).lower() if payload.email else None,
            whatsapp_number=payload.whatsapp_number,
            context=payload.context,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(handoff)
    return HandoffOut.model_validate(handoff)


@router.get(
    "",
    response_model=HandoffListOut,
    summary="List handoffs",
    description="Admins see every handoff. Agents see pending handoffs plus the ones assigned to them.",
    responses=error_responses(401, 403, 422, 500),
)
def list_handoffs(
    status: str | None = Query(default=None),
    route_type: str | None = Query(default=None),
    mine: bool = Query(default=False),
    q: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    filters = []
    if mine:
        filters.append(Handoff.assigned_agent_id == user.id)
    elif not is_admin(user):
        filters.append(or_(Handoff.status == "pending", Handoff.assigned_agent_id == user.id))
    if status:
        filters.append(Handoff.status == status.strip().lower())
    if route_type:
        filters.append(Handoff.route_type == route_type.strip().lower())
    if q:
        pattern = f"%{q.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Handoff.token).like(pattern),
                func.lower(Handoff.customer_name).like(pattern),
                func.lower(Handoff.email).like(pattern),
            )
        )

    total = int(db.execute(select(func.count(Handoff.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Handoff).where(*filters).order_by(Handoff.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    count = len(rows)
    return HandoffListOut(
        items=[HandoffOut.model_validate(row) for row in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/me",
    response_model=list[HandoffOut],
    summary="List my sourcing requests",
    responses=error_responses(401, 500),
)
def list_my_handoffs(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = db.execute(
        select(Handoff)
        .where(or_(Handoff.customer_user_id == user.id, func.lower(Handoff.email) == user.email.lower()))
        .order_by(Handoff.created_at.desc())
    ).scalars().all()
    return [HandoffOut.model_validate(row) for row in rows]


@router.get(
    "/{handoff_id}",
    response_model=HandoffOut,
    summary="Get handoff",
    responses=error_responses(401, 403, 404, 500),
)
def get_handoff(handoff_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    return HandoffOut.model_validate(_load_visible_handoff(db, handoff_id, user))


@router.post(
    "/{handoff_id}/claim",
    response_model=HandoffOut,
    summary="Claim a pending handoff",
    description="Exactly one agent can claim a handoff; later attempts get 409.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def post_claim(handoff_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    _load_handoff(db, handoff_id)
    try:
        handoff = claim_handoff(db, handoff_id, user)
    except HandoffClaimConflict as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.commit()
    db.refresh(handoff)
    return HandoffOut.model_validate(handoff)


@router.post(
    "/{handoff_id}/status",
    response_model=HandoffOut,
    summary="Move a handoff to its next status",
    description=(
        "Follows pending → claimed → manufacturer_found → paid → shipped → delivered; "
        "any non-terminal handoff can be cancelled with a reason. Shipping requires a shipper "
        "and tracking number."
    ),
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def post_status(
    handoff_id: str,
    payload: HandoffStatusUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    handoff = _load_managed_handoff(db, handoff_id, user)
    if payload.shipping_company_id and not db.get(ShippingCompany, payload.shipping_company_id):
        raise HTTPException(status_code=404, detail="Shipping company not found")
    try:
        handoff = update_handoff_status(
            db,
            handoff,
            target_status=payload.status,
            actor=user,
            shipper=payload.shipper,
            shipping_company_id=payload.shipping_company_id,
            tracking_number=payload.tracking_number,
            cancel_reason=payload.cancel_reason,
            bank_id=payload.bank_id,
            note=payload.note,
        )
    except InvalidStatusTransition as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(handoff)
    return HandoffOut.model_validate(handoff)


@router.get(
    "/{handoff_id}/history",
    response_model=HandoffHistoryOut,
    summary="Status history",
    responses=error_responses(401, 403, 404, 500),
)
def get_history(handoff_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    _load_visible_handoff(db, handoff_id, user)
    rows = db.execute(
        select(HandoffStatusEvent)
        .where(HandoffStatusEvent.handoff_id == handoff_id)
        .order_by(HandoffStatusEvent.created_at.asc())
    ).scalars().all()
    return HandoffHistoryOut(items=[HandoffStatusEventOut.model_validate(row) for row in rows])


@router.get(
    "/{handoff_id}/financials",
    response_model=HandoffFinancialsOut,
    summary="Handoff money summary",
    responses=error_responses(401, 403, 404, 500),
)
def get_financials(handoff_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    _load_managed_handoff(db, handoff_id, user)
    return _financials_out(db, handoff_id)


@router.put(
    "/{handoff_id}/financials",
    response_model=HandoffFinancialsOut,
    summary="Override handoff total due",
    responses=error_responses(401, 403, 404, 422, 500),
)
def put_financials(
    handoff_id: str,
    payload: HandoffFinancialTotalIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    _load_handoff(db, handoff_id)
    upsert_financial_total_due(db, handoff_id, payload.total_due)
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action="handoff.financials.update",
        target_type="handoff",
        target_id=handoff_id,
        metadata_json={"total_due": str(payload.total_due)},
    )
    db.commit()
    return _financials_out(db, handoff_id)


@router.post(
    "/{handoff_id}/payments",
    response_model=HandoffFinancialsOut,
    summary="Record an offline payment",
    description="For money received outside quote checkout, for example a direct bank transfer.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def post_payment(
    handoff_id: str,
    payload: HandoffPaymentCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    handoff = _load_managed_handoff(db, handoff_id, user)
    if handoff.status == "cancelled":
        raise HTTPException(status_code=400, detail="Cannot record payments on a cancelled handoff")
    try:
        payment = add_handoff_payment(
            db,
            handoff_id=handoff.id,
            purpose=payload.purpose.strip().lower(),
            amount=payload.amount,
            note=payload.note,
            recorded_by_user_id=user.id,
            paid_at=payload.paid_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit_event(
        db,
        actor_user_id=user.id,
        action="handoff.payment.create",
        target_type="handoff",
        target_id=handoff.id,
        metadata_json={"payment_id": payment.id, "amount": str(payment.amount), "purpose": payment.purpose},
    )
    db.commit()
    return _financials_out(db, handoff.id)
