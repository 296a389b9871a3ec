from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.security_current import get_current_user
from linescout.models.user import User
from linescout.schemas.handoff import CommitmentPayIn, CommitmentPayOut, CommitmentVerifyOut
from linescout.services.commitment_service import (
    CommitmentConfirmation,
    CommitmentPaymentError,
    initiate_commitment_payment,
    send_commitment_email,
    verify_commitment_payment,
)
from linescout.services.payment_provider import PaymentProviderError

router = APIRouter(prefix="/commitments", tags=["commitments"])


def _verify_out(confirmation: CommitmentConfirmation) -> CommitmentVerifyOut:
    payment = confirmation.payment
    return CommitmentVerifyOut(
        already_paid=confirmation.already_paid,
        status=payment.status,
        amount=float(payment.amount),
        reference=payment.provider_ref,
        handoff_id=confirmation.handoff.id,
        handoff_token=confirmation.handoff.token,
    )


@router.post(
    "/pay",
    response_model=CommitmentPayOut,
    summary="Start a commitment fee checkout",
    description=(
        "Charges the platform commitment fee. PayPal customers are charged the USD equivalent; "
        "everyone else pays through Paystack. The handoff is opened once the payment is verified."
    ),
    responses=error_responses(400, 401, 403, 422, 500, 502),
)
def post_commitment_pay(
    payload: CommitmentPayIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        checkout = initiate_commitment_payment(
            db,
            user=user,
            route_type=payload.route_type,
            customer_name=payload.customer_name,
            whatsapp_number=payload.whatsapp_number,
            context=payload.context,
        )
    except CommitmentPaymentError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    db.commit()
    return CommitmentPayOut(
        provider=checkout.provider,
        reference=checkout.reference,
        authorization_url=checkout.authorization_url,
        amount=float(checkout.payment.amount),
        charge_amount=float(checkout.charge_amount),
        charge_currency=checkout.charge_currency,
    )


def _verify(db: Session, provider_name: str, reference: str, user: User) -> CommitmentVerifyOut:
    try:
        confirmation = verify_commitment_payment(db, provider_name, reference, user=user)
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CommitmentPaymentError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    db.commit()
    send_commitment_email(db, confirmation)
    return _verify_out(confirmation)


@router.get(
    "/paystack/verify",
    response_model=CommitmentVerifyOut,
    summary="Verify a Paystack commitment payment",
    description="Safe to call repeatedly; the handoff is opened once.",
    responses=error_responses(400, 401, 404, 422, 500, 502),
)
def verify_paystack_commitment(
    reference: str = Query(min_length=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _verify(db, "paystack", reference, user)


@router.get(
    "/paypal/verify",
    response_model=CommitmentVerifyOut,
    summary="Capture a PayPal commitment payment",
    description="PayPal redirects here with `token` set to the order id.",
    responses=error_responses(400, 401, 404, 422, 500, 502),
)
def verify_paypal_commitment(
    token: str = Query(min_length=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _verify(db, "paypal", token, user)
