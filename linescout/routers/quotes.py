from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.config import settings
from linescout.core.deps import get_db
from linescout.core.permissions import require_staff
from linescout.core.rate_limit import SlidingWindowRateLimiter
from linescout.core.security_current import get_optional_user
from linescout.models.handoff import Handoff
from linescout.models.quote import Quote, QuotePayment
from linescout.models.rates import ShippingRate, ShippingType
from linescout.models.user import User
from linescout.routers.rates import platform_settings_out, shipping_rate_out, shipping_type_out
from linescout.schemas.common import PaginationMeta
from linescout.schemas.quote import (
    PaymentSummaryOut,
    PaymentVerifyOut,
    PublicQuoteOut,
    QuoteConfigOut,
    QuoteCreateIn,
    QuoteListOut,
    QuoteOut,
    QuotePayIn,
    QuotePaymentOut,
    QuotePayOut,
    QuoteSendOut,
    QuoteUpdateIn,
)
from linescout.services.email_service import quote_link
from linescout.services.handoff_service import can_manage_handoff
from linescout.services.payment_provider import PaymentProviderError
from linescout.services.pdf_export_service import build_quote_pdf
from linescout.services.quote_calculator import QUOTE_PAYMENT_PURPOSES, QuotePaymentError
from linescout.services.quote_payment_service import (
    Confirmation,
    WalletSignInRequired,
    get_payment_overview,
    initiate_quote_payment,
    send_confirmation_emails,
    verify_provider_payment,
)
from linescout.services.quote_service import (
    can_view_quote,
    create_quote,
    get_quote_by_token,
    send_quote,
    update_quote,
    visible_quotes_filter,
)
from linescout.services.rates_service import get_platform_settings

router = APIRouter(prefix="/quotes", tags=["quotes"])
public_router = APIRouter(prefix="/quote", tags=["public-quote"])

pay_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.public_quote_rate_limit_requests,
    window_seconds=settings.public_quote_rate_limit_window_seconds,
)

_LOCKED_STATUSES = {"partially_paid", "paid"}


def _quote_out(quote: Quote) -> QuoteOut:
    return QuoteOut(
        id=quote.id,
        handoff_id=quote.handoff_id,
        token=quote.token,
        status=quote.status,
        currency=quote.currency,
        payment_purpose=quote.payment_purpose,
        exchange_rate_rmb=float(quote.exchange_rate_rmb),
        exchange_rate_usd=float(quote.exchange_rate_usd),
        shipping_type_id=quote.shipping_type_id,
        shipping_rate_usd=float(quote.shipping_rate_usd),
        shipping_rate_unit=quote.shipping_rate_unit,
        markup_percent=float(quote.markup_percent),
        agent_percent=float(quote.agent_percent) if quote.agent_percent is not None else None,
        agent_commitment_percent=(
            float(quote.agent_commitment_percent) if quote.agent_commitment_percent is not None else None
        ),
        commitment_due_ngn=float(quote.commitment_due_ngn),
        deposit_enabled=bool(quote.deposit_enabled),
        deposit_percent=float(quote.deposit_percent) if quote.deposit_percent is not None else None,
        agent_note=quote.agent_note,
        items=quote.items_json or [],
        total_product_rmb=float(quote.total_product_rmb),
        total_product_ngn=float(quote.total_product_ngn),
        total_weight_kg=float(quote.total_weight_kg),
        total_cbm=float(quote.total_cbm),
        total_shipping_usd=float(quote.total_shipping_usd),
        total_shipping_ngn=float(quote.total_shipping_ngn),
        total_markup_ngn=float(quote.total_markup_ngn),
        total_due_ngn=float(quote.total_due_ngn),
        sent_at=quote.sent_at,
        created_at=quote.created_at,
    )


def _payment_out(row: QuotePayment) -> QuotePaymentOut:
    return QuotePaymentOut(
        id=row.id,
        purpose=row.purpose,
        method=row.method,
        status=row.status,
        amount=float(row.amount),
        currency=row.currency,
        provider_ref=row.provider_ref,
        created_at=row.created_at,
        paid_at=row.paid_at,
    )


def _summary_out(db: Session, quote: Quote) -> PaymentSummaryOut:
    overview = get_payment_overview(db, quote)
    deposit_amount = overview["deposit_amount"]
    return PaymentSummaryOut(
        product_target=float(overview["product_target"]),
        deposit_amount=float(deposit_amount) if deposit_amount is not None else None,
        deposit_paid=float(overview["deposit_paid"]),
        product_paid=float(overview["product_paid"]),
        product_remaining=float(overview["product_remaining"]),
        shipping_due=float(overview["shipping_due"]),
        shipping_paid=float(overview["shipping_paid"]),
        shipping_remaining=float(overview["shipping_remaining"]),
        payments=[_payment_out(row) for row in overview["payments"]],
    )


def _load_quote(db: Session, quote_id: str, user: User) -> Quote:
    quote = db.get(Quote, quote_id)
    if not quote or not can_view_quote(db, user, quote):
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote


def _load_public_quote(db: Session, token: str) -> Quote:
    quote = get_quote_by_token(db, token)
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _verify_out(confirmation: Confirmation, quote: Quote | None) -> PaymentVerifyOut:
    payment = confirmation.payment
    return PaymentVerifyOut(
        already_paid=confirmation.already_paid,
        quote_token=quote.token if quote else None,
        purpose=payment.purpose,
        amount=float(payment.amount),
        status=payment.status,
    )


@router.get(
    "/config",
    response_model=QuoteConfigOut,
    summary="Quote builder defaults",
    description="Platform settings plus the active shipping types and rates an agent can pick from.",
    responses=error_responses(401, 403, 500),
)
def get_quote_config(db: Session = Depends(get_db), _user: User = Depends(require_staff)):
    platform = get_platform_settings(db)
    types = db.execute(
        select(ShippingType).where(ShippingType.is_active.is_(True)).order_by(ShippingType.name.asc())
    ).scalars().all()
    rates = db.execute(
        select(ShippingRate)
        .join(ShippingType, ShippingType.id == ShippingRate.shipping_type_id)
        .where(ShippingRate.is_active.is_(True), ShippingType.is_active.is_(True))
        .order_by(ShippingRate.created_at.desc(), ShippingRate.id.desc())
    ).scalars().all()
    db.commit()
    return QuoteConfigOut(
        settings=platform_settings_out(platform),
        shipping_types=[shipping_type_out(row) for row in types],
        shipping_rates=[shipping_rate_out(row) for row in rates],
    )


@router.get(
    "",
    response_model=QuoteListOut,
    summary="List quotes",
    responses=error_responses(401, 403, 422, 500),
)
def list_quotes(
    handoff_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    filters = []
    visibility = visible_quotes_filter(user)
    if visibility is not None:
        filters.append(visibility)
    if handoff_id:
        filters.append(Quote.handoff_id == handoff_id)
    if status:
        filters.append(Quote.status == status.strip().lower())

    total = int(db.execute(select(func.count(Quote.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Quote).where(*filters).order_by(Quote.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    count = len(rows)
    return QuoteListOut(
        items=[_quote_out(row) for row in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "",
    response_model=QuoteOut,
    summary="Create a quote for a handoff",
    description=(
        "Only the agent assigned to the handoff, or an admin, can quote it. Missing rates and "
        "percentages come from platform settings; picking a shipping type prices shipping from "
        "its active rate."
    ),
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def post_quote(payload: QuoteCreateIn, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    handoff = db.get(Handoff, payload.handoff_id)
    if not handoff:
        raise HTTPException(status_code=404, detail="Handoff not found")
    if not can_manage_handoff(user, handoff):
        raise HTTPException(status_code=403, detail="Only the assigned agent or an admin can quote this handoff")
    if handoff.status == "cancelled":
        raise HTTPException(status_code=400, detail="Cannot quote a cancelled handoff")

    data = payload.model_dump(exclude_none=True)
    try:
        quote = create_quote(db, handoff=handoff, actor=user, data=data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(quote)
    return _quote_out(quote)


@router.get(
    "/{quote_id}",
    response_model=QuoteOut,
    summary="Get quote",
    responses=error_responses(401, 403, 404, 500),
)
def get_quote(quote_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    return _quote_out(_load_quote(db, quote_id, user))


@router.patch(
    "/{quote_id}",
    response_model=QuoteOut,
    summary="Update quote",
    description="Recomputes totals. Quotes that have received money can no longer be edited.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def patch_quote(
    quote_id: str,
    payload: QuoteUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
):
    quote = _load_quote(db, quote_id, user)
    if quote.status in _LOCKED_STATUSES:
        raise HTTPException(status_code=400, detail="Quote can no longer be edited after payment")

    data = payload.model_dump(exclude_none=True)
    try:
        quote = update_quote(db, quote, actor=user, data=data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(quote)
    return _quote_out(quote)


@router.post(
    "/{quote_id}/send",
    response_model=QuoteSendOut,
    summary="Send quote to the customer",
    description="Marks a draft quote as sent and emails the customer the quote link.",
    responses=error_responses(401, 403, 404, 500),
)
def post_send_quote(quote_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    quote = _load_quote(db, quote_id, user)
    handoff = db.get(Handoff, quote.handoff_id)
    delivery = send_quote(db, quote, actor=user, handoff=handoff)
    db.commit()
    db.refresh(quote)
    return QuoteSendOut(quote=_quote_out(quote), email_status=delivery.status, quote_url=quote_link(quote.token))


@router.get(
    "/{quote_id}/payments",
    response_model=PaymentSummaryOut,
    summary="Quote payment summary",
    responses=error_responses(401, 403, 404, 500),
)
def get_quote_payments(quote_id: str, db: Session = Depends(get_db), user: User = Depends(require_staff)):
    return _summary_out(db, _load_quote(db, quote_id, user))


@public_router.get(
    "/paystack/verify",
    response_model=PaymentVerifyOut,
    summary="Verify a Paystack payment",
    description="Called from the Paystack callback URL. Safe to call repeatedly.",
    responses=error_responses(400, 404, 422, 500, 502),
)
def verify_paystack(
    reference: str = Query(min_length=1),
    db: Session = Depends(get_db),
):
    try:
        confirmation = verify_provider_payment(db, "paystack", reference)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except QuotePaymentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    db.commit()
    send_confirmation_emails(db, [confirmation])
    quote = db.get(Quote, confirmation.payment.quote_id)
    return _verify_out(confirmation, quote)


@public_router.get(
    "/paypal/verify",
    response_model=PaymentVerifyOut,
    summary="Capture a PayPal order",
    description="PayPal redirects here with `token` set to the order id.",
    responses=error_responses(400, 404, 422, 500, 502),
)
def verify_paypal(
    token: str = Query(min_length=1),
    db: Session = Depends(get_db),
):
    try:
        confirmation = verify_provider_payment(db, "paypal", token)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except QuotePaymentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    db.commit()
    send_confirmation_emails(db, [confirmation])
    quote = db.get(Quote, confirmation.payment.quote_id)
    return _verify_out(confirmation, quote)


@public_router.get(
    "/{token}",
    response_model=PublicQuoteOut,
    summary="Public quote page",
    responses=error_responses(404, 500),
)
def get_public_quote(token: str, db: Session = Depends(get_db)):
    quote = _load_public_quote(db, token)
    handoff = db.get(Handoff, quote.handoff_id)
    return PublicQuoteOut(
        token=quote.token,
        status=quote.status,
        handoff_token=handoff.token if handoff else None,
        handoff_status=handoff.status if handoff else None,
        customer_name=handoff.customer_name if handoff else None,
        currency=quote.currency,
        items=quote.items_json or [],
        shipping_type_id=quote.shipping_type_id,
        shipping_rate_unit=quote.shipping_rate_unit,
        total_product_ngn=float(quote.total_product_ngn),
        total_shipping_ngn=float(quote.total_shipping_ngn),
        total_markup_ngn=float(quote.total_markup_ngn),
        total_due_ngn=float(quote.total_due_ngn),
        commitment_due_ngn=float(quote.commitment_due_ngn),
        deposit_enabled=bool(quote.deposit_enabled),
        deposit_percent=float(quote.deposit_percent) if quote.deposit_percent is not None else None,
        agent_note=quote.agent_note,
        summary=_summary_out(db, quote),
    )


@public_router.get(
    "/{token}/payments",
    response_model=PaymentSummaryOut,
    summary="Public payment history",
    responses=error_responses(404, 500),
)
def get_public_payments(token: str, db: Session = Depends(get_db)):
    return _summary_out(db, _load_public_quote(db, token))


@public_router.post(
    "/{token}/pay",
    response_model=QuotePayOut,
    summary="Pay towards a quote",
    description=(
        "Applies the signed-in customer's wallet first when `use_wallet` is set, then starts a "
        "provider payment for any remainder: a Paystack checkout, a PayPal order or Providus "
        "transfer details."
    ),
    responses=error_responses(400, 401, 404, 422, 429, 500, 502),
)
def post_pay(
    token: str,
    payload: QuotePayIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
):
    retry_after = pay_rate_limiter.check_and_consume(f"{token}:{_client_ip(request)}")
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many payment attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    if payload.purpose not in QUOTE_PAYMENT_PURPOSES:
        raise HTTPException(status_code=400, detail="Unsupported payment purpose")

    quote = _load_public_quote(db, token)
    try:
        result = initiate_quote_payment(
            db,
            quote,
            purpose=payload.purpose,
            use_wallet=payload.use_wallet,
            shipping_type_id=payload.shipping_type_id,
            user=user,
        )
    except WalletSignInRequired as exc:
        db.rollback()
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        db.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    send_confirmation_emails(db, result.confirmations)

    return QuotePayOut(
        purpose=result.purpose,
        required=float(result.required),
        wallet_applied=float(result.wallet_applied),
        remaining=float(result.remaining),
        provider=result.provider,
        reference=result.reference,
        authorization_url=result.authorization_url,
        account_number=result.account_number,
        account_name=result.account_name,
        bank_name=result.bank_name,
        note=result.note,
    )


@public_router.get(
    "/{token}/pdf",
    summary="Download quote PDF",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}, **error_responses(404, 500)},
)
def get_quote_pdf(token: str, db: Session = Depends(get_db)):
    quote = _load_public_quote(db, token)
    handoff = db.get(Handoff, quote.handoff_id)
    return Response(
        content=build_quote_pdf(quote, handoff),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="linescout-quote-{quote.token}.pdf"'},
    )
