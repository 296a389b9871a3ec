import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.config import settings
from linescout.core.deps import get_db
from linescout.core.observability import log_event
from linescout.core.security import verify_paystack_signature, verify_providus_signature
from linescout.services.commitment_service import send_commitment_email
from linescout.services.quote_payment_service import send_confirmation_emails
from linescout.services.webhook_service import (
    PROVIDUS_DUPLICATE,
    PROVIDUS_REJECTED,
    PROVIDUS_SUCCESS,
    PROVIDUS_SYSTEM_FAILURE,
    process_paystack_event,
    process_providus_settlement,
    providus_response,
)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _parse_json(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    return payload


@router.post(
    "/paystack",
    summary="Paystack event webhook",
    description=(
        "Verifies `x-paystack-signature` (HMAC-SHA512 of the raw body) and processes "
        "`charge.success`: confirms a pending quote payment with the same reference, or credits the "
        "wallet behind a dedicated virtual account."
    ),
    responses=error_responses(400, 401, 500),
)
async def paystack_webhook(request: Request, db: Session = Depends(get_db)):
    if not settings.paystack_secret_key:
        raise HTTPException(status_code=500, detail="Paystack is not configured")
    raw_body = await request.body()
    if not verify_paystack_signature(
        raw_body, request.headers.get("x-paystack-signature"), settings.paystack_secret_key
    ):
        raise HTTPException(status_code=401, detail="Invalid signature")

    payload = _parse_json(raw_body)
    try:
        outcome = process_paystack_event(db, payload)
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same event won the insert.
        db.rollback()
        return {"ok": True, "duplicate": True}

    send_confirmation_emails(db, outcome.confirmations)
    for opened in outcome.commitments:
        send_commitment_email(db, opened)
    return {
        "ok": True,
        "status": outcome.status,
        "ignored": outcome.status == "ignored",
        "duplicate": outcome.status == "duplicate",
    }


@router.post(
    "/providus/settlement",
    summary="Providus settlement notification",
    description=(
        "Providus expects HTTP 200 with a `responseCode`: `00` success, `01` duplicate, "
        "`02` rejected, `03` retry."
    ),
    responses=error_responses(500),
)
async def providus_settlement(request: Request, db: Session = Depends(get_db)):
    raw_body = await request.body()
    try:
        body = json.loads(raw_body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        body = {}
    if not isinstance(body, dict):
        body = {}
    session_id = str(body.get("sessionId") or "").strip()

    if not settings.providus_client_id or not settings.providus_client_secret:
        return JSONResponse(
            status_code=500,
            content=providus_response(session_id, PROVIDUS_SYSTEM_FAILURE, "Providus not configured"),
        )

    if not verify_providus_signature(
        request.headers.get("x-auth-signature"),
        settings.providus_client_id,
        settings.providus_client_secret,
    ):
        return providus_response(session_id, PROVIDUS_REJECTED)

    try:
        outcome = process_providus_settlement(db, body)
        if outcome.status == PROVIDUS_SUCCESS:
            db.commit()
        else:
            db.rollback()
    except IntegrityError:
        db.rollback()
        return providus_response(session_id, PROVIDUS_DUPLICATE)
    except (SQLAlchemyError, ValueError) as exc:
        db.rollback()
        log_event(
            "providus_settlement_failed",
            level=logging.ERROR,
            settlement_id=body.get("settlementId"),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return providus_response(session_id, PROVIDUS_SYSTEM_FAILURE)

    if outcome.detail:
        log_event("providus_settlement_rejected", settlement_id=body.get("settlementId"), detail=outcome.detail)
    send_confirmation_emails(db, outcome.confirmations)
    return providus_response(session_id, outcome.status)
