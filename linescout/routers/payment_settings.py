from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.permissions import require_admin
from linescout.models.user import User
from linescout.schemas.payments import (
    PaymentSettingsOut,
    PaymentSettingsUpdateIn,
    ProviderOverrideIn,
    ProviderOverrideOut,
)
from linescout.services.audit_service import log_audit_event
from linescout.services.payment_provider import PAYMENT_PROVIDER_NAMES
from linescout.services.payment_settings_service import (
    clear_provider_override,
    select_payment_provider,
    set_provider_override,
    update_payment_settings,
)
from linescout.services.wallet_service import WALLET_OWNER_TYPES

router = APIRouter(prefix="/payment-settings", tags=["payment-settings"])


def _settings_out(db: Session) -> PaymentSettingsOut:
    selection = select_payment_provider(db, owner_type="user", owner_id=None)
    return PaymentSettingsOut(
        provider_default=selection.provider,
        allow_overrides=selection.allow_overrides,
        available_providers=list(PAYMENT_PROVIDER_NAMES),
    )


def _owner_type(value: str) -> str:
    owner_type = value.strip().lower()
    if owner_type not in WALLET_OWNER_TYPES:
        raise HTTPException(status_code=400, detail=f"owner_type must be one of: {', '.join(WALLET_OWNER_TYPES)}")
    return owner_type


@router.get(
    "",
    response_model=PaymentSettingsOut,
    summary="Get payment provider settings",
    responses=error_responses(401, 403, 500),
)
def get_settings(db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    return _settings_out(db)


@router.put(
    "",
    response_model=PaymentSettingsOut,
    summary="Set the default payment provider",
    responses=error_responses(400, 401, 403, 422, 500),
)
def put_settings(
    payload: PaymentSettingsUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        row = update_payment_settings(
            db,
            actor_user_id=admin.id,
            provider_default=payload.provider_default,
            allow_overrides=payload.allow_overrides,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action="payment_settings.update",
        target_type="payment_settings",
        target_id=row.id,
        metadata_json={"provider_default": row.provider_default, "allow_overrides": row.allow_overrides},
    )
    db.commit()
    return _settings_out(db)


@router.put(
    "/overrides",
    response_model=ProviderOverrideOut,
    summary="Pin a provider for one user or agent",
    description="Ignored at payment time while `allow_overrides` is false.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def put_override(
    payload: ProviderOverrideIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    owner_type = _owner_type(payload.owner_type)
    if not db.get(User, payload.owner_id):
        raise HTTPException(status_code=404, detail="User not found")
    try:
        override = set_provider_override(
            db, owner_type=owner_type, owner_id=payload.owner_id, provider=payload.provider
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action="payment_override.set",
        target_type="user",
        target_id=payload.owner_id,
        metadata_json={"owner_type": owner_type, "provider": override.provider},
    )
    db.commit()
    return ProviderOverrideOut(owner_type=override.owner_type, owner_id=override.owner_id, provider=override.provider)


@router.delete(
    "/overrides/{owner_type}/{owner_id}",
    status_code=204,
    summary="Remove a provider override",
    responses=error_responses(400, 401, 403, 404, 500),
)
def delete_override(
    owner_type: str,
    owner_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    normalized = _owner_type(owner_type)
    if not clear_provider_override(db, owner_type=normalized, owner_id=owner_id):
        raise HTTPException(status_code=404, detail="Override not found")
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action="payment_override.clear",
        target_type="user",
        target_id=owner_id,
        metadata_json={"owner_type": normalized},
    )
    db.commit()
