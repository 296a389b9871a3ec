from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.permissions import require_admin, require_staff
from linescout.models.rates import FxRate, PlatformSettings, ShippingCompany, ShippingRate, ShippingType
from linescout.models.user import User
from linescout.schemas.rates import (
    FxRateCreateIn,
    FxRateListOut,
    FxRateOut,
    PlatformSettingsOut,
    PlatformSettingsUpdateIn,
    ShippingCompanyCreateIn,
    ShippingCompanyListOut,
    ShippingCompanyOut,
    ShippingRateActiveIn,
    ShippingRateCreateIn,
    ShippingRateListOut,
    ShippingRateOut,
    ShippingTypeCreateIn,
    ShippingTypeListOut,
    ShippingTypeOut,
)
from linescout.services.audit_service import log_audit_event
from linescout.services.rates_service import (
    create_fx_rate,
    create_shipping_company,
    create_shipping_rate,
    create_shipping_type,
    get_platform_settings,
    list_fx_rates,
    list_shipping_companies,
    list_shipping_rates,
    list_shipping_types,
    set_shipping_rate_active,
    update_platform_settings,
)

router = APIRouter(tags=["rates"])


def platform_settings_out(row: PlatformSettings) -> PlatformSettingsOut:
    return PlatformSettingsOut(
        commitment_due_ngn=float(row.commitment_due_ngn or 0),
        agent_percent=float(row.agent_percent or 0),
        agent_commitment_percent=float(row.agent_commitment_percent or 0),
        markup_percent=float(row.markup_percent or 0),
        exchange_rate_rmb=float(row.exchange_rate_rmb or 0),
        exchange_rate_usd=float(row.exchange_rate_usd or 0),
        updated_by_user_id=row.updated_by_user_id,
    )


def _fx_out(row: FxRate) -> FxRateOut:
    return FxRateOut(
        id=row.id,
        base_currency=row.base_currency,
        quote_currency=row.quote_currency,
        rate=float(row.rate),
        effective_at=row.effective_at,
        created_at=row.created_at,
    )


def shipping_type_out(row: ShippingType) -> ShippingTypeOut:
    return ShippingTypeOut(id=row.id, name=row.name, is_active=bool(row.is_active))


def shipping_rate_out(row: ShippingRate) -> ShippingRateOut:
    return ShippingRateOut(
        id=row.id,
        shipping_type_id=row.shipping_type_id,
        rate_value=float(row.rate_value),
        rate_unit=row.rate_unit,
        currency=row.currency,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _company_out(row: ShippingCompany) -> ShippingCompanyOut:
    return ShippingCompanyOut(
        id=row.id,
        name=row.name,
        contact_phone=row.contact_phone,
        is_active=bool(row.is_active),
    )


@router.get(
    "/settings/platform",
    response_model=PlatformSettingsOut,
    summary="Get platform commercial defaults",
    responses=error_responses(401, 403, 500),
)
def get_settings(db: Session = Depends(get_db), _user: User = Depends(require_staff)):
    row = get_platform_settings(db)
    db.commit()
    return platform_settings_out(row)


@router.patch(
    "/settings/platform",
    response_model=PlatformSettingsOut,
    summary="Update platform commercial defaults",
    description="New quotes pick these up; existing quotes keep the values they were written with.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def patch_settings(
    payload: PlatformSettingsUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    changes = payload.model_dump(exclude_none=True)
    try:
        row = update_platform_settings(db, actor_user_id=admin.id, changes=changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action="platform_settings.update",
        target_type="platform_settings",
        target_id=row.id,
        metadata_json={key: str(value) for key, value in changes.items()},
    )
    db.commit()
    db.refresh(row)
    return platform_settings_out(row)


@router.get(
    "/fx-rates",
    response_model=FxRateListOut,
    summary="List FX rates",
    responses=error_responses(401, 403, 422, 500),
)
def get_fx_rates(
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
):
    return FxRateListOut(items=[_fx_out(row) for row in list_fx_rates(db, limit=limit)])


@router.post(
    "/fx-rates",
    response_model=FxRateOut,
    summary="Record an FX rate",
    description="The newest rate by `effective_at` for a currency pair is the one used for conversions.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def post_fx_rate(
    payload: FxRateCreateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        row = create_fx_rate(
            db,
            base_currency=payload.base_currency,
            quote_currency=payload.quote_currency,
            rate=payload.rate,
            effective_at=payload.effective_at,
            actor_user_id=admin.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    db.refresh(row)
    return _fx_out(row)


@router.get(
    "/shipping/types",
    response_model=ShippingTypeListOut,
    summary="List shipping types",
    description="Public so quote pages can offer a shipping choice; only active types are listed unless `include_inactive`.",
    responses=error_responses(422, 500),
)
def get_shipping_types(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    rows = list_shipping_types(db, active_only=not include_inactive)
    return ShippingTypeListOut(items=[shipping_type_out(row) for row in rows])


@router.post(
    "/shipping/types",
    response_model=ShippingTypeOut,
    summary="Create a shipping type",
    responses=error_responses(400, 401, 403, 422, 500),
)
def post_shipping_type(
    payload: ShippingTypeCreateIn,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    try:
        row = create_shipping_type(db, name=payload.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return shipping_type_out(row)


@router.get(
    "/shipping/rates",
    response_model=ShippingRateListOut,
    summary="List shipping rates",
    responses=error_responses(401, 403, 422, 500),
)
def get_shipping_rates(
    shipping_type_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
):
    rows = list_shipping_rates(db, shipping_type_id=shipping_type_id)
    return ShippingRateListOut(items=[shipping_rate_out(row) for row in rows])


@router.post(
    "/shipping/rates",
    response_model=ShippingRateOut,
    summary="Add a shipping rate",
    description="The newest active rate of a shipping type is used to price shipping on quotes.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def post_shipping_rate(
    payload: ShippingRateCreateIn,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    try:
        row = create_shipping_rate(
            db,
            shipping_type_id=payload.shipping_type_id,
            rate_value=payload.rate_value,
            rate_unit=payload.rate_unit,
            currency=payload.currency,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return shipping_rate_out(row)


@router.patch(
    "/shipping/rates/{rate_id}",
    response_model=ShippingRateOut,
    summary="Activate or deactivate a shipping rate",
    responses=error_responses(401, 403, 404, 422, 500),
)
def patch_shipping_rate(
    rate_id: str,
    payload: ShippingRateActiveIn,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    try:
        row = set_shipping_rate_active(db, rate_id, is_active=payload.is_active)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return shipping_rate_out(row)


@router.get(
    "/shipping/companies",
    response_model=ShippingCompanyListOut,
    summary="List shipping companies",
    responses=error_responses(401, 403, 500),
)
def get_shipping_companies(db: Session = Depends(get_db), _user: User = Depends(require_staff)):
    return ShippingCompanyListOut(items=[_company_out(row) for row in list_shipping_companies(db)])


@router.post(
    "/shipping/companies",
    response_model=ShippingCompanyOut,
    summary="Create a shipping company",
    responses=error_responses(400, 401, 403, 422, 500),
)
def post_shipping_company(
    payload: ShippingCompanyCreateIn,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    try:
        row = create_shipping_company(db, name=payload.name, contact_phone=payload.contact_phone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return _company_out(row)
