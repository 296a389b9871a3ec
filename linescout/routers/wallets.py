from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.permissions import require_admin
from linescout.core.security_current import get_current_user
from linescout.models.user import User
from linescout.models.wallet import VirtualAccount, Wallet, WalletTransaction
from linescout.schemas.common import PaginationMeta
from linescout.schemas.wallet import (
    VirtualAccountOut,
    WalletAdjustIn,
    WalletAdjustOut,
    WalletDetailOut,
    WalletListOut,
    WalletOut,
    WalletTransactionOut,
)
from linescout.services.audit_service import log_audit_event
from linescout.services.wallet_service import (
    WALLET_OWNER_TYPES,
    credit_wallet,
    debit_wallet,
    get_or_create_wallet,
    list_wallet_transactions,
)

router = APIRouter(tags=["wallets"])


def _wallet_out(wallet: Wallet) -> WalletOut:
    return WalletOut(
        id=wallet.id,
        owner_type=wallet.owner_type,
        owner_id=wallet.owner_id,
        currency=wallet.currency,
        balance=float(wallet.balance),
        status=wallet.status,
    )


def _transaction_out(row: WalletTransaction) -> WalletTransactionOut:
    return WalletTransactionOut(
        id=row.id,
        type=row.type,
        amount=float(row.amount),
        currency=row.currency,
        reason=row.reason,
        reference_type=row.reference_type,
        reference_id=row.reference_id,
        meta_json=row.meta_json,
        created_at=row.created_at,
    )


def _detail_out(db: Session, wallet: Wallet) -> WalletDetailOut:
    accounts = db.execute(
        select(VirtualAccount).where(
            VirtualAccount.owner_type == wallet.owner_type,
            VirtualAccount.owner_id == wallet.owner_id,
        )
    ).scalars().all()
    return WalletDetailOut(
        wallet=_wallet_out(wallet),
        transactions=[_transaction_out(row) for row in list_wallet_transactions(db, wallet.id)],
        virtual_accounts=[
            VirtualAccountOut(
                provider=account.provider,
                account_number=account.account_number,
                account_name=account.account_name,
                bank_name=account.bank_name,
            )
            for account in accounts
        ],
    )


@router.get(
    "/wallet",
    response_model=WalletDetailOut,
    summary="My wallet",
    description="Agents get their commission wallet; everyone else their customer wallet.",
    responses=error_responses(401, 403, 500),
)
def get_my_wallet(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    owner_type = "agent" if user.role == "agent" else "user"
    wallet = get_or_create_wallet(db, owner_type=owner_type, owner_id=user.id)
    db.commit()
    return _detail_out(db, wallet)


@router.get(
    "/wallets",
    response_model=WalletListOut,
    summary="List wallets",
    responses=error_responses(401, 403, 422, 500),
)
def list_wallets(
    owner_type: str | None = Query(default=None),
    owner_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    filters = []
    if owner_type:
        filters.append(Wallet.owner_type == owner_type.strip().lower())
    if owner_id:
        filters.append(Wallet.owner_id == owner_id)

    total = int(db.execute(select(func.count(Wallet.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Wallet).where(*filters).order_by(Wallet.updated_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    count = len(rows)
    return WalletListOut(
        items=[_wallet_out(row) for row in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/wallets/{wallet_id}",
    response_model=WalletDetailOut,
    summary="Wallet detail",
    responses=error_responses(401, 403, 404, 500),
)
def get_wallet_detail(wallet_id: str, db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    wallet = db.get(Wallet, wallet_id)
    if not wallet:
        raise HTTPException(status_code=404, detail="Wallet not found")
    return _detail_out(db, wallet)


@router.post(
    "/wallets/adjust",
    response_model=WalletAdjustOut,
    summary="Manually credit or debit a wallet",
    description="Debits cannot take a balance below zero. Every adjustment is audit-logged.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def adjust_wallet(
    payload: WalletAdjustIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    owner_type = payload.owner_type.strip().lower()
    if owner_type not in WALLET_OWNER_TYPES:
        raise HTTPException(status_code=400, detail=f"owner_type must be one of: {', '.join(WALLET_OWNER_TYPES)}")
    if not db.get(User, payload.owner_id):
        raise HTTPException(status_code=404, detail="Wallet owner not found")

    wallet = get_or_create_wallet(db, owner_type=owner_type, owner_id=payload.owner_id)
    apply = credit_wallet if payload.direction == "credit" else debit_wallet
    try:
        movement = apply(
            db,
            wallet,
            payload.amount,
            reason=payload.reason,
            reference_type="admin_adjustment",
            reference_id=admin.id,
            created_by_user_id=admin.id,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit_event(
        db,
        actor_user_id=admin.id,
        action=f"wallet.{payload.direction}",
        target_type="wallet",
        target_id=wallet.id,
        metadata_json={"amount": str(payload.amount), "reason": payload.reason},
    )
    db.commit()
    db.refresh(wallet)
    db.refresh(movement.transaction)
    return WalletAdjustOut(wallet=_wallet_out(wallet), transaction=_transaction_out(movement.transaction))
