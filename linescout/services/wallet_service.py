import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from linescout.core.money import to_money
from linescout.models.wallet import Wallet, WalletTransaction

WALLET_OWNER_TYPES = ("user", "agent")


class InsufficientWalletBalance(ValueError):
    pass


@dataclass(frozen=True)
class WalletMovement:
    wallet: Wallet
    transaction: WalletTransaction


def get_wallet(db: Session, *, owner_type: str, owner_id: str) -> Wallet | None:
    return db.execute(
        select(Wallet).where(Wallet.owner_type == owner_type, Wallet.owner_id == owner_id)
    ).scalar_one_or_none()


def get_or_create_wallet(db: Session, *, owner_type: str, owner_id: str) -> Wallet:
    if owner_type not in WALLET_OWNER_TYPES:
        raise ValueError(f"Unsupported wallet owner type '{owner_type}'")
    wallet = get_wallet(db, owner_type=owner_type, owner_id=owner_id)
    if wallet:
        return wallet
    wallet = Wallet(
        id=str(uuid.uuid4()),
        owner_type=owner_type,
        owner_id=owner_id,
        currency="NGN",
        balance=Decimal("0.00"),
        status="active",
    )
    db.add(wallet)
    db.flush()
    return wallet


def _record(
    db: Session,
    wallet: Wallet,
    *,
    tx_type: str,
    amount: Decimal,
    reason: str,
    reference_type: str | None,
    reference_id: str | None,
    meta: dict[str, Any] | None,
    created_by_user_id: str | None,
) -> WalletTransaction:
    transaction = WalletTransaction(
        id=str(uuid.uuid4()),
        wallet_id=wallet.id,
        type=tx_type,
        amount=amount,
        currency=wallet.currency,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        meta_json=meta,
        created_by_user_id=created_by_user_id,
    )
    db.add(transaction)
    return transaction


def _shift_balance(db: Session, wallet: Wallet, delta: Decimal, *, floor: Decimal | None = None) -> bool:
    """Applies ``delta`` as one UPDATE on the wallet row.

    With ``floor`` the row only changes while it still holds at least that much.
    """
    stmt = update(Wallet).where(Wallet.id == wallet.id)
    if floor is not None:
        stmt = stmt.where(Wallet.balance >= floor)
    result = db.execute(
        stmt.values(balance=Wallet.balance + delta).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    db.refresh(wallet, attribute_names=["balance"])
    return True


def credit_wallet(
    db: Session,
    wallet: Wallet,
    amount: Decimal,
    *,
    reason: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    meta: dict[str, Any] | None = None,
    created_by_user_id: str | None = None,
) -> WalletMovement:
    value = to_money(amount)
    if value <= 0:
        raise ValueError("Credit amount must be greater than 0")
    _shift_balance(db, wallet, value)
    transaction = _record(
        db,
        wallet,
        tx_type="credit",
        amount=value,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        meta=meta,
        created_by_user_id=created_by_user_id,
    )
    db.flush()
    return WalletMovement(wallet=wallet, transaction=transaction)


def debit_wallet(
    db: Session,
    wallet: Wallet,
    amount: Decimal,
    *,
    reason: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    meta: dict[str, Any] | None = None,
    created_by_user_id: str | None = None,
) -> WalletMovement:
    value = to_money(amount)
    if value <= 0:
        raise ValueError("Debit amount must be greater than 0")
    if not _shift_balance(db, wallet, -value, floor=value):
        raise InsufficientWalletBalance("Insufficient balance")
    transaction = _record(
        db,
        wallet,
        tx_type="debit",
        amount=value,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        meta=meta,
        created_by_user_id=created_by_user_id,
    )
    db.flush()
    return WalletMovement(wallet=wallet, transaction=transaction)


def list_wallet_transactions(db: Session, wallet_id: str, *, limit: int = 50) -> list[WalletTransaction]:
    return db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet_id)
        .order_by(WalletTransaction.created_at.desc())
        .limit(limit)
    ).scalars().all()
