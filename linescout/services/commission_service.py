"""Agent commission crediting and earnings.

Commission is paid on product money only. Each quote payment can produce at
most one commission credit, keyed by ``quote_payment_commission:<payment id>``
on the agent's wallet transactions.
"""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linescout.core.money import ZERO_MONEY, kobo_to_naira, to_decimal, to_money
from linescout.core.observability import log_event
from linescout.models.handoff import Handoff
from linescout.models.payments import PayoutRequest
from linescout.models.quote import Quote, QuotePayment
from linescout.models.wallet import Wallet, WalletTransaction
from linescout.services.quote_calculator import SHIPPING_PURPOSE
from linescout.services.rates_service import get_platform_settings
from linescout.services.wallet_service import credit_wallet, get_or_create_wallet

COMMISSION_REFERENCE_TYPE = "quote_payment_commission"
COMMISSION_REASON = "agent_quote_commission"


@dataclass(frozen=True)
class CommissionResult:
    status: str
    amount: Decimal = ZERO_MONEY
    agent_id: str | None = None
    transaction_id: str | None = None


@dataclass(frozen=True)
class EarningsSnapshot:
    gross_earned: Decimal
    paid_out: Decimal
    locked: Decimal
    available: Decimal


def _commission_exists(db: Session, quote_payment_id: str) -> bool:
    existing = db.execute(
        select(WalletTransaction.id)
        .where(
            WalletTransaction.reference_type == COMMISSION_REFERENCE_TYPE,
            WalletTransaction.reference_id == quote_payment_id,
        )
        .limit(1)
    ).scalar_one_or_none()
    return existing is not None


def credit_agent_commission(
    db: Session, payment: QuotePayment, *, amount: Decimal | None = None
) -> CommissionResult:
    """Commission is computed on `amount` when given (the settled amount), else the payment amount."""
    amount = to_decimal(payment.amount if amount is None else amount)
    if amount <= 0 or payment.purpose == SHIPPING_PURPOSE or not payment.handoff_id:
        return CommissionResult(status="not_applicable")
    if _commission_exists(db, payment.id):
        return CommissionResult(status="duplicate")

    handoff = db.get(Handoff, payment.handoff_id)
    if not handoff or not handoff.assigned_agent_id:
        return CommissionResult(status="no_agent")

    quote = db.get(Quote, payment.quote_id)
    percent = to_decimal(quote.agent_percent) if quote and quote.agent_percent is not None else None
    if percent is None:
        percent = to_decimal(get_platform_settings(db).agent_percent)
    if percent <= 0:
        return CommissionResult(status="not_applicable", agent_id=handoff.assigned_agent_id)

    commission = to_money(amount * percent / Decimal("100"))
    if commission <= 0:
        return CommissionResult(status="not_applicable", agent_id=handoff.assigned_agent_id)

    wallet = get_or_create_wallet(db, owner_type="agent", owner_id=handoff.assigned_agent_id)
    movement = credit_wallet(
        db,
        wallet,
        commission,
        reason=COMMISSION_REASON,
        reference_type=COMMISSION_REFERENCE_TYPE,
        reference_id=payment.id,
        meta={
            "quote_id": payment.quote_id,
            "handoff_id": payment.handoff_id,
            "purpose": payment.purpose,
            "base_amount": str(to_money(amount)),
            "agent_percent": str(percent),
        },
    )
    log_event(
        "agent_commission_credited",
        quote_payment_id=payment.id,
        agent_id=handoff.assigned_agent_id,
        amount=str(commission),
    )
    return CommissionResult(
        status="credited",
        amount=commission,
        agent_id=handoff.assigned_agent_id,
        transaction_id=movement.transaction.id,
    )


def get_agent_earnings(db: Session, agent_id: str) -> EarningsSnapshot:
    gross = db.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0))
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .where(
            Wallet.owner_type == "agent",
            Wallet.owner_id == agent_id,
            WalletTransaction.type == "credit",
            WalletTransaction.reference_type == COMMISSION_REFERENCE_TYPE,
        )
    ).scalar_one()

    def _payout_total(*statuses: str) -> Decimal:
        kobo = db.execute(
            select(func.coalesce(func.sum(PayoutRequest.amount_kobo), 0)).where(
                PayoutRequest.agent_id == agent_id,
                PayoutRequest.status.in_(statuses),
            )
        ).scalar_one()
        return kobo_to_naira(kobo)

    gross_earned = to_money(gross)
    paid_out = _payout_total("paid")
    locked = _payout_total("pending", "approved")
    available = max(ZERO_MONEY, to_money(gross_earned - paid_out - locked))
    return EarningsSnapshot(gross_earned=gross_earned, paid_out=paid_out, locked=locked, available=available)


def list_agent_commissions(db: Session, agent_id: str, *, limit: int = 50) -> list[WalletTransaction]:
    return db.execute(
        select(WalletTransaction)
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .where(
            Wallet.owner_type == "agent",
            Wallet.owner_id == agent_id,
            WalletTransaction.reference_type == COMMISSION_REFERENCE_TYPE,
        )
        .order_by(WalletTransaction.created_at.desc())
        .limit(limit)
    ).scalars().all()
