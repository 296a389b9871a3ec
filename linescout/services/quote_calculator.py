"""Landed-cost arithmetic for quotes.

Everything here is pure: callers load rates and payments from the database and
pass plain values in. Amounts are ``Decimal`` throughout.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from linescout.core.money import to_decimal, to_money, to_whole_naira

SHIPPING_RATE_UNITS = ("per_kg", "per_cbm")

DEPOSIT_PURPOSE = "deposit"
SHIPPING_PURPOSE = "shipping_payment"
PRODUCT_PURPOSES = ("deposit", "product_balance", "full_product_payment")
QUOTE_PAYMENT_PURPOSES = PRODUCT_PURPOSES + (SHIPPING_PURPOSE,)

_HUNDRED = Decimal("100")
_MEASURE_QUANT = Decimal("0.0001")


class QuoteValidationError(ValueError):
    pass


class QuotePaymentError(ValueError):
    pass


@dataclass(frozen=True)
class QuoteItem:
    product_name: str
    quantity: Decimal
    unit_price_rmb: Decimal = Decimal("0")
    unit_weight_kg: Decimal = Decimal("0")
    unit_cbm: Decimal = Decimal("0")
    local_transport_rmb: Decimal = Decimal("0")
    product_description: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "product_name": self.product_name,
            "product_description": self.product_description,
            "quantity": str(self.quantity),
            "unit_price_rmb": str(self.unit_price_rmb),
            "unit_weight_kg": str(self.unit_weight_kg),
            "unit_cbm": str(self.unit_cbm),
            "local_transport_rmb": str(self.local_transport_rmb),
        }


@dataclass(frozen=True)
class QuoteTotals:
    total_product_rmb: Decimal
    total_product_ngn: Decimal
    total_weight_kg: Decimal
    total_cbm: Decimal
    total_shipping_usd: Decimal
    total_shipping_ngn: Decimal
    total_markup_ngn: Decimal
    total_due_ngn: Decimal


def _number(raw: Any, field: str, index: int) -> Decimal:
    try:
        value = to_decimal(raw)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise QuoteValidationError(f"Item {index + 1}: {field} must be a number") from exc
    if not value.is_finite():
        raise QuoteValidationError(f"Item {index + 1}: {field} must be a number")
    if value < 0:
        raise QuoteValidationError(f"Item {index + 1}: {field} cannot be negative")
    return value


def parse_items(raw_items: list[dict[str, Any]]) -> list[QuoteItem]:
    if not raw_items:
        raise QuoteValidationError("At least one item is required")

    items: list[QuoteItem] = []
    for index, raw in enumerate(raw_items):
        name = str(raw.get("product_name") or "").strip()
        if not name:
            raise QuoteValidationError(f"Item {index + 1}: product_name is required")
        quantity = _number(raw.get("quantity"), "quantity", index)
        if quantity <= 0:
            raise QuoteValidationError(f"Item {index + 1}: quantity must be greater than 0")
        description = str(raw.get("product_description") or "").strip() or None
        items.append(
            QuoteItem(
                product_name=name,
                product_description=description,
                quantity=quantity,
                unit_price_rmb=_number(raw.get("unit_price_rmb"), "unit_price_rmb", index),
                unit_weight_kg=_number(raw.get("unit_weight_kg"), "unit_weight_kg", index),
                unit_cbm=_number(raw.get("unit_cbm"), "unit_cbm", index),
                local_transport_rmb=_number(raw.get("local_transport_rmb"), "local_transport_rmb", index),
            )
        )
    return items


def validate_quote_rates(
    *,
    exchange_rate_rmb: Decimal,
    exchange_rate_usd: Decimal,
    shipping_rate_usd: Decimal,
    shipping_rate_unit: str,
    deposit_enabled: bool = False,
    deposit_percent: Decimal | None = None,
) -> None:
    if exchange_rate_rmb <= 0 or exchange_rate_usd <= 0:
        raise QuoteValidationError("Exchange rates must be greater than 0")
    if shipping_rate_usd <= 0:
        raise QuoteValidationError("Shipping rate must be greater than 0")
    if shipping_rate_unit not in SHIPPING_RATE_UNITS:
        raise QuoteValidationError("Shipping rate unit must be per_kg or per_cbm")
    if deposit_enabled:
        percent = to_decimal(deposit_percent)
        if percent < 1 or percent > 100:
            raise QuoteValidationError("Deposit percent must be between 1 and 100")


def compute_totals(
    items: list[QuoteItem],
    *,
    exchange_rate_rmb: Decimal,
    exchange_rate_usd: Decimal,
    shipping_rate_usd: Decimal,
    shipping_rate_unit: str,
    markup_percent: Decimal,
) -> QuoteTotals:
    product_rmb = Decimal("0")
    local_transport_rmb = Decimal("0")
    weight_kg = Decimal("0")
    cbm = Decimal("0")
    for item in items:
        product_rmb += item.quantity * item.unit_price_rmb
        # Local transport is quoted per line, not per unit.
        local_transport_rmb += item.local_transport_rmb
        weight_kg += item.quantity * item.unit_weight_kg
        cbm += item.quantity * item.unit_cbm

    total_product_rmb = product_rmb + local_transport_rmb
    total_product_ngn = total_product_rmb * exchange_rate_rmb
    shipping_units = cbm if shipping_rate_unit == "per_cbm" else weight_kg
    total_shipping_usd = shipping_units * shipping_rate_usd
    total_shipping_ngn = total_shipping_usd * exchange_rate_usd
    total_markup_ngn = total_product_ngn * to_decimal(markup_percent) / _HUNDRED
    total_due_ngn = total_product_ngn + total_shipping_ngn + total_markup_ngn

    return QuoteTotals(
        total_product_rmb=to_money(total_product_rmb),
        total_product_ngn=to_money(total_product_ngn),
        total_weight_kg=weight_kg.quantize(_MEASURE_QUANT),
        total_cbm=cbm.quantize(_MEASURE_QUANT),
        total_shipping_usd=to_money(total_shipping_usd),
        total_shipping_ngn=to_money(total_shipping_ngn),
        total_markup_ngn=to_money(total_markup_ngn),
        total_due_ngn=to_money(total_due_ngn),
    )


def compute_product_target(
    total_product_ngn: Decimal, total_markup_ngn: Decimal, commitment_due_ngn: Decimal
) -> Decimal:
    """Product plus markup, less the commitment fee already collected."""
    target = to_whole_naira(
        to_decimal(total_product_ngn) + to_decimal(total_markup_ngn) - to_decimal(commitment_due_ngn)
    )
    return max(Decimal("0"), target)


def compute_deposit_amount(
    total_product_ngn: Decimal, total_markup_ngn: Decimal, deposit_percent: Decimal | None
) -> Decimal:
    percent = min(max(to_decimal(deposit_percent), Decimal("0")), _HUNDRED)
    base = to_decimal(total_product_ngn) + to_decimal(total_markup_ngn)
    return to_whole_naira(base * percent / _HUNDRED)


def resolve_required_amount(
    *,
    purpose: str,
    total_product_ngn: Decimal,
    total_markup_ngn: Decimal,
    total_shipping_ngn: Decimal,
    commitment_due_ngn: Decimal,
    deposit_enabled: bool,
    deposit_percent: Decimal | None,
    product_paid: Decimal,
    shipping_paid: Decimal,
    handoff_status: str | None,
) -> Decimal:
    """Amount the customer still owes for ``purpose``, in whole naira."""
    if purpose not in QUOTE_PAYMENT_PURPOSES:
        raise QuotePaymentError(f"Unsupported payment purpose '{purpose}'")

    product_target = compute_product_target(total_product_ngn, total_markup_ngn, commitment_due_ngn)

    if purpose == DEPOSIT_PURPOSE:
        percent = to_decimal(deposit_percent)
        if not deposit_enabled or percent <= 0:
            raise QuotePaymentError("Deposit is not enabled for this quote")
        deposit_amount = compute_deposit_amount(total_product_ngn, total_markup_ngn, percent)
        if product_paid >= deposit_amount:
            raise QuotePaymentError("Deposit already paid")
        required = deposit_amount - product_paid
    elif purpose == SHIPPING_PURPOSE:
        if (handoff_status or "").lower() != "shipped":
            raise QuotePaymentError("Shipping payment is only available once the order has shipped")
        if product_paid < product_target:
            raise QuotePaymentError("Product payment must be completed before shipping payment")
        required = to_whole_naira(to_decimal(total_shipping_ngn) - shipping_paid)
    else:
        required = to_whole_naira(product_target - product_paid)

    if required <= 0:
        raise QuotePaymentError("Nothing due for this payment")
    return to_money(required)


def derive_quote_status(
    *,
    current_status: str,
    product_target: Decimal,
    product_paid: Decimal,
    shipping_due: Decimal,
    shipping_paid: Decimal,
) -> str:
    """Quotes move to partially_paid on the first payment and paid once both legs are settled."""
    if product_paid <= 0 and shipping_paid <= 0:
        return current_status
    shipping_settled = to_whole_naira(shipping_due) <= shipping_paid
    if product_paid >= product_target and shipping_settled:
        return "paid"
    return "partially_paid"
