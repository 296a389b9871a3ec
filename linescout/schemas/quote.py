from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from linescout.schemas.common import PaginationMeta
from linescout.schemas.rates import PlatformSettingsOut, ShippingRateOut, ShippingTypeOut


class QuoteItemIn(BaseModel):
    product_name: str = Field(min_length=1, max_length=200)
    product_description: Optional[str] = None
    quantity: Decimal = Field(gt=0)
    unit_price_rmb: Decimal = Field(default=Decimal("0"), ge=0)
    unit_weight_kg: Decimal = Field(default=Decimal("0"), ge=0)
    unit_cbm: Decimal = Field(default=Decimal("0"), ge=0)
    local_transport_rmb: Decimal = Field(default=Decimal("0"), ge=0)


class _QuoteInputs(BaseModel):
    exchange_rate_rmb: Optional[Decimal] = Field(default=None, gt=0)
    exchange_rate_usd: Optional[Decimal] = Field(default=None, gt=0)
    shipping_type_id: Optional[str] = None
    shipping_rate_usd: Optional[Decimal] = Field(default=None, gt=0)
    shipping_rate_unit: Optional[str] = None
    markup_percent: Optional[Decimal] = Field(default=None, ge=0)
    agent_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    agent_commitment_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    commitment_due_ngn: Optional[Decimal] = Field(default=None, ge=0)
    deposit_enabled: Optional[bool] = None
    deposit_percent: Optional[Decimal] = Field(default=None, gt=0, le=100)
    payment_purpose: Optional[str] = None
    agent_note: Optional[str] = Field(default=None, max_length=4000)

    @field_validator("shipping_rate_unit")
    @classmethod
    def normalize_unit(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower() or None


class QuoteCreateIn(_QuoteInputs):
    handoff_id: str
    items: list[QuoteItemIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "handoff_id": "handoff-id-here",
                "items": [
                    {
                        "product_name": "Palm oil press",
                        "quantity": 1,
                        "unit_price_rmb": 48000,
                        "unit_weight_kg": 850,
                        "unit_cbm": 2.4,
                        "local_transport_rmb": 1200,
                    }
                ],
                "shipping_type_id": "sea-freight-type-id",
                "deposit_enabled": True,
                "deposit_percent": 30,
                "agent_note": "Lead time is 25 days after deposit.",
            }
        }
    )


class QuoteUpdateIn(_QuoteInputs):
    items: Optional[list[QuoteItemIn]] = Field(default=None, min_length=1)


class QuoteOut(BaseModel):
    id: str
    handoff_id: str
    token: str
    status: str
    currency: str
    payment_purpose: str | None = None
    exchange_rate_rmb: float
    exchange_rate_usd: float
    shipping_type_id: str | None = None
    shipping_rate_usd: float
    shipping_rate_unit: str
    markup_percent: float
    agent_percent: float | None = None
    agent_commitment_percent: float | None = None
    commitment_due_ngn: float
    deposit_enabled: bool
    deposit_percent: float | None = None
    agent_note: str | None = None
    items: list[dict[str, Any]]
    total_product_rmb: float
    total_product_ngn: float
    total_weight_kg: float
    total_cbm: float
    total_shipping_usd: float
    total_shipping_ngn: float
    total_markup_ngn: float
    total_due_ngn: float
    sent_at: datetime | None = None
    created_at: datetime | None = None


class QuoteListOut(BaseModel):
    items: list[QuoteOut]
    pagination: PaginationMeta


class QuoteSendOut(BaseModel):
    quote: QuoteOut
    email_status: str
    quote_url: str


class QuotePaymentOut(BaseModel):
    id: str
    purpose: str
    method: str
    status: str
    amount: float
    currency: str
    provider_ref: str | None = None
    created_at: datetime | None = None
    paid_at: datetime | None = None


class PaymentSummaryOut(BaseModel):
    product_target: float
    deposit_amount: float | None = None
    deposit_paid: float
    product_paid: float
    product_remaining: float
    shipping_due: float
    shipping_paid: float
    shipping_remaining: float
    payments: list[QuotePaymentOut]


class PublicQuoteOut(BaseModel):
    token: str
    status: str
    handoff_token: str | None = None
    handoff_status: str | None = None
    customer_name: str | None = None
    currency: str
    items: list[dict[str, Any]]
    shipping_type_id: str | None = None
    shipping_rate_unit: str
    total_product_ngn: float
    total_shipping_ngn: float
    total_markup_ngn: float
    total_due_ngn: float
    commitment_due_ngn: float
    deposit_enabled: bool
    deposit_percent: float | None = None
    agent_note: str | None = None
    summary: PaymentSummaryOut


class QuotePayIn(BaseModel):
    purpose: str
    use_wallet: bool = False
    shipping_type_id: Optional[str] = None

    @field_validator("purpose")
    @classmethod
    def normalize_purpose(cls, value: str) -> str:
        return value.strip().lower()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "purpose": "deposit",
                "use_wallet": True,
            }
        }
    )


class QuotePayOut(BaseModel):
    purpose: str
    required: float
    wallet_applied: float
    remaining: float
    provider: str | None = None
    reference: str | None = None
    authorization_url: str | None = None
    account_number: str | None = None
    account_name: str | None = None
    bank_name: str | None = None
    note: str | None = None


class PaymentVerifyOut(BaseModel):
    ok: bool = True
    already_paid: bool
    quote_token: str | None = None
    purpose: str
    amount: float
    status: str


class QuoteConfigOut(BaseModel):
    settings: PlatformSettingsOut
    shipping_types: list[ShippingTypeOut]
    shipping_rates: list[ShippingRateOut]
