from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentSettingsOut(BaseModel):
    provider_default: str
    allow_overrides: bool
    available_providers: list[str]


class PaymentSettingsUpdateIn(BaseModel):
    provider_default: str
    allow_overrides: bool = True

    model_config = ConfigDict(
        json_schema_extra={"example": {"provider_default": "providus", "allow_overrides": True}}
    )


class ProviderOverrideIn(BaseModel):
    owner_type: str = "user"
    owner_id: str
    provider: str


class ProviderOverrideOut(BaseModel):
    owner_type: str
    owner_id: str
    provider: str


class EarningsOut(BaseModel):
    gross_earned: float
    paid_out: float
    locked: float
    available: float
    currency: str = "NGN"


class CommissionOut(BaseModel):
    id: str
    amount: float
    quote_payment_id: str | None = None
    quote_id: str | None = None
    handoff_id: str | None = None
    purpose: str | None = None
    base_amount: float | None = None
    agent_percent: float | None = None
    created_at: datetime | None = None


class CommissionListOut(BaseModel):
    earnings: EarningsOut
    items: list[CommissionOut]


class PayoutAccountIn(BaseModel):
    bank_code: str = Field(min_length=2, max_length=20)
    account_number: str = Field(min_length=10, max_length=10)
    account_name: Optional[str] = Field(default=None, max_length=120)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"bank_code": "058", "account_number": "0123456789", "account_name": "Tunde Agent"}
        }
    )


class PayoutAccountOut(BaseModel):
    id: str
    agent_id: str
    bank_code: str
    account_number: str
    account_name: str | None = None
    status: str
    verified_at: datetime | None = None


class PayoutRequestIn(BaseModel):
    amount: Decimal = Field(gt=0)
    note: Optional[str] = Field(default=None, max_length=500)


class PayoutDecisionIn(BaseModel):
    admin_note: Optional[str] = Field(default=None, max_length=500)


class PayoutRequestOut(BaseModel):
    id: str
    agent_id: str
    amount: float
    currency: str
    status: str
    requested_note: str | None = None
    admin_note: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    transfer_reference: str | None = None
    transfer_code: str | None = None
    created_at: datetime | None = None


class PayoutRequestListOut(BaseModel):
    items: list[PayoutRequestOut]
    total: int


class UserPayoutAccountOut(BaseModel):
    id: str
    user_id: str
    bank_code: str
    account_number: str
    account_name: str | None = None
    status: str
    verified_at: datetime | None = None


class UserPayoutRequestOut(BaseModel):
    id: str
    user_id: str
    amount: float
    currency: str
    status: str
    requested_note: str | None = None
    admin_note: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    transfer_reference: str | None = None
    transfer_code: str | None = None
    created_at: datetime | None = None


class UserPayoutRequestListOut(BaseModel):
    items: list[UserPayoutRequestOut]
    total: int
