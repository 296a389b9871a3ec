from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PlatformSettingsOut(BaseModel):
    commitment_due_ngn: float
    agent_percent: float
    agent_commitment_percent: float
    markup_percent: float
    exchange_rate_rmb: float
    exchange_rate_usd: float
    updated_by_user_id: str | None = None


class PlatformSettingsUpdateIn(BaseModel):
    commitment_due_ngn: Optional[Decimal] = Field(default=None, ge=0)
    agent_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    agent_commitment_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    markup_percent: Optional[Decimal] = Field(default=None, ge=0)
    exchange_rate_rmb: Optional[Decimal] = Field(default=None, ge=0)
    exchange_rate_usd: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "PlatformSettingsUpdateIn":
        if not self.model_dump(exclude_none=True):
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "markup_percent": 20,
                "agent_percent": 5,
                "exchange_rate_rmb": 215,
                "exchange_rate_usd": 1550,
            }
        }
    )


class FxRateCreateIn(BaseModel):
    base_currency: str = Field(min_length=3, max_length=3)
    quote_currency: str = Field(min_length=3, max_length=3)
    rate: Decimal = Field(gt=0)
    effective_at: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "base_currency": "NGN",
                "quote_currency": "USD",
                "rate": 0.000645,
            }
        }
    )


class FxRateOut(BaseModel):
    id: str
    base_currency: str
    quote_currency: str
    rate: float
    effective_at: datetime
    created_at: datetime | None = None


class FxRateListOut(BaseModel):
    items: list[FxRateOut]


class ShippingTypeCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=80)


class ShippingTypeOut(BaseModel):
    id: str
    name: str
    is_active: bool


class ShippingTypeListOut(BaseModel):
    items: list[ShippingTypeOut]


class ShippingRateCreateIn(BaseModel):
    shipping_type_id: str
    rate_value: Decimal = Field(gt=0)
    rate_unit: str = "per_kg"
    currency: str = "USD"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "shipping_type_id": "shipping-type-id",
                "rate_value": 8.5,
                "rate_unit": "per_kg",
                "currency": "USD",
            }
        }
    )


class ShippingRateActiveIn(BaseModel):
    is_active: bool


class ShippingRateOut(BaseModel):
    id: str
    shipping_type_id: str
    rate_value: float
    rate_unit: str
    currency: str
    is_active: bool
    created_at: datetime | None = None


class ShippingRateListOut(BaseModel):
    items: list[ShippingRateOut]


class ShippingCompanyCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    contact_phone: Optional[str] = None


class ShippingCompanyOut(BaseModel):
    id: str
    name: str
    contact_phone: str | None = None
    is_active: bool


class ShippingCompanyListOut(BaseModel):
    items: list[ShippingCompanyOut]
