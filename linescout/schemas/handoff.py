from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from linescout.schemas.common import PaginationMeta, normalize_phone_number


class HandoffCreateIn(BaseModel):
    route_type: str = "machine_sourcing"
    customer_name: Optional[str] = None
    email: Optional[EmailStr] = None
    whatsapp_number: Optional[str] = None
    context: Optional[str] = None

    @field_validator("customer_name", "context")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("whatsapp_number")
    @classmethod
    def normalize_whatsapp(cls, value: Optional[str]) -> Optional[str]:
        return normalize_phone_number(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "route_type": "machine_sourcing",
                "customer_name": "Ada Buyer",
                "email": "ada@example.com",
                "whatsapp_number": "+2348012345678",
                "context": "Need a 2-ton/day palm oil press, 380V.",
            }
        }
    )


class HandoffOut(BaseModel):
    id: str
    token: str
    route_type: str
    status: str
    customer_user_id: str | None = None
    customer_name: str | None = None
    email: str | None = None
    whatsapp_number: str | None = None
    context: str | None = None
    assigned_agent_id: str | None = None
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    manufacturer_found_at: datetime | None = None
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    shipper: str | None = None
    shipping_company_id: str | None = None
    tracking_number: str | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class HandoffListOut(BaseModel):
    items: list[HandoffOut]
    pagination: PaginationMeta


class HandoffStatusUpdateIn(BaseModel):
    status: str
    shipper: Optional[str] = None
    shipping_company_id: Optional[str] = None
    tracking_number: Optional[str] = None
    cancel_reason: Optional[str] = None
    bank_id: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "shipped",
                "shipper": "Sure Imports Cargo",
                "tracking_number": "SIC-77812",
            }
        }
    )


class HandoffStatusEventOut(BaseModel):
    id: str
    previous_status: str
    new_status: str
    changed_by_user_id: str | None = None
    note: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class HandoffHistoryOut(BaseModel):
    items: list[HandoffStatusEventOut]


class HandoffPaymentCreateIn(BaseModel):
    purpose: str
    amount: Decimal = Field(gt=0)
    note: Optional[str] = Field(default=None, max_length=500)
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "purpose": "additional_payment",
                "amount": 150000,
                "note": "Bank transfer, customs top-up",
            }
        }
    )


class HandoffPaymentOut(BaseModel):
    id: str
    purpose: str
    amount: float
    currency: str
    note: str | None = None
    quote_payment_id: str | None = None
    recorded_by_user_id: str | None = None
    paid_at: datetime | None = None


class HandoffFinancialTotalIn(BaseModel):
    total_due: Decimal = Field(ge=0)


class HandoffFinancialsOut(BaseModel):
    handoff_id: str
    currency: str
    total_due: float
    total_paid: float
    balance: float
    payments: list[HandoffPaymentOut]


class CommitmentPayIn(BaseModel):
    route_type: str = "machine_sourcing"
    customer_name: Optional[str] = None
    whatsapp_number: Optional[str] = None
    context: Optional[str] = None

    @field_validator("route_type")
    @classmethod
    def normalize_route_type(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("customer_name", "context")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("whatsapp_number")
    @classmethod
    def normalize_whatsapp(cls, value: Optional[str]) -> Optional[str]:
        return normalize_phone_number(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "route_type": "white_label",
                "customer_name": "Ada Buyer",
                "whatsapp_number": "+2348012345678",
                "context": "Private-label shea butter, 200ml jars.",
            }
        }
    )


class CommitmentPayOut(BaseModel):
    provider: str
    reference: str
    authorization_url: str | None = None
    amount: float
    charge_amount: float
    charge_currency: str


class CommitmentVerifyOut(BaseModel):
    already_paid: bool
    status: str
    amount: float
    reference: str
    handoff_id: str
    handoff_token: str
