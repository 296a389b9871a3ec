from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from linescout.schemas.common import PaginationMeta


class WalletOut(BaseModel):
    id: str
    owner_type: str
    owner_id: str
    currency: str
    balance: float
    status: str


class WalletTransactionOut(BaseModel):
    id: str
    type: str
    amount: float
    currency: str
    reason: str
    reference_type: str | None = None
    reference_id: str | None = None
    meta_json: dict[str, Any] | None = None
    created_at: datetime | None = None


class VirtualAccountOut(BaseModel):
    provider: str
    account_number: str
    account_name: str | None = None
    bank_name: str | None = None


class WalletDetailOut(BaseModel):
    wallet: WalletOut
    transactions: list[WalletTransactionOut]
    virtual_accounts: list[VirtualAccountOut] = []


class WalletListOut(BaseModel):
    items: list[WalletOut]
    pagination: PaginationMeta


class WalletAdjustIn(BaseModel):
    owner_type: str = "user"
    owner_id: str
    direction: str
    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=3, max_length=80)

    @field_validator("direction")
    @classmethod
    def validate_direction(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if cleaned not in {"credit", "debit"}:
            raise ValueError("direction must be credit or debit")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "owner_type": "user",
                "owner_id": "user-id-here",
                "direction": "credit",
                "amount": 25000,
                "reason": "Refund for cancelled order",
            }
        }
    )


class WalletAdjustOut(BaseModel):
    wallet: WalletOut
    transaction: WalletTransactionOut
