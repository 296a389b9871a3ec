import re

from pydantic import BaseModel, ConfigDict

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_E164 = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone_number(value: str | None) -> str | None:
    """Returns E.164; local Nigerian numbers (``0803...``) get the +234 prefix."""
    if value is None:
        return None
    raw = _PHONE_SEPARATORS.sub("", value.strip())
    if not raw:
        return None
    if raw.startswith("00"):
        raw = f"+{raw[2:]}"
    elif raw.startswith("0") and len(raw) == 11:
        raw = f"+234{raw[1:]}"
    elif raw.startswith("234"):
        raw = f"+{raw}"
    if not _E164.match(raw):
        raise ValueError("phone number must look like +2348012345678")
    return raw


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 42,
                "limit": 10,
                "offset": 0,
                "count": 10,
                "has_next": True,
            }
        }
    )


class ValidationIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: list[ValidationIssueOut] | None = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "bad_request",
                    "message": "Deposit is not enabled for this quote",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/quote/abc123/pay",
                    "details": None,
                }
            }
        }
    )
