from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import requests

from linescout.core.config import settings
from linescout.core.money import kobo_to_naira, naira_to_kobo, to_decimal, to_money
from linescout.core.observability import log_event
from linescout.core.security import providus_signature

PAYMENT_PROVIDER_NAMES = ("paystack", "providus", "paypal")


class PaymentProviderError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, response_data: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


@dataclass(frozen=True)
class PaymentInitRequest:
    reference: str
    amount: Decimal
    currency: str
    email: str
    callback_url: str
    cancel_url: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentInitResult:
    provider: str
    payment_reference: str
    checkout_url: str | None = None


@dataclass(frozen=True)
class PaymentVerification:
    provider: str
    reference: str
    successful: bool
    amount: Decimal
    currency: str
    status: str


@dataclass(frozen=True)
class ReservedAccount:
    account_number: str
    account_name: str
    bank_name: str
    provider_ref: str | None = None


@dataclass(frozen=True)
class TransferResult:
    transfer_code: str | None
    reference: str | None


class PaymentProvider(Protocol):
    name: str

    def initialize_payment(self, request: PaymentInitRequest) -> PaymentInitResult:
        ...

    def verify_payment(self, reference: str) -> PaymentVerification:
        ...


def _send(method: str, url: str, *, provider: str, **kwargs) -> dict[str, Any]:
    log_event("provider_request", provider=provider, method=method, url=url)
    try:
        response = requests.request(method, url, timeout=settings.payment_http_timeout_seconds, **kwargs)
    except requests.exceptions.RequestException as exc:
        raise PaymentProviderError(f"{provider} request failed: {exc}") from exc

    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {"data": data}
    if response.status_code >= 400:
        message = data.get("message") or data.get("responseMessage") or f"{provider} returned {response.status_code}"
        raise PaymentProviderError(str(message), response.status_code, data)
    return data


class PaystackProvider:
    name = "paystack"

    def _headers(self) -> dict[str, str]:
        if not settings.paystack_secret_key:
            raise PaymentProviderError("Missing PAYSTACK_SECRET_KEY")
        return {
            "Authorization": f"Bearer {settings.paystack_secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, endpoint: str, payload: dict | None = None) -> dict[str, Any]:
        data = _send(
            method,
            f"{settings.paystack_base_url.rstrip('/')}{endpoint}",
            provider=self.name,
            headers=self._headers(),
            json=payload,
        )
        if not data.get("status"):
            raise PaymentProviderError(str(data.get("message") or "Paystack request failed"), None, data)
        return data.get("data") or {}

    def initialize_payment(self, request: PaymentInitRequest) -> PaymentInitResult:
        data = self._request(
            "POST",
            "/transaction/initialize",
            {
                "email": request.email,
                "amount": naira_to_kobo(request.amount),
                "currency": request.currency,
                "reference": request.reference,
                "callback_url": request.callback_url,
                "metadata": request.metadata,
            },
        )
        checkout_url = data.get("authorization_url")
        if not checkout_url:
            raise PaymentProviderError("Paystack did not return an authorization URL", None, data)
        return PaymentInitResult(
            provider=self.name,
            payment_reference=str(data.get("reference") or request.reference),
            checkout_url=str(checkout_url),
        )

    def verify_payment(self, reference: str) -> PaymentVerification:
        data = self._request("GET", f"/transaction/verify/{reference}")
        status = str(data.get("status") or "").lower()
        return PaymentVerification(
            provider=self.name,
            reference=str(data.get("reference") or reference),
            successful=status == "success",
            amount=kobo_to_naira(data.get("amount") or 0),
            currency=str(data.get("currency") or "NGN").upper(),
            status=status,
        )

    def create_transfer_recipient(self, *, name: str, account_number: str, bank_code: str) -> str:
        data = self._request(
            "POST",
            "/transferrecipient",
            {"type": "nuban", "name": name, "account_number": account_number, "bank_code": bank_code},
        )
        recipient_code = str(data.get("recipient_code") or "").strip()
        if not recipient_code:
            raise PaymentProviderError("Paystack recipient creation failed", None, data)
        return recipient_code

    def initiate_transfer(self, *, amount_kobo: int, recipient_code: str, reason: str) -> TransferResult:
        data = self._request(
            "POST",
            "/transfer",
            {"source": "balance", "amount": amount_kobo, "recipient": recipient_code, "reason": reason},
        )
        transfer_code = str(data.get("transfer_code") or "").strip() or None
        reference = str(data.get("reference") or "").strip() or None
        if not transfer_code and not reference:
            raise PaymentProviderError("Paystack transfer did not return identifiers", None, data)
        return TransferResult(transfer_code=transfer_code, reference=reference)


class PayPalProvider:
    name = "paypal"

    def _access_token(self) -> str:
        if not settings.paypal_client_id or not settings.paypal_client_secret:
            raise PaymentProviderError("Missing PAYPAL_CLIENT_ID or PAYPAL_CLIENT_SECRET")
        data = _send(
            "POST",
            f"{settings.paypal_base_url}/v1/oauth2/token",
            provider=self.name,
            auth=(settings.paypal_client_id, settings.paypal_client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = data.get("access_token")
        if not token:
            raise PaymentProviderError("PayPal auth failed", None, data)
        return str(token)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token()}", "Content-Type": "application/json"}

    def initialize_payment(self, request: PaymentInitRequest) -> PaymentInitResult:
        data = _send(
            "POST",
            f"{settings.paypal_base_url}/v2/checkout/orders",
            provider=self.name,
            headers=self._headers(),
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "amount": {"currency_code": request.currency, "value": str(to_money(request.amount))},
                        "custom_id": request.reference,
                        "description": request.description or "LineScout quote payment",
                    }
                ],
                "application_context": {
                    "return_url": request.callback_url,
                    "cancel_url": request.cancel_url or request.callback_url,
                },
            },
        )
        order_id = data.get("id")
        if not order_id:
            raise PaymentProviderError("PayPal create order failed", None, data)
        approve_url = next(
            (link.get("href") for link in data.get("links") or [] if link.get("rel") == "approve"),
            None,
        )
        return PaymentInitResult(provider=self.name, payment_reference=str(order_id), checkout_url=approve_url)

    def verify_payment(self, reference: str) -> PaymentVerification:
        data = _send(
            "POST",
            f"{settings.paypal_base_url}/v2/checkout/orders/{reference}/capture",
            provider=self.name,
            headers=self._headers(),
        )
        status = str(data.get("status") or "").upper()
        amount = Decimal("0")
        currency = "USD"
        for unit in data.get("purchase_units") or []:
            for capture in (unit.get("payments") or {}).get("captures") or []:
                value = capture.get("amount") or {}
                amount += to_decimal(value.get("value"))
                currency = str(value.get("currency_code") or currency).upper()
        return PaymentVerification(
            provider=self.name,
            reference=reference,
            successful=status == "COMPLETED",
            amount=to_money(amount),
            currency=currency,
            status=status.lower(),
        )


class ProvidusClient:
    name = "providus"
    bank_name = "Providus Bank"

    def _config(self) -> tuple[str, str, str]:
        if not settings.providus_base_url or not settings.providus_client_id or not settings.providus_client_secret:
            raise PaymentProviderError("Missing PROVIDUS_BASE_URL/PROVIDUS_CLIENT_ID/PROVIDUS_CLIENT_SECRET")
        return (
            settings.providus_base_url.rstrip("/"),
            settings.providus_client_id,
            settings.providus_client_secret,
        )

    def reserve_account(self, account_name: str) -> ReservedAccount:
        base_url, client_id, client_secret = self._config()
        data = _send(
            "POST",
            f"{base_url}/PiPCreateReservedAccountNumber",
            provider=self.name,
            headers={
                "Content-Type": "application/json",
                "Client-Id": client_id,
                "X-Auth-Signature": providus_signature(client_id, client_secret),
            },
            json={"account_name": account_name, "bvn": ""},
        )
        if not data.get("requestSuccessful") or not data.get("account_number"):
            raise PaymentProviderError(
                str(data.get("responseMessage") or "Providus create account failed"), None, data
            )
        return ReservedAccount(
            account_number=str(data["account_number"]),
            account_name=str(data.get("account_name") or account_name),
            bank_name=self.bank_name,
        )


_PAYMENT_PROVIDERS: dict[str, PaymentProvider] = {
    "paystack": PaystackProvider(),
    "paypal": PayPalProvider(),
}

providus_client = ProvidusClient()


def get_payment_provider(name: str) -> PaymentProvider:
    normalized = (name or "").strip().lower()
    provider = _PAYMENT_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_PAYMENT_PROVIDERS.keys()))
        raise ValueError(f"Unknown payment provider '{name}'. Available: {available}")
    return provider


def get_paystack():
    # Transfers are Paystack-only, so payout code asks for it by name.
    return get_payment_provider("paystack")
