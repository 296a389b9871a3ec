from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
import smtplib
from typing import Literal

from linescout.core.config import settings
from linescout.core.observability import log_event

EmailDeliveryStatus = Literal["sent", "not_configured", "failed", "skipped"]


@dataclass(frozen=True)
class EmailDeliveryResult:
    status: EmailDeliveryStatus
    detail: str | None = None


_PURPOSE_LABELS = {
    "deposit": "Deposit",
    "product_balance": "Product balance",
    "full_product_payment": "Product payment",
    "shipping_payment": "Shipping payment",
}


def _smtp_configured() -> bool:
    return bool(settings.smtp_host and settings.smtp_sender_email)


def _format_naira(amount: Decimal) -> str:
    return f"NGN {amount:,.2f}"


def quote_link(token: str) -> str:
    return f"{settings.public_app_url}/quote/{token}"


def _deliver(*, recipient_email: str | None, subject: str, body: str) -> EmailDeliveryResult:
    if not recipient_email or "@" not in recipient_email:
        return EmailDeliveryResult(status="skipped", detail="No valid recipient email")
    if not _smtp_configured():
        return EmailDeliveryResult(status="not_configured", detail="SMTP not configured")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.smtp_sender_email
    message["To"] = recipient_email
    if settings.smtp_reply_to_email:
        message["Reply-To"] = settings.smtp_reply_to_email
    message.set_content(body)

    try:
        if settings.smtp_use_ssl:
            with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=20) as server:
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password or "")
                server.send_message(message)
        else:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20) as server:
                if settings.smtp_use_starttls:
                    server.starttls()
                if settings.smtp_username:
                    server.login(settings.smtp_username, settings.smtp_password or "")
                server.send_message(message)
    except Exception as exc:  # noqa: BLE001 - expose short status back to caller
        log_event("email_delivery_failed", subject=subject, error=str(exc))
        return EmailDeliveryResult(status="failed", detail=str(exc))

    return EmailDeliveryResult(status="sent", detail=None)


def send_payment_received_email(
    *,
    recipient_email: str | None,
    customer_name: str | None,
    amount: Decimal,
    purpose: str,
    quote_token: str,
    handoff_token: str | None,
) -> EmailDeliveryResult:
    label = _PURPOSE_LABELS.get(purpose, "Payment")
    lines = [
        f"Hello {customer_name or 'there'},",
        "",
        f"We have received your {label.lower()} of {_format_naira(amount)}.",
    ]
    if handoff_token:
        lines.append(f"Project reference: {handoff_token}")
    lines.extend(
        [
            f"View your quote and payment history: {quote_link(quote_token)}",
            "",
            "Thank you for sourcing with LineScout.",
        ]
    )
    return _deliver(
        recipient_email=recipient_email,
        subject=f"LineScout: {label} received",
        body="\n".join(lines),
    )


def send_quote_ready_email(
    *,
    recipient_email: str | None,
    customer_name: str | None,
    quote_token: str,
    total_due_ngn: Decimal,
    agent_note: str | None = None,
) -> EmailDeliveryResult:
    lines = [
        f"Hello {customer_name or 'there'},",
        "",
        "Your LineScout quote is ready.",
        f"Total due: {_format_naira(total_due_ngn)}",
    ]
    if agent_note:
        lines.extend(["", f"Note from your agent: {agent_note}"])
    lines.extend(["", f"Review and pay here: {quote_link(quote_token)}"])
    return _deliver(
        recipient_email=recipient_email,
        subject="Your LineScout quote is ready",
        body="\n".join(lines),
    )


def send_commitment_confirmed_email(
    *,
    recipient_email: str | None,
    customer_name: str | None,
    amount: Decimal,
    handoff_token: str,
    reference: str,
) -> EmailDeliveryResult:
    lines = [
        f"Hello {customer_name or 'there'},",
        "",
        "Your commitment fee has been received and your sourcing project is now active.",
        "",
        f"Project reference: {handoff_token}",
        f"Amount: {_format_naira(amount)}",
        f"Payment reference: {reference}",
        "",
        "The fee is credited against your first order. A sourcing specialist will pick up your project shortly.",
        "",
        "If you did not authorize this payment, reply to this email and we will investigate.",
    ]
    return _deliver(
        recipient_email=recipient_email,
        subject="LineScout: your sourcing project is active",
        body="\n".join(lines),
    )
