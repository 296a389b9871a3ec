import hashlib
import hmac
import json

from sqlalchemy import select

from linescout.core.config import settings
from linescout.models.handoff import CommitmentPayment, Handoff
from linescout.models.user import User
from linescout.services import payment_provider
from linescout.services.payment_provider import PaymentInitResult, PaymentVerification

PAYSTACK_SECRET = "sk_test_commitment_secret"


def _register(client, *, email: str, full_name: str = "Ada Buyer"):
    return client.post(
        "/auth/register",
        json={
            "email": email,
            "full_name": full_name,
            "password": "password123",
        },
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _signup(client, session_local, *, email: str, role: str = "customer"):
    res = _register(client, email=email)
    assert res.status_code == 200, res.text
    db = session_local()
    try:
        user = db.execute(select(User).where(User.email == email)).scalar_one()
        user.role = role
        db.commit()
        user_id = user.id
    finally:
        db.close()
    return res.json()["access_token"], user_id


def _set_commitment_fee(client, admin_token: str, amount) -> None:
    res = client.patch(
        "/settings/platform",
        json={"commitment_due_ngn": amount},
        headers=_auth_headers(admin_token),
    )
    assert res.status_code == 200, res.text
    assert res.json()["commitment_due_ngn"] == amount


def _quote_payload(handoff_id: str, **overrides) -> dict:
    payload = {
        "handoff_id": handoff_id,
        "items": [
            {
                "product_name": "Palm oil press",
                "quantity": 2,
                "unit_price_rmb": 100,
                "unit_weight_kg": 10,
                "local_transport_rmb": 50,
            }
        ],
        "exchange_rate_rmb": 200,
        "exchange_rate_usd": 1500,
        "shipping_rate_usd": 5,
        "shipping_rate_unit": "per_kg",
        "markup_percent": 10,
        "agent_percent": 5,
        "deposit_enabled": True,
        "deposit_percent": 50,
    }
    payload.update(overrides)
    return payload


class _FakePayPal:
    name = "paypal"

    def __init__(self):
        self.requests = []

    def initialize_payment(self, request):
        self.requests.append(request)
        return PaymentInitResult(
            provider="paypal", payment_reference="ORDER-C100", checkout_url="https://paypal.test/approve/ORDER-C100"
        )

    def verify_payment(self, reference):
        return PaymentVerification(
            provider="paypal",
            reference=reference,
            successful=True,
            amount=self.requests[-1].amount,
            currency="USD",
            status="completed",
        )


def test_commitment_checkout_needs_a_configured_fee(test_context):
    client, session_local = test_context
    customer_token, _ = _signup(client, session_local, email="buyer@example.com")

    anonymous = client.post("/commitments/pay", json={"route_type": "machine_sourcing"})
    assert anonymous.status_code == 401

    res = client.post("/commitments/pay", json={"route_type": "machine_sourcing"}, headers=_auth_headers(customer_token))
    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Commitment fee is not configured. Please contact support."

    bad_route = client.post("/commitments/pay", json={"route_type": "groceries"}, headers=_auth_headers(customer_token))
    assert bad_route.status_code == 400


def test_paystack_commitment_opens_a_handoff_and_credits_its_quote(test_context, fake_paystack):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")
    _set_commitment_fee(client, admin_token, 5000)

    pay = client.post(
        "/commitments/pay",
        json={
            "route_type": "Machine_Sourcing",
            "customer_name": "  Ada Buyer  ",
            "whatsapp_number": "08012345678",
            "context": "Cassava processing line",
        },
        headers=_auth_headers(customer_token),
    )
    assert pay.status_code == 200, pay.text
    body = pay.json()
    assert body["provider"] == "paystack"
    assert body["amount"] == 5000
    assert body["charge_currency"] == "NGN"
    reference = body["reference"]
    assert reference.startswith(f"LSC_{customer_id[:8]}_")
    assert body["authorization_url"].endswith(f"/commitments/paystack/verify?reference={reference}")
    assert fake_paystack.checkouts[reference].metadata["payment_kind"] == "commitment"

    verified = client.get(
        "/commitments/paystack/verify", params={"reference": reference}, headers=_auth_headers(customer_token)
    )
    assert verified.status_code == 200, verified.text
    assert verified.json()["already_paid"] is False
    assert verified.json()["status"] == "paid"
    handoff_id = verified.json()["handoff_id"]
    assert verified.json()["handoff_token"].startswith("MS-")

    again = client.get(
        "/commitments/paystack/verify", params={"reference": reference}, headers=_auth_headers(customer_token)
    )
    assert again.json()["already_paid"] is True
    assert again.json()["handoff_id"] == handoff_id

    other_token, _ = _signup(client, session_local, email="other@example.com")
    stranger = client.get(
        "/commitments/paystack/verify", params={"reference": reference}, headers=_auth_headers(other_token)
    )
    assert stranger.status_code == 404
    assert stranger.json()["error"]["message"] == "Payment record not found."

    db = session_local()
    try:
        handoff = db.get(Handoff, handoff_id)
        assert handoff.customer_user_id == customer_id
        assert handoff.customer_name == "Ada Buyer"
        assert handoff.context == "Cassava processing line"
        assert handoff.whatsapp_number == "+2348012345678"
        assert handoff.status == "pending"
        assert db.execute(select(Handoff)).scalars().all() == [handoff]
    finally:
        db.close()

    financials = client.get(f"/handoffs/{handoff_id}/financials", headers=_auth_headers(admin_token))
    assert [(row["purpose"], row["amount"]) for row in financials.json()["payments"]] == [("commitment_fee", 5000)]

    notifications = client.get("/notifications", headers=_auth_headers(customer_token))
    assert [row["title"] for row in notifications.json()["items"]] == ["Sourcing project active"]

    claim = client.post(f"/handoffs/{handoff_id}/claim", headers=_auth_headers(agent_token))
    assert claim.status_code == 200, claim.text
    quote = client.post("/quotes", json=_quote_payload(handoff_id), headers=_auth_headers(agent_token))
    assert quote.status_code == 200, quote.text
    assert quote.json()["commitment_due_ngn"] == 5000

    over_credit = client.post(
        "/quotes", json=_quote_payload(handoff_id, commitment_due_ngn=9000), headers=_auth_headers(agent_token)
    )
    assert over_credit.json()["commitment_due_ngn"] == 5000

    summary = client.get(f"/quote/{quote.json()['token']}/payments")
    assert summary.json()["product_target"] == 50000
    assert summary.json()["deposit_amount"] == 27500


def test_quote_on_a_free_handoff_gets_no_commitment_credit(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    _set_commitment_fee(client, admin_token, 5000)

    handoff = client.post(
        "/handoffs",
        json={"route_type": "machine_sourcing", "customer_name": "Lead Buyer", "email": "lead@example.com"},
    )
    handoff_id = handoff.json()["id"]
    client.post(f"/handoffs/{handoff_id}/claim", headers=_auth_headers(agent_token))

    quote = client.post(
        "/quotes", json=_quote_payload(handoff_id, commitment_due_ngn=5000), headers=_auth_headers(agent_token)
    )
    assert quote.status_code == 200, quote.text
    assert quote.json()["commitment_due_ngn"] == 0
    summary = client.get(f"/quote/{quote.json()['token']}/payments")
    assert summary.json()["product_target"] == 55000


def test_paystack_webhook_confirms_commitment_by_reference(test_context, monkeypatch, fake_paystack):
    client, session_local = test_context
    monkeypatch.setattr(settings, "paystack_secret_key", PAYSTACK_SECRET)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")
    _set_commitment_fee(client, admin_token, 5000)

    pay = client.post("/commitments/pay", json={"route_type": "machine_sourcing"}, headers=_auth_headers(customer_token))
    reference = pay.json()["reference"]

    event = {
        "event": "charge.success",
        "data": {"reference": reference, "amount": 500000, "currency": "NGN", "status": "success"},
    }
    body = json.dumps(event).encode("utf-8")
    signature = hmac.new(PAYSTACK_SECRET.encode("utf-8"), body, hashlib.sha512).hexdigest()
    headers = {"Content-Type": "application/json", "x-paystack-signature": signature}

    first = client.post("/webhooks/paystack", content=body, headers=headers)
    assert first.status_code == 200, first.text
    replay = client.post("/webhooks/paystack", content=body, headers=headers)
    assert replay.status_code == 200, replay.text

    db = session_local()
    try:
        payment = db.execute(select(CommitmentPayment).where(CommitmentPayment.provider_ref == reference)).scalar_one()
        assert payment.status == "paid"
        assert float(payment.amount) == 5000
        handoffs = db.execute(select(Handoff).where(Handoff.customer_user_id == customer_id)).scalars().all()
        assert [row.id for row in handoffs] == [payment.handoff_id]
    finally:
        db.close()

    verified = client.get(
        "/commitments/paystack/verify", params={"reference": reference}, headers=_auth_headers(customer_token)
    )
    assert verified.json()["already_paid"] is True


def test_paypal_commitment_charges_usd_and_books_naira(test_context, monkeypatch):
    client, session_local = test_context
    fake = _FakePayPal()
    monkeypatch.setitem(payment_provider._PAYMENT_PROVIDERS, "paypal", fake)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    customer_token, _ = _signup(client, session_local, email="buyer@example.com")
    _set_commitment_fee(client, admin_token, 20000)
    client.put(
        "/payment-settings",
        json={"provider_default": "paypal", "allow_overrides": True},
        headers=_auth_headers(admin_token),
    )

    no_fx = client.post("/commitments/pay", json={"route_type": "machine_sourcing"}, headers=_auth_headers(customer_token))
    assert no_fx.status_code == 400
    assert no_fx.json()["error"]["message"] == "NGN to USD exchange rate is not configured"

    fx = client.post(
        "/fx-rates",
        json={"base_currency": "NGN", "quote_currency": "USD", "rate": 0.0005},
        headers=_auth_headers(admin_token),
    )
    assert fx.status_code == 200, fx.text

    pay = client.post("/commitments/pay", json={"route_type": "machine_sourcing"}, headers=_auth_headers(customer_token))
    assert pay.status_code == 200, pay.text
    assert pay.json()["provider"] == "paypal"
    assert pay.json()["reference"] == "ORDER-C100"
    assert pay.json()["charge_amount"] == 10
    assert pay.json()["charge_currency"] == "USD"
    assert fake.requests[-1].callback_url.endswith("/commitments/paypal/verify")

    captured = client.get(
        "/commitments/paypal/verify", params={"token": "ORDER-C100"}, headers=_auth_headers(customer_token)
    )
    assert captured.status_code == 200, captured.text
    assert captured.json()["amount"] == 20000
    assert captured.json()["already_paid"] is False
