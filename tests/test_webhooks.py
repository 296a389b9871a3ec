import hashlib
import hmac
import json
import uuid

from sqlalchemy import select

from linescout.core.config import settings
from linescout.models.quote import QuotePayment
from linescout.models.user import User
from linescout.models.wallet import ProviderTransaction, VirtualAccount, Wallet
from linescout.services import payment_provider
from linescout.services.payment_provider import ReservedAccount

PAYSTACK_SECRET = "sk_test_webhook_secret"
PROVIDUS_CLIENT_ID = "providus-client"
PROVIDUS_CLIENT_SECRET = "providus-secret"


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


def _signup(client, session_local, *, email: str, role: str = "customer", full_name: str = "Ada Buyer"):
    res = _register(client, email=email, full_name=full_name)
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


def _quote_for_new_handoff(client, agent_token: str, *, customer_token: str | None = None) -> dict:
    payload = {"route_type": "machine_sourcing", "customer_name": "Lead Buyer"}
    headers = _auth_headers(customer_token) if customer_token else {}
    if not customer_token:
        payload["email"] = "lead@example.com"
    handoff_res = client.post("/handoffs", json=payload, headers=headers)
    assert handoff_res.status_code == 200, handoff_res.text
    handoff_id = handoff_res.json()["id"]
    claim_res = client.post(f"/handoffs/{handoff_id}/claim", headers=_auth_headers(agent_token))
    assert claim_res.status_code == 200, claim_res.text

    quote_res = client.post(
        "/quotes",
        json={
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
            "commitment_due_ngn": 0,
            "deposit_enabled": True,
            "deposit_percent": 50,
        },
        headers=_auth_headers(agent_token),
    )
    assert quote_res.status_code == 200, quote_res.text
    return quote_res.json()


def _paystack_headers(payload: dict, secret: str = PAYSTACK_SECRET) -> tuple[dict[str, str], bytes]:
    body = json.dumps(payload).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return {"Content-Type": "application/json", "x-paystack-signature": signature}, body


def _providus_headers(client_id: str = PROVIDUS_CLIENT_ID, secret: str = PROVIDUS_CLIENT_SECRET) -> dict[str, str]:
    signature = hashlib.sha512(f"{client_id}:{secret}".encode("utf-8")).hexdigest()
    return {"Content-Type": "application/json", "x-auth-signature": signature}


def _settlement(account_number: str, amount: str, settlement_id: str | None = None) -> dict:
    return {
        "sessionId": f"SESSION-{uuid.uuid4().hex[:8]}",
        "accountNumber": account_number,
        "tranRemarks": "Transfer from Lead Buyer",
        "transactionAmount": amount,
        "settledAmount": amount,
        "feeAmount": "0",
        "vatAmount": "0",
        "currency": "NGN",
        "settlementId": settlement_id or f"SETTLE-{uuid.uuid4().hex[:10]}",
        "sourceAccountNumber": "0011223344",
        "sourceAccountName": "LEAD BUYER",
        "sourceBankName": "Test Bank",
        "channelId": "1",
        "tranDateTime": "2026-10-01 10:15:00.000",
    }


def _configure_providus(monkeypatch):
    monkeypatch.setattr(settings, "providus_base_url", "https://providus.test")
    monkeypatch.setattr(settings, "providus_client_id", PROVIDUS_CLIENT_ID)
    monkeypatch.setattr(settings, "providus_client_secret", PROVIDUS_CLIENT_SECRET)


def test_paystack_webhook_confirms_pending_quote_payment_once(test_context, monkeypatch, fake_paystack):
    client, session_local = test_context
    monkeypatch.setattr(settings, "paystack_secret_key", PAYSTACK_SECRET)
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    quote = _quote_for_new_handoff(client, agent_token)

    pay = client.post(f"/quote/{quote['token']}/pay", json={"purpose": "deposit"})
    assert pay.status_code == 200, pay.text
    reference = pay.json()["reference"]

    event = {
        "event": "charge.success",
        "data": {"reference": reference, "amount": 2750000, "currency": "NGN", "status": "success"},
    }
    headers, body = _paystack_headers(event)

    forged_headers, _ = _paystack_headers(event, secret="not-the-secret")
    forged = client.post("/webhooks/paystack", content=body, headers=forged_headers)
    assert forged.status_code == 401

    first = client.post("/webhooks/paystack", content=body, headers=headers)
    assert first.status_code == 200, first.text
    assert first.json()["status"] == "processed"

    replay = client.post("/webhooks/paystack", content=body, headers=headers)
    assert replay.status_code == 200
    assert replay.json()["duplicate"] is True

    db = session_local()
    try:
        payment = db.execute(select(QuotePayment).where(QuotePayment.provider_ref == reference)).scalar_one()
        recorded = db.execute(
            select(ProviderTransaction).where(ProviderTransaction.provider_ref == reference)
        ).scalars().all()
    finally:
        db.close()
    assert payment.status == "paid"
    assert len(recorded) == 1

    summary = client.get(f"/quote/{quote['token']}/payments")
    assert summary.json()["deposit_paid"] == 27500

    earnings = client.get("/agents/me/earnings", headers=_auth_headers(agent_token))
    assert earnings.json()["gross_earned"] == 1375

    verify_after_webhook = client.get(f"/quote/paystack/verify?reference={reference}")
    assert verify_after_webhook.status_code == 200
    assert verify_after_webhook.json()["already_paid"] is True


def test_paystack_webhook_credits_dedicated_account_wallet(test_context, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "paystack_secret_key", PAYSTACK_SECRET)
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")

    db = session_local()
    try:
        db.add(
            VirtualAccount(
                id=str(uuid.uuid4()),
                owner_type="user",
                owner_id=customer_id,
                provider="paystack",
                account_number="9900112233",
                account_name="Ada Buyer",
                bank_name="Wema Bank",
                provider_ref="CUS_ada123",
            )
        )
        db.commit()
    finally:
        db.close()

    by_account = {
        "event": "charge.success",
        "data": {
            "reference": "T-DEDICATED-1",
            "amount": 1500000,
            "currency": "NGN",
            "dedicated_account": {"account_number": "9900112233"},
        },
    }
    headers, body = _paystack_headers(by_account)
    res = client.post("/webhooks/paystack", content=body, headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "processed"

    by_customer = {
        "event": "charge.success",
        "data": {
            "reference": "T-DEDICATED-2",
            "amount": 500000,
            "currency": "NGN",
            "customer": {"customer_code": "CUS_ada123"},
        },
    }
    headers, body = _paystack_headers(by_customer)
    assert client.post("/webhooks/paystack", content=body, headers=headers).json()["status"] == "processed"

    wallet = client.get("/wallet", headers=_auth_headers(customer_token))
    assert wallet.json()["wallet"]["balance"] == 20000
    assert wallet.json()["virtual_accounts"][0]["account_number"] == "9900112233"
    assert {row["reference_type"] for row in wallet.json()["transactions"]} == {"paystack"}

    stranger = {
        "event": "charge.success",
        "data": {"reference": "T-UNKNOWN", "amount": 100000, "dedicated_account": {"account_number": "0000000000"}},
    }
    headers, body = _paystack_headers(stranger)
    assert client.post("/webhooks/paystack", content=body, headers=headers).json()["ignored"] is True

    transfer_event = {"event": "transfer.success", "data": {"reference": "TRF-1", "amount": 100000}}
    headers, body = _paystack_headers(transfer_event)
    assert client.post("/webhooks/paystack", content=body, headers=headers).json()["status"] == "ignored"


def test_paystack_webhook_requires_configured_secret(test_context, monkeypatch):
    client, _ = test_context
    monkeypatch.setattr(settings, "paystack_secret_key", None)
    headers, body = _paystack_headers({"event": "charge.success", "data": {}})

    res = client.post("/webhooks/paystack", content=body, headers=headers)
    assert res.status_code == 500
    assert res.json()["error"]["message"] == "Paystack is not configured"


def test_providus_transfer_settles_pending_quote_payment(test_context, monkeypatch):
    client, session_local = test_context
    _configure_providus(monkeypatch)
    reserved = []

    def fake_reserve(account_name):
        reserved.append(account_name)
        return ReservedAccount(account_number="9876543210", account_name=account_name, bank_name="Providus Bank")

    monkeypatch.setattr(payment_provider.providus_client, "reserve_account", fake_reserve)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")
    quote = _quote_for_new_handoff(client, agent_token, customer_token=customer_token)

    override = client.put(
        "/payment-settings/overrides",
        json={"owner_type": "user", "owner_id": customer_id, "provider": "providus"},
        headers=_auth_headers(admin_token),
    )
    assert override.status_code == 200, override.text

    pay = client.post(
        f"/quote/{quote['token']}/pay", json={"purpose": "deposit"}, headers=_auth_headers(customer_token)
    )
    assert pay.status_code == 200, pay.text
    assert pay.json()["provider"] == "providus"
    assert pay.json()["account_number"] == "9876543210"
    assert pay.json()["bank_name"] == "Providus Bank"
    assert pay.json()["remaining"] == 27500
    assert reserved == ["Lead Buyer"]

    bad_signature = client.post(
        "/webhooks/providus/settlement",
        json=_settlement("9876543210", "27500"),
        headers=_providus_headers(secret="wrong"),
    )
    assert bad_signature.status_code == 200
    assert bad_signature.json()["responseCode"] == "02"

    unknown_account = client.post(
        "/webhooks/providus/settlement", json=_settlement("1111111111", "27500"), headers=_providus_headers()
    )
    assert unknown_account.json()["responseCode"] == "02"

    settlement = _settlement("9876543210", "27500", settlement_id="SETTLE-0001")
    settled = client.post("/webhooks/providus/settlement", json=settlement, headers=_providus_headers())
    assert settled.status_code == 200, settled.text
    assert settled.json()["responseCode"] == "00"
    assert settled.json()["sessionId"] == settlement["sessionId"]
    assert settled.json()["requestSuccessful"] is True

    duplicate = client.post("/webhooks/providus/settlement", json=settlement, headers=_providus_headers())
    assert duplicate.json()["responseCode"] == "01"

    summary = client.get(f"/quote/{quote['token']}/payments")
    assert summary.json()["deposit_paid"] == 27500
    assert summary.json()["payments"][0]["method"] == "providus"
    assert summary.json()["payments"][0]["status"] == "paid"

    wallet = client.get("/wallet", headers=_auth_headers(customer_token))
    assert wallet.json()["wallet"]["balance"] == 0
    assert {row["type"] for row in wallet.json()["transactions"]} == {"credit", "debit"}

    earnings = client.get("/agents/me/earnings", headers=_auth_headers(agent_token))
    assert earnings.json()["gross_earned"] == 1375


def test_providus_transfer_short_of_pending_amount_stays_in_wallet(test_context, monkeypatch):
    client, session_local = test_context
    _configure_providus(monkeypatch)
    monkeypatch.setattr(
        payment_provider.providus_client,
        "reserve_account",
        lambda account_name: ReservedAccount(
            account_number="9876500000", account_name=account_name, bank_name="Providus Bank"
        ),
    )
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")
    quote = _quote_for_new_handoff(client, agent_token, customer_token=customer_token)

    settings_res = client.put(
        "/payment-settings",
        json={"provider_default": "providus", "allow_overrides": True},
        headers=_auth_headers(admin_token),
    )
    assert settings_res.status_code == 200, settings_res.text
    pay = client.post(
        f"/quote/{quote['token']}/pay", json={"purpose": "deposit"}, headers=_auth_headers(customer_token)
    )
    assert pay.json()["provider"] == "providus"

    partial = client.post(
        "/webhooks/providus/settlement", json=_settlement("9876500000", "10000"), headers=_providus_headers()
    )
    assert partial.json()["responseCode"] == "00"

    db = session_local()
    try:
        payment = db.execute(select(QuotePayment).where(QuotePayment.quote_id == quote["id"])).scalar_one()
        wallet = db.execute(
            select(Wallet).where(Wallet.owner_type == "user", Wallet.owner_id == customer_id)
        ).scalar_one()
    finally:
        db.close()
    assert payment.status == "pending"
    assert float(wallet.balance) == 10000

    top_up = client.post(
        "/webhooks/providus/settlement", json=_settlement("9876500000", "17500"), headers=_providus_headers()
    )
    assert top_up.json()["responseCode"] == "00"
    summary = client.get(f"/quote/{quote['token']}/payments")
    assert summary.json()["deposit_paid"] == 27500


def test_providus_webhook_without_credentials_asks_for_retry(test_context, monkeypatch):
    client, _ = test_context
    monkeypatch.setattr(settings, "providus_client_id", None)
    monkeypatch.setattr(settings, "providus_client_secret", None)

    res = client.post(
        "/webhooks/providus/settlement",
        json=_settlement("9876543210", "1000"),
        headers=_providus_headers(),
    )
    assert res.status_code == 500
    assert res.json()["responseCode"] == "03"


def _providus_customer(client, session_local, monkeypatch, account_number: str):
    _configure_providus(monkeypatch)
    reserved = []

    def fake_reserve(account_name):
        reserved.append(account_name)
        return ReservedAccount(account_number=account_number, account_name=account_name, bank_name="Providus Bank")

    monkeypatch.setattr(payment_provider.providus_client, "reserve_account", fake_reserve)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")
    override = client.put(
        "/payment-settings/overrides",
        json={"owner_type": "user", "owner_id": customer_id, "provider": "providus"},
        headers=_auth_headers(admin_token),
    )
    assert override.status_code == 200, override.text
    return agent_token, customer_token, customer_id, reserved


def _providus_rows(session_local, quote_id: str) -> list[QuotePayment]:
    db = session_local()
    try:
        return db.execute(
            select(QuotePayment).where(QuotePayment.quote_id == quote_id, QuotePayment.method == "providus")
        ).scalars().all()
    finally:
        db.close()


def test_repeated_providus_checkout_reuses_the_open_transfer(test_context, monkeypatch):
    client, session_local = test_context
    agent_token, customer_token, _, reserved = _providus_customer(client, session_local, monkeypatch, "9876511111")
    quote = _quote_for_new_handoff(client, agent_token, customer_token=customer_token)

    for _ in range(2):
        pay = client.post(
            f"/quote/{quote['token']}/pay",
            json={"purpose": "full_product_payment"},
            headers=_auth_headers(customer_token),
        )
        assert pay.status_code == 200, pay.text
        assert pay.json()["provider"] == "providus"
        assert pay.json()["remaining"] == 55000
    assert reserved == ["Lead Buyer"]

    rows = _providus_rows(session_local, quote["id"])
    assert len(rows) == 1
    assert float(rows[0].amount) == 55000

    # The customer sends the full amount once per checkout attempt.
    settled = client.post(
        "/webhooks/providus/settlement", json=_settlement("9876511111", "110000"), headers=_providus_headers()
    )
    assert settled.json()["responseCode"] == "00"

    summary = client.get(f"/quote/{quote['token']}/payments")
    assert summary.json()["product_paid"] == 55000
    assert summary.json()["product_remaining"] == 0

    earnings = client.get("/agents/me/earnings", headers=_auth_headers(agent_token))
    assert earnings.json()["gross_earned"] == 2750

    wallet = client.get("/wallet", headers=_auth_headers(customer_token))
    assert wallet.json()["wallet"]["balance"] == 55000


def test_providus_rows_are_repriced_against_what_the_quote_still_owes(test_context, monkeypatch):
    client, session_local = test_context
    agent_token, customer_token, _, _ = _providus_customer(client, session_local, monkeypatch, "9876522222")
    quote = _quote_for_new_handoff(client, agent_token, customer_token=customer_token)

    deposit = client.post(
        f"/quote/{quote['token']}/pay", json={"purpose": "deposit"}, headers=_auth_headers(customer_token)
    )
    assert deposit.json()["remaining"] == 27500
    full = client.post(
        f"/quote/{quote['token']}/pay",
        json={"purpose": "full_product_payment"},
        headers=_auth_headers(customer_token),
    )
    assert full.json()["remaining"] == 55000
    assert len(_providus_rows(session_local, quote["id"])) == 2

    settled = client.post(
        "/webhooks/providus/settlement", json=_settlement("9876522222", "110000"), headers=_providus_headers()
    )
    assert settled.json()["responseCode"] == "00"

    # Whichever row settles first, the quote is only charged its product target once.
    summary = client.get(f"/quote/{quote['token']}/payments")
    assert summary.json()["product_paid"] == 55000
    rows = _providus_rows(session_local, quote["id"])
    assert sum(float(row.amount) for row in rows if row.status == "paid") == 55000
    assert {row.status for row in rows} <= {"paid", "superseded"}

    earnings = client.get("/agents/me/earnings", headers=_auth_headers(agent_token))
    assert earnings.json()["gross_earned"] == 2750

    wallet = client.get("/wallet", headers=_auth_headers(customer_token))
    assert wallet.json()["wallet"]["balance"] == 55000
