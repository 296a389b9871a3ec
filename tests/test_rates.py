import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from linescout.models.quote import QuotePayment
from linescout.models.user import User
from linescout.services.rates_service import convert_amount, get_active_shipping_rate, get_fx_rate


def _register(client, *, email: str, full_name: str = "Ada Admin"):
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


def _claimed_handoff(client, agent_token: str) -> dict:
    created = client.post(
        "/handoffs",
        json={"route_type": "machine_sourcing", "customer_name": "Lead Buyer", "email": "lead@example.com"},
    )
    assert created.status_code == 200, created.text
    claimed = client.post(f"/handoffs/{created.json()['id']}/claim", headers=_auth_headers(agent_token))
    assert claimed.status_code == 200, claimed.text
    return claimed.json()


def _create_quote(client, agent_token: str, handoff_id: str, **overrides) -> dict:
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
    res = client.post("/quotes", json=payload, headers=_auth_headers(agent_token))
    assert res.status_code == 200, res.text
    return res.json()


def test_latest_effective_fx_rate_wins_over_later_insert(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")

    current = client.post(
        "/fx-rates",
        json={
            "base_currency": "NGN",
            "quote_currency": "USD",
            "rate": 0.0005,
            "effective_at": "2026-10-10T00:00:00Z",
        },
        headers=_auth_headers(admin_token),
    )
    assert current.status_code == 200, current.text
    backdated = client.post(
        "/fx-rates",
        json={
            "base_currency": "ngn",
            "quote_currency": "usd",
            "rate": 0.0009,
            "effective_at": "2026-09-01T00:00:00Z",
        },
        headers=_auth_headers(admin_token),
    )
    assert backdated.status_code == 200, backdated.text
    assert backdated.json()["base_currency"] == "NGN"

    listed = client.get("/fx-rates", headers=_auth_headers(admin_token))
    assert [row["rate"] for row in listed.json()["items"]] == [0.0005, 0.0009]

    same_pair = client.post(
        "/fx-rates",
        json={"base_currency": "NGN", "quote_currency": "NGN", "rate": 1},
        headers=_auth_headers(admin_token),
    )
    assert same_pair.status_code == 400

    db = session_local()
    try:
        assert get_fx_rate(db, "NGN", "USD") == Decimal("0.0005")
        assert get_fx_rate(db, "usd", "usd") == Decimal("1")
        assert get_fx_rate(db, "USD", "NGN") is None
        assert convert_amount(db, 27500, "NGN", "USD") == Decimal("13.75")
        assert convert_amount(db, "250", "USD", "USD") == Decimal("250")
    finally:
        db.close()


def test_convert_amount_returns_none_without_a_usable_rate(test_context):
    _, session_local = test_context
    db = session_local()
    try:
        assert convert_amount(db, 0, "NGN", "USD") is None
        assert convert_amount(db, Decimal("-10"), "NGN", "USD") is None
        assert convert_amount(db, 100, "", "USD") is None
        assert convert_amount(db, 100, "NGN", "   ") is None
        assert convert_amount(db, 100, "NGN", "GBP") is None
        assert get_fx_rate(db, "", "USD") is None
    finally:
        db.close()


def test_newest_active_shipping_rate_prices_quotes(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")

    type_res = client.post("/shipping/types", json={"name": "Air freight"}, headers=_auth_headers(admin_token))
    assert type_res.status_code == 200, type_res.text
    shipping_type_id = type_res.json()["id"]
    older = client.post(
        "/shipping/rates",
        json={"shipping_type_id": shipping_type_id, "rate_value": 5, "rate_unit": "per_kg"},
        headers=_auth_headers(admin_token),
    )
    assert older.status_code == 200, older.text
    newer = client.post(
        "/shipping/rates",
        json={"shipping_type_id": shipping_type_id, "rate_value": 7, "rate_unit": "per_kg"},
        headers=_auth_headers(admin_token),
    )
    assert newer.status_code == 200, newer.text

    db = session_local()
    try:
        assert get_active_shipping_rate(db, shipping_type_id).id == newer.json()["id"]
    finally:
        db.close()

    handoff = _claimed_handoff(client, agent_token)
    rate_fields = {"shipping_rate_usd": None, "shipping_rate_unit": None, "shipping_type_id": shipping_type_id}
    first = _create_quote(client, agent_token, handoff["id"], **rate_fields)
    assert first["shipping_rate_usd"] == 7
    assert first["total_shipping_ngn"] == 210000

    deactivated = client.patch(
        f"/shipping/rates/{newer.json()['id']}",
        json={"is_active": False},
        headers=_auth_headers(admin_token),
    )
    assert deactivated.status_code == 200, deactivated.text
    assert deactivated.json()["is_active"] is False

    # Unpaid shipping is re-priced from the live table.
    summary = client.get(f"/quote/{first['token']}/payments")
    assert summary.json()["shipping_due"] == 150000

    second = _create_quote(client, agent_token, handoff["id"], **rate_fields)
    assert second["shipping_rate_usd"] == 5

    client.patch(
        f"/shipping/rates/{older.json()['id']}",
        json={"is_active": False},
        headers=_auth_headers(admin_token),
    )
    no_rate = client.post(
        "/quotes",
        json={
            "handoff_id": handoff["id"],
            "items": [{"product_name": "Press", "quantity": 1, "unit_price_rmb": 100}],
            "exchange_rate_rmb": 200,
            "exchange_rate_usd": 1500,
            "shipping_type_id": shipping_type_id,
        },
        headers=_auth_headers(agent_token),
    )
    assert no_rate.status_code == 400
    assert no_rate.json()["error"]["message"] == "No active shipping rate for the selected shipping type"


def test_payment_history_lists_the_fifty_latest_attempts(test_context):
    client, session_local = test_context
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")
    handoff = _claimed_handoff(client, agent_token)
    quote = _create_quote(client, agent_token, handoff["id"])

    started = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
    db = session_local()
    try:
        for minute in range(55):
            db.add(
                QuotePayment(
                    id=str(uuid.uuid4()),
                    quote_id=quote["id"],
                    handoff_id=handoff["id"],
                    purpose="deposit",
                    method="paystack",
                    status="failed",
                    amount=Decimal("27500.00") + minute,
                    currency="NGN",
                    provider_ref=f"LSQ_FAILED_{minute:02d}",
                    created_at=started + timedelta(minutes=minute),
                )
            )
        db.commit()
    finally:
        db.close()

    summary = client.get(f"/quote/{quote['token']}/payments")
    assert summary.status_code == 200, summary.text
    payments = summary.json()["payments"]
    assert len(payments) == 50
    assert payments[0]["amount"] == 27554
    assert payments[-1]["amount"] == 27505
    assert summary.json()["deposit_paid"] == 0

    staff_view = client.get(f"/quotes/{quote['id']}/payments", headers=_auth_headers(agent_token))
    assert len(staff_view.json()["payments"]) == 50
