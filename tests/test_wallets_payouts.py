import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from linescout.core.config import settings
from linescout.models.audit_log import AuditLog
from linescout.models.payments import PayoutRequest
from linescout.models.user import User
from linescout.models.wallet import Wallet
from linescout.services import payment_provider
from linescout.services.commission_service import COMMISSION_REFERENCE_TYPE
from linescout.services.payment_provider import TransferResult
from linescout.services.payment_settings_service import select_payment_provider
from linescout.services.wallet_service import (
    InsufficientWalletBalance,
    credit_wallet,
    debit_wallet,
    get_or_create_wallet,
)


def _register(client, *, email: str, full_name: str = "Ada Agent"):
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


def _signup(client, session_local, *, email: str, role: str = "customer", full_name: str = "Ada Agent"):
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


def _seed_commission(session_local, agent_id: str, amount: str) -> None:
    db = session_local()
    try:
        wallet = get_or_create_wallet(db, owner_type="agent", owner_id=agent_id)
        credit_wallet(
            db,
            wallet,
            Decimal(amount),
            reason="Commission",
            reference_type=COMMISSION_REFERENCE_TYPE,
            reference_id=str(uuid.uuid4()),
            meta={"agent_percent": "5"},
        )
        db.commit()
    finally:
        db.close()


def _verified_agent(client, session_local, admin_token: str, *, commission: str = "5000"):
    agent_token, agent_id = _signup(client, session_local, email="agent@example.com", role="agent")
    _seed_commission(session_local, agent_id, commission)
    account = client.put(
        "/agents/me/payout-account",
        json={"bank_code": "058", "account_number": "0123456789", "account_name": "Ada Agent"},
        headers=_auth_headers(agent_token),
    )
    assert account.status_code == 200, account.text
    verified = client.post(f"/payout-accounts/{agent_id}/verify", headers=_auth_headers(admin_token))
    assert verified.status_code == 200, verified.text
    return agent_token, agent_id


def _earnings(client, agent_token: str) -> dict:
    res = client.get("/agents/me/earnings", headers=_auth_headers(agent_token))
    assert res.status_code == 200, res.text
    return res.json()


def test_payout_account_needs_verification_before_requests(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    customer_token, _ = _signup(client, session_local, email="buyer@example.com")
    agent_token, agent_id = _signup(client, session_local, email="agent@example.com", role="agent")
    _seed_commission(session_local, agent_id, "5000")

    no_account = client.post(
        "/agents/me/payout-requests", json={"amount": 1000}, headers=_auth_headers(agent_token)
    )
    assert no_account.status_code == 409
    assert no_account.json()["error"]["code"] == "conflict"

    customer_attempt = client.put(
        "/agents/me/payout-account",
        json={"bank_code": "058", "account_number": "0123456789"},
        headers=_auth_headers(customer_token),
    )
    assert customer_attempt.status_code == 403

    not_digits = client.put(
        "/agents/me/payout-account",
        json={"bank_code": "058", "account_number": "01234abcde"},
        headers=_auth_headers(agent_token),
    )
    assert not_digits.status_code == 400
    assert "10 digit" in not_digits.json()["error"]["message"]

    saved = client.put(
        "/agents/me/payout-account",
        json={"bank_code": "058", "account_number": "0123456789", "account_name": "Ada Agent"},
        headers=_auth_headers(agent_token),
    )
    assert saved.status_code == 200, saved.text
    assert saved.json()["status"] == "pending"

    unverified = client.post(
        "/agents/me/payout-requests", json={"amount": 1000}, headers=_auth_headers(agent_token)
    )
    assert unverified.status_code == 409

    verified = client.post(f"/payout-accounts/{agent_id}/verify", headers=_auth_headers(admin_token))
    assert verified.json()["status"] == "verified"
    assert verified.json()["verified_at"] is not None

    renamed = client.put(
        "/agents/me/payout-account",
        json={"bank_code": "058", "account_number": "0123456789", "account_name": "Ada A. Agent"},
        headers=_auth_headers(agent_token),
    )
    assert renamed.json()["status"] == "verified"

    moved_bank = client.put(
        "/agents/me/payout-account",
        json={"bank_code": "044", "account_number": "0123456789", "account_name": "Ada A. Agent"},
        headers=_auth_headers(agent_token),
    )
    assert moved_bank.json()["status"] == "pending"
    assert moved_bank.json()["verified_at"] is None

    missing = client.post(f"/payout-accounts/{uuid.uuid4()}/verify", headers=_auth_headers(admin_token))
    assert missing.status_code == 404


def test_payout_request_lifecycle_with_mock_transfers(test_context, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "paystack_mock_transfers", True)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, agent_id = _verified_agent(client, session_local, admin_token)

    below_minimum = client.post(
        "/agents/me/payout-requests", json={"amount": 50}, headers=_auth_headers(agent_token)
    )
    assert below_minimum.status_code == 400
    assert "Minimum payout" in below_minimum.json()["error"]["message"]

    too_much = client.post(
        "/agents/me/payout-requests", json={"amount": 6000}, headers=_auth_headers(agent_token)
    )
    assert too_much.status_code == 400
    assert too_much.json()["error"]["message"] == "Amount exceeds available earnings"

    created = client.post(
        "/agents/me/payout-requests",
        json={"amount": 3000, "note": "October commissions"},
        headers=_auth_headers(agent_token),
    )
    assert created.status_code == 200, created.text
    request_id = created.json()["id"]
    assert created.json()["amount"] == 3000
    assert created.json()["status"] == "pending"

    earnings = _earnings(client, agent_token)
    assert earnings["gross_earned"] == 5000
    assert earnings["locked"] == 3000
    assert earnings["available"] == 2000

    over_locked = client.post(
        "/agents/me/payout-requests", json={"amount": 2500}, headers=_auth_headers(agent_token)
    )
    assert over_locked.status_code == 400

    agent_cannot_approve = client.post(
        f"/payout-requests/{request_id}/approve", headers=_auth_headers(agent_token)
    )
    assert agent_cannot_approve.status_code == 403

    pay_too_early = client.post(f"/payout-requests/{request_id}/pay", headers=_auth_headers(admin_token))
    assert pay_too_early.status_code == 409

    approved = client.post(
        f"/payout-requests/{request_id}/approve",
        json={"admin_note": "Checked against October quotes"},
        headers=_auth_headers(admin_token),
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_at"] is not None

    approve_again = client.post(f"/payout-requests/{request_id}/approve", headers=_auth_headers(admin_token))
    assert approve_again.status_code == 409

    paid = client.post(f"/payout-requests/{request_id}/pay", headers=_auth_headers(admin_token))
    assert paid.status_code == 200, paid.text
    assert paid.json()["status"] == "paid"
    assert paid.json()["transfer_code"] == f"MOCK_TRF_{request_id}"
    assert paid.json()["paid_at"] is not None

    earnings = _earnings(client, agent_token)
    assert earnings["paid_out"] == 3000
    assert earnings["locked"] == 0
    assert earnings["available"] == 2000

    mine = client.get("/agents/me/payout-requests?status=paid", headers=_auth_headers(agent_token))
    assert mine.json()["total"] == 1
    admin_view = client.get(
        f"/payout-requests?agent_id={agent_id}", headers=_auth_headers(admin_token)
    )
    assert [row["id"] for row in admin_view.json()["items"]] == [request_id]
    bad_filter = client.get("/payout-requests?status=lost", headers=_auth_headers(admin_token))
    assert bad_filter.status_code == 400

    notifications = client.get("/notifications", headers=_auth_headers(agent_token))
    assert notifications.json()["items"][0]["title"] == "Payout sent"

    db = session_local()
    try:
        actions = db.execute(
            select(AuditLog.action).where(AuditLog.target_id == request_id)
        ).scalars().all()
    finally:
        db.close()
    assert set(actions) == {"payout_request.create", "payout_request.approve", "payout_request.pay"}


def test_rejected_payout_releases_locked_amount(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _verified_agent(client, session_local, admin_token, commission="1500")

    created = client.post(
        "/agents/me/payout-requests", json={"amount": 1500}, headers=_auth_headers(agent_token)
    )
    request_id = created.json()["id"]
    assert _earnings(client, agent_token)["available"] == 0

    no_note = client.post(
        f"/payout-requests/{request_id}/reject", json={}, headers=_auth_headers(admin_token)
    )
    assert no_note.status_code == 400
    assert no_note.json()["error"]["message"] == "admin_note is required when rejecting a payout"

    rejected = client.post(
        f"/payout-requests/{request_id}/reject",
        json={"admin_note": "Bank details do not match the account name"},
        headers=_auth_headers(admin_token),
    )
    assert rejected.status_code == 200, rejected.text
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["admin_note"] == "Bank details do not match the account name"

    assert _earnings(client, agent_token)["available"] == 1500

    approve_rejected = client.post(
        f"/payout-requests/{request_id}/approve", headers=_auth_headers(admin_token)
    )
    assert approve_rejected.status_code == 409

    unknown = client.post(f"/payout-requests/{uuid.uuid4()}/approve", headers=_auth_headers(admin_token))
    assert unknown.status_code == 404

    feed = client.get("/notifications?unread_only=true", headers=_auth_headers(agent_token))
    assert feed.json()["unread_count"] == 1
    assert feed.json()["items"][0]["title"] == "Payout request rejected"
    assert feed.json()["items"][0]["data"]["status"] == "rejected"


def test_payout_transfer_goes_through_paystack(test_context, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "paystack_mock_transfers", False)
    monkeypatch.setattr(settings, "paystack_secret_key", None)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, agent_id = _verified_agent(client, session_local, admin_token)

    created = client.post(
        "/agents/me/payout-requests", json={"amount": 2000}, headers=_auth_headers(agent_token)
    )
    request_id = created.json()["id"]
    client.post(f"/payout-requests/{request_id}/approve", headers=_auth_headers(admin_token))

    unconfigured = client.post(f"/payout-requests/{request_id}/pay", headers=_auth_headers(admin_token))
    assert unconfigured.status_code == 502
    assert unconfigured.json()["error"]["code"] == "provider_error"
    assert unconfigured.json()["error"]["message"] == "Missing PAYSTACK_SECRET_KEY"

    db = session_local()
    try:
        assert db.get(PayoutRequest, request_id).status == "approved"
    finally:
        db.close()

    calls = []

    class _FakePaystack:
        name = "paystack"

        def create_transfer_recipient(self, *, name, account_number, bank_code):
            calls.append(("recipient", name, account_number, bank_code))
            return "RCP_test123"

        def initiate_transfer(self, *, amount_kobo, recipient_code, reason):
            calls.append(("transfer", amount_kobo, recipient_code))
            return TransferResult(transfer_code="TRF_live456", reference="ref-789")

    monkeypatch.setitem(payment_provider._PAYMENT_PROVIDERS, "paystack", _FakePaystack())

    paid = client.post(f"/payout-requests/{request_id}/pay", headers=_auth_headers(admin_token))
    assert paid.status_code == 200, paid.text
    assert paid.json()["transfer_code"] == "TRF_live456"
    assert paid.json()["transfer_reference"] == "ref-789"
    assert calls == [
        ("recipient", "Ada Agent", "0123456789", "058"),
        ("transfer", 200000, "RCP_test123"),
    ]

    account = client.get("/agents/me/payout-account", headers=_auth_headers(agent_token))
    assert account.json()["agent_id"] == agent_id


def test_admin_wallet_adjustments_are_audited(test_context):
    client, session_local = test_context
    admin_token, admin_id = _signup(client, session_local, email="admin@example.com", role="admin")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com")

    forbidden = client.post(
        "/wallets/adjust",
        json={"owner_id": customer_id, "direction": "credit", "amount": 100, "reason": "Goodwill"},
        headers=_auth_headers(customer_token),
    )
    assert forbidden.status_code == 403

    bad_owner_type = client.post(
        "/wallets/adjust",
        json={"owner_type": "vendor", "owner_id": customer_id, "direction": "credit", "amount": 100, "reason": "Goodwill"},
        headers=_auth_headers(admin_token),
    )
    assert bad_owner_type.status_code == 400

    unknown_owner = client.post(
        "/wallets/adjust",
        json={"owner_id": str(uuid.uuid4()), "direction": "credit", "amount": 100, "reason": "Goodwill"},
        headers=_auth_headers(admin_token),
    )
    assert unknown_owner.status_code == 404

    bad_direction = client.post(
        "/wallets/adjust",
        json={"owner_id": customer_id, "direction": "sideways", "amount": 100, "reason": "Goodwill"},
        headers=_auth_headers(admin_token),
    )
    assert bad_direction.status_code == 422

    credited = client.post(
        "/wallets/adjust",
        json={"owner_id": customer_id, "direction": "credit", "amount": 25000, "reason": "Refund for cancelled order"},
        headers=_auth_headers(admin_token),
    )
    assert credited.status_code == 200, credited.text
    wallet_id = credited.json()["wallet"]["id"]
    assert credited.json()["wallet"]["balance"] == 25000
    assert credited.json()["transaction"]["reference_type"] == "admin_adjustment"

    overdraw = client.post(
        "/wallets/adjust",
        json={"owner_id": customer_id, "direction": "debit", "amount": 30000, "reason": "Correction"},
        headers=_auth_headers(admin_token),
    )
    assert overdraw.status_code == 400
    assert overdraw.json()["error"]["message"] == "Insufficient balance"

    debited = client.post(
        "/wallets/adjust",
        json={"owner_id": customer_id, "direction": "debit", "amount": 5000, "reason": "Correction"},
        headers=_auth_headers(admin_token),
    )
    assert debited.json()["wallet"]["balance"] == 20000

    mine = client.get("/wallet", headers=_auth_headers(customer_token))
    assert mine.json()["wallet"]["id"] == wallet_id
    assert [row["type"] for row in mine.json()["transactions"]] in (["debit", "credit"], ["credit", "debit"])

    listing = client.get(
        f"/wallets?owner_type=user&owner_id={customer_id}", headers=_auth_headers(admin_token)
    )
    assert listing.json()["pagination"]["total"] == 1
    assert listing.json()["items"][0]["balance"] == 20000

    detail = client.get(f"/wallets/{wallet_id}", headers=_auth_headers(admin_token))
    assert detail.json()["wallet"]["owner_id"] == customer_id
    assert client.get(f"/wallets/{uuid.uuid4()}", headers=_auth_headers(admin_token)).status_code == 404

    db = session_local()
    try:
        actions = db.execute(
            select(AuditLog.action).where(AuditLog.actor_user_id == admin_id, AuditLog.target_id == wallet_id)
        ).scalars().all()
    finally:
        db.close()
    assert sorted(actions) == ["wallet.credit", "wallet.debit"]


def test_provider_overrides_apply_only_while_allowed(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    _, customer_id = _signup(client, session_local, email="buyer@example.com")

    current = client.get("/payment-settings", headers=_auth_headers(admin_token))
    assert current.status_code == 200, current.text
    assert current.json()["provider_default"] == "paystack"
    assert current.json()["allow_overrides"] is True
    assert set(current.json()["available_providers"]) == {"paystack", "providus", "paypal"}

    unknown_provider = client.put(
        "/payment-settings",
        json={"provider_default": "venmo", "allow_overrides": True},
        headers=_auth_headers(admin_token),
    )
    assert unknown_provider.status_code == 400

    override = client.put(
        "/payment-settings/overrides",
        json={"owner_type": "user", "owner_id": customer_id, "provider": "paypal"},
        headers=_auth_headers(admin_token),
    )
    assert override.status_code == 200, override.text
    assert override.json()["provider"] == "paypal"

    missing_user = client.put(
        "/payment-settings/overrides",
        json={"owner_type": "user", "owner_id": str(uuid.uuid4()), "provider": "paypal"},
        headers=_auth_headers(admin_token),
    )
    assert missing_user.status_code == 404

    db = session_local()
    try:
        assert select_payment_provider(db, owner_type="user", owner_id=customer_id).provider == "paypal"
    finally:
        db.close()

    locked = client.put(
        "/payment-settings",
        json={"provider_default": "providus", "allow_overrides": False},
        headers=_auth_headers(admin_token),
    )
    assert locked.json() == {
        "provider_default": "providus",
        "allow_overrides": False,
        "available_providers": ["paystack", "providus", "paypal"],
    }

    db = session_local()
    try:
        assert select_payment_provider(db, owner_type="user", owner_id=customer_id).provider == "providus"
    finally:
        db.close()

    removed = client.delete(
        f"/payment-settings/overrides/user/{customer_id}", headers=_auth_headers(admin_token)
    )
    assert removed.status_code == 204
    again = client.delete(f"/payment-settings/overrides/user/{customer_id}", headers=_auth_headers(admin_token))
    assert again.status_code == 404
    bad_type = client.delete(f"/payment-settings/overrides/vendor/{customer_id}", headers=_auth_headers(admin_token))
    assert bad_type.status_code == 400


def test_notifications_are_private_and_can_be_marked_read(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, _ = _verified_agent(client, session_local, admin_token, commission="1000")
    other_token, _ = _signup(client, session_local, email="other-agent@example.com", role="agent")

    for amount in (200, 300):
        created = client.post(
            "/agents/me/payout-requests", json={"amount": amount}, headers=_auth_headers(agent_token)
        )
        client.post(
            f"/payout-requests/{created.json()['id']}/reject",
            json={"admin_note": "Resubmit after month end"},
            headers=_auth_headers(admin_token),
        )

    feed = client.get("/notifications", headers=_auth_headers(agent_token))
    assert feed.json()["unread_count"] == 2
    first_id = feed.json()["items"][0]["id"]

    hidden = client.post(f"/notifications/{first_id}/read", headers=_auth_headers(other_token))
    assert hidden.status_code == 404

    read = client.post(f"/notifications/{first_id}/read", headers=_auth_headers(agent_token))
    assert read.status_code == 200, read.text
    assert read.json()["is_read"] is True
    assert read.json()["read_at"] is not None

    assert client.get("/notifications", headers=_auth_headers(agent_token)).json()["unread_count"] == 1

    read_all = client.post("/notifications/read-all", headers=_auth_headers(agent_token))
    assert read_all.json() == {"updated": 1}
    assert client.get("/notifications", headers=_auth_headers(agent_token)).json()["unread_count"] == 0
    assert client.get("/notifications", headers=_auth_headers(other_token)).json()["items"] == []


def test_payout_request_lists_are_paged_in_sql(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    agent_token, agent_id = _verified_agent(client, session_local, admin_token)

    created = set()
    for amount in (1000, 1100, 1200):
        res = client.post("/agents/me/payout-requests", json={"amount": amount}, headers=_auth_headers(agent_token))
        assert res.status_code == 200, res.text
        created.add(res.json()["id"])

    page = client.get("/payout-requests?limit=2&offset=1", headers=_auth_headers(admin_token))
    assert page.status_code == 200, page.text
    assert page.json()["total"] == 3
    assert len(page.json()["items"]) == 2

    first = client.get("/payout-requests?limit=2&offset=0", headers=_auth_headers(admin_token))
    rest = client.get("/payout-requests?limit=2&offset=2", headers=_auth_headers(admin_token))
    paged_ids = [row["id"] for row in first.json()["items"] + rest.json()["items"]]
    assert len(paged_ids) == 3
    assert set(paged_ids) == created

    mine = client.get("/agents/me/payout-requests?limit=1&offset=2", headers=_auth_headers(agent_token))
    assert mine.json()["total"] == 3
    assert [row["id"] for row in mine.json()["items"]] == paged_ids[2:]

    beyond = client.get(f"/payout-requests?agent_id={agent_id}&offset=10", headers=_auth_headers(admin_token))
    assert beyond.json()["total"] == 3
    assert beyond.json()["items"] == []


def test_customer_withdrawal_debits_wallet_and_refunds_on_reject(test_context, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "paystack_mock_transfers", True)
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    customer_token, customer_id = _signup(client, session_local, email="buyer@example.com", full_name="Ada Buyer")
    agent_token, _ = _signup(client, session_local, email="agent@example.com", role="agent")

    no_account = client.post("/wallet/payout-requests", json={"amount": 1000}, headers=_auth_headers(customer_token))
    assert no_account.status_code == 409
    assert no_account.json()["error"]["message"] == "Add your bank account first."
    assert client.get("/wallet/payout-account", headers=_auth_headers(customer_token)).status_code == 404

    agent_attempt = client.put(
        "/wallet/payout-account",
        json={"bank_code": "058", "account_number": "0123456789"},
        headers=_auth_headers(agent_token),
    )
    assert agent_attempt.status_code == 403

    saved = client.put(
        "/wallet/payout-account",
        json={"bank_code": "058", "account_number": "0123456789", "account_name": "Ada Buyer"},
        headers=_auth_headers(customer_token),
    )
    assert saved.status_code == 200, saved.text
    assert saved.json()["status"] == "pending"

    no_wallet = client.post("/wallet/payout-requests", json={"amount": 1000}, headers=_auth_headers(customer_token))
    assert no_wallet.status_code == 400
    assert no_wallet.json()["error"]["message"] == "Insufficient balance"

    funded = client.post(
        "/wallets/adjust",
        json={"owner_id": customer_id, "direction": "credit", "amount": 10000, "reason": "Refund for cancelled order"},
        headers=_auth_headers(admin_token),
    )
    assert funded.status_code == 200, funded.text

    too_much = client.post("/wallet/payout-requests", json={"amount": 20000}, headers=_auth_headers(customer_token))
    assert too_much.status_code == 400
    assert too_much.json()["error"]["message"] == "Insufficient balance"

    first = client.post(
        "/wallet/payout-requests",
        json={"amount": 4000, "note": "Back to my bank"},
        headers=_auth_headers(customer_token),
    )
    assert first.status_code == 200, first.text
    assert first.json()["status"] == "pending"
    assert client.get("/wallet", headers=_auth_headers(customer_token)).json()["wallet"]["balance"] == 6000

    no_note = client.post(
        f"/user-payout-requests/{first.json()['id']}/reject", json={}, headers=_auth_headers(admin_token)
    )
    assert no_note.status_code == 400
    rejected = client.post(
        f"/user-payout-requests/{first.json()['id']}/reject",
        json={"admin_note": "Account name does not match"},
        headers=_auth_headers(admin_token),
    )
    assert rejected.status_code == 200, rejected.text
    assert rejected.json()["status"] == "rejected"
    assert client.get("/wallet", headers=_auth_headers(customer_token)).json()["wallet"]["balance"] == 10000

    second = client.post("/wallet/payout-requests", json={"amount": 3000}, headers=_auth_headers(customer_token))
    request_id = second.json()["id"]
    customer_cannot_approve = client.post(
        f"/user-payout-requests/{request_id}/approve", headers=_auth_headers(customer_token)
    )
    assert customer_cannot_approve.status_code == 403
    approved = client.post(f"/user-payout-requests/{request_id}/approve", headers=_auth_headers(admin_token))
    assert approved.json()["status"] == "approved"

    unverified = client.post(f"/user-payout-requests/{request_id}/pay", headers=_auth_headers(admin_token))
    assert unverified.status_code == 409
    assert unverified.json()["error"]["message"] == "Payout account is not verified"

    verified = client.post(f"/user-payout-accounts/{customer_id}/verify", headers=_auth_headers(admin_token))
    assert verified.json()["status"] == "verified"
    paid = client.post(f"/user-payout-requests/{request_id}/pay", headers=_auth_headers(admin_token))
    assert paid.status_code == 200, paid.text
    assert paid.json()["status"] == "paid"
    assert paid.json()["transfer_code"] == f"MOCK_TRF_{request_id}"
    assert client.get("/wallet", headers=_auth_headers(customer_token)).json()["wallet"]["balance"] == 7000

    mine = client.get("/wallet/payout-requests", headers=_auth_headers(customer_token))
    assert mine.json()["total"] == 2
    paid_only = client.get("/wallet/payout-requests?status=paid", headers=_auth_headers(customer_token))
    assert [row["id"] for row in paid_only.json()["items"]] == [request_id]
    admin_page = client.get(
        f"/user-payout-requests?user_id={customer_id}&limit=1&offset=1", headers=_auth_headers(admin_token)
    )
    assert admin_page.json()["total"] == 2
    assert len(admin_page.json()["items"]) == 1

    notifications = client.get("/notifications", headers=_auth_headers(customer_token))
    assert {row["title"] for row in notifications.json()["items"]} == {"Withdrawal rejected", "Withdrawal sent"}

    db = session_local()
    try:
        actions = db.execute(select(AuditLog.action).where(AuditLog.target_id == request_id)).scalars().all()
    finally:
        db.close()
    assert set(actions) == {"user_payout_request.create", "user_payout_request.approve", "user_payout_request.pay"}


def test_debit_checks_the_stored_balance_not_a_stale_copy(test_context):
    _, session_local = test_context
    setup = session_local()
    try:
        wallet = get_or_create_wallet(setup, owner_type="user", owner_id=str(uuid.uuid4()))
        credit_wallet(setup, wallet, Decimal("1000"), reason="Top up")
        setup.commit()
        wallet_id = wallet.id
    finally:
        setup.close()

    stale_session = session_local()
    other_session = session_local()
    try:
        stale = stale_session.get(Wallet, wallet_id)
        assert stale.balance == Decimal("1000.00")

        fresh = other_session.get(Wallet, wallet_id)
        debit_wallet(other_session, fresh, Decimal("800"), reason="Quote payment")
        other_session.commit()

        with pytest.raises(InsufficientWalletBalance):
            debit_wallet(stale_session, stale, Decimal("500"), reason="Quote payment")
        stale_session.rollback()

        movement = debit_wallet(stale_session, stale, Decimal("150"), reason="Quote payment")
        assert movement.wallet.balance == Decimal("50.00")
        stale_session.commit()
    finally:
        stale_session.close()
        other_session.close()

    check = session_local()
    try:
        assert check.get(Wallet, wallet_id).balance == Decimal("50.00")
    finally:
        check.close()
