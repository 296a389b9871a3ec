from sqlalchemy import select

from linescout.models.audit_log import AuditLog
from linescout.models.handoff import HandoffClaimAudit
from linescout.models.refresh_token import RefreshToken
from linescout.models.user import User
from linescout.services.quote_payment_service import ensure_customer_by_email


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


def _open_handoff(client, *, email: str = "lead@example.com", route_type: str = "machine_sourcing"):
    res = client.post(
        "/handoffs",
        json={
            "route_type": route_type,
            "customer_name": "Lead Buyer",
            "email": email,
            "context": "Need a 2-ton/day palm oil press.",
        },
    )
    assert res.status_code == 200, res.text
    return res.json()


def test_auth_register_login_and_profile(test_context):
    client, session_local = test_context

    register_res = _register(client, email="Ada@Example.com")
    assert register_res.status_code == 200, register_res.text
    assert register_res.json()["token_type"] == "bearer"

    db = session_local()
    try:
        user = db.execute(select(User).where(User.email == "ada@example.com")).scalar_one()
    finally:
        db.close()
    assert len(user.id) == 22
    assert user.role == "customer"

    duplicate_res = _register(client, email="ada@example.com")
    assert duplicate_res.status_code == 400

    login_res = client.post("/auth/login", json={"identifier": user.username, "password": "password123"})
    assert login_res.status_code == 200, login_res.text
    token = login_res.json()["access_token"]

    me_res = client.get("/auth/me", headers=_auth_headers(token))
    assert me_res.status_code == 200, me_res.text
    assert me_res.json()["email"] == "ada@example.com"
    assert me_res.json()["role"] == "customer"

    refresh_res = client.post("/auth/refresh", json={"refresh_token": login_res.json()["refresh_token"]})
    assert refresh_res.status_code == 200, refresh_res.text
    reuse_res = client.post("/auth/refresh", json={"refresh_token": login_res.json()["refresh_token"]})
    assert reuse_res.status_code == 401


def test_auth_login_rate_limited_after_repeated_failures(test_context):
    client, _ = test_context
    _register(client, email="locked@example.com")

    for _ in range(5):
        res = client.post("/auth/login", json={"identifier": "locked@example.com", "password": "wrong-pass"})
        assert res.status_code == 401

    blocked = client.post("/auth/login", json={"identifier": "locked@example.com", "password": "password123"})
    assert blocked.status_code == 429
    assert blocked.headers.get("Retry-After")
    assert blocked.json()["error"]["code"] == "rate_limited"


def test_admin_promotes_user_and_change_is_audited(test_context):
    client, session_local = test_context
    admin_token, admin_id = _signup(client, session_local, email="admin@example.com", role="admin")
    customer_token, customer_id = _signup(client, session_local, email="tunde@example.com")

    forbidden = client.patch(
        f"/users/{customer_id}/role", json={"role": "agent"}, headers=_auth_headers(customer_token)
    )
    assert forbidden.status_code == 403

    promote = client.patch(f"/users/{customer_id}/role", json={"role": "agent"}, headers=_auth_headers(admin_token))
    assert promote.status_code == 200, promote.text
    assert promote.json()["role"] == "agent"

    self_demote = client.patch(
        f"/users/{admin_id}/role", json={"role": "customer"}, headers=_auth_headers(admin_token)
    )
    assert self_demote.status_code == 400

    audit_res = client.get("/audit-logs?action=user.role.update", headers=_auth_headers(admin_token))
    assert audit_res.status_code == 200, audit_res.text
    items = audit_res.json()["items"]
    assert len(items) == 1
    assert items[0]["target_id"] == customer_id
    assert items[0]["metadata_json"]["to"] == "agent"


def test_anonymous_handoff_needs_contact_and_gets_route_token(test_context):
    client, _ = test_context

    missing_contact = client.post("/handoffs", json={"route_type": "machine_sourcing"})
    assert missing_contact.status_code == 400
    assert missing_contact.json()["error"]["message"] == "Email or WhatsApp number is required"

    bad_route = client.post("/handoffs", json={"route_type": "drop_shipping", "email": "x@example.com"})
    assert bad_route.status_code == 400

    handoff = _open_handoff(client, route_type="white_label")
    assert handoff["status"] == "pending"
    assert handoff["token"].startswith("WL-")
    assert handoff["customer_user_id"] is None

    whatsapp_only = client.post(
        "/handoffs", json={"route_type": "simple_sourcing", "whatsapp_number": "0801-234 5678"}
    )
    assert whatsapp_only.status_code == 200, whatsapp_only.text
    assert whatsapp_only.json()["token"].startswith("SS-")
    assert whatsapp_only.json()["whatsapp_number"] == "+2348012345678"

    bad_number = client.post("/handoffs", json={"route_type": "simple_sourcing", "whatsapp_number": "12345"})
    assert bad_number.status_code == 422
    assert bad_number.json()["error"]["code"] == "validation_error"


def test_signed_in_customer_handoff_is_linked_and_listed(test_context):
    client, session_local = test_context
    token, user_id = _signup(client, session_local, email="buyer@example.com", full_name="Bola Buyer")

    res = client.post("/handoffs", json={"route_type": "machine_sourcing"}, headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["customer_user_id"] == user_id
    assert body["email"] == "buyer@example.com"
    assert body["customer_name"] == "Bola Buyer"

    mine = client.get("/handoffs/me", headers=_auth_headers(token))
    assert mine.status_code == 200
    assert [row["id"] for row in mine.json()] == [body["id"]]

    staff_only = client.get("/handoffs", headers=_auth_headers(token))
    assert staff_only.status_code == 403


def test_handoff_claim_is_exclusive(test_context):
    client, session_local = test_context
    first_token, first_id = _signup(client, session_local, email="agent1@example.com", role="agent", full_name="Agent One")
    second_token, _ = _signup(client, session_local, email="agent2@example.com", role="agent")
    handoff = _open_handoff(client)

    claim = client.post(f"/handoffs/{handoff['id']}/claim", headers=_auth_headers(first_token))
    assert claim.status_code == 200, claim.text
    body = claim.json()
    assert body["status"] == "claimed"
    assert body["assigned_agent_id"] == first_id
    assert body["claimed_by"] == "Agent One"
    assert body["claimed_at"]

    second_claim = client.post(f"/handoffs/{handoff['id']}/claim", headers=_auth_headers(second_token))
    assert second_claim.status_code == 409
    assert second_claim.json()["error"]["message"] == "Already claimed or not pending."

    hidden = client.get(f"/handoffs/{handoff['id']}", headers=_auth_headers(second_token))
    assert hidden.status_code == 404

    missing = client.post("/handoffs/does-not-exist/claim", headers=_auth_headers(first_token))
    assert missing.status_code == 404

    db = session_local()
    try:
        audits = db.execute(
            select(HandoffClaimAudit).where(HandoffClaimAudit.handoff_id == handoff["id"])
        ).scalars().all()
        claim_logs = db.execute(select(AuditLog).where(AuditLog.action == "handoff.claim")).scalars().all()
    finally:
        db.close()
    assert len(audits) == 1
    assert audits[0].claimed_by_role == "agent"
    assert len(claim_logs) == 1


def test_agent_queue_shows_pending_and_own_handoffs(test_context):
    client, session_local = test_context
    first_token, _ = _signup(client, session_local, email="q-agent1@example.com", role="agent")
    second_token, _ = _signup(client, session_local, email="q-agent2@example.com", role="agent")
    admin_token, _ = _signup(client, session_local, email="q-admin@example.com", role="admin")

    mine = _open_handoff(client, email="one@example.com")
    theirs = _open_handoff(client, email="two@example.com")
    waiting = _open_handoff(client, email="three@example.com")
    client.post(f"/handoffs/{mine['id']}/claim", headers=_auth_headers(first_token))
    client.post(f"/handoffs/{theirs['id']}/claim", headers=_auth_headers(second_token))

    queue = client.get("/handoffs", headers=_auth_headers(first_token))
    assert queue.status_code == 200, queue.text
    assert {row["id"] for row in queue.json()["items"]} == {mine["id"], waiting["id"]}
    assert queue.json()["pagination"]["total"] == 2

    own = client.get("/handoffs?mine=true", headers=_auth_headers(first_token))
    assert [row["id"] for row in own.json()["items"]] == [mine["id"]]

    everything = client.get("/handoffs", headers=_auth_headers(admin_token))
    assert everything.json()["pagination"]["total"] == 3

    pending_only = client.get("/handoffs?status=pending", headers=_auth_headers(admin_token))
    assert [row["id"] for row in pending_only.json()["items"]] == [waiting["id"]]


def test_handoff_status_lifecycle_and_history(test_context):
    client, session_local = test_context
    agent_token, _ = _signup(client, session_local, email="flow-agent@example.com", role="agent")
    other_token, _ = _signup(client, session_local, email="flow-other@example.com", role="agent")
    handoff = _open_handoff(client)
    handoff_id = handoff["id"]

    unclaimed = client.post(
        f"/handoffs/{handoff_id}/status",
        json={"status": "manufacturer_found"},
        headers=_auth_headers(agent_token),
    )
    assert unclaimed.status_code == 403
    wrong_verb = client.put(
        f"/handoffs/{handoff_id}/status",
        json={"status": "manufacturer_found"},
        headers=_auth_headers(agent_token),
    )
    assert wrong_verb.status_code == 405

    client.post(f"/handoffs/{handoff_id}/claim", headers=_auth_headers(agent_token))

    not_owner = client.post(
        f"/handoffs/{handoff_id}/status",
        json={"status": "manufacturer_found"},
        headers=_auth_headers(other_token),
    )
    assert not_owner.status_code == 403

    skip_ahead = client.post(
        f"/handoffs/{handoff_id}/status", json={"status": "shipped"}, headers=_auth_headers(agent_token)
    )
    assert skip_ahead.status_code == 400
    assert "Cannot move handoff from claimed to shipped" in skip_ahead.json()["error"]["message"]

    for target in ("manufacturer_found", "paid"):
        res = client.post(
            f"/handoffs/{handoff_id}/status", json={"status": target}, headers=_auth_headers(agent_token)
        )
        assert res.status_code == 200, res.text
        assert res.json()["status"] == target

    no_tracking = client.post(
        f"/handoffs/{handoff_id}/status",
        json={"status": "shipped", "shipper": "Sure Imports Cargo"},
        headers=_auth_headers(agent_token),
    )
    assert no_tracking.status_code == 400
    assert no_tracking.json()["error"]["message"] == "Tracking number is required when marking as shipped"

    shipped = client.post(
        f"/handoffs/{handoff_id}/status",
        json={"status": "shipped", "shipper": "Sure Imports Cargo", "tracking_number": "SIC-77812"},
        headers=_auth_headers(agent_token),
    )
    assert shipped.status_code == 200, shipped.text
    assert shipped.json()["tracking_number"] == "SIC-77812"
    assert shipped.json()["shipped_at"]

    delivered = client.post(
        f"/handoffs/{handoff_id}/status", json={"status": "delivered"}, headers=_auth_headers(agent_token)
    )
    assert delivered.status_code == 200
    assert delivered.json()["delivered_at"]

    terminal = client.post(
        f"/handoffs/{handoff_id}/status",
        json={"status": "cancelled", "cancel_reason": "Too late"},
        headers=_auth_headers(agent_token),
    )
    assert terminal.status_code == 400

    history = client.get(f"/handoffs/{handoff_id}/history", headers=_auth_headers(agent_token))
    assert history.status_code == 200
    assert [(row["previous_status"], row["new_status"]) for row in history.json()["items"]] == [
        ("pending", "claimed"),
        ("claimed", "manufacturer_found"),
        ("manufacturer_found", "paid"),
        ("paid", "shipped"),
        ("shipped", "delivered"),
    ]


def test_handoff_cancel_requires_reason_and_blocks_claims(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="cancel-admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="cancel-agent@example.com", role="agent")
    handoff = _open_handoff(client)

    no_reason = client.post(
        f"/handoffs/{handoff['id']}/status", json={"status": "cancelled"}, headers=_auth_headers(admin_token)
    )
    assert no_reason.status_code == 400

    claim_verb = client.post(
        f"/handoffs/{handoff['id']}/status", json={"status": "claimed"}, headers=_auth_headers(admin_token)
    )
    assert claim_verb.status_code == 400
    assert claim_verb.json()["error"]["message"] == "Use the claim action to claim a handoff"

    cancelled = client.post(
        f"/handoffs/{handoff['id']}/status",
        json={"status": "cancelled", "cancel_reason": "Customer went quiet"},
        headers=_auth_headers(admin_token),
    )
    assert cancelled.status_code == 200, cancelled.text
    assert cancelled.json()["cancel_reason"] == "Customer went quiet"

    late_claim = client.post(f"/handoffs/{handoff['id']}/claim", headers=_auth_headers(agent_token))
    assert late_claim.status_code == 409


def test_handoff_financials_and_offline_payments(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="fin-admin@example.com", role="admin")
    agent_token, _ = _signup(client, session_local, email="fin-agent@example.com", role="agent")
    handoff = _open_handoff(client)
    client.post(f"/handoffs/{handoff['id']}/claim", headers=_auth_headers(agent_token))

    agent_override = client.put(
        f"/handoffs/{handoff['id']}/financials", json={"total_due": 500000}, headers=_auth_headers(agent_token)
    )
    assert agent_override.status_code == 403

    set_total = client.put(
        f"/handoffs/{handoff['id']}/financials", json={"total_due": 500000}, headers=_auth_headers(admin_token)
    )
    assert set_total.status_code == 200, set_total.text
    assert set_total.json()["total_due"] == 500000
    assert set_total.json()["balance"] == 500000

    bad_purpose = client.post(
        f"/handoffs/{handoff['id']}/payments",
        json={"purpose": "tip", "amount": 1000},
        headers=_auth_headers(agent_token),
    )
    assert bad_purpose.status_code == 400

    paid = client.post(
        f"/handoffs/{handoff['id']}/payments",
        json={"purpose": "downpayment", "amount": 150000, "note": "Bank transfer"},
        headers=_auth_headers(agent_token),
    )
    assert paid.status_code == 200, paid.text
    body = paid.json()
    assert body["total_paid"] == 150000
    assert body["balance"] == 350000
    assert body["payments"][0]["purpose"] == "downpayment"
    assert body["payments"][0]["currency"] == "NGN"


def test_role_change_revokes_refresh_tokens(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    register_res = _register(client, email="future-agent@example.com")
    refresh_token = register_res.json()["refresh_token"]
    db = session_local()
    try:
        user_id = db.execute(select(User.id).where(User.email == "future-agent@example.com")).scalar_one()
    finally:
        db.close()

    promote = client.patch(f"/users/{user_id}/role", json={"role": "agent"}, headers=_auth_headers(admin_token))
    assert promote.status_code == 200, promote.text

    stale = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert stale.status_code == 401

    db = session_local()
    try:
        token_row = db.execute(select(RefreshToken).where(RefreshToken.user_id == user_id)).scalar_one()
        audit_row = db.execute(select(AuditLog).where(AuditLog.action == "user.role.update")).scalar_one()
    finally:
        db.close()
    assert token_row.revoked_reason == "role_change"
    assert audit_row.request_id == promote.headers["x-request-id"]

    by_request = client.get(
        f"/audit-logs?request_id={promote.headers['x-request-id']}", headers=_auth_headers(admin_token)
    )
    assert [item["action"] for item in by_request.json()["items"]] == ["user.role.update"]


def test_register_claims_guest_checkout_account(test_context):
    client, session_local = test_context
    admin_token, _ = _signup(client, session_local, email="admin@example.com", role="admin")
    db = session_local()
    try:
        guest = ensure_customer_by_email(db, "Lead@Example.com", "Lead Buyer")
        db.commit()
        guest_id = guest.id
    finally:
        db.close()

    guest_login = client.post("/auth/login", json={"identifier": "lead@example.com", "password": "password123"})
    assert guest_login.status_code == 401

    claimed = _register(client, email="lead@example.com", full_name="Lead Buyer Jr")
    assert claimed.status_code == 200, claimed.text

    me = client.get("/auth/me", headers=_auth_headers(claimed.json()["access_token"]))
    assert me.json()["id"] == guest_id
    assert me.json()["full_name"] == "Lead Buyer Jr"

    again = _register(client, email="lead@example.com")
    assert again.status_code == 400
    assert again.json()["error"]["message"] == "Email already registered"

    user_actions = client.get("/audit-logs?action=user.", headers=_auth_headers(admin_token))
    assert [item["action"] for item in user_actions.json()["items"]] == ["user.claim"]
