from datetime import date

import pytest

from stockflow.core.errors import ValidationError
from stockflow.services.audit_service import list_audit_events


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client, username: str, password: str = "password123"):
    return client.post("/auth/login", json={"username": username, "password": password})


def test_login_and_me_returns_role_permissions(stock_env):
    client = stock_env.client

    response = _login(client, "WH_Ana")
    assert response.status_code == 200, response.text
    token = response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"

    me = client.get("/auth/me", headers=_auth_headers(token))
    assert me.status_code == 200
    body = me.json()
    assert body["username"] == "wh_ana"
    assert body["role"] == "warehouse"
    assert "inbound.verify" in body["permissions"]
    assert "outbound.approve" not in body["permissions"]


def test_oauth_form_login(stock_env):
    response = stock_env.client.post(
        "/auth/token",
        data={"username": "mgr_maya", "password": "password123"},
    )
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_invalid_credentials_and_missing_token(stock_env):
    client = stock_env.client

    wrong = _login(client, "wh_ana", "not-the-password")
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "unauthorized"

    anonymous = client.get("/stock/cards")
    assert anonymous.status_code == 401

    garbage = client.get("/stock/cards", headers=_auth_headers("not-a-jwt"))
    assert garbage.status_code == 401


def test_repeated_failures_lock_the_login(stock_env):
    client = stock_env.client
    for _ in range(5):
        assert _login(client, "fin_felix", "wrong").status_code == 401

    locked = _login(client, "fin_felix")
    assert locked.status_code == 429
    assert locked.json()["error"]["code"] == "rate_limited"
    assert int(locked.headers["retry-after"]) > 0

    # other usernames are unaffected
    assert _login(client, "buy_bella").status_code == 200


def test_audit_log_records_transitions_and_logins(stock_env):
    client = stock_env.client
    stock_env.set_opening("itm_tape", 10)
    _login(client, "staff_sam")

    created = client.post(
        "/outbounds",
        json={"items": [{"item_id": "itm_tape", "requested_qty": 2}]},
        headers=stock_env.headers["staff_sam"],
    ).json()
    client.post(f"/outbounds/{created['id']}/approve", headers=stock_env.headers["mgr_maya"])

    response = client.get(
        "/audit-logs",
        params={"target_type": "outbound", "target_id": created["id"]},
        headers=stock_env.headers["aud_ira"],
    )
    assert response.status_code == 200
    rows = response.json()["items"]
    assert sorted(row["action"] for row in rows) == ["outbound.approve", "outbound.create"]
    approve_row = next(row for row in rows if row["action"] == "outbound.approve")
    assert approve_row["actor_user_id"] == stock_env.users["mgr_maya"]
    assert approve_row["metadata_json"]["from_status"] == "DRAFT"
    assert approve_row["metadata_json"]["to_status"] == "APPROVED"

    logins = client.get(
        "/audit-logs",
        params={"action": "auth.login", "actor_user_id": stock_env.users["staff_sam"]},
        headers=stock_env.headers["mgr_maya"],
    )
    assert logins.json()["pagination"]["total"] == 1

    opening = client.get(
        "/audit-logs", params={"action": "stock.opening_balance"}, headers=stock_env.headers["admin"]
    )
    assert opening.json()["items"][0]["target_id"] == "itm_tape"


def test_audit_log_access_and_date_validation(stock_env):
    client = stock_env.client

    forbidden = client.get("/audit-logs", headers=stock_env.headers["staff_sam"])
    assert forbidden.status_code == 403

    bad_range = client.get(
        "/audit-logs",
        params={"start_date": "2026-10-19", "end_date": "2026-10-01"},
        headers=stock_env.headers["aud_ira"],
    )
    assert bad_range.status_code == 422
    assert bad_range.json()["error"]["code"] == "validation_error"


def test_audit_listing_service_filters_and_pages(stock_env):
    stock_env.set_opening("itm_tape", 5)
    stock_env.set_opening("itm_box", 7)

    with stock_env.session_local() as db:
        rows, total = list_audit_events(db, action="stock.opening_balance", limit=1, offset=0)
        assert total == 2
        assert len(rows) == 1
        assert len(rows[0].id) == 22

        rows, total = list_audit_events(db, target_type="item", target_id="itm_box", limit=10, offset=0)
        assert [row.metadata_json["quantity"] for row in rows] == [7]

        with pytest.raises(ValidationError):
            list_audit_events(db, start_date=date(2026, 10, 2), end_date=date(2026, 10, 1), limit=10, offset=0)
