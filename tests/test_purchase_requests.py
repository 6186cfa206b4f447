import re
from datetime import datetime, timezone

CODE_PATTERN = re.compile(r"^(PR|PO|GRN)/\d{4}/\d{2}/\d{4}$")


def _create_pr(client, headers, *, submit=True, items=None):
    response = client.post(
        "/purchase-requests",
        json={
            "vendor_id": "ven_acme",
            "warehouse_id": "wh_main",
            "notes": "Monthly restock",
            "items": items
            or [
                {"item_id": "itm_tape", "quantity": 3, "unit_price": "1500.50"},
                {"item_id": "itm_box", "quantity": 2, "unit_price": "100"},
            ],
            "submit": submit,
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_purchase_request_full_chain_with_payment_issues_po_and_inbound(stock_env):
    client = stock_env.client
    headers = stock_env.headers

    pr = _create_pr(client, headers["staff_sam"])
    assert pr["status"] == "PENDING_MANAGER_APPROVAL"
    assert CODE_PATTERN.match(pr["pr_number"])
    assert pr["pr_number"].startswith(datetime.now(timezone.utc).strftime("PR/%Y/%m/"))
    assert pr["total_amount"] == 4701.5
    assert pr["submitted_at"] is not None

    approved = client.post(
        f"/purchase-requests/{pr['id']}/manager-approve",
        json={"notes": "ok"},
        headers=headers["mgr_maya"],
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "PENDING_PURCHASING_APPROVAL"
    assert approved.json()["manager_decided_by_user_id"] == stock_env.users["mgr_maya"]

    confirmed = client.post(
        f"/purchase-requests/{pr['id']}/confirm",
        json={"requires_payment": True},
        headers=headers["buy_bella"],
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "WAITING_PAYMENT"
    assert confirmed.json()["requires_payment"] is True

    too_early = client.post(f"/purchase-requests/{pr['id']}/issue-po", headers=headers["buy_bella"])
    assert too_early.status_code in (403, 409)

    paid = client.post(
        f"/purchase-requests/{pr['id']}/release-payment",
        json={"amount": "4701.50", "payment_date": "2026-10-19"},
        headers=headers["fin_felix"],
    )
    assert paid.status_code == 200, paid.text
    assert paid.json()["status"] == "PAYMENT_RELEASED"
    assert paid.json()["payment_amount"] == 4701.5

    issued = client.post(
        f"/purchase-requests/{pr['id']}/issue-po",
        json={"shipping_tracking_number": "  JNE-0001  "},
        headers=headers["buy_bella"],
    )
    assert issued.status_code == 200, issued.text
    body = issued.json()
    assert body["purchase_request"]["status"] == "PO_ISSUED"
    assert CODE_PATTERN.match(body["purchase_request"]["po_number"])
    assert body["purchase_request"]["shipping_tracking_number"] == "JNE-0001"

    inbound = body["inbound"]
    assert inbound["status"] == "PENDING_VERIFICATION"
    assert inbound["purchase_request_id"] == pr["id"]
    assert CODE_PATTERN.match(inbound["grn_number"])
    assert {line["item_id"]: line["expected_qty"] for line in inbound["items"]} == {"itm_tape": 3, "itm_box": 2}

    # Nothing has arrived yet.
    assert stock_env.stock_of("itm_tape") == 0
    assert stock_env.stock_of("itm_box") == 0


def test_confirm_without_payment_goes_straight_to_po(stock_env):
    client = stock_env.client
    headers = stock_env.headers
    pr = _create_pr(client, headers["staff_sam"])

    client.post(f"/purchase-requests/{pr['id']}/manager-approve", headers=headers["mgr_omar"])
    confirmed = client.post(
        f"/purchase-requests/{pr['id']}/confirm",
        json={"requires_payment": False},
        headers=headers["buy_bella"],
    )
    assert confirmed.json()["status"] == "CONFIRMED"

    payment = client.post(
        f"/purchase-requests/{pr['id']}/release-payment",
        json={"amount": "10"},
        headers=headers["fin_felix"],
    )
    assert payment.status_code == 409
    assert payment.json()["error"]["code"] == "invalid_state_transition"

    issued = client.post(f"/purchase-requests/{pr['id']}/issue-po", headers=headers["buy_bella"])
    assert issued.status_code == 200
    assert issued.json()["purchase_request"]["status"] == "PO_ISSUED"


def test_creator_cannot_confirm_own_request(stock_env):
    client = stock_env.client
    headers = stock_env.headers
    pr = _create_pr(client, headers["buy_bella"])
    client.post(f"/purchase-requests/{pr['id']}/manager-approve", headers=headers["mgr_maya"])

    response = client.post(
        f"/purchase-requests/{pr['id']}/confirm",
        json={"requires_payment": False},
        headers=headers["buy_bella"],
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "permission_denied"

    current = client.get(f"/purchase-requests/{pr['id']}", headers=headers["buy_bella"])
    assert current.json()["status"] == "PENDING_PURCHASING_APPROVAL"


def test_role_without_permission_is_forbidden(stock_env):
    client = stock_env.client
    pr = _create_pr(client, stock_env.headers["staff_sam"])

    response = client.post(f"/purchase-requests/{pr['id']}/manager-approve", headers=stock_env.headers["wh_ana"])
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "forbidden"


def test_rejected_request_can_be_edited_and_resubmitted_by_creator(stock_env):
    client = stock_env.client
    headers = stock_env.headers
    pr = _create_pr(client, headers["staff_sam"])

    rejected = client.post(
        f"/purchase-requests/{pr['id']}/manager-reject",
        json={"reason": "Quantity too high"},
        headers=headers["mgr_maya"],
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "REJECTED"
    assert rejected.json()["manager_notes"] == "Quantity too high"

    other_user = client.patch(
        f"/purchase-requests/{pr['id']}",
        json={"notes": "hijack"},
        headers=headers["staff_tia"],
    )
    assert other_user.status_code == 403

    edited = client.patch(
        f"/purchase-requests/{pr['id']}",
        json={"items": [{"item_id": "itm_tape", "quantity": 1, "unit_price": "1500.50"}]},
        headers=headers["staff_sam"],
    )
    assert edited.status_code == 200, edited.text
    assert edited.json()["total_amount"] == 1500.5
    assert len(edited.json()["items"]) == 1

    resubmitted = client.post(f"/purchase-requests/{pr['id']}/submit", headers=headers["staff_sam"])
    assert resubmitted.status_code == 200
    assert resubmitted.json()["status"] == "PENDING_MANAGER_APPROVAL"

    locked = client.patch(
        f"/purchase-requests/{pr['id']}",
        json={"notes": "late change"},
        headers=headers["staff_sam"],
    )
    assert locked.status_code == 409


def test_draft_request_can_be_deleted(stock_env):
    client = stock_env.client
    headers = stock_env.headers
    pr = _create_pr(client, headers["staff_sam"], submit=False)
    assert pr["status"] == "DRAFT"

    deleted = client.delete(f"/purchase-requests/{pr['id']}", headers=headers["staff_sam"])
    assert deleted.status_code == 204

    missing = client.get(f"/purchase-requests/{pr['id']}", headers=headers["staff_sam"])
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"


def test_line_quantity_must_be_positive(stock_env):
    response = stock_env.client.post(
        "/purchase-requests",
        json={
            "vendor_id": "ven_acme",
            "items": [{"item_id": "itm_tape", "quantity": 0, "unit_price": "10"}],
        },
        headers=stock_env.headers["staff_sam"],
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "quantity_out_of_range"


def test_list_filters_by_status(stock_env):
    client = stock_env.client
    headers = stock_env.headers
    _create_pr(client, headers["staff_sam"], submit=False)
    submitted = _create_pr(client, headers["staff_sam"])

    response = client.get(
        "/purchase-requests",
        params={"status": "pending_manager_approval"},
        headers=headers["mgr_maya"],
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["pagination"]["total"] == 1
    assert payload["items"][0]["id"] == submitted["id"]

    both = client.get("/purchase-requests", params={"status": "DRAFT,PENDING_MANAGER_APPROVAL"}, headers=headers["mgr_maya"])
    assert both.json()["pagination"]["total"] == 2
