def _create_return(stock_env, quantity, *, item_id="itm_box", reason="damaged", submit=True, username="staff_sam"):
    response = stock_env.client.post(
        "/returns",
        json={
            "vendor_id": "ven_acme",
            "warehouse_id": "wh_main",
            "reason": reason,
            "notes": "Crushed on arrival",
            "items": [{"item_id": item_id, "quantity": quantity, "unit_price": "2500"}],
            "submit": submit,
        },
        headers=stock_env.headers[username],
    )
    return response


def _advance_to_shipped(stock_env, return_id):
    approved = stock_env.client.post(f"/returns/{return_id}/approve", headers=stock_env.headers["mgr_maya"])
    assert approved.status_code == 200, approved.text
    shipped = stock_env.client.post(
        f"/returns/{return_id}/ship",
        json={"tracking_number": "RET-TRK-1"},
        headers=stock_env.headers["buy_bella"],
    )
    assert shipped.status_code == 200, shipped.text
    return shipped.json()


def test_completed_return_leaves_stock_and_kept_items_come_back(stock_env):
    stock_env.set_opening("itm_box", 20)

    created = _create_return(stock_env, 6)
    assert created.status_code == 201, created.text
    vendor_return = created.json()
    assert vendor_return["status"] == "PENDING_APPROVAL"
    assert vendor_return["reason"] == "DAMAGED"
    assert vendor_return["return_code"].startswith("RET/")
    assert vendor_return["total_amount"] == 15000.0

    shipped = _advance_to_shipped(stock_env, vendor_return["id"])
    assert shipped["vendor_return"]["status"] == "SENT_TO_VENDOR"
    assert shipped["vendor_return"]["tracking_number"] == "RET-TRK-1"
    assert stock_env.stock_of("itm_box") == 20

    completed = stock_env.client.post(
        f"/returns/{vendor_return['id']}/complete", headers=stock_env.headers["wh_ana"]
    )
    assert completed.status_code == 200, completed.text
    body = completed.json()
    assert body["vendor_return"]["status"] == "COMPLETED"
    assert [(e["movement_kind"], e["quantity_change"]) for e in body["ledger_entries"]] == [("RETURN_OUT", -6)]
    assert stock_env.stock_of("itm_box") == 14

    kept = stock_env.client.post(
        f"/returns/{vendor_return['id']}/keep-items",
        json={"notes": "Vendor refused pickup"},
        headers=stock_env.headers["wh_budi"],
    )
    assert kept.status_code == 200, kept.text
    assert kept.json()["vendor_return"]["status"] == "ITEMS_KEPT"
    assert kept.json()["vendor_return"]["kept_by_user_id"] == stock_env.users["wh_budi"]
    assert [(e["movement_kind"], e["quantity_change"]) for e in kept.json()["ledger_entries"]] == [("RETURN_IN", 6)]
    assert stock_env.stock_of("itm_box") == 20

    cards = stock_env.client.get(
        "/stock/cards",
        params={"reference_type": "return", "reference_id": vendor_return["id"]},
        headers=stock_env.headers["aud_ira"],
    )
    assert [entry["movement_kind"] for entry in cards.json()["items"]] == ["RETURN_OUT", "RETURN_IN"]


def test_complete_fails_whole_return_on_insufficient_stock(stock_env):
    stock_env.set_opening("itm_box", 2)
    vendor_return = _create_return(stock_env, 5).json()
    _advance_to_shipped(stock_env, vendor_return["id"])

    response = stock_env.client.post(f"/returns/{vendor_return['id']}/complete", headers=stock_env.headers["wh_ana"])
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "insufficient_stock"
    assert stock_env.stock_of("itm_box") == 2

    current = stock_env.client.get(f"/returns/{vendor_return['id']}", headers=stock_env.headers["wh_ana"])
    assert current.json()["status"] == "SENT_TO_VENDOR"


def test_return_must_ship_before_completion(stock_env):
    stock_env.set_opening("itm_box", 10)
    vendor_return = _create_return(stock_env, 1, submit=False).json()
    assert vendor_return["status"] == "DRAFT"

    early = stock_env.client.post(f"/returns/{vendor_return['id']}/complete", headers=stock_env.headers["wh_ana"])
    assert early.status_code == 409

    submitted = stock_env.client.post(f"/returns/{vendor_return['id']}/submit", headers=stock_env.headers["staff_sam"])
    assert submitted.json()["vendor_return"]["status"] == "PENDING_APPROVAL"

    keep_before_complete = stock_env.client.post(
        f"/returns/{vendor_return['id']}/keep-items", headers=stock_env.headers["wh_ana"]
    )
    assert keep_before_complete.status_code == 409
    assert stock_env.stock_of("itm_box") == 10


def test_rejected_return_is_terminal(stock_env):
    vendor_return = _create_return(stock_env, 3).json()

    rejected = stock_env.client.post(
        f"/returns/{vendor_return['id']}/reject",
        json={"reason": "Outside return window"},
        headers=stock_env.headers["mgr_omar"],
    )
    assert rejected.status_code == 200
    assert rejected.json()["vendor_return"]["status"] == "REJECTED"
    assert rejected.json()["vendor_return"]["rejection_reason"] == "Outside return window"

    approve = stock_env.client.post(f"/returns/{vendor_return['id']}/approve", headers=stock_env.headers["mgr_maya"])
    assert approve.status_code == 409


def test_unknown_reason_and_role_checks(stock_env):
    bad_reason = _create_return(stock_env, 1, reason="changed_mind")
    assert bad_reason.status_code == 422

    not_allowed = _create_return(stock_env, 1, username="fin_felix")
    assert not_allowed.status_code == 403

    vendor_return = _create_return(stock_env, 1).json()
    warehouse_approve = stock_env.client.post(
        f"/returns/{vendor_return['id']}/approve", headers=stock_env.headers["wh_ana"]
    )
    assert warehouse_approve.status_code == 403

    listed = stock_env.client.get(
        "/returns", params={"status": "PENDING_APPROVAL", "vendor_id": "ven_acme"}, headers=stock_env.headers["wh_ana"]
    )
    assert listed.status_code == 200
    assert [row["id"] for row in listed.json()["items"]] == [vendor_return["id"]]
