def _create_inbound(stock_env, lines):
    response = stock_env.client.post(
        "/inbounds",
        json={
            "vendor_id": "ven_acme",
            "warehouse_id": "wh_main",
            "items": [{"item_id": item_id, "expected_qty": qty} for item_id, qty in lines],
        },
        headers=stock_env.headers["buy_bella"],
    )
    assert response.status_code == 201, response.text
    inbound = response.json()
    assert inbound["status"] == "PENDING_VERIFICATION"
    return inbound, {line["item_id"]: line["id"] for line in inbound["items"]}


def _verify(stock_env, inbound_id, lines, username="wh_ana"):
    return stock_env.client.post(
        f"/inbounds/{inbound_id}/verify",
        json={"receive_date": "2026-10-19", "lines": lines},
        headers=stock_env.headers[username],
    )


def test_clean_verification_completes_receipt(stock_env):
    inbound, line_ids = _create_inbound(stock_env, [("itm_tape", 30), ("itm_box", 12)])

    response = _verify(
        stock_env,
        inbound["id"],
        [
            {"line_id": line_ids["itm_tape"], "received_qty": 30, "accepted_qty": 30},
            {"line_id": line_ids["itm_box"], "received_qty": 12, "accepted_qty": 12},
        ],
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["inbound"]["status"] == "COMPLETED"
    assert body["inbound"]["completed_at"] is not None
    assert sorted(entry["quantity_change"] for entry in body["ledger_entries"]) == [12, 30]
    assert all(entry["movement_kind"] == "INBOUND" for entry in body["ledger_entries"])
    assert all(entry["reference_code"] == inbound["grn_number"] for entry in body["ledger_entries"])
    assert stock_env.stock_of("itm_tape") == 30
    assert stock_env.stock_of("itm_box") == 12

    again = _verify(
        stock_env,
        inbound["id"],
        [
            {"line_id": line_ids["itm_tape"], "received_qty": 30, "accepted_qty": 30},
            {"line_id": line_ids["itm_box"], "received_qty": 12, "accepted_qty": 12},
        ],
    )
    assert again.status_code == 409
    assert stock_env.stock_of("itm_tape") == 30


def test_shortage_leaves_receipt_partial_and_posts_only_received(stock_env):
    inbound, line_ids = _create_inbound(stock_env, [("itm_tape", 50)])
    line_id = line_ids["itm_tape"]

    response = _verify(
        stock_env,
        inbound["id"],
        [{"line_id": line_id, "received_qty": 45, "accepted_qty": 45, "rejected_qty": 0}],
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["inbound"]["status"] == "PARTIAL"
    line = body["inbound"]["items"][0]
    assert line["discrepancy_type"] == "SHORTAGE"
    assert line["issue_status"] == "OPEN"
    assert [entry["quantity_change"] for entry in body["ledger_entries"]] == [45]
    assert stock_env.stock_of("itm_tape") == 45

    issues = stock_env.client.get(
        "/inbounds/issues", params={"inbound_id": inbound["id"]}, headers=stock_env.headers["wh_ana"]
    )
    assert issues.status_code == 200
    assert issues.json()["items"] == [
        {
            "inbound_id": inbound["id"],
            "grn_number": inbound["grn_number"],
            "line_id": line_id,
            "item_id": "itm_tape",
            "discrepancy_type": "SHORTAGE",
            "quantity": 5,
            "issue_status": "OPEN",
            "resolution": None,
        }
    ]

    waiting = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/resolve",
        json={"resolution": "wait_remaining"},
        headers=stock_env.headers["wh_budi"],
    )
    assert waiting.status_code == 200, waiting.text
    assert waiting.json()["inbound"]["status"] == "PARTIAL"
    assert waiting.json()["ledger_entries"] == []

    too_many = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/receive-remainder",
        json={"quantity": 6},
        headers=stock_env.headers["wh_budi"],
    )
    assert too_many.status_code == 400

    remainder = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/receive-remainder",
        json={"quantity": 5},
        headers=stock_env.headers["wh_budi"],
    )
    assert remainder.status_code == 200, remainder.text
    assert remainder.json()["inbound"]["status"] == "COMPLETED"
    assert remainder.json()["inbound"]["items"][0]["issue_status"] == "RESOLVED"
    assert [entry["quantity_change"] for entry in remainder.json()["ledger_entries"]] == [5]
    assert stock_env.stock_of("itm_tape") == 50


def test_overage_returned_to_vendor_removes_the_excess(stock_env):
    inbound, line_ids = _create_inbound(stock_env, [("itm_box", 10)])
    line_id = line_ids["itm_box"]

    verified = _verify(stock_env, inbound["id"], [{"line_id": line_id, "received_qty": 12, "accepted_qty": 12}])
    assert verified.json()["inbound"]["status"] == "PARTIAL"
    assert verified.json()["inbound"]["items"][0]["discrepancy_type"] == "OVERAGE"
    assert stock_env.stock_of("itm_box") == 12

    wrong = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/resolve",
        json={"resolution": "CLOSE_SHORT"},
        headers=stock_env.headers["wh_ana"],
    )
    assert wrong.status_code == 422

    resolved = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/resolve",
        json={"resolution": "RETURN_TO_VENDOR", "notes": "Sent back with driver"},
        headers=stock_env.headers["wh_ana"],
    )
    assert resolved.status_code == 200, resolved.text
    body = resolved.json()
    assert body["inbound"]["status"] == "COMPLETED"
    assert [(e["movement_kind"], e["quantity_change"]) for e in body["ledger_entries"]] == [("RETURN_OUT", -2)]
    assert body["inbound"]["items"][0]["stocked_qty"] == 10
    assert stock_env.stock_of("itm_box") == 10


def test_damaged_goods_accepted_as_is_enter_stock(stock_env):
    inbound, line_ids = _create_inbound(stock_env, [("itm_wrap", 20)])
    line_id = line_ids["itm_wrap"]

    verified = _verify(
        stock_env,
        inbound["id"],
        [
            {
                "line_id": line_id,
                "received_qty": 20,
                "accepted_qty": 17,
                "rejected_qty": 3,
                "rejection_reason": "DAMAGED",
                "notes": "Crushed corner",
            }
        ],
    )
    assert verified.status_code == 200, verified.text
    line = verified.json()["inbound"]["items"][0]
    assert line["discrepancy_type"] == "DAMAGED"
    assert stock_env.stock_of("itm_wrap") == 17

    resolved = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/resolve",
        json={"resolution": "ACCEPT_AS_IS"},
        headers=stock_env.headers["wh_ana"],
    )
    assert resolved.status_code == 200
    assert resolved.json()["inbound"]["status"] == "COMPLETED"
    assert resolved.json()["inbound"]["items"][0]["accepted_qty"] == 20
    assert stock_env.stock_of("itm_wrap") == 20

    closed = stock_env.client.post(
        f"/inbounds/{inbound['id']}/lines/{line_id}/resolve",
        json={"resolution": "ACCEPT_AS_IS"},
        headers=stock_env.headers["wh_ana"],
    )
    assert closed.status_code == 409


def test_verification_rules_reject_inconsistent_lines(stock_env):
    inbound, line_ids = _create_inbound(stock_env, [("itm_tape", 10), ("itm_box", 5)])

    unbalanced = _verify(
        stock_env,
        inbound["id"],
        [
            {"line_id": line_ids["itm_tape"], "received_qty": 10, "accepted_qty": 8, "rejected_qty": 1,
             "rejection_reason": "DAMAGED"},
            {"line_id": line_ids["itm_box"], "received_qty": 5, "accepted_qty": 5},
        ],
    )
    assert unbalanced.status_code == 400
    assert unbalanced.json()["error"]["code"] == "quantity_out_of_range"

    no_reason = _verify(
        stock_env,
        inbound["id"],
        [
            {"line_id": line_ids["itm_tape"], "received_qty": 10, "accepted_qty": 9, "rejected_qty": 1},
            {"line_id": line_ids["itm_box"], "received_qty": 5, "accepted_qty": 5},
        ],
    )
    assert no_reason.status_code == 422

    missing_line = _verify(
        stock_env,
        inbound["id"],
        [{"line_id": line_ids["itm_tape"], "received_qty": 10, "accepted_qty": 10}],
    )
    assert missing_line.status_code == 422
    assert missing_line.json()["error"]["details"] == [{"line_id": line_ids["itm_box"]}]

    not_allowed = _verify(
        stock_env,
        inbound["id"],
        [
            {"line_id": line_ids["itm_tape"], "received_qty": 10, "accepted_qty": 10},
            {"line_id": line_ids["itm_box"], "received_qty": 5, "accepted_qty": 5},
        ],
        username="buy_bella",
    )
    assert not_allowed.status_code == 403

    current = stock_env.client.get(f"/inbounds/{inbound['id']}", headers=stock_env.headers["wh_ana"])
    assert current.json()["status"] == "PENDING_VERIFICATION"
    assert stock_env.stock_of("itm_tape") == 0
    assert stock_env.stock_of("itm_box") == 0
