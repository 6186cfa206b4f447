def _create_adjustment(stock_env, items, *, adjustment_type="MANUAL_WRITEOFF", submit=True, username="staff_sam"):
    return stock_env.client.post(
        "/stock-adjustments",
        json={
            "adjustment_type": adjustment_type,
            "warehouse_id": "wh_main",
            "notes": "Shelf check",
            "items": items,
            "submit": submit,
        },
        headers=stock_env.headers[username],
    )


def test_real_qty_adjustment_applies_variance_on_approval(stock_env):
    stock_env.set_opening("itm_tape", 70)

    created = _create_adjustment(stock_env, [{"item_id": "itm_tape", "method": "REAL_QTY", "qty_input": 65}])
    assert created.status_code == 201, created.text
    adjustment = created.json()
    assert adjustment["status"] == "PENDING"
    assert adjustment["source"] == "MANUAL"
    assert adjustment["adjustment_code"].startswith("ADJ/")
    line = adjustment["items"][0]
    assert (line["qty_system"], line["qty_input"], line["qty_variance"]) == (70, 65, -5)
    assert stock_env.stock_of("itm_tape") == 70

    approved = stock_env.client.post(
        f"/stock-adjustments/{adjustment['id']}/approve",
        json={"notes": "Confirmed by recount"},
        headers=stock_env.headers["mgr_maya"],
    )
    assert approved.status_code == 200, approved.text
    body = approved.json()
    assert body["adjustment"]["status"] == "APPROVED"
    assert body["adjustment"]["decided_by_user_id"] == stock_env.users["mgr_maya"]
    assert [(e["movement_kind"], e["quantity_change"], e["quantity_after"]) for e in body["ledger_entries"]] == [
        ("ADJUSTMENT_OUT", -5, 65)
    ]
    assert stock_env.stock_of("itm_tape") == 65


def test_delta_qty_adjustment_increases_stock(stock_env):
    created = _create_adjustment(
        stock_env,
        [{"item_id": "itm_box", "method": "DELTA_QTY", "qty_input": 4, "delta_direction": "increase"}],
        adjustment_type="OTHER",
        submit=False,
    )
    assert created.status_code == 201
    adjustment = created.json()
    assert adjustment["status"] == "DRAFT"
    assert adjustment["items"][0]["qty_system"] is None

    submitted = stock_env.client.post(
        f"/stock-adjustments/{adjustment['id']}/submit", headers=stock_env.headers["staff_sam"]
    )
    assert submitted.status_code == 200
    assert submitted.json()["adjustment"]["items"][0]["qty_variance"] == 4

    approved = stock_env.client.post(
        f"/stock-adjustments/{adjustment['id']}/approve", headers=stock_env.headers["mgr_omar"]
    )
    assert approved.status_code == 200
    assert approved.json()["ledger_entries"][0]["movement_kind"] == "ADJUSTMENT_IN"
    assert stock_env.stock_of("itm_box") == 4


def test_draft_cannot_be_approved_and_rejected_is_final(stock_env):
    stock_env.set_opening("itm_tape", 10)
    created = _create_adjustment(
        stock_env, [{"item_id": "itm_tape", "method": "REAL_QTY", "qty_input": 8}], submit=False
    ).json()

    early = stock_env.client.post(f"/stock-adjustments/{created['id']}/approve", headers=stock_env.headers["mgr_maya"])
    assert early.status_code == 409

    stock_env.client.post(f"/stock-adjustments/{created['id']}/submit", headers=stock_env.headers["staff_sam"])
    rejected = stock_env.client.post(
        f"/stock-adjustments/{created['id']}/reject",
        json={"reason": "Count again first"},
        headers=stock_env.headers["mgr_maya"],
    )
    assert rejected.status_code == 200
    assert rejected.json()["adjustment"]["status"] == "REJECTED"
    assert rejected.json()["ledger_entries"] == []

    late = stock_env.client.post(f"/stock-adjustments/{created['id']}/approve", headers=stock_env.headers["mgr_maya"])
    assert late.status_code == 409
    assert stock_env.stock_of("itm_tape") == 10


def test_approval_refuses_to_go_below_zero(stock_env):
    stock_env.set_opening("itm_wrap", 3)
    created = _create_adjustment(
        stock_env,
        [{"item_id": "itm_wrap", "method": "DELTA_QTY", "qty_input": 5, "delta_direction": "DECREASE"}],
        adjustment_type="DAMAGED",
    ).json()

    response = stock_env.client.post(
        f"/stock-adjustments/{created['id']}/approve", headers=stock_env.headers["mgr_maya"]
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "insufficient_stock"
    assert stock_env.stock_of("itm_wrap") == 3

    current = stock_env.client.get(f"/stock-adjustments/{created['id']}", headers=stock_env.headers["aud_ira"])
    assert current.json()["status"] == "PENDING"


def test_line_validation(stock_env):
    bad_type = _create_adjustment(
        stock_env, [{"item_id": "itm_tape", "qty_input": 1}], adjustment_type="THEFT"
    )
    assert bad_type.status_code == 422

    missing_direction = _create_adjustment(
        stock_env, [{"item_id": "itm_tape", "method": "DELTA_QTY", "qty_input": 2}]
    )
    assert missing_direction.status_code == 422

    negative_real = _create_adjustment(
        stock_env, [{"item_id": "itm_tape", "method": "REAL_QTY", "qty_input": -1}]
    )
    assert negative_real.status_code == 400

    unknown_item = _create_adjustment(stock_env, [{"item_id": "itm_nope", "qty_input": 1}])
    assert unknown_item.status_code == 404


def test_warehouse_cannot_approve_adjustments(stock_env):
    stock_env.set_opening("itm_tape", 10)
    created = _create_adjustment(stock_env, [{"item_id": "itm_tape", "qty_input": 9}], username="wh_ana").json()

    response = stock_env.client.post(
        f"/stock-adjustments/{created['id']}/approve", headers=stock_env.headers["wh_budi"]
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "forbidden"


def test_mixed_direction_lines_on_one_item_apply_from_the_net(stock_env):
    stock_env.set_opening("itm_box", 3)

    for round_number in range(6):
        before = stock_env.stock_of("itm_box")
        created = _create_adjustment(
            stock_env,
            [
                {"item_id": "itm_box", "method": "DELTA_QTY", "qty_input": 5, "delta_direction": "INCREASE"},
                {"item_id": "itm_box", "method": "DELTA_QTY", "qty_input": before + 1, "delta_direction": "DECREASE"},
            ],
            adjustment_type="OTHER",
        ).json()

        approved = stock_env.client.post(
            f"/stock-adjustments/{created['id']}/approve", headers=stock_env.headers["mgr_maya"]
        )
        assert approved.status_code == 200, (round_number, approved.text)
        changes = [(e["movement_kind"], e["quantity_change"]) for e in approved.json()["ledger_entries"]]
        assert changes == [("ADJUSTMENT_IN", 5), ("ADJUSTMENT_OUT", -(before + 1))]
        assert stock_env.stock_of("itm_box") == before + 4

    reconciled = stock_env.client.get("/stock/items/itm_box/reconcile", headers=stock_env.headers["aud_ira"])
    assert reconciled.json()["consistent"] is True
