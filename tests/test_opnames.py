from stockflow.models.inventory import StockMovementKind
from stockflow.services.ledger_service import append_movement


def _create_opname(stock_env, item_ids, username="mgr_maya"):
    response = stock_env.client.post(
        "/opnames",
        json={
            "title": "Monthly cycle count",
            "warehouse_id": "wh_main",
            "scheduled_date": "2026-10-31",
            "item_ids": item_ids,
        },
        headers=stock_env.headers[username],
    )
    assert response.status_code == 201, response.text
    opname = response.json()
    assert opname["status"] == "SCHEDULED"
    assert opname["opname_code"].startswith("OP/")
    return opname


def _open_sheet(stock_env, opname_id, username):
    response = stock_env.client.post(f"/opnames/{opname_id}/sheets", headers=stock_env.headers[username])
    assert response.status_code == 201, response.text
    return response.json()


def _count_and_submit(stock_env, sheet_id, counts, username):
    saved = stock_env.client.put(
        f"/counting-sheets/{sheet_id}/counts",
        json={"counts": [{"item_id": item_id, "counted_qty": qty} for item_id, qty in counts.items()]},
        headers=stock_env.headers[username],
    )
    assert saved.status_code == 200, saved.text
    submitted = stock_env.client.post(f"/counting-sheets/{sheet_id}/submit", headers=stock_env.headers[username])
    assert submitted.status_code == 200, submitted.text
    assert submitted.json()["status"] == "SUBMITTED"
    return submitted.json()


def _compare(stock_env, opname_id, sheet_a_id, sheet_b_id, username="mgr_maya"):
    return stock_env.client.post(
        f"/opnames/{opname_id}/compare",
        json={"sheet_a_id": sheet_a_id, "sheet_b_id": sheet_b_id},
        headers=stock_env.headers[username],
    )


def test_matched_count_creates_pending_adjustment_without_moving_stock(stock_env):
    stock_env.set_opening("itm_wrap", 195)
    opname = _create_opname(stock_env, ["itm_wrap"])
    assert [(c["item_id"], c["system_qty"]) for c in opname["counts"]] == [("itm_wrap", 195)]

    sheet_1 = _open_sheet(stock_env, opname["id"], "wh_ana")
    sheet_2 = _open_sheet(stock_env, opname["id"], "staff_sam")
    assert (sheet_1["sheet_number"], sheet_2["sheet_number"]) == (1, 2)
    assert sheet_1["total_lines"] == 1
    assert sheet_1["counted_lines"] == 0

    _count_and_submit(stock_env, sheet_1["id"], {"itm_wrap": 200}, "wh_ana")
    _count_and_submit(stock_env, sheet_2["id"], {"itm_wrap": 200}, "staff_sam")

    in_progress = stock_env.client.get(f"/opnames/{opname['id']}", headers=stock_env.headers["aud_ira"])
    assert in_progress.json()["status"] == "COUNTING_IN_PROGRESS"

    comparison = _compare(stock_env, opname["id"], sheet_1["id"], sheet_2["id"])
    assert comparison.status_code == 200, comparison.text
    body = comparison.json()
    assert body["matched"] is True
    assert body["mismatches"] == []
    assert body["sheet_a"]["status"] == "MATCHED"
    assert body["sheet_b"]["status"] == "MATCHED"

    variance = stock_env.client.get(f"/opnames/{opname['id']}/variance", headers=stock_env.headers["aud_ira"])
    assert variance.status_code == 200
    assert variance.json()["lines"] == [
        {"item_id": "itm_wrap", "system_qty": 195, "counted_qty": 200, "variance": 5}
    ]
    assert variance.json()["total_variance_lines"] == 1

    finalized = stock_env.client.post(f"/opnames/{opname['id']}/finalize", headers=stock_env.headers["mgr_maya"])
    assert finalized.status_code == 200, finalized.text
    result = finalized.json()
    assert result["opname"]["status"] == "COMPLETED_WITH_ADJUSTMENT"
    assert result["opname"]["counts"][0]["final_qty"] == 200
    assert result["opname"]["counts"][0]["variance"] == 5
    assert result["opname"]["counts"][0]["is_matching"] is False

    adjustment = result["adjustment"]
    assert adjustment["status"] == "PENDING"
    assert adjustment["source"] == "OPNAME"
    assert adjustment["adjustment_type"] == "OPNAME_RESULT"
    assert adjustment["stock_opname_id"] == opname["id"]
    assert result["opname"]["adjustment_id"] == adjustment["id"]
    assert len(adjustment["items"]) == 1
    line = adjustment["items"][0]
    assert (line["qty_system"], line["qty_input"], line["qty_variance"]) == (195, 200, 5)

    assert stock_env.stock_of("itm_wrap") == 195

    approved = stock_env.client.post(
        f"/stock-adjustments/{adjustment['id']}/approve", headers=stock_env.headers["mgr_omar"]
    )
    assert approved.status_code == 200, approved.text
    assert stock_env.stock_of("itm_wrap") == 200

    again = stock_env.client.post(f"/opnames/{opname['id']}/finalize", headers=stock_env.headers["mgr_maya"])
    assert again.status_code == 409


def test_disagreeing_sheets_are_reported_and_one_is_recounted(stock_env):
    stock_env.set_opening("itm_wrap", 190)
    opname = _create_opname(stock_env, ["itm_wrap"])
    sheet_1 = _open_sheet(stock_env, opname["id"], "wh_ana")
    sheet_2 = _open_sheet(stock_env, opname["id"], "staff_sam")
    _count_and_submit(stock_env, sheet_1["id"], {"itm_wrap": 180}, "wh_ana")
    _count_and_submit(stock_env, sheet_2["id"], {"itm_wrap": 185}, "staff_sam")

    comparison = _compare(stock_env, opname["id"], sheet_1["id"], sheet_2["id"])
    assert comparison.status_code == 200
    body = comparison.json()
    assert body["matched"] is False
    assert body["mismatches"] == [{"item_id": "itm_wrap", "sheet_a_qty": 180, "sheet_b_qty": 185}]
    assert body["sheet_a"]["status"] == "SUBMITTED"
    assert body["sheet_b"]["status"] == "SUBMITTED"

    rejected = stock_env.client.post(
        f"/counting-sheets/{sheet_1['id']}/reject",
        json={"reason": "Recount aisle 4"},
        headers=stock_env.headers["mgr_maya"],
    )
    assert rejected.status_code == 200, rejected.text
    reset = rejected.json()
    assert reset["status"] == "DRAFT"
    assert reset["counted_lines"] == 0
    assert all(line["counted_qty"] is None for line in reset["lines"])
    assert reset["counter_user_id"] is None
    assert reset["recount_round"] == 1
    assert reset["rejection_reason"] == "Recount aisle 4"

    untouched = stock_env.client.get(f"/counting-sheets/{sheet_2['id']}", headers=stock_env.headers["aud_ira"])
    assert untouched.json()["status"] == "SUBMITTED"
    assert untouched.json()["lines"][0]["counted_qty"] == 185

    _count_and_submit(stock_env, sheet_1["id"], {"itm_wrap": 185}, "aud_ira")
    second = _compare(stock_env, opname["id"], sheet_1["id"], sheet_2["id"])
    assert second.json()["matched"] is True

    opname_now = stock_env.client.get(f"/opnames/{opname['id']}", headers=stock_env.headers["aud_ira"])
    assert opname_now.json()["status"] == "COUNTING_COMPLETE"

    audit = stock_env.client.get(
        "/audit-logs",
        params={"action": "stock_opname.compare_mismatch", "target_id": opname["id"]},
        headers=stock_env.headers["aud_ira"],
    )
    assert audit.json()["pagination"]["total"] == 1


def test_same_counter_cannot_fill_both_sheets(stock_env):
    opname = _create_opname(stock_env, ["itm_box"])
    sheet_1 = _open_sheet(stock_env, opname["id"], "wh_ana")
    sheet_2 = _open_sheet(stock_env, opname["id"], "wh_ana")
    _count_and_submit(stock_env, sheet_1["id"], {"itm_box": 0}, "wh_ana")
    _count_and_submit(stock_env, sheet_2["id"], {"itm_box": 0}, "wh_ana")

    response = _compare(stock_env, opname["id"], sheet_1["id"], sheet_2["id"])
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"

    same_sheet = _compare(stock_env, opname["id"], sheet_1["id"], sheet_1["id"])
    assert same_sheet.status_code == 422


def test_sheet_needs_every_line_counted_before_submit(stock_env):
    opname = _create_opname(stock_env, ["itm_tape", "itm_box"])
    sheet = _open_sheet(stock_env, opname["id"], "wh_ana")

    saved = stock_env.client.put(
        f"/counting-sheets/{sheet['id']}/counts",
        json={"counts": [{"item_id": "itm_tape", "counted_qty": 4}]},
        headers=stock_env.headers["wh_ana"],
    )
    assert saved.status_code == 200
    assert saved.json()["status"] == "COUNTING"
    assert saved.json()["counted_lines"] == 1
    assert saved.json()["total_lines"] == 2

    response = stock_env.client.post(f"/counting-sheets/{sheet['id']}/submit", headers=stock_env.headers["wh_ana"])
    assert response.status_code == 422
    assert response.json()["error"]["details"] == [{"item_id": "itm_box"}]

    outsider = stock_env.client.put(
        f"/counting-sheets/{sheet['id']}/counts",
        json={"counts": [{"item_id": "itm_wrap", "counted_qty": 1}]},
        headers=stock_env.headers["wh_ana"],
    )
    assert outsider.status_code == 422

    negative = stock_env.client.put(
        f"/counting-sheets/{sheet['id']}/counts",
        json={"counts": [{"item_id": "itm_box", "counted_qty": -2}]},
        headers=stock_env.headers["wh_ana"],
    )
    assert negative.status_code == 400


def test_system_snapshot_is_not_refreshed_after_creation(stock_env):
    stock_env.set_opening("itm_tape", 40)
    opname = _create_opname(stock_env, ["itm_tape"])

    with stock_env.session_local() as db:
        append_movement(
            db,
            item_id="itm_tape",
            kind=StockMovementKind.OUTBOUND,
            reference_type="OUTBOUND",
            reference_id="out_during_count",
            delta=-10,
        )
        db.commit()

    current = stock_env.client.get(f"/opnames/{opname['id']}", headers=stock_env.headers["aud_ira"])
    assert current.json()["counts"][0]["system_qty"] == 40
    assert stock_env.stock_of("itm_tape") == 30


def test_matching_count_finalizes_without_adjustment(stock_env):
    stock_env.set_opening("itm_box", 12)
    opname = _create_opname(stock_env, ["itm_box"], username="aud_ira")

    early = stock_env.client.post(f"/opnames/{opname['id']}/finalize", headers=stock_env.headers["mgr_maya"])
    assert early.status_code == 409

    sheet_1 = _open_sheet(stock_env, opname["id"], "wh_ana")
    sheet_2 = _open_sheet(stock_env, opname["id"], "wh_budi")
    _count_and_submit(stock_env, sheet_1["id"], {"itm_box": 12}, "wh_ana")
    _count_and_submit(stock_env, sheet_2["id"], {"itm_box": 12}, "wh_budi")
    assert _compare(stock_env, opname["id"], sheet_1["id"], sheet_2["id"], username="aud_ira").json()["matched"]

    listed = stock_env.client.get(f"/opnames/{opname['id']}/sheets", headers=stock_env.headers["aud_ira"])
    assert [sheet["status"] for sheet in listed.json()["items"]] == ["MATCHED", "MATCHED"]

    # auditors manage sessions but cannot finalize them
    forbidden = stock_env.client.post(f"/opnames/{opname['id']}/finalize", headers=stock_env.headers["aud_ira"])
    assert forbidden.status_code == 403

    finalized = stock_env.client.post(
        f"/opnames/{opname['id']}/finalize",
        json={"notes": "Clean count"},
        headers=stock_env.headers["mgr_maya"],
    )
    assert finalized.status_code == 200, finalized.text
    result = finalized.json()
    assert result["opname"]["status"] == "FINALIZED"
    assert result["adjustment"] is None
    assert result["variances"][0]["variance"] == 0
    assert result["opname"]["counts"][0]["is_matching"] is True
    assert stock_env.stock_of("itm_box") == 12


def test_sheets_are_frozen_once_the_session_is_finalized(stock_env):
    stock_env.set_opening("itm_box", 8)
    opname = _create_opname(stock_env, ["itm_box"])
    sheet_1 = _open_sheet(stock_env, opname["id"], "wh_ana")
    sheet_2 = _open_sheet(stock_env, opname["id"], "staff_sam")
    sheet_3 = _open_sheet(stock_env, opname["id"], "wh_budi")
    spare = _open_sheet(stock_env, opname["id"], "wh_ana")
    _count_and_submit(stock_env, sheet_1["id"], {"itm_box": 8}, "wh_ana")
    _count_and_submit(stock_env, sheet_2["id"], {"itm_box": 8}, "staff_sam")
    _count_and_submit(stock_env, sheet_3["id"], {"itm_box": 8}, "wh_budi")
    assert _compare(stock_env, opname["id"], sheet_1["id"], sheet_2["id"]).json()["matched"] is True

    finalized = stock_env.client.post(f"/opnames/{opname['id']}/finalize", headers=stock_env.headers["mgr_maya"])
    assert finalized.json()["opname"]["status"] == "FINALIZED"

    late_count = stock_env.client.put(
        f"/counting-sheets/{spare['id']}/counts",
        json={"counts": [{"item_id": "itm_box", "counted_qty": 999}]},
        headers=stock_env.headers["wh_ana"],
    )
    assert late_count.status_code == 409
    assert late_count.json()["error"]["details"][-1] == {
        "stock_opname_id": opname["id"],
        "opname_status": "FINALIZED",
    }

    late_submit = stock_env.client.post(f"/counting-sheets/{spare['id']}/submit", headers=stock_env.headers["wh_ana"])
    assert late_submit.status_code == 409

    late_reject = stock_env.client.post(
        f"/counting-sheets/{sheet_3['id']}/reject",
        json={"reason": "Too late"},
        headers=stock_env.headers["mgr_maya"],
    )
    assert late_reject.status_code == 409

    late_compare = _compare(stock_env, opname["id"], sheet_3["id"], sheet_2["id"])
    assert late_compare.status_code == 409

    untouched = stock_env.client.get(f"/counting-sheets/{spare['id']}", headers=stock_env.headers["aud_ira"])
    assert untouched.json()["status"] == "DRAFT"
    assert untouched.json()["lines"][0]["counted_qty"] is None
    leftover = stock_env.client.get(f"/counting-sheets/{sheet_3['id']}", headers=stock_env.headers["aud_ira"])
    assert leftover.json()["status"] == "SUBMITTED"
