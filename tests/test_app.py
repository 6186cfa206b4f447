def test_health_and_ready(test_context):
    client, _ = test_context

    assert client.get("/health").json() == {"ok": True}
    root = client.get("/").json()
    assert root["docs"] == "/docs"

    ready = client.get("/ready")
    assert ready.status_code == 200
    assert "ok" in ready.json()


def test_request_id_is_echoed_in_error_envelope(stock_env):
    response = stock_env.client.get(
        "/outbounds/missing-id",
        headers={**stock_env.headers["wh_ana"], "X-Request-ID": "req-12345"},
    )
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "not_found"
    assert error["request_id"] == "req-12345"
    assert error["path"] == "/outbounds/missing-id"


def test_openapi_lists_every_workflow_surface(test_context):
    client, _ = test_context

    schema = client.get("/openapi.json").json()
    paths = schema["paths"]
    for path in (
        "/auth/login",
        "/stock/cards",
        "/stock/items/{item_id}/reconcile",
        "/purchase-requests/{purchase_request_id}/issue-po",
        "/inbounds/{inbound_id}/verify",
        "/outbounds/{outbound_id}/release",
        "/stock-adjustments/{adjustment_id}/approve",
        "/opnames/{opname_id}/finalize",
        "/counting-sheets/{sheet_id}/reject",
        "/returns/{vendor_return_id}/keep-items",
        "/audit-logs",
    ):
        assert path in paths, path

    release = paths["/outbounds/{outbound_id}/release"]["post"]
    assert {"403", "409"} <= set(release["responses"])


def test_master_data_listings(stock_env):
    client = stock_env.client
    headers = stock_env.headers["staff_sam"]

    items = client.get("/items", params={"q": "box"}, headers=headers)
    assert items.status_code == 200
    assert [row["id"] for row in items.json()["items"]] == ["itm_box"]

    assert [row["code"] for row in client.get("/warehouses", headers=headers).json()] == ["MAIN"]
    assert [row["code"] for row in client.get("/vendors", headers=headers).json()] == ["ACME"]
    assert [row["code"] for row in client.get("/partners", headers=headers).json()] == ["STORE-1"]


def test_openapi_error_examples_follow_domain_error_codes(test_context):
    client, _ = test_context

    release = client.get("/openapi.json").json()["paths"]["/outbounds/{outbound_id}/release"]["post"]
    examples = {
        status: set(release["responses"][status]["content"]["application/json"]["examples"])
        for status in ("400", "403", "409", "422")
    }
    assert examples["400"] == {"quantity_out_of_range"}
    assert examples["403"] == {"forbidden", "permission_denied"}
    assert examples["409"] == {"invalid_state_transition", "insufficient_stock", "stock_conflict"}
    assert examples["422"] == {"validation_error"}

    conflict = release["responses"]["409"]["content"]["application/json"]["examples"]["insufficient_stock"]
    assert conflict["value"]["error"]["code"] == "insufficient_stock"
