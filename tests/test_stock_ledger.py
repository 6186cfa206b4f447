from datetime import datetime, timezone

import pytest
from sqlalchemy import update

from stockflow.core.errors import InsufficientStock, LedgerInvariantError
from stockflow.models.inventory import LedgerEntry, StockMovementKind
from stockflow.services.ledger_service import append_movement, reconcile_item


def test_opening_balance_creates_first_stock_card_entry(stock_env):
    client = stock_env.client

    response = client.post(
        "/stock/opening-balance",
        json={"item_id": "itm_tape", "quantity": 120, "warehouse_id": "wh_main", "note": "migration"},
        headers=stock_env.headers["admin"],
    )
    assert response.status_code == 201, response.text
    entry = response.json()
    assert entry["sequence"] == 1
    assert entry["movement_kind"] == "ADJUSTMENT_IN"
    assert entry["reference_type"] == "OPENING_BALANCE"
    assert entry["quantity_before"] == 0
    assert entry["quantity_change"] == 120
    assert entry["quantity_after"] == 120

    item_stock = client.get("/stock/items/itm_tape", headers=stock_env.headers["wh_ana"])
    assert item_stock.status_code == 200
    assert item_stock.json()["current_stock"] == 120
    assert item_stock.json()["last_entry"]["id"] == entry["id"]

    second = client.post(
        "/stock/opening-balance",
        json={"item_id": "itm_tape", "quantity": 5},
        headers=stock_env.headers["admin"],
    )
    assert second.status_code == 422
    assert second.json()["error"]["code"] == "validation_error"


def test_opening_balance_requires_admin(stock_env):
    response = stock_env.client.post(
        "/stock/opening-balance",
        json={"item_id": "itm_tape", "quantity": 10},
        headers=stock_env.headers["mgr_maya"],
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "forbidden"
    assert stock_env.stock_of("itm_tape") == 0


def test_zero_delta_writes_nothing(stock_env):
    stock_env.set_opening("itm_box", 10)

    with stock_env.session_local() as db:
        entry = append_movement(
            db,
            item_id="itm_box",
            kind=StockMovementKind.ADJUSTMENT_IN,
            reference_type="ADJUSTMENT",
            reference_id="adj_none",
            delta=0,
        )
        db.commit()
        assert entry is None
        assert db.query(LedgerEntry).filter(LedgerEntry.item_id == "itm_box").count() == 1

    assert stock_env.stock_of("itm_box") == 10


def test_movement_cannot_take_stock_below_zero(stock_env):
    stock_env.set_opening("itm_box", 3)

    with stock_env.session_local() as db:
        with pytest.raises(InsufficientStock) as exc_info:
            append_movement(
                db,
                item_id="itm_box",
                kind=StockMovementKind.OUTBOUND,
                reference_type="OUTBOUND",
                reference_id="out_x",
                delta=-4,
            )
        db.rollback()

    assert exc_info.value.available == 3
    assert exc_info.value.requested == 4
    assert stock_env.stock_of("itm_box") == 3


def test_movement_direction_must_match_kind(stock_env):
    with stock_env.session_local() as db:
        with pytest.raises(LedgerInvariantError):
            append_movement(
                db,
                item_id="itm_box",
                kind=StockMovementKind.INBOUND,
                reference_type="INBOUND",
                reference_id="inb_x",
                delta=-1,
            )
        db.rollback()


def test_replaying_stock_card_matches_current_stock(stock_env):
    stock_env.set_opening("itm_wrap", 50)

    with stock_env.session_local() as db:
        for kind, delta in (
            (StockMovementKind.OUTBOUND, -20),
            (StockMovementKind.INBOUND, 7),
            (StockMovementKind.RETURN_OUT, -2),
        ):
            append_movement(
                db,
                item_id="itm_wrap",
                kind=kind,
                reference_type=kind.value,
                reference_id=f"doc_{kind.value.lower()}",
                delta=delta,
            )
        db.commit()

        result = reconcile_item(db, "itm_wrap")
        assert result.entry_count == 4
        assert result.current_stock == 35
        assert result.replayed_stock == 35
        assert result.consistent

        sequences = [
            row.sequence
            for row in db.query(LedgerEntry).filter(LedgerEntry.item_id == "itm_wrap").order_by(LedgerEntry.sequence)
        ]
        assert sequences == [1, 2, 3, 4]

    response = stock_env.client.get("/stock/items/itm_wrap/reconcile", headers=stock_env.headers["aud_ira"])
    assert response.status_code == 200
    assert response.json() == {
        "item_id": "itm_wrap",
        "current_stock": 35,
        "replayed_stock": 35,
        "entry_count": 4,
        "chain_ok": True,
        "consistent": True,
    }


def test_stock_card_listing_filters_by_kind(stock_env):
    stock_env.set_opening("itm_wrap", 9)
    with stock_env.session_local() as db:
        append_movement(
            db,
            item_id="itm_wrap",
            kind=StockMovementKind.OUTBOUND,
            reference_type="OUTBOUND",
            reference_id="out_1",
            delta=-4,
        )
        db.commit()

    client = stock_env.client
    response = client.get(
        "/stock/cards",
        params={"item_id": "itm_wrap", "kind": "OUTBOUND"},
        headers=stock_env.headers["staff_sam"],
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["pagination"]["total"] == 1
    assert payload["items"][0]["quantity_change"] == -4
    assert payload["items"][0]["quantity_after"] == 5

    bad_kind = client.get("/stock/cards", params={"kind": "TELEPORT"}, headers=stock_env.headers["staff_sam"])
    assert bad_kind.status_code == 422


def _post_dated(stock_env, kind, delta, posted_at):
    with stock_env.session_local() as db:
        entry = append_movement(
            db,
            item_id="itm_tape",
            kind=kind,
            reference_type="ADJUSTMENT",
            reference_id=f"adj_{posted_at:%Y%m%d}",
            delta=delta,
        )
        db.execute(update(LedgerEntry).where(LedgerEntry.id == entry.id).values(created_at=posted_at))
        db.commit()


def test_monthly_report_carries_opening_and_closing_stock(stock_env):
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_IN, 100, datetime(2026, 8, 5, 9, tzinfo=timezone.utc))
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_OUT, -30, datetime(2026, 9, 3, 10, tzinfo=timezone.utc))
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_IN, 5, datetime(2026, 9, 20, 15, tzinfo=timezone.utc))
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_OUT, -10, datetime(2026, 10, 2, 8, tzinfo=timezone.utc))
    headers = stock_env.headers["aud_ira"]

    response = stock_env.client.get(
        "/stock/items/itm_tape/report", params={"year": 2026, "month": 9}, headers=headers
    )
    assert response.status_code == 200, response.text
    report = response.json()
    assert report["sku"] == "TAPE-48"
    assert (report["period"]["year"], report["period"]["month"]) == (2026, 9)
    assert report["opening_stock"] == 100
    assert [entry["quantity_change"] for entry in report["movements"]] == [-30, 5]
    assert (report["total_in"], report["total_out"], report["closing_stock"]) == (5, 30, 75)

    december = stock_env.client.get(
        "/stock/items/itm_tape/report", params={"year": 2026, "month": 12}, headers=headers
    ).json()
    assert december["opening_stock"] == 65
    assert december["movements"] == []
    assert december["closing_stock"] == 65

    assert stock_env.client.get(
        "/stock/items/itm_tape/report", params={"year": 2026, "month": 13}, headers=headers
    ).status_code == 422
    assert stock_env.client.get(
        "/stock/items/itm_nope/report", params={"year": 2026, "month": 9}, headers=headers
    ).status_code == 404


def test_stock_cards_filter_by_posting_date(stock_env):
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_IN, 40, datetime(2026, 8, 31, 23, tzinfo=timezone.utc))
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_OUT, -4, datetime(2026, 9, 1, 0, 30, tzinfo=timezone.utc))
    _post_dated(stock_env, StockMovementKind.ADJUSTMENT_OUT, -6, datetime(2026, 9, 30, 22, tzinfo=timezone.utc))
    headers = stock_env.headers["aud_ira"]

    september = stock_env.client.get(
        "/stock/cards",
        params={"item_id": "itm_tape", "date_from": "2026-09-01", "date_to": "2026-09-30"},
        headers=headers,
    )
    assert september.status_code == 200
    assert [entry["quantity_change"] for entry in september.json()["items"]] == [-4, -6]

    since = stock_env.client.get(
        "/stock/cards", params={"item_id": "itm_tape", "date_from": "2026-09-02"}, headers=headers
    )
    assert [entry["quantity_change"] for entry in since.json()["items"]] == [-6]

    reversed_range = stock_env.client.get(
        "/stock/cards", params={"date_from": "2026-09-30", "date_to": "2026-09-01"}, headers=headers
    )
    assert reversed_range.status_code == 422
    assert reversed_range.json()["error"]["code"] == "validation_error"
