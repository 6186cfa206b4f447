"""stock ledger and document workflow baseline

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), nullable=False)


def _user_fk(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.String(length=36), sa.ForeignKey("users.id"), nullable=nullable)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _create_master_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            _id(),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("full_name", sa.String(length=100), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="staff"),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ux_users_username_lower", "users", [sa.text("lower(username)")], unique=True)

    if not _table_exists(inspector, "items"):
        op.create_table(
            "items",
            _id(),
            sa.Column("sku", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("uom", sa.String(length=20), nullable=False, server_default="pcs"),
            sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("current_stock >= 0", name="ck_items_current_stock_non_negative"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ux_items_sku_lower", "items", [sa.text("lower(sku)")], unique=True)
        op.create_index("ix_items_active_created_at", "items", ["is_active", "created_at"], unique=False)

    if not _table_exists(inspector, "warehouses"):
        op.create_table(
            "warehouses",
            _id(),
            sa.Column("code", sa.String(length=30), nullable=False, unique=True),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "vendors"):
        op.create_table(
            "vendors",
            _id(),
            sa.Column("code", sa.String(length=30), nullable=False, unique=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "partners"):
        op.create_table(
            "partners",
            _id(),
            sa.Column("code", sa.String(length=30), nullable=False, unique=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("contact", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_ledger_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "stock_cards"):
        op.create_table(
            "stock_cards",
            _id(),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("movement_kind", sa.String(length=20), nullable=False),
            sa.Column("reference_type", sa.String(length=30), nullable=False),
            sa.Column("reference_id", sa.String(length=36), nullable=False),
            sa.Column("reference_code", sa.String(length=50), nullable=True),
            sa.Column("quantity_before", sa.Integer(), nullable=False),
            sa.Column("quantity_change", sa.Integer(), nullable=False),
            sa.Column("quantity_after", sa.Integer(), nullable=False),
            sa.Column("note", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("item_id", "sequence", name="uq_stock_cards_item_sequence"),
            sa.CheckConstraint("quantity_change <> 0", name="ck_stock_cards_change_non_zero"),
            sa.CheckConstraint(
                "quantity_after = quantity_before + quantity_change",
                name="ck_stock_cards_arithmetic",
            ),
            sa.CheckConstraint("quantity_after >= 0", name="ck_stock_cards_after_non_negative"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            _id(),
            _user_fk("actor_user_id", nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_purchase_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "purchase_requests"):
        op.create_table(
            "purchase_requests",
            _id(),
            sa.Column("pr_number", sa.String(length=50), nullable=False, unique=True),
            sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("request_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(length=40), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("justification_reason", sa.Text(), nullable=True),
            sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
            _user_fk("created_by_user_id", nullable=False),
            _timestamp("submitted_at"),
            _user_fk("manager_decided_by_user_id"),
            _timestamp("manager_decided_at"),
            sa.Column("manager_notes", sa.Text(), nullable=True),
            _user_fk("purchasing_decided_by_user_id"),
            _timestamp("purchasing_decided_at"),
            sa.Column("purchasing_notes", sa.Text(), nullable=True),
            sa.Column("requires_payment", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("payment_amount", sa.Numeric(14, 2), nullable=True),
            sa.Column("payment_date", sa.Date(), nullable=True),
            _user_fk("payment_released_by_user_id"),
            _timestamp("payment_released_at"),
            sa.Column("finance_notes", sa.Text(), nullable=True),
            sa.Column("po_number", sa.String(length=50), nullable=True, unique=True),
            _user_fk("po_issued_by_user_id"),
            _timestamp("po_issued_at"),
            sa.Column("shipping_tracking_number", sa.String(length=100), nullable=True),
            sa.Column("estimated_shipping_date", sa.Date(), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "purchase_request_items"):
        op.create_table(
            "purchase_request_items",
            _id(),
            sa.Column(
                "purchase_request_id",
                sa.String(length=36),
                sa.ForeignKey("purchase_requests.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_inbound_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "inbounds"):
        op.create_table(
            "inbounds",
            _id(),
            sa.Column("grn_number", sa.String(length=50), nullable=False, unique=True),
            sa.Column(
                "purchase_request_id",
                sa.String(length=36),
                sa.ForeignKey("purchase_requests.id"),
                nullable=True,
            ),
            sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("receive_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            _user_fk("created_by_user_id", nullable=False),
            _user_fk("verified_by_user_id"),
            _timestamp("verified_at"),
            sa.Column("verification_notes", sa.Text(), nullable=True),
            _timestamp("completed_at"),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "inbound_items"):
        op.create_table(
            "inbound_items",
            _id(),
            sa.Column("inbound_id", sa.String(length=36), sa.ForeignKey("inbounds.id"), nullable=False),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("expected_qty", sa.Integer(), nullable=False),
            sa.Column("received_qty", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("accepted_qty", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("rejected_qty", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("stocked_qty", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("discrepancy_type", sa.String(length=20), nullable=False),
            sa.Column("rejection_reason", sa.String(length=20), nullable=True),
            sa.Column("discrepancy_notes", sa.Text(), nullable=True),
            sa.Column("issue_status", sa.String(length=20), nullable=False),
            sa.Column("resolution", sa.String(length=30), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            _user_fk("resolved_by_user_id"),
            _timestamp("resolved_at"),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_outbound_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "outbounds"):
        op.create_table(
            "outbounds",
            _id(),
            sa.Column("outbound_code", sa.String(length=50), nullable=False, unique=True),
            sa.Column("partner_id", sa.String(length=36), sa.ForeignKey("partners.id"), nullable=True),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("purpose", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            _user_fk("created_by_user_id", nullable=False),
            _user_fk("approved_by_user_id"),
            _timestamp("approved_at"),
            _user_fk("released_by_user_id"),
            _timestamp("released_at"),
            _user_fk("rejected_by_user_id"),
            _timestamp("rejected_at"),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "outbound_items"):
        op.create_table(
            "outbound_items",
            _id(),
            sa.Column("outbound_id", sa.String(length=36), sa.ForeignKey("outbounds.id"), nullable=False),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("requested_qty", sa.Integer(), nullable=False),
            sa.Column("released_qty", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_opname_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "stock_opnames"):
        op.create_table(
            "stock_opnames",
            _id(),
            sa.Column("opname_code", sa.String(length=50), nullable=False, unique=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("scheduled_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            _user_fk("created_by_user_id", nullable=False),
            sa.Column("matched_sheet_id", sa.String(length=36), nullable=True),
            _user_fk("finalized_by_user_id"),
            _timestamp("finalized_at"),
            sa.Column("adjustment_id", sa.String(length=36), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "stock_opname_counts"):
        op.create_table(
            "stock_opname_counts",
            _id(),
            sa.Column(
                "stock_opname_id",
                sa.String(length=36),
                sa.ForeignKey("stock_opnames.id"),
                nullable=False,
            ),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("system_qty", sa.Integer(), nullable=False),
            sa.Column("final_qty", sa.Integer(), nullable=True),
            sa.Column("variance", sa.Integer(), nullable=True),
            sa.Column("is_matching", sa.Boolean(), nullable=True),
            sa.UniqueConstraint("stock_opname_id", "item_id", name="uq_stock_opname_counts_opname_item"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "counting_sheets"):
        op.create_table(
            "counting_sheets",
            _id(),
            sa.Column(
                "stock_opname_id",
                sa.String(length=36),
                sa.ForeignKey("stock_opnames.id"),
                nullable=False,
            ),
            sa.Column("sheet_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("recount_round", sa.Integer(), nullable=False, server_default="0"),
            _user_fk("counter_user_id"),
            sa.Column("counter_name", sa.String(length=120), nullable=True),
            sa.Column("counter_role", sa.String(length=40), nullable=True),
            _timestamp("submitted_at"),
            sa.Column("compared_with_sheet_id", sa.String(length=36), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            *_audit_columns(),
            sa.UniqueConstraint("stock_opname_id", "sheet_number", name="uq_counting_sheets_opname_number"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "counting_sheet_lines"):
        op.create_table(
            "counting_sheet_lines",
            _id(),
            sa.Column(
                "counting_sheet_id",
                sa.String(length=36),
                sa.ForeignKey("counting_sheets.id"),
                nullable=False,
            ),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("counted_qty", sa.Integer(), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.UniqueConstraint("counting_sheet_id", "item_id", name="uq_counting_sheet_lines_sheet_item"),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_adjustment_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "stock_adjustments"):
        op.create_table(
            "stock_adjustments",
            _id(),
            sa.Column("adjustment_code", sa.String(length=50), nullable=False, unique=True),
            sa.Column("adjustment_type", sa.String(length=30), nullable=False),
            sa.Column("source", sa.String(length=20), nullable=False),
            sa.Column(
                "stock_opname_id",
                sa.String(length=36),
                sa.ForeignKey("stock_opnames.id"),
                nullable=True,
            ),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            _user_fk("created_by_user_id", nullable=False),
            _timestamp("submitted_at"),
            _user_fk("decided_by_user_id"),
            _timestamp("decided_at"),
            sa.Column("decision_notes", sa.Text(), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "stock_adjustment_items"):
        op.create_table(
            "stock_adjustment_items",
            _id(),
            sa.Column(
                "stock_adjustment_id",
                sa.String(length=36),
                sa.ForeignKey("stock_adjustments.id"),
                nullable=False,
            ),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("method", sa.String(length=20), nullable=False),
            sa.Column("delta_direction", sa.String(length=10), nullable=True),
            sa.Column("qty_system", sa.Integer(), nullable=True),
            sa.Column("qty_input", sa.Integer(), nullable=False),
            sa.Column("qty_variance", sa.Integer(), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )


def _create_return_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "vendor_returns"):
        op.create_table(
            "vendor_returns",
            _id(),
            sa.Column("return_code", sa.String(length=50), nullable=False, unique=True),
            sa.Column("vendor_id", sa.String(length=36), sa.ForeignKey("vendors.id"), nullable=False),
            sa.Column("warehouse_id", sa.String(length=36), sa.ForeignKey("warehouses.id"), nullable=True),
            sa.Column("inbound_id", sa.String(length=36), sa.ForeignKey("inbounds.id"), nullable=True),
            sa.Column("return_date", sa.Date(), nullable=True),
            sa.Column("reason", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
            _user_fk("created_by_user_id", nullable=False),
            _timestamp("submitted_at"),
            _user_fk("approved_by_user_id"),
            _timestamp("approved_at"),
            _user_fk("rejected_by_user_id"),
            _timestamp("rejected_at"),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            _user_fk("shipped_by_user_id"),
            _timestamp("shipped_at"),
            sa.Column("tracking_number", sa.String(length=100), nullable=True),
            _user_fk("completed_by_user_id"),
            _timestamp("completed_at"),
            _user_fk("kept_by_user_id"),
            _timestamp("kept_at"),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "vendor_return_items"):
        op.create_table(
            "vendor_return_items",
            _id(),
            sa.Column(
                "vendor_return_id",
                sa.String(length=36),
                sa.ForeignKey("vendor_returns.id"),
                nullable=False,
            ),
            sa.Column("item_id", sa.String(length=36), sa.ForeignKey("items.id"), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )


INDEXES: list[tuple[str, str, list[str]]] = [
    ("ix_stock_cards_item_id", "stock_cards", ["item_id"]),
    ("ix_stock_cards_reference", "stock_cards", ["reference_type", "reference_id"]),
    ("ix_stock_cards_item_created_at", "stock_cards", ["item_id", "created_at"]),
    ("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"]),
    ("ix_audit_logs_target_id", "audit_logs", ["target_id"]),
    ("ix_audit_logs_action_created_at", "audit_logs", ["action", "created_at"]),
    ("ix_audit_logs_target_created_at", "audit_logs", ["target_type", "target_id", "created_at"]),
    ("ix_audit_logs_actor_created_at", "audit_logs", ["actor_user_id", "created_at"]),
    ("ix_purchase_requests_vendor_id", "purchase_requests", ["vendor_id"]),
    ("ix_purchase_requests_created_by_user_id", "purchase_requests", ["created_by_user_id"]),
    ("ix_purchase_requests_status_created_at", "purchase_requests", ["status", "created_at"]),
    ("ix_purchase_request_items_purchase_request_id", "purchase_request_items", ["purchase_request_id"]),
    ("ix_purchase_request_items_item_id", "purchase_request_items", ["item_id"]),
    ("ix_inbounds_purchase_request_id", "inbounds", ["purchase_request_id"]),
    ("ix_inbounds_vendor_id", "inbounds", ["vendor_id"]),
    ("ix_inbounds_status_created_at", "inbounds", ["status", "created_at"]),
    ("ix_inbound_items_inbound_id", "inbound_items", ["inbound_id"]),
    ("ix_inbound_items_item_id", "inbound_items", ["item_id"]),
    ("ix_inbound_items_issue_status", "inbound_items", ["issue_status"]),
    ("ix_outbounds_created_by_user_id", "outbounds", ["created_by_user_id"]),
    ("ix_outbounds_status_created_at", "outbounds", ["status", "created_at"]),
    ("ix_outbound_items_outbound_id", "outbound_items", ["outbound_id"]),
    ("ix_outbound_items_item_id", "outbound_items", ["item_id"]),
    ("ix_stock_opnames_status_created_at", "stock_opnames", ["status", "created_at"]),
    ("ix_stock_opname_counts_stock_opname_id", "stock_opname_counts", ["stock_opname_id"]),
    ("ix_counting_sheets_stock_opname_id", "counting_sheets", ["stock_opname_id"]),
    ("ix_counting_sheet_lines_counting_sheet_id", "counting_sheet_lines", ["counting_sheet_id"]),
    ("ix_stock_adjustments_stock_opname_id", "stock_adjustments", ["stock_opname_id"]),
    ("ix_stock_adjustments_created_by_user_id", "stock_adjustments", ["created_by_user_id"]),
    ("ix_stock_adjustments_status_created_at", "stock_adjustments", ["status", "created_at"]),
    ("ix_stock_adjustment_items_stock_adjustment_id", "stock_adjustment_items", ["stock_adjustment_id"]),
    ("ix_stock_adjustment_items_item_id", "stock_adjustment_items", ["item_id"]),
    ("ix_vendor_returns_vendor_id", "vendor_returns", ["vendor_id"]),
    ("ix_vendor_returns_created_by_user_id", "vendor_returns", ["created_by_user_id"]),
    ("ix_vendor_returns_status_created_at", "vendor_returns", ["status", "created_at"]),
    ("ix_vendor_return_items_vendor_return_id", "vendor_return_items", ["vendor_return_id"]),
    ("ix_vendor_return_items_item_id", "vendor_return_items", ["item_id"]),
]

# Reverse dependency order.
TABLES = [
    "vendor_return_items",
    "vendor_returns",
    "stock_adjustment_items",
    "stock_adjustments",
    "counting_sheet_lines",
    "counting_sheets",
    "stock_opname_counts",
    "stock_opnames",
    "outbound_items",
    "outbounds",
    "inbound_items",
    "inbounds",
    "purchase_request_items",
    "purchase_requests",
    "audit_logs",
    "stock_cards",
    "partners",
    "vendors",
    "warehouses",
    "items",
    "users",
]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    _create_master_tables(inspector)
    _create_ledger_tables(inspector)
    _create_purchase_tables(inspector)
    _create_inbound_tables(inspector)
    _create_outbound_tables(inspector)
    _create_opname_tables(inspector)
    _create_adjustment_tables(inspector)
    _create_return_tables(inspector)

    inspector = sa.inspect(bind)
    for index_name, table_name, columns in INDEXES:
        if not _table_exists(inspector, table_name):
            continue
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table_name in TABLES:
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
