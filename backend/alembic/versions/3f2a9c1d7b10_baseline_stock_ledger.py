"""baseline stock ledger schema

Revision ID: 3f2a9c1d7b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

from backend.app.db.models.core_types import (
    BatchStatus,
    BillStatus,
    MovementType,
    OrderStatus,
    PaymentStatus,
    POStatus,
)

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer, "sqlite")


def _id() -> sa.Column:
    return sa.Column("id", PK, primary_key=True)


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # --- MASTER DATA
    op.create_table(
        "products",
        _id(),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=False, server_default="general"),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("on_hand_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reorder_threshold", sa.Integer, nullable=False, server_default="10"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("on_hand_quantity >= 0", name="ck_product_on_hand_nonneg"),
        sa.CheckConstraint("reorder_threshold >= 0", name="ck_product_reorder_nonneg"),
    )
    op.create_table(
        "suppliers",
        _id(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("email", sa.String(255)),
        sa.Column("lead_time_days", sa.Integer, nullable=False, server_default="14"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.CheckConstraint("lead_time_days >= 0", name="ck_supplier_lead_time_nonneg"),
    )
    op.create_table(
        "customers",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(32)),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "raw_materials",
        _id(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("category", sa.String(64), nullable=False, server_default="general"),
        sa.Column("unit", sa.String(32), nullable=False, server_default="kg"),
        sa.Column("current_stock", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("cost_per_unit", sa.Numeric(14, 4), nullable=False, server_default="0"),
        sa.Column("reorder_level", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("supplier_name", sa.String(255)),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        _ts("updated_at"),
        sa.CheckConstraint("current_stock >= 0", name="ck_raw_material_stock_nonneg"),
        sa.CheckConstraint("cost_per_unit >= 0", name="ck_raw_material_cost_nonneg"),
    )

    # --- INBOUND
    op.create_table(
        "purchase_orders",
        _id(),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("supplier_id", PK, sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", sa.Enum(POStatus, name="po_status"), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("expected_eta", sa.Date),
        sa.Column("received_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text),
        sa.Column("version", sa.Integer, nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "purchase_order_lines",
        _id(),
        sa.Column("po_id", PK, sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("ordered_quantity", sa.Integer, nullable=False),
        sa.Column("received_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("ordered_quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("received_quantity >= 0", name="ck_po_line_received_nonneg"),
        sa.CheckConstraint("received_quantity <= ordered_quantity", name="ck_po_line_received_le_ordered"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_po_line_unit_cost_nonneg"),
    )

    # --- OUTBOUND
    op.create_table(
        "customer_orders",
        _id(),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("customer_id", PK, sa.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", sa.Enum(OrderStatus, name="order_status"), nullable=False),
        sa.Column("stock_reserved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("payment_status", sa.Enum(PaymentStatus, name="payment_status"), nullable=False),
        sa.Column("delivery_date", sa.Date),
        sa.Column("notes", sa.Text),
        sa.Column("version", sa.Integer, nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "customer_order_lines",
        _id(),
        sa.Column("order_id", PK, sa.ForeignKey("customer_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_co_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_co_line_price_nonneg"),
    )
    op.create_table(
        "bills",
        _id(),
        sa.Column("bill_number", sa.String(64), nullable=False, unique=True),
        sa.Column("customer_id", PK, sa.ForeignKey("customers.id", ondelete="SET NULL")),
        sa.Column("status", sa.Enum(BillStatus, name="bill_status"), nullable=False),
        sa.Column("stock_reserved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("notes", sa.Text),
        sa.Column("version", sa.Integer, nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_table(
        "bill_lines",
        _id(),
        sa.Column("bill_id", PK, sa.ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("discount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_bill_line_qty_pos"),
        sa.CheckConstraint("discount >= 0", name="ck_bill_line_discount_nonneg"),
    )

    # --- PRODUCTION
    op.create_table(
        "recipes",
        _id(),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("name", sa.String(255)),
        sa.Column("estimated_time_hours", sa.Numeric(8, 2), nullable=False, server_default="1"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        _ts("created_at"),
    )
    op.create_table(
        "recipe_materials",
        _id(),
        sa.Column("recipe_id", PK, sa.ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("material_id", PK, sa.ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("required_quantity_per_unit", sa.Numeric(14, 4), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="kg"),
        sa.Column("wastage_percent", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.CheckConstraint("required_quantity_per_unit >= 0", name="ck_recipe_material_qty_nonneg"),
        sa.CheckConstraint("wastage_percent >= 0", name="ck_recipe_material_wastage_nonneg"),
    )
    op.create_table(
        "production_batches",
        _id(),
        sa.Column("batch_number", sa.String(64), nullable=False, unique=True),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("recipe_id", PK, sa.ForeignKey("recipes.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("planned_quantity", sa.Integer, nullable=False),
        sa.Column("status", sa.Enum(BatchStatus, name="batch_status"), nullable=False),
        sa.Column("materials_consumed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("total_cost", sa.Numeric(14, 2)),
        sa.Column("start_date", sa.Date),
        sa.Column("estimated_completion_date", sa.Date),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text),
        sa.Column("version", sa.Integer, nullable=False),
        _ts("created_at"),
        sa.CheckConstraint("planned_quantity > 0", name="ck_batch_qty_pos"),
    )
    op.create_table(
        "production_batch_materials",
        _id(),
        sa.Column("batch_id", PK, sa.ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("material_id", PK, sa.ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("required_quantity_per_unit", sa.Numeric(14, 4), nullable=False),
        sa.Column("wastage_percent", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("unit", sa.String(32), nullable=False, server_default="kg"),
        sa.Column("consumed_quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
    )

    # --- LEDGER
    op.create_table(
        "stock_movements",
        _id(),
        sa.Column("product_id", PK, sa.ForeignKey("products.id", ondelete="RESTRICT"), index=True),
        sa.Column("material_id", PK, sa.ForeignKey("raw_materials.id", ondelete="RESTRICT"), index=True),
        sa.Column("movement_type", sa.Enum(MovementType, name="movement_type"), nullable=False),
        sa.Column("delta", sa.Numeric(14, 3), nullable=False),
        sa.Column("quantity_after", sa.Numeric(14, 3), nullable=False),
        sa.Column("source_type", sa.String(32)),
        sa.Column("source_id", PK),
        sa.Column("reason", sa.String(255)),
        _ts("created_at"),
        sa.CheckConstraint("delta <> 0", name="ck_stock_movement_delta_nonzero"),
        sa.CheckConstraint("(product_id IS NULL) <> (material_id IS NULL)", name="ck_stock_movement_one_target"),
    )
    op.create_index("ix_stock_movements_source", "stock_movements", ["source_type", "source_id"])


def downgrade() -> None:
    op.drop_index("ix_stock_movements_source", table_name="stock_movements")
    for table in (
        "stock_movements",
        "production_batch_materials",
        "production_batches",
        "recipe_materials",
        "recipes",
        "bill_lines",
        "bills",
        "customer_order_lines",
        "customer_orders",
        "purchase_order_lines",
        "purchase_orders",
        "raw_materials",
        "customers",
        "suppliers",
        "products",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in ("movement_type", "batch_status", "bill_status", "payment_status", "order_status", "po_status"):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
