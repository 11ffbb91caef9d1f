"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-14 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _quantity():
    return sa.Numeric(precision=18, scale=3)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "stores",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("store_id", GUID(), sa.ForeignKey("stores.id"), nullable=True, index=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="USER"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("sku", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
    )

    op.create_table(
        "stock_ledger",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("store_id", GUID(), sa.ForeignKey("stores.id"), nullable=False, index=True),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False, index=True),
        sa.Column("qty_on_hand", _quantity(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "store_id", "product_id", name="uq_stock_ledger_key"),
        sa.CheckConstraint("qty_on_hand >= 0", name="ck_stock_ledger_non_negative"),
    )
    op.create_table(
        "stock_movements",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("store_id", GUID(), nullable=False, index=True),
        sa.Column("product_id", GUID(), nullable=False, index=True),
        sa.Column("delta", _quantity(), nullable=False),
        sa.Column("action", sa.String(length=30), nullable=False),
        sa.Column("reference_type", sa.String(length=30), nullable=False),
        sa.Column("reference_id", GUID(), nullable=True, index=True),
        sa.Column("reference_line_id", GUID(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_movements_reference", "stock_movements", ["tenant_id", "reference_id"])

    op.create_table(
        "transfers",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), nullable=False, index=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("origin_store_id", GUID(), sa.ForeignKey("stores.id"), nullable=False, index=True),
        sa.Column("destination_store_id", GUID(), sa.ForeignKey("stores.id"), nullable=False, index=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("has_discrepancies", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by_user_id", GUID(), nullable=True),
        sa.Column("updated_by_user_id", GUID(), nullable=True),
        sa.Column("dispatched_by_user_id", GUID(), nullable=True),
        sa.Column("received_by_user_id", GUID(), nullable=True),
        sa.Column("canceled_by_user_id", GUID(), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("tenant_id", "code", name="uq_transfers_tenant_code"),
    )
    op.create_index("ix_transfers_tenant_status", "transfers", ["tenant_id", "status"])
    op.create_index("ix_transfers_tenant_created", "transfers", ["tenant_id", "created_at"])

    op.create_table(
        "transfer_lines",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transfer_id", GUID(), sa.ForeignKey("transfers.id"), nullable=False, index=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("qty_dispatched", _quantity(), nullable=False),
        sa.Column("qty_received", _quantity(), nullable=True),
        sa.Column("discrepancy_type", sa.String(length=20), nullable=True),
        sa.Column("discrepancy_qty", _quantity(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("transfer_id", "product_id", name="uq_transfer_lines_product"),
        sa.CheckConstraint("qty_dispatched > 0", name="ck_transfer_lines_qty_positive"),
    )
    op.create_table(
        "transfer_code_counters",
        sa.Column("tenant_id", GUID(), sa.ForeignKey("tenants.id"), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("tenant_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("tenant_id", GUID(), nullable=False, index=True),
        sa.Column("user_id", GUID(), nullable=True, index=True),
        sa.Column("store_id", GUID(), nullable=True, index=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("idempotency_records")
    op.drop_table("transfer_code_counters")
    op.drop_table("transfer_lines")
    op.drop_index("ix_transfers_tenant_created", table_name="transfers")
    op.drop_index("ix_transfers_tenant_status", table_name="transfers")
    op.drop_table("transfers")
    op.drop_index("ix_stock_movements_reference", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_table("stock_ledger")
    op.drop_table("products")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
    op.drop_table("stores")
    op.drop_table("tenants")
