"""Add serialized units and per-day document sequences

Revision ID: 20261019_serials_seq
Revises: 20261018_initial
Create Date: 2026-10-19

- serial_items: one row per physical unit of a serialized product
- products.is_serialized, order_items.serial_item_id
- document_sequences: atomic ORD/RCP/RET counters per business day
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_serials_seq"
down_revision = "20261018_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "serial_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("serial_number", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="AVAILABLE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("serial_number", name="uq_serial_items_serial_number"),
        sqlite_autoincrement=True
    )
    op.create_index("ix_serial_items_product_status", "serial_items", ["product_id", "status"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=16), nullable=False),
        sa.Column("business_date", sa.String(length=8), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "business_date", name="uq_doc_sequences_type_date"),
        sqlite_autoincrement=True
    )

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.add_column(sa.Column("is_serialized", sa.Boolean(), nullable=False, server_default=sa.false()))

    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.add_column(sa.Column("serial_item_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_order_items_serial_item",
            "serial_items",
            ["serial_item_id"],
            ["id"],
        )


def downgrade():
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.drop_constraint("fk_order_items_serial_item", type_="foreignkey")
        batch_op.drop_column("serial_item_id")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_column("is_serialized")

    op.drop_table("document_sequences")
    op.drop_index("ix_serial_items_product_status", table_name="serial_items")
    op.drop_table("serial_items")
