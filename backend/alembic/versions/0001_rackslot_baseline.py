"""rack slot baseline: locations, categories, items, movements, scan sessions, outbox

Revision ID: 0001_rackslot_baseline
Revises:
Create Date: 2026-10-19T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_rackslot_baseline"
down_revision = None
branch_labels = None
depends_on = None


def _ts():
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "wms_location",
        *_ts(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("row", sa.String(length=4), nullable=False),
        sa.Column("bay", sa.String(length=8), nullable=False),
        sa.Column("level", sa.String(length=4), nullable=False),
        sa.Column("position", sa.String(length=8), nullable=False, server_default="1"),
        sa.Column("max_weight", sa.Numeric(12, 3), nullable=True),
        sa.Column("current_weight", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ground_full", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rack_type", sa.String(length=32), nullable=False, server_default="standard"),
        sa.Column("height", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("current_weight >= 0", name="ck_location_weight_nonneg"),
    )
    op.create_index("ix_wms_location_code", "wms_location", ["code"], unique=True)
    op.create_index("ix_wms_location_level", "wms_location", ["level"])
    op.create_index("ix_location_row_bay_level", "wms_location", ["row", "bay", "level"])

    op.create_table(
        "wms_category",
        *_ts(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("prefix", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("ground_level_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("kanban_managed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_quantity", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("min_quantity", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("max_quantity", sa.Numeric(12, 3), nullable=True),
        sa.Column("reorder_point", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("fixed_locations", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_wms_category_code", "wms_category", ["code"], unique=True)

    op.create_table(
        "wms_item",
        *_ts(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("system_code", sa.String(length=64), nullable=False),
        sa.Column("item_code", sa.String(length=64), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("weight", sa.Numeric(12, 3), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("location", sa.String(length=64), nullable=True),
        sa.Column("location_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("meta", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("weight > 0", name="ck_item_weight_positive"),
    )
    op.create_index("ix_wms_item_system_code", "wms_item", ["system_code"], unique=True)
    op.create_index("ix_wms_item_item_code", "wms_item", ["item_code"])
    op.create_index("ix_wms_item_category", "wms_item", ["category"])
    op.create_index("ix_wms_item_status", "wms_item", ["status"])
    op.create_index("ix_wms_item_location", "wms_item", ["location"])
    op.create_index("ix_item_status_location", "wms_item", ["status", "location"])

    op.create_table(
        "wms_movement",
        *_ts(),
        sa.Column("correlation_id", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("item_id", sa.String(length=36), nullable=True),
        sa.Column("category_code", sa.String(length=64), nullable=True),
        sa.Column("location_code", sa.String(length=64), nullable=True),
        sa.Column("weight", sa.Numeric(12, 3), nullable=False, server_default="0"),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=True),
        sa.Column("operator", sa.String(length=128), nullable=False),
        sa.Column("reference", sa.String(length=64), nullable=False),
        sa.Column("notes", sa.String(length=512), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
    )
    op.create_index("ix_wms_movement_correlation_id", "wms_movement", ["correlation_id"], unique=True)
    op.create_index("ix_wms_movement_type", "wms_movement", ["type"])
    op.create_index("ix_wms_movement_item_id", "wms_movement", ["item_id"])
    op.create_index("ix_wms_movement_category_code", "wms_movement", ["category_code"])
    op.create_index("ix_movement_item_created", "wms_movement", ["item_id", "created_at"])

    op.create_table(
        "wms_scan_session",
        *_ts(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("state", sa.String(length=32), nullable=False),
        sa.Column("operator", sa.String(length=128), nullable=False),
        sa.Column("item_id", sa.String(length=36), nullable=False),
        sa.Column("flow", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.String(length=256), nullable=True),
        sa.Column("movement_id", sa.String(length=36), nullable=True),
        sa.Column("step_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closed", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_wms_scan_session_state", "wms_scan_session", ["state"])
    op.create_index("ix_wms_scan_session_operator", "wms_scan_session", ["operator"])
    op.create_index("ix_wms_scan_session_item_id", "wms_scan_session", ["item_id"])
    op.create_index("ix_wms_scan_session_closed", "wms_scan_session", ["closed"])

    op.create_table(
        "wms_scan_event",
        *_ts(),
        sa.Column("session_id", sa.String(length=36), sa.ForeignKey("wms_scan_session.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("raw", sa.String(length=256), nullable=True),
        sa.Column("result", sa.String(length=24), nullable=False),
        sa.Column("message", sa.String(length=256), nullable=True),
        sa.Column("new_state", sa.String(length=32), nullable=False),
    )
    op.create_index("ix_wms_scan_event_session_id", "wms_scan_event", ["session_id"])
    op.create_index("ix_wms_scan_event_session_seq", "wms_scan_event", ["session_id", "seq"], unique=True)

    op.create_table(
        "outbox_event",
        *_ts(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])


def downgrade():
    op.drop_table("outbox_event")
    op.drop_table("wms_scan_event")
    op.drop_table("wms_scan_session")
    op.drop_table("wms_movement")
    op.drop_table("wms_item")
    op.drop_table("wms_category")
    op.drop_table("wms_location")
