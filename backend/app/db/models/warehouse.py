from __future__ import annotations

from decimal import Decimal

from sqlalchemy import String, Integer, Boolean, JSON, Numeric, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, HasUpdatedAt


GROUND_LEVEL = "0"

ITEM_PENDING = "pending"
ITEM_PLACED = "placed"
ITEM_REMOVED = "removed"
ITEM_STATUSES = (ITEM_PENDING, ITEM_PLACED, ITEM_REMOVED)

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"


class Location(Base, HasId, HasCreatedAt, HasUpdatedAt):
    """A rack slot. Geometry is static; weight changes only through the ledger."""

    __tablename__ = "wms_location"

    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    row: Mapped[str] = mapped_column(String(4), nullable=False)
    bay: Mapped[str] = mapped_column(String(8), nullable=False)
    level: Mapped[str] = mapped_column(String(4), nullable=False, index=True)  # "0" = ground
    position: Mapped[str] = mapped_column(String(8), default="1", nullable=False)

    # NULL max_weight = unbounded (ground / pallet positions)
    max_weight: Mapped[Decimal | None] = mapped_column(Numeric(12, 3), nullable=True)
    current_weight: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)

    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ground_full: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    rack_type: Mapped[str] = mapped_column(String(32), default="standard", nullable=False)
    height: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("0"), nullable=False)  # metres

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("current_weight >= 0", name="ck_location_weight_nonneg"),
    )

    @property
    def is_ground(self) -> bool:
        return self.level == GROUND_LEVEL

    @property
    def remaining_capacity(self) -> Decimal | None:
        if self.is_ground or self.max_weight is None:
            return None
        return Decimal(self.max_weight) - Decimal(self.current_weight)


Index("ix_location_row_bay_level", Location.row, Location.bay, Location.level)


class Category(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "wms_category"

    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    prefix: Mapped[str] = mapped_column(String(16), default="", nullable=False)  # RAW => coil metadata
    ground_level_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Kanban rules (count-managed, no physical slot)
    kanban_managed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    current_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    min_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    max_quantity: Mapped[Decimal | None] = mapped_column(Numeric(12, 3), nullable=True)
    reorder_point: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    fixed_locations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Item(Base, HasId, HasCreatedAt, HasUpdatedAt):
    __tablename__ = "wms_item"

    system_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    item_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # product / SKU
    description: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    weight: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), default=ITEM_PENDING, nullable=False, index=True)  # pending|placed|removed
    # weak reference to Location.code, resolved by lookup
    location: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    location_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("weight > 0", name="ck_item_weight_positive"),
    )


Index("ix_item_status_location", Item.status, Item.location)


class Movement(Base, HasId, HasCreatedAt):
    """Append-only IN/OUT record. created_at is the movement timestamp."""

    __tablename__ = "wms_movement"

    # one movement per committed transition; duplicates collide here
    correlation_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(8), nullable=False, index=True)  # IN|OUT

    item_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    category_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    location_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    weight: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(12, 3), nullable=True)

    operator: Mapped[str] = mapped_column(String(128), nullable=False)
    reference: Mapped[str] = mapped_column(String(64), nullable=False)  # SKU
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


Index("ix_movement_item_created", Movement.item_id, Movement.created_at)
