"""SQLAlchemy async database models for AHSPCalc.

Every table carries a ``scope`` column (see ``ahspcalc.core.scope``). Natural
keys are unique per scope, so the same kode/code/name can live once in
GLOBAL and once in each user scope.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ahspcalc.core.scope import Scope, ScopeType

MONEY = Numeric(20, 4)
QUANTITY = Numeric(20, 6)
PERCENT = Numeric(9, 4)

_TYPES = "'LABOR', 'MATERIAL', 'EQUIPMENT', 'OTHER'"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class MasterItemModel(Base):
    """Priced catalog unit (labor, material, equipment or other)."""

    __tablename__ = "master_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    scope: Mapped[Scope] = mapped_column(ScopeType, nullable=False, index=True)

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    type: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    # Informational inputs for LABOR price derivation
    hourly_rate: Mapped[Decimal | None] = mapped_column(MONEY)
    daily_rate: Mapped[Decimal | None] = mapped_column(MONEY)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    components: Mapped[list[AHSPComponentModel]] = relationship(back_populates="master_item")

    __table_args__ = (
        UniqueConstraint("scope", "code", name="uq_master_scope_code"),
        CheckConstraint("price >= 0", name="check_master_price_non_negative"),
        CheckConstraint(f"type IN ({_TYPES})", name="check_master_type_valid"),
        Index("idx_master_scope_type", "scope", "type"),
    )


class HSPCategoryModel(Base):
    """Named grouping of HSP items."""

    __tablename__ = "hsp_categories"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    scope: Mapped[Scope] = mapped_column(ScopeType, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    items: Mapped[list[HSPItemModel]] = relationship(back_populates="category")

    __table_args__ = (
        UniqueConstraint("scope", "name", name="uq_category_scope_name"),
    )


class HSPItemModel(Base):
    """Catalog work-item with a cached unit price (harga)."""

    __tablename__ = "hsp_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    scope: Mapped[Scope] = mapped_column(ScopeType, nullable=False, index=True)

    kode: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    deskripsi: Mapped[str] = mapped_column(Text, nullable=False)
    satuan: Mapped[str] = mapped_column(Text, nullable=False, default="")
    harga: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    # The category reference is shared across scopes
    hsp_category_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("hsp_categories.id"), nullable=False, index=True
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    category: Mapped[HSPCategoryModel] = relationship(back_populates="items")
    recipe: Mapped[AHSPRecipeModel | None] = relationship(
        back_populates="hsp_item", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("scope", "kode", name="uq_item_scope_kode"),
        CheckConstraint("harga >= 0", name="check_item_harga_non_negative"),
        Index("idx_items_scope_category", "scope", "hsp_category_id"),
    )


class AHSPRecipeModel(Base):
    """Unit-price analysis owned by exactly one HSP item."""

    __tablename__ = "ahsp_recipes"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    scope: Mapped[Scope] = mapped_column(ScopeType, nullable=False, index=True)
    hsp_item_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("hsp_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    overhead_percent: Mapped[Decimal] = mapped_column(PERCENT, nullable=False, default=Decimal("10"))

    # Cached by the recompute propagator
    subtotal_abc: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    overhead_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    final_unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    hsp_item: Mapped[HSPItemModel] = relationship(back_populates="recipe")
    components: Mapped[list[AHSPComponentModel]] = relationship(
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="[AHSPComponentModel.group, AHSPComponentModel.order]",
    )

    __table_args__ = (
        CheckConstraint("overhead_percent >= 0", name="check_overhead_non_negative"),
    )


class AHSPComponentModel(Base):
    """One recipe line referencing a master item."""

    __tablename__ = "ahsp_components"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    scope: Mapped[Scope] = mapped_column(ScopeType, nullable=False, index=True)
    ahsp_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ahsp_recipes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Not re-scoped on copy: user components keep pointing at the same master row
    master_item_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("master_items.id"), nullable=False, index=True
    )
    group: Mapped[str] = mapped_column(Text, nullable=False)

    # Point-in-time copy of the master item
    name_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    unit_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    unit_price_snapshot: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    coefficient: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal("1"))
    price_override: Mapped[Decimal | None] = mapped_column(MONEY)

    # Derived caches, refreshed by recompute
    effective_unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text)

    recipe: Mapped[AHSPRecipeModel] = relationship(back_populates="components")
    master_item: Mapped[MasterItemModel] = relationship(back_populates="components")

    __table_args__ = (
        CheckConstraint("coefficient >= 0", name="check_coefficient_non_negative"),
        CheckConstraint(
            "price_override IS NULL OR price_override >= 0",
            name="check_price_override_non_negative",
        ),
        CheckConstraint(f"\"group\" IN ({_TYPES})", name="check_component_group_valid"),
        Index("idx_components_recipe_group_order", "ahsp_id", "group", "order"),
    )
