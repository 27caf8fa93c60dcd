"""AHSPCalc Pydantic models and enumerations.

Read-side shapes handed to export/report collaborators, plus the closed
enumerations used by the catalog and the recipe engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar, assert_never
from uuid import UUID

from pydantic import BaseModel, Field

T = TypeVar("T")


class MasterItemType(str, Enum):
    """Kind of a master price-list unit."""

    LABOR = "LABOR"
    MATERIAL = "MATERIAL"
    EQUIPMENT = "EQUIPMENT"
    OTHER = "OTHER"


class ComponentGroup(str, Enum):
    """Cost bucket a recipe line contributes to.

    Independent of the referenced master item's type.
    """

    LABOR = "LABOR"
    MATERIAL = "MATERIAL"
    EQUIPMENT = "EQUIPMENT"
    OTHER = "OTHER"


class GroupLabel(str, Enum):
    """Column letter printed on AHSP sheets."""

    A = "A"
    B = "B"
    C = "C"
    X = "X"


class PricePolicy(str, Enum):
    """Unit price resolution order used by the recipe read path.

    CURRENT:  priceOverride -> masterItem.price -> unitPriceSnapshot
    SNAPSHOT: priceOverride -> unitPriceSnapshot -> masterItem.price
    """

    CURRENT = "current"
    SNAPSHOT = "snapshot"


def group_label(group: ComponentGroup) -> GroupLabel:
    match group:
        case ComponentGroup.LABOR:
            return GroupLabel.A
        case ComponentGroup.MATERIAL:
            return GroupLabel.B
        case ComponentGroup.EQUIPMENT:
            return GroupLabel.C
        case ComponentGroup.OTHER:
            return GroupLabel.X
        case _:
            assert_never(group)


@dataclass
class Page(Generic[T]):
    """One page of a merged, sorted listing."""

    items: list[T]
    skip: int
    take: int
    total: int


@dataclass(slots=True)
class RecomputeReport:
    """Outcome of recomputing every recipe that touches one master item."""

    master_item_id: UUID
    recomputed: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class MasterItemRef(BaseModel):
    """Master item as shown next to a recipe line."""

    id: UUID
    code: str
    name: str
    unit: str
    price: Decimal
    type: MasterItemType


class MasterItemDetail(BaseModel):
    """Master item with the number of recipe lines referencing it."""

    id: UUID
    scope: str
    code: str
    name: str
    unit: str
    price: Decimal
    type: MasterItemType
    hourly_rate: Decimal | None = None
    daily_rate: Decimal | None = None
    notes: str | None = None
    updated_at: datetime | None = None
    references: int = 0


class ComponentLine(BaseModel):
    """One recipe line with prices resolved under a PricePolicy."""

    id: UUID
    order: int
    group: ComponentGroup
    master_item_id: UUID
    master_item: MasterItemRef | None = None

    name_snapshot: str
    unit_snapshot: str
    unit_price_snapshot: Decimal

    coefficient: Decimal
    price_override: Decimal | None = None
    notes: str | None = None

    effective_unit_price: Decimal
    subtotal: Decimal


class GroupBreakdown(BaseModel):
    key: ComponentGroup
    label: GroupLabel
    subtotal: Decimal = Decimal("0")
    items: list[ComponentLine] = Field(default_factory=list)


class StoredTotals(BaseModel):
    """Totals cached on the recipe row by the last recompute."""

    subtotal_abc: Decimal
    overhead_amount: Decimal
    final_unit_price: Decimal


class ComputedTotals(BaseModel):
    """Totals derived on the fly from the current component lines."""

    A: Decimal
    B: Decimal
    C: Decimal
    D: Decimal
    E: Decimal
    F: Decimal


class RecipeBreakdown(BaseModel):
    id: UUID
    overhead_percent: Decimal
    stored: StoredTotals
    computed: ComputedTotals
    groups: dict[ComponentGroup, GroupBreakdown]
    notes: str | None = None
    updated_at: datetime | None = None


class CategoryRef(BaseModel):
    id: UUID
    name: str


class CategorySummary(BaseModel):
    """Category row in a listing, with the caller's visible item count."""

    id: UUID
    scope: str
    name: str
    item_count: int = 0


class ItemBreakdown(BaseModel):
    """Fully materialized HSP item tree, read-only input for exporters."""

    id: UUID
    scope: str
    kode: str
    deskripsi: str
    satuan: str
    harga: Decimal
    category: CategoryRef | None = None
    recipe: RecipeBreakdown | None = None
    policy: PricePolicy = PricePolicy.CURRENT


class ImportRowError(BaseModel):
    """Row-level problem recorded during an import."""

    kode: str | None = None
    reason: str


class ImportSummary(BaseModel):
    """Counters reported after applying an HSP import."""

    scope: str
    use_harga_file: bool
    lock_existing_price: bool
    categories_total: int = 0
    categories_created: int = 0
    categories_updated: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_price_updated: int = 0
    errors: list[ImportRowError] = Field(default_factory=list)
