"""Recipe mutations and the breakdown read path.

By-kode mutations materialize the caller's copy first, so editing a GLOBAL
item from a user scope never touches the GLOBAL rows.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, sessionmaker

from ahspcalc.config import AppConfig, get_config
from ahspcalc.core.errors import NotFoundError, ValidationError
from ahspcalc.core.scope import Scope
from ahspcalc.db.connection import session_scope
from ahspcalc.db.models import AHSPComponentModel, AHSPRecipeModel, HSPItemModel
from ahspcalc.models import (
    CategoryRef,
    ComponentGroup,
    ComponentLine,
    ComputedTotals,
    GroupBreakdown,
    ItemBreakdown,
    MasterItemRef,
    MasterItemType,
    PricePolicy,
    RecipeBreakdown,
    StoredTotals,
    group_label,
)
from ahspcalc.recipe import repository
from ahspcalc.recipe.calculator import (
    ZERO,
    component_subtotal,
    compute_totals,
    effective_unit_price,
    non_negative,
    parse_group,
    resolve_unit_price,
)
from ahspcalc.recipe.materializer import Materializer

logger = logging.getLogger(__name__)

COMPONENT_FIELDS = frozenset({"coefficient", "price_override", "notes", "order"})


def _clean_notes(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("notes must be a string")
    return value.strip() or None


def _validate_component_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - COMPONENT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown component fields: {sorted(unknown)}")

    clean: dict[str, Any] = {}
    if "coefficient" in fields:
        if fields["coefficient"] is None:
            raise ValidationError("coefficient must not be null")
        clean["coefficient"] = non_negative(fields["coefficient"], "coefficient")
    if "price_override" in fields:
        override = fields["price_override"]
        clean["price_override"] = (
            None if override is None else non_negative(override, "price_override")
        )
    if "notes" in fields:
        clean["notes"] = _clean_notes(fields["notes"])
    if "order" in fields:
        order = fields["order"]
        if isinstance(order, bool) or not isinstance(order, int) or order < 0:
            raise ValidationError("order must be a non-negative integer")
        clean["order"] = order
    return clean


class RecipeService:
    """Component and overhead edits on a caller's recipes."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        config: AppConfig | None = None,
    ):
        self.session_factory = session_factory
        self.config = config

    @property
    def default_overhead_percent(self) -> Decimal:
        config = self.config or get_config()
        return config.pricing.default_overhead_percent

    async def _ensure_recipe(
        self,
        session: AsyncSession,
        item: HSPItemModel,
        overhead_percent: Decimal | None = None,
    ) -> AHSPRecipeModel:
        recipe = await repository.get_recipe_for_item(session, item.id)
        if recipe is not None:
            return recipe

        recipe = AHSPRecipeModel(
            scope=item.scope,
            hsp_item_id=item.id,
            overhead_percent=(
                self.default_overhead_percent if overhead_percent is None else overhead_percent
            ),
            subtotal_abc=ZERO,
            overhead_amount=ZERO,
            final_unit_price=ZERO,
        )
        session.add(recipe)
        await session.flush()
        return recipe

    async def set_overhead_by_kode(
        self,
        scope: Scope,
        kode: str,
        overhead_percent: Any,
    ) -> AHSPRecipeModel:
        """Set the overhead percent on the caller's copy of ``kode``.

        Creates a bare recipe (zero totals) when the item has none. Stored
        totals are left for the next recompute.
        """
        percent = non_negative(overhead_percent, "overhead_percent")

        async with session_scope(self.session_factory) as session:
            item = await Materializer(session).materialize_live(scope, kode)
            recipe = await repository.get_recipe_for_item(session, item.id)
            if recipe is None:
                recipe = await self._ensure_recipe(session, item, percent)
            else:
                recipe.overhead_percent = percent
                await session.flush()
            await session.refresh(recipe)

        logger.info(f"Overhead for {kode} in {scope} set to {percent}%")
        return recipe

    async def add_component_by_kode(
        self,
        scope: Scope,
        kode: str,
        group: Any,
        master_item_id: UUID,
        coefficient: Any = None,
        price_override: Any = None,
        notes: str | None = None,
    ) -> AHSPComponentModel:
        """Append a component to the caller's recipe for ``kode``.

        The line is ordered last in its group and snapshots the master
        item's name, unit and price.

        Raises:
            ValidationError: Bad group, coefficient or override (before any write)
            NotFoundError: Item (in scope or GLOBAL) or master item missing
        """
        component_group = parse_group(group)
        coef = Decimal("1") if coefficient is None else non_negative(coefficient, "coefficient")
        override = None if price_override is None else non_negative(price_override, "price_override")
        clean_notes = _clean_notes(notes)

        async with session_scope(self.session_factory) as session:
            item = await Materializer(session).materialize_live(scope, kode)
            recipe = await self._ensure_recipe(session, item)

            master = await repository.get_master_item(session, master_item_id)
            if master is None:
                raise NotFoundError(f"Master item not found: {master_item_id}")

            order = await repository.next_component_order(
                session, recipe.id, component_group.value
            )
            unit_price = effective_unit_price(override, master.price)

            component = AHSPComponentModel(
                scope=item.scope,
                ahsp_id=recipe.id,
                master_item_id=master.id,
                group=component_group.value,
                name_snapshot=master.name,
                unit_snapshot=master.unit,
                unit_price_snapshot=master.price,
                coefficient=coef,
                price_override=override,
                effective_unit_price=unit_price,
                subtotal=component_subtotal(coef, unit_price),
                order=order,
                notes=clean_notes,
            )
            session.add(component)
            await session.flush()

        logger.info(
            f"Added {component_group.value} component {master.code} to {kode} in {scope} "
            f"(order={order})"
        )
        return component

    async def update_component(
        self,
        component_id: UUID,
        fields: Mapping[str, Any],
    ) -> AHSPComponentModel:
        """Apply a partial update and re-derive the line's price and subtotal.

        Recipe totals are not recomputed here.
        """
        clean = _validate_component_fields(fields)

        async with session_scope(self.session_factory) as session:
            stmt = (
                select(AHSPComponentModel)
                .where(AHSPComponentModel.id == component_id)
                .options(selectinload(AHSPComponentModel.master_item))
            )
            result = await session.execute(stmt)
            component = result.scalar_one_or_none()
            if component is None:
                raise NotFoundError(f"Component not found: {component_id}")

            for name, value in clean.items():
                setattr(component, name, value)

            master_price = component.master_item.price if component.master_item else ZERO
            unit_price = effective_unit_price(component.price_override, master_price)
            component.effective_unit_price = unit_price
            component.subtotal = component_subtotal(component.coefficient, unit_price)
            await session.flush()

        return component

    async def delete_component(self, component_id: UUID) -> None:
        async with session_scope(self.session_factory) as session:
            component = await session.get(AHSPComponentModel, component_id)
            if component is None:
                raise NotFoundError(f"Component not found: {component_id}")
            await session.delete(component)

        logger.info(f"Deleted component {component_id}")

    async def get_breakdown_by_kode(
        self,
        scope: Scope,
        kode: str,
        policy: PricePolicy = PricePolicy.CURRENT,
        include_master: bool = True,
    ) -> ItemBreakdown:
        """Breakdown of the item the caller sees for ``kode`` (own copy, else GLOBAL)."""
        async with session_scope(self.session_factory) as session:
            item = await repository.resolve_item(
                session, scope, kode, with_tree=True, case_insensitive_fallback=True
            )
            if item is None:
                raise NotFoundError(f"HSP item not found: {kode}")
            return build_breakdown(item, policy, include_master)

    async def get_breakdown(
        self,
        item_id: UUID,
        policy: PricePolicy = PricePolicy.CURRENT,
        include_master: bool = True,
    ) -> ItemBreakdown:
        async with session_scope(self.session_factory) as session:
            item = await repository.get_item_by_id(session, item_id, with_tree=True)
            if item is None or item.is_deleted:
                raise NotFoundError(f"HSP item not found: {item_id}")
            return build_breakdown(item, policy, include_master)


def build_breakdown(
    item: HSPItemModel,
    policy: PricePolicy = PricePolicy.CURRENT,
    include_master: bool = True,
) -> ItemBreakdown:
    """Build the read model from an item loaded with its full tree."""
    category = None
    if item.category is not None:
        category = CategoryRef(id=item.category.id, name=item.category.name)

    recipe = None
    if item.recipe is not None:
        recipe = _recipe_breakdown(item.recipe, policy, include_master)

    return ItemBreakdown(
        id=item.id,
        scope=item.scope.tag,
        kode=item.kode,
        deskripsi=item.deskripsi,
        satuan=item.satuan,
        harga=item.harga,
        category=category,
        recipe=recipe,
        policy=policy,
    )


def _recipe_breakdown(
    recipe: AHSPRecipeModel,
    policy: PricePolicy,
    include_master: bool,
) -> RecipeBreakdown:
    groups = {
        group: GroupBreakdown(key=group, label=group_label(group))
        for group in ComponentGroup
    }

    for component in recipe.components:
        master = component.master_item
        unit_price = resolve_unit_price(
            policy,
            component.price_override,
            master.price if master is not None else None,
            component.unit_price_snapshot,
        )
        subtotal = component_subtotal(component.coefficient, unit_price)
        group = ComponentGroup(component.group)

        master_ref = None
        if include_master and master is not None:
            master_ref = MasterItemRef(
                id=master.id,
                code=master.code,
                name=master.name,
                unit=master.unit,
                price=master.price,
                type=MasterItemType(master.type),
            )

        bucket = groups[group]
        bucket.items.append(
            ComponentLine(
                id=component.id,
                order=component.order,
                group=group,
                master_item_id=component.master_item_id,
                master_item=master_ref,
                name_snapshot=component.name_snapshot,
                unit_snapshot=component.unit_snapshot,
                unit_price_snapshot=component.unit_price_snapshot,
                coefficient=component.coefficient,
                price_override=component.price_override,
                notes=component.notes,
                effective_unit_price=unit_price,
                subtotal=subtotal,
            )
        )
        bucket.subtotal += subtotal

    for bucket in groups.values():
        bucket.items.sort(key=lambda line: line.order)

    totals = compute_totals(
        ((group, bucket.subtotal) for group, bucket in groups.items()),
        recipe.overhead_percent,
    )

    return RecipeBreakdown(
        id=recipe.id,
        overhead_percent=recipe.overhead_percent,
        stored=StoredTotals(
            subtotal_abc=recipe.subtotal_abc,
            overhead_amount=recipe.overhead_amount,
            final_unit_price=recipe.final_unit_price,
        ),
        computed=ComputedTotals(
            A=totals.A,
            B=totals.B,
            C=totals.C,
            D=totals.D,
            E=totals.E,
            F=totals.F,
        ),
        groups=groups,
        notes=recipe.notes,
        updated_at=recipe.updated_at,
    )
