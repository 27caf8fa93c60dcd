"""Recompute propagation for AHSP recipes.

Keeps component caches (effective unit price, subtotal), recipe totals and
the parent item's harga consistent with current master prices.

Each recipe is recomputed in its own transaction: master prices are read
inside that transaction and every write for the recipe commits together.
When a master price changes, every affected recipe (in every scope) gets an
independent transaction, so one failing recipe never rolls back another.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, sessionmaker

from ahspcalc.core.errors import AHSPError, ComputationInvariantError, NotFoundError
from ahspcalc.db.connection import session_scope
from ahspcalc.db.models import AHSPRecipeModel, HSPItemModel, MasterItemModel
from ahspcalc.models import ComponentGroup, RecomputeReport
from ahspcalc.recipe import repository
from ahspcalc.recipe.calculator import (
    RecipeTotals,
    component_subtotal,
    compute_totals,
    effective_unit_price,
)

logger = logging.getLogger(__name__)


async def load_recipe(session: AsyncSession, recipe_id: UUID) -> AHSPRecipeModel | None:
    stmt = (
        select(AHSPRecipeModel)
        .where(AHSPRecipeModel.id == recipe_id)
        .options(
            selectinload(AHSPRecipeModel.components),
            selectinload(AHSPRecipeModel.hsp_item),
        )
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def snapshot_master_prices(
    session: AsyncSession,
    master_item_ids: set[UUID],
) -> dict[UUID, object]:
    """Read the current price of every referenced master item.

    Rows are share-locked where the engine supports it so a concurrent price
    update cannot interleave with this recipe's writes.
    """
    if not master_item_ids:
        return {}

    stmt = (
        select(MasterItemModel.id, MasterItemModel.price)
        .where(MasterItemModel.id.in_(master_item_ids))
        .with_for_update(read=True)
    )
    result = await session.execute(stmt)
    return {row.id: row.price for row in result.all()}


async def recompute_recipe(session: AsyncSession, recipe: AHSPRecipeModel) -> RecipeTotals:
    """Re-derive and stage every cached value of one loaded recipe.

    The caller's unit of work commits the component, recipe and item writes
    together.

    Raises:
        ComputationInvariantError: Parent item or a referenced master item
            is missing
    """
    item: HSPItemModel | None = recipe.hsp_item
    if item is None:
        raise ComputationInvariantError(f"Recipe {recipe.id} has no parent HSP item")

    prices = await snapshot_master_prices(
        session, {component.master_item_id for component in recipe.components}
    )

    lines: list[tuple[ComponentGroup, object]] = []
    for component in recipe.components:
        if component.master_item_id not in prices:
            raise ComputationInvariantError(
                f"Component {component.id} references missing master item "
                f"{component.master_item_id}"
            )
        unit_price = effective_unit_price(
            component.price_override, prices[component.master_item_id]
        )
        subtotal = component_subtotal(component.coefficient, unit_price)

        component.effective_unit_price = unit_price
        component.subtotal = subtotal
        lines.append((ComponentGroup(component.group), subtotal))

    totals = compute_totals(lines, recipe.overhead_percent)

    recipe.subtotal_abc = totals.D
    recipe.overhead_amount = totals.E
    recipe.final_unit_price = totals.F
    item.harga = totals.F

    await session.flush()
    return totals


class RecomputePropagator:
    """Recomputes one item's recipe, or every recipe touching a master item."""

    def __init__(self, session_factory: sessionmaker | None = None):
        """Initialize propagator.

        Args:
            session_factory: Factory for per-recipe sessions (global factory if None)
        """
        self.session_factory = session_factory

    async def recompute_item(self, item_id: UUID) -> RecipeTotals:
        """Recompute the recipe of one HSP item and sync its harga.

        Raises:
            NotFoundError: Item or its recipe does not exist (no writes)
        """
        async with session_scope(self.session_factory) as session:
            item = await repository.get_item_by_id(session, item_id)
            if item is None:
                raise NotFoundError(f"HSP item not found: {item_id}")

            recipe_row = await repository.get_recipe_for_item(session, item_id)
            if recipe_row is None:
                raise NotFoundError(f"Recipe not found for item: {item_id}")

            recipe = await load_recipe(session, recipe_row.id)
            if recipe is None:
                raise ComputationInvariantError(f"Recipe {recipe_row.id} vanished mid-recompute")

            totals = await recompute_recipe(session, recipe)

        logger.info(
            f"Recomputed {item.kode} ({item.scope}): D={totals.D} E={totals.E} F={totals.F}"
        )
        return totals

    async def recompute_master_item(self, master_item_id: UUID) -> RecomputeReport:
        """Recompute every recipe, in every scope, with a component on this master item.

        Failures are recorded per recipe and do not stop the others.
        """
        async with session_scope(self.session_factory) as session:
            recipe_ids = await repository.recipe_ids_using_master(session, master_item_id)

        report = RecomputeReport(master_item_id=master_item_id)
        for recipe_id in recipe_ids:
            try:
                async with session_scope(self.session_factory) as session:
                    recipe = await load_recipe(session, recipe_id)
                    if recipe is None:
                        raise NotFoundError(f"Recipe not found: {recipe_id}")
                    await recompute_recipe(session, recipe)
            except (AHSPError, SQLAlchemyError) as e:
                logger.error(f"Recompute failed for recipe {recipe_id}: {e}", exc_info=True)
                report.failed[recipe_id] = str(e)
                continue

            report.recomputed.append(recipe_id)

        logger.info(
            f"Master item {master_item_id}: {len(report.recomputed)} recipes recomputed, "
            f"{len(report.failed)} failed"
        )
        return report
