"""Database queries for HSP items, recipes and components."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ahspcalc.core.scope import GLOBAL, Scope, merge_override
from ahspcalc.db.models import (
    AHSPComponentModel,
    AHSPRecipeModel,
    HSPItemModel,
    MasterItemModel,
)


def item_tree_options():
    """Eager-load an item's category, recipe, components and master items."""
    return (
        selectinload(HSPItemModel.category),
        selectinload(HSPItemModel.recipe)
        .selectinload(AHSPRecipeModel.components)
        .selectinload(AHSPComponentModel.master_item),
    )


async def get_scoped_item(
    session: AsyncSession,
    scope: Scope,
    kode: str,
    with_tree: bool = False,
) -> HSPItemModel | None:
    """Exact lookup at (scope, kode), tombstones included."""
    stmt = select(HSPItemModel).where(
        HSPItemModel.scope == scope,
        HSPItemModel.kode == kode,
    )
    if with_tree:
        stmt = stmt.options(*item_tree_options())

    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_item_by_id(
    session: AsyncSession,
    item_id: UUID,
    with_tree: bool = False,
) -> HSPItemModel | None:
    stmt = select(HSPItemModel).where(HSPItemModel.id == item_id)
    if with_tree:
        stmt = stmt.options(*item_tree_options())

    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def resolve_item(
    session: AsyncSession,
    scope: Scope,
    kode: str,
    with_tree: bool = False,
    case_insensitive_fallback: bool = False,
) -> HSPItemModel | None:
    """Return the row the caller sees for ``kode``: their own, else GLOBAL.

    A tombstone in the winning row hides the item.
    """
    rows = await _rows_for_kode(session, scope, HSPItemModel.kode == kode, with_tree)
    if not rows and case_insensitive_fallback:
        rows = await _rows_for_kode(
            session, scope, func.lower(HSPItemModel.kode) == kode.lower(), with_tree
        )
    if not rows:
        return None

    merged = merge_override(
        [row for row in rows if row.scope == scope and not scope.is_global],
        [row for row in rows if row.scope == GLOBAL],
        key_of=lambda row: row.kode,
    )
    visible = [row for row in merged if not row.is_deleted]
    return visible[0] if visible else None


async def _rows_for_kode(session, scope, condition, with_tree):
    stmt = select(HSPItemModel).where(
        condition,
        HSPItemModel.scope.in_([scope, GLOBAL]),
    )
    if with_tree:
        stmt = stmt.options(*item_tree_options())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_recipe_for_item(
    session: AsyncSession,
    item_id: UUID,
    with_components: bool = False,
) -> AHSPRecipeModel | None:
    stmt = select(AHSPRecipeModel).where(AHSPRecipeModel.hsp_item_id == item_id)
    if with_components:
        stmt = stmt.options(
            selectinload(AHSPRecipeModel.components).selectinload(
                AHSPComponentModel.master_item
            )
        )

    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def next_component_order(
    session: AsyncSession,
    recipe_id: UUID,
    group: str,
) -> int:
    """One past the highest order in the (recipe, group) bucket; 1 when empty."""
    stmt = select(func.max(AHSPComponentModel.order)).where(
        AHSPComponentModel.ahsp_id == recipe_id,
        AHSPComponentModel.group == group,
    )
    result = await session.execute(stmt)
    current = result.scalar_one_or_none()
    return (current or 0) + 1


async def recipe_ids_using_master(
    session: AsyncSession,
    master_item_id: UUID,
) -> list[UUID]:
    """Distinct recipes (in every scope) with a component on ``master_item_id``."""
    stmt = (
        select(AHSPComponentModel.ahsp_id)
        .where(AHSPComponentModel.master_item_id == master_item_id)
        .distinct()
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_components_using_master(
    session: AsyncSession,
    master_item_id: UUID,
) -> int:
    stmt = select(func.count()).where(
        AHSPComponentModel.master_item_id == master_item_id
    )
    result = await session.execute(stmt)
    return result.scalar_one()


async def get_master_item(
    session: AsyncSession,
    master_item_id: UUID,
) -> MasterItemModel | None:
    return await session.get(MasterItemModel, master_item_id)
