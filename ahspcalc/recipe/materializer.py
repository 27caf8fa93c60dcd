"""Copy-on-write materialization of GLOBAL catalog items.

A caller edits a GLOBAL item as if it were private: the first write clones
the item, its recipe and every component into the caller's scope and all
further writes land on the clone. The GLOBAL rows are never mutated.

The clone is built by a pure function (``clone_into_scope``) and persisted by
``Materializer.materialize`` inside the caller's transaction, so the tree is
saved whole or not at all.
"""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from ahspcalc.core.errors import NotFoundError
from ahspcalc.core.scope import GLOBAL, Scope
from ahspcalc.db.models import AHSPComponentModel, AHSPRecipeModel, HSPItemModel
from ahspcalc.recipe import repository

logger = logging.getLogger(__name__)


def clone_into_scope(source: HSPItemModel, scope: Scope) -> HSPItemModel:
    """Build a new item tree in ``scope`` from a fully loaded source item.

    Fresh identities, value fields copied verbatim. The category and the
    master item references are shared, not cloned. ``source.recipe`` and its
    components must already be loaded.
    """
    clone = HSPItemModel(
        id=uuid4(),
        scope=scope,
        kode=source.kode,
        deskripsi=source.deskripsi,
        satuan=source.satuan,
        harga=source.harga,
        hsp_category_id=source.hsp_category_id,
        is_deleted=False,
    )

    recipe = source.recipe
    if recipe is None:
        return clone

    clone.recipe = AHSPRecipeModel(
        id=uuid4(),
        scope=scope,
        overhead_percent=recipe.overhead_percent,
        subtotal_abc=recipe.subtotal_abc,
        overhead_amount=recipe.overhead_amount,
        final_unit_price=recipe.final_unit_price,
        notes=recipe.notes,
        components=[clone_component(component, scope) for component in recipe.components],
    )
    return clone


def clone_component(component: AHSPComponentModel, scope: Scope) -> AHSPComponentModel:
    return AHSPComponentModel(
        id=uuid4(),
        scope=scope,
        master_item_id=component.master_item_id,
        group=component.group,
        name_snapshot=component.name_snapshot,
        unit_snapshot=component.unit_snapshot,
        unit_price_snapshot=component.unit_price_snapshot,
        coefficient=component.coefficient,
        price_override=component.price_override,
        effective_unit_price=component.effective_unit_price,
        subtotal=component.subtotal,
        order=component.order,
        notes=component.notes,
    )


class Materializer:
    """Creates scoped copies of GLOBAL items on first write."""

    def __init__(self, session: AsyncSession):
        """Initialize materializer with the caller's session.

        Args:
            session: Session whose transaction the copy joins
        """
        self.session = session

    async def materialize(self, scope: Scope, kode: str) -> HSPItemModel:
        """Return the (scope, kode) item, cloning it from GLOBAL if absent.

        Idempotent: an existing scoped row is returned unchanged, tombstoned
        or not. For GLOBAL scope this is a plain lookup.

        Raises:
            NotFoundError: No row at (scope, kode) and none in GLOBAL
            ConflictError: (via the unit of work) a concurrent writer created
                the same (scope, kode) first; re-read to take the fast path
        """
        existing = await repository.get_scoped_item(self.session, scope, kode)
        if existing is not None:
            return existing

        if scope.is_global:
            raise NotFoundError(f"HSP item not found: {kode}")

        source = await repository.get_scoped_item(self.session, GLOBAL, kode, with_tree=True)
        if source is None or source.is_deleted:
            raise NotFoundError(f"HSP item not found: {kode}")

        clone = clone_into_scope(source, scope)
        self.session.add(clone)
        await self.session.flush()

        component_count = len(source.recipe.components) if source.recipe else 0
        logger.info(
            f"Materialized {kode} into {scope} "
            f"(recipe={'yes' if source.recipe else 'no'}, components={component_count})"
        )
        return clone

    async def materialize_live(self, scope: Scope, kode: str) -> HSPItemModel:
        """Materialize, refusing items the scope has tombstoned."""
        item = await self.materialize(scope, kode)
        if item.is_deleted:
            raise NotFoundError(f"HSP item not found: {kode}")
        return item
