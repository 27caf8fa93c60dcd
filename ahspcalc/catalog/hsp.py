"""HSP categories and items, partitioned by scope.

Reads resolve the caller's rows over GLOBAL. By-kode writes from a user scope
go through the materializer so GLOBAL rows stay untouched; deleting a GLOBAL
item from a user scope leaves a tombstone in that scope.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, sessionmaker

from ahspcalc.catalog.validation import (
    clamp_skip,
    clamp_take,
    contains_ci,
    order_direction,
    required_text,
)
from ahspcalc.config import AppConfig, get_config
from ahspcalc.core.errors import ConflictError, NotFoundError, ValidationError
from ahspcalc.core.scope import GLOBAL, Scope, merge_override
from ahspcalc.db.connection import session_scope
from ahspcalc.db.models import HSPCategoryModel, HSPItemModel
from ahspcalc.models import CategorySummary, Page
from ahspcalc.recipe import repository
from ahspcalc.recipe.calculator import non_negative
from ahspcalc.recipe.materializer import Materializer

logger = logging.getLogger(__name__)

_ITEM_FIELDS = frozenset({"deskripsi", "satuan", "harga", "hsp_category_id"})


def _split(rows, scope: Scope):
    """Partition rows into (user rows, GLOBAL rows) for ``merge_override``."""
    user_rows = [row for row in rows if row.scope == scope and not scope.is_global]
    global_rows = [row for row in rows if row.scope == GLOBAL]
    return user_rows, global_rows


def _sort_items(items: list[HSPItemModel], order_by: str | None, order_dir: str | None) -> None:
    field = "harga" if order_by == "harga" else "kode"
    items.sort(key=lambda item: item.kode)
    items.sort(key=lambda item: getattr(item, field), reverse=order_direction(order_dir))


async def _require_category(session: AsyncSession, category_id: UUID) -> HSPCategoryModel:
    category = await session.get(HSPCategoryModel, category_id)
    if category is None:
        raise NotFoundError(f"Category not found: {category_id}")
    return category


class CatalogItemStore:
    """Category and item CRUD with scoped, merged listings."""

    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        config: AppConfig | None = None,
    ):
        self.session_factory = session_factory
        self.config = config

    @property
    def _pricing(self):
        return (self.config or get_config()).pricing

    async def _visible_categories(
        self, session: AsyncSession, scope: Scope
    ) -> tuple[list[HSPCategoryModel], dict[UUID, str]]:
        """Merged categories, plus a name lookup for every category id in view."""
        stmt = select(HSPCategoryModel).where(HSPCategoryModel.scope.in_([scope, GLOBAL]))
        result = await session.execute(stmt)
        rows = list(result.scalars().all())

        merged = merge_override(*_split(rows, scope), key_of=lambda row: row.name)
        return merged, {row.id: row.name for row in rows}

    async def _visible_items(
        self,
        session: AsyncSession,
        scope: Scope,
        with_category: bool = False,
    ) -> list[HSPItemModel]:
        """The caller's items merged over GLOBAL by kode, tombstones hidden."""
        stmt = select(HSPItemModel).where(HSPItemModel.scope.in_([scope, GLOBAL]))
        if with_category:
            stmt = stmt.options(selectinload(HSPItemModel.category))
        result = await session.execute(stmt)
        rows = list(result.scalars().all())

        merged = merge_override(*_split(rows, scope), key_of=lambda row: row.kode)
        return [row for row in merged if not row.is_deleted]

    # Categories

    async def list_categories(
        self,
        scope: Scope,
        q: str | None = None,
        skip: int | None = 0,
        take: int | None = 20,
    ) -> Page[CategorySummary]:
        skip = clamp_skip(skip)
        take = clamp_take(take, 20, self._pricing.category_page_max)

        async with session_scope(self.session_factory) as session:
            categories, names_by_id = await self._visible_categories(session, scope)
            items = await self._visible_items(session, scope)

        counts = Counter(names_by_id.get(item.hsp_category_id) for item in items)

        if q:
            categories = [row for row in categories if contains_ci(q, row.name)]
        categories.sort(key=lambda row: row.name)

        page = [
            CategorySummary(
                id=row.id,
                scope=row.scope.tag,
                name=row.name,
                item_count=counts.get(row.name, 0),
            )
            for row in categories[skip:skip + take]
        ]
        return Page(items=page, skip=skip, take=take, total=len(categories))

    async def create_category(self, scope: Scope, name: Any) -> HSPCategoryModel:
        category = HSPCategoryModel(scope=scope, name=required_text(name, "name"))
        async with session_scope(self.session_factory) as session:
            session.add(category)
            await session.flush()
            await session.refresh(category)

        logger.info(f"Created category {category.name!r} in {scope}")
        return category

    async def rename_category(self, category_id: UUID, name: Any) -> HSPCategoryModel:
        clean_name = required_text(name, "name")
        async with session_scope(self.session_factory) as session:
            category = await _require_category(session, category_id)
            category.name = clean_name
            await session.flush()
        return category

    async def delete_category(self, category_id: UUID) -> None:
        """Delete an empty category. Items (tombstones included) block deletion."""
        async with session_scope(self.session_factory) as session:
            category = await _require_category(session, category_id)

            stmt = select(func.count()).where(HSPItemModel.hsp_category_id == category_id)
            references = (await session.execute(stmt)).scalar_one()
            if references > 0:
                raise ConflictError(
                    f"Cannot delete category {category.name!r}: {references} items reference it"
                )
            await session.delete(category)

        logger.info(f"Deleted category {category_id}")

    # Items

    async def list_items(
        self,
        scope: Scope,
        category_id: UUID | None = None,
        kode: str | None = None,
        q: str | None = None,
        skip: int | None = 0,
        take: int | None = 50,
        order_by: str | None = "kode",
        order_dir: str | None = "asc",
    ) -> Page[HSPItemModel]:
        skip = clamp_skip(skip)
        take = clamp_take(take, 50, self._pricing.item_page_max)

        async with session_scope(self.session_factory) as session:
            items = await self._visible_items(session, scope, with_category=True)

        if category_id is not None:
            items = [item for item in items if item.hsp_category_id == category_id]
        if kode:
            items = [item for item in items if item.kode == kode]
        if q:
            items = [item for item in items if contains_ci(q, item.kode, item.deskripsi)]
        _sort_items(items, order_by, order_dir)

        return Page(items=items[skip:skip + take], skip=skip, take=take, total=len(items))

    async def list_all_grouped(
        self,
        scope: Scope,
        q: str | None = None,
        limit_per_category: int | None = 1000,
        include_empty: bool = False,
        item_order_by: str | None = "kode",
        item_order_dir: str | None = "asc",
    ) -> dict[str, list[HSPItemModel]]:
        """Every visible category name mapped to its (filtered) items.

        A non-positive ``limit_per_category`` means no limit. Categories left
        without items are dropped unless ``include_empty``.
        """
        async with session_scope(self.session_factory) as session:
            categories, names_by_id = await self._visible_categories(session, scope)
            items = await self._visible_items(session, scope)

        if q:
            items = [
                item for item in items if contains_ci(q, item.kode, item.deskripsi, item.satuan)
            ]
        _sort_items(items, item_order_by, item_order_dir)

        by_name: dict[str, list[HSPItemModel]] = {}
        for item in items:
            by_name.setdefault(names_by_id.get(item.hsp_category_id), []).append(item)

        limit = limit_per_category if limit_per_category and limit_per_category > 0 else None

        grouped: dict[str, list[HSPItemModel]] = {}
        for category in sorted(categories, key=lambda row: row.name):
            matched = by_name.get(category.name, [])
            if q and not matched and not contains_ci(q, category.name):
                continue
            if not matched and not include_empty:
                continue
            grouped[category.name] = matched[:limit]
        return grouped

    async def get_by_kode(self, scope: Scope, kode: str) -> HSPItemModel:
        """The item the caller sees for ``kode``, matching case-insensitively
        when there is no exact hit.
        """
        kode = (kode or "").strip()
        if not kode:
            raise ValidationError("kode is required")

        async with session_scope(self.session_factory) as session:
            item = await repository.resolve_item(
                session, scope, kode, with_tree=True, case_insensitive_fallback=True
            )
        if item is None:
            raise NotFoundError(f"HSP item not found: {kode}")
        return item

    async def create_item(
        self,
        scope: Scope,
        kode: Any,
        deskripsi: Any,
        category_id: UUID,
        satuan: Any = "",
        harga: Any = 0,
    ) -> HSPItemModel:
        clean_kode = required_text(kode, "kode")
        clean_deskripsi = required_text(deskripsi, "deskripsi")
        clean_satuan = satuan.strip() if isinstance(satuan, str) else ""
        price = non_negative(harga, "harga")

        async with session_scope(self.session_factory) as session:
            await _require_category(session, category_id)
            item = HSPItemModel(
                scope=scope,
                kode=clean_kode,
                deskripsi=clean_deskripsi,
                satuan=clean_satuan,
                harga=price,
                hsp_category_id=category_id,
                is_deleted=False,
            )
            session.add(item)
            await session.flush()
            await session.refresh(item)

        logger.info(f"Created HSP item {clean_kode} in {scope}")
        return item

    async def update_by_kode(
        self,
        scope: Scope,
        kode: str,
        fields: Mapping[str, Any],
    ) -> HSPItemModel:
        """Update the caller's copy of ``kode``, materializing it first."""
        unknown = set(fields) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item fields: {sorted(unknown)}")

        payload: dict[str, Any] = {}
        if "deskripsi" in fields:
            payload["deskripsi"] = required_text(fields["deskripsi"], "deskripsi")
        if "satuan" in fields:
            satuan = fields["satuan"]
            if not isinstance(satuan, str):
                raise ValidationError("satuan must be a string")
            payload["satuan"] = satuan.strip()
        if "harga" in fields:
            payload["harga"] = non_negative(fields["harga"], "harga")
        if "hsp_category_id" in fields:
            if fields["hsp_category_id"] is None:
                raise ValidationError("hsp_category_id must not be null")
            payload["hsp_category_id"] = fields["hsp_category_id"]

        async with session_scope(self.session_factory) as session:
            if "hsp_category_id" in payload:
                await _require_category(session, payload["hsp_category_id"])

            item = await Materializer(session).materialize_live(scope, kode)
            for name, value in payload.items():
                setattr(item, name, value)
            await session.flush()
            await session.refresh(item)

        return item

    async def delete_by_kode(self, scope: Scope, kode: str) -> None:
        """Tombstone the caller's view of ``kode``.

        An existing scoped row is flagged. When only GLOBAL has the item, a
        scoped tombstone (item fields only, no recipe) is written in its place.
        """
        async with session_scope(self.session_factory) as session:
            existing = await repository.get_scoped_item(session, scope, kode)
            if existing is not None:
                if existing.is_deleted:
                    raise NotFoundError(f"HSP item not found: {kode}")
                existing.is_deleted = True
                await session.flush()
                logger.info(f"Tombstoned {kode} in {scope}")
                return

            if scope.is_global:
                raise NotFoundError(f"HSP item not found: {kode}")

            source = await repository.get_scoped_item(session, GLOBAL, kode)
            if source is None or source.is_deleted:
                raise NotFoundError(f"HSP item not found: {kode}")

            session.add(
                HSPItemModel(
                    scope=scope,
                    kode=source.kode,
                    deskripsi=source.deskripsi,
                    satuan=source.satuan,
                    harga=source.harga,
                    hsp_category_id=source.hsp_category_id,
                    is_deleted=True,
                )
            )
            await session.flush()

        logger.info(f"Wrote tombstone for GLOBAL {kode} in {scope}")
