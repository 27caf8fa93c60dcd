"""Apply parsed HSP records to the catalog.

Categories are upserted by (scope, name) and items by (scope, kode) in one
transaction with a time budget. Existing prices are protected by the lock
rule: a file price replaces a stored price only when file prices are in use
and the stored price is unlocked (or still zero).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from ahspcalc.config import AppConfig, get_config
from ahspcalc.core.errors import ImportTimeoutError
from ahspcalc.core.scope import Scope
from ahspcalc.db.connection import session_scope
from ahspcalc.db.models import HSPCategoryModel, HSPItemModel
from ahspcalc.ingestion.hsp_parser import parse_worksheet
from ahspcalc.ingestion.types import CategoryMarker, HSPRecord, ItemRow
from ahspcalc.models import ImportRowError, ImportSummary

logger = logging.getLogger(__name__)

UNCATEGORIZED = "UNCATEGORIZED"


@dataclass
class _PendingItem:
    kode: str
    deskripsi: str
    satuan: str
    harga: Decimal
    category: str


def group_by_category(records: Iterable[HSPRecord]) -> dict[str, list[ItemRow]]:
    """Attach each item to the nearest preceding category marker.

    Markers register their category even when no item follows.
    """
    grouped: dict[str, list[ItemRow]] = {}
    current: str | None = None
    for record in records:
        if isinstance(record, CategoryMarker):
            current = record.name
            grouped.setdefault(current, [])
            continue
        if current is None:
            current = UNCATEGORIZED
            grouped.setdefault(current, [])
        grouped[current].append(record)
    return grouped


def dedupe_items(
    grouped: dict[str, list[ItemRow]],
    use_harga_file: bool,
) -> tuple[dict[str, _PendingItem], list[ImportRowError]]:
    """One entry per kode (last occurrence wins), plus row-level errors."""
    pending: dict[str, _PendingItem] = {}
    errors: list[ImportRowError] = []

    for category, items in grouped.items():
        for row in items:
            kode = (row.kode or "").strip()
            deskripsi = (row.deskripsi or "").strip()
            if not kode:
                errors.append(ImportRowError(reason="Missing kode"))
                continue
            if not deskripsi:
                errors.append(ImportRowError(kode=kode, reason="Missing deskripsi"))
                continue

            harga = row.harga if use_harga_file else Decimal("0")
            if harga < 0:
                errors.append(ImportRowError(kode=kode, reason="Negative harga"))
                continue

            pending[kode] = _PendingItem(
                kode=kode,
                deskripsi=deskripsi,
                satuan=(row.satuan or "").strip(),
                harga=harga,
                category=category,
            )
    return pending, errors


def should_update_price(use_harga_file: bool, lock_existing_price: bool, current: Decimal) -> bool:
    return use_harga_file and (not lock_existing_price or current == 0)


async def _upsert_categories(
    session: AsyncSession,
    scope: Scope,
    names: list[str],
    summary: ImportSummary,
) -> dict[str, UUID]:
    existing: dict[str, HSPCategoryModel] = {}
    if names:
        stmt = select(HSPCategoryModel).where(
            HSPCategoryModel.scope == scope,
            HSPCategoryModel.name.in_(names),
        )
        result = await session.execute(stmt)
        existing = {row.name: row for row in result.scalars().all()}

    for name in names:
        if name in existing:
            summary.categories_updated += 1
            continue
        category = HSPCategoryModel(scope=scope, name=name)
        session.add(category)
        existing[name] = category
        summary.categories_created += 1

    await session.flush()
    return {name: category.id for name, category in existing.items()}


async def _upsert_items(
    session: AsyncSession,
    scope: Scope,
    pending: dict[str, _PendingItem],
    category_ids: dict[str, UUID],
    summary: ImportSummary,
) -> None:
    existing: dict[str, HSPItemModel] = {}
    if pending:
        stmt = select(HSPItemModel).where(
            HSPItemModel.scope == scope,
            HSPItemModel.kode.in_(list(pending)),
        )
        result = await session.execute(stmt)
        existing = {row.kode: row for row in result.scalars().all()}

    for kode, row in pending.items():
        category_id = category_ids[row.category]
        item = existing.get(kode)

        if item is None:
            session.add(
                HSPItemModel(
                    scope=scope,
                    kode=kode,
                    deskripsi=row.deskripsi,
                    satuan=row.satuan,
                    harga=row.harga,
                    hsp_category_id=category_id,
                    is_deleted=False,
                )
            )
            summary.items_created += 1
            continue

        item.deskripsi = row.deskripsi
        item.satuan = row.satuan
        item.hsp_category_id = category_id
        item.is_deleted = False
        if should_update_price(summary.use_harga_file, summary.lock_existing_price, item.harga):
            if item.harga != row.harga:
                summary.items_price_updated += 1
            item.harga = row.harga
        summary.items_updated += 1

    await session.flush()


async def apply_import(
    scope: Scope,
    records: Iterable[HSPRecord],
    use_harga_file: bool | None = None,
    lock_existing_price: bool | None = None,
    session_factory: sessionmaker | None = None,
    config: AppConfig | None = None,
) -> ImportSummary:
    """Upsert parsed categories and items into ``scope``.

    Options left as None fall back to the import configuration.

    Raises:
        ImportTimeoutError: Transaction exceeded its budget; nothing was written
        ConflictError: A concurrent writer violated a unique key; nothing was written
    """
    config = config or get_config()
    if use_harga_file is None:
        use_harga_file = config.imports.use_harga_file
    if lock_existing_price is None:
        lock_existing_price = config.imports.lock_existing_price

    grouped = group_by_category(records)
    pending, errors = dedupe_items(grouped, use_harga_file)

    summary = ImportSummary(
        scope=scope.tag,
        use_harga_file=use_harga_file,
        lock_existing_price=lock_existing_price,
        categories_total=len(grouped),
        errors=errors,
    )

    budget = config.imports.transaction_timeout_seconds
    try:
        async with asyncio.timeout(budget):
            async with session_scope(session_factory) as session:
                category_ids = await _upsert_categories(session, scope, list(grouped), summary)
                await _upsert_items(session, scope, pending, category_ids, summary)
    except TimeoutError as e:
        logger.error(f"HSP import into {scope} exceeded {budget}s and was rolled back")
        raise ImportTimeoutError(f"Import transaction exceeded {budget}s") from e

    logger.info(
        f"HSP import into {scope}: categories {summary.categories_created} created / "
        f"{summary.categories_updated} existing, items {summary.items_created} created / "
        f"{summary.items_updated} updated ({summary.items_price_updated} repriced), "
        f"{len(summary.errors)} errors"
    )
    return summary


async def import_hsp_file(
    path: Path | str,
    scope: Scope,
    use_harga_file: bool | None = None,
    lock_existing_price: bool | None = None,
    session_factory: sessionmaker | None = None,
    config: AppConfig | None = None,
) -> ImportSummary:
    """Parse a worksheet file and apply it to ``scope``."""
    config = config or get_config()
    parsed = parse_worksheet(path, header_scan_rows=config.imports.header_scan_rows)
    return await apply_import(
        scope,
        parsed.records,
        use_harga_file=use_harga_file,
        lock_existing_price=lock_existing_price,
        session_factory=session_factory,
        config=config,
    )
