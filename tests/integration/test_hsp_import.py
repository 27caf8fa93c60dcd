"""Integration tests for HSP price-list import."""

from __future__ import annotations

import asyncio
import dataclasses
from decimal import Decimal

import pytest

from ahspcalc.core.errors import ImportTimeoutError, NotFoundError
from ahspcalc.core.scope import GLOBAL, UserScope
from ahspcalc.ingestion import hsp_import
from ahspcalc.ingestion.hsp_import import apply_import, import_hsp_file
from ahspcalc.ingestion.types import CategoryMarker, ItemRow

U1 = UserScope("u1")

RECORDS = [
    CategoryMarker("PERSIAPAN"),
    ItemRow("A.1.1.1", "Pembersihan lapangan", "m2", Decimal("12500")),
    ItemRow("A.1.1.2", "Bouwplank", "m'", Decimal("95000")),
    CategoryMarker("TANAH"),
    ItemRow("B.1.1.1", "Galian tanah", "m3", Decimal("85000")),
]


async def _run(records, session_factory, config, **options):
    return await apply_import(
        GLOBAL, records, session_factory=session_factory, config=config, **options
    )


@pytest.mark.asyncio
async def test_import_creates_categories_and_items(session_factory, app_config, item_store):
    summary = await _run(RECORDS, session_factory, app_config, use_harga_file=True)

    assert summary.scope == "GLOBAL"
    assert summary.categories_total == 2
    assert summary.categories_created == 2
    assert summary.items_created == 3
    assert summary.errors == []

    grouped = await item_store.list_all_grouped(GLOBAL)
    assert {name: [i.kode for i in items] for name, items in grouped.items()} == {
        "PERSIAPAN": ["A.1.1.1", "A.1.1.2"],
        "TANAH": ["B.1.1.1"],
    }
    assert (await item_store.get_by_kode(GLOBAL, "B.1.1.1")).harga == Decimal("85000")


@pytest.mark.asyncio
async def test_file_prices_ignored_by_default(session_factory, app_config, item_store):
    summary = await _run(RECORDS, session_factory, app_config)

    assert summary.use_harga_file is False
    assert summary.lock_existing_price is True
    assert (await item_store.get_by_kode(GLOBAL, "A.1.1.1")).harga == Decimal("0")


@pytest.mark.asyncio
async def test_reimport_with_lock_keeps_price_but_updates_fields(
    session_factory, app_config, item_store
):
    await _run(RECORDS, session_factory, app_config, use_harga_file=True)

    changed = [
        CategoryMarker("TANAH"),
        ItemRow("A.1.1.1", "Pembersihan dan perataan", "m2", Decimal("99999")),
    ]
    summary = await _run(
        changed, session_factory, app_config, use_harga_file=True, lock_existing_price=True
    )

    assert summary.categories_updated == 1
    assert summary.items_updated == 1
    assert summary.items_price_updated == 0

    item = await item_store.get_by_kode(GLOBAL, "A.1.1.1")
    assert item.deskripsi == "Pembersihan dan perataan"
    assert item.category.name == "TANAH"
    assert item.harga == Decimal("12500")


@pytest.mark.asyncio
async def test_reimport_without_lock_replaces_price(session_factory, app_config, item_store):
    await _run(RECORDS, session_factory, app_config, use_harga_file=True)

    changed = [CategoryMarker("PERSIAPAN"), ItemRow("A.1.1.1", "Pembersihan", "m2", Decimal("15000"))]
    summary = await _run(
        changed, session_factory, app_config, use_harga_file=True, lock_existing_price=False
    )

    assert summary.items_price_updated == 1
    assert (await item_store.get_by_kode(GLOBAL, "A.1.1.1")).harga == Decimal("15000")


@pytest.mark.asyncio
async def test_lock_still_fills_zero_prices(session_factory, app_config, item_store):
    await _run(RECORDS, session_factory, app_config)

    summary = await _run(RECORDS, session_factory, app_config, use_harga_file=True, lock_existing_price=True)

    assert summary.items_price_updated == 3
    assert (await item_store.get_by_kode(GLOBAL, "A.1.1.2")).harga == Decimal("95000")


@pytest.mark.asyncio
async def test_import_into_user_scope_revives_tombstone(session_factory, app_config, item_store, seed):
    category = await seed.category("PERSIAPAN")
    await seed.item("A.1.1.1", category.id, deskripsi="Versi global")
    await item_store.delete_by_kode(U1, "A.1.1.1")

    with pytest.raises(NotFoundError):
        await item_store.get_by_kode(U1, "A.1.1.1")

    summary = await apply_import(
        U1, RECORDS[:2], session_factory=session_factory, config=app_config
    )

    assert summary.scope == "u:u1"
    assert summary.categories_created == 1
    assert summary.items_updated == 1

    item = await item_store.get_by_kode(U1, "A.1.1.1")
    assert item.scope == U1
    assert item.deskripsi == "Pembersihan lapangan"
    assert (await item_store.get_by_kode(GLOBAL, "A.1.1.1")).deskripsi == "Versi global"


@pytest.mark.asyncio
async def test_row_errors_are_reported_not_raised(session_factory, app_config):
    records = [
        CategoryMarker("PERSIAPAN"),
        ItemRow("", "Tanpa kode"),
        ItemRow("A.1.1.9", "Minus", "ls", Decimal("-1")),
        ItemRow("A.1.1.1", "Pembersihan", "m2", Decimal("100")),
    ]

    summary = await _run(records, session_factory, app_config, use_harga_file=True)

    assert summary.items_created == 1
    assert [(error.kode, error.reason) for error in summary.errors] == [
        (None, "Missing kode"),
        ("A.1.1.9", "Negative harga"),
    ]


@pytest.mark.asyncio
async def test_timeout_rolls_back_everything(session_factory, app_config, item_store, monkeypatch):
    config = dataclasses.replace(
        app_config,
        imports=dataclasses.replace(app_config.imports, transaction_timeout_seconds=0.05),
    )

    async def slow_upsert(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(hsp_import, "_upsert_items", slow_upsert)

    with pytest.raises(ImportTimeoutError):
        await _run(RECORDS, session_factory, config)

    page = await item_store.list_categories(GLOBAL)
    assert page.total == 0


@pytest.mark.asyncio
async def test_import_hsp_file_from_csv(tmp_path, session_factory, app_config, item_store):
    path = tmp_path / "hsp.csv"
    path.write_text(
        "No,Kode,Jenis Pekerjaan,Satuan,Harga\n"
        ",A.1.1,HARGA SATUAN PEKERJAAN PERSIAPAN,,\n"
        '1,A.1.1.1,Pembersihan lapangan,m2,"12,500"\n'
        "2,A.1.1.2,Bouwplank,m',95000\n",
        encoding="utf-8",
    )

    summary = await import_hsp_file(
        path, GLOBAL, use_harga_file=True, session_factory=session_factory, config=app_config
    )

    assert summary.categories_created == 1
    assert summary.items_created == 2
    item = await item_store.get_by_kode(GLOBAL, "A.1.1.1")
    assert item.harga == Decimal("12500")
    assert item.category.name == "HARGA SATUAN PEKERJAAN PERSIAPAN"
