"""Unit tests for import grouping, de-duplication and the price-lock rule."""

from __future__ import annotations

from decimal import Decimal

import pytest

from ahspcalc.ingestion.hsp_import import (
    UNCATEGORIZED,
    dedupe_items,
    group_by_category,
    should_update_price,
)
from ahspcalc.ingestion.types import CategoryMarker, ItemRow


def test_items_before_first_marker_are_uncategorized():
    records = [
        ItemRow("X.1.1.1", "Lepas", "ls", Decimal("10")),
        CategoryMarker("PERSIAPAN"),
        ItemRow("A.1.1.1", "Pembersihan", "m2", Decimal("20")),
    ]

    grouped = group_by_category(records)

    assert list(grouped) == [UNCATEGORIZED, "PERSIAPAN"]
    assert [row.kode for row in grouped[UNCATEGORIZED]] == ["X.1.1.1"]
    assert [row.kode for row in grouped["PERSIAPAN"]] == ["A.1.1.1"]


def test_empty_marker_still_registers_category():
    grouped = group_by_category([CategoryMarker("KOSONG")])

    assert grouped == {"KOSONG": []}


def test_repeated_marker_appends_to_same_category():
    records = [
        CategoryMarker("TANAH"),
        ItemRow("B.1.1.1", "Galian", "m3", Decimal("1")),
        CategoryMarker("BETON"),
        CategoryMarker("TANAH"),
        ItemRow("B.1.1.2", "Urugan", "m3", Decimal("2")),
    ]

    grouped = group_by_category(records)

    assert [row.kode for row in grouped["TANAH"]] == ["B.1.1.1", "B.1.1.2"]
    assert grouped["BETON"] == []


def test_dedupe_last_occurrence_wins_and_errors_recorded():
    grouped = {
        "PERSIAPAN": [
            ItemRow("A.1.1.1", "Versi lama", "m2", Decimal("100")),
            ItemRow("", "Tanpa kode", "m2", Decimal("5")),
            ItemRow("A.1.1.2", "  ", "m2", Decimal("5")),
        ],
        "ULANG": [ItemRow("A.1.1.1", "Versi baru", "m2", Decimal("200"))],
    }

    pending, errors = dedupe_items(grouped, use_harga_file=True)

    assert list(pending) == ["A.1.1.1"]
    assert pending["A.1.1.1"].deskripsi == "Versi baru"
    assert pending["A.1.1.1"].category == "ULANG"
    assert pending["A.1.1.1"].harga == Decimal("200")
    assert [(e.kode, e.reason) for e in errors] == [
        (None, "Missing kode"),
        ("A.1.1.2", "Missing deskripsi"),
    ]


def test_file_price_ignored_unless_requested():
    grouped = {"PERSIAPAN": [ItemRow("A.1.1.1", "Pembersihan", "m2", Decimal("12500"))]}

    pending, _ = dedupe_items(grouped, use_harga_file=False)

    assert pending["A.1.1.1"].harga == Decimal("0")


@pytest.mark.parametrize(
    "use_harga_file,lock,current,expected",
    [
        (False, False, Decimal("0"), False),
        (False, True, Decimal("0"), False),
        (True, False, Decimal("5000"), True),
        (True, True, Decimal("5000"), False),
        (True, True, Decimal("0"), True),
    ],
)
def test_price_lock_rule(use_harga_file, lock, current, expected):
    assert should_update_price(use_harga_file, lock, current) is expected
