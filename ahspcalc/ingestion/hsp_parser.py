"""HSP worksheet parser.

Reads the first worksheet of an XLSX workbook (or a CSV file) laid out as a
price list:

    No | Kode | Jenis Pekerjaan | Satuan | Harga

The header row is found by synonym matching among the first rows; when none
matches, columns 0..4 are assumed. Section headings become CategoryMarker
records and priced lines become ItemRow records, in sheet order.
"""

from __future__ import annotations

import logging
import math
import re
import zipfile
from decimal import Decimal, InvalidOperation
from pathlib import Path

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from ahspcalc.core.errors import ValidationError
from ahspcalc.ingestion.types import CategoryMarker, HeaderIndex, ItemRow, ParsedWorksheet

logger = logging.getLogger(__name__)

HEADER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "no": ("no", "nomor", "no."),
    "kode": ("kode", "code", "kd"),
    "jenis": ("jenis pekerjaan", "uraian pekerjaan", "uraian", "deskripsi", "pekerjaan"),
    "satuan": ("satuan", "unit", "uom"),
    "harga": ("harga", "harga satuan", "price", "biaya"),
}

MAX_COLUMNS = 50
EXCEL_SUFFIXES = (".xlsx", ".xlsm")

_WHITESPACE = re.compile(r"\s+")
_HEADER_NOISE = re.compile(r"[:*]")
_NON_NUMERIC = re.compile(r"[^\d.-]")
_CATEGORY_TITLE = re.compile(r"^HARGA\s+SATUAN", re.IGNORECASE)


def read_rows(path: Path) -> list[list[str]]:
    """Load the first worksheet as rows of trimmed cell text.

    Raises:
        ValidationError: Unsupported extension or unreadable file
    """
    suffix = path.suffix.lower()
    if suffix != ".csv" and suffix not in EXCEL_SUFFIXES:
        raise ValidationError(f"Unsupported file format: {suffix or path.name}")

    try:
        if suffix == ".csv":
            df = pd.read_csv(
                path,
                header=None,
                names=list(range(MAX_COLUMNS)),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
            )
        else:
            df = pd.read_excel(
                path,
                sheet_name=0,
                header=None,
                dtype=str,
                keep_default_na=False,
                engine="openpyxl",
            )
    except (OSError, ValueError, zipfile.BadZipFile, InvalidFileException) as e:
        raise ValidationError(
            f"Failed to parse {path.name}. Make sure it's a valid .xlsx/.csv: {e}"
        ) from e

    rows: list[list[str]] = []
    for values in df.fillna("").itertuples(index=False, name=None):
        cells = [str(value).strip() for value in values]
        while cells and cells[-1] == "":
            cells.pop()
        rows.append(cells)
    return rows


def normalize_cell(value: str) -> str:
    return _WHITESPACE.sub(" ", value.strip())


def _header_token(value: str) -> str:
    return _HEADER_NOISE.sub("", _WHITESPACE.sub(" ", value.lower())).strip()


def is_numeric(value: str) -> bool:
    text = value.strip()
    if not text:
        return False
    try:
        return not math.isnan(float(text))
    except ValueError:
        return False


def to_price(value: str) -> Decimal:
    """Strip everything but digits, dots and minus; unparsable text is 0."""
    cleaned = _NON_NUMERIC.sub("", value)
    if not cleaned:
        return Decimal("0")
    try:
        price = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")
    return price if price.is_finite() else Decimal("0")


def looks_like_item_kode(kode: str) -> bool:
    """Item codes carry at least three dots, e.g. ``A.2.3.1.1``."""
    return kode.strip().count(".") >= 3


def looks_like_category(no: str, kode: str, jenis: str) -> bool:
    if is_numeric(no):
        return False
    if not kode.strip() or not jenis.strip():
        return False
    if _CATEGORY_TITLE.match(jenis):
        return True
    return kode.count(".") >= 2 and not looks_like_item_kode(kode)


def detect_header(rows: list[list[str]], scan_rows: int = 30) -> tuple[HeaderIndex, int]:
    """Pick the row matching the most header synonyms.

    Returns the column index and the header row number, or the positional
    layout and -1 when nothing matches.
    """
    best_score = 0
    best_row = -1
    best_header = HeaderIndex()

    for row_number, row in enumerate(rows[:scan_rows]):
        header = HeaderIndex()
        score = 0
        for column, cell in enumerate(row):
            token = _header_token(cell)
            if not token:
                continue
            for name, synonyms in HEADER_SYNONYMS.items():
                if getattr(header, name) is None and token in synonyms:
                    setattr(header, name, column)
                    score += 1
                    break

        if score > best_score:
            best_score, best_row, best_header = score, row_number, header
        if score >= 4:
            break

    if best_score == 0:
        return HeaderIndex.positional(), -1
    return best_header.resolved(), best_row


def _is_header_like(no: str, kode: str, jenis: str, satuan: str, harga: str) -> bool:
    return (
        no.lower() in HEADER_SYNONYMS["no"]
        or kode.lower() in HEADER_SYNONYMS["kode"]
        or jenis.lower() in HEADER_SYNONYMS["jenis"]
        or satuan.lower() in HEADER_SYNONYMS["satuan"]
        or harga.lower() in HEADER_SYNONYMS["harga"]
    )


def parse_rows(rows: list[list[str]], header: HeaderIndex) -> list[CategoryMarker | ItemRow]:
    records: list[CategoryMarker | ItemRow] = []

    def cell(row: list[str], column: int) -> str:
        return normalize_cell(row[column]) if column < len(row) else ""

    for row in rows:
        no = cell(row, header.no)
        kode = cell(row, header.kode)
        jenis = cell(row, header.jenis)
        satuan = cell(row, header.satuan)
        harga = cell(row, header.harga)

        if _is_header_like(no, kode, jenis, satuan, harga):
            continue
        if not any((no, kode, jenis, satuan, harga)):
            continue

        if looks_like_category(no, kode, jenis):
            records.append(CategoryMarker(name=jenis))
            continue

        price = to_price(harga)
        if (is_numeric(no) and kode and jenis) or (looks_like_item_kode(kode) and price > 0):
            records.append(ItemRow(kode=kode, deskripsi=jenis, satuan=satuan, harga=price))

    return records


def parse_worksheet(path: Path | str, header_scan_rows: int = 30) -> ParsedWorksheet:
    """Parse an HSP price-list file into category markers and item rows.

    Args:
        path: .xlsx or .csv file
        header_scan_rows: How many leading rows to search for the header

    Raises:
        ValidationError: File cannot be read as a worksheet
    """
    path = Path(path)
    rows = read_rows(path)
    header, header_row = detect_header(rows, header_scan_rows)
    records = parse_rows(rows, header)

    parsed = ParsedWorksheet(records=records, header=header, header_row=header_row)
    logger.info(
        f"Parsed {path.name}: header row {header_row}, {len(parsed.categories)} categories, "
        f"{len(parsed.items)} items"
    )
    return parsed
