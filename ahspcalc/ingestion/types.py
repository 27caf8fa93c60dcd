"""Record types produced by the HSP worksheet parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class CategoryMarker:
    """Section heading; every following item belongs to it until the next marker."""

    name: str


@dataclass(frozen=True)
class ItemRow:
    """One priced work-item line from the worksheet."""

    kode: str
    deskripsi: str
    satuan: str = ""
    harga: Decimal = Decimal("0")


HSPRecord = Union[CategoryMarker, ItemRow]


@dataclass
class HeaderIndex:
    """Column positions of the recognised header cells."""

    no: Optional[int] = None
    kode: Optional[int] = None
    jenis: Optional[int] = None
    satuan: Optional[int] = None
    harga: Optional[int] = None

    @classmethod
    def positional(cls) -> HeaderIndex:
        """Layout assumed when no header row is found."""
        return cls(no=0, kode=1, jenis=2, satuan=3, harga=4)

    def resolved(self) -> HeaderIndex:
        """Fill unmatched columns with their positional defaults."""
        fallback = HeaderIndex.positional()
        return HeaderIndex(
            no=fallback.no if self.no is None else self.no,
            kode=fallback.kode if self.kode is None else self.kode,
            jenis=fallback.jenis if self.jenis is None else self.jenis,
            satuan=fallback.satuan if self.satuan is None else self.satuan,
            harga=fallback.harga if self.harga is None else self.harga,
        )


@dataclass
class ParsedWorksheet:
    """Parser output: records in sheet order plus detection details."""

    records: list[HSPRecord] = field(default_factory=list)
    header: HeaderIndex = field(default_factory=HeaderIndex.positional)
    header_row: int = -1  # -1 when the positional fallback was used

    @property
    def categories(self) -> list[str]:
        return [record.name for record in self.records if isinstance(record, CategoryMarker)]

    @property
    def items(self) -> list[ItemRow]:
        return [record for record in self.records if isinstance(record, ItemRow)]
