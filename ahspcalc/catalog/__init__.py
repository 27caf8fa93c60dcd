"""Scoped master price catalog and HSP item store."""

from ahspcalc.catalog.hsp import CatalogItemStore
from ahspcalc.catalog.master import MasterCatalog

__all__ = ["CatalogItemStore", "MasterCatalog"]
