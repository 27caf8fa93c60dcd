"""Bulk HSP import for AHSPCalc.

Parses XLSX/CSV price lists and applies them to a scope's catalog.
"""

from ahspcalc.ingestion.hsp_import import apply_import, import_hsp_file
from ahspcalc.ingestion.hsp_parser import parse_worksheet

__all__ = ["apply_import", "import_hsp_file", "parse_worksheet"]
