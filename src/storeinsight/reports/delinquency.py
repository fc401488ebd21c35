# storeinsight/reports/delinquency.py
"""
Delinquency aging tokens.

The Executive Summary Report places its aging table at a fixed position
(rows 31-38, columns L/M/N), so cells are read by address rather than inferred.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from openpyxl.utils.cell import coordinate_from_string, column_index_from_string

from storeinsight.extract.coerce import coerce_optional_number
from storeinsight.grid import SheetGrid, cell_at
from storeinsight.provenance import ProvenanceEntry
from storeinsight.reports.pptx_tokens import DASH, REQUIRED_DELINQUENCY_TOKENS

logger = logging.getLogger(__name__)

BUCKET_KEYS = ("0_10", "11_30", "31_60", "61_90", "91_120", "121_180", "181_360", "361_PLUS")
_FIRST_BUCKET_ROW = 31
_COLUMN_BY_KIND = {"dollars": "L", "units": "M", "percent": "N"}

DELINQ_CELL_MAP: Dict[str, Dict[str, str]] = {
    bucket: {kind: f"{col}{_FIRST_BUCKET_ROW + i}" for kind, col in _COLUMN_BY_KIND.items()}
    for i, bucket in enumerate(BUCKET_KEYS)
}
DELINQ_SHEET_CANDIDATES = ("ESR", "Executive Summary Report")

BUCKET_GROUPS = {
    "30": ("0_10", "11_30"),
    "60": ("31_60",),
    "61": ("61_90", "91_120", "121_180", "181_360", "361_PLUS"),
}
_TOKEN_PREFIX = {"dollars": "DELINDOL", "units": "DELINUNIT", "percent": "DELINPER"}


def format_dollars(value: float) -> str:
    # half away from zero
    n = int(abs(value) + 0.5)
    return f"-${n:,}" if value < 0 and n else f"${n:,}"


def format_units(value: float) -> str:
    return str(int(round(value)))


def format_percent(value: float) -> str:
    text = f"{value:.2f}"
    return ("0.00" if text == "-0.00" else text) + "%"


def pick_sheet(sheets: Sequence[SheetGrid]) -> Optional[SheetGrid]:
    wanted = [c.lower() for c in DELINQ_SHEET_CANDIDATES]
    for name in wanted:
        for sheet in sheets:
            if sheet.name.strip().lower() == name:
                return sheet
    return sheets[0] if sheets else None


def _read(sheet: SheetGrid, address: str) -> float:
    letters, row = coordinate_from_string(address)
    cell = cell_at(sheet.grid, row - 1, column_index_from_string(letters) - 1)
    # percent cells are taken as stored; only a "%" suffix is dropped
    value = coerce_optional_number(cell)
    return value or 0.0


@dataclass
class DelinquencyExtraction:
    tokens: Dict[str, str] = field(default_factory=dict)
    buckets: Dict[str, Dict[str, float]] = field(default_factory=dict)
    cells: Dict[str, List[str]] = field(default_factory=dict)
    provenance: List[ProvenanceEntry] = field(default_factory=list)
    sheet_name: Optional[str] = None

    def audit_rows(self, placeholder: str = DASH) -> List[Dict[str, object]]:
        """One row per required token, in slide order, with the cells it was summed from."""
        return [
            {
                "token": token,
                "value": self.tokens.get(token, ""),
                "sheet": (self.sheet_name or "").strip() or placeholder,
                "cells": list(dict.fromkeys(self.cells.get(token, []))),
            }
            for token in REQUIRED_DELINQUENCY_TOKENS
        ]


def extract_delinquency_tokens(sheets: Sequence[SheetGrid]) -> DelinquencyExtraction:
    """Read the aging buckets and roll them up into 1-30 / 31-60 / 61+ tokens."""
    out = DelinquencyExtraction()
    sheet = pick_sheet(sheets)
    if sheet is None:
        logger.warning("Delinquency workbook has no sheets")
        return out
    out.sheet_name = sheet.name

    for bucket, addresses in DELINQ_CELL_MAP.items():
        out.buckets[bucket] = {kind: _read(sheet, addr) for kind, addr in addresses.items()}

    formatters = {"dollars": format_dollars, "units": format_units, "percent": format_percent}
    for group, members in BUCKET_GROUPS.items():
        for kind, prefix in _TOKEN_PREFIX.items():
            token = f"{prefix}{group}"
            total = sum(out.buckets[b][kind] for b in members)
            cells = [DELINQ_CELL_MAP[b][kind] for b in members]
            out.tokens[token] = formatters[kind](total)
            out.cells[token] = cells
            out.provenance.append(
                ProvenanceEntry(
                    token=token,
                    source_sheet=sheet.name,
                    source_cell=",".join(cells),
                    computed_from=" + ".join(members) if len(members) > 1 else None,
                )
            )

    logger.info(
        "Delinquency from '%s': 1-30 %s, 31-60 %s, 61+ %s",
        sheet.name, out.tokens["DELINDOL30"], out.tokens["DELINDOL60"], out.tokens["DELINDOL61"],
    )
    return out
