# storeinsight/reports/owner_fields.py
"""
Owner summary fields.

A facility management summary is searched by label text on its first sheet;
fields still blank after the scan are read from the fixed cells of the
standard export (configs/owner_fields.yaml).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml
from openpyxl.utils.cell import column_index_from_string, coordinate_from_string

from storeinsight.config import CONFIG_DIR
from storeinsight.extract.coerce import coerce_date, coerce_label, coerce_number
from storeinsight.grid import EMPTY, Cell, DateCell, EmptyCell, Grid, SheetGrid, TextCell, cell_at, cell_ref
from storeinsight.provenance import ProvenanceEntry

logger = logging.getLogger(__name__)

OWNER_FIELDS_YAML = CONFIG_DIR / "owner_fields.yaml"
FILENAME_DATE_RE = re.compile(r"(20\d{2})[-_.]?(0[1-9]|1[0-2])[-_.]?(0[1-9]|[12]\d|3[01])")
TRAILING_YEAR_RE = re.compile(r"\s+\d{4}$")


def _load_owner_fields_config() -> dict:
    with open(OWNER_FIELDS_YAML, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


_cfg = _load_owner_fields_config()
FIELD_LABELS: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {str(k): tuple(str(v).lower() for v in labels) for k, labels in _cfg["labels"].items()}
)
NUMBER_FIELDS = frozenset(str(f) for f in _cfg.get("number_fields") or [])
CELL_FALLBACKS: Mapping[str, Tuple[str, str]] = MappingProxyType(
    {str(k): (str(v["cell"]), str(v["kind"])) for k, v in (_cfg.get("fallbacks") or {}).items()}
)

FieldValue = Union[str, float]


def default_owner_fields() -> Dict[str, FieldValue]:
    return {k: (0.0 if k in NUMBER_FIELDS else "") for k in FIELD_LABELS}


def _norm(cell: Cell) -> str:
    return coerce_label(cell).lower()


def pick_neighbor(grid: Grid, r: int, c: int) -> Tuple[Cell, int, int]:
    """Value cell for a label at (r, c): right, below, then two to the right."""
    for rr, cc in ((r, c + 1), (r + 1, c), (r, c + 2)):
        cell = cell_at(grid, rr, cc)
        if not isinstance(cell, EmptyCell):
            return cell, rr, cc
    return EMPTY, r, c + 1


def format_month_year(d: Optional[date]) -> str:
    return d.strftime("%B %Y") if d else ""


def month_label(cell: Cell) -> str:
    """'October 2025' (or any month text) -> 'October'."""
    source = format_month_year(coerce_date(cell)) or coerce_label(cell)
    if not source:
        return ""
    return TRAILING_YEAR_RE.sub("", source).strip() or source


def date_from_filename(filename: str) -> Optional[date]:
    m = FILENAME_DATE_RE.search(filename or "")
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None


def _text_value(cell: Cell) -> str:
    if isinstance(cell, DateCell):
        return cell.value.isoformat()
    if isinstance(cell, TextCell):
        return cell.text.strip()
    return coerce_label(cell)


def _is_blank(fields: Mapping[str, FieldValue], key: str) -> bool:
    value = fields.get(key)
    if key in NUMBER_FIELDS:
        return not value
    return not str(value or "").strip()


@dataclass
class OwnerFieldsExtraction:
    fields: Dict[str, FieldValue] = field(default_factory=default_owner_fields)
    cells: Dict[str, str] = field(default_factory=dict)
    provenance: List[ProvenanceEntry] = field(default_factory=list)
    sheet_name: Optional[str] = None

    def record(self, key: str, value: FieldValue, ref: str, note: Optional[str] = None,
                matched: Optional[str] = None) -> None:
        self.fields[key] = value
        self.cells[key] = ref
        self.provenance.append(
            ProvenanceEntry(token=key, source_sheet=self.sheet_name or "", source_cell=ref,
                            matched_alias=matched, note=note)
        )

    def template_tokens(self) -> Dict[str, str]:
        return owner_field_tokens(self.fields)


def _scan_labels(grid: Grid, out: OwnerFieldsExtraction) -> None:
    for r, row in enumerate(grid):
        for c in range(len(row)):
            text = _norm(cell_at(grid, r, c))
            if not text:
                continue
            for key, labels in FIELD_LABELS.items():
                if not _is_blank(out.fields, key) or key == "CURRENTMONTH":
                    continue
                matched = next((label for label in labels if label in text), None)
                if matched is None:
                    continue
                neighbor, nr, nc = pick_neighbor(grid, r, c)
                if key in NUMBER_FIELDS:
                    value: FieldValue = coerce_number(neighbor)
                elif key == "CURRENTDATE":
                    value = format_month_year(coerce_date(neighbor))
                    if not value:
                        continue
                else:
                    value = _text_value(neighbor)
                if not value:
                    continue
                out.record(key, value, cell_ref(nr, nc), matched=matched)


def _apply_fallbacks(grid: Grid, out: OwnerFieldsExtraction) -> None:
    for key, (ref, kind) in CELL_FALLBACKS.items():
        if not _is_blank(out.fields, key):
            continue
        letters, row = coordinate_from_string(ref)
        cell = cell_at(grid, row - 1, column_index_from_string(letters) - 1)
        if isinstance(cell, EmptyCell) or (isinstance(cell, TextCell) and not cell.text.strip()):
            continue
        if kind == "number":
            value: FieldValue = coerce_number(cell)
        elif kind == "month":
            day = coerce_date(cell)
            if day is None:
                continue
            value = day.strftime("%B") if key == "CURRENTMONTH" else format_month_year(day)
        else:
            value = _text_value(cell)
        if value:
            out.record(key, value, ref, note="fixed cell")


def _total_row_units(grid: Grid) -> Tuple[Optional[float], Optional[str]]:
    """First positive number on the first row labelled exactly 'total'."""
    for r, row in enumerate(grid):
        if not any(_norm(cell) == "total" for cell in row):
            continue
        for c, cell in enumerate(row):
            n = coerce_number(cell)
            if n > 0:
                return n, cell_ref(r, c)
    return None, None


def extract_owner_fields(sheets: Sequence[SheetGrid], filename: str = "report.xlsx") -> OwnerFieldsExtraction:
    out = OwnerFieldsExtraction()
    if not sheets:
        logger.warning("Owner summary workbook has no sheets")
        return out
    sheet = sheets[0]
    out.sheet_name = sheet.name
    grid = sheet.grid

    _scan_labels(grid, out)

    if _is_blank(out.fields, "CURRENTDATE"):
        from_name = format_month_year(date_from_filename(filename))
        if from_name:
            out.record("CURRENTDATE", from_name, "", note=f"from filename '{filename}'")

    _apply_fallbacks(grid, out)

    if _is_blank(out.fields, "CURRENTMONTH") and out.fields["CURRENTDATE"]:
        label = month_label(TextCell(str(out.fields["CURRENTDATE"])))
        if label:
            out.record("CURRENTMONTH", label, out.cells.get("CURRENTDATE", ""), note="from CURRENTDATE")

    if _is_blank(out.fields, "TOTALUNITS"):
        units, ref = _total_row_units(grid)
        if units is not None:
            out.record("TOTALUNITS", units, ref, note="total row")

    found = sum(1 for k in FIELD_LABELS if not _is_blank(out.fields, k))
    logger.info("Owner fields from '%s': %d of %d found", sheet.name, found, len(FIELD_LABELS))
    return out


# --------------------------------------------------------------------
# Template values
# --------------------------------------------------------------------

def format_number(value: float) -> str:
    """Grouped, up to three decimals: 1234.5 -> '1,234.5'."""
    text = f"{value:,.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_occupancy_percent(value: float) -> str:
    scaled = value * 100 if abs(value) <= 1 else value
    text = f"{scaled:.1f}%"
    return "0.0%" if text == "-0.0%" else text


def owner_field_tokens(fields: Mapping[str, FieldValue]) -> Dict[str, str]:
    """Template text for each owner field; SFTOC mirrors the occupancy percent."""
    tokens: Dict[str, str] = {}
    for key in FIELD_LABELS:
        value = fields.get(key)
        if key == "OCCUPIEDAREAPERCENT":
            tokens[key] = format_occupancy_percent(float(value or 0))
        elif key in NUMBER_FIELDS:
            tokens[key] = format_number(float(value or 0))
        else:
            tokens[key] = str(value or "").strip()
    tokens["SFTOC"] = tokens["OCCUPIEDAREAPERCENT"]
    return tokens
