# storeinsight/excel/projection.py
"""
Write canonical 12-month series onto a proforma template worksheet.

The template's own layout (month band, label column, anchors, stride) is
inferred independently of the source sheet. Formula cells about to be touched
are flattened to their cached values first so partially overwritten shared
formula groups cannot corrupt the saved workbook.
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl import load_workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.worksheet.formula import ArrayFormula, DataTableFormula

from storeinsight.config import first_existing_template
from storeinsight.excel.workbook_generator import WorkbookGenerator
from storeinsight.extract.coerce import coerce_month_token
from storeinsight.extract.layout import (
    STORE_PROFORMA_ANCHOR_DEFAULTS,
    AnchorDefaults,
    LayoutDescriptor,
    anchors_of,
    infer_layout,
)
from storeinsight.extract.month_band import BAND_LENGTH
from storeinsight.extract.series import SeriesTotals, zeros
from storeinsight.grid import Grid, TextCell, cell_at, cell_ref, grid_from_rows, range_ref
from storeinsight.map.aliases import destination_labels, is_contra, is_total, normalize_label
from storeinsight.provenance import ProvenanceEntry

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
VALUE_NUMBER_FORMAT = "#,##0;(#,##0)"
FACILITY_CELL = "B2"
PERIOD_CELL = "B3"


class LayoutUnresolvedError(RuntimeError):
    """The destination template's layout could not be pinned down safely."""


@dataclass
class ProjectionResult:
    layout: LayoutDescriptor
    written: Dict[str, int] = field(default_factory=dict)  # key -> 1-based row
    skipped: List[str] = field(default_factory=list)
    totals: SeriesTotals = field(default_factory=SeriesTotals)
    flattened: int = 0
    provenance: List[ProvenanceEntry] = field(default_factory=list)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_twelve(values: Any) -> List[float]:
    """Coerce an incoming series to exactly 12 finite floats."""
    out = zeros()
    if not isinstance(values, (list, tuple)):
        return out
    for i, v in enumerate(values[:BAND_LENGTH]):
        try:
            f = float(v)
        except (TypeError, ValueError):
            continue
        if math.isfinite(f):
            out[i] = f
    return out


def is_formula(value: Any) -> bool:
    if isinstance(value, (ArrayFormula, DataTableFormula)):
        return True
    return isinstance(value, str) and value.startswith("=")


def worksheet_grid(ws) -> Grid:
    return grid_from_rows(ws.iter_rows(min_row=1, min_col=1, values_only=True))


# --------------------------------------------------------------------
# Destination layout
# --------------------------------------------------------------------

def resolve_destination_layout(
    grid: Grid,
    defaults: Optional[AnchorDefaults] = STORE_PROFORMA_ANCHOR_DEFAULTS,
) -> LayoutDescriptor:
    """
    Infer the template layout. Raises LayoutUnresolvedError when there is no
    month band, or when the anchors (searched, then defaulted) are incomplete,
    out of order, or point past the end of the sheet.
    """
    layout = infer_layout(grid, defaults)
    if layout is None:
        raise LayoutUnresolvedError("Template has no 12-month band; cannot place values.")

    anchors = anchors_of(layout)
    if not anchors.is_complete:
        missing = [n for n in ("income", "total_income", "expense", "total_expense") if getattr(anchors, n) is None]
        raise LayoutUnresolvedError(f"Template section anchors not found: {', '.join(missing)}")
    if not anchors.is_ordered:
        raise LayoutUnresolvedError(
            "Template section anchors are out of order "
            f"(income={anchors.income + 1}, toi={anchors.total_income + 1}, "
            f"expenses={anchors.expense + 1}, toe={anchors.total_expense + 1})"
        )
    last_row = max(r for r in (anchors.total_expense, anchors.net_income) if r is not None)
    if anchors.defaulted and last_row >= len(grid):
        raise LayoutUnresolvedError(
            f"Default anchor row {last_row + 1} is beyond the template's last row {len(grid)}"
        )
    return layout


def find_destination_row(grid: Grid, label_col: int, key: str) -> Tuple[Optional[int], Optional[str]]:
    """First row in the label column matching any destination label for `key`."""
    for label in destination_labels(key):
        wanted = normalize_label(label)
        for r in range(len(grid)):
            cell = cell_at(grid, r, label_col)
            if isinstance(cell, TextCell) and normalize_label(cell.text) == wanted:
                return r, label
    return None, None


# --------------------------------------------------------------------
# Writing
# --------------------------------------------------------------------

def flatten_formulas(ws, cached_ws, rows: Iterable[int], columns: Sequence[int]) -> int:
    """Replace formulas in rows x columns (0-based) with their cached values."""
    count = 0
    for r in sorted(set(rows)):
        for c in columns:
            cell = ws.cell(row=r + 1, column=c + 1)
            if isinstance(cell, MergedCell) or not is_formula(cell.value):
                continue
            cached = cached_ws.cell(row=r + 1, column=c + 1).value
            cell.value = None if is_formula(cached) else cached
            count += 1
    if count:
        logger.info("Flattened %d formula cell(s) before writing", count)
    return count


def _write_row(ws, row: int, columns: Sequence[int], values: Sequence[float]) -> List[int]:
    written: List[int] = []
    for c, v in zip(columns, values):
        cell = ws.cell(row=row + 1, column=c + 1)
        if isinstance(cell, MergedCell):
            logger.warning("Skipping merged cell %s", cell_ref(row, c))
            written.append(0)
            continue
        rounded = round_half_up(v)
        cell.value = rounded
        cell.number_format = VALUE_NUMBER_FORMAT
        written.append(rounded)
    return written


def _supplied_totals(aggregates: Optional[Mapping[str, Any]]) -> Optional[SeriesTotals]:
    if not isinstance(aggregates, Mapping):
        return None
    if not isinstance(aggregates.get("toi"), (list, tuple)) or not isinstance(aggregates.get("toe"), (list, tuple)):
        return None
    toi = to_twelve(aggregates["toi"])
    toe = to_twelve(aggregates["toe"])
    noi_raw = aggregates.get("noi")
    noi = to_twelve(noi_raw) if isinstance(noi_raw, (list, tuple)) else [a - b for a, b in zip(toi, toe)]
    return SeriesTotals(toi=toi, toe=toe, noi=noi)


def project_onto_worksheet(
    ws,
    cached_ws,
    series_by_label: Mapping[str, Any],
    aggregates: Optional[Mapping[str, Any]] = None,
    defaults: Optional[AnchorDefaults] = STORE_PROFORMA_ANCHOR_DEFAULTS,
) -> ProjectionResult:
    """
    Write every canonical series onto its destination row, then the TOI / TOE /
    NOI rows (from `aggregates` when supplied, else re-summed from the rows
    written inside the template's own income and expense sections).
    """
    grid = worksheet_grid(cached_ws)
    layout = resolve_destination_layout(grid, defaults)
    columns = layout.value_columns
    sheet = ws.title
    result = ProjectionResult(layout=layout)

    plan: List[Tuple[str, int, str, List[float]]] = []
    rows_taken: Dict[int, str] = {}
    for key, raw_values in series_by_label.items():
        if is_total(key):
            result.provenance.append(
                ProvenanceEntry(token=key, source_sheet=sheet, note="total key ignored; totals come from aggregates")
            )
            continue
        row, matched = find_destination_row(grid, layout.label_column, key)
        if row is None:
            logger.info("No destination row for '%s'; line skipped", key)
            result.skipped.append(key)
            result.provenance.append(
                ProvenanceEntry(token=key, source_sheet=sheet, note="skipped: no destination row")
            )
            continue
        values = to_twelve(raw_values)
        if is_contra(key):
            values = [-abs(v) for v in values]
        if row in rows_taken:
            logger.warning("'%s' and '%s' both map to row %s; last one wins", rows_taken[row], key, row + 1)
        rows_taken[row] = key
        plan.append((key, row, matched, values))

    total_rows = [layout.total_income_anchor_row, layout.total_expense_anchor_row]
    if layout.net_income_anchor_row is not None:
        total_rows.append(layout.net_income_anchor_row)
    result.flattened = flatten_formulas(ws, cached_ws, [p[1] for p in plan] + total_rows, columns)

    written_values: Dict[int, List[int]] = {}
    for key, row, matched, values in plan:
        written_values[row] = _write_row(ws, row, columns, values)
        result.written[key] = row + 1
        result.provenance.append(
            ProvenanceEntry(
                token=key,
                source_sheet=sheet,
                source_cell=range_ref(row, columns[0], columns[-1]),
                matched_alias=matched,
                note="forced non-positive (contra account)" if is_contra(key) else None,
            )
        )

    totals = _supplied_totals(aggregates)
    if totals is not None:
        origin = "supplied aggregate"
        noi_origin = origin if isinstance(aggregates.get("noi"), (list, tuple)) else "toi - toe"
    else:
        toi, toe = zeros(), zeros()
        for row, vals in written_values.items():
            target = toi if row in layout.income_rows else toe if row in layout.expense_rows else None
            if target is None:
                continue
            for i, v in enumerate(vals):
                target[i] += v
        totals = SeriesTotals(toi=toi, toe=toe, noi=[a - b for a, b in zip(toi, toe)])
        origin = "sum of written rows"
        noi_origin = "toi - toe"

    for token, row, values, computed_from in (
        ("Total Operating Income", layout.total_income_anchor_row, totals.toi, origin),
        ("Total Operating Expense", layout.total_expense_anchor_row, totals.toe, origin),
        ("Net Operating Income", layout.net_income_anchor_row, totals.noi, noi_origin),
    ):
        if row is None:
            continue
        _write_row(ws, row, columns, values)
        result.provenance.append(
            ProvenanceEntry(
                token=token,
                source_sheet=sheet,
                source_cell=range_ref(row, columns[0], columns[-1]),
                computed_from=computed_from,
            )
        )
    result.totals = totals

    logger.info(
        "Projected %d line(s) onto '%s' (%d skipped, totals from %s)",
        len(result.written), sheet, len(result.skipped), origin,
    )
    return result


# --------------------------------------------------------------------
# Proforma export
# --------------------------------------------------------------------

def _months_for(period: Optional[str], months: Optional[Sequence[str]]) -> List[str]:
    if months and len(months) == BAND_LENGTH:
        return [str(m) for m in months]
    start = coerce_month_token(TextCell(period)) if period else None
    return WorkbookGenerator.month_band_from(start)


def build_proforma_workbook(
    facility: str,
    period: str,
    series_by_label: Mapping[str, Any],
    aggregates: Optional[Mapping[str, Any]] = None,
    template_path: Optional[Path] = None,
    months: Optional[Sequence[str]] = None,
) -> Tuple[bytes, ProjectionResult]:
    """
    Load the proforma template (or generate the standard one), stamp facility
    and period, project the series, and return the saved workbook bytes.
    """
    path = Path(template_path) if template_path else first_existing_template()
    if path is not None:
        logger.info("Using proforma template %s", path)
        wb = load_workbook(path)
        cached_wb = load_workbook(path, data_only=True)
    else:
        logger.info("No proforma template on disk; generating the standard layout")
        wb = WorkbookGenerator().create_proforma_template(_months_for(period, months))
        cached_wb = wb

    ws = wb.active
    cached_ws = cached_wb[ws.title]
    for ref, value in ((FACILITY_CELL, facility), (PERIOD_CELL, period)):
        if not isinstance(ws[ref], MergedCell):
            ws[ref] = value

    result = project_onto_worksheet(ws, cached_ws, series_by_label, aggregates)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue(), result


def proforma_filename(facility: str, period: str) -> str:
    fac = (facility or "Facility").strip().replace(" ", "_")
    per = (period or "Period").strip().replace(" ", "-")
    return f"Proforma_{fac}_{per}.xlsx"
