# storeinsight/extract/series.py
"""
Series extraction: walk the income and expense sections of a laid-out sheet and
produce canonical 12-month series plus TOI / TOE / NOI totals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from storeinsight.extract.coerce import coerce_label, coerce_number
from storeinsight.extract.layout import LayoutDescriptor, infer_layout
from storeinsight.extract.month_band import BAND_LENGTH
from storeinsight.grid import SheetGrid, Grid, cell_at, cell_ref, range_ref
from storeinsight.map.aliases import canonicalize, is_contra, is_total, normalize_label
from storeinsight.provenance import ProvenanceEntry, provenance_dicts

logger = logging.getLogger(__name__)

SECTION_HEADERS = {"income", "expense", "expenses"}

SeriesMap = Dict[str, List[float]]


def zeros() -> List[float]:
    return [0.0] * BAND_LENGTH


@dataclass
class SeriesTotals:
    toi: List[float] = field(default_factory=zeros)
    toe: List[float] = field(default_factory=zeros)
    noi: List[float] = field(default_factory=zeros)

    def to_dict(self) -> Dict[str, List[float]]:
        return {"toi": list(self.toi), "toe": list(self.toe), "noi": list(self.noi)}


@dataclass
class SeriesExtraction:
    series_by_label: SeriesMap = field(default_factory=dict)
    totals: SeriesTotals = field(default_factory=SeriesTotals)
    provenance: List[ProvenanceEntry] = field(default_factory=list)


def read_row_values(grid: Grid, row: int, columns: Sequence[int]) -> List[float]:
    return [coerce_number(cell_at(grid, row, c)) for c in columns]


def _walk_section(
    grid: Grid,
    layout: LayoutDescriptor,
    rows: range,
    sheet_name: str,
    out: SeriesExtraction,
    section_total: List[float],
) -> None:
    columns = layout.value_columns
    for r in rows:
        label = coerce_label(cell_at(grid, r, layout.label_column))
        label_ref = cell_ref(r, layout.label_column)
        if not label:
            continue
        values = read_row_values(grid, r, columns)
        has_numbers = any(v != 0 for v in values)

        if normalize_label(label) in SECTION_HEADERS and not has_numbers:
            continue

        key, alias = canonicalize(label)
        if is_total(key):
            out.provenance.append(
                ProvenanceEntry(token=key, source_sheet=sheet_name, source_cell=label_ref,
                                matched_alias=alias, note="skipped: total row inside section")
            )
            continue
        if not has_numbers:
            out.provenance.append(
                ProvenanceEntry(token=key, source_sheet=sheet_name, source_cell=label_ref,
                                matched_alias=alias, note="skipped: all values zero")
            )
            continue

        notes = []
        if is_contra(key) and any(v > 0 for v in values):
            values = [-v if v > 0 else v for v in values]
            notes.append("negated contra account")
        if key in out.series_by_label:
            existing = out.series_by_label[key]
            out.series_by_label[key] = [a + b for a, b in zip(existing, values)]
            notes.append("summed into existing series")
        else:
            out.series_by_label[key] = values

        for i, v in enumerate(values):
            section_total[i] += v

        out.provenance.append(
            ProvenanceEntry(
                token=key,
                source_sheet=sheet_name,
                source_cell=range_ref(r, columns[0], columns[-1]),
                matched_alias=alias,
                note="; ".join(notes) or None,
            )
        )


def extract_series(grid: Grid, layout: LayoutDescriptor, sheet_name: str = "") -> SeriesExtraction:
    """
    Extract canonical series from the rows strictly inside the income and
    expense sections. Totals are sums of the stored rows, NOI = TOI - TOE.
    """
    out = SeriesExtraction()
    if not layout.has_sections:
        logger.info("Sheet '%s': section anchors not found; no series extracted", sheet_name)
        return out

    toi = zeros()
    toe = zeros()
    _walk_section(grid, layout, layout.income_rows, sheet_name, out, toi)
    _walk_section(grid, layout, layout.expense_rows, sheet_name, out, toe)

    out.totals = SeriesTotals(toi=toi, toe=toe, noi=[a - b for a, b in zip(toi, toe)])

    income_span = f"rows {layout.income_anchor_row + 2}-{layout.total_income_anchor_row}"
    expense_span = f"rows {layout.expense_anchor_row + 2}-{layout.total_expense_anchor_row}"
    out.provenance.extend([
        ProvenanceEntry(token="toi", source_sheet=sheet_name, computed_from=f"sum of income {income_span}"),
        ProvenanceEntry(token="toe", source_sheet=sheet_name, computed_from=f"sum of expense {expense_span}"),
        ProvenanceEntry(token="noi", source_sheet=sheet_name, computed_from="toi - toe"),
    ])
    logger.info("Sheet '%s': %d series extracted", sheet_name, len(out.series_by_label))
    return out


# --------------------------------------------------------------------
# Workbook-level normalize
# --------------------------------------------------------------------

@dataclass
class NormalizeResult:
    facility: Optional[str] = None
    period: Optional[str] = None
    detected: Optional[Dict[str, Any]] = None
    layout: Optional[LayoutDescriptor] = None
    extraction: SeriesExtraction = field(default_factory=SeriesExtraction)

    @property
    def series_by_label(self) -> SeriesMap:
        return self.extraction.series_by_label

    @property
    def totals(self) -> SeriesTotals:
        return self.extraction.totals

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facility": self.facility,
            "period": self.period,
            "detected": self.detected,
            "seriesByLabel": {k: list(v) for k, v in self.series_by_label.items()},
            "series": self.totals.to_dict(),
            "provenance": provenance_dicts(self.extraction.provenance),
        }


def normalize_workbook(
    sheets: Sequence[SheetGrid],
    facility: Optional[str] = None,
    period: Optional[str] = None,
) -> NormalizeResult:
    """Use the first sheet that has a month band; empty result when none does."""
    for sheet in sheets:
        layout = infer_layout(sheet.grid)
        if layout is None:
            continue
        logger.info(
            "Month band on '%s' row %s col %s; labels in col %s; stride %s offset %s",
            sheet.name, layout.month_band_row + 1, layout.month_band_start_col + 1,
            layout.label_column + 1, layout.value_column_stride, layout.value_column_offset,
        )
        return NormalizeResult(
            facility=facility,
            period=period,
            detected=layout.to_detected(sheet.name),
            layout=layout,
            extraction=extract_series(sheet.grid, layout, sheet.name),
        )
    logger.info("No month band found in %d sheet(s)", len(sheets))
    return NormalizeResult(facility=facility, period=period)


# --------------------------------------------------------------------
# Tie-out checks
# --------------------------------------------------------------------

@dataclass
class TieOut:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def tie_out(
    toi: Sequence[float],
    toe: Sequence[float],
    noi: Sequence[float],
    months: Optional[Sequence[str]] = None,
    tolerance: float = 1e-4,
) -> TieOut:
    """NOI must equal TOI - TOE each month; negative TOI / TOE is suspicious."""
    result = TieOut()
    for i, (a, b, n) in enumerate(zip(toi, toe, noi)):
        label = months[i] if months and i < len(months) else f"month {i + 1}"
        if abs(n - (a - b)) > tolerance:
            result.errors.append(f"{label}: NOI {n:,.2f} != TOI - TOE {a - b:,.2f}")
        if a < 0:
            result.warnings.append(f"{label}: negative TOI {a:,.2f}")
        if b < 0:
            result.warnings.append(f"{label}: negative TOE {b:,.2f}")
    return result
