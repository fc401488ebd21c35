# storeinsight/extract/layout.py
"""
Layout inference for one sheet: label column, section anchors and the
month value column stride, assembled into an immutable LayoutDescriptor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from storeinsight.extract.month_band import BAND_LENGTH, MonthBand, locate_month_band
from storeinsight.grid import Grid, TextCell, cell_at

logger = logging.getLogger(__name__)

LABEL_WINDOW_ROWS = 60
LABEL_MIN_HITS = 6
DEFAULT_LABEL_COLUMN = 1  # column B

CURRENCY_SPACERS = {"$", "＄"}

INCOME = "Income"
TOTAL_INCOME = "Total Operating Income"
EXPENSES = "Expenses"
TOTAL_EXPENSE = "Total Operating Expense"
NET_INCOME = "Net Operating Income"

ANCHOR_TARGETS = {
    "income": INCOME,
    "total_income": TOTAL_INCOME,
    "expense": EXPENSES,
    "total_expense": TOTAL_EXPENSE,
    "net_income": NET_INCOME,
}
REQUIRED_ANCHORS = ("income", "total_income", "expense", "total_expense")


def _norm_label(text: str) -> str:
    """Normalize label text for anchor matching (collapse whitespace, lower-case)."""
    return " ".join(text.split()).lower()


def _is_spacer(grid: Grid, row: int, col: int) -> bool:
    cell = cell_at(grid, row, col)
    return isinstance(cell, TextCell) and cell.text.strip() in CURRENCY_SPACERS


def _is_label_text(grid: Grid, row: int, col: int) -> bool:
    cell = cell_at(grid, row, col)
    if not isinstance(cell, TextCell):
        return False
    text = cell.text.strip()
    return bool(text) and text not in CURRENCY_SPACERS


# --------------------------------------------------------------------
# Label column
# --------------------------------------------------------------------

def detect_label_column(
    grid: Grid,
    band_row: int,
    band_start_col: int,
    window: int = LABEL_WINDOW_ROWS,
    min_hits: int = LABEL_MIN_HITS,
    default: int = DEFAULT_LABEL_COLUMN,
) -> int:
    """
    Scan leftward from the band start for the first column with at least
    `min_hits` text cells in the rows below the band. Falls back to `default`.
    """
    first = band_row + 1
    last = min(len(grid), band_row + 1 + window)
    for col in range(band_start_col - 1, -1, -1):
        hits = sum(1 for r in range(first, last) if _is_label_text(grid, r, col))
        if hits >= min_hits:
            return col
    logger.debug("No label column left of col %s; using default %s", band_start_col + 1, default + 1)
    return default


# --------------------------------------------------------------------
# Section anchors
# --------------------------------------------------------------------

def find_anchor_row(grid: Grid, label_col: int, target: str) -> Optional[int]:
    """First row whose label cell equals `target` (case/whitespace-insensitive)."""
    wanted = _norm_label(target)
    for r in range(len(grid)):
        cell = cell_at(grid, r, label_col)
        if isinstance(cell, TextCell) and _norm_label(cell.text) == wanted:
            return r
    return None


@dataclass(frozen=True)
class AnchorDefaults:
    """
    Fallback anchor rows for one known template, as 1-based spreadsheet rows.
    Used only when the text search for an anchor comes back empty.
    """

    income: Optional[int] = None
    total_income: Optional[int] = None
    expense: Optional[int] = None
    total_expense: Optional[int] = None
    net_income: Optional[int] = None

    def row_for(self, name: str) -> Optional[int]:
        value = getattr(self, name)
        return None if value is None else value - 1


STORE_PROFORMA_ANCHOR_DEFAULTS = AnchorDefaults(
    income=18, total_income=39, expense=41, total_expense=63, net_income=65
)


@dataclass(frozen=True)
class SectionAnchors:
    income: Optional[int] = None
    total_income: Optional[int] = None
    expense: Optional[int] = None
    total_expense: Optional[int] = None
    net_income: Optional[int] = None
    defaulted: Tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name) is not None for name in REQUIRED_ANCHORS)

    @property
    def is_ordered(self) -> bool:
        if not self.is_complete:
            return False
        if not self.income < self.total_income < self.expense < self.total_expense:
            return False
        return self.net_income is None or self.net_income > self.total_expense


def resolve_anchors(
    grid: Grid,
    label_col: int,
    defaults: Optional[AnchorDefaults] = None,
) -> SectionAnchors:
    rows: Dict[str, Optional[int]] = {}
    defaulted: List[str] = []
    for name, target in ANCHOR_TARGETS.items():
        row = find_anchor_row(grid, label_col, target)
        if row is None and defaults is not None:
            row = defaults.row_for(name)
            if row is not None:
                defaulted.append(name)
                logger.info("Anchor '%s' not found; using template default row %s", target, row + 1)
        rows[name] = row
    return SectionAnchors(defaulted=tuple(defaulted), **rows)


# --------------------------------------------------------------------
# Column stride / offset
# --------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnStride:
    stride: int = 1
    offset: int = 0


def detect_stride(grid: Grid, start_col: int, sample_rows: Sequence[int]) -> ColumnStride:
    """
    (a) '$' just left of start_col, start_col itself not '$'  -> stride 2, offset 0
    (b) '$' at start_col, next column not '$'                 -> stride 2, offset 1
    (c) otherwise                                              -> stride 1, offset 0
    """
    rows = [r for r in sample_rows if r is not None and r >= 0]
    if start_col > 0 and any(
        _is_spacer(grid, r, start_col - 1) and not _is_spacer(grid, r, start_col) for r in rows
    ):
        return ColumnStride(stride=2, offset=0)
    if any(_is_spacer(grid, r, start_col) and not _is_spacer(grid, r, start_col + 1) for r in rows):
        return ColumnStride(stride=2, offset=1)
    return ColumnStride(stride=1, offset=0)


def stride_sample_rows(anchors: SectionAnchors, band_row: int) -> List[int]:
    """Rows probed for currency spacers: totals rows and each section's first line."""
    rows: List[int] = []
    for r in (anchors.total_income, anchors.total_expense, anchors.net_income):
        if r is not None:
            rows.append(r)
    for r in (anchors.income, anchors.expense):
        if r is not None:
            rows.append(r + 1)
    if not rows:
        rows = list(range(band_row + 1, band_row + 6))
    return rows


# --------------------------------------------------------------------
# Layout descriptor
# --------------------------------------------------------------------

@dataclass(frozen=True)
class LayoutDescriptor:
    month_band_row: int
    month_band_start_col: int
    month_tokens: Tuple[str, ...]
    label_column: int
    income_anchor_row: Optional[int] = None
    total_income_anchor_row: Optional[int] = None
    expense_anchor_row: Optional[int] = None
    total_expense_anchor_row: Optional[int] = None
    net_income_anchor_row: Optional[int] = None
    value_column_stride: int = 1
    value_column_offset: int = 0
    defaulted_anchors: Tuple[str, ...] = field(default=())

    @property
    def has_sections(self) -> bool:
        return None not in (
            self.income_anchor_row,
            self.total_income_anchor_row,
            self.expense_anchor_row,
            self.total_expense_anchor_row,
        )

    @property
    def value_columns(self) -> List[int]:
        first = self.month_band_start_col + self.value_column_offset
        return [first + i * self.value_column_stride for i in range(BAND_LENGTH)]

    @property
    def income_rows(self) -> range:
        if not self.has_sections:
            return range(0)
        return range(self.income_anchor_row + 1, self.total_income_anchor_row)

    @property
    def expense_rows(self) -> range:
        if not self.has_sections:
            return range(0)
        return range(self.expense_anchor_row + 1, self.total_expense_anchor_row)

    def to_detected(self, sheet_name: str) -> Dict[str, object]:
        """1-based summary used in API responses."""
        return {
            "sheetName": sheet_name,
            "monthRow": self.month_band_row + 1,
            "monthStartCol": self.month_band_start_col + self.value_column_offset + 1,
            "months": list(self.month_tokens),
            "labelCol": self.label_column + 1,
        }


def infer_layout(
    grid: Grid,
    defaults: Optional[AnchorDefaults] = None,
    band: Optional[MonthBand] = None,
) -> Optional[LayoutDescriptor]:
    """Infer the full layout of one sheet; None when it has no month band."""
    band = band or locate_month_band(grid)
    if band is None:
        return None
    label_col = detect_label_column(grid, band.row, band.start_col)
    anchors = resolve_anchors(grid, label_col, defaults)
    stride = detect_stride(grid, band.start_col, stride_sample_rows(anchors, band.row))
    return LayoutDescriptor(
        month_band_row=band.row,
        month_band_start_col=band.start_col,
        month_tokens=band.tokens,
        label_column=label_col,
        income_anchor_row=anchors.income,
        total_income_anchor_row=anchors.total_income,
        expense_anchor_row=anchors.expense,
        total_expense_anchor_row=anchors.total_expense,
        net_income_anchor_row=anchors.net_income,
        value_column_stride=stride.stride,
        value_column_offset=stride.offset,
        defaulted_anchors=anchors.defaulted,
    )


def anchors_of(layout: LayoutDescriptor) -> SectionAnchors:
    return SectionAnchors(
        income=layout.income_anchor_row,
        total_income=layout.total_income_anchor_row,
        expense=layout.expense_anchor_row,
        total_expense=layout.total_expense_anchor_row,
        net_income=layout.net_income_anchor_row,
        defaulted=layout.defaulted_anchors,
    )
