"""
Typed cell grid shared by every extractor.

Raw workbook values (openpyxl, pandas or JSON) are converted once, at grid
construction, into one of four cell kinds. Everything downstream dispatches on
the cell kind instead of probing raw Python types.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Sequence, Union

from openpyxl.utils import get_column_letter


@dataclass(frozen=True)
class EmptyCell:
    pass


@dataclass(frozen=True)
class NumberCell:
    value: float


@dataclass(frozen=True)
class TextCell:
    text: str


@dataclass(frozen=True)
class DateCell:
    value: date


Cell = Union[EmptyCell, NumberCell, TextCell, DateCell]
Grid = List[List[Cell]]

EMPTY = EmptyCell()
CELL_TYPES = (EmptyCell, NumberCell, TextCell, DateCell)


@dataclass
class SheetGrid:
    name: str
    grid: Grid


def to_cell(raw: Any) -> Cell:
    """Convert one raw value into a Cell. Never raises."""
    if raw is None:
        return EMPTY
    if isinstance(raw, CELL_TYPES):
        return raw
    try:
        if raw != raw:  # NaN / NaT
            return EMPTY
    except (TypeError, ValueError):
        pass
    # bool is an int subclass, check it first
    if isinstance(raw, bool):
        return TextCell("TRUE" if raw else "FALSE")
    if isinstance(raw, datetime):
        return DateCell(raw.date())
    if isinstance(raw, date):
        return DateCell(raw)
    if isinstance(raw, (int, float)):
        value = float(raw)
        if math.isnan(value) or math.isinf(value):
            return EMPTY
        return NumberCell(value)
    if isinstance(raw, str):
        return TextCell(raw)
    # pandas Timestamp / NaT and numpy scalars
    to_pydatetime = getattr(raw, "to_pydatetime", None)
    if callable(to_pydatetime):
        try:
            return to_cell(to_pydatetime())
        except (TypeError, ValueError):
            return EMPTY
    item = getattr(raw, "item", None)
    if callable(item):
        return to_cell(item())
    return TextCell(str(raw))


def grid_from_rows(rows: Iterable[Sequence[Any]]) -> Grid:
    """Build a Grid from nested sequences of raw values."""
    return [[to_cell(v) for v in (row or [])] for row in rows]


def cell_at(grid: Grid, row: int, col: int) -> Cell:
    if row < 0 or col < 0 or row >= len(grid):
        return EMPTY
    cells = grid[row]
    if col >= len(cells):
        return EMPTY
    return cells[col]


def column_letter(col: int) -> str:
    """0-based column index to spreadsheet letters (0 -> 'A')."""
    return get_column_letter(col + 1)


def cell_ref(row: int, col: int) -> str:
    """0-based (row, col) to an A1-style reference."""
    return f"{column_letter(col)}{row + 1}"


def range_ref(row: int, first_col: int, last_col: int) -> str:
    return f"{cell_ref(row, first_col)}:{cell_ref(row, last_col)}"
