# storeinsight/reports/budget.py
"""
Budget comparison extraction.

Finds the PTD/YTD header run in a budget-vs-actual report and turns every known
line into `{BASE}{SUFFIX}` tokens (e.g. RENTINCCM, RENTINCYTDVARPER). Missing
current-month actuals can be backfilled from a financial statement workbook.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

from storeinsight.config import CONFIG_DIR
from storeinsight.extract.coerce import coerce_optional_number, coerce_percent
from storeinsight.grid import Grid, SheetGrid, TextCell, cell_at, cell_ref
from storeinsight.map.aliases import normalize_label
from storeinsight.provenance import ProvenanceEntry

logger = logging.getLogger(__name__)

BUDGET_YAML = CONFIG_DIR / "budget.yaml"
OWNER_RE = re.compile(r"^\s*owner\s*=", re.IGNORECASE)


def _load_budget_config() -> dict:
    with open(BUDGET_YAML, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


_cfg = _load_budget_config()
HEADER_SEQUENCE: Tuple[Tuple[str, frozenset], ...] = tuple(
    (str(c["suffix"]), frozenset(str(v) for v in c["variants"])) for c in _cfg["columns"]
)
SUFFIXES: Tuple[str, ...] = tuple(s for s, _ in HEADER_SEQUENCE)
PERCENT_SUFFIXES = frozenset(_cfg.get("percent_suffixes") or [])
BUDGET_LINES: Mapping[str, str] = MappingProxyType({str(k): str(v) for k, v in _cfg["lines"].items()})
_LABEL_TO_BASE = {normalize_label(label): base for label, base in BUDGET_LINES.items()}


def expected_budget_tokens() -> List[str]:
    return [f"{base}{suffix}" for base in BUDGET_LINES.values() for suffix in SUFFIXES]


def normalize_header(text: str) -> str:
    return " ".join(re.sub(r"[^a-z0-9% ]+", " ", text.lower()).split())


def _header_text(grid: Grid, r: int, c: int) -> str:
    cell = cell_at(grid, r, c)
    return normalize_header(cell.text) if isinstance(cell, TextCell) else ""


def _round_money(v: float) -> float:
    return round(v, 2) + 0.0


def _round_percent(v: float) -> float:
    return round(v, 1) + 0.0


@dataclass(frozen=True)
class BudgetHeader:
    row: int
    first_col: int

    @property
    def label_col(self) -> int:
        return max(0, self.first_col - 1)

    def column_for(self, suffix: str) -> int:
        return self.first_col + SUFFIXES.index(suffix)


def find_budget_header(grid: Grid) -> Optional[BudgetHeader]:
    """First row holding all eight budget headers, in order, in adjacent columns."""
    n = len(HEADER_SEQUENCE)
    for r, row in enumerate(grid):
        for c in range(0, len(row) - n + 1):
            if all(_header_text(grid, r, c + i) in variants for i, (_, variants) in enumerate(HEADER_SEQUENCE)):
                return BudgetHeader(row=r, first_col=c)
    return None


def extract_owner_group(grid: Grid) -> Optional[str]:
    """'Owner = Smith Holdings (LLC)' in the top-left corner -> 'Smith Holdings'."""
    for r in range(min(len(grid), 10)):
        for c in range(8):
            cell = cell_at(grid, r, c)
            if not isinstance(cell, TextCell) or not OWNER_RE.match(cell.text):
                continue
            value = OWNER_RE.sub("", cell.text)
            value = " ".join(re.sub(r"\([^)]*\)", "", value).split())
            if value:
                return value
    return None


@dataclass
class _Value:
    value: float
    sheet: str
    cell: str
    source: str = "budget"  # budget | fallback | computed
    computed_from: Optional[str] = None


@dataclass
class _Row:
    base: str
    label: str
    row: int
    values: Dict[str, _Value] = field(default_factory=dict)


@dataclass
class BudgetExtraction:
    tokens: Dict[str, float] = field(default_factory=dict)
    details: Dict[str, Dict[str, object]] = field(default_factory=dict)
    provenance: List[ProvenanceEntry] = field(default_factory=list)
    owner_group: Optional[str] = None
    sheet_name: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.tokens)

    @property
    def missing(self) -> List[str]:
        return sorted(t for t in expected_budget_tokens() if t not in self.tokens)


def _read_rows(grid: Grid, header: BudgetHeader, sheet: str) -> List[_Row]:
    rows: List[_Row] = []
    seen = set()
    for r in range(header.row + 1, len(grid)):
        label_cell = cell_at(grid, r, header.label_col)
        if not isinstance(label_cell, TextCell):
            continue
        base = _LABEL_TO_BASE.get(normalize_label(label_cell.text))
        if base is None or base in seen:
            continue
        seen.add(base)
        row = _Row(base=base, label=label_cell.text.strip(), row=r)
        for suffix in SUFFIXES:
            col = header.column_for(suffix)
            cell = cell_at(grid, r, col)
            if suffix in PERCENT_SUFFIXES:
                pct = coerce_percent(cell)
                value = None if pct is None else _round_percent(pct)
            else:
                num = coerce_optional_number(cell)
                value = None if num is None else _round_money(num)
            if value is not None:
                row.values[suffix] = _Value(value=value, sheet=sheet, cell=cell_ref(r, col))
        rows.append(row)
    return rows


def financial_current_month(sheets: Sequence[SheetGrid]) -> Dict[str, _Value]:
    """
    Map budget bases to the 'Current Month' column of a financial statement.
    Sheets named like 'Income Statement' are tried first; the sheet with the
    most matched lines wins.
    """
    ordered = sorted(sheets, key=lambda s: "income statement" not in s.name.lower())
    best: Dict[str, _Value] = {}
    for sheet in ordered:
        grid = sheet.grid
        found: Optional[Tuple[int, int]] = None
        for r in range(min(len(grid), 12)):
            for c in range(len(grid[r])):
                if "current month" in _header_text(grid, r, c):
                    found = (r, c)
                    break
            if found:
                break
        if not found:
            continue
        header_row, col = found
        values: Dict[str, _Value] = {}
        for r in range(header_row + 1, len(grid)):
            label = cell_at(grid, r, 0)
            if not isinstance(label, TextCell):
                continue
            base = _LABEL_TO_BASE.get(normalize_label(label.text))
            if base is None or base in values:
                continue
            num = coerce_optional_number(cell_at(grid, r, col))
            if num is None:
                continue
            values[base] = _Value(
                value=_round_money(num), sheet=sheet.name, cell=cell_ref(r, col), source="fallback"
            )
        if len(values) > len(best):
            best = values
    return best


def _derive(row: _Row, header: BudgetHeader, sheet: str) -> None:
    def put(suffix: str, value: float, computed_from: str) -> None:
        col = header.column_for(suffix)
        row.values[suffix] = _Value(
            value=value, sheet=sheet, cell=cell_ref(row.row, col),
            source="computed", computed_from=computed_from,
        )

    v = row.values
    for var, actual, budget, pct in (("VAR", "CM", "PTD", "VARPER"), ("YTDVAR", "YTD", "YTDBUD", "YTDVARPER")):
        if var not in v and actual in v and budget in v:
            put(var, _round_money(v[actual].value - v[budget].value), f"{actual} - {budget}")
        if pct not in v and var in v and budget in v and abs(v[budget].value) >= 1e-6:
            put(pct, _round_percent(v[var].value / v[budget].value * 100), f"{var} / {budget} * 100")


def extract_budget_tokens(
    sheets: Sequence[SheetGrid],
    financial_sheets: Optional[Sequence[SheetGrid]] = None,
) -> BudgetExtraction:
    """Locate the budget table and build tokens; empty result when no header is found."""
    out = BudgetExtraction()
    located = None
    for sheet in sheets:
        header = find_budget_header(sheet.grid)
        if header is not None:
            located = (sheet, header)
            break
    if located is None:
        logger.warning("Budget header not found: check the PTD/YTD columns")
        return out

    sheet, header = located
    out.sheet_name = sheet.name
    out.owner_group = extract_owner_group(sheet.grid)
    rows = _read_rows(sheet.grid, header, sheet.name)

    if financial_sheets:
        fallback = financial_current_month(financial_sheets)
        for row in rows:
            if "CM" not in row.values and row.base in fallback:
                row.values["CM"] = fallback[row.base]

    for row in rows:
        _derive(row, header, sheet.name)
        for suffix in SUFFIXES:
            val = row.values.get(suffix)
            if val is None:
                continue
            token = f"{row.base}{suffix}"
            notes = []
            if val.source == "computed":
                notes.append("computed")
            if val.source == "fallback":
                notes.append("financial fallback")
            if suffix in PERCENT_SUFFIXES:
                notes.append("percent stored as numeric")
            note = "; ".join(notes) or None
            out.tokens[token] = val.value
            detail: Dict[str, object] = {"value": val.value, "sheet": val.sheet, "cell": val.cell}
            if note:
                detail["note"] = note
            out.details[token] = detail
            out.provenance.append(
                ProvenanceEntry(
                    token=token, source_sheet=val.sheet, source_cell=val.cell,
                    matched_alias=row.label, computed_from=val.computed_from, note=note,
                )
            )

    logger.info("Budget: %d token(s) from '%s' (%d expected)", out.count, sheet.name, len(expected_budget_tokens()))
    if out.missing:
        logger.debug("Budget tokens not found: %s", out.missing)
    return out
