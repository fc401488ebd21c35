# storeinsight/reports/performance.py
"""
Move activity tokens from a management-software export with "Move In" and
"Move Out" sheets (one row per rental, header on the first row).

Rows are bucketed by calendar month of their Date column. The current month is
the month of the latest dated row unless the caller names one; trailing 3/6/12
month windows end at the current month (or the month before it).
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

import pandas as pd

from storeinsight.extract.coerce import coerce_date, coerce_label, coerce_number
from storeinsight.grid import SheetGrid, cell_at
from storeinsight.reports.pptx_tokens import DASH, format_currency

logger = logging.getLogger(__name__)

LENGTH_OF_STAY_THRESHOLD_DAYS = 180
TRAILING_WINDOWS = (3, 6, 12)
MONTH_OVERRIDE_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})$")


@dataclass(frozen=True)
class MoveSheet:
    name: str
    date_column: str
    area_column: str
    rent_column: str
    extra_column: str


MOVE_IN_SHEET = MoveSheet("Move In", "Date", "Area", "Rent at Move In", "Promotion Amount")
MOVE_OUT_SHEET = MoveSheet("Move Out", "Date", "Area", "Rent at Move In", "Days In Space")

STAT_COLUMNS = (
    "move_ins", "move_ins_area", "move_ins_rent", "move_ins_promo",
    "move_outs", "move_outs_area", "move_outs_rent", "lor_sum", "lor_count", "lor_long",
)

PREVIEW_FIELDS = (
    ("Move Activity", "CURRENTMONTH", "Current Month"),
    ("Move Activity", "MOVEINS", "Move-Ins (Current)"),
    ("Move Activity", "MOVEOUTS", "Move-Outs (Current)"),
    ("Move Activity", "NETMOVE", "Net Move (Current)"),
    ("Move Activity", "MOVEINSTRL3", "Move-Ins (Trailing 3)"),
    ("Move Activity", "MOVEOUTSTRL3", "Move-Outs (Trailing 3)"),
    ("Move Activity", "NETTRL3", "Net Move (Trailing 3)"),
    ("Move Activity", "MOVEINSTRL6", "Move-Ins (Trailing 6)"),
    ("Move Activity", "MOVEOUTSTRL6", "Move-Outs (Trailing 6)"),
    ("Move Activity", "NETTRL6", "Net Move (Trailing 6)"),
    ("Move Activity", "MOVEINSTRL12", "Move-Ins (Trailing 12)"),
    ("Move Activity", "MOVEOUTSTRL12", "Move-Outs (Trailing 12)"),
    ("Move Activity", "NETTRL12", "Net Move (Trailing 12)"),
    ("Move Activity", "MOVIPER", "Move-Ins vs Prior Month"),
    ("Move Activity", "MOVOPER", "Move-Outs vs Prior Month"),
    ("Move Activity", "MOVN", "Net vs Prior Month"),
    ("Owner Summary", "MTDMI", "MTD Move-Ins"),
    ("Owner Summary", "MTDMILM", "MTD Move-Ins (Last Month)"),
    ("Owner Summary", "DSFTMI", "$/SqFt Move-Ins"),
    ("Owner Summary", "DSFTMILM", "$/SqFt Move-Ins (LM)"),
    ("Owner Summary", "MTDMO", "MTD Move-Outs"),
    ("Owner Summary", "MTDMOLM", "MTD Move-Outs (LM)"),
    ("Owner Summary", "DSFTMO", "$/SqFt Move-Outs"),
    ("Owner Summary", "DSFTMOLM", "$/SqFt Move-Outs (LM)"),
    ("Owner Summary", "AVGLOR", "Avg LOR of Move-Outs"),
    ("Owner Summary", "AVGLORLM", "Avg LOR (Last Month)"),
    ("Owner Summary", "PERLOR", "% LOR > 6 Months"),
    ("Owner Summary", "PERLORLM", "% LOR > 6 Months (LM)"),
    ("Owner Summary", "PROMO", "% Move-Ins with Promo"),
    ("Owner Summary", "PROMOLM", "% Move-Ins with Promo (LM)"),
)


class MoveActivityError(ValueError):
    """The workbook cannot produce move activity; `code` says why."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


# --------------------------------------------------------------------
# Formatting
# --------------------------------------------------------------------

def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_integer(value: float) -> str:
    return f"{_half_up(value):,}"


def format_change(value: Optional[float]) -> str:
    """Fraction as a one-decimal percent: 0.125 -> '12.5%'."""
    if value is None or not math.isfinite(value):
        return DASH
    text = f"{value * 100:.1f}%"
    return "0.0%" if text == "-0.0%" else text


def pct_change(current: float, previous: float) -> Optional[float]:
    if not previous:
        return None
    return (current - previous) / previous


def ratio(numerator: float, denominator: float) -> Optional[float]:
    if denominator <= 0:
        return None
    return numerator / denominator


def per_sqft(amount: float, area: float) -> str:
    if abs(area) < 1e-6:
        return DASH
    return format_currency(amount / area)


def average_days(total: float, count: float) -> str:
    if count <= 0:
        return DASH
    return format_integer(total / count)


def parse_month_override(text: Optional[str]) -> Optional[pd.Period]:
    """'2025-10', '2025/10' or '2025.10' -> Period; None when absent or invalid."""
    m = MONTH_OVERRIDE_RE.match((text or "").strip())
    if not m or not 1 <= int(m.group(2)) <= 12:
        return None
    return pd.Period(year=int(m.group(1)), month=int(m.group(2)), freq="M")


# --------------------------------------------------------------------
# Sheet reading
# --------------------------------------------------------------------

def find_sheet(sheets: Sequence[SheetGrid], name: str) -> Optional[SheetGrid]:
    wanted = name.strip().lower()
    return next((s for s in sheets if s.name.strip().lower() == wanted), None)


def _header_index(sheet: SheetGrid) -> Dict[str, int]:
    header = sheet.grid[0] if sheet.grid else []
    index: Dict[str, int] = {}
    for c, cell in enumerate(header):
        text = coerce_label(cell).lower()
        if text and text not in index:
            index[text] = c
    return index


def _sheet_events(sheet: SheetGrid, layout: MoveSheet, move_in: bool) -> List[Dict[str, object]]:
    columns = _header_index(sheet)
    date_col = columns.get(layout.date_column.lower())
    if date_col is None:
        logger.warning("Sheet '%s' has no '%s' column", sheet.name, layout.date_column)
        return []

    def number(r: int, column: str) -> float:
        c = columns.get(column.lower())
        return coerce_number(cell_at(sheet.grid, r, c)) if c is not None else 0.0

    events = []
    for r in range(1, len(sheet.grid)):
        day = coerce_date(cell_at(sheet.grid, r, date_col))
        if day is None:
            continue
        area = number(r, layout.area_column)
        rent = number(r, layout.rent_column)
        extra = number(r, layout.extra_column)
        row = dict.fromkeys(STAT_COLUMNS, 0.0)
        row.update(date=day, month=pd.Period(day, freq="M"))
        if move_in:
            row.update(move_ins=1, move_ins_area=area, move_ins_rent=rent, move_ins_promo=int(extra > 0))
        else:
            stayed = extra > 0
            row.update(
                move_outs=1, move_outs_area=area, move_outs_rent=rent,
                lor_sum=extra if stayed else 0.0,
                lor_count=int(stayed),
                lor_long=int(stayed and extra >= LENGTH_OF_STAY_THRESHOLD_DAYS),
            )
        events.append(row)
    return events


# --------------------------------------------------------------------
# Extraction
# --------------------------------------------------------------------

@dataclass
class PerformanceExtraction:
    tokens: Dict[str, str] = field(default_factory=dict)
    monthly: Optional[pd.DataFrame] = None
    current_month: Optional[pd.Period] = None
    previous_month: Optional[pd.Period] = None
    latest_move_date: Optional[date] = None
    rows: int = 0

    def preview_rows(self) -> List[Dict[str, str]]:
        return [
            {"section": section, "token": token, "label": label, "value": self.tokens.get(token, DASH)}
            for section, token, label in PREVIEW_FIELDS
        ]

    def metadata(self) -> Dict[str, object]:
        return {
            "currentMonthKey": str(self.current_month) if self.current_month is not None else None,
            "previousMonthKey": str(self.previous_month) if self.previous_month is not None else None,
            "latestMoveDate": self.latest_move_date.isoformat() if self.latest_move_date else None,
            "rows": self.rows,
        }


def _window_sum(monthly: pd.DataFrame, start: pd.Period, end: pd.Period, column: str) -> int:
    window = monthly.reindex(pd.period_range(start, end, freq="M"), fill_value=0)
    return int(window[column].sum())


def _month_stats(monthly: pd.DataFrame, month: pd.Period) -> pd.Series:
    return monthly.reindex(pd.period_range(month, month, freq="M"), fill_value=0).iloc[0]


def extract_move_activity(
    sheets: Sequence[SheetGrid],
    current_month: Optional[str] = None,
    include_current_in_trailing: bool = True,
) -> PerformanceExtraction:
    """
    Count move-ins and move-outs per month and build the move activity and
    owner summary tokens. Raises MoveActivityError when a sheet is missing or
    no row carries a date.
    """
    events: List[Dict[str, object]] = []
    for layout, move_in in ((MOVE_IN_SHEET, True), (MOVE_OUT_SHEET, False)):
        sheet = find_sheet(sheets, layout.name)
        if sheet is None:
            raise MoveActivityError("missing_sheet", f'Sheet "{layout.name}" not found in workbook.')
        events.extend(_sheet_events(sheet, layout, move_in))
    if not events:
        raise MoveActivityError("no_rows", "No dated rows were found in the Move In/Move Out sheets.")

    df = pd.DataFrame(events)
    monthly = df.groupby("month")[list(STAT_COLUMNS)].sum()
    monthly = monthly.reindex(pd.period_range(monthly.index.min(), monthly.index.max(), freq="M"), fill_value=0)

    latest = max(df["date"])
    current = parse_month_override(current_month) or pd.Period(latest, freq="M")
    previous = current - 1
    cur = _month_stats(monthly, current)
    prev = _month_stats(monthly, previous)
    end = current if include_current_in_trailing else previous

    tokens: Dict[str, str] = {
        "CURRENTMONTH": current.strftime("%B %Y"),
        "MOVEINS": str(int(cur["move_ins"])),
        "MOVEOUTS": str(int(cur["move_outs"])),
        "NETMOVE": str(int(cur["move_ins"] - cur["move_outs"])),
    }
    for months in TRAILING_WINDOWS:
        start = end - (months - 1)
        ins = _window_sum(monthly, start, end, "move_ins")
        outs = _window_sum(monthly, start, end, "move_outs")
        tokens[f"MOVEINSTRL{months}"] = str(ins)
        tokens[f"MOVEOUTSTRL{months}"] = str(outs)
        tokens[f"NETTRL{months}"] = str(ins - outs)

    tokens.update({
        "MOVIPER": format_change(pct_change(cur["move_ins"], prev["move_ins"])),
        "MOVOPER": format_change(pct_change(cur["move_outs"], prev["move_outs"])),
        "MOVN": format_change(pct_change(cur["move_ins"] - cur["move_outs"], prev["move_ins"] - prev["move_outs"])),
        "MTDMI": format_integer(cur["move_ins"]),
        "MTDMILM": format_integer(prev["move_ins"]),
        "DSFTMI": per_sqft(cur["move_ins_rent"], cur["move_ins_area"]),
        "DSFTMILM": per_sqft(prev["move_ins_rent"], prev["move_ins_area"]),
        "MTDMO": format_integer(cur["move_outs"]),
        "MTDMOLM": format_integer(prev["move_outs"]),
        "DSFTMO": per_sqft(cur["move_outs_rent"], cur["move_outs_area"]),
        "DSFTMOLM": per_sqft(prev["move_outs_rent"], prev["move_outs_area"]),
        "AVGLOR": average_days(cur["lor_sum"], cur["lor_count"]),
        "AVGLORLM": average_days(prev["lor_sum"], prev["lor_count"]),
        "PERLOR": format_change(ratio(cur["lor_long"], cur["lor_count"])),
        "PERLORLM": format_change(ratio(prev["lor_long"], prev["lor_count"])),
        "PROMO": format_change(ratio(cur["move_ins_promo"], cur["move_ins"])),
        "PROMOLM": format_change(ratio(prev["move_ins_promo"], prev["move_ins"])),
    })

    logger.info(
        "Move activity for %s: %s in, %s out (%d dated rows)",
        tokens["CURRENTMONTH"], tokens["MOVEINS"], tokens["MOVEOUTS"], len(df),
    )
    return PerformanceExtraction(
        tokens=tokens,
        monthly=monthly,
        current_month=current,
        previous_month=previous,
        latest_move_date=latest,
        rows=len(df),
    )
