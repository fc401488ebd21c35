# storeinsight/extract/coerce.py
"""
Cell value coercion.

These helpers are probed speculatively across whole sheets, so none of them
raise: an unusable cell becomes 0 (numbers), None (month tokens) or "" (labels).
"""

from __future__ import annotations

import math
import re
from datetime import date, timedelta
from typing import Optional, Sequence

import pandas as pd

from storeinsight.grid import Cell, DateCell, NumberCell, TextCell

MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
_MONTH_ALT = "|".join(MONTHS)

EXCEL_EPOCH = date(1899, 12, 30)
SERIAL_MIN = 20000
SERIAL_MAX = 80000

# "Oct 2025", "October 2025", "Oct-2025", "Oct2025"
_MON_YYYY_RE = re.compile(rf"^({_MONTH_ALT})[a-z]*\.?[\s\-]?(\d{{4}})$")
# "Oct-25", "Oct 25", "Oct25"
_MON_YY_RE = re.compile(rf"^({_MONTH_ALT})[a-z]*\.?[\s\-]?(\d{{2}})$")
# "10/2025", "10-2025"
_M_YYYY_RE = re.compile(r"^(\d{1,2})[/\-](\d{4})$")
# "2025-10", "2025/10"
_YYYY_M_RE = re.compile(r"^(\d{4})[/\-](\d{1,2})$")
# "10/31/2025", "10-31-25"
_M_D_Y_RE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})$")

_CURRENCY_RE = re.compile(r"[$＄€£,\s]")
_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def _month_token(year: int, month: int) -> Optional[str]:
    if not 1 <= month <= 12 or not 1900 <= year <= 2999:
        return None
    return f"{MONTHS[month - 1]}-{year:04d}"


def serial_to_date(serial: float) -> date:
    return EXCEL_EPOCH + timedelta(days=int(math.floor(serial)))


def coerce_number(cell: Cell) -> float:
    """Numeric value of a cell; 0.0 when it cannot be read as a number."""
    if isinstance(cell, NumberCell):
        return cell.value if math.isfinite(cell.value) else 0.0
    if isinstance(cell, TextCell):
        return parse_money(cell.text)
    return 0.0


def parse_money(text: str) -> float:
    s = text.strip()
    if not s:
        return 0.0
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    s = s.replace("−", "-")
    s = _CURRENCY_RE.sub("", s)
    s = _NON_NUMERIC_RE.sub("", s)
    if not s:
        return 0.0
    try:
        value = float(s)
    except ValueError:
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return -abs(value) if negative else value


def coerce_percent(cell: Cell) -> Optional[float]:
    """
    Percent value in percent units (12.5 means 12.5%).
    Fractions (|x| <= 1) are scaled by 100, matching how spreadsheets store
    percent-formatted cells. Returns None for blank or non-numeric cells.
    """
    if isinstance(cell, NumberCell):
        if not math.isfinite(cell.value):
            return None
        return cell.value * 100 if abs(cell.value) <= 1 else cell.value
    if isinstance(cell, TextCell):
        raw = cell.text.strip()
        if not raw or raw.upper() in {"N/A", "NA", "NONE", "--"}:
            return None
        has_sign = "%" in raw
        value = parse_money(raw.replace("%", ""))
        if value == 0.0 and not re.search(r"\d", raw):
            return None
        if not has_sign and abs(value) <= 1:
            value *= 100
        return value
    return None


def coerce_optional_number(cell: Cell) -> Optional[float]:
    """Like coerce_number, but None for blank / non-numeric text."""
    if isinstance(cell, NumberCell):
        return cell.value if math.isfinite(cell.value) else None
    if isinstance(cell, TextCell):
        raw = cell.text.strip()
        if not raw or not re.search(r"\d", raw):
            return None
        return parse_money(raw)
    return None


def coerce_month_token(cell: Cell) -> Optional[str]:
    """Normalize a cell to 'mon-yyyy', or None if it is not a month."""
    if isinstance(cell, DateCell):
        return _month_token(cell.value.year, cell.value.month)
    if isinstance(cell, NumberCell):
        v = cell.value
        if not math.isfinite(v) or not SERIAL_MIN <= v <= SERIAL_MAX:
            return None
        d = serial_to_date(v)
        return _month_token(d.year, d.month)
    if not isinstance(cell, TextCell):
        return None

    s = " ".join(cell.text.split()).lower()
    if not s:
        return None

    m = _MON_YYYY_RE.match(s)
    if m:
        return _month_token(int(m.group(2)), MONTHS.index(m.group(1)) + 1)
    m = _MON_YY_RE.match(s)
    if m:
        return _month_token(2000 + int(m.group(2)), MONTHS.index(m.group(1)) + 1)
    m = _M_YYYY_RE.match(s)
    if m:
        return _month_token(int(m.group(2)), int(m.group(1)))
    m = _YYYY_M_RE.match(s)
    if m:
        return _month_token(int(m.group(1)), int(m.group(2)))
    return None


def coerce_date(cell: Cell) -> Optional[date]:
    """Calendar date of a cell (date value, Excel serial or date text), else None."""
    if isinstance(cell, DateCell):
        return cell.value
    if isinstance(cell, NumberCell):
        v = cell.value
        if not math.isfinite(v) or not SERIAL_MIN <= v <= SERIAL_MAX:
            return None
        return serial_to_date(v)
    if not isinstance(cell, TextCell):
        return None

    s = cell.text.strip()
    if not re.search(r"\d", s) or s.isdigit():
        return None
    m = _M_D_Y_RE.match(s)
    if m:
        year = int(m.group(3))
        try:
            return date(year + 2000 if year < 100 else year, int(m.group(1)), int(m.group(2)))
        except ValueError:
            return None
    try:
        parsed = pd.to_datetime(s, errors="coerce")
    except (ValueError, OverflowError, TypeError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def coerce_label(cell: Cell) -> str:
    """Trimmed text of a label cell; numbers are rendered, everything else is ''."""
    if isinstance(cell, TextCell):
        return " ".join(cell.text.split())
    if isinstance(cell, NumberCell):
        v = cell.value
        return str(int(v)) if v.is_integer() else str(v)
    return ""


def month_index(token: str) -> int:
    """year * 12 + month for a normalized 'mon-yyyy' token."""
    mon, year = token.split("-")
    return int(year) * 12 + MONTHS.index(mon) + 1


def months_between(a: str, b: str) -> int:
    return month_index(b) - month_index(a)


def sequential_pairs(tokens: Sequence[str]) -> int:
    return sum(1 for a, b in zip(tokens, tokens[1:]) if months_between(a, b) == 1)
