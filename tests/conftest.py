import io
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Ensure src package root is importable when running tests without installing
ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

MONTHS_FY = ["Oct-25", "Nov-25", "Dec-25", "Jan-26", "Feb-26", "Mar-26",
             "Apr-26", "May-26", "Jun-26", "Jul-26", "Aug-26", "Sep-26"]


def _line(label, value):
    return [None, label] + [value] * 12


@pytest.fixture
def pl_rows():
    """A small facility P&L: labels in column B, months from column C on row 3."""
    return [
        ["Midtown Storage - Income Statement"],
        [],
        [None, None] + MONTHS_FY,
        [None, "Income"],
        _line("Rental Income", 1000),
        _line("Bad Debt", 50),
        _line("Late Fees", 20),
        _line("Total Operating Income", 970),
        [None, "Expenses"],
        _line("Payroll", 300),
        _line("Electric", 100),
        _line("Total Operating Expense", 400),
        [],
        _line("Net Operating Income", 570),
    ]


@pytest.fixture
def xlsx_bytes():
    """Build an in-memory .xlsx from {sheet title: rows}."""
    from openpyxl import Workbook

    def build(sheets):
        wb = Workbook()
        wb.remove(wb.active)
        for title, rows in sheets.items():
            ws = wb.create_sheet(title)
            for row in rows:
                ws.append(list(row))
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    return build


@pytest.fixture
def esr_rows():
    """Executive Summary Report with the aging table at L31:N38."""
    rows = [[None] * 14 for _ in range(38)]
    rows[0][0] = "Executive Summary Report"
    aging = [
        (100.4, 1, 1.0),
        (200, 2, 2.0),
        (300, 3, 1.5),
        (50, 1, 0.5),
        (25, 1, 0.25),
        (0, 0, None),
        (0, 0, None),
        (10, 1, 0.1),
    ]
    for i, (dollars, units, pct) in enumerate(aging):
        rows[30 + i][10] = ["0-10", "11-30", "31-60", "61-90", "91-120", "121-180", "181-360", "361+"][i]
        rows[30 + i][11] = dollars
        rows[30 + i][12] = units
        rows[30 + i][13] = pct
    return rows


@pytest.fixture
def move_rows():
    """Move In / Move Out sheets spanning Aug-Oct 2025; October is the latest month."""
    return {
        "Move In": [
            ["Date", "Unit", "Area", "Rent at Move In", "Promotion Amount"],
            [datetime(2025, 8, 5), "A1", 100, 150, 0],
            [datetime(2025, 9, 10), "A2", 50, 100, 25],
            [datetime(2025, 10, 1), "A3", 100, 200, 0],
            [datetime(2025, 10, 15), "A4", 100, 150, 10],
            ["10/20/2025", "A5", 50, "$100.00", None],
            [None, "A6", 75, 90, 0],
        ],
        "Move Out": [
            ["Date", "Unit", "Area", "Rent at Move In", "Days In Space"],
            [datetime(2025, 9, 3), "B1", 100, 120, 200],
            [datetime(2025, 10, 4), "B2", 100, 130, 90],
            [datetime(2025, 10, 30), "B3", 50, 70, 400],
        ],
    }


@pytest.fixture
def owner_rows():
    """Facility summary with label/value pairs scattered over the first sheet."""
    return [
        ["Facility Summary", None, "Report Date", datetime(2025, 10, 31)],
        ["Address", "123 Main St"],
        ["Owner Group", "Smith Holdings"],
        ["Management Acquired Date", datetime(2019, 5, 1)],
        ["Total Units", 412],
        ["Rentable Sq Ft", "52,300"],
        ["Occupancy %", 0.915],
        ["Move-Ins MTD", 14],
        ["Net Income", "(1,250.00)"],
    ]
