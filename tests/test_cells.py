from datetime import date, datetime

from storeinsight.extract.coerce import (
    coerce_date,
    coerce_label,
    coerce_month_token,
    coerce_number,
    coerce_optional_number,
    coerce_percent,
    months_between,
)
from storeinsight.grid import EMPTY, DateCell, NumberCell, TextCell, cell_at, cell_ref, grid_from_rows, to_cell


def test_to_cell_variants():
    assert to_cell(None) == EMPTY
    assert to_cell(float("nan")) == EMPTY
    assert to_cell(True) == TextCell("TRUE")
    assert to_cell(3) == NumberCell(3.0)
    assert to_cell("  ") == TextCell("  ")
    assert to_cell(datetime(2025, 1, 2, 3, 4)) == DateCell(date(2025, 1, 2))


def test_cell_at_out_of_range_is_empty():
    grid = grid_from_rows([[1, 2], [3]])
    assert cell_at(grid, 1, 1) == EMPTY
    assert cell_at(grid, 5, 0) == EMPTY
    assert cell_at(grid, -1, 0) == EMPTY
    assert cell_ref(0, 0) == "A1"
    assert cell_ref(30, 11) == "L31"


def test_month_token_text_formats():
    for text in ("Oct 2025", "October 2025", "Oct-2025", "Oct2025", "Oct-25", "oct 25", "10/2025", "2025-10"):
        assert coerce_month_token(TextCell(text)) == "oct-2025", text


def test_month_token_rejects_bad_months():
    assert coerce_month_token(TextCell("13/2025")) is None
    assert coerce_month_token(TextCell("2025-00")) is None
    assert coerce_month_token(TextCell("Rental Income")) is None
    assert coerce_month_token(EMPTY) is None


def test_month_token_dates_and_serials():
    assert coerce_month_token(DateCell(date(2025, 10, 15))) == "oct-2025"
    assert coerce_month_token(NumberCell(45931)) == "oct-2025"
    # small numbers are values, not serial dates
    assert coerce_month_token(NumberCell(1000)) is None


def test_coerce_number_money_text():
    assert coerce_number(TextCell("(1,234.50)")) == -1234.5
    assert coerce_number(TextCell("$ 1,000")) == 1000.0
    assert coerce_number(TextCell("n/a")) == 0.0
    assert coerce_number(EMPTY) == 0.0
    assert coerce_number(NumberCell(12.5)) == 12.5


def test_optional_number_and_percent():
    assert coerce_optional_number(TextCell("")) is None
    assert coerce_optional_number(TextCell("--")) is None
    assert coerce_optional_number(NumberCell(0)) == 0.0
    assert coerce_percent(NumberCell(0.125)) == 12.5
    assert coerce_percent(TextCell("12.5%")) == 12.5
    assert coerce_percent(TextCell("0.5%")) == 0.5
    assert coerce_percent(TextCell("N/A")) is None


def test_coerce_label_and_month_distance():
    assert coerce_label(TextCell("  Rental   Income ")) == "Rental Income"
    assert coerce_label(NumberCell(4010)) == "4010"
    assert months_between("dec-2025", "jan-2026") == 1


def test_coerce_date_sources():
    assert coerce_date(DateCell(date(2025, 10, 3))) == date(2025, 10, 3)
    assert coerce_date(NumberCell(45931)) == date(2025, 10, 1)
    assert coerce_date(TextCell("10/31/2025")) == date(2025, 10, 31)
    assert coerce_date(TextCell("2-5-25")) == date(2025, 2, 5)
    assert coerce_date(TextCell("2025-10-15")) == date(2025, 10, 15)
    assert coerce_date(TextCell("13/45/2025")) is None
    assert coerce_date(TextCell("Move In")) is None
    assert coerce_date(TextCell("2025")) is None
    assert coerce_date(NumberCell(12)) is None
    assert coerce_date(EMPTY) is None
