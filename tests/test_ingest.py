from datetime import date, datetime

import pytest

from storeinsight.grid import DateCell, EmptyCell, NumberCell, TextCell, cell_at
from storeinsight.ingest.workbook import (
    PayloadError,
    WorkbookUnreadableError,
    grids_from_payload,
    read_workbook,
)


def test_read_xlsx_keeps_cell_kinds(xlsx_bytes):
    data = xlsx_bytes({
        "Cover": [["Midtown"]],
        "P&L": [
            [None, None, datetime(2025, 10, 1), datetime(2025, 11, 1)],
            [None, "Rental Income", 1000, 1010.5],
        ],
    })
    sheets = read_workbook(data, "midtown.xlsx")
    assert [s.name for s in sheets] == ["Cover", "P&L"]

    grid = sheets[1].grid
    assert isinstance(cell_at(grid, 0, 0), EmptyCell)
    assert cell_at(grid, 0, 2) == DateCell(date(2025, 10, 1))
    assert cell_at(grid, 1, 1) == TextCell("Rental Income")
    assert cell_at(grid, 1, 3) == NumberCell(1010.5)


def test_blank_leading_rows_keep_positions(xlsx_bytes):
    from openpyxl import Workbook
    import io

    wb = Workbook()
    wb.active["C3"] = "Payroll"
    buf = io.BytesIO()
    wb.save(buf)
    grid = read_workbook(buf.getvalue(), "x.xlsx")[0].grid
    assert cell_at(grid, 2, 2) == TextCell("Payroll")


def test_zip_magic_without_extension(xlsx_bytes):
    sheets = read_workbook(xlsx_bytes({"Only": [["a"]]}))
    assert sheets[0].name == "Only"


@pytest.mark.parametrize(
    "data, filename",
    [
        (b"hello", "x.csv"),
        (b"PK\x03\x04 not really a zip", "x.xlsx"),
        (b"", "x.xlsx"),
        (b"plain text", None),
    ],
)
def test_unreadable_uploads(data, filename):
    with pytest.raises(WorkbookUnreadableError):
        read_workbook(data, filename)


def test_missing_path(tmp_path):
    with pytest.raises(WorkbookUnreadableError, match="Could not read"):
        read_workbook(tmp_path / "nope.xlsx")


def test_payload_with_sheets():
    sheets = grids_from_payload({
        "sheets": [
            {"name": "A", "grid": [["x", 1]]},
            {"grid": [[None, "2025-10-01"], "junk"]},
        ]
    })
    assert [s.name for s in sheets] == ["A", "Sheet2"]
    assert sheets[0].grid[0] == [TextCell("x"), NumberCell(1.0)]
    assert sheets[1].grid[1] == []


def test_payload_with_single_grid():
    sheets = grids_from_payload({"grid": [[1, 2]], "name": "Upload"})
    assert len(sheets) == 1
    assert sheets[0].name == "Upload"


@pytest.mark.parametrize(
    "payload",
    [[], {"sheets": [1]}, {"grid": "nope"}, {}],
)
def test_bad_payloads(payload):
    with pytest.raises(PayloadError):
        grids_from_payload(payload)
