import pytest

from storeinsight.extract.layout import infer_layout
from storeinsight.extract.series import extract_series, normalize_workbook, tie_out
from storeinsight.grid import SheetGrid, grid_from_rows

from conftest import MONTHS_FY


def _normalize(rows, name="P&L"):
    return normalize_workbook([SheetGrid(name, grid_from_rows(rows))])


def test_series_and_totals(pl_rows):
    result = _normalize(pl_rows)
    series = result.series_by_label
    assert set(series) == {
        "Rental Income (1% monthly increase)",
        "Bad Debt/Rental Refunds",
        "Late Fee Income",
        "Payroll",
        "Electricity",
    }
    assert series["Bad Debt/Rental Refunds"] == [-50.0] * 12
    assert result.totals.toi == [970.0] * 12
    assert result.totals.toe == [400.0] * 12
    assert result.totals.noi == [570.0] * 12


def test_noi_equals_toi_minus_toe(pl_rows):
    pl_rows[4] = [None, "Rental Income"] + [1000 + i * 10.5 for i in range(12)]
    totals = _normalize(pl_rows).totals
    assert totals.noi == [a - b for a, b in zip(totals.toi, totals.toe)]


def test_contra_already_negative_is_unchanged(pl_rows):
    pl_rows[5] = [None, "Bad Debt"] + [-50] * 12
    assert _normalize(pl_rows).series_by_label["Bad Debt/Rental Refunds"] == [-50.0] * 12


def test_duplicate_canonical_rows_are_summed(pl_rows):
    pl_rows.insert(5, [None, "Rent Income"] + [10] * 12)
    result = _normalize(pl_rows)
    assert result.series_by_label["Rental Income (1% monthly increase)"] == [1010.0] * 12
    assert result.totals.toi == [980.0] * 12


def test_subtotal_and_blank_rows_skipped(pl_rows):
    pl_rows.insert(7, [None, "Total Income"] + [970] * 12)
    pl_rows.insert(5, [None, "Unused Line"] + [0] * 12)
    result = _normalize(pl_rows)
    assert "Total Operating Income" not in result.series_by_label
    assert "Unused Line" not in result.series_by_label
    assert result.totals.toi == [970.0] * 12
    notes = {p.note for p in result.extraction.provenance if p.note}
    assert "skipped: total row inside section" in notes
    assert "skipped: all values zero" in notes


def test_unmapped_labels_pass_through(pl_rows):
    pl_rows.insert(10, [None, "Snow Removal"] + [25] * 12)
    result = _normalize(pl_rows)
    assert result.series_by_label["Snow Removal"] == [25.0] * 12
    assert result.totals.toe == [425.0] * 12


def test_provenance_records_source_range(pl_rows):
    result = _normalize(pl_rows)
    entry = next(p for p in result.extraction.provenance if p.token == "Payroll")
    assert entry.source_sheet == "P&L"
    assert entry.source_cell == "C10:N10"
    assert entry.to_dict()["matchedAlias"] == "payroll"
    negated = next(p for p in result.extraction.provenance if p.token == "Bad Debt/Rental Refunds")
    assert negated.note == "negated contra account"


def test_extraction_is_repeatable(pl_rows):
    first = _normalize(pl_rows).to_dict()
    second = _normalize(pl_rows).to_dict()
    assert first == second


def test_missing_sections_give_empty_extraction():
    rows = [[None, None] + MONTHS_FY] + [[None, f"Line {i}"] + [1] * 12 for i in range(8)]
    grid = grid_from_rows(rows)
    layout = infer_layout(grid)
    extraction = extract_series(grid, layout, "S")
    assert extraction.series_by_label == {}
    assert extraction.totals.toi == [0.0] * 12


def test_no_band_anywhere():
    result = _normalize([["Nothing", "here"]])
    body = result.to_dict()
    assert body["detected"] is None
    assert body["seriesByLabel"] == {}
    assert body["series"]["noi"] == [0.0] * 12


def test_first_sheet_with_band_is_used(pl_rows):
    sheets = [SheetGrid("Cover", grid_from_rows([["Cover page"]])), SheetGrid("P&L", grid_from_rows(pl_rows))]
    result = normalize_workbook(sheets, facility="Midtown", period="Oct 2025")
    assert result.detected["sheetName"] == "P&L"
    assert result.to_dict()["facility"] == "Midtown"


def test_tie_out():
    ok = tie_out([10, 10], [4, 4], [6, 6])
    assert ok.ok and ok.errors == []
    bad = tie_out([10, -1], [4, 4], [6, 0], months=["Oct", "Nov"])
    assert not bad.ok
    assert bad.errors[0].startswith("Nov")
    assert bad.warnings == ["Nov: negative TOI -1.00"]
    assert tie_out([1.0], [0.0], [1.00001]).ok


@pytest.mark.parametrize("label", ["INCOME", "expense"])
def test_section_header_rows_do_not_become_series(pl_rows, label):
    pl_rows.insert(5, [None, label])
    assert label not in _normalize(pl_rows).series_by_label
