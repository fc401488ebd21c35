import io

import pytest
from openpyxl import Workbook, load_workbook

from storeinsight.excel import projection
from storeinsight.excel.projection import (
    LayoutUnresolvedError,
    build_proforma_workbook,
    proforma_filename,
    project_onto_worksheet,
    round_half_up,
    to_twelve,
)
from storeinsight.excel.workbook_generator import WorkbookGenerator
from storeinsight.extract.layout import AnchorDefaults
from storeinsight.extract.series import normalize_workbook
from storeinsight.grid import SheetGrid, grid_from_rows

from conftest import MONTHS_FY


def _row_of(ws, label, col=2):
    for r in range(1, ws.max_row + 1):
        if ws.cell(row=r, column=col).value == label:
            return r
    raise AssertionError(f"{label!r} not found")


def _reload(ws_or_wb):
    buf = io.BytesIO()
    ws_or_wb.save(buf)
    buf.seek(0)
    data = buf.getvalue()
    return load_workbook(io.BytesIO(data)), load_workbook(io.BytesIO(data), data_only=True)


@pytest.fixture
def generated_template(monkeypatch):
    monkeypatch.setattr(projection, "first_existing_template", lambda candidates=None: None)


def test_round_half_up_and_to_twelve():
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -2
    assert round_half_up(1234.4) == 1234
    assert to_twelve([1, "x", None, float("nan")]) == [1.0] + [0.0] * 11
    assert len(to_twelve(list(range(20)))) == 12
    assert to_twelve("nope") == [0.0] * 12


def test_export_onto_generated_template(pl_rows, generated_template):
    result = normalize_workbook([SheetGrid("P&L", grid_from_rows(pl_rows))])
    data, proj = build_proforma_workbook("Midtown", "Oct 2025", result.series_by_label)

    ws = load_workbook(io.BytesIO(data)).active
    assert ws["B2"].value == "Midtown"
    assert ws["B3"].value == "Oct 2025"
    assert ws.cell(row=5, column=4).value == "Oct 2025"

    rent = _row_of(ws, "Rental Income (1% monthly increase)")
    assert [ws.cell(row=rent, column=c).value for c in range(4, 16)] == [1000] * 12
    assert ws.cell(row=_row_of(ws, "Bad Debt/Rental Refunds"), column=4).value == -50
    assert ws.cell(row=_row_of(ws, "Total Operating Income"), column=4).value == 970
    assert ws.cell(row=_row_of(ws, "Total Operating Expense"), column=15).value == 400
    assert ws.cell(row=_row_of(ws, "Net Operating Income"), column=4).value == 570
    assert proj.written["Payroll"] == _row_of(ws, "Payroll")
    assert proj.skipped == []


def test_supplied_aggregates_win(generated_template):
    aggregates = {"toi": [100] * 12, "toe": [40] * 12}
    data, proj = build_proforma_workbook("F", "Oct 2025", {"Payroll": [1] * 12}, aggregates=aggregates)
    ws = load_workbook(io.BytesIO(data)).active
    assert ws.cell(row=_row_of(ws, "Total Operating Income"), column=4).value == 100
    assert ws.cell(row=_row_of(ws, "Net Operating Income"), column=4).value == 60
    noi = next(p for p in proj.provenance if p.token == "Net Operating Income")
    assert noi.computed_from == "toi - toe"


def test_contra_forced_negative_and_unknown_skipped(generated_template):
    series = {"Discounts": [25.4] * 12, "Snow Removal": [5] * 12, "Total Operating Income": [1] * 12}
    data, proj = build_proforma_workbook("F", "Oct 2025", series)
    ws = load_workbook(io.BytesIO(data)).active
    assert ws.cell(row=_row_of(ws, "Discounts"), column=4).value == -25
    assert proj.skipped == ["Snow Removal"]
    assert ws.cell(row=_row_of(ws, "Total Operating Income"), column=4).value == -25


def _formula_template():
    wb = Workbook()
    ws = wb.active
    ws.title = "Proforma"
    ws.append(["Proforma"])
    ws.append(["Facility"])
    ws.append(["Period"])
    ws.append([])
    ws.append([None, "Line Item", None] + MONTHS_FY)  # 5: band at D
    ws.append([None, "Income"])                      # 6
    ws.append([None, "Rental Income", None] + [0] * 12)
    ws.append([None, "Late Fee Income", None] + [0] * 12)
    ws.append([None, "Admin Fee Income", None] + [0] * 12)
    ws.append([None, "Total Operating Income", None] + [f"=SUM({c}7:{c}9)" for c in "DEFGHIJKLMNO"])  # 10
    ws.append([None, "Expenses"])                    # 11
    ws.append([None, "Payroll", None] + [0] * 12)
    ws.append([None, "Refuse", None] + [0] * 12)
    ws.append([None, "Total Operating Expense", None] + [f"=SUM({c}12:{c}13)" for c in "DEFGHIJKLMNO"])  # 14
    ws.append([])
    ws.append([None, "Net Operating Income", None] + [f"={c}10-{c}14" for c in "DEFGHIJKLMNO"])  # 16
    return wb


def test_formulas_are_flattened_before_writing():
    wb, cached = _reload(_formula_template())
    ws = wb["Proforma"]
    proj = project_onto_worksheet(ws, cached["Proforma"], {"Rental Income": [1000] * 12, "Payroll": [300] * 12})
    assert proj.flattened == 36
    assert proj.layout.label_column == 1
    assert (proj.layout.value_column_stride, proj.layout.value_column_offset) == (1, 0)
    assert ws["D10"].value == 1000
    assert ws["O14"].value == 300
    assert ws["D16"].value == 700
    assert ws["D7"].number_format == "#,##0;(#,##0)"


def _spacer_template():
    wb = Workbook()
    ws = wb.active
    ws.title = "Proforma"

    def line(label):
        row = [None, label]
        for _ in range(12):
            row += ["$", 0]
        return row

    ws.append([None, None] + MONTHS_FY)         # 1: band at C, values at D, F, ... Z
    ws.append([None, "Income"])                 # 2
    ws.append(line("Rental Income"))            # 3
    ws.append(line("Late Fee Income"))          # 4
    ws.append(line("Admin Fee Income"))         # 5
    ws.append(line("Total Operating Income"))   # 6
    ws.append([None, "Expenses"])               # 7
    ws.append(line("Payroll"))                  # 8
    ws.append(line("Refuse"))                   # 9
    ws.append(line("Total Operating Expense"))  # 10
    ws.append(line("Net Operating Income"))     # 11
    return wb


def test_projection_onto_dollar_spacer_template():
    wb, cached = _reload(_spacer_template())
    ws = wb["Proforma"]
    proj = project_onto_worksheet(ws, cached["Proforma"], {"Rental Income": [1000.4] * 12, "Payroll": [300] * 12})
    assert (proj.layout.value_column_stride, proj.layout.value_column_offset) == (2, 1)
    assert proj.written == {"Rental Income": 3, "Payroll": 8}

    wb, _ = _reload(wb)
    ws = wb["Proforma"]
    value_cols = list(range(4, 27, 2))
    spacer_cols = list(range(3, 26, 2))
    assert [ws.cell(row=3, column=c).value for c in value_cols] == [1000] * 12
    assert [ws.cell(row=8, column=c).value for c in value_cols] == [300] * 12
    assert [ws.cell(row=6, column=c).value for c in value_cols] == [1000] * 12
    assert [ws.cell(row=10, column=c).value for c in value_cols] == [300] * 12
    assert [ws.cell(row=11, column=c).value for c in value_cols] == [700] * 12
    for row in (3, 6, 8, 11):
        assert [ws.cell(row=row, column=c).value for c in spacer_cols] == ["$"] * 12
    assert ws.cell(row=1, column=3).value == MONTHS_FY[0]


def test_template_without_band_is_unresolved():
    wb, cached = _reload(Workbook())
    with pytest.raises(LayoutUnresolvedError):
        project_onto_worksheet(wb.active, cached.active, {"Payroll": [1] * 12})


def test_missing_anchors_without_defaults_are_unresolved():
    wb = Workbook()
    wb.active.append([None, None, None] + MONTHS_FY)
    for i in range(8):
        wb.active.append([None, f"Line {i}"])
    wb, cached = _reload(wb)
    with pytest.raises(LayoutUnresolvedError, match="anchors not found"):
        project_onto_worksheet(wb.active, cached.active, {}, defaults=None)


def test_default_anchor_rows_beyond_sheet_are_unresolved():
    wb = Workbook()
    wb.active.append([None, None, None] + MONTHS_FY)
    wb, cached = _reload(wb)
    with pytest.raises(LayoutUnresolvedError, match="beyond"):
        project_onto_worksheet(wb.active, cached.active, {"Payroll": [1] * 12})


def test_out_of_order_defaults_are_unresolved():
    wb = Workbook()
    wb.active.append([None, None, None] + MONTHS_FY)
    wb, cached = _reload(wb)
    defaults = AnchorDefaults(income=10, total_income=5, expense=12, total_expense=20)
    with pytest.raises(LayoutUnresolvedError, match="out of order"):
        project_onto_worksheet(wb.active, cached.active, {}, defaults=defaults)


def test_generated_template_months_follow_period():
    months = WorkbookGenerator.month_band_from("nov-2025")
    assert months[0] == "Nov 2025"
    assert months[-1] == "Oct 2026"
    assert proforma_filename("Mid Town", "Oct 2025") == "Proforma_Mid_Town_Oct-2025.xlsx"
