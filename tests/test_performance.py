import pytest

from storeinsight.grid import SheetGrid, grid_from_rows
from storeinsight.reports.performance import (
    MoveActivityError,
    extract_move_activity,
    format_change,
    parse_month_override,
    per_sqft,
)
from storeinsight.reports.pptx_tokens import DASH


@pytest.fixture
def move_sheets(move_rows):
    return [SheetGrid(name, grid_from_rows(rows)) for name, rows in move_rows.items()]


def test_current_month_counts(move_sheets):
    out = extract_move_activity(move_sheets)
    t = out.tokens
    assert t["CURRENTMONTH"] == "October 2025"
    assert (t["MOVEINS"], t["MOVEOUTS"], t["NETMOVE"]) == ("3", "2", "1")
    assert (t["MOVEINSTRL3"], t["MOVEOUTSTRL3"], t["NETTRL3"]) == ("5", "3", "2")
    assert t["MOVEINSTRL12"] == "5"
    assert t["MOVIPER"] == "200.0%"
    assert t["MOVOPER"] == "100.0%"
    # prior month net was zero
    assert t["MOVN"] == DASH


def test_owner_summary_tokens(move_sheets):
    t = extract_move_activity(move_sheets).tokens
    assert (t["MTDMI"], t["MTDMILM"], t["MTDMO"], t["MTDMOLM"]) == ("3", "1", "2", "1")
    assert t["DSFTMI"] == "$1.80"
    assert t["DSFTMILM"] == "$2.00"
    assert t["DSFTMO"] == "$1.33"
    assert t["DSFTMOLM"] == "$1.20"
    assert (t["AVGLOR"], t["AVGLORLM"]) == ("245", "200")
    assert (t["PERLOR"], t["PERLORLM"]) == ("50.0%", "100.0%")
    assert (t["PROMO"], t["PROMOLM"]) == ("33.3%", "100.0%")


def test_month_override_and_trailing_end(move_sheets):
    t = extract_move_activity(move_sheets, current_month="2025/09").tokens
    assert t["CURRENTMONTH"] == "September 2025"
    assert (t["MOVEINS"], t["MOVEOUTS"], t["NETMOVE"]) == ("1", "1", "0")
    assert t["MOVIPER"] == "0.0%"
    assert t["MOVOPER"] == DASH
    assert t["MOVN"] == "-100.0%"

    t = extract_move_activity(move_sheets, include_current_in_trailing=False).tokens
    assert (t["MOVEINSTRL3"], t["MOVEOUTSTRL3"], t["NETTRL3"]) == ("2", "1", "1")


def test_month_with_no_activity(move_sheets):
    t = extract_move_activity(move_sheets, current_month="2026-01").tokens
    assert (t["MOVEINS"], t["MOVEOUTS"]) == ("0", "0")
    assert t["DSFTMI"] == DASH
    assert t["AVGLOR"] == DASH
    assert t["PROMO"] == DASH
    # only the six-month window reaches back to August
    assert t["MOVEINSTRL3"] == "0"
    assert t["MOVEINSTRL6"] == "5"


def test_preview_and_metadata(move_sheets):
    out = extract_move_activity(move_sheets)
    rows = out.preview_rows()
    assert rows[0] == {"section": "Move Activity", "token": "CURRENTMONTH", "label": "Current Month",
                       "value": "October 2025"}
    assert {r["section"] for r in rows} == {"Move Activity", "Owner Summary"}
    assert out.metadata() == {
        "currentMonthKey": "2025-10",
        "previousMonthKey": "2025-09",
        "latestMoveDate": "2025-10-30",
        "rows": 8,
    }


def test_missing_sheet_and_undated_rows(move_rows):
    with pytest.raises(MoveActivityError) as exc:
        extract_move_activity([SheetGrid("Move In", grid_from_rows(move_rows["Move In"]))])
    assert exc.value.code == "missing_sheet"

    header_only = [
        SheetGrid("move in", grid_from_rows([move_rows["Move In"][0], [None, "A1", 1, 1, 0]])),
        SheetGrid("Move Out", grid_from_rows([move_rows["Move Out"][0]])),
    ]
    with pytest.raises(MoveActivityError) as exc:
        extract_move_activity(header_only)
    assert exc.value.code == "no_rows"


def test_helpers():
    assert parse_month_override("2025-10").month == 10
    assert parse_month_override("2025-13") is None
    assert parse_month_override("October") is None
    assert parse_month_override(None) is None
    assert format_change(None) == DASH
    assert format_change(-0.0001) == "0.0%"
    assert per_sqft(10, 0) == DASH
