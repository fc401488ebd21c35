"""
Command-line pipeline: source workbook -> normalized series -> proforma workbook.

Usage:
    python -m storeinsight.pipeline --input Midtown_Oct_2025.xlsx --output Proforma.xlsx
"""

import io
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd
from openpyxl import load_workbook

from storeinsight.excel.projection import build_proforma_workbook, proforma_filename
from storeinsight.excel.workbook_generator import WorkbookGenerator
from storeinsight.extract.series import NormalizeResult, normalize_workbook, tie_out
from storeinsight.ingest.workbook import read_workbook
from storeinsight.map.fuzzy import detect_facility_period_from_filename
from storeinsight.provenance import provenance_dicts


def _banner(title: str, char: str = "=") -> None:
    print("\n" + char * 60)
    print(title)
    print(char * 60)


def step1_normalize(input_path: Path, facility: Optional[str], period: Optional[str]) -> NormalizeResult:
    _banner("STEP 1: Normalizing source workbook")
    sheets = read_workbook(input_path)
    result = normalize_workbook(sheets, facility=facility, period=period)
    if result.layout is None:
        raise RuntimeError(f"No 12-month band found in any of {len(sheets)} sheet(s) of {input_path}")

    detected = result.detected
    print(f"Sheet: {detected['sheetName']}  month row: {detected['monthRow']}  "
          f"first value column: {detected['monthStartCol']}  label column: {detected['labelCol']}")

    months = WorkbookGenerator.month_band_from(result.layout.month_tokens[0])
    if not result.series_by_label:
        print("[WARN] Section anchors not found; no line items extracted")
        return result

    df = pd.DataFrame.from_dict(result.series_by_label, orient="index", columns=months)
    totals = pd.DataFrame(
        [result.totals.toi, result.totals.toe, result.totals.noi],
        index=["TOI", "TOE", "NOI"],
        columns=months,
    )
    with pd.option_context("display.max_columns", 14, "display.width", 200):
        print(df.round(0).to_string())
        print()
        print(totals.round(0).to_string())
    print(f"\n{len(df)} line item(s); 12-month NOI {sum(result.totals.noi):,.0f}")
    return result


def step2_write_proforma(
    result: NormalizeResult,
    output_path: Path,
    template_path: Optional[Path] = None,
) -> None:
    _banner("STEP 2: Writing proforma")
    months = WorkbookGenerator.month_band_from(result.layout.month_tokens[0])
    data, projection = build_proforma_workbook(
        result.facility or "Facility",
        result.period or "Period",
        result.series_by_label,
        aggregates=result.totals.to_dict() if result.series_by_label else None,
        template_path=template_path,
        months=months,
    )
    for key in projection.skipped:
        print(f"[WARN] No template row for '{key}'")

    checks = tie_out(projection.totals.toi, projection.totals.toe, projection.totals.noi, months=months)
    for warning in checks.warnings:
        print(f"[WARN] {warning}")

    wb = load_workbook(io.BytesIO(data))
    WorkbookGenerator().add_validation_sheet(
        wb, months, projection.totals.toi, projection.totals.toe, projection.totals.noi, checks.errors
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    print(f"Wrote {len(projection.written)} line(s) to {output_path} "
          f"({projection.flattened} formula cell(s) flattened)")


def step3_write_provenance(result: NormalizeResult, csv_path: Path) -> None:
    _banner("STEP 3: Writing provenance")
    df = pd.DataFrame(
        provenance_dicts(result.extraction.provenance),
        columns=["token", "sourceSheet", "sourceCell", "matchedAlias", "computedFrom", "note"],
    )
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(csv_path, index=False)
    print(f"Wrote {len(df)} provenance record(s) to {csv_path}")


def main(
    input_path: Path,
    output_path: Optional[Path] = None,
    template_path: Optional[Path] = None,
    facility: Optional[str] = None,
    period: Optional[str] = None,
    provenance_csv: Optional[Path] = None,
):
    """
    Run the pipeline end to end. Facility and period default to what the
    input file name suggests ('Midtown_Oct_2025.xlsx' -> Midtown, Oct 2025).
    """
    _banner("# STOREINSIGHT PROFORMA PIPELINE", char="#")

    input_path = Path(input_path)
    guessed_facility, guessed_period = detect_facility_period_from_filename(input_path.name)
    facility = facility or guessed_facility
    period = period or guessed_period
    output_path = Path(output_path or proforma_filename(facility, period))

    try:
        result = step1_normalize(input_path, facility, period)
        step2_write_proforma(result, output_path, Path(template_path) if template_path else None)
        if provenance_csv:
            step3_write_provenance(result, Path(provenance_csv))

        _banner("# PIPELINE COMPLETE!", char="#")
        print(f"Proforma: {output_path}")
    except Exception as e:
        print(f"\nPipeline failed: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


def cli(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="Normalize a facility P&L workbook and write it onto the proforma template"
    )
    parser.add_argument("--input", required=True, help="Source .xlsx/.xls workbook")
    parser.add_argument("--template", default=None,
                        help="Proforma template (default: PROFORMA_TEMPLATE_PATH or templates/STORE_Proforma_v4.xlsx)")
    parser.add_argument("--output", default=None,
                        help="Output path (default: Proforma_<facility>_<period>.xlsx)")
    parser.add_argument("--facility", default=None, help="Facility name (default: from file name)")
    parser.add_argument("--period", default=None, help="Period, e.g. 'Oct 2025' (default: from file name)")
    parser.add_argument("--provenance-csv", default=None, help="Also write provenance records to this CSV")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    main(
        input_path=args.input,
        output_path=args.output,
        template_path=args.template,
        facility=args.facility,
        period=args.period,
        provenance_csv=args.provenance_csv,
    )


if __name__ == "__main__":
    cli()
