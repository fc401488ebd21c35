# storeinsight/excel/workbook_generator.py
"""
Generate formatted proforma workbooks: the standard template used when no
template file is deployed, and the validation sheet the pipeline attaches.
"""

from datetime import date
from typing import List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from storeinsight.extract.coerce import MONTHS, month_index
from storeinsight.map.aliases import TEMPLATE_LABELS, lines_in_section

LABEL_COLUMN = 2        # B
FIRST_MONTH_COLUMN = 4  # D
HEADER_ROW = 5


class WorkbookGenerator:
    """Generate Excel workbooks with formatted proforma statements."""

    def __init__(self):
        self.wb = None

    @staticmethod
    def month_band_from(start_token: Optional[str] = None, count: int = 12) -> List[str]:
        """Month header labels ('Oct 2025', ...) starting at a 'mon-yyyy' token."""
        if start_token:
            idx = month_index(start_token) - 1
        else:
            today = date.today()
            idx = today.year * 12 + today.month - 1
        labels = []
        for i in range(count):
            year, month0 = divmod(idx + i, 12)
            labels.append(f"{MONTHS[month0].capitalize()} {year}")
        return labels

    def create_proforma_template(self, months: Sequence[str], title: str = "STORE Proforma") -> Workbook:
        """Create the standard proforma layout: month band, sections and canonical lines."""
        self.wb = Workbook()
        ws = self.wb.active
        ws.title = "Proforma"

        # Define styles
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(bold=True, color="FFFFFF", size=11)
        title_font = Font(bold=True, size=14)
        section_font = Font(bold=True, size=11)
        total_border = Border(top=Side(style="thin"), bottom=Side(style="double"))

        # Title
        ws["A1"] = title
        ws["A1"].font = title_font
        ws.merge_cells("A1:E1")
        ws["A2"] = "Facility"
        ws["A3"] = "Period"

        # Headers
        label_letter = get_column_letter(LABEL_COLUMN)
        ws[f"{label_letter}{HEADER_ROW}"] = "Line Item"
        ws[f"{label_letter}{HEADER_ROW}"].fill = header_fill
        ws[f"{label_letter}{HEADER_ROW}"].font = header_font
        for i, month in enumerate(months):
            cell = ws.cell(row=HEADER_ROW, column=FIRST_MONTH_COLUMN + i, value=str(month))
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center")

        row = HEADER_ROW + 1
        for section, section_label, total_label in (
            ("income", "Income", "Total Operating Income"),
            ("expense", "Expenses", "Total Operating Expense"),
        ):
            ws.cell(row=row, column=LABEL_COLUMN, value=section_label).font = section_font
            row += 1
            for key in lines_in_section(section):
                ws.cell(row=row, column=LABEL_COLUMN, value=TEMPLATE_LABELS[key][0])
                row += 1
            total = ws.cell(row=row, column=LABEL_COLUMN, value=total_label)
            total.font = section_font
            for i in range(len(months)):
                ws.cell(row=row, column=FIRST_MONTH_COLUMN + i).border = total_border
            row += 2

        noi = ws.cell(row=row, column=LABEL_COLUMN, value="Net Operating Income")
        noi.font = section_font

        # Adjust column widths
        ws.column_dimensions["A"].width = 12
        ws.column_dimensions[label_letter].width = 40
        ws.column_dimensions[get_column_letter(FIRST_MONTH_COLUMN - 1)].width = 3
        for i in range(len(months)):
            ws.column_dimensions[get_column_letter(FIRST_MONTH_COLUMN + i)].width = 12

        return self.wb

    def add_validation_sheet(self, wb: Workbook, months: Sequence[str], toi, toe, noi, errors=()) -> None:
        """
        Add a 'Validation' sheet listing TOI / TOE / NOI with an NOI tie-out row;
        differences are shown in red.
        """
        if "Validation" in wb.sheetnames:
            wb.remove(wb["Validation"])
        ws = wb.create_sheet("Validation")
        ws["A1"] = "Extracted totals"
        ws["A1"].font = Font(bold=True, size=12)

        for j, month in enumerate(months, start=2):
            ws.cell(row=2, column=j, value=str(month)).font = Font(bold=True)

        def fmt_number(cell):
            cell.number_format = "#,##0;(#,##0)"
            return cell

        for row_idx, (label, values) in enumerate(
            (("Total Operating Income", toi), ("Total Operating Expense", toe), ("Net Operating Income", noi)),
            start=3,
        ):
            ws.cell(row=row_idx, column=1, value=label)
            for j, v in enumerate(values, start=2):
                fmt_number(ws.cell(row=row_idx, column=j, value=v))

        ws.cell(row=7, column=1, value="Check: NOI - (TOI - TOE) (difference)")
        for j, (a, b, n) in enumerate(zip(toi, toe, noi), start=2):
            diff = n - (a - b)
            c = fmt_number(ws.cell(row=7, column=j, value=diff))
            if abs(diff) > 1e-4:
                c.font = Font(color="FF0000")

        for k, message in enumerate(errors, start=9):
            ws.cell(row=k, column=1, value=message).font = Font(color="FF0000")

        ws.column_dimensions["A"].width = 42
