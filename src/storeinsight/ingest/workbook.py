# storeinsight/ingest/workbook.py
"""
Turn uploaded workbook bytes (or JSON payloads carrying pre-parsed grids) into
SheetGrid objects. Raw cell types are preserved: dates stay dates, numbers stay
numbers.
"""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, List, Optional, Union

import pandas as pd
from openpyxl import load_workbook

from storeinsight.grid import SheetGrid, grid_from_rows

logger = logging.getLogger(__name__)

XLSX_EXTENSIONS = {".xlsx", ".xlsm"}
XLS_EXTENSIONS = {".xls"}
ALLOWED_EXTENSIONS = XLSX_EXTENSIONS | XLS_EXTENSIONS

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"


class WorkbookUnreadableError(ValueError):
    """The upload is not a workbook we can open."""


class PayloadError(ValueError):
    """A JSON request body does not carry sheet data in a supported shape."""


def _sniff_kind(data: bytes, filename: Optional[str]) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in XLSX_EXTENSIONS:
        return "xlsx"
    if ext in XLS_EXTENSIONS:
        return "xls"
    if data.startswith(_ZIP_MAGIC):
        return "xlsx"
    if data.startswith(_OLE_MAGIC):
        return "xls"
    raise WorkbookUnreadableError(
        f"Unsupported file type '{ext or 'unknown'}'. Upload an .xlsx or .xls workbook."
    )


def _read_xlsx(data: bytes) -> List[SheetGrid]:
    wb = load_workbook(io.BytesIO(data), data_only=True, read_only=True)
    try:
        sheets = []
        for ws in wb.worksheets:
            rows = list(ws.iter_rows(min_row=1, min_col=1, values_only=True))
            sheets.append(SheetGrid(name=ws.title, grid=grid_from_rows(rows)))
        return sheets
    finally:
        wb.close()


def _read_xls(data: bytes) -> List[SheetGrid]:
    frames = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, engine="xlrd")
    sheets = []
    for name, df in frames.items():
        df = df.astype(object).where(pd.notna(df), None)
        sheets.append(SheetGrid(name=str(name), grid=grid_from_rows(df.values.tolist())))
    return sheets


def read_workbook(source: Union[bytes, str, Path], filename: Optional[str] = None) -> List[SheetGrid]:
    """
    Parse a workbook into one SheetGrid per sheet (row 0 = spreadsheet row 1).
    Raises WorkbookUnreadableError with a user-facing message on failure.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        filename = filename or path.name
        try:
            data = path.read_bytes()
        except OSError as e:
            raise WorkbookUnreadableError(f"Could not read '{path}': {e}") from e
    else:
        data = bytes(source)

    if not data:
        raise WorkbookUnreadableError("The uploaded file is empty.")

    kind = _sniff_kind(data, filename)
    try:
        sheets = _read_xlsx(data) if kind == "xlsx" else _read_xls(data)
    except WorkbookUnreadableError:
        raise
    except Exception as e:
        logger.warning("Failed to parse %s workbook '%s': %s", kind, filename, e)
        raise WorkbookUnreadableError(
            f"Could not read '{filename or 'upload'}' as an Excel workbook. "
            "Check that the file is not corrupt or password protected."
        ) from e

    logger.info("Read %d sheet(s) from '%s'", len(sheets), filename or kind)
    return sheets


def grids_from_payload(payload: Any) -> List[SheetGrid]:
    """
    Accept either {"sheets": [{"name", "grid"}, ...]} or {"grid": [[...]], "name"?}.
    """
    if not isinstance(payload, dict):
        raise PayloadError("Expected a JSON object with 'sheets' or 'grid'.")

    sheets = payload.get("sheets")
    if isinstance(sheets, list) and sheets:
        out = []
        for i, sheet in enumerate(sheets):
            if not isinstance(sheet, dict) or not isinstance(sheet.get("grid"), list):
                raise PayloadError(f"sheets[{i}] must be an object with a 'grid' array.")
            name = str(sheet.get("name") or f"Sheet{i + 1}")
            out.append(SheetGrid(name=name, grid=grid_from_rows(_rows(sheet["grid"]))))
        return out

    grid = payload.get("grid")
    if isinstance(grid, list):
        name = str(payload.get("name") or "Sheet1")
        return [SheetGrid(name=name, grid=grid_from_rows(_rows(grid)))]

    raise PayloadError("Provide { sheets:[{name, grid}] } or { grid, name }.")


def _rows(grid: list) -> List[list]:
    return [row if isinstance(row, list) else [] for row in grid]
