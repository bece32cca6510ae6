"""Spreadsheet → JSON records conversion.

The first worksheet is read with openpyxl; its first row provides the
column headers and every following non-empty row becomes one JSON object.
"""
import datetime
import json
import logging
import os
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook

from reportgen.errors import ConversionError

logger = logging.getLogger(__name__)


def _header_names(header_row) -> List[str]:
    names = []
    for index, value in enumerate(header_row, start=1):
        name = str(value).strip() if value is not None else ""
        names.append(name or f"column_{index}")
    return names


def _cell_value(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return value


def read_first_sheet(path: str, display_name: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return the first worksheet as a list of header → value records.

    Raises:
        ConversionError: If the file is not a readable workbook.
    """
    name = display_name or os.path.basename(path)
    # Opened as a file object: temp names need not carry an .xlsx suffix.
    with open(path, "rb") as fh:
        try:
            workbook = load_workbook(fh, read_only=True, data_only=True)
        except Exception as e:
            raise ConversionError(name, str(e) or type(e).__name__) from e

        try:
            if not workbook.worksheets:
                return []
            rows = workbook.worksheets[0].iter_rows(values_only=True)
            header_row = next(rows, None)
            if header_row is None:
                return []
            headers = _header_names(header_row)

            records = []
            for row in rows:
                if all(v is None for v in row):
                    continue
                records.append({
                    headers[i] if i < len(headers) else f"column_{i + 1}": _cell_value(v)
                    for i, v in enumerate(row)
                })
            return records
        finally:
            workbook.close()


def convert_spreadsheet(path: str, display_name: Optional[str] = None) -> str:
    """Convert a workbook to pretty-printed JSON records.

    Args:
        path: Local path of the workbook.
        display_name: Name used in error messages (defaults to the basename).

    Returns:
        JSON array (``indent=2``) with one object per data row.

    Raises:
        ConversionError: If the file cannot be parsed as a workbook.
    """
    records = read_first_sheet(path, display_name)
    logger.debug("Converted %s: %d row(s)", display_name or path, len(records))
    return json.dumps(records, indent=2, ensure_ascii=False, default=str)
