"""Tests for file classification and spreadsheet conversion."""
import datetime
import json

import pytest
from openpyxl import Workbook

from reportgen.errors import ConversionError
from reportgen.generation.base import Disposition
from reportgen.generation.classifier import classify, classify_file
from reportgen.generation.spreadsheet import convert_spreadsheet, read_first_sheet
from reportgen.uploads.schemas import UploadedFileDescriptor

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class TestClassify:
    @pytest.mark.parametrize("mime_type", [
        XLSX,
        "application/vnd.ms-excel",
        "application/x-xls",
        "APPLICATION/VND.MS-EXCEL",
    ])
    def test_spreadsheets_are_converted(self, mime_type):
        assert classify(mime_type) == Disposition.CONVERT_TABULAR

    @pytest.mark.parametrize("mime_type", [
        "text/csv",
        "text/plain",
        "application/json",
        "application/xml",
        "application/javascript",
        "application/typescript",
        "Text/Markdown",
    ])
    def test_text_is_inlined(self, mime_type):
        assert classify(mime_type) == Disposition.INLINE_TEXT

    @pytest.mark.parametrize("mime_type", [
        "application/pdf",
        "image/png",
        "image/jpeg",
        "application/octet-stream",
        "",
    ])
    def test_everything_else_is_uploaded(self, mime_type):
        assert classify(mime_type) == Disposition.UPLOAD_BINARY

    def test_spreadsheet_rule_precedes_xml_rule(self):
        """The OOXML sheet type contains "xml" but must not be inlined raw."""
        assert "xml" in XLSX
        assert classify(XLSX) == Disposition.CONVERT_TABULAR

    def test_classify_file_keeps_descriptor(self):
        descriptor = UploadedFileDescriptor("/tmp/x", "text/csv", "x.csv")
        classified = classify_file(descriptor)
        assert classified.descriptor is descriptor
        assert classified.disposition == Disposition.INLINE_TEXT


def _write_workbook(path, rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    wb.save(path)


class TestSpreadsheetConversion:
    def test_rows_become_records(self, tmp_path):
        path = tmp_path / "sales.xlsx"
        _write_workbook(path, [["product", "qty"], ["apple", 3], ["pear", 5]])

        result = convert_spreadsheet(str(path))

        assert json.loads(result) == [
            {"product": "apple", "qty": 3},
            {"product": "pear", "qty": 5},
        ]
        assert result == json.dumps(json.loads(result), indent=2)

    def test_file_without_xlsx_suffix(self, tmp_path):
        """Temp files carry arbitrary names; the content decides."""
        path = tmp_path / "1700000000000-upload"
        _write_workbook(path, [["a"], [1]])
        assert read_first_sheet(str(path)) == [{"a": 1}]

    def test_blank_headers_empty_cells_and_dates(self, tmp_path):
        path = tmp_path / "mixed.xlsx"
        _write_workbook(path, [
            ["name", None],
            ["x", datetime.datetime(2024, 1, 2, 3, 4, 5)],
            [None, None],
            [None, 7],
        ])

        records = read_first_sheet(str(path))

        assert records == [
            {"name": "x", "column_2": "2024-01-02T03:04:05"},
            {"name": None, "column_2": 7},
        ]

    def test_empty_sheet(self, tmp_path):
        path = tmp_path / "empty.xlsx"
        Workbook().save(path)
        assert convert_spreadsheet(str(path)) == "[]"

    def test_unreadable_workbook_raises_conversion_error(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_bytes(b"not a workbook")
        with pytest.raises(ConversionError) as exc_info:
            convert_spreadsheet(str(path), display_name="broken.xlsx")
        assert exc_info.value.status_code == 400
        assert "broken.xlsx" in exc_info.value.message
