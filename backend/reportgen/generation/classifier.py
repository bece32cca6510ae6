"""File classification policy.

Decides how each uploaded file is represented in a generation request from
its declared media type alone. Matching is a case-insensitive substring
test, evaluated in precedence order:

1. Spreadsheet family → CONVERT_TABULAR
2. Text family        → INLINE_TEXT
3. Anything else      → UPLOAD_BINARY

Spreadsheets are checked first: the OOXML sheet type
(``application/vnd.openxmlformats-officedocument.spreadsheetml.sheet``)
contains "xml" and would otherwise be inlined as raw text.
"""
from reportgen.uploads.schemas import UploadedFileDescriptor

from .base import ClassifiedFile, Disposition

SPREADSHEET_MARKERS = ("spreadsheetml", "excel", "xls")
TEXT_MARKERS = ("csv", "json", "text/", "xml", "javascript", "typescript")


def classify(mime_type: str) -> Disposition:
    """Return the disposition for a declared media type.

    Examples:
        >>> classify("text/csv")
        <Disposition.INLINE_TEXT: 'inline_text'>
        >>> classify("application/vnd.ms-excel")
        <Disposition.CONVERT_TABULAR: 'convert_tabular'>
        >>> classify("application/pdf")
        <Disposition.UPLOAD_BINARY: 'upload_binary'>
    """
    lowered = (mime_type or "").lower()
    if any(marker in lowered for marker in SPREADSHEET_MARKERS):
        return Disposition.CONVERT_TABULAR
    if any(marker in lowered for marker in TEXT_MARKERS):
        return Disposition.INLINE_TEXT
    return Disposition.UPLOAD_BINARY


def classify_file(descriptor: UploadedFileDescriptor) -> ClassifiedFile:
    return ClassifiedFile(descriptor, classify(descriptor.declared_mime_type))
