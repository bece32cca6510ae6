"""Typed errors for report generation and the job lifecycle.

Every error carries an HTTP ``status_code`` reflecting retry-ability:
503 means "retry later", 400/404 mean "change the input or configuration",
500 means "unknown". ``handle_report_error`` turns any of them into the JSON
body the HTTP surface returns (``{"error": "..."}``).
"""
from fastapi.responses import JSONResponse


class ReportError(Exception):
    """Base exception for every failure surfaced to HTTP callers."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class NoFilesAttached(ReportError):
    """Raised when a generation request carries no files."""
    def __init__(self, message: str = "No files attached for analysis."):
        super().__init__(message, status_code=400)


class EmptyPrompt(ReportError):
    """Raised when the user prompt is empty or whitespace-only."""
    def __init__(self, message: str = "User prompt is missing."):
        super().__init__(message, status_code=400)


class ParseError(ReportError):
    """Raised when a multipart body cannot be parsed or a part cannot be stored."""
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, status_code=status_code)


class TooManyFiles(ParseError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Too many files: at most {limit} files are accepted.")


class FileTooLarge(ParseError):
    def __init__(self, filename: str, limit_bytes: int):
        self.filename = filename
        self.limit_bytes = limit_bytes
        super().__init__(
            f"'{filename}' exceeds the limit of {limit_bytes // (1024 * 1024)}MB",
            status_code=413,
        )


# ---------------------------------------------------------------------------
# Format errors
# ---------------------------------------------------------------------------


class UnsupportedFormat(ReportError):
    """Raised when the provider rejects a file's media type."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ConversionError(ReportError):
    """Raised when a spreadsheet cannot be read as a workbook."""
    def __init__(self, filename: str, reason: str):
        self.filename = filename
        super().__init__(
            f"Could not convert spreadsheet '{filename}': {reason}",
            status_code=400,
        )


# ---------------------------------------------------------------------------
# Upstream provider errors
# ---------------------------------------------------------------------------


class ProviderOverloaded(ReportError):
    """Raised when the provider signals rate or capacity exhaustion."""
    def __init__(self, message: str = "The AI provider is overloaded."):
        super().__init__(
            f"{message} Please try again in a few moments.",
            status_code=503,
        )


class ProviderNotFound(ReportError):
    """Raised when the configured model is invalid or unavailable."""
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class UploadError(ReportError):
    """Raised when a file could not be uploaded to the provider's file store."""
    def __init__(self, filename: str, reason: str):
        self.filename = filename
        super().__init__(
            f"Failed to upload '{filename}' to the AI provider: {reason}",
            status_code=500,
        )


class ProcessingError(ReportError):
    """Catch-all for unexpected generation failures."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class NotConfigured(ReportError):
    """Raised when a required credential or URL is absent from configuration."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


# ---------------------------------------------------------------------------
# Jobs, payments and remote endpoints
# ---------------------------------------------------------------------------


class JobNotFound(ReportError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Job not found", status_code=404)


class JobNotReady(ReportError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Report is not ready yet", status_code=409)


class PaymentRequired(ReportError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Payment is required before download", status_code=402)


class EndpointsExhausted(ReportError):
    """Raised when no candidate endpoint answered with a 2xx status."""
    def __init__(self, message: str, tried: list):
        self.tried = list(tried)
        super().__init__(message, status_code=502)


class DownloadNotAllowed(ReportError):
    """Raised when a download URL points outside the allowed hosts."""
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Downloads from this host are not allowed: {url}", status_code=400)


def handle_report_error(error: ReportError) -> JSONResponse:
    """Convert a ReportError into the JSON error response.

    Args:
        error: The ReportError to convert.

    Returns:
        JSONResponse with ``{"error": message}`` and the error's status code.
    """
    return JSONResponse({"error": error.message}, status_code=error.status_code)
