"""Upload ingestion: multipart parsing, temp file buffering and cleanup.

Incoming files are streamed to local temp storage by the multipart parser;
each buffered file and each file later stored with the AI provider is
released by a request-scoped ``CleanupCoordinator``.
"""
from .cleanup import CleanupCoordinator
from .parser import MultipartRequestParser, UploadCompletion
from .schemas import ParsedUpload, UploadedFileDescriptor
from .temp_store import TempFileStore, TempFileWriter, sanitize_filename

__all__ = [
    "CleanupCoordinator",
    "MultipartRequestParser",
    "UploadCompletion",
    "ParsedUpload",
    "UploadedFileDescriptor",
    "TempFileStore",
    "TempFileWriter",
    "sanitize_filename",
]
