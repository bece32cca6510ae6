"""Data types shared by the upload pipeline.

- UploadedFileDescriptor: a file part buffered to local temp storage
- ParsedUpload: the result of parsing one multipart request
"""
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class UploadedFileDescriptor:
    """A received file buffered on local disk.

    The temporary file exists from the moment the descriptor is created
    until the request's cleanup coordinator removes it.

    Attributes:
        temporary_path: Absolute path of the buffered file.
        declared_mime_type: Media type declared by the client for the part.
        original_name: File name as sent by the client (unsanitized).
    """
    temporary_path: str
    declared_mime_type: str
    original_name: str


@dataclass
class ParsedUpload:
    """Fields and files received in one multipart request.

    ``files`` is in arrival order.
    """
    fields: Dict[str, str] = field(default_factory=dict)
    files: List[UploadedFileDescriptor] = field(default_factory=list)

    @property
    def user_prompt(self) -> str:
        """The ``user_prompt`` field, falling back to ``prompt``."""
        return self.fields.get("user_prompt") or self.fields.get("prompt") or ""
