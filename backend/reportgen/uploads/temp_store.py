"""Temporary file storage for incoming uploads.

Uploads are buffered to ``<temp dir>/<ms-prefix>-<sanitized name>``. The
prefix is the current time in milliseconds, bumped when needed so that it
is strictly increasing within the process. Files never expire on their own:
whoever creates one must remove it (see ``CleanupCoordinator``).
"""
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import AsyncIterator, Optional

from reportgen.errors import FileTooLarge

from .schemas import UploadedFileDescriptor

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.\-]")


def sanitize_filename(name: str) -> str:
    """Keep alphanumerics, ``.`` and ``-``; replace everything else with ``_``.

    Examples:
        >>> sanitize_filename("../../etc/passwd")
        '.._.._etc_passwd'
        >>> sanitize_filename("relatório final.pdf")
        'relat_rio_final.pdf'
    """
    cleaned = _UNSAFE_CHARS.sub("_", name or "")
    if not cleaned.strip("."):
        # empty, "." and ".." must never become a path component
        cleaned = f"upload{cleaned.replace('.', '_')}"
    return cleaned


class _MillisecondPrefix:
    """Strictly increasing millisecond timestamps."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            now = int(time.time() * 1000)
            self._last = now if now > self._last else self._last + 1
            return self._last


_prefix = _MillisecondPrefix()


class TempFileWriter:
    """Open handle on a temp file being written.

    The file exists on disk as soon as the writer is created; ``descriptor``
    is valid from then on.
    """

    def __init__(self, descriptor: UploadedFileDescriptor, max_bytes: Optional[int] = None) -> None:
        self.descriptor = descriptor
        self.max_bytes = max_bytes
        self.size = 0
        self._fh = open(descriptor.temporary_path, "xb")

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def write(self, chunk: bytes) -> None:
        self.size += len(chunk)
        if self.max_bytes is not None and self.size > self.max_bytes:
            raise FileTooLarge(self.descriptor.original_name, self.max_bytes)
        self._fh.write(chunk)

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.flush()
            self._fh.close()


class TempFileStore:
    """Creates and removes buffered upload files.

    Attributes:
        directory: Where temp files are created (platform temp dir by default).
        max_bytes: Optional per-file size limit.
    """

    def __init__(self, directory: Optional[str] = None, max_bytes: Optional[int] = None) -> None:
        self.directory = Path(directory or tempfile.gettempdir())
        self.max_bytes = max_bytes

    def path_for(self, declared_name: str) -> Path:
        return self.directory / f"{_prefix.next()}-{sanitize_filename(declared_name)}"

    def open(self, declared_name: str, mime_type: str) -> TempFileWriter:
        """Create a new temp file and return a writer for it.

        Raises:
            OSError: If the directory is not writable.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        descriptor = UploadedFileDescriptor(
            temporary_path=str(self.path_for(declared_name)),
            declared_mime_type=mime_type or "application/octet-stream",
            original_name=declared_name,
        )
        return TempFileWriter(descriptor, max_bytes=self.max_bytes)

    async def store(
        self,
        stream: AsyncIterator[bytes],
        declared_name: str,
        mime_type: str,
    ) -> UploadedFileDescriptor:
        """Write an async byte stream to a new temp file.

        Raises:
            OSError: If the file cannot be written (e.g. disk full). The
                partially written file is removed first.
            FileTooLarge: If ``max_bytes`` is exceeded.
        """
        writer = self.open(declared_name, mime_type)
        try:
            async for chunk in stream:
                writer.write(chunk)
        except BaseException:
            writer.close()
            self.remove(writer.descriptor)
            raise
        writer.close()
        logger.debug("Stored %s (%d bytes)", writer.descriptor.temporary_path, writer.size)
        return writer.descriptor

    def remove(self, descriptor: UploadedFileDescriptor) -> bool:
        """Delete a temp file if it still exists.

        Returns:
            True if a file was removed.
        """
        try:
            os.remove(descriptor.temporary_path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete temp file {descriptor.temporary_path}: {e}")
            return False
