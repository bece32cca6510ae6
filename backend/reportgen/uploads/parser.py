"""Streaming multipart/form-data parser.

The request body is fed chunk by chunk into python-multipart's
``MultipartParser``. Text fields are collected in memory (last write wins
per field name); each file part is written to the temp store by its own
writer task while the rest of the body is still being read.

Resolution is coordinated by ``UploadCompletion``: a count of files still
being written plus a "stream ended" flag. The parse resolves exactly once,
on whichever of the two signals arrives last; a form with no files resolves
as soon as the stream ends.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect, Request

from reportgen.errors import ParseError, ReportError, TooManyFiles

from .cleanup import CleanupCoordinator
from .schemas import ParsedUpload, UploadedFileDescriptor
from .temp_store import TempFileStore, TempFileWriter

logger = logging.getLogger(__name__)


class UploadCompletion:
    """Resolves once the body stream has ended and no file is mid-write.

    File slots are reserved in arrival order, so the resolved list keeps the
    order in which parts appeared in the stream even when writes finish out
    of order.
    """

    def __init__(self) -> None:
        self._pending = 0
        self._stream_ended = False
        self._slots: List[Optional[UploadedFileDescriptor]] = []
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.resolutions = 0

    @property
    def failed(self) -> bool:
        return self._future.done() and self._future.exception() is not None

    @property
    def pending(self) -> int:
        return self._pending

    def file_started(self) -> int:
        """Reserve the next arrival slot and count one more in-flight write."""
        self._pending += 1
        self._slots.append(None)
        return len(self._slots) - 1

    def file_finished(self, slot: int, descriptor: UploadedFileDescriptor) -> None:
        self._slots[slot] = descriptor
        self._pending -= 1
        self._maybe_resolve()

    def stream_ended(self) -> None:
        self._stream_ended = True
        self._maybe_resolve()

    def fail(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    def _maybe_resolve(self) -> None:
        if self._future.done():
            return
        if self._stream_ended and self._pending == 0:
            self.resolutions += 1
            self._future.set_result([d for d in self._slots if d is not None])

    async def wait(self) -> List[UploadedFileDescriptor]:
        return await self._future


class _FilePart:
    """A file part being written by its own task."""

    def __init__(self, writer: TempFileWriter, slot: int) -> None:
        self.writer = writer
        self.slot = slot
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None


class _ParseSession:
    """Callback target for one MultipartParser run."""

    def __init__(
        self,
        store: TempFileStore,
        cleanup: CleanupCoordinator,
        max_files: Optional[int],
    ) -> None:
        self.store = store
        self.cleanup = cleanup
        self.max_files = max_files
        self.completion = UploadCompletion()
        self.fields: Dict[str, str] = {}
        self.file_parts: List[_FilePart] = []
        self.ended = False

        self._header_field = b""
        self._header_value = b""
        self._headers: Dict[bytes, bytes] = {}
        self._field_name = ""
        self._field_data = bytearray()
        self._current_file: Optional[_FilePart] = None
        self._skip_part = False

    def callbacks(self) -> dict:
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_end": self.on_end,
        }

    # -----------------------------------------------------------------------
    # Parser callbacks
    # -----------------------------------------------------------------------

    def on_part_begin(self) -> None:
        self._headers = {}
        self._field_name = ""
        self._field_data = bytearray()
        self._current_file = None
        self._skip_part = False

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        disposition, options = parse_options_header(
            self._headers.get(b"content-disposition", b"")
        )
        if disposition != b"form-data":
            raise ParseError("Multipart part is missing a form-data Content-Disposition")
        self._field_name = options.get(b"name", b"").decode("utf-8", errors="replace")

        if b"filename" not in options:
            return
        filename = options[b"filename"].decode("utf-8", errors="replace")
        if not filename:
            # empty file input submitted by a browser
            self._skip_part = True
            return

        if self.max_files is not None and len(self.file_parts) >= self.max_files:
            raise TooManyFiles(self.max_files)

        content_type = self._headers.get(b"content-type", b"").decode("latin-1").strip()
        writer = self.store.open(filename, content_type)
        self.cleanup.track_temp_file(writer.descriptor)

        part = _FilePart(writer, self.completion.file_started())
        part.task = asyncio.create_task(self._write_file(part))
        self.file_parts.append(part)
        self._current_file = part

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._skip_part:
            return
        if self._current_file is not None:
            self._current_file.queue.put_nowait(bytes(data[start:end]))
        else:
            self._field_data += data[start:end]

    def on_part_end(self) -> None:
        if self._skip_part:
            return
        if self._current_file is not None:
            self._current_file.queue.put_nowait(None)
            self._current_file = None
        elif self._field_name:
            self.fields[self._field_name] = self._field_data.decode("utf-8", errors="replace")

    def on_end(self) -> None:
        self.ended = True

    # -----------------------------------------------------------------------
    # File writers
    # -----------------------------------------------------------------------

    async def _write_file(self, part: _FilePart) -> None:
        writer = part.writer
        try:
            while True:
                chunk = await part.queue.get()
                if chunk is None:
                    break
                await run_in_threadpool(writer.write, chunk)
            writer.close()
        except asyncio.CancelledError:
            writer.close()
            raise
        except ReportError as e:
            writer.close()
            self.completion.fail(e)
            return
        except OSError as e:
            writer.close()
            logger.error(f"Failed to write temp file {writer.descriptor.temporary_path}: {e}")
            self.completion.fail(
                ParseError(f"Failed to store '{writer.descriptor.original_name}': {e}")
            )
            return
        self.completion.file_finished(part.slot, writer.descriptor)

    async def abort(self) -> None:
        """Stop every writer task and close its file."""
        tasks = [p.task for p in self.file_parts if p.task is not None and not p.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for part in self.file_parts:
            part.writer.close()


class MultipartRequestParser:
    """Parses a multipart request into fields and buffered temp files.

    Attributes:
        store: Temp file store that receives file parts.
        max_files: Optional limit on the number of file parts.
    """

    def __init__(self, store: TempFileStore, max_files: Optional[int] = None) -> None:
        self.store = store
        self.max_files = max_files

    @staticmethod
    def _boundary(content_type: str) -> bytes:
        ctype, options = parse_options_header(content_type or "")
        if ctype != b"multipart/form-data":
            raise ParseError("Expected a multipart/form-data request")
        boundary = options.get(b"boundary")
        if not boundary:
            raise ParseError("Multipart boundary is missing")
        return boundary

    async def parse(self, request: Request, cleanup: CleanupCoordinator) -> ParsedUpload:
        """Parse the request body.

        Every temp file created is registered with ``cleanup`` immediately,
        so a failed parse leaves nothing behind once cleanup runs.

        Raises:
            ParseError: Malformed body, client disconnect, or failed part write.
            TooManyFiles: More than ``max_files`` file parts.
            FileTooLarge: A part exceeded the store's size limit.
        """
        boundary = self._boundary(request.headers.get("content-type", ""))
        session = _ParseSession(self.store, cleanup, self.max_files)
        parser = MultipartParser(boundary, callbacks=session.callbacks())

        try:
            async for chunk in request.stream():
                if chunk:
                    parser.write(chunk)
                if session.completion.failed:
                    break
            else:
                parser.finalize()
                if not session.ended:
                    raise ParseError("Multipart body ended unexpectedly")
                session.completion.stream_ended()
            files = await session.completion.wait()
        except MultipartParseError as e:
            await session.abort()
            raise ParseError(f"Malformed multipart body: {e}") from e
        except ClientDisconnect as e:
            await session.abort()
            raise ParseError("Client disconnected during upload") from e
        except OSError as e:
            await session.abort()
            raise ParseError(f"Failed to store upload: {e}") from e
        except BaseException:
            await session.abort()
            raise

        logger.info(
            f"Parsed multipart request: {len(session.fields)} field(s), {len(files)} file(s)"
        )
        return ParsedUpload(fields=dict(session.fields), files=files)
