"""Report dispatch: turn a prompt plus uploaded files into one generation call.

Flow for a single request:

1. Validate (files present, prompt not blank) before touching the provider.
2. Classify every file by declared media type.
3. Inline text files and converted spreadsheets into a context block.
4. Upload binary files to the provider concurrently; each handle is
   registered with the cleanup coordinator the moment it exists.
5. Build the prompt (text part first, then file references in upload order)
   and run exactly one generation call.

Provider handles and temp files are released on every exit path, either by
the caller's ``CleanupCoordinator`` or by one the dispatcher owns.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

from starlette.concurrency import run_in_threadpool

from reportgen.errors import (
    EmptyPrompt,
    NoFilesAttached,
    ProcessingError,
    ProviderNotFound,
    ProviderOverloaded,
    ReportError,
    UnsupportedFormat,
    UploadError,
)
from reportgen.uploads.cleanup import CleanupCoordinator
from reportgen.uploads.schemas import UploadedFileDescriptor

from .base import (
    ClassifiedFile,
    Disposition,
    FileReferencePart,
    GenerationPrompt,
    GenerationProvider,
    ProviderFileHandle,
    TextPart,
)
from .classifier import classify_file
from .spreadsheet import convert_spreadsheet

_PASSTHROUGH_ERRORS = (UnsupportedFormat, ProviderOverloaded, ProviderNotFound)

logger = logging.getLogger(__name__)

TEXT_LABEL = "File"
SPREADSHEET_LABEL = "Spreadsheet (JSON)"
CONTEXT_HEADER = "Additional data context:"


def format_context_block(label: str, name: str, content: str) -> str:
    return f"--- {label}: {name} ---\n{content}\n---"


def build_prompt_text(user_prompt: str, context_blocks: Sequence[str]) -> str:
    """Append the inlined file context (if any) to the user prompt.

    Examples:
        >>> build_prompt_text("summarize", [])
        'summarize'
        >>> build_prompt_text("summarize", ["--- File: a.txt ---\\nhi\\n---"])
        'summarize\\n\\nAdditional data context:\\n--- File: a.txt ---\\nhi\\n---'
    """
    if not context_blocks:
        return user_prompt
    context = "\n\n".join(context_blocks)
    return f"{user_prompt}\n\n{CONTEXT_HEADER}\n{context}"


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        return fh.read()


class ReportDispatcher:
    """Runs one report generation against a GenerationProvider.

    Attributes:
        provider: The provider used for file storage and generation.
    """

    def __init__(self, provider: GenerationProvider) -> None:
        self.provider = provider

    async def generate(
        self,
        user_prompt: str,
        files: Sequence[UploadedFileDescriptor],
        cleanup: Optional[CleanupCoordinator] = None,
    ) -> str:
        """Generate a report for ``user_prompt`` over ``files``.

        Args:
            user_prompt: The user's instruction.
            files: Uploaded files in arrival order.
            cleanup: Request-scoped coordinator. When omitted the dispatcher
                tracks and releases the files itself.

        Returns:
            The generated report text.

        Raises:
            ReportError: Any failure, typed by cause.
        """
        if not files:
            raise NoFilesAttached()
        if not user_prompt or not user_prompt.strip():
            raise EmptyPrompt()

        owned = cleanup is None
        if owned:
            cleanup = CleanupCoordinator(self.provider)
            for descriptor in files:
                cleanup.track_temp_file(descriptor)

        try:
            return await self._generate(user_prompt, files, cleanup)
        except ReportError:
            raise
        except Exception as e:
            logger.error(f"Report generation failed: {e}", exc_info=True)
            raise ProcessingError(f"Report generation failed: {e}") from e
        finally:
            if owned:
                await asyncio.shield(cleanup.run())

    async def _generate(
        self,
        user_prompt: str,
        files: Sequence[UploadedFileDescriptor],
        cleanup: CleanupCoordinator,
    ) -> str:
        classified = [classify_file(d) for d in files]

        context_blocks: List[str] = []
        binaries: List[ClassifiedFile] = []
        for item in classified:
            descriptor = item.descriptor
            if item.disposition == Disposition.INLINE_TEXT:
                content = await run_in_threadpool(_read_text, descriptor.temporary_path)
                context_blocks.append(format_context_block(TEXT_LABEL, descriptor.original_name, content))
            elif item.disposition == Disposition.CONVERT_TABULAR:
                content = await run_in_threadpool(
                    convert_spreadsheet, descriptor.temporary_path, descriptor.original_name
                )
                context_blocks.append(
                    format_context_block(SPREADSHEET_LABEL, descriptor.original_name, content)
                )
            else:
                binaries.append(item)

        handles = await self._upload_all(binaries, cleanup)

        prompt = GenerationPrompt(
            TextPart(build_prompt_text(user_prompt, context_blocks)),
            [FileReferencePart.for_handle(h) for h in handles],
        )
        logger.info(
            f"Generating report with {self.provider.model}: "
            f"{len(context_blocks)} inlined, {len(handles)} uploaded"
        )

        report = await self.provider.generate(prompt)
        if not report or not report.strip():
            raise ProcessingError("The AI provider returned an empty report.")
        return report

    async def _upload_one(self, item: ClassifiedFile, cleanup: CleanupCoordinator) -> ProviderFileHandle:
        descriptor = item.descriptor
        handle = await self.provider.upload_file(
            descriptor.temporary_path,
            descriptor.declared_mime_type,
            descriptor.original_name,
        )
        cleanup.track_provider_file(handle)
        return handle

    async def _upload_all(
        self, binaries: Sequence[ClassifiedFile], cleanup: CleanupCoordinator
    ) -> List[ProviderFileHandle]:
        """Upload every binary file; fail only after the whole batch settled."""
        if not binaries:
            return []

        results = await asyncio.gather(
            *(self._upload_one(item, cleanup) for item in binaries),
            return_exceptions=True,
        )

        handles: List[ProviderFileHandle] = []
        for item, result in zip(binaries, results):
            if isinstance(result, _PASSTHROUGH_ERRORS):
                # keep the retryable or configuration status of the cause
                raise result
            if isinstance(result, BaseException):
                reason = getattr(result, "message", None) or str(result) or type(result).__name__
                logger.warning(f"Upload of {item.descriptor.original_name} failed: {reason}")
                raise UploadError(item.descriptor.original_name, reason) from result
            handles.append(result)
        return handles
