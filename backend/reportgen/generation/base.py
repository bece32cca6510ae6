"""GenerationProvider abstract interface for generative-AI backends.

A provider stores binary files on its side (returning a
``ProviderFileHandle``), accepts a multi-part prompt that references those
files, and deletes stored files on request.

Usage:
    from reportgen.generation import GeminiProvider, GenerationPrompt, TextPart

    provider = GeminiProvider(api_key="...")
    handle = await provider.upload_file("/tmp/a.pdf", "application/pdf", "a.pdf")
    try:
        text = await provider.generate(
            GenerationPrompt(TextPart("Summarize"), [FileReferencePart.for_handle(handle)])
        )
    finally:
        await provider.delete_file(handle)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple, Union

from reportgen.uploads.schemas import UploadedFileDescriptor


class Disposition(str, Enum):
    """How a file is represented in a generation request.

    - INLINE_TEXT: content read and embedded in the prompt text
    - CONVERT_TABULAR: spreadsheet converted to JSON records, then inlined
    - UPLOAD_BINARY: stored with the provider and referenced by handle
    """
    INLINE_TEXT = "inline_text"
    CONVERT_TABULAR = "convert_tabular"
    UPLOAD_BINARY = "upload_binary"


@dataclass(frozen=True)
class ClassifiedFile:
    descriptor: UploadedFileDescriptor
    disposition: Disposition


@dataclass(frozen=True)
class ProviderFileHandle:
    """A file stored on the provider side.

    Attributes:
        remote_id: Provider identifier used for deletion (e.g. ``files/abc``).
        mime_type: Media type the provider recorded for the file.
        uri: Reference used inside generation requests.
    """
    remote_id: str
    mime_type: str
    uri: str


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class FileReferencePart:
    mime_type: str
    uri: str

    @classmethod
    def for_handle(cls, handle: ProviderFileHandle) -> "FileReferencePart":
        return cls(mime_type=handle.mime_type, uri=handle.uri)


PromptPart = Union[TextPart, FileReferencePart]


class GenerationPrompt:
    """Ordered prompt parts: one leading text part, then file references.

    The order of file references is the order they were given in; parts are
    never reordered or deduplicated.
    """

    def __init__(self, text: TextPart, references: Sequence[FileReferencePart] = ()) -> None:
        self.parts: Tuple[PromptPart, ...] = (text, *references)

    @property
    def text(self) -> str:
        return self.parts[0].text

    @property
    def references(self) -> Tuple[FileReferencePart, ...]:
        return self.parts[1:]

    def __len__(self) -> int:
        return len(self.parts)

    def __repr__(self) -> str:
        return f"GenerationPrompt(text={len(self.text)} chars, references={len(self.references)})"


class GenerationProvider(ABC):
    """Abstract base class for generative-AI providers.

    Implementations translate their SDK errors into ``ReportError``
    subclasses (``ProviderOverloaded``, ``ProviderNotFound``,
    ``UnsupportedFormat``, ``ProcessingError``).
    """

    model: str

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the provider is reachable with the configured key."""

    @abstractmethod
    async def upload_file(self, path: str, mime_type: str, display_name: str) -> ProviderFileHandle:
        """Store a local file with the provider.

        Args:
            path: Local path of the file.
            mime_type: Declared media type.
            display_name: Human-readable name shown by the provider.

        Returns:
            ProviderFileHandle for the stored file.
        """

    @abstractmethod
    async def delete_file(self, handle: ProviderFileHandle) -> None:
        """Delete a stored file. May raise; callers decide how to handle it."""

    @abstractmethod
    async def generate(self, prompt: GenerationPrompt) -> str:
        """Run a single generation call and return the response text."""
