"""Report generation against a generative-AI provider."""
from .base import (
    ClassifiedFile,
    Disposition,
    FileReferencePart,
    GenerationPrompt,
    GenerationProvider,
    ProviderFileHandle,
    TextPart,
)
from .classifier import classify, classify_file
from .dispatch import ReportDispatcher, build_prompt_text, format_context_block
from .gemini_provider import GeminiProvider, translate_provider_error
from .service import build_provider, get_dispatcher, get_provider, set_provider
from .spreadsheet import convert_spreadsheet

__all__ = [
    "ClassifiedFile",
    "Disposition",
    "FileReferencePart",
    "GenerationPrompt",
    "GenerationProvider",
    "ProviderFileHandle",
    "TextPart",
    "classify",
    "classify_file",
    "ReportDispatcher",
    "build_prompt_text",
    "format_context_block",
    "GeminiProvider",
    "translate_provider_error",
    "build_provider",
    "get_dispatcher",
    "get_provider",
    "set_provider",
    "convert_spreadsheet",
]
