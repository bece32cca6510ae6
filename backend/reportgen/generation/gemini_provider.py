"""Gemini provider implementation.

Connects to Google's Gemini API through the official ``google-genai`` SDK,
using its async surface (``client.aio``) for file storage and generation.

Usage:
    provider = GeminiProvider(api_key="...")
    if await provider.health_check():
        handle = await provider.upload_file(path, "application/pdf", "invoice.pdf")
"""
import logging
from typing import Optional

from reportgen.errors import (
    ProcessingError,
    ProviderNotFound,
    ProviderOverloaded,
    ReportError,
    UnsupportedFormat,
)

from .base import GenerationPrompt, GenerationProvider, ProviderFileHandle

logger = logging.getLogger(__name__)

_OVERLOADED_CODES = {429, 503}
_OVERLOADED_STATUSES = {"RESOURCE_EXHAUSTED", "UNAVAILABLE"}


def translate_provider_error(exc: Exception) -> ReportError:
    """Map a google-genai SDK error onto the report error taxonomy.

    ``APIError`` instances expose ``code`` (HTTP status), ``status``
    (gRPC-style status name) and ``message``.
    """
    if isinstance(exc, ReportError):
        return exc

    code = getattr(exc, "code", None)
    status = str(getattr(exc, "status", "") or "").upper()
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    lowered = message.lower()

    if code in _OVERLOADED_CODES or status in _OVERLOADED_STATUSES or "overloaded" in lowered:
        return ProviderOverloaded(f"The AI provider is overloaded ({message}).")
    if code == 404 or status == "NOT_FOUND":
        return ProviderNotFound(f"AI model or resource not found: {message}")
    if code == 400 and ("mime" in lowered or "unsupported" in lowered):
        return UnsupportedFormat(f"File type not supported by the AI provider: {message}")
    return ProcessingError(f"AI provider error: {message}")


class GeminiProvider(GenerationProvider):
    """GenerationProvider backed by the Gemini API.

    Attributes:
        api_key: Gemini API key.
        model: Model identifier used for every generation call.
    """

    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(self, api_key: str, model: Optional[str] = None) -> None:
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self._client: Optional[object] = None

    def _get_client(self) -> object:
        """Get or create the google-genai client.

        Raises:
            ImportError: If the google-genai package is not installed.
        """
        if self._client is None:
            try:
                from google import genai
                self._client = genai.Client(api_key=self.api_key)
            except ImportError:
                raise ImportError(
                    "google-genai package is required for GeminiProvider. "
                    "Install it with: pip install google-genai"
                )
        return self._client

    @staticmethod
    def _to_contents(prompt: GenerationPrompt) -> list:
        from google.genai import types

        parts = [types.Part.from_text(text=prompt.text)]
        for ref in prompt.references:
            parts.append(types.Part.from_uri(file_uri=ref.uri, mime_type=ref.mime_type))
        return [types.Content(role="user", parts=parts)]

    async def health_check(self) -> bool:
        """Check that the configured model is reachable.

        Returns:
            bool: True if the model metadata could be fetched.
        """
        try:
            client = self._get_client()
            await client.aio.models.get(model=self.model)
            return True
        except Exception as e:
            logger.warning(f"Gemini health check failed: {e}")
            return False

    async def upload_file(self, path: str, mime_type: str, display_name: str) -> ProviderFileHandle:
        client = self._get_client()
        try:
            uploaded = await client.aio.files.upload(
                file=path,
                config={"mime_type": mime_type, "display_name": display_name},
            )
        except Exception as e:
            raise translate_provider_error(e) from e

        logger.info(f"Uploaded {display_name} to Gemini as {uploaded.name}")
        return ProviderFileHandle(
            remote_id=uploaded.name,
            mime_type=uploaded.mime_type or mime_type,
            uri=uploaded.uri or uploaded.name,
        )

    async def delete_file(self, handle: ProviderFileHandle) -> None:
        client = self._get_client()
        await client.aio.files.delete(name=handle.remote_id)
        logger.debug(f"Deleted Gemini file {handle.remote_id}")

    async def generate(self, prompt: GenerationPrompt) -> str:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=self._to_contents(prompt),
            )
        except Exception as e:
            raise translate_provider_error(e) from e
        return response.text or ""


