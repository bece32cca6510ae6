"""Tests for GeminiProvider and SDK error translation."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from reportgen.errors import (
    ProcessingError,
    ProviderNotFound,
    ProviderOverloaded,
    UnsupportedFormat,
)
from reportgen.generation.base import (
    FileReferencePart,
    GenerationPrompt,
    GenerationProvider,
    ProviderFileHandle,
    TextPart,
)
from reportgen.generation.gemini_provider import GeminiProvider, translate_provider_error


class FakeAPIError(Exception):
    """Mimics google.genai.errors.APIError attributes."""

    def __init__(self, code, status, message):
        self.code = code
        self.status = status
        self.message = message
        super().__init__(f"{code} {status}. {message}")


def _provider_with_client():
    client = MagicMock()
    client.aio.files.upload = AsyncMock()
    client.aio.files.delete = AsyncMock()
    client.aio.models.generate_content = AsyncMock()
    client.aio.models.get = AsyncMock()
    provider = GeminiProvider(api_key="test-key")
    provider._client = client
    return provider, client


class TestTranslateProviderError:
    @pytest.mark.parametrize("error", [
        FakeAPIError(429, "RESOURCE_EXHAUSTED", "quota"),
        FakeAPIError(503, "UNAVAILABLE", "try later"),
        FakeAPIError(500, "INTERNAL", "The model is overloaded."),
    ])
    def test_overloaded(self, error):
        translated = translate_provider_error(error)
        assert isinstance(translated, ProviderOverloaded)
        assert translated.status_code == 503
        assert "try again" in translated.message

    def test_not_found(self):
        translated = translate_provider_error(FakeAPIError(404, "NOT_FOUND", "no such model"))
        assert isinstance(translated, ProviderNotFound)
        assert translated.status_code == 404

    def test_mime_rejection(self):
        translated = translate_provider_error(
            FakeAPIError(400, "INVALID_ARGUMENT", "Unsupported MIME type: application/x-foo")
        )
        assert isinstance(translated, UnsupportedFormat)
        assert translated.status_code == 400

    def test_other_errors_are_processing_errors(self):
        translated = translate_provider_error(RuntimeError("socket closed"))
        assert isinstance(translated, ProcessingError)
        assert "socket closed" in translated.message

    def test_report_errors_pass_through(self):
        original = ProviderNotFound("x")
        assert translate_provider_error(original) is original


class TestGeminiProvider:
    def test_initialization_with_defaults(self):
        provider = GeminiProvider(api_key="test-key")
        assert provider.api_key == "test-key"
        assert provider.model == GeminiProvider.DEFAULT_MODEL == "gemini-2.5-flash"

    def test_implements_generation_provider(self):
        assert isinstance(GeminiProvider(api_key="k"), GenerationProvider)

    def test_get_client_raises_import_error(self):
        provider = GeminiProvider(api_key="test-key")
        with patch.dict("sys.modules", {"google": None}):
            with pytest.raises(ImportError, match="google-genai package is required"):
                provider._get_client()

    @pytest.mark.asyncio
    async def test_upload_returns_handle(self):
        provider, client = _provider_with_client()
        client.aio.files.upload.return_value = SimpleNamespace(
            name="files/abc", uri="https://gen/files/abc", mime_type="application/pdf"
        )

        handle = await provider.upload_file("/tmp/1-doc.pdf", "application/pdf", "doc.pdf")

        assert handle == ProviderFileHandle("files/abc", "application/pdf", "https://gen/files/abc")
        kwargs = client.aio.files.upload.call_args.kwargs
        assert kwargs["file"] == "/tmp/1-doc.pdf"
        assert kwargs["config"] == {"mime_type": "application/pdf", "display_name": "doc.pdf"}

    @pytest.mark.asyncio
    async def test_upload_error_is_translated(self):
        provider, client = _provider_with_client()
        client.aio.files.upload.side_effect = FakeAPIError(429, "RESOURCE_EXHAUSTED", "slow down")
        with pytest.raises(ProviderOverloaded):
            await provider.upload_file("/tmp/x", "application/pdf", "x.pdf")

    @pytest.mark.asyncio
    async def test_delete_uses_remote_id(self):
        provider, client = _provider_with_client()
        await provider.delete_file(ProviderFileHandle("files/abc", "application/pdf", "u"))
        client.aio.files.delete.assert_awaited_once_with(name="files/abc")

    @pytest.mark.asyncio
    async def test_generate_sends_text_then_references(self):
        provider, client = _provider_with_client()
        client.aio.models.generate_content.return_value = SimpleNamespace(text="report")
        prompt = GenerationPrompt(
            TextPart("summarize"),
            [FileReferencePart("application/pdf", "https://gen/files/abc")],
        )

        result = await provider.generate(prompt)

        assert result == "report"
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        parts = kwargs["contents"][0].parts
        assert parts[0].text == "summarize"
        assert parts[1].file_data.file_uri == "https://gen/files/abc"
        assert parts[1].file_data.mime_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_generate_none_text_becomes_empty_string(self):
        provider, client = _provider_with_client()
        client.aio.models.generate_content.return_value = SimpleNamespace(text=None)
        assert await provider.generate(GenerationPrompt(TextPart("p"))) == ""

    @pytest.mark.asyncio
    async def test_generate_error_is_translated(self):
        provider, client = _provider_with_client()
        client.aio.models.generate_content.side_effect = FakeAPIError(404, "NOT_FOUND", "model")
        with pytest.raises(ProviderNotFound):
            await provider.generate(GenerationPrompt(TextPart("p")))

    @pytest.mark.asyncio
    async def test_health_check(self):
        provider, client = _provider_with_client()
        assert await provider.health_check() is True
        client.aio.models.get.side_effect = Exception("bad key")
        assert await provider.health_check() is False
