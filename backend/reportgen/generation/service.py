"""Process-wide generation provider.

The provider is built once at startup (when an API key is configured) and
looked up by the HTTP layer per request. Tests install a fake with
``set_provider``.
"""
import logging
from typing import Optional

from reportgen.config import ReportConfig
from reportgen.errors import NotConfigured

from .base import GenerationProvider
from .dispatch import ReportDispatcher
from .gemini_provider import GeminiProvider

logger = logging.getLogger(__name__)


def build_provider(config: ReportConfig) -> Optional[GenerationProvider]:
    """Create the Gemini provider, or None when no API key is configured."""
    api_key = config.gemini_api_key
    if not api_key:
        logger.warning("GEMINI_API_KEY not configured; report generation is disabled")
        return None
    logger.info(f"Gemini provider ready: model={config.gemini.model}")
    return GeminiProvider(api_key=api_key, model=config.gemini.model)


_provider: Optional[GenerationProvider] = None


def get_provider() -> Optional[GenerationProvider]:
    """Get the global generation provider instance."""
    return _provider


def set_provider(provider: Optional[GenerationProvider]) -> None:
    """Set the global generation provider instance."""
    global _provider
    _provider = provider


def get_dispatcher() -> ReportDispatcher:
    """Return a dispatcher bound to the global provider.

    Raises:
        NotConfigured: If no provider was configured at startup.
    """
    if _provider is None:
        raise NotConfigured("Report generation is not configured: GEMINI_API_KEY is missing.")
    return ReportDispatcher(_provider)
