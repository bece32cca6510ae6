"""Report generation router.

Endpoints:
    POST /api/generate-report - multipart prompt + files -> {"report": str}
"""
import logging

from fastapi import APIRouter, Request

from reportgen.config import get_config
from reportgen.uploads import CleanupCoordinator, MultipartRequestParser, TempFileStore

from .service import get_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


def _parser() -> MultipartRequestParser:
    uploads = get_config().uploads
    store = TempFileStore(
        directory=uploads.temp_dir,
        max_bytes=uploads.max_file_size_mb * 1024 * 1024,
    )
    return MultipartRequestParser(store)


@router.post("/generate-report")
async def generate_report(request: Request) -> dict:
    """Generate a report from a prompt and the attached files.

    The form carries ``user_prompt`` (or ``prompt``) and one or more file
    parts. Every temp file and provider file created while handling the
    request is deleted before the response is sent, on success or failure.

    Returns:
        ``{"report": "..."}``. Failures are rendered as ``{"error": "..."}``
        by the ReportError handler.
    """
    # Fails before the body is read when no provider is configured.
    dispatcher = get_dispatcher()

    async with CleanupCoordinator(dispatcher.provider) as cleanup:
        parsed = await _parser().parse(request, cleanup)
        logger.info(f"Received {len(parsed.files)} file(s) for report generation")
        report = await dispatcher.generate(parsed.user_prompt, parsed.files, cleanup)

    return {"report": report}
