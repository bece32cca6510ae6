"""Remote backend proxy router.

Endpoints:
    POST /api/process      - probe the remote status endpoints for a job
    POST /api/space/upload - forward one file to the remote upload endpoints
"""
import logging
import os

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from reportgen.config import get_config
from reportgen.errors import NotConfigured, ParseError
from reportgen.jobs.space_client import SpaceClient, get_space_client
from reportgen.uploads import CleanupCoordinator, MultipartRequestParser, TempFileStore

from .endpoints import candidate_urls, try_candidates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["remote"])


def _client() -> SpaceClient:
    client = get_space_client()
    if client is None:
        raise NotConfigured("Remote backend is not configured: HF_SPACE_URL is missing.")
    return client


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


@router.post("/process")
async def process(request: Request) -> dict:
    """Ask the remote backend for a job's status.

    Body: ``{"jobId": "..."}``. The configured status paths are tried in
    order and the first 2xx answer is returned.
    """
    try:
        body = await request.json()
    except ValueError:
        raise ParseError("Request body must be JSON.")
    job_id = body.get("jobId") if isinstance(body, dict) else None
    if not job_id:
        raise ParseError("jobId required")

    client = _client()
    urls = candidate_urls(client.root_url, get_config().remote.status_paths, job_id=job_id)
    result = await try_candidates(
        client.http,
        "GET",
        urls,
        build_request=lambda: {"headers": client.headers},
        message="No status endpoint responded",
    )
    return {"ok": True, "endpoint": result.endpoint, "status": result.body}


@router.post("/space/upload")
async def space_upload(request: Request) -> dict:
    """Forward a single uploaded ``file`` to the remote backend.

    Optional form fields: ``filename`` (name sent upstream) and ``prompt``.
    """
    client = _client()
    uploads = get_config().uploads
    parser = MultipartRequestParser(
        TempFileStore(directory=uploads.temp_dir, max_bytes=uploads.max_file_size_mb * 1024 * 1024),
        max_files=1,
    )

    async with CleanupCoordinator() as cleanup:
        parsed = await parser.parse(request, cleanup)
        if not parsed.files:
            raise ParseError("file is required")
        descriptor = parsed.files[0]
        data = await run_in_threadpool(_read_bytes, descriptor.temporary_path)

    filename = (
        parsed.fields.get("filename")
        or os.path.basename(descriptor.original_name)
        or "upload.bin"
    )
    prompt = parsed.fields.get("prompt")

    def build_request() -> dict:
        return {
            "files": {"files": (filename, data, descriptor.declared_mime_type)},
            "data": {"prompt": prompt} if prompt else None,
            "headers": client.headers,
        }

    urls = candidate_urls(client.root_url, get_config().remote.upload_paths)
    result = await try_candidates(
        client.http,
        "POST",
        urls,
        build_request=build_request,
        message="No remote upload endpoint accepted the request.",
    )
    return {"ok": True, "endpoint": result.endpoint, "response": result.body}
