"""Job lifecycle router.

Endpoints:
    POST /api/upload              - create a job from 1..N uploaded files
    GET  /api/status/{job_id}     - poll status, progress and message
    POST /api/checkout/{job_id}   - simulated payment (marks the job paid)
    GET  /api/download/{job_id}   - download the finished report
    GET  /api/download            - proxy a remote report (?url=) or a job (?jobId=)
"""
import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, Response

from reportgen.config import get_config
from reportgen.errors import (
    DownloadNotAllowed,
    EndpointsExhausted,
    NotConfigured,
    ParseError,
    PaymentRequired,
)
from reportgen.uploads import CleanupCoordinator, MultipartRequestParser, TempFileStore

from .schemas import JobCreatedResponse, JobStatusResponse
from .space_client import get_space_client
from .tracker import JobTracker, get_tracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["jobs"])


def _tracker() -> JobTracker:
    tracker = get_tracker()
    if tracker is None:
        raise NotConfigured("Job tracking is not initialised.")
    return tracker


def _parser() -> MultipartRequestParser:
    uploads = get_config().uploads
    store = TempFileStore(
        directory=uploads.temp_dir,
        max_bytes=uploads.max_file_size_mb * 1024 * 1024,
    )
    return MultipartRequestParser(store, max_files=uploads.max_job_files)


def _pdf_download(job_id: str) -> FileResponse:
    tracker = _tracker()
    job = tracker.status(job_id)
    path = tracker.output_file(job_id)
    if get_config().payments.require_payment_for_download and not job.paid:
        raise PaymentRequired(job_id)
    return FileResponse(path, media_type="application/pdf", filename=f"report-{job_id}.pdf")


def _allowed_hosts() -> set:
    hosts = {h.lower() for h in get_config().remote.download_hosts}
    client = get_space_client()
    if client is not None and client.host:
        hosts.add(client.host.lower())
    return hosts


@router.post("/upload", response_model=JobCreatedResponse)
async def upload(request: Request) -> JobCreatedResponse:
    """Accept up to ``uploads.max_job_files`` files and start a report job.

    Returns:
        ``{"jobId": "..."}``; the job runs in the background.
    """
    tracker = _tracker()
    async with CleanupCoordinator() as cleanup:
        parsed = await _parser().parse(request, cleanup)
        job = await tracker.create(parsed.files, parsed.user_prompt.strip() or None)
    return JobCreatedResponse(jobId=job.id)


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str) -> JobStatusResponse:
    job = _tracker().status(job_id)
    return JobStatusResponse(status=job.status, progress=job.progress, message=job.message)


@router.post("/checkout/{job_id}")
async def checkout(job_id: str) -> dict:
    """Simulated checkout: marks the job as paid."""
    _tracker().mark_paid(job_id)
    logger.info(f"Job {job_id} marked as paid via checkout")
    return {"success": True}


@router.get("/download/{job_id}")
async def download_job(job_id: str) -> FileResponse:
    """Stream the finished report of a job.

    Raises:
        JobNotFound: Unknown job (404).
        JobNotReady: Job not completed yet (409).
        PaymentRequired: Payment gate enabled and job unpaid (402).
    """
    return _pdf_download(job_id)


@router.get("/download")
async def download(url: Optional[str] = None, jobId: Optional[str] = None) -> Response:
    """Download a report by remote URL or by job id.

    ``url`` must point at the remote backend's host or one of the configured
    ``remote.download_hosts``.
    """
    if jobId:
        return _pdf_download(jobId)
    if not url:
        raise ParseError("Either 'url' or 'jobId' is required.")

    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or (parts.hostname or "").lower() not in _allowed_hosts():
        raise DownloadNotAllowed(url)

    client = get_space_client()
    if client is None:
        raise NotConfigured("Remote backend is not configured: HF_SPACE_URL is missing.")
    try:
        data = await client.fetch(url, authenticated=True)
    except httpx.HTTPError as e:
        logger.warning(f"Remote report download failed for {url}: {e}")
        raise EndpointsExhausted("Could not download the report from the remote backend.", [url]) from e

    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": "attachment; filename=report.pdf"},
    )
