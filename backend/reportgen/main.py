"""Report generation backend.

This is the main entry point for the report service.

Modules:
    - uploads: streaming multipart parsing, temp files, request cleanup
    - generation: file classification and Gemini report generation
    - jobs: background report jobs against the remote Space backend
    - remote: candidate-endpoint proxying to the remote backend
    - payments: Stripe webhook handling
"""
import logging
from contextlib import asynccontextmanager

import stripe
import uvicorn
from fastapi import FastAPI, Request

from reportgen.config import get_config
from reportgen.errors import ProcessingError, ReportError, handle_report_error
from reportgen.generation.router import router as generation_router
from reportgen.generation.service import build_provider, set_provider
from reportgen.jobs.polling import PollPolicy
from reportgen.jobs.router import router as jobs_router
from reportgen.jobs.space_client import SpaceClient, get_space_client, set_space_client
from reportgen.jobs.store import build_job_store
from reportgen.jobs.tracker import JobTracker, get_tracker, set_tracker
from reportgen.payments.router import router as payments_router
from reportgen.remote.router import router as remote_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# httpx/httpcore/urllib3 log every connection and request line; the
# google-genai SDK logs every API call.
for _noisy in (
    "urllib3",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "google_genai",
    "stripe",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in reportgen.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    set_provider(build_provider(config))

    if config.secrets.stripe.secret_key:
        stripe.api_key = config.secrets.stripe.secret_key
    if not config.secrets.stripe.webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not configured; webhook signatures will not be verified")

    jobs_cfg = config.jobs
    if config.remote.base_url:
        set_space_client(SpaceClient(
            config.remote.base_url,
            token=config.secrets.remote.token,
            timeout=jobs_cfg.request_timeout_seconds,
        ))
        logger.info(f"Remote backend: {config.remote.base_url}")
    else:
        logger.warning("HF_SPACE_URL not configured; background jobs will fail")

    tracker = JobTracker(
        store=build_job_store(jobs_cfg.store, jobs_cfg.db_path),
        space_client=get_space_client(),
        jobs_dir=jobs_cfg.jobs_dir,
        poll_policy=PollPolicy(jobs_cfg.poll_interval_seconds, jobs_cfg.poll_max_attempts),
        prompt=jobs_cfg.prompt,
        retention_days=jobs_cfg.retention_days,
    )
    tracker.purge_expired()
    set_tracker(tracker)

    yield  # Application runs here

    # Shutdown
    tracker = get_tracker()
    if tracker is not None:
        await tracker.close()
        tracker.store.close()
        set_tracker(None)
    client = get_space_client()
    if client is not None:
        await client.close()
        set_space_client(None)
    set_provider(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Report Generator API",
    description="Backend service that turns uploaded data files into AI-generated reports",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ReportError)
async def report_error_handler(request: Request, exc: ReportError):
    logger.warning(f"{request.method} {request.url.path} failed ({exc.status_code}): {exc.message}")
    return handle_report_error(exc)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"{request.method} {request.url.path} crashed: {exc}", exc_info=exc)
    return handle_report_error(ProcessingError(f"Unexpected server error: {exc}"))


# Register all routers
app.include_router(generation_router)
app.include_router(jobs_router)
app.include_router(remote_router)
app.include_router(payments_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    server = get_config().server
    uvicorn.run("reportgen.main:app", host=server.host, port=server.port)
