"""Background report jobs driven against the remote Space.

State machine::

    pending -> processing -> completed
                          -> error

``processing`` progress only moves forward; ``completed`` and ``error`` are
final. The one change accepted after a job is final is ``paid``. A failed
job reports progress 0, so pollers must read ``status`` before ``progress``.

Each job owns a directory ``<jobs_dir>/<job_id>/`` holding the uploaded
inputs while the job runs and ``output.pdf`` once it completes. Inputs are
deleted when the job reaches a final state.

Usage:
    tracker = JobTracker(store, space_client, jobs_dir="./jobs")
    job = await tracker.create(parsed.files)
    ...
    tracker.status(job.id).progress
"""
import asyncio
import logging
import os
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Sequence, Set

import httpx
from starlette.concurrency import run_in_threadpool

from reportgen.errors import JobNotFound, JobNotReady, NoFilesAttached, NotConfigured
from reportgen.uploads.schemas import UploadedFileDescriptor
from reportgen.uploads.temp_store import sanitize_filename

from .polling import PollPolicy, PollTimeout
from .schemas import Job
from .space_client import SpaceClient
from .store import JobStore, StaleJobError

logger = logging.getLogger(__name__)

OUTPUT_FILENAME = "output.pdf"
DEFAULT_PROMPT = (
    "Generate an organised PDF report with charts, an executive summary "
    "and an analysis of the attached data."
)

_MAX_UPDATE_RETRIES = 5


class JobStateError(Exception):
    """Raised on a transition out of a final state."""
    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is already {status}")


class RemoteJobError(Exception):
    """The remote backend answered, but not with a usable report."""


def _write_bytes(path: Path, data: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(data)


def _unique_name(name: str, taken: Set[str]) -> str:
    stem, ext = os.path.splitext(name)
    candidate = name
    counter = 1
    while candidate in taken:
        candidate = f"{stem}-{counter}{ext}"
        counter += 1
    taken.add(candidate)
    return candidate


class JobTracker:
    """Creates jobs, runs them in the background and answers status queries.

    Attributes:
        store: Job record storage.
        space_client: Client for the remote backend (None when unconfigured;
            jobs then fail with a "not configured" message).
        jobs_dir: Root directory for per-job folders.
        poll_policy: Polling budget for remote jobs that answer with a job_id.
        prompt: Instruction sent with every submission.
        retention_days: Age after which ``purge_expired`` removes a job.
    """

    def __init__(
        self,
        store: JobStore,
        space_client: Optional[SpaceClient],
        jobs_dir: str,
        poll_policy: Optional[PollPolicy] = None,
        prompt: str = DEFAULT_PROMPT,
        retention_days: int = 7,
    ) -> None:
        self.store = store
        self.space_client = space_client
        self.jobs_dir = Path(jobs_dir)
        self.poll_policy = poll_policy or PollPolicy()
        self.prompt = prompt
        self.retention_days = retention_days
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def job_dir(self, job_id: str) -> Path:
        return self.jobs_dir / job_id

    def _move_inputs(self, folder: Path, files: Sequence[UploadedFileDescriptor]) -> None:
        """Move the uploads into ``folder``; on failure the folder is removed."""
        folder.mkdir(parents=True, exist_ok=True)
        taken = {OUTPUT_FILENAME}
        try:
            for descriptor in files:
                name = _unique_name(sanitize_filename(descriptor.original_name), taken)
                shutil.move(descriptor.temporary_path, folder / name)
        except Exception:
            # no job record exists yet, so purge_expired would never find it
            shutil.rmtree(folder, ignore_errors=True)
            raise

    async def create(
        self, files: Sequence[UploadedFileDescriptor], prompt: Optional[str] = None
    ) -> Job:
        """Create a job from uploaded files and start it in the background.

        The temp files are moved into the job directory. ``prompt`` overrides
        the default instruction sent to the remote backend.

        Raises:
            NoFilesAttached: If ``files`` is empty.
        """
        if not files:
            raise NoFilesAttached("No files uploaded.")

        job = Job()
        await run_in_threadpool(self._move_inputs, self.job_dir(job.id), files)
        self.store.put(job)
        logger.info(f"Created job {job.id} with {len(files)} file(s)")

        self.start(job.id, prompt)
        return job

    def start(self, job_id: str, prompt: Optional[str] = None) -> asyncio.Task:
        """Schedule ``run_job`` and keep a reference until it finishes."""
        task = asyncio.create_task(self.run_job(job_id, prompt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _advance(self, job_id: str, **changes) -> Job:
        """Apply a transition with compare-and-set, retrying on conflicts.

        Progress is clamped so it never decreases while the job is running.

        Raises:
            JobNotFound: If the job does not exist.
            JobStateError: If the job is already final.
        """
        for _ in range(_MAX_UPDATE_RETRIES):
            job = self.store.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            if job.is_terminal:
                raise JobStateError(job_id, job.status)

            update = dict(changes)
            if update.get("status", job.status) != "error" and "progress" in update:
                update["progress"] = max(job.progress, update["progress"])
            try:
                return self.store.update(job_id, job.version, **update)
            except StaleJobError:
                logger.debug(f"Job {job_id} changed concurrently; retrying update")
            except KeyError:
                raise JobNotFound(job_id)
        raise StaleJobError(job_id, job.version)

    def _fail(self, job_id: str, message: str) -> None:
        try:
            self._advance(job_id, status="error", progress=0, message=message)
        except (JobStateError, JobNotFound) as e:
            logger.warning(f"Could not mark job {job_id} as failed: {e}")

    def _remove_inputs(self, job_id: str) -> None:
        folder = self.job_dir(job_id)
        if not folder.is_dir():
            return
        for entry in folder.iterdir():
            if entry.name == OUTPUT_FILENAME:
                continue
            try:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete job input {entry}: {e}")

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def run_job(self, job_id: str, prompt: Optional[str] = None) -> None:
        """Drive one job from ``pending`` to a final state. Never raises."""
        try:
            if self.space_client is None:
                raise NotConfigured("Remote backend is not configured: HF_SPACE_URL is missing.")

            self._advance(job_id, status="processing", progress=10, message="Preparing payload")
            folder = self.job_dir(job_id)
            inputs = sorted(
                str(p) for p in folder.iterdir() if p.is_file() and p.name != OUTPUT_FILENAME
            )

            self._advance(job_id, progress=25, message="Sending to remote backend")
            response = await self.space_client.submit(inputs, prompt or self.prompt)
            output = await self._negotiate(job_id, response)

            self._advance(
                job_id,
                status="completed",
                progress=100,
                message="Completed",
                output_path=str(output),
            )
            logger.info(f"Job {job_id} completed: {output}")
        except asyncio.CancelledError:
            self._fail(job_id, "Job cancelled")
            raise
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or "Processing failed"
            logger.error(f"Job {job_id} failed: {message}", exc_info=not isinstance(e, RemoteJobError))
            self._fail(job_id, message)
        finally:
            await run_in_threadpool(self._remove_inputs, job_id)

    async def _negotiate(self, job_id: str, response: httpx.Response) -> Path:
        """Turn the submission response into a stored report.

        Accepted shapes, in order: a PDF body, JSON with ``result_url``,
        JSON with ``job_id`` (polled). Anything else is an error.
        """
        content_type = response.headers.get("content-type", "")
        if "application/pdf" in content_type:
            self._advance(job_id, progress=70, message="Receiving report")
            return await self._write_output(job_id, response.content)

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        if body.get("result_url"):
            self._advance(job_id, progress=60, message="Downloading report")
            return await self._download(job_id, body["result_url"])

        if body.get("job_id"):
            self._advance(job_id, progress=30, message="Remote job started; polling for result")
            result_url = await self._poll_remote(job_id, str(body["job_id"]))
            return await self._download(job_id, result_url)

        raise RemoteJobError("Unexpected response from remote backend")

    async def _poll_remote(self, job_id: str, remote_id: str) -> str:
        async def probe(attempt: int) -> Optional[str]:
            try:
                remote = await self.space_client.status(remote_id)
            except httpx.HTTPError as e:
                logger.warning(f"Polling remote job {remote_id} failed (attempt {attempt}): {e}")
                return None

            remote = remote or {}
            remote_status = str(remote.get("status", "")).lower()
            if remote_status == "completed" and remote.get("result_url"):
                return remote["result_url"]
            if remote_status in ("error", "failed"):
                raise RemoteJobError(
                    remote.get("message") or remote.get("error") or f"Remote job {remote_status}"
                )

            current = self.status(job_id)
            self._advance(
                job_id,
                progress=min(95, current.progress + 5),
                message=remote.get("message") or "Processing remotely",
            )
            return None

        try:
            return await self.poll_policy.run(probe)
        except PollTimeout as e:
            raise RemoteJobError(
                f"Remote backend did not return a result after {e.attempts} status checks"
            ) from e

    async def _download(self, job_id: str, url: str) -> Path:
        data = await self.space_client.fetch(url)
        return await self._write_output(job_id, data)

    async def _write_output(self, job_id: str, data: bytes) -> Path:
        path = self.job_dir(job_id) / OUTPUT_FILENAME
        await run_in_threadpool(_write_bytes, path, data)
        return path

    # ------------------------------------------------------------------
    # Queries and post-completion operations
    # ------------------------------------------------------------------

    def status(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def mark_paid(self, job_id: str) -> Job:
        """Set ``paid``. Allowed in every state, including final ones."""
        for _ in range(_MAX_UPDATE_RETRIES):
            job = self.status(job_id)
            if job.paid:
                return job
            try:
                return self.store.update(job_id, job.version, paid=True)
            except StaleJobError:
                continue
        raise StaleJobError(job_id, job.version)

    def output_file(self, job_id: str) -> Path:
        """Path of the finished report.

        Raises:
            JobNotFound: If the job or its report file does not exist.
            JobNotReady: If the job has not completed.
        """
        job = self.status(job_id)
        if job.status != "completed" or not job.output_path:
            raise JobNotReady(job_id)
        path = Path(job.output_path)
        if not path.is_file():
            raise JobNotFound(job_id)
        return path

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete jobs (records and directories) older than the retention window.

        Returns:
            Number of jobs removed.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.retention_days)
        removed = 0
        for job in self.store.list_older_than(cutoff):
            shutil.rmtree(self.job_dir(job.id), ignore_errors=True)
            if self.store.delete(job.id):
                removed += 1
        if removed:
            logger.info(f"Purged {removed} job(s) older than {self.retention_days} days")
        return removed

    async def close(self) -> None:
        """Cancel running jobs and wait for them to settle."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


_tracker: Optional[JobTracker] = None


def get_tracker() -> Optional[JobTracker]:
    """Get the global job tracker instance."""
    return _tracker


def set_tracker(tracker: Optional[JobTracker]) -> None:
    """Set the global job tracker instance."""
    global _tracker
    _tracker = tracker
