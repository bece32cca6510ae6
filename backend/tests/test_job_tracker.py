"""Tests for JobTracker and SpaceClient against a mocked remote backend."""
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from reportgen.errors import JobNotFound, JobNotReady, NoFilesAttached
from reportgen.jobs.polling import PollPolicy
from reportgen.jobs.schemas import Job
from reportgen.jobs.space_client import SpaceClient
from reportgen.jobs.store import InMemoryJobStore
from reportgen.jobs.tracker import OUTPUT_FILENAME, JobStateError, JobTracker
from reportgen.uploads.schemas import UploadedFileDescriptor

BASE_URL = "https://space.test/run/predict"
PDF = b"%PDF-1.4 report"


async def _no_sleep(seconds):
    return None


def _space(handler, token=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SpaceClient(BASE_URL, token=token, http=http)


def _tracker(tmp_path, handler=None, max_attempts=5, token=None):
    space = _space(handler, token=token) if handler else None
    return JobTracker(
        store=InMemoryJobStore(),
        space_client=space,
        jobs_dir=str(tmp_path / "jobs"),
        poll_policy=PollPolicy(interval=2.0, max_attempts=max_attempts, sleep=_no_sleep),
    )


def _upload(tmp_path, name, data=b"data"):
    folder = tmp_path / "uploads"
    folder.mkdir(exist_ok=True)
    path = folder / f"{len(list(folder.iterdir()))}-upload"
    path.write_bytes(data)
    return UploadedFileDescriptor(str(path), "text/csv", name)


async def _created_job(tracker, tmp_path, names=("data.csv",)):
    with patch.object(JobTracker, "start"):
        return await tracker.create([_upload(tmp_path, n) for n in names])


class TestSpaceClient:
    def test_root_url_strips_run_suffix(self):
        client = SpaceClient("https://space.test/run/predict/")
        assert client.root_url == "https://space.test"
        assert client.poll_url("abc") == "https://space.test/status/abc"
        assert client.host == "space.test"

    @pytest.mark.asyncio
    async def test_submit_posts_files_prompt_and_token(self, tmp_path):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.content
            return httpx.Response(200, json={})

        path = tmp_path / "data.csv"
        path.write_bytes(b"a,b\n1,2\n")
        client = _space(handler, token="hf_secret")

        await client.submit([str(path)], "make a report")

        assert seen["url"] == BASE_URL
        assert seen["auth"] == "Bearer hf_secret"
        assert b'name="files"; filename="data.csv"' in seen["body"]
        assert b'name="prompt"' in seen["body"]
        assert b"make a report" in seen["body"]
        assert b"a,b\n1,2\n" in seen["body"]

    @pytest.mark.asyncio
    async def test_status_returns_none_for_non_json(self):
        client = _space(lambda request: httpx.Response(200, text="<html>"))
        assert await client.status("abc") is None


class TestJobCreation:
    @pytest.mark.asyncio
    async def test_create_moves_files_into_job_dir(self, tmp_path):
        tracker = _tracker(tmp_path)
        uploads = [_upload(tmp_path, "my data.csv"), _upload(tmp_path, "my data.csv")]

        with patch.object(JobTracker, "start") as start:
            job = await tracker.create(uploads)

        start.assert_called_once_with(job.id, None)
        assert job.status == "pending"
        assert job.message == "Job created"
        names = sorted(p.name for p in tracker.job_dir(job.id).iterdir())
        assert names == ["my_data-1.csv", "my_data.csv"]
        assert not any(Path(u.temporary_path).exists() for u in uploads)

    @pytest.mark.asyncio
    async def test_input_never_takes_output_name(self, tmp_path):
        tracker = _tracker(tmp_path)
        job = await _created_job(tracker, tmp_path, names=("output.pdf",))
        assert [p.name for p in tracker.job_dir(job.id).iterdir()] == ["output-1.pdf"]

    @pytest.mark.asyncio
    async def test_failed_move_removes_job_dir(self, tmp_path):
        tracker = _tracker(tmp_path)
        uploads = [_upload(tmp_path, "one.csv"), _upload(tmp_path, "two.csv")]
        real_move = shutil.move
        calls = []

        def move(src, dst):
            calls.append(dst)
            if len(calls) == 2:
                raise OSError(28, "No space left on device")
            return real_move(src, dst)

        with patch("reportgen.jobs.tracker.shutil.move", side_effect=move), \
                patch.object(JobTracker, "start") as start:
            with pytest.raises(OSError):
                await tracker.create(uploads)

        start.assert_not_called()
        assert list((tmp_path / "jobs").iterdir()) == []
        assert tracker.purge_expired(datetime.now(timezone.utc) + timedelta(days=30)) == 0

    @pytest.mark.asyncio
    async def test_create_without_files(self, tmp_path):
        with pytest.raises(NoFilesAttached):
            await _tracker(tmp_path).create([])

    @pytest.mark.asyncio
    async def test_start_runs_job_in_background(self, tmp_path):
        tracker = _tracker(
            tmp_path,
            lambda request: httpx.Response(200, content=PDF, headers={"content-type": "application/pdf"}),
        )
        job = await tracker.create([_upload(tmp_path, "data.csv")])
        await next(iter(tracker._tasks))
        assert tracker.status(job.id).status == "completed"


class TestRunJob:
    @pytest.mark.asyncio
    async def test_pdf_response(self, tmp_path):
        tracker = _tracker(
            tmp_path,
            lambda request: httpx.Response(200, content=PDF, headers={"content-type": "application/pdf"}),
        )
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        done = tracker.status(job.id)
        assert done.status == "completed"
        assert done.progress == 100
        assert Path(done.output_path).read_bytes() == PDF
        assert [p.name for p in tracker.job_dir(job.id).iterdir()] == [OUTPUT_FILENAME]

    @pytest.mark.asyncio
    async def test_result_url_response(self, tmp_path):
        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"result_url": "https://files.test/r.pdf"})
            assert str(request.url) == "https://files.test/r.pdf"
            return httpx.Response(200, content=PDF)

        tracker = _tracker(tmp_path, handler)
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        done = tracker.status(job.id)
        assert done.status == "completed"
        assert Path(done.output_path).read_bytes() == PDF

    @pytest.mark.asyncio
    async def test_remote_job_is_polled_until_complete(self, tmp_path):
        statuses = iter([
            {"status": "processing", "message": "Rendering charts"},
            {"status": "processing"},
            {"status": "completed", "result_url": "https://space.test/files/r.pdf"},
        ])
        progress_seen = []
        holder = {}

        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            if request.url.path == "/status/r-1":
                progress_seen.append(holder["tracker"].status(holder["job"]).progress)
                return httpx.Response(200, json=next(statuses))
            return httpx.Response(200, content=PDF)

        tracker = _tracker(tmp_path, handler)
        job = await _created_job(tracker, tmp_path)
        holder.update(tracker=tracker, job=job.id)

        await tracker.run_job(job.id)

        assert progress_seen == [30, 35, 40]
        done = tracker.status(job.id)
        assert done.status == "completed"
        assert done.progress == 100

    @pytest.mark.asyncio
    async def test_remote_message_is_reported_while_polling(self, tmp_path):
        messages = []
        holder = {}

        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            messages.append(holder["tracker"].status(holder["job"]).message)
            return httpx.Response(200, json={"status": "processing", "message": "Rendering charts"})

        tracker = _tracker(tmp_path, handler, max_attempts=2)
        job = await _created_job(tracker, tmp_path)
        holder.update(tracker=tracker, job=job.id)

        await tracker.run_job(job.id)

        assert messages[1] == "Rendering charts"

    @pytest.mark.asyncio
    async def test_progress_is_capped_at_95_while_polling(self, tmp_path):
        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            return httpx.Response(200, json={"status": "queued"})

        tracker = _tracker(tmp_path, handler, max_attempts=30)
        job = await _created_job(tracker, tmp_path)
        progress = []
        original = tracker._advance

        def spy(job_id, **changes):
            updated = original(job_id, **changes)
            progress.append(updated.progress)
            return updated

        tracker._advance = spy
        await tracker.run_job(job.id)

        assert max(progress) == 95
        assert progress[:-1] == sorted(progress[:-1])

    @pytest.mark.asyncio
    async def test_remote_failure_ends_in_error(self, tmp_path):
        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            return httpx.Response(200, json={"status": "failed", "message": "Bad spreadsheet"})

        tracker = _tracker(tmp_path, handler)
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        failed = tracker.status(job.id)
        assert failed.status == "error"
        assert failed.message == "Bad spreadsheet"
        assert failed.progress == 0
        assert list(tracker.job_dir(job.id).iterdir()) == []

    @pytest.mark.asyncio
    async def test_polling_budget_exhausted(self, tmp_path):
        calls = []

        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            calls.append(request)
            return httpx.Response(200, json={"status": "processing"})

        tracker = _tracker(tmp_path, handler, max_attempts=4)
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        assert len(calls) == 4
        failed = tracker.status(job.id)
        assert failed.status == "error"
        assert failed.progress == 0

    @pytest.mark.asyncio
    async def test_poll_transport_errors_count_as_attempts(self, tmp_path):
        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            raise httpx.ConnectError("unreachable", request=request)

        tracker = _tracker(tmp_path, handler, max_attempts=3)
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)
        assert tracker.status(job.id).status == "error"

    @pytest.mark.asyncio
    async def test_job_deleted_while_polling(self, tmp_path, caplog):
        status_calls = []
        holder = {}

        def handler(request):
            if request.url.path == "/run/predict":
                return httpx.Response(200, json={"job_id": "r-1"})
            status_calls.append(request)
            holder["tracker"].store.delete(holder["job"])
            return httpx.Response(200, json={"status": "processing"})

        tracker = _tracker(tmp_path, handler)
        job = await _created_job(tracker, tmp_path)
        holder.update(tracker=tracker, job=job.id)

        await tracker.run_job(job.id)

        assert len(status_calls) == 1
        assert tracker.store.get(job.id) is None
        assert "Job not found" in caplog.text
        assert "NoneType" not in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(200, json={"detail": "ok"}),
        httpx.Response(200, text="not json"),
    ])
    async def test_unexpected_response(self, tmp_path, response):
        tracker = _tracker(tmp_path, lambda request: response)
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        failed = tracker.status(job.id)
        assert failed.status == "error"
        assert failed.message == "Unexpected response from remote backend"

    @pytest.mark.asyncio
    async def test_http_error_on_submit(self, tmp_path):
        tracker = _tracker(tmp_path, lambda request: httpx.Response(500, text="boom"))
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        failed = tracker.status(job.id)
        assert failed.status == "error"
        assert "500" in failed.message

    @pytest.mark.asyncio
    async def test_missing_remote_configuration(self, tmp_path):
        tracker = _tracker(tmp_path, handler=None)
        job = await _created_job(tracker, tmp_path)

        await tracker.run_job(job.id)

        failed = tracker.status(job.id)
        assert failed.status == "error"
        assert "not configured" in failed.message


class TestJobInvariants:
    def _job(self, tracker, **fields):
        return tracker.store.put(Job(**fields))

    def test_progress_never_decreases(self, tmp_path):
        tracker = _tracker(tmp_path)
        job = self._job(tracker)
        tracker._advance(job.id, status="processing", progress=25)
        updated = tracker._advance(job.id, progress=10, message="late update")
        assert updated.progress == 25
        assert updated.message == "late update"

    @pytest.mark.parametrize("status", ["completed", "error"])
    def test_final_states_are_immutable(self, tmp_path, status):
        tracker = _tracker(tmp_path)
        job = self._job(tracker, status=status)
        with pytest.raises(JobStateError):
            tracker._advance(job.id, status="processing", progress=50)

    def test_paid_can_be_set_after_completion(self, tmp_path):
        tracker = _tracker(tmp_path)
        job = self._job(tracker, status="completed", progress=100)
        assert tracker.mark_paid(job.id).paid is True
        assert tracker.status(job.id).status == "completed"

    def test_unknown_job(self, tmp_path):
        tracker = _tracker(tmp_path)
        with pytest.raises(JobNotFound):
            tracker.status("missing")
        with pytest.raises(JobNotFound):
            tracker.mark_paid("missing")

    def test_output_file_requires_completion(self, tmp_path):
        tracker = _tracker(tmp_path)
        job = self._job(tracker, status="processing", progress=40)
        with pytest.raises(JobNotReady):
            tracker.output_file(job.id)


class TestPurgeExpired:
    def test_removes_old_jobs_and_directories(self, tmp_path):
        tracker = _tracker(tmp_path)
        now = datetime.now(timezone.utc)
        old = tracker.store.put(Job(created_at=now - timedelta(days=8)))
        fresh = tracker.store.put(Job(created_at=now - timedelta(days=1)))
        for job in (old, fresh):
            tracker.job_dir(job.id).mkdir(parents=True)
            (tracker.job_dir(job.id) / OUTPUT_FILENAME).write_bytes(PDF)

        assert tracker.purge_expired(now) == 1

        assert tracker.store.get(old.id) is None
        assert not tracker.job_dir(old.id).exists()
        assert tracker.store.get(fresh.id) is not None
        assert tracker.job_dir(fresh.id).exists()
