"""Job record storage.

Two interchangeable implementations of ``JobStore``:

- InMemoryJobStore: a process-local dict. Jobs are lost on restart and are
  not shared between worker processes.
- DuckDBJobStore: an embedded DuckDB file that survives restarts.

Every mutation goes through ``update(job_id, expected_version, **changes)``,
a compare-and-set on the record's ``version``. A concurrent writer that
already bumped the version makes the update fail with ``StaleJobError``;
callers re-read and retry.

Usage:
    store = DuckDBJobStore("jobs.duckdb")
    store.put(Job())
    job = store.update(job.id, job.version, progress=10, status="processing")
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

import duckdb

from .schemas import Job

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("status", "progress", "message", "output_path", "paid")


class StaleJobError(Exception):
    """Raised when a compare-and-set update lost against a concurrent writer."""
    def __init__(self, job_id: str, expected_version: int):
        self.job_id = job_id
        self.expected_version = expected_version
        super().__init__(f"Job {job_id} changed since version {expected_version}")


def _check_changes(changes: dict) -> None:
    unknown = set(changes) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update job fields: {sorted(unknown)}")


class JobStore(ABC):
    """Abstract job record storage."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        """Return the job, or None if unknown."""

    @abstractmethod
    def put(self, job: Job) -> Job:
        """Insert a new job record."""

    @abstractmethod
    def update(self, job_id: str, expected_version: int, **changes) -> Job:
        """Apply ``changes`` if the stored version equals ``expected_version``.

        Returns:
            The updated job (version incremented).

        Raises:
            KeyError: If the job does not exist.
            StaleJobError: If the stored version differs.
        """

    @abstractmethod
    def delete(self, job_id: str) -> bool:
        """Remove a job record. Returns True if it existed."""

    @abstractmethod
    def list_older_than(self, cutoff: datetime) -> List[Job]:
        """Return jobs created before ``cutoff``."""

    def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryJobStore(JobStore):
    """Process-local job storage backed by a dict."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def put(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
        return job

    def update(self, job_id: str, expected_version: int, **changes) -> Job:
        _check_changes(changes)
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise KeyError(job_id)
            if current.version != expected_version:
                raise StaleJobError(job_id, expected_version)
            updated = current.model_copy(update={**changes, "version": current.version + 1})
            self._jobs[job_id] = updated
            return updated

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def list_older_than(self, cutoff: datetime) -> List[Job]:
        return [job for job in list(self._jobs.values()) if job.created_at < cutoff]


class DuckDBJobStore(JobStore):
    """Job storage in an embedded DuckDB database.

    Database Schema:
        jobs table:
            - id: Job UUID (primary key)
            - status: pending | processing | completed | error
            - progress: 0..100
            - message: Latest human-readable progress message
            - output_path: Path of the finished report, if any
            - created_at: Creation time (UTC)
            - paid: Whether the report has been paid for
            - version: Incremented on every update

    Thread Safety:
        The DuckDB connection is NOT thread-safe; all access goes through
        a lock.
    """

    _COLUMNS = "id, status, progress, message, output_path, created_at, paid, version"

    def __init__(self, db_path: str = "jobs.duckdb") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id          VARCHAR PRIMARY KEY,
                status      VARCHAR NOT NULL,
                progress    INTEGER NOT NULL,
                message     VARCHAR NOT NULL,
                output_path VARCHAR,
                created_at  TIMESTAMP NOT NULL,
                paid        BOOLEAN NOT NULL DEFAULT FALSE,
                version     INTEGER NOT NULL DEFAULT 0
            )
        """)

    @staticmethod
    def _row_to_job(row) -> Job:
        created_at = row[5]
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Job(
            id=row[0],
            status=row[1],
            progress=row[2],
            message=row[3],
            output_path=row[4],
            created_at=created_at,
            paid=bool(row[6]),
            version=row[7],
        )

    @staticmethod
    def _naive_utc(value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {self._COLUMNS} FROM jobs WHERE id = ?", [job_id]
            ).fetchone()
        return self._row_to_job(row) if row else None

    def put(self, job: Job) -> Job:
        with self._lock:
            self._get_connection().execute(
                f"INSERT INTO jobs ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    job.id,
                    job.status,
                    job.progress,
                    job.message,
                    job.output_path,
                    self._naive_utc(job.created_at),
                    job.paid,
                    job.version,
                ],
            )
        return job

    def update(self, job_id: str, expected_version: int, **changes) -> Job:
        _check_changes(changes)
        assignments = ", ".join(f"{name} = ?" for name in changes)
        if assignments:
            assignments += ", "
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                f"""
                UPDATE jobs SET {assignments}version = version + 1
                WHERE id = ? AND version = ?
                RETURNING {self._COLUMNS}
                """,
                [*changes.values(), job_id, expected_version],
            ).fetchone()
            if row is None:
                exists = conn.execute("SELECT 1 FROM jobs WHERE id = ?", [job_id]).fetchone()
                if exists is None:
                    raise KeyError(job_id)
                raise StaleJobError(job_id, expected_version)
        return self._row_to_job(row)

    def delete(self, job_id: str) -> bool:
        with self._lock:
            row = self._get_connection().execute(
                "DELETE FROM jobs WHERE id = ? RETURNING id", [job_id]
            ).fetchone()
        return row is not None

    def list_older_than(self, cutoff: datetime) -> List[Job]:
        with self._lock:
            rows = self._get_connection().execute(
                f"SELECT {self._COLUMNS} FROM jobs WHERE created_at < ? ORDER BY created_at",
                [self._naive_utc(cutoff)],
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def build_job_store(kind: str, db_path: str) -> JobStore:
    """Create the configured job store (``duckdb`` or ``memory``)."""
    if kind == "memory":
        logger.warning("Using in-memory job store: jobs are lost on restart")
        return InMemoryJobStore()
    logger.info(f"Using DuckDB job store at {db_path}")
    return DuckDBJobStore(db_path)
