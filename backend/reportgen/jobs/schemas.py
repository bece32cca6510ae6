"""Pydantic schemas for the report job lifecycle."""
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field


JobStatus = Literal["pending", "processing", "completed", "error"]

TERMINAL_STATUSES = ("completed", "error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(BaseModel):
    """One report job as stored by a JobStore.

    ``version`` is incremented by the store on every mutation and is used
    for compare-and-set updates.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    message: str = "Job created"
    output_path: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    paid: bool = False
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobStatusResponse(BaseModel):
    """Response body for GET /api/status/{job_id}."""
    status: JobStatus
    progress: int
    message: str


class JobCreatedResponse(BaseModel):
    jobId: str
