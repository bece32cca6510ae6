"""Background report jobs against the remote Space backend."""
from .polling import PollPolicy, PollTimeout
from .schemas import Job, JobStatusResponse
from .space_client import SpaceClient, get_space_client, set_space_client
from .store import DuckDBJobStore, InMemoryJobStore, JobStore, StaleJobError, build_job_store
from .tracker import JobStateError, JobTracker, get_tracker, set_tracker

__all__ = [
    "PollPolicy",
    "PollTimeout",
    "Job",
    "JobStatusResponse",
    "SpaceClient",
    "get_space_client",
    "set_space_client",
    "DuckDBJobStore",
    "InMemoryJobStore",
    "JobStore",
    "StaleJobError",
    "build_job_store",
    "JobStateError",
    "JobTracker",
    "get_tracker",
    "set_tracker",
]
