# model.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class JobState(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


# Order every job walks through; the last slot is either terminal state.
STATE_ORDER = [JobState.PENDING, JobState.SUBMITTED, JobState.RUNNING]


@dataclass
class Job:
    """
    One shell command handed to the scheduler.

    `cpus` is the cpu weight the job asks for. `native_id` is the id the
    grid engine gave it (None on the local backend).
    """
    id: int
    command: str
    label: str
    cpus: int = 1
    stdout_path: Optional[str] = None
    stderr_path: Optional[str] = None
    state: JobState = JobState.PENDING
    exit_code: Optional[int] = None
    submitted_at: float = field(default_factory=time.time)
    native_id: Optional[str] = None
    cause: Optional[str] = None          # "exit" | "timeout" | "lost" | "rejected" | "error"
    error: Optional[Exception] = None
    history: List[Tuple[JobState, float]] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.state.terminal

    @property
    def ok(self) -> bool:
        return self.state == JobState.SUCCEEDED


@dataclass(frozen=True)
class FailedJob:
    """What a barrier reports about a job that did not succeed."""
    job_id: int
    label: str
    command: str
    log_path: Optional[str]
    err_path: Optional[str]
    exit_code: Optional[int]
    cause: Optional[str]

    @classmethod
    def from_job(cls, job: Job) -> FailedJob:
        return cls(
            job_id=job.id,
            label=job.label,
            command=job.command,
            log_path=job.stdout_path,
            err_path=job.stderr_path,
            exit_code=job.exit_code,
            cause=job.cause,
        )


@dataclass
class BatchResult:
    ok: bool
    failed: List[FailedJob] = field(default_factory=list)
    job_ids: List[int] = field(default_factory=list)

    def raise_for_failures(self) -> None:
        if not self.ok:
            from .errors import AggregationError
            raise AggregationError(failed=list(self.failed), total=len(self.job_ids))
