# jobtable.py
from __future__ import annotations

import itertools
import threading
import time
from typing import Dict, Iterable, List, Optional

from .errors import InvalidTransition
from .model import STATE_ORDER, Job, JobState


class JobTable:
    """
    Authoritative record of every job the scheduler has seen.

    Workers and the coordinator both write here, so every mutation goes
    through one lock. Ids come from a monotonic counter and are never reused.
    """

    def __init__(self) -> None:
        self._jobs: Dict[int, Job] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._running = 0
        self.peak_running = 0

    def add(
        self,
        command: str,
        label: str,
        *,
        cpus: int = 1,
        stdout_path: Optional[str] = None,
        stderr_path: Optional[str] = None,
    ) -> Job:
        with self._lock:
            job = Job(
                id=next(self._ids),
                command=command,
                label=label,
                cpus=cpus,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            )
            job.history.append((JobState.PENDING, job.submitted_at))
            self._jobs[job.id] = job
            return job

    def get(self, job_id: int) -> Job:
        with self._lock:
            return self._jobs[job_id]

    def jobs(self, ids: Optional[Iterable[int]] = None) -> List[Job]:
        with self._lock:
            if ids is None:
                return list(self._jobs.values())
            return [self._jobs[i] for i in ids]

    def __len__(self) -> int:
        return len(self._jobs)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _enter(self, job: Job, state: JobState) -> None:
        if job.state == JobState.RUNNING:
            self._running -= 1
        job.state = state
        job.history.append((state, time.time()))
        if state == JobState.RUNNING:
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)

    def advance(self, job_id: int, state: JobState) -> Job:
        """Move a job one step forward (PENDING->SUBMITTED or SUBMITTED->RUNNING)."""
        with self._lock:
            job = self._jobs[job_id]
            if state.terminal:
                raise InvalidTransition(f"use finish() to make job {job_id} {state.value}")
            if job.state == state:
                return job
            cur = STATE_ORDER.index(job.state) if job.state in STATE_ORDER else None
            if cur is None or STATE_ORDER.index(state) != cur + 1:
                raise InvalidTransition(f"job {job_id}: {job.state.value} -> {state.value}")
            self._enter(job, state)
            return job

    def finish(
        self,
        job_id: int,
        exit_code: Optional[int],
        *,
        cause: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> Job:
        """
        Record a terminal outcome.

        A job that finished between two status polls may still be SUBMITTED;
        it is walked through RUNNING first so its history has no gaps.
        """
        with self._lock:
            job = self._jobs[job_id]
            if job.state.terminal:
                raise InvalidTransition(f"job {job_id} is already {job.state.value}")
            if job.state == JobState.PENDING:
                raise InvalidTransition(f"job {job_id} was never submitted")
            if job.state == JobState.SUBMITTED:
                self._enter(job, JobState.RUNNING)
            job.exit_code = exit_code
            succeeded = exit_code == 0 and error is None
            if not succeeded:
                job.cause = cause or "exit"
                job.error = error
            self._enter(job, JobState.SUCCEEDED if succeeded else JobState.FAILED)
            return job

    def reject(self, job_id: int, error: Exception) -> Job:
        """The backend never accepted the job: PENDING -> FAILED."""
        with self._lock:
            job = self._jobs[job_id]
            if job.state != JobState.PENDING:
                raise InvalidTransition(f"job {job_id} is already {job.state.value}")
            job.cause = "rejected"
            job.error = error
            self._enter(job, JobState.FAILED)
            return job

    def running_count(self) -> int:
        with self._lock:
            return self._running
