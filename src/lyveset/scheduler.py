# scheduler.py
from __future__ import annotations

import os
import re
from typing import Any, List, Optional

from .config import Config
from .errors import SubmissionError
from .executors.base import Executor
from .jobtable import JobTable
from .model import BatchResult, FailedJob, Job
from .selector import select_executor
from .ui.console import get_console


def log_stem(label: str) -> str:
    return re.sub(r"[^\w.-]", "_", label) or "job"


class Scheduler:
    """
    Job dispatch for pipeline stages.

    Usage, per stage:

        sched.set("numcpus", 4)
        for cmd in commands:
            sched.please_execute(cmd, label="map1")
        sched.wrap_it_up(check=True)

    please_execute() never blocks. wrap_it_up() is the barrier: it returns
    once every job submitted since the previous barrier is terminal, then
    starts a new batch. The backend (grid engine or local pool) is chosen
    once, here, and is invisible to callers.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        executor: Optional[Executor] = None,
        table: Optional[JobTable] = None,
    ):
        self.config = config if config is not None else Config()
        self.table = table if table is not None else JobTable()
        self.executor = executor if executor is not None else select_executor(self.config, self.table)
        self._batch: List[int] = []

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any) -> None:
        self.config.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    @property
    def backend(self) -> str:
        return self.executor.name

    @property
    def batch(self) -> List[int]:
        """Ids of the jobs in the open batch."""
        return list(self._batch)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _new_job(self, command: str, label: Optional[str], cpus: Optional[int]) -> Job:
        if not command or not command.strip():
            raise ValueError("command must be a non-empty shell invocation")
        label = label or self.config.get("jobname") or command.split()[0].rsplit("/", 1)[-1]
        return self.table.add(command, label, cpus=max(1, int(cpus or 1)))

    def _assign_logs(self, job: Job) -> None:
        # the job is still PENDING and only visible to this thread
        logdir = os.path.abspath(self.config.get("logdir"))
        try:
            os.makedirs(logdir, exist_ok=True)
        except OSError as e:
            raise SubmissionError(job.label, job.command, f"could not create log directory {logdir}", {"error": str(e)}) from e
        stem = os.path.join(logdir, f"{log_stem(job.label)}.{job.id}")
        job.stdout_path = stem + ".out"
        job.stderr_path = stem + ".err"

    def _hand_off(self, job: Job, fn) -> Any:
        try:
            self._assign_logs(job)
            return fn(job, self.config)
        except SubmissionError as e:
            self.table.reject(job.id, e)
            raise

    def please_execute(self, command: str, label: Optional[str] = None, cpus: Optional[int] = None) -> int:
        """
        Submit a command to the current batch and return its job id at once.

        Raises:
            SubmissionError: if the backend refuses the job
        """
        job = self._new_job(command, label, cpus)
        self._hand_off(job, self.executor.submit)
        self._batch.append(job.id)
        get_console().print_job_submitted(job.id, job.label)
        return job.id

    def please_execute_and_wait(self, command: str, label: Optional[str] = None, cpus: Optional[int] = None) -> int:
        """Run one command to completion, outside the current batch, and return its exit code."""
        job = self._new_job(command, label, cpus)
        get_console().print_job_submitted(job.id, job.label)
        return self._hand_off(job, self.executor.run_now)

    # ------------------------------------------------------------------
    # Barrier
    # ------------------------------------------------------------------

    def wrap_it_up(self, check: bool = False) -> BatchResult:
        """
        Block until every job of the current batch is terminal, then close it.

        Args:
            check: raise AggregationError instead of returning a failed result

        Returns:
            BatchResult listing the failed jobs, if any
        """
        batch, self._batch = self._batch, []
        if batch:
            self.executor.wait(batch, self.config)

        jobs = self.table.jobs(batch)
        failed = [FailedJob.from_job(j) for j in jobs if not j.ok]
        result = BatchResult(ok=not failed, failed=failed, job_ids=batch)
        if check:
            result.raise_for_failures()
        return result

    def shutdown(self) -> None:
        self.executor.shutdown()

    def __enter__(self) -> Scheduler:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
