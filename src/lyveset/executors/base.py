"""
Executor interface shared by the local pool and the grid engine backend.

The scheduler talks to exactly one executor, chosen once when it is built.
Executors own the hand-off to whatever actually runs the command and report
every state change back through the shared JobTable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from lyveset.config import Config
from lyveset.errors import ExecutionError
from lyveset.jobtable import JobTable
from lyveset.model import Job


class Executor(ABC):
    name = "abstract"

    def __init__(self, table: JobTable):
        self.table = table

    @abstractmethod
    def submit(self, job: Job, config: Config) -> None:
        """
        Hand a PENDING job to the backend and return without waiting.

        Raises:
            SubmissionError: if the backend will not take the job
        """

    @abstractmethod
    def wait(self, job_ids: List[int], config: Config) -> None:
        """Block until every listed job is terminal."""

    @abstractmethod
    def run_now(self, job: Job, config: Config) -> int:
        """Run one job to completion outside the current batch; return its exit code."""

    def shutdown(self) -> None:
        pass

    def _record_exit(self, job: Job, exit_code: int) -> Job:
        if exit_code == 0:
            return self.table.finish(job.id, 0)
        return self.table.finish(
            job.id,
            exit_code,
            cause="exit",
            error=ExecutionError(job_id=job.id, label=job.label, exit_code=exit_code),
        )
