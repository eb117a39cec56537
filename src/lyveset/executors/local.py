# executors/local.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from lyveset.config import Config
from lyveset.errors import JobTimeoutError, SubmissionError
from lyveset.model import Job, JobState
from lyveset.ui.console import get_console

from .base import Executor


class CpuSlots:
    """
    Counting semaphore where a job may take more than one slot.

    A request larger than the whole pool is clamped so it can still run
    (alone).
    """

    def __init__(self, total: int):
        self.total = max(1, total)
        self._free = self.total
        self._cond = threading.Condition()

    @contextmanager
    def hold(self, n: int) -> Iterator[int]:
        n = min(max(1, n), self.total)
        with self._cond:
            while self._free < n:
                self._cond.wait()
            self._free -= n
        try:
            yield n
        finally:
            with self._cond:
                self._free += n
                self._cond.notify_all()


def _spawn(job: Job, cwd: str, timeout: Optional[float]) -> Tuple[int, bool]:
    """Run the command through the shell. Returns (exit_code, timed_out)."""
    with open(job.stdout_path or os.devnull, "w") as out, open(job.stderr_path or os.devnull, "w") as err:
        proc = subprocess.Popen(
            job.command,
            shell=True,
            cwd=cwd,
            stdout=out,
            stderr=err,
            start_new_session=True,   # own process group, so a timeout can kill the whole pipeline
        )
        try:
            return proc.wait(timeout=timeout), False
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            return proc.wait(), True


class LocalPoolExecutor(Executor):
    """
    Runs jobs on this host with a fixed-size thread pool.

    The pool has one thread per cpu slot (numnodes * numcpus). Each worker
    takes the job's cpu weight from CpuSlots before the job counts as
    RUNNING and gives it back only after the outcome is recorded, so the
    number of running jobs never exceeds the ceiling.
    """

    name = "local"

    def __init__(self, table):
        super().__init__(table)
        self._pool: Optional[ThreadPoolExecutor] = None
        self._slots: Optional[CpuSlots] = None
        self._futures: Dict[int, Future] = {}

    @property
    def ceiling(self) -> Optional[int]:
        return self._slots.total if self._slots else None

    def _in_flight(self) -> bool:
        return any(not f.done() for f in self._futures.values())

    def _ensure_pool(self, config: Config) -> None:
        ceiling = config.ceiling
        if self._pool is not None and (ceiling == self._slots.total or self._in_flight()):
            # a new ceiling only takes effect once the current batch has drained
            return
        if self._pool is not None:
            self._pool.shutdown(wait=True)
        get_console().print_debug(f"local pool: {ceiling} cpu slot(s)")
        self._slots = CpuSlots(ceiling)
        self._pool = ThreadPoolExecutor(max_workers=ceiling, thread_name_prefix="lyveset-worker")

    def _check_cwd(self, job: Job, config: Config) -> str:
        cwd = config.get("workingdir")
        if not os.path.isdir(cwd):
            raise SubmissionError(
                label=job.label,
                command=job.command,
                message=f"working directory not found: {cwd}",
            )
        return cwd

    def _work(self, job_id: int, cwd: str, timeout: Optional[float]) -> None:
        job = self.table.get(job_id)
        with self._slots.hold(job.cpus):
            self.table.advance(job_id, JobState.RUNNING)
            try:
                code, timed_out = _spawn(job, cwd, timeout)
            except OSError as e:
                self.table.finish(job_id, None, cause="error", error=e)
                return
            if timed_out:
                self.table.finish(
                    job_id,
                    code,
                    cause="timeout",
                    error=JobTimeoutError(job_id=job.id, label=job.label, exit_code=code, seconds=timeout),
                )
            else:
                self._record_exit(job, code)

    def submit(self, job: Job, config: Config) -> None:
        cwd = self._check_cwd(job, config)
        self._ensure_pool(config)
        self.table.advance(job.id, JobState.SUBMITTED)
        self._futures[job.id] = self._pool.submit(self._work, job.id, cwd, config.timeout)

    def wait(self, job_ids: List[int], config: Config) -> None:
        futures = {i: self._futures.pop(i) for i in job_ids if i in self._futures}
        wait_futures(list(futures.values()))
        for job_id, fut in futures.items():
            exc = fut.exception()
            if exc is not None and not self.table.get(job_id).done:
                self.table.finish(job_id, None, cause="error", error=exc)

    def run_now(self, job: Job, config: Config) -> int:
        cwd = self._check_cwd(job, config)
        self._ensure_pool(config)
        self.table.advance(job.id, JobState.SUBMITTED)
        self._work(job.id, cwd, config.timeout)
        return job.exit_code if job.exit_code is not None else -1

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
