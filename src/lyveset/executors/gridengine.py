# executors/gridengine.py
from __future__ import annotations

import os
import re
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from lyveset.config import Config
from lyveset.errors import JobLostError, JobTimeoutError, SubmissionError
from lyveset.model import Job, JobState
from lyveset.ui.console import get_console

from .base import Executor

QSUB = "qsub"
QSTAT = "qstat"
QDEL = "qdel"

# qstat state column values that mean the job holds a slot on a node
RUNNING_STATES = {"r", "t", "Rr", "Rt"}

_JOB_ID = re.compile(r"(\d+)")


# ----------------------------------------------------------------------
# qsub / qstat / qdel wrappers
# ----------------------------------------------------------------------

def qsub_args(job: Job, config: Config, script: str) -> List[str]:
    args = [
        QSUB, "-terse", "-cwd", "-V", "-S", "/bin/sh",
        "-N", job_name(job.label),
        "-o", job.stdout_path or "/dev/null",
        "-e", job.stderr_path or "/dev/null",
    ]
    queue = config.get("queue")
    if queue:
        args += ["-q", str(queue)]
    if job.cpus > 1:
        args += ["-pe", "smp", str(job.cpus)]
    extra = config.get("qsubxopts")
    if extra:
        args += shlex.split(str(extra))
    args.append(script)
    return args


def job_name(label: str) -> str:
    """Grid engine rejects names with slashes/spaces or a leading digit."""
    name = re.sub(r"[^\w.-]", "_", label) or "job"
    if name[0].isdigit():
        name = "j" + name
    return name


def parse_qsub_output(output: str) -> Optional[str]:
    # -terse prints "123" (or "123.1-10:1" for arrays); without it:
    # Your job 123 ("name") has been submitted
    m = _JOB_ID.search(output)
    return m.group(1) if m else None


def qstat_states() -> Optional[Dict[str, str]]:
    """
    Native job id -> qstat state for the current user's jobs.

    Returns None when qstat cannot be run, so the caller can tell "no
    information" apart from "job not listed".
    """
    try:
        proc = subprocess.run([QSTAT], capture_output=True, text=True)
    except OSError as e:
        get_console().print_debug(f"qstat failed: {e}")
        return None
    if proc.returncode != 0:
        get_console().print_debug(f"qstat exited {proc.returncode}: {proc.stderr.strip()}")
        return None

    states: Dict[str, str] = {}
    for line in proc.stdout.splitlines():
        parts = line.split()
        # job-ID prior name user state submit/start-at queue slots ja-task-ID
        if len(parts) >= 5 and parts[0].isdigit():
            states[parts[0]] = parts[4]
    return states


def qdel(native_id: str) -> None:
    try:
        proc = subprocess.run([QDEL, native_id], capture_output=True, text=True)
    except OSError as e:
        get_console().print_debug(f"qdel {native_id} failed: {e}")
        return
    if proc.returncode != 0:
        get_console().print_debug(f"qdel {native_id} exited {proc.returncode}: {proc.stderr.strip()}")


def read_sentinel(path: str) -> Optional[int]:
    try:
        with open(path) as fh:
            text = fh.read().strip()
    except FileNotFoundError:
        return None
    return int(text) if text else None


# ----------------------------------------------------------------------
# Executor
# ----------------------------------------------------------------------

SCRIPT_TEMPLATE = """#!/bin/sh
# lyveset job {job_id}: {label}
cd {cwd}
(
{command}
)
echo $? > {sentinel}.tmp && mv {sentinel}.tmp {sentinel}
"""


@dataclass
class _Submission:
    script: str
    sentinel: str
    keep: bool
    timeout: Optional[float]
    missing: int = 0


class GridEngineExecutor(Executor):
    """
    Submits each job as its own qsub script.

    The script writes the command's exit code to a sentinel file next to
    it; that file, not qstat, is what decides the outcome. qstat is only
    used to notice RUNNING, error states, and jobs that vanish without ever
    writing a sentinel.

    At most numnodes jobs are out on the queue at once. Further jobs wait
    here, still PENDING, and go to qsub as earlier ones finish.
    """

    name = "sge"

    def __init__(self, table):
        super().__init__(table)
        self._subs: Dict[int, _Submission] = {}
        self._held: List[Tuple[Job, Config]] = []
        self._nodes = 1

    def _paths(self, job: Job, cwd: str) -> tuple[str, str]:
        base = os.path.join(cwd, f"lyveset.{job.id}.{job_name(job.label)}")
        return base + ".sh", base + ".exitcode"

    def _outstanding(self) -> int:
        return sum(1 for i in self._subs if not self.table.get(i).done)

    def _node_free(self) -> bool:
        return not self._held and self._outstanding() < self._nodes

    def _snapshot(self, job: Job, config: Config) -> Config:
        # settings are fixed at please_execute time, even for a job that waits for a node
        frozen = Config(config.snapshot())
        cwd = os.path.abspath(frozen.get("workingdir"))
        if not os.path.isdir(cwd):
            raise SubmissionError(job.label, job.command, f"working directory not found: {cwd}")
        frozen.set("workingdir", cwd)
        self._nodes = frozen.numnodes
        return frozen

    def submit(self, job: Job, config: Config) -> None:
        config = self._snapshot(job, config)
        if self._node_free():
            self._qsub(job, config)
            return
        get_console().print_debug(f"#{job.id} {job.label} waits for a node ({self._nodes} in use)")
        self._held.append((job, config))

    def _qsub(self, job: Job, config: Config) -> None:
        cwd = config.get("workingdir")
        script, sentinel = self._paths(job, cwd)
        try:
            with open(script, "w") as fh:
                fh.write(SCRIPT_TEMPLATE.format(
                    job_id=job.id,
                    label=job.label,
                    cwd=shlex.quote(cwd),
                    command=job.command,
                    sentinel=shlex.quote(sentinel),
                ))
        except OSError as e:
            raise SubmissionError(job.label, job.command, f"could not write {script}", {"error": str(e)}) from e

        args = qsub_args(job, config, script)
        get_console().print_debug(" ".join(shlex.quote(a) for a in args))
        try:
            proc = subprocess.run(args, cwd=cwd, capture_output=True, text=True)
        except OSError as e:
            self._discard(script, sentinel, config.get("keep"))
            raise SubmissionError(job.label, job.command, f"could not run {QSUB}", {"error": str(e)}) from e

        native_id = parse_qsub_output(proc.stdout) if proc.returncode == 0 else None
        if native_id is None:
            self._discard(script, sentinel, config.get("keep"))
            raise SubmissionError(
                job.label,
                job.command,
                f"{QSUB} exited {proc.returncode}",
                {"stdout": proc.stdout.strip(), "stderr": proc.stderr.strip()},
            )

        job.native_id = native_id
        self._subs[job.id] = _Submission(
            script=script,
            sentinel=sentinel,
            keep=bool(config.get("keep")),
            timeout=config.timeout,
        )
        self.table.advance(job.id, JobState.SUBMITTED)

    def _release(self) -> None:
        while self._held and self._outstanding() < self._nodes:
            job, config = self._held.pop(0)
            try:
                self._qsub(job, config)
            except SubmissionError as e:
                # already in a batch, so the barrier reports it
                self.table.reject(job.id, e)

    # ---- polling ----

    def _poll_once(self, config: Config) -> None:
        # every job out on the queue, not just the ones being waited for: they hold the nodes
        job_ids = [i for i in self._subs if not self.table.get(i).done]
        if not job_ids:
            return
        # qstat first: a job that has left the queue wrote its sentinel before leaving
        listing = qstat_states()
        lost_after = max(1, int(config.get("lost_polls")))

        for job_id in job_ids:
            job = self.table.get(job_id)
            sub = self._subs[job_id]

            code = read_sentinel(sub.sentinel)
            if code is not None:
                self._record_exit(job, code)
                continue

            if listing is None:
                continue
            state = listing.get(job.native_id)
            if state is None:
                sub.missing += 1
                if sub.missing >= lost_after:
                    self._lose(job, f"not in {QSTAT} output for {sub.missing} poll(s) and no exit code written")
                continue
            sub.missing = 0

            if "E" in state:
                qdel(job.native_id)
                self._lose(job, f"queue reports error state {state!r}")
            elif state in RUNNING_STATES:
                self.table.advance(job_id, JobState.RUNNING)
                self._check_timeout(job, sub)

    def _check_timeout(self, job: Job, sub: _Submission) -> None:
        if not sub.timeout:
            return
        started = next((t for s, t in job.history if s == JobState.RUNNING), None)
        if started is None or time.time() - started <= sub.timeout:
            return
        qdel(job.native_id)
        self.table.finish(
            job.id,
            None,
            cause="timeout",
            error=JobTimeoutError(job_id=job.id, label=job.label, exit_code=None, seconds=sub.timeout),
        )

    def _lose(self, job: Job, reason: str) -> None:
        self.table.finish(
            job.id,
            None,
            cause="lost",
            error=JobLostError(job_id=job.id, label=job.label, exit_code=None, reason=reason),
        )

    def _poll_until(self, finished: Callable[[], bool], config: Config) -> None:
        interval = float(config.get("poll_interval"))
        backoff = float(config.get("poll_backoff"))
        cap = float(config.get("poll_max_interval"))

        while True:
            self._poll_once(config)
            self._release()
            if finished():
                return
            time.sleep(interval)
            interval = min(interval * backoff, cap)

    def wait(self, job_ids: List[int], config: Config) -> None:
        self._poll_until(lambda: all(self.table.get(i).done for i in job_ids), config)

        for job_id in job_ids:
            sub = self._subs.pop(job_id, None)
            if sub is not None:
                self._discard(sub.script, sub.sentinel, sub.keep)

    def run_now(self, job: Job, config: Config) -> int:
        config = self._snapshot(job, config)
        if not self._node_free():
            self._poll_until(self._node_free, config)
        self._qsub(job, config)
        self.wait([job.id], config)
        return job.exit_code if job.exit_code is not None else -1

    @staticmethod
    def _discard(script: str, sentinel: str, keep) -> None:
        if keep:
            return
        for path in (script, sentinel):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
