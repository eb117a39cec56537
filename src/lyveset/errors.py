# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .model import FailedJob


@dataclass
class SubmissionError(Exception):
    """The backend refused or failed to accept a job."""
    label: str
    command: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"submission failed: {self.message}", f"job={self.label}", f"command={self.command}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class ExecutionError(Exception):
    """A command ran and exited non-zero. Stored on the job, never raised by the dispatcher."""
    job_id: int
    label: str
    exit_code: Optional[int]

    def __str__(self) -> str:
        return f"[{self.label}] job {self.job_id} failed (exit={self.exit_code})"


@dataclass
class JobTimeoutError(ExecutionError):
    seconds: float = 0.0

    def __str__(self) -> str:
        return f"[{self.label}] job {self.job_id} exceeded its {self.seconds:g}s wall-clock limit"


@dataclass
class JobLostError(ExecutionError):
    reason: str = "vanished from the queue without an exit code"

    def __str__(self) -> str:
        return f"[{self.label}] job {self.job_id} lost: {self.reason}"


@dataclass
class AggregationError(Exception):
    """Raised at a barrier when one or more jobs of the batch failed."""
    failed: List[FailedJob]
    total: int = 0

    def __str__(self) -> str:
        lines = [f"{len(self.failed)} of {self.total} job(s) failed"]
        for f in self.failed:
            lines.append(f"  #{f.job_id} {f.label} (exit={f.exit_code}, cause={f.cause}) log={f.log_path}")
            lines.append(f"    {f.command}")
        return "\n".join(lines)


class InvalidTransition(ValueError):
    pass


@dataclass
class PipelineError(Exception):
    stage: str
    message: str

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"
