from .config import Config
from .errors import AggregationError, ExecutionError, JobLostError, JobTimeoutError, PipelineError, SubmissionError
from .model import BatchResult, FailedJob, Job, JobState
from .scheduler import Scheduler

__all__ = [
    "Config",
    "Scheduler",
    "Job",
    "JobState",
    "BatchResult",
    "FailedJob",
    "SubmissionError",
    "ExecutionError",
    "JobTimeoutError",
    "JobLostError",
    "AggregationError",
    "PipelineError",
]
