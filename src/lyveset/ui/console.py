"""Console output formatting utilities for lyveset."""

from __future__ import annotations

import sys
from typing import Optional

from lyveset.model import BatchResult, FailedJob


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, prog: str = "lyveset"):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            prog: Name printed in front of log lines
        """
        self.debug = debug
        self.prog = prog

    def log(self, message: str) -> None:
        """Progress line tagged with the calling function, e.g. `lyveset: map_reads: ...`."""
        caller = sys._getframe(1).f_code.co_name
        print(f"{self.prog}: {caller}: {message}")

    def print_run_started(
        self,
        reference: str,
        backend: str,
        ceiling: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Reference: {reference}")
        print(f"Backend: {backend}")
        print(f"CPU slots: {ceiling}")
        print()

    def print_job_submitted(self, job_id: int, label: str) -> None:
        if self.debug:
            print(f"SUBMITTED: #{job_id} {label}")

    def print_failure(self, failed: FailedJob) -> None:
        """One failed job, with where to look for its output."""
        print(f"JOB FAILED: #{failed.job_id} {failed.label}")
        if failed.exit_code is not None:
            print(f"Exit code: {failed.exit_code}")
        if failed.cause and failed.cause != "exit":
            print(f"Cause: {failed.cause}")
        if failed.log_path:
            print(f"Log: {failed.log_path}")
        if self.debug:
            print(f"Command: {failed.command}")
            if failed.err_path:
                print(f"Stderr: {failed.err_path}")

    def print_batch_result(self, result: BatchResult) -> None:
        """Print a barrier summary."""
        total = len(result.job_ids)
        if result.ok:
            print(f"BATCH: {total} job(s) succeeded")
            return
        print(f"BATCH: {len(result.failed)} of {total} job(s) failed")
        for failed in result.failed:
            self.print_failure(failed)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
