from __future__ import annotations

import os
from pathlib import Path

import pytest

from lyveset.config import Config
from lyveset.model import BatchResult
from lyveset.scheduler import Scheduler
from lyveset.ui.console import Console, set_console


FAKE_QSUB = """#!/bin/sh
echo "$@" >> "$FAKE_SGE_STATE/qsub.log"
if [ -n "$FAKE_QSUB_FAIL" ]; then
  echo "Unable to run job: denied" >&2
  exit 1
fi
out=/dev/null
err=/dev/null
while [ $# -gt 1 ]; do
  case "$1" in
    -o) out=$2; shift ;;
    -e) err=$2; shift ;;
  esac
  shift
done
n=$(cat "$FAKE_SGE_STATE/counter" 2>/dev/null || echo 100)
n=$((n + 1))
echo $n > "$FAKE_SGE_STATE/counter"
if [ -z "$FAKE_QSUB_NORUN" ]; then
  sh "$1" > "$out" 2> "$err"
fi
echo $n
"""

FAKE_QSTAT = """#!/bin/sh
if [ -f "$FAKE_SGE_STATE/qstat.out" ]; then
  cat "$FAKE_SGE_STATE/qstat.out"
fi
"""

FAKE_QDEL = """#!/bin/sh
echo "$@" >> "$FAKE_SGE_STATE/qdel.log"
"""


def write_tool(bindir: Path, name: str, body: str) -> Path:
    path = bindir / name
    path.write_text(body)
    path.chmod(0o755)
    return path


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture
def local_config(workdir: Path) -> Config:
    return Config({"backend": "local", "workingdir": str(workdir), "numnodes": 1, "numcpus": 2})


@pytest.fixture
def local_sched(local_config: Config):
    with Scheduler(local_config) as sched:
        yield sched


@pytest.fixture
def fake_sge(tmp_path: Path, monkeypatch) -> Path:
    """qsub/qstat/qdel stand-ins on PATH; returns the directory they log to."""
    bindir = tmp_path / "sgebin"
    state = tmp_path / "sgestate"
    bindir.mkdir()
    state.mkdir()
    write_tool(bindir, "qsub", FAKE_QSUB)
    write_tool(bindir, "qstat", FAKE_QSTAT)
    write_tool(bindir, "qdel", FAKE_QDEL)
    monkeypatch.setenv("PATH", f"{bindir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_SGE_STATE", str(state))
    monkeypatch.delenv("FAKE_QSUB_FAIL", raising=False)
    monkeypatch.delenv("FAKE_QSUB_NORUN", raising=False)
    return state


@pytest.fixture
def sge_config(workdir: Path) -> Config:
    return Config({
        "backend": "sge",
        "workingdir": str(workdir),
        "poll_interval": 0.01,
        "poll_backoff": 1.5,
        "poll_max_interval": 0.05,
        "lost_polls": 2,
    })


class RecordingScheduler:
    """Scheduler stand-in that records what a pipeline stage asks for."""

    def __init__(self, sync_codes=None):
        self.config = Config()
        self.submitted = []     # (label, command, cpus)
        self.ran = []           # (label, command)
        self.barriers = 0
        self.sync_codes = sync_codes or {}

    def set(self, key, value):
        self.config.set(key, value)

    def get(self, key, default=None):
        return self.config.get(key, default)

    def please_execute(self, command, label=None, cpus=None):
        self.submitted.append((label, command, cpus))
        return len(self.submitted)

    def please_execute_and_wait(self, command, label=None, cpus=None):
        self.ran.append((label, command))
        return self.sync_codes.get(label, 0)

    def wrap_it_up(self, check=False):
        self.barriers += 1
        return BatchResult(ok=True)


@pytest.fixture
def recorder() -> RecordingScheduler:
    return RecordingScheduler()
