import threading

import pytest

from lyveset.errors import InvalidTransition
from lyveset.jobtable import JobTable
from lyveset.model import JobState


def states(job):
    return [s for s, _ in job.history]


def test_ids_are_monotonic_and_unique():
    table = JobTable()
    ids = [table.add("true", f"j{i}").id for i in range(5)]
    assert ids == [1, 2, 3, 4, 5]


def test_ids_unique_across_threads():
    table = JobTable()
    out = []

    def add_many():
        for _ in range(200):
            out.append(table.add("true", "x").id)

    threads = [threading.Thread(target=add_many) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(out)) == 800


def test_full_walk_succeeds():
    table = JobTable()
    job = table.add("true", "ok")
    table.advance(job.id, JobState.SUBMITTED)
    table.advance(job.id, JobState.RUNNING)
    assert table.running_count() == 1
    table.finish(job.id, 0)
    assert job.state == JobState.SUCCEEDED
    assert states(job) == [JobState.PENDING, JobState.SUBMITTED, JobState.RUNNING, JobState.SUCCEEDED]
    assert table.running_count() == 0


def test_finish_from_submitted_passes_through_running():
    table = JobTable()
    job = table.add("false", "quick")
    table.advance(job.id, JobState.SUBMITTED)
    table.finish(job.id, 1)
    assert states(job) == [JobState.PENDING, JobState.SUBMITTED, JobState.RUNNING, JobState.FAILED]
    assert job.cause == "exit"
    assert job.exit_code == 1


def test_cannot_skip_or_revisit():
    table = JobTable()
    job = table.add("true", "x")
    with pytest.raises(InvalidTransition):
        table.advance(job.id, JobState.RUNNING)
    with pytest.raises(InvalidTransition):
        table.finish(job.id, 0)

    table.advance(job.id, JobState.SUBMITTED)
    table.finish(job.id, 0)
    with pytest.raises(InvalidTransition):
        table.finish(job.id, 1)
    with pytest.raises(InvalidTransition):
        table.advance(job.id, JobState.RUNNING)
    assert job.state == JobState.SUCCEEDED


def test_reject_only_from_pending():
    table = JobTable()
    job = table.add("true", "x")
    table.reject(job.id, RuntimeError("no"))
    assert job.state == JobState.FAILED
    assert job.cause == "rejected"

    other = table.add("true", "y")
    table.advance(other.id, JobState.SUBMITTED)
    with pytest.raises(InvalidTransition):
        table.reject(other.id, RuntimeError("late"))


def test_peak_running_tracks_maximum():
    table = JobTable()
    jobs = [table.add("true", str(i)) for i in range(3)]
    for j in jobs:
        table.advance(j.id, JobState.SUBMITTED)
        table.advance(j.id, JobState.RUNNING)
    for j in jobs:
        table.finish(j.id, 0)
    assert table.peak_running == 3
    assert table.running_count() == 0
