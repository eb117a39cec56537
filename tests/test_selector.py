import shutil

import pytest

from lyveset.config import Config
from lyveset.executors.gridengine import GridEngineExecutor
from lyveset.executors.local import LocalPoolExecutor
from lyveset.jobtable import JobTable
from lyveset.selector import probe_grid_engine, select_executor


def test_auto_picks_grid_engine_when_qsub_present(fake_sge):
    assert probe_grid_engine()
    assert isinstance(select_executor(Config(), JobTable()), GridEngineExecutor)


def test_auto_falls_back_to_local(monkeypatch, tmp_path):
    monkeypatch.setenv("PATH", str(tmp_path))
    assert not probe_grid_engine()
    assert isinstance(select_executor(Config(), JobTable()), LocalPoolExecutor)


def test_probe_error_means_local(monkeypatch):
    def broken(name):
        raise OSError("stat failed")

    monkeypatch.setattr(shutil, "which", broken)
    assert not probe_grid_engine()
    assert isinstance(select_executor(Config(), JobTable()), LocalPoolExecutor)


def test_forced_backends(fake_sge):
    assert isinstance(select_executor(Config({"backend": "local"}), JobTable()), LocalPoolExecutor)
    assert isinstance(select_executor(Config({"backend": "SGE"}), JobTable()), GridEngineExecutor)


def test_unknown_backend():
    with pytest.raises(ValueError):
        select_executor(Config({"backend": "slurm"}), JobTable())
