# selector.py
from __future__ import annotations

import shutil

from .config import Config
from .executors.base import Executor
from .executors.gridengine import QSTAT, QSUB, GridEngineExecutor
from .executors.local import LocalPoolExecutor
from .jobtable import JobTable
from .ui.console import get_console

GRID_ENGINE_NAMES = ("sge", "gridengine", "grid")


def probe_grid_engine() -> bool:
    """
    Look for qsub and qstat in the PATH.

    Any error while probing counts as "no grid engine".
    """
    try:
        return shutil.which(QSUB) is not None and shutil.which(QSTAT) is not None
    except OSError as e:
        get_console().print_debug(f"grid engine probe failed: {e}")
        return False


def select_executor(config: Config, table: JobTable) -> Executor:
    backend = str(config.get("backend") or "auto").lower()

    if backend in GRID_ENGINE_NAMES:
        executor: Executor = GridEngineExecutor(table)
    elif backend == "local":
        executor = LocalPoolExecutor(table)
    elif backend == "auto":
        if probe_grid_engine():
            executor = GridEngineExecutor(table)
        else:
            executor = LocalPoolExecutor(table)
    else:
        raise ValueError(f"Unknown backend {backend!r}; expected auto, local or sge")

    get_console().print_debug(f"backend: {executor.name} (requested {backend})")
    return executor
