# config.py
from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "LYVESET_"

# Built-in defaults. Stage code may still pass its own default to get().
DEFAULTS: Dict[str, Any] = {
    "queue": None,
    "numnodes": 1,
    "numcpus": 1,
    "workingdir": None,         # resolved to the cwd on first read
    "logdir": None,             # falls back to workingdir
    "qsubxopts": "",
    "keep": False,
    "jobname": None,
    "backend": "auto",
    "timeout": None,
    "poll_interval": 1.0,
    "poll_backoff": 1.5,
    "poll_max_interval": 30.0,
    "lost_polls": 3,
}

_TRUE = {"1", "true", "yes", "on"}


def _coerce(key: str, raw: str) -> Any:
    default = DEFAULTS.get(key)
    if isinstance(default, bool):
        return raw.strip().lower() in _TRUE
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float) or key == "timeout":
        return float(raw)
    return raw


class Config:
    """
    Shared scheduler settings.

    Written by the coordinating thread between barriers, read by everything
    that dispatches a job. Jobs copy what they need when they are submitted,
    so a later set() only affects jobs submitted after it.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = {}
        if values:
            self.update(values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Config:
        environ = os.environ if environ is None else environ
        cfg = cls()
        for name, raw in environ.items():
            if not name.startswith(ENV_PREFIX):
                continue
            key = name[len(ENV_PREFIX):].lower()
            cfg.set(key, _coerce(key, raw))
        return cfg

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def update(self, values: Mapping[str, Any]) -> None:
        for k, v in values.items():
            self.set(k, v)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._values.get(key)
        if value is not None:
            return value
        if default is not None:
            return default
        if key == "workingdir":
            return os.getcwd()
        if key == "logdir":
            return self.get("workingdir")
        return DEFAULTS.get(key)

    def snapshot(self) -> Dict[str, Any]:
        keys = set(DEFAULTS) | set(self._values)
        return {k: self.get(k) for k in sorted(keys)}

    # ---- typed accessors used by the executors ----

    @property
    def numcpus(self) -> int:
        return max(1, int(self.get("numcpus")))

    @property
    def numnodes(self) -> int:
        return max(1, int(self.get("numnodes")))

    @property
    def ceiling(self) -> int:
        """Total cpu slots the local pool may hand out at once."""
        return self.numnodes * self.numcpus

    @property
    def timeout(self) -> Optional[float]:
        value = self.get("timeout")
        return float(value) if value else None
