import os

from lyveset.config import Config


def test_defaults_and_overrides(tmp_path):
    cfg = Config()
    assert cfg.get("numcpus") == 1
    assert cfg.get("queue") is None
    assert cfg.get("workingdir") == os.getcwd()

    cfg.set("workingdir", str(tmp_path))
    assert cfg.get("logdir") == str(tmp_path)

    cfg.set("numcpus", 8)
    assert cfg.get("numcpus") == 8


def test_stage_default_used_when_unset():
    cfg = Config()
    assert cfg.get("jobname", "fallback") == "fallback"
    cfg.set("jobname", "map1")
    assert cfg.get("jobname", "fallback") == "map1"


def test_false_values_are_kept():
    cfg = Config({"keep": False})
    assert cfg.get("keep") is False
    assert cfg.snapshot()["keep"] is False


def test_ceiling_is_nodes_times_cpus():
    assert Config({"numnodes": 3, "numcpus": 4}).ceiling == 12
    assert Config({"numnodes": 0, "numcpus": 0}).ceiling == 1


def test_from_env_coerces_types():
    cfg = Config.from_env({
        "LYVESET_NUMCPUS": "4",
        "LYVESET_KEEP": "yes",
        "LYVESET_POLL_INTERVAL": "0.5",
        "LYVESET_TIMEOUT": "30",
        "LYVESET_QUEUE": "long.q",
        "HOME": "/root",
    })
    assert cfg.get("numcpus") == 4
    assert cfg.get("keep") is True
    assert cfg.get("poll_interval") == 0.5
    assert cfg.timeout == 30.0
    assert cfg.get("queue") == "long.q"
    assert "home" not in cfg.snapshot()


def test_snapshot_lists_known_keys(tmp_path):
    snap = Config({"workingdir": str(tmp_path), "custom": 1}).snapshot()
    assert snap["workingdir"] == str(tmp_path)
    assert snap["custom"] == 1
    assert snap["backend"] == "auto"
