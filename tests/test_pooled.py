import os

import pytest

from lyveset.errors import PipelineError
from lyveset.pooled import RAXML_OUTPUTS, output_paths, process_pooled_vcf
from lyveset.scheduler import Scheduler

from conftest import write_tool


def test_chain_runs_in_order(recorder, tmp_path):
    prefix = str(tmp_path / "out")
    outputs = process_pooled_vcf(recorder, "pooled.vcf.gz", prefix=prefix, numcpus=4, tempdir=str(tmp_path))

    labels = [label for label, _ in recorder.ran]
    assert labels[:6] == [
        "pooledToMatrix.sh",
        "filterMatrix.pl",
        "matrixToAlignment.pl",
        "matrixToAlignment.pl",
        "pairwiseDistances.pl",
        "set_indexCase.pl",
    ]
    assert labels[6] == "launch_raxml.sh"
    assert labels[7:7 + len(RAXML_OUTPUTS)] == ["mv"] * len(RAXML_OUTPUTS)
    assert labels[-1] == "cladeDistancesFromTree.pl"
    assert recorder.submitted == []
    assert outputs == output_paths(prefix)
    assert "--numcpus 4" in recorder.ran[4][1]


def test_failed_step_names_the_tool(recorder, tmp_path):
    recorder.set("workingdir", str(tmp_path))
    recorder.sync_codes = {"set_indexCase.pl": 2}
    with pytest.raises(PipelineError, match="set_indexCase.pl"):
        process_pooled_vcf(recorder, "pooled.vcf.gz", prefix=str(tmp_path / "out"))
    assert recorder.ran[-1][0] == "set_indexCase.pl"


def test_raxml_scratch_lives_under_workingdir_on_grid_engine(fake_sge, sge_config, workdir, tmp_path, monkeypatch):
    bindir = tmp_path / "bin"
    bindir.mkdir()
    cwd_log = tmp_path / "raxml.cwd"
    write_tool(bindir, "pooledToMatrix.sh", "#!/bin/sh\ntouch \"$2\"\n")
    for tool in ("filterMatrix.pl", "matrixToAlignment.pl", "pairwiseDistances.pl", "pairwiseTo2d.pl",
                 "set_indexCase.pl", "cladeDistancesFromTree.pl"):
        write_tool(bindir, tool, "#!/bin/sh\nexit 0\n")
    write_tool(
        bindir,
        "launch_raxml.sh",
        f"#!/bin/sh\npwd > {cwd_log}\nfor f in {' '.join(RAXML_OUTPUTS)}; do touch \"$f.suffix\"; done\n",
    )
    monkeypatch.setenv("PATH", f"{bindir}{os.pathsep}{os.environ['PATH']}")
    vcf = tmp_path / "pooled.vcf.gz"
    vcf.write_text("")

    with Scheduler(sge_config) as sched:
        outputs = process_pooled_vcf(sched, str(vcf), prefix=str(tmp_path / "out"))

    scratch = cwd_log.read_text().strip()
    assert os.path.dirname(os.path.realpath(scratch)) == os.path.realpath(workdir)
    assert os.path.basename(scratch).startswith("lyveset-raxml.")
    assert not os.path.exists(scratch)
    assert os.path.exists(outputs["tree"])
    assert all(j.ok for j in sched.table.jobs())
