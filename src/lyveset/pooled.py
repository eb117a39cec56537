# pooled.py
# Pooled-VCF post-processing: SNP matrix -> alignments -> pairwise
# distances -> index case -> RAxML tree -> clade distances.
from __future__ import annotations

import os
import tempfile
from contextlib import nullcontext
from shlex import quote
from typing import Dict, Optional

from .errors import PipelineError
from .scheduler import Scheduler
from .ui.console import get_console

RAXML_OUTPUTS = (
    "RAxML_bestTree",
    "RAxML_bipartitionsBranchLabels",
    "RAxML_bipartitions",
    "RAxML_bootstrap",
    "RAxML_info",
)


def output_paths(prefix: str) -> Dict[str, str]:
    return {
        "snp_matrix": f"{prefix}.snpmatrix.tsv",
        "filtered_matrix": f"{prefix}.filteredMatrix.tsv",
        "alignment": f"{prefix}.aln.fasta",
        "informative": f"{prefix}.informative.fasta",
        "pairwise": f"{prefix}.pairwise.tsv",
        "pairwise_matrix": f"{prefix}.pairwiseMatrix.tsv",
        "index_case": f"{prefix}.eigen.tsv",
        "tree": f"{prefix}.RAxML_bipartitions",
    }


def _step(sched: Scheduler, tool: str, command: str, numcpus: int = 1) -> None:
    code = sched.please_execute_and_wait(command, label=tool, cpus=numcpus)
    if code != 0:
        raise PipelineError("process_pooled_vcf", f"ERROR with {tool} (exit={code})")


def process_pooled_vcf(
    sched: Scheduler,
    vcf: str,
    prefix: str = "./out",
    numcpus: int = 1,
    tempdir: Optional[str] = None,
) -> Dict[str, str]:
    """
    Run the pooled-VCF chain, one synchronous job per tool.

    Every step depends on the previous one's output, so nothing here is
    batched. Returns the paths of the files produced.

    Raises:
        PipelineError: naming the first tool that exited non-zero
    """
    console = get_console()
    # steps run in workingdir, which need not be this directory
    vcf, prefix = os.path.abspath(vcf), os.path.abspath(prefix)
    out = output_paths(prefix)
    q = {k: quote(v) for k, v in out.items()}

    # RAxML steps run wherever the scheduler puts them, so scratch lives under the shared workingdir
    if tempdir is None:
        scratch = tempfile.TemporaryDirectory(prefix="lyveset-raxml.", dir=os.path.abspath(sched.get("workingdir")))
    else:
        scratch = nullcontext(os.path.abspath(tempdir))

    with scratch as tempdir:
        console.log(f"Creating a SNP matrix from {vcf}")
        _step(sched, "pooledToMatrix.sh", f"pooledToMatrix.sh -o {q['snp_matrix']} {quote(vcf)}")
        _step(sched, "filterMatrix.pl", f"filterMatrix.pl --noinvariant-loose < {q['snp_matrix']} > {q['filtered_matrix']}")
        _step(sched, "matrixToAlignment.pl", f"matrixToAlignment.pl < {q['snp_matrix']} > {q['alignment']}")
        _step(sched, "matrixToAlignment.pl", f"matrixToAlignment.pl < {q['filtered_matrix']} > {q['informative']}")

        _step(
            sched,
            "pairwiseDistances.pl",
            f"pairwiseDistances.pl --numcpus {numcpus} < {q['informative']} | sort -k3,3n"
            f" | tee {q['pairwise']} | pairwiseTo2d.pl > {q['pairwise_matrix']}",
            numcpus=numcpus,
        )
        _step(sched, "set_indexCase.pl", f"set_indexCase.pl {q['pairwise']} | sort -k2,2n > {q['index_case']}")

        # RAxML writes into its cwd, so it runs inside the temp dir and the results are moved out
        informative = os.path.abspath(out["informative"])
        _step(
            sched,
            "launch_raxml.sh",
            f"cp {quote(informative)} {quote(tempdir)}/; cd {quote(tempdir)};"
            f" launch_raxml.sh -n {numcpus} {quote(informative)} suffix",
            numcpus=numcpus,
        )
        for name in RAXML_OUTPUTS:
            src = os.path.join(tempdir, f"{name}.suffix")
            _step(sched, "mv", f"mv -v {quote(src)} {quote(f'{prefix}.{name}')}")

        _step(
            sched,
            "cladeDistancesFromTree.pl",
            f"cladeDistancesFromTree.pl -t {q['tree']} -p {q['pairwise']} --outprefix {quote(prefix)}",
        )

    return out
