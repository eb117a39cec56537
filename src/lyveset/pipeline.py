# pipeline.py
from __future__ import annotations

import glob
import os
import random
from dataclasses import dataclass
from pathlib import Path
from shlex import quote
from typing import List, Optional

from .errors import PipelineError
from .scheduler import Scheduler
from .ui.console import get_console

REFERENCE_SUFFIXES = (".fasta", ".fna", ".fa")

# directories the run needs, in the order they are checked
DIR_PARAMS = ("vcfdir", "bamdir", "msadir", "readsdir", "tmpdir")

# scheduler settings copied from the run settings before the first stage
SCHEDULER_PARAMS = ("workingdir", "numnodes", "numcpus", "keep", "qsubxopts")


@dataclass
class PipelineSettings:
    ref: str
    readsdir: str = "reads"
    bamdir: str = "bam"
    vcfdir: str = "vcf"
    msadir: str = "msa"
    tmpdir: str = "tmp"
    logdir: Optional[str] = None
    numcpus: int = 8
    numnodes: int = 6
    workingdir: Optional[str] = None
    allowed_flanking: int = 0
    keep: bool = False
    min_alt_frac: float = 0.75
    min_coverage: int = 10
    qsubxopts: str = ""
    trees: bool = True
    clean: bool = True
    msa: bool = True
    # helper scripts (launch_smalt.pl, launch_freebayes.sh, ...); empty means "on PATH"
    scriptsdir: str = ""
    seed: Optional[int] = None

    def script(self, name: str) -> str:
        return os.path.join(self.scriptsdir, name) if self.scriptsdir else name


def reference_base(ref: str) -> str:
    name = os.path.basename(ref)
    for suffix in REFERENCE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _run(sched: Scheduler, stage: str, command: str, label: str, cpus: Optional[int] = None) -> None:
    code = sched.please_execute_and_wait(command, label=label, cpus=cpus)
    if code != 0:
        raise PipelineError(stage, f"{label} exited {code}: {command}")


# ----------------------------------------------------------------------
# Stages
# ----------------------------------------------------------------------

def index_reference(sched: Scheduler, settings: PipelineSettings) -> str:
    ref = settings.ref
    if os.path.exists(f"{ref}.sma") and os.path.exists(f"{ref}.smi"):
        return ref
    _run(sched, "index_reference", f"smalt index -k 5 -s 3 {quote(ref)} {quote(ref)} 2>&1", "smaltIndex")
    return ref


def map_reads(sched: Scheduler, settings: PipelineSettings) -> List[int]:
    console = get_console()
    sched.set("numcpus", settings.numcpus)
    ref = settings.ref
    refbase = reference_base(ref)
    clean = "--clean" if settings.clean else "--noclean"

    fastqs = sorted(glob.glob(os.path.join(settings.readsdir, "*.fastq")) + glob.glob(os.path.join(settings.readsdir, "*.fastq.gz")))
    jobs = []
    for fastq in fastqs:
        b = os.path.basename(fastq)
        bam = os.path.join(settings.bamdir, f"{b}-{refbase}.sorted.bam")
        if os.path.exists(bam):
            console.log(f"Found {bam}. Skipping.")
            continue
        console.log(f"Mapping to create {bam}")
        command = (
            f"{settings.script('launch_smalt.pl')} -ref {quote(ref)} -f {quote(fastq)} -b {quote(bam)}"
            f" -tempdir {quote(settings.tmpdir)} --numcpus {settings.numcpus} {clean}"
        )
        jobs.append(sched.please_execute(command, label=f"map{b}", cpus=settings.numcpus))

    console.log("All mapping jobs have been submitted. Waiting on them to finish.")
    sched.wrap_it_up(check=True)
    return jobs


def variant_calls(sched: Scheduler, settings: PipelineSettings) -> List[int]:
    console = get_console()
    sched.set("numcpus", 1)
    jobs = []
    for bam in sorted(glob.glob(os.path.join(settings.bamdir, "*.sorted.bam"))):
        b = os.path.basename(bam)[: -len(".sorted.bam")]
        vcf = os.path.join(settings.vcfdir, f"{b}.vcf")
        if os.path.exists(vcf):
            console.log(f"Found {vcf}. Skipping")
            continue
        command = (
            f"{settings.script('launch_freebayes.sh')} {quote(settings.ref)} {quote(bam)} {quote(vcf)}"
            f" {settings.min_alt_frac} {settings.min_coverage}"
        )
        jobs.append(sched.please_execute(command, label=f"varcall{b}"))

    console.log("All variant-calling jobs have been submitted. Waiting on them to finish")
    sched.wrap_it_up(check=True)
    return jobs


def variants_to_msa(sched: Scheduler, settings: PipelineSettings) -> bool:
    """Returns False when the phylip alignment was already there."""
    console = get_console()
    msadir, vcfdir, bamdir = settings.msadir, settings.vcfdir, settings.bamdir
    phylip = os.path.join(msadir, "out.aln.fas.phy")
    if os.path.exists(phylip):
        console.log(f"Found {phylip} already present. Not re-converting.")
        return False

    # every "bad" site reported by any sample
    bad = os.path.join(vcfdir, "allsites.txt")
    _run(sched, "variants_to_msa", f"sort {quote(vcfdir)}/*.badsites.txt | uniq > {quote(bad)}", "badSites")

    ref, n = quote(settings.ref), settings.numcpus
    sched.set("numcpus", n)
    sched.please_execute(
        f"vcfToAlignment.pl {quote(bamdir)}/*.sorted.bam {quote(vcfdir)}/*.vcf"
        f" -o {quote(os.path.join(msadir, 'out.aln.fas'))} -r {ref} -b {quote(bad)} -a {settings.allowed_flanking}",
        label="variantsToMSA",
        cpus=n,
    )
    lowmem = os.path.join(msadir, "out_lowmem.aln.fas")
    sched.please_execute(
        f"vcfToAlignment_lowmem.pl {quote(vcfdir)}/unfiltered/*.vcf {quote(bamdir)}/*.sorted.bam -n {n} -ref {ref}"
        f" -p {quote(lowmem + '.pos.txt')} -t {quote(lowmem + '.pos.tsv')} > {quote(lowmem)}",
        label="variantsToMSA_lowmem",
        cpus=n,
    )
    sched.wrap_it_up(check=True)

    # fasta -> phylip, dropping uninformative sites
    _run(
        sched,
        "variants_to_msa",
        f"convertAlignment.pl -i {quote(os.path.join(msadir, 'out.aln.fas'))} -o {quote(phylip)} -f phylip -r",
        "msaToPhylip",
    )
    return True


def msa_to_phylogeny(sched: Scheduler, settings: PipelineSettings) -> List[int]:
    msadir = settings.msadir
    n = settings.numcpus
    sched.set("numcpus", n)
    rng = random.Random(settings.seed)

    # a RAxML run that never produced bipartitions is stale; clear it so RAxML will start over
    info = os.path.join(msadir, "RAxML_info.out")
    if os.path.exists(info) and not os.path.exists(os.path.join(msadir, "RAxML_bipartitions.out")):
        os.remove(info)

    phylip = os.path.join(msadir, "out.aln.fas.phy")
    jobs = []
    if not os.path.exists(info):
        seed_p, seed_x = rng.randint(0, 999999999), rng.randint(0, 999999999)
        jobs.append(sched.please_execute(
            f"(cd {quote(msadir)}; raxmlHPC-PTHREADS -f a -s {quote(phylip)} -n out -T {n}"
            f" -m GTRGAMMA -N 100 -p {seed_p} -x {seed_x})",
            label="SET_raxml",
            cpus=n,
        ))

    jobs.append(sched.please_execute(f"launch_phyml.sh {quote(phylip)}", label="SET_phyml"))
    sched.wrap_it_up(check=True)
    return jobs


# ----------------------------------------------------------------------
# Whole run
# ----------------------------------------------------------------------

def check_directories(settings: PipelineSettings) -> None:
    for param in DIR_PARAMS:
        path = getattr(settings, param)
        if not os.path.isdir(path):
            raise PipelineError("check_directories", f"Could not find {param} under {path}/")
        setattr(settings, param, str(Path(path).resolve()))
    if not os.path.isfile(settings.ref):
        raise PipelineError("check_directories", f"Reference not found: {settings.ref}")
    # commands run in workingdir, not here
    settings.ref = str(Path(settings.ref).resolve())


def configure_scheduler(sched: Scheduler, settings: PipelineSettings) -> None:
    for key in SCHEDULER_PARAMS:
        value = getattr(settings, key)
        if value is not None:
            sched.set(key, value)
    if settings.logdir:
        sched.set("logdir", settings.logdir)


def run_pipeline(sched: Scheduler, settings: PipelineSettings) -> None:
    console = get_console()
    console.log("Checking to make sure all directories are in place")
    check_directories(settings)
    configure_scheduler(sched, settings)

    index_reference(sched, settings)
    console.log("Mapping reads")
    map_reads(sched, settings)
    console.log("Calling variants")
    variant_calls(sched, settings)

    if settings.msa:
        console.log("Creating a core hqSNP MSA")
        variants_to_msa(sched, settings)
        if settings.trees:
            console.log("MSA => phylogeny")
            msa_to_phylogeny(sched, settings)

    console.log("Done!")
