# cli.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

import click

from lyveset.config import Config
from lyveset.errors import AggregationError, PipelineError, SubmissionError
from lyveset.pipeline import PipelineSettings, run_pipeline
from lyveset.pooled import process_pooled_vcf
from lyveset.scheduler import Scheduler
from lyveset.ui.console import Console, get_console, set_console


def build_scheduler(backend: Optional[str] = None, **overrides) -> Scheduler:
    """Config precedence: built-in defaults < LYVESET_* environment < CLI flags."""
    config = Config.from_env()
    if backend:
        config.set("backend", backend)
    config.update({k: v for k, v in overrides.items() if v is not None})
    return Scheduler(config)


def read_commands(path: str) -> List[str]:
    """One shell command per line; blank lines and # comments are ignored."""
    stream = sys.stdin if path == "-" else open(path)
    try:
        lines = [line.strip() for line in stream]
    finally:
        if stream is not sys.stdin:
            stream.close()
    return [line for line in lines if line and not line.startswith("#")]


def _fail(exc: Exception) -> None:
    """Print a handled error the same way for every command, then exit 1."""
    console = get_console()
    if isinstance(exc, AggregationError):
        console.print_error(
            "Jobs failed",
            f"{len(exc.failed)} of {exc.total} job(s) in the batch failed",
            details=[f"#{f.job_id} {f.label} (exit={f.exit_code}, cause={f.cause}) log: {f.log_path}" for f in exc.failed],
            suggestion="Fix the failed jobs and re-run; finished outputs are skipped on resume.",
        )
    elif isinstance(exc, SubmissionError):
        console.print_error(
            "Submission failed",
            exc.message,
            details=[f"job: {exc.label}", f"command: {exc.command}"] + [f"{k}: {v}" for k, v in exc.details.items()],
            suggestion="Check the queue settings (--qsubxopts) or run with --backend local.",
        )
    elif isinstance(exc, PipelineError):
        console.print_error("Pipeline stage failed", str(exc))
    else:
        console.print_exception(exc)
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """lyveset: SNP pipeline runner on a grid engine or the local host."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--ref", required=True, type=click.Path(exists=True, dir_okay=False), help="Reference fasta")
@click.option("--readsdir", default="reads", show_default=True, help="Where fastq and fastq.gz files are located")
@click.option("--bamdir", default="bam", show_default=True, help="Where to put bams")
@click.option("--vcfdir", default="vcf", show_default=True, help="Where to put vcfs")
@click.option("--tmpdir", default="tmp", show_default=True, help="Temporary directory")
@click.option("--msadir", default="msa", show_default=True, help="Multiple sequence alignment and tree files (final output)")
@click.option("--logdir", default=None, help="Per-job log files (defaults to the working directory)")
@click.option("--numcpus", default=8, show_default=True, type=int, help="Number of cpus")
@click.option("--numnodes", default=6, show_default=True, type=int, help="Maximum number of nodes")
@click.option("--workingdir", "-w", default=None, help="Where qsub scripts are stored. Default: CWD")
@click.option("--allowed-flanking", "-a", default=0, type=int, help="Allowed flanking distance in bp")
@click.option("--keep/--no-keep", default=False, help="Keep submission scripts and exit-code files")
@click.option("--min-alt-frac", default=0.75, show_default=True, type=float)
@click.option("--min-coverage", default=10, show_default=True, type=int)
@click.option("--qsubxopts", "-q", default="", help="Extra options to pass to qsub, e.g. '-q long.q'. Not sanitized.")
@click.option("--trees/--notrees", default=True, help="Make phylogenies")
@click.option("--clean/--noclean", default=True, help="Clean reads before mapping")
@click.option("--msa/--nomsa", default=True, help="Make a multiple sequence alignment")
@click.option("--scriptsdir", default="", help="Directory holding launch_smalt.pl and friends (default: PATH)")
@click.option("--backend", type=click.Choice(["auto", "local", "sge"]), default=None, help="Job backend (default: auto-detect qsub)")
@click.option("--timeout", default=None, type=float, help="Per-job wall-clock limit in seconds")
def run(ref, readsdir, bamdir, vcfdir, tmpdir, msadir, logdir, numcpus, numnodes, workingdir,
        allowed_flanking, keep, min_alt_frac, min_coverage, qsubxopts, trees, clean, msa, scriptsdir,
        backend, timeout):
    """Map reads, call variants, and build the SNP alignment and trees."""
    console = get_console()
    settings = PipelineSettings(
        ref=ref,
        readsdir=readsdir,
        bamdir=bamdir,
        vcfdir=vcfdir,
        msadir=msadir,
        tmpdir=tmpdir,
        logdir=logdir,
        numcpus=numcpus,
        numnodes=numnodes,
        workingdir=workingdir,
        allowed_flanking=allowed_flanking,
        keep=keep,
        min_alt_frac=min_alt_frac,
        min_coverage=min_coverage,
        qsubxopts=qsubxopts,
        trees=trees,
        clean=clean,
        msa=msa,
        scriptsdir=scriptsdir,
    )

    try:
        with build_scheduler(backend, timeout=timeout) as sched:
            sched.set("numnodes", numnodes)
            sched.set("numcpus", numcpus)
            console.print_debug(f"settings: {sched.config.snapshot()}")
            console.print_run_started(reference=ref, backend=sched.backend, ceiling=sched.config.ceiling)
            run_pipeline(sched, settings)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(e)


@cli.command(name="pooled-vcf")
@click.argument("vcf", type=click.Path(exists=True, dir_okay=False))
@click.option("--prefix", default="./out", show_default=True, help="Output file prefix")
@click.option("--numcpus", default=1, show_default=True, type=int, help="Number of threads to use")
@click.option("--tempdir", default=None, help="Scratch directory for RAxML (default: a fresh directory under the working directory)")
@click.option("--backend", type=click.Choice(["auto", "local", "sge"]), default=None)
def pooled_vcf(vcf, prefix, numcpus, tempdir, backend):
    """Process a pooled VCF: matrix, alignments, distances and a tree."""
    console = get_console()
    try:
        with build_scheduler(backend, numcpus=numcpus) as sched:
            outputs = process_pooled_vcf(sched, vcf, prefix=prefix, numcpus=numcpus, tempdir=tempdir)
        for name, path in outputs.items():
            console.print_info(f"  {name}: {path}")
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(e)


@cli.command(name="exec")
@click.argument("commands", default="-", type=click.Path(exists=True, dir_okay=False, allow_dash=True))
@click.option("--numcpus", default=1, show_default=True, type=int, help="CPU slots per node")
@click.option("--numnodes", default=1, show_default=True, type=int, help="Nodes (local: multiplies the slots)")
@click.option("--workingdir", "-w", default=None, help="Where commands run and qsub scripts are stored")
@click.option("--logdir", default=None, help="Per-job log files (defaults to the working directory)")
@click.option("--queue", default=None, help="Grid engine queue")
@click.option("--qsubxopts", default=None, help="Extra options to pass to qsub")
@click.option("--backend", type=click.Choice(["auto", "local", "sge"]), default=None)
@click.option("--timeout", default=None, type=float, help="Per-job wall-clock limit in seconds")
def exec_(commands, numcpus, numnodes, workingdir, logdir, queue, qsubxopts, backend, timeout):
    """Run every line of COMMANDS (a file, or - for stdin) as one batch."""
    console = get_console()
    try:
        lines = read_commands(commands)
        if not lines:
            console.print_info("No commands to run.")
            return

        with build_scheduler(
            backend,
            numcpus=numcpus,
            numnodes=numnodes,
            workingdir=str(Path(workingdir).resolve()) if workingdir else None,
            logdir=logdir,
            queue=queue,
            qsubxopts=qsubxopts,
            timeout=timeout,
        ) as sched:
            for i, line in enumerate(lines, start=1):
                sched.please_execute(line, label=f"cmd{i}")
            console.print_info(f"{len(lines)} job(s) submitted to the {sched.backend} backend; waiting")
            result = sched.wrap_it_up()
        console.print_batch_result(result)
        if not result.ok:
            sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(e)


def main() -> None:
    cli()


if __name__ == "__main__":
    cli()
