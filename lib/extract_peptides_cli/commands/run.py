# ruff: noqa: PLR0913, FBT002, UP045
"""
The 'run' command for the extract-peptides CLI.

Runs both steps on the local machine: the manifest is written, every sample is
extracted (optionally several at once), and step 2 starts once every sample
has published its completion record.

Note: We intentionally do NOT use `from __future__ import annotations` here
because Typer needs to introspect the type annotations at runtime, and PEP 563
deferred evaluation breaks this.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from extract_peptides.config import build_settings
from extract_peptides.manifest import MANIFEST_NAME, discover_samples, write_manifest
from extract_peptides.pipeline import PipelineController, decide_run_mode, run_all_extractions
from extract_peptides.schema import RunMode
from extract_peptides.targets import load_targets
from extract_peptides.toolkit import DiamondEngine

from extract_peptides_cli.app import app
from extract_peptides_cli.commands.validate import print_summary
from extract_peptides_cli.utils import (
    PANEL_INPUT,
    PANEL_LOGGING,
    PANEL_OUTPUT,
    PANEL_THRESHOLDS,
    ToolkitChoice,
    configure_logging,
    info,
    make_toolkit,
    pipeline_errors,
    success,
)


@app.command("run")
def run_pipeline(
    humann_out: Annotated[
        Path,
        typer.Option(
            "--humann-out",
            "-H",
            help="HUMAnN output directory containing *_humann_temp directories.",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ],
    fastq_dir: Annotated[
        Path,
        typer.Option(
            "--fastq-dir",
            "-f",
            help="Directory containing the raw <sample>.fastq.gz files.",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ],
    targets: Annotated[
        Path,
        typer.Option(
            "--targets",
            "-t",
            help="File with one target UniRef ID per line.",
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ],
    database: Annotated[
        Optional[Path],
        typer.Option(
            "--database",
            "-d",
            help="DIAMOND database (.dmnd). Not needed when rerunning the filters.",
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ] = None,
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Output directory shared by both steps.",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = Path("extract_peptides_outputs"),
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="YAML file of threshold settings; explicit options take precedence.",
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    max_targets: Annotated[
        Optional[int],
        typer.Option("--max-targets", "-m", show_default="5", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    evalue: Annotated[
        Optional[float],
        typer.Option("--evalue", "-e", show_default="1e-3", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    pident: Annotated[
        Optional[float],
        typer.Option("--pident", "-p", show_default="90", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    min_length: Annotated[
        Optional[int],
        typer.Option("--min-length", "-l", show_default="7", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    sensitive: Annotated[
        Optional[bool],
        typer.Option("--sensitive/--fast", show_default="sensitive", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    threads: Annotated[
        Optional[int],
        typer.Option("--threads", show_default="8", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    rerun: Annotated[
        bool,
        typer.Option(
            "--rerun",
            "-r",
            help="Skip step 1 and the search if a DIAMOND output already exists.",
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = False,
    workers: Annotated[
        int,
        typer.Option(
            "--workers",
            "-j",
            help="Samples extracted concurrently in step 1.",
            min=1,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = 1,
    toolkit: Annotated[
        ToolkitChoice,
        typer.Option(
            "--toolkit",
            help="Backend for FASTA/FASTQ manipulation.",
            case_sensitive=False,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = ToolkitChoice.seqkit,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v, -vv, -vvv)",
            rich_help_panel=PANEL_LOGGING,
        ),
    ] = 0,
) -> None:
    """
    [bold green]Run[/bold green] both pipeline steps locally.

    [dim]Example:[/dim]

        extract-peptides run -H humann/ -f reads/ -t targets.txt -d uniref50.dmnd -j 4
    """
    configure_logging(verbose)

    with pipeline_errors("run"):
        settings = build_settings(
            config,
            max_targets=max_targets,
            evalue=evalue,
            pident=pident,
            min_length=min_length,
            sensitive=sensitive,
            threads=threads,
        )
        target_set = load_targets(targets)
        seq_toolkit = make_toolkit(toolkit, threads=settings.threads)
        controller = PipelineController(
            targets=target_set,
            settings=settings,
            step1_dir=output_dir,
            output_dir=output_dir,
            toolkit=seq_toolkit,
            engine=DiamondEngine(database) if database else None,
        )

        requested = RunMode.RERUN if rerun else RunMode.FULL
        if decide_run_mode(requested, controller.artifacts.validation_output) is RunMode.FULL:
            samples = discover_samples(humann_out, fastq_dir)
            write_manifest(samples, output_dir / MANIFEST_NAME)
            info(f"Step 1: extracting reads for {len(samples)} samples")
            run_all_extractions(samples, target_set, output_dir, seq_toolkit, workers=workers)
            controller.expected_samples = [sample.sample_id for sample in samples]
            controller.wait_for_extraction(poll_interval=1.0, timeout=0)

        info("Step 2: translation and validation")
        summary = controller.run(requested)

    print_summary(summary)
    success(f"{summary.final_sequences} sequences written to {controller.artifacts.final_output}")
