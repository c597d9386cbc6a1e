# ruff: noqa: PLR0913, FBT002, UP045
"""
The 'validate' command for the extract-peptides CLI.

Step 2: combine the step 1 outputs, translate, validate with DIAMOND, filter
and write the final proteomics FASTA.

Note: PLR0913 (too many arguments) is disabled because CLI commands legitimately
need many parameters. FBT002 (boolean default in function) is disabled because
Typer uses boolean defaults for flag options.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from extract_peptides.config import build_settings
from extract_peptides.manifest import load_manifest
from extract_peptides.pipeline import PipelineController, ValidationSummary
from extract_peptides.schema import RunMode
from extract_peptides.targets import load_targets
from extract_peptides.toolkit import DiamondEngine
from rich.table import Table

from extract_peptides_cli.app import app
from extract_peptides_cli.utils import (
    PANEL_INPUT,
    PANEL_LOGGING,
    PANEL_OUTPUT,
    PANEL_THRESHOLDS,
    ToolkitChoice,
    configure_logging,
    console,
    make_toolkit,
    pipeline_errors,
    success,
    warning,
)


def print_summary(summary: ValidationSummary) -> None:
    """Render the step 2 counters as a table."""
    table = Table(title=f"Step 2 summary ({summary.mode.value})", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("TARGET_IDS_PROCESSED", str(summary.target_count))
    for key, value in summary.counters().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("validate")
def validate_translations(
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
    input_dir: Annotated[
        Path,
        typer.Option(
            "--input-dir",
            "-i",
            help="Step 1 output directory.",
            exists=True,
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ],
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Step 2 output directory.",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
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
    manifest: Annotated[
        Optional[Path],
        typer.Option(
            "--manifest",
            help="Sample manifest; when given, every listed sample must have reported.",
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ] = None,
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
        typer.Option(
            "--max-targets",
            "-m",
            help="Maximum hits reported per query.",
            show_default="5",
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    evalue: Annotated[
        Optional[float],
        typer.Option(
            "--evalue",
            "-e",
            help="E-value threshold for DIAMOND.",
            show_default="1e-3",
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    pident: Annotated[
        Optional[float],
        typer.Option(
            "--pident",
            "-p",
            help="Percent identity cutoff (0-100).",
            show_default="90",
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    min_length: Annotated[
        Optional[int],
        typer.Option(
            "--min-length",
            "-l",
            help="Minimum alignment length in amino acids.",
            show_default="7",
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    sensitive: Annotated[
        Optional[bool],
        typer.Option(
            "--sensitive/--fast",
            help="DIAMOND sensitivity mode.",
            show_default="sensitive",
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    threads: Annotated[
        Optional[int],
        typer.Option(
            "--threads",
            help="Threads for DIAMOND.",
            show_default="8",
            rich_help_panel=PANEL_THRESHOLDS,
        ),
    ] = None,
    rerun: Annotated[
        bool,
        typer.Option(
            "--rerun",
            "-r",
            help="Reuse the existing DIAMOND output and only redo filtering onward.",
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = False,
    wait: Annotated[
        Optional[float],
        typer.Option(
            "--wait",
            help="Wait up to this many minutes for step 1 records listed in --manifest.",
            min=0,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = None,
    toolkit: Annotated[
        ToolkitChoice,
        typer.Option(
            "--toolkit",
            help="Backend for deduplication, translation and subsetting.",
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
    [bold yellow]Validate[/bold yellow] translations and write the final FASTA (step 2).

    Combines every successful step 1 output, deduplicates, translates in six
    frames, searches the translations with DIAMOND blastp and keeps hits that
    match a target ID with enough identity and length. With [bold]--rerun[/bold]
    the existing DIAMOND output is reused if present.

    [dim]Example:[/dim]

        extract-peptides validate -t targets.txt -d uniref50.dmnd -i out/ -o out/
    """
    configure_logging(verbose)

    with pipeline_errors("step 2"):
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
        expected = (
            [sample.sample_id for sample in load_manifest(manifest)] if manifest else None
        )

        controller = PipelineController(
            targets=target_set,
            settings=settings,
            step1_dir=input_dir,
            output_dir=output_dir,
            toolkit=make_toolkit(toolkit, threads=settings.threads),
            engine=DiamondEngine(database) if database else None,
            expected_samples=expected,
        )
        if wait is not None:
            controller.wait_for_extraction(poll_interval=30.0, timeout=wait * 60)

        summary = controller.run(RunMode.RERUN if rerun else RunMode.FULL)

    if rerun and summary.mode is RunMode.FULL:
        warning("No reusable DIAMOND output was found; the full pipeline was run instead")
    print_summary(summary)
    success(
        f"{summary.final_sequences} sequences written to "
        f"{controller.artifacts.final_output}",
    )
