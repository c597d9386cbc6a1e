# ruff: noqa: UP045
"""
The 'extract' and 'summarize' commands for the extract-peptides CLI.

'extract' is step 1 for a single sample, addressed by its manifest index.
Tasks for different samples are independent and may run concurrently.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from extract_peptides.manifest import MANIFEST_NAME, load_manifest
from extract_peptides.pipeline import refresh_extraction_summary, run_extraction_task
from extract_peptides.targets import load_targets

from extract_peptides_cli.app import app
from extract_peptides_cli.utils import (
    ARRAY_TASK_ENV,
    PANEL_INPUT,
    PANEL_LOGGING,
    PANEL_OUTPUT,
    ToolkitChoice,
    configure_logging,
    info,
    make_toolkit,
    pipeline_errors,
    resolve_index,
    success,
)


@app.command("extract")
def extract_sample_reads(
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
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Step 1 output directory (per-sample outputs and completion records).",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ],
    index: Annotated[
        Optional[int],
        typer.Option(
            "--index",
            "-n",
            help=f"1-based sample index into the manifest. Defaults to ${ARRAY_TASK_ENV}.",
            min=1,
            rich_help_panel=PANEL_INPUT,
        ),
    ] = None,
    manifest: Annotated[
        Optional[Path],
        typer.Option(
            "--manifest",
            help="Sample manifest written by 'extract-peptides manifest'.",
            show_default=f"<output-dir>/{MANIFEST_NAME}",
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ] = None,
    toolkit: Annotated[
        ToolkitChoice,
        typer.Option(
            "--toolkit",
            help="Backend used to pull reads out of the FASTQ file.",
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
    [bold green]Extract[/bold green] target-assigned reads for one sample (step 1).

    Reads assigned to a target ID in the sample's DIAMOND alignment table are
    pulled out of its FASTQ file and written as FASTA. A completion record is
    published whatever the outcome; a sample with no target reads is a success.

    [dim]Example:[/dim]

        extract-peptides extract -t targets.txt -o out/ --index 3
    """
    configure_logging(verbose)
    task_index = resolve_index(index)
    manifest_path = manifest or output_dir / MANIFEST_NAME

    with pipeline_errors("step 1 setup"):
        samples = load_manifest(manifest_path)
        target_set = load_targets(targets)

    try:
        with pipeline_errors(f"step 1 task {task_index}"):
            result = run_extraction_task(
                samples,
                task_index,
                target_set,
                output_dir,
                make_toolkit(toolkit),
            )
    finally:
        refresh_extraction_summary(output_dir)

    success(
        f"{result.sample_id}: {result.status.value} "
        f"({result.reads_assigned} reads assigned, "
        f"{result.sequences_extracted} sequences extracted)",
    )


@app.command("summarize")
def summarize_extraction(
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Step 1 output directory.",
            exists=True,
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ],
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
    [bold cyan]Rebuild[/bold cyan] the step 1 summary table from completion records.
    """
    configure_logging(verbose)
    path = refresh_extraction_summary(output_dir)
    info(f"Summary table written to {path}")
