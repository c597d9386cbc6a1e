# ruff: noqa: PLR0913, FBT002, UP045
"""
The 'slurm-script' command for the extract-peptides CLI.

Writes the manifest plus the two batch scripts, and prints the commands that
submit them. Submission itself is left to the user.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from extract_peptides.config import build_settings
from extract_peptides.manifest import MANIFEST_NAME, discover_samples, write_manifest
from extract_peptides.scheduler import (
    render_step1_script,
    render_step2_script,
    submission_commands,
)

from extract_peptides_cli.app import app
from extract_peptides_cli.utils import (
    PANEL_INPUT,
    PANEL_LOGGING,
    PANEL_OUTPUT,
    PANEL_THRESHOLDS,
    configure_logging,
    console,
    pipeline_errors,
    success,
)


@app.command("slurm-script")
def write_slurm_scripts(
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
            exists=True,
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ],
    database: Annotated[
        Path,
        typer.Option(
            "--database",
            "-d",
            help="DIAMOND database (.dmnd).",
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
            help="Pipeline output directory shared by both steps.",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ],
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
        typer.Option("--max-targets", "-m", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    evalue: Annotated[
        Optional[float],
        typer.Option("--evalue", "-e", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    pident: Annotated[
        Optional[float],
        typer.Option("--pident", "-p", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    min_length: Annotated[
        Optional[int],
        typer.Option("--min-length", "-l", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    sensitive: Annotated[
        Optional[bool],
        typer.Option("--sensitive/--fast", rich_help_panel=PANEL_THRESHOLDS),
    ] = None,
    rerun: Annotated[
        bool,
        typer.Option("--rerun", "-r", help="Pass --rerun to step 2.", rich_help_panel=PANEL_OUTPUT),
    ] = False,
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
    [bold magenta]Render[/bold magenta] SLURM batch scripts for both steps.

    Step 1 is written as an array job with one task per sample; step 2 depends
    on the whole array and checks every sample's completion record before it
    starts aggregating.
    """
    configure_logging(verbose)
    manifest = output_dir / MANIFEST_NAME
    step1_script = output_dir / "step1_extract.sbatch"
    step2_script = output_dir / "step2_validate.sbatch"

    with pipeline_errors("slurm-script"):
        settings = build_settings(
            config,
            max_targets=max_targets,
            evalue=evalue,
            pident=pident,
            min_length=min_length,
            sensitive=sensitive,
        )
        samples = discover_samples(humann_out, fastq_dir)
        write_manifest(samples, manifest)

    (output_dir / "logs").mkdir(parents=True, exist_ok=True)
    step1_script.write_text(
        render_step1_script(len(samples), targets, output_dir, manifest),
        encoding="utf-8",
    )
    step2_script.write_text(
        render_step2_script(
            targets,
            database,
            output_dir,
            output_dir,
            manifest,
            settings,
            rerun=rerun,
        ),
        encoding="utf-8",
    )

    success(f"Wrote {step1_script.name} ({len(samples)} array tasks) and {step2_script.name}")
    console.print("\n[bold]Submit with:[/bold]")
    console.print(submission_commands(step1_script, step2_script), markup=False, highlight=False)
