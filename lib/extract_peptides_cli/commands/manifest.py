# ruff: noqa: UP045
"""
The 'manifest' command for the extract-peptides CLI.

Enumerates samples once and persists the index-to-sample mapping that the
per-sample extraction tasks resolve their array index against.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from extract_peptides.manifest import MANIFEST_NAME, discover_samples, write_manifest

from extract_peptides_cli.app import app
from extract_peptides_cli.utils import (
    PANEL_INPUT,
    PANEL_LOGGING,
    PANEL_OUTPUT,
    configure_logging,
    pipeline_errors,
    success,
)


@app.command("manifest")
def write_sample_manifest(
    humann_out: Annotated[
        Path,
        typer.Option(
            "--humann-out",
            "-H",
            help="HUMAnN output directory containing *_humann_temp directories.",
            file_okay=False,
            dir_okay=True,
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
            dir_okay=True,
            resolve_path=True,
            rich_help_panel=PANEL_INPUT,
        ),
    ],
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Step 1 output directory; the manifest is written here.",
            file_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ],
    manifest: Annotated[
        Optional[Path],
        typer.Option(
            "--manifest",
            help="Manifest path.",
            show_default=f"<output-dir>/{MANIFEST_NAME}",
            dir_okay=False,
            resolve_path=True,
            rich_help_panel=PANEL_OUTPUT,
        ),
    ] = None,
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
    [bold cyan]Enumerate[/bold cyan] samples and write the sample manifest.

    The manifest fixes which sample each array index refers to, so it should be
    written once before step 1 tasks are submitted.
    """
    configure_logging(verbose)
    manifest_path = manifest or output_dir / MANIFEST_NAME

    with pipeline_errors("manifest"):
        samples = discover_samples(humann_out, fastq_dir)
        write_manifest(samples, manifest_path)

    success(f"Wrote {len(samples)} samples to {manifest_path}")
