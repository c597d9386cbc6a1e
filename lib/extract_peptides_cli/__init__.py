"""
extract-peptides CLI - a Typer-based command-line interface for the pipeline.

Step 1 runs once per sample (usually as a scheduler array task), step 2 runs
once after every sample has reported.

Usage:
    extract-peptides manifest --humann-out ./humann --fastq-dir ./reads -o ./out
    extract-peptides extract --targets ids.txt -o ./out --index 3
    extract-peptides validate --targets ids.txt --database uniref50.dmnd -i ./out -o ./out
    extract-peptides --help
"""

import sys

import typer
from rich.console import Console

from extract_peptides_cli.app import app

# Import commands to register them with the app
from extract_peptides_cli.commands import env, extract, manifest, run, slurm, validate  # noqa: F401

__all__ = ["app", "main"]

console = Console()


def main() -> None:
    """Main entry point for the extract-peptides CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except typer.Exit:
        # Normal exit from Typer - re-raise to preserve exit code
        raise
    except typer.Abort:
        sys.exit(1)
