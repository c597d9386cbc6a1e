"""
Utility functions for the extract-peptides CLI.

Provides console output helpers, logging setup, toolkit selection and the
translation of pipeline errors into exit codes.
"""

import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

import typer
from loguru import logger
from rich.console import Console

from extract_peptides.errors import InputMissingError, PipelineError
from extract_peptides.toolkit import BiopythonToolkit, SeqKitToolkit, SequenceToolkit

# Shared console instances
console = Console()
err_console = Console(stderr=True)

# Environment variable holding the scheduler's 1-based array task index
ARRAY_TASK_ENV = "SLURM_ARRAY_TASK_ID"

PANEL_INPUT = "Input Data"
PANEL_THRESHOLDS = "Search & Filtering"
PANEL_OUTPUT = "Output & Execution"
PANEL_LOGGING = "Logging"


class ToolkitChoice(str, Enum):
    """Backends for FASTA/FASTQ manipulation."""

    seqkit = "seqkit"
    biopython = "biopython"


# =============================================================================
# Console Output Helpers
# =============================================================================


def error(message: str, exit_code: int = 1) -> None:
    """Print an error message and optionally exit."""
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    if exit_code:
        sys.exit(exit_code)


def success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[cyan]Info:[/cyan] {message}")


def warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {message}")


# =============================================================================
# Logging & Error Reporting
# =============================================================================


def configure_logging(verbosity: int) -> None:
    """Configure loguru logging based on verbosity level."""
    logger.remove()

    level = {
        0: "WARNING",
        1: "SUCCESS",
        2: "INFO",
        3: "DEBUG",
    }.get(min(verbosity, 3), "INFO")

    logger.add(
        sys.stderr,
        colorize=True,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )


@contextmanager
def pipeline_errors(unit: str) -> Iterator[None]:
    """
    Report pipeline failures with their cause and the affected unit, then exit 1.

    Args:
        unit: Human-readable name of the unit of work, e.g. "sample S01" or "step 2"
    """
    try:
        yield
    except InputMissingError as e:
        err_console.print(f"[bold red]Error:[/bold red] {unit}: {e}")
        raise typer.Exit(1) from e
    except PipelineError as e:
        err_console.print(
            f"[bold red]Error:[/bold red] {unit} failed ({type(e).__name__}): {e}",
        )
        raise typer.Exit(1) from e


# =============================================================================
# Shared Option Handling
# =============================================================================


def make_toolkit(choice: ToolkitChoice, threads: int | None = None) -> SequenceToolkit:
    if choice is ToolkitChoice.biopython:
        return BiopythonToolkit()
    return SeqKitToolkit(threads=threads)


def resolve_index(index: int | None) -> int:
    """
    Use the explicit index, else the scheduler's array task ID.

    Exits with an error if neither is available or the value is not an integer.
    """
    if index is not None:
        return index

    raw = os.environ.get(ARRAY_TASK_ENV, "").strip()
    if not raw.isdigit():
        error(f"No --index given and {ARRAY_TASK_ENV} is not a task number: {raw!r}")
    return int(raw)
