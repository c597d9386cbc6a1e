"""
Typer application instance for the extract-peptides CLI.

This module defines the main Typer app and any shared configuration.
Commands are registered via the commands subpackage.
"""

import typer

# The main Typer application instance
app = typer.Typer(
    name="extract-peptides",
    help="extract-peptides: Pull target protein sequences out of per-sample HUMAnN alignments.",
    rich_markup_mode="rich",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
