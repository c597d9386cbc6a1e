"""
Command modules for the extract-peptides CLI.

Each submodule defines one or more Typer commands that are registered
with the main app in extract_peptides_cli/__init__.py.
"""

from extract_peptides_cli.commands import env, extract, manifest, run, slurm, validate

__all__ = ["env", "extract", "manifest", "run", "slurm", "validate"]
