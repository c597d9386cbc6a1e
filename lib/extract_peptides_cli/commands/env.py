"""
The 'env' command for the extract-peptides CLI.

Checks that the external tools the pipeline shells out to are available.
"""

import shutil
import subprocess

from rich.table import Table

from extract_peptides_cli.app import app
from extract_peptides_cli.utils import console, error, success

# Tool name -> arguments that print its version
REQUIRED_TOOLS = {
    "seqkit": ["version"],
    "diamond": ["version"],
}


def tool_version(executable: str, args: list[str]) -> str:
    result = subprocess.run(  # noqa: S603
        [executable, *args],
        capture_output=True,
        text=True,
        check=False,
    )
    output = (result.stdout or result.stderr).strip().splitlines()
    return output[0] if output else "unknown"


@app.command("env")
def check_environment() -> None:
    """
    [bold cyan]Check[/bold cyan] that seqkit and DIAMOND are on the PATH.

    The Biopython toolkit ([bold]--toolkit biopython[/bold]) can stand in for
    seqkit; DIAMOND is always needed for a full step 2 run.
    """
    table = Table(title="External tools", show_header=True)
    table.add_column("Tool", style="cyan")
    table.add_column("Path")
    table.add_column("Version")

    missing = []
    for tool, version_args in REQUIRED_TOOLS.items():
        path = shutil.which(tool)
        if path is None:
            missing.append(tool)
            table.add_row(tool, "[red]not found[/red]", "-")
        else:
            table.add_row(tool, path, tool_version(path, version_args))

    console.print(table)
    if missing:
        error(f"Missing tool(s): {', '.join(missing)}")
    success("All external tools found")
