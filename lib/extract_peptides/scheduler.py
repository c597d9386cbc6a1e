"""
SLURM batch scripts for the two pipeline steps.

The scheduler stays external: these helpers only render scripts. Step 1 is an
array job with one task per manifest row; step 2 is submitted with an
`afterany` dependency on the array so that it starts once every task has
ended, successful or not, and then checks the completion records itself.
"""

import shlex
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from extract_peptides.config import ValidationSettings


class JobResources(BaseModel):
    """Resource request for one batch job (or each array task)."""

    model_config = ConfigDict(frozen=True)

    cpus: int = Field(ge=1)
    memory: str
    time: str


# A step 1 task usually finishes in about three minutes
STEP1_RESOURCES = JobResources(cpus=4, memory="8G", time="0:30:00")
STEP2_RESOURCES = JobResources(cpus=10, memory="64G", time="1:00:00")


def _header(job_name: str, resources: JobResources, log: Path, array: str | None = None) -> list[str]:
    lines = [
        "#!/bin/bash",
        f"#SBATCH --job-name={job_name}",
    ]
    if array:
        lines.append(f"#SBATCH --array={array}")
    lines.extend(
        [
            f"#SBATCH --cpus-per-task={resources.cpus}",
            f"#SBATCH --mem={resources.memory}",
            f"#SBATCH --time={resources.time}",
            f"#SBATCH --output={log}",
            "",
            "set -euo pipefail",
            "",
        ],
    )
    return lines


def render_step1_script(
    sample_count: int,
    targets: Path,
    output_dir: Path,
    manifest: Path,
    executable: str = "extract-peptides",
    resources: JobResources = STEP1_RESOURCES,
) -> str:
    """Render the step 1 array job; each task reads `SLURM_ARRAY_TASK_ID`."""
    command = [
        executable,
        "extract",
        "--targets",
        str(targets),
        "--output-dir",
        str(output_dir),
        "--manifest",
        str(manifest),
        "-vv",
    ]
    lines = _header(
        "step1_extract_relevant_reads",
        resources,
        output_dir / "logs" / "step1_%A_%a.out",
        array=f"1-{sample_count}",
    )
    lines.append(shlex.join(command))
    return "\n".join(lines) + "\n"


def render_step2_script(
    targets: Path,
    database: Path,
    input_dir: Path,
    output_dir: Path,
    manifest: Path,
    settings: ValidationSettings,
    rerun: bool = False,
    executable: str = "extract-peptides",
    resources: JobResources = STEP2_RESOURCES,
) -> str:
    """Render the single step 2 job."""
    command = [
        executable,
        "validate",
        "--targets",
        str(targets),
        "--database",
        str(database),
        "--input-dir",
        str(input_dir),
        "--output-dir",
        str(output_dir),
        "--manifest",
        str(manifest),
        "--max-targets",
        str(settings.max_targets),
        "--evalue",
        f"{settings.evalue:g}",
        "--pident",
        f"{settings.pident:g}",
        "--min-length",
        str(settings.min_length),
        "--threads",
        str(settings.threads),
        "--sensitive" if settings.sensitive else "--fast",
        "-vv",
    ]
    if rerun:
        command.append("--rerun")
    lines = _header("step2_translate_and_blast", resources, output_dir / "logs" / "step2.out")
    lines.append(shlex.join(command))
    return "\n".join(lines) + "\n"


def submission_commands(step1_script: Path, step2_script: Path) -> str:
    """Shell snippet that submits step 1, then step 2 behind the array."""
    return (
        f"STEP1_JOB=$(sbatch --parsable {shlex.quote(str(step1_script))})\n"
        f"sbatch --dependency=afterany:$STEP1_JOB {shlex.quote(str(step2_script))}\n"
    )
