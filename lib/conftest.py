"""Shared fixtures: a tiny HUMAnN output tree with raw FASTQ files."""

import gzip
from pathlib import Path

import pytest
from extract_peptides.schema import Sample
from extract_peptides.targets import TargetSet
from extract_peptides.toolkit import BiopythonToolkit

# Read ID -> sequence; R1/R4 share a sequence so deduplication has work to do
READS = {
    "R1": "ATGAAAGCTCTGGTTGCTGGTATCGTTGGT",
    "R2": "ATGCGTCTGAAAGAACTGGCTGAAGCTCTG",
    "R3": "ATGGGTAAAGTTATCGAAATGCTGCGTGAA",
    "R4": "ATGAAAGCTCTGGTTGCTGGTATCGTTGGT",
    "R5": "ATGACCACCCTGAAAGAAGTTCTGGCTCGT",
}


def write_fastq_gz(path: Path, reads: dict[str, str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with gzip.open(path, "wt", encoding="utf-8") as handle:
        for read_id, sequence in reads.items():
            handle.write(f"@{read_id}\n{sequence}\n+\n{'I' * len(sequence)}\n")
    return path


def write_alignments(path: Path, rows: list[tuple[str, str]]) -> Path:
    """Write a headerless DIAMOND-style table; extra columns mimic real output."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "".join(f"{read}\t{ref}\t95.0\t10\t0\t0\t1\t30\t1\t10\t1e-5\t40.0\n" for read, ref in rows),
    )
    return path


def make_sample(
    humann_root: Path,
    fastq_dir: Path,
    sample_id: str,
    rows: list[tuple[str, str]] | None,
    reads: dict[str, str] | None,
) -> Sample:
    """Create one sample's inputs; None skips writing that input."""
    temp_dir = humann_root / f"{sample_id}_humann_temp"
    temp_dir.mkdir(parents=True, exist_ok=True)
    sample = Sample.from_humann_temp(temp_dir, fastq_dir)
    if rows is not None:
        write_alignments(sample.alignment_table, rows)
    if reads is not None:
        write_fastq_gz(sample.raw_sequences, reads)
    return sample


@pytest.fixture
def targets() -> TargetSet:
    return TargetSet.from_ids(["X1", "X2"])


@pytest.fixture
def toolkit() -> BiopythonToolkit:
    return BiopythonToolkit()


@pytest.fixture
def humann_root(tmp_path: Path) -> Path:
    return tmp_path / "humann"


@pytest.fixture
def fastq_dir(tmp_path: Path) -> Path:
    path = tmp_path / "fastq"
    path.mkdir()
    return path


@pytest.fixture
def step1_dir(tmp_path: Path) -> Path:
    return tmp_path / "step1"
