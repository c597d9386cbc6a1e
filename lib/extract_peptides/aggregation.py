"""
Combine per-sample extraction outputs and remove duplicate sequences.
"""

import shutil
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from extract_peptides.completion import CompletionRecord
from extract_peptides.errors import NoDataError
from extract_peptides.extraction import EXTRACTED_FASTA, sample_output_dir
from extract_peptides.schema import CompletionStatus
from extract_peptides.toolkit import SequenceToolkit, count_fasta_records


class AggregationResult(BaseModel):
    """Counts and artifacts produced by the aggregation stage."""

    samples_used: list[str] = Field(default_factory=list)
    combined_count: int = Field(ge=0)
    dedup_count: int = Field(ge=0)
    combined_path: Path
    dedup_path: Path


def extraction_output(record: CompletionRecord, step1_dir: Path) -> Path:
    """Resolve the FASTA a successful extraction record points at."""
    if "OUTPUT_FILE" in record.extras:
        return step1_dir / record.extras["OUTPUT_FILE"]
    return sample_output_dir(step1_dir, record.sample_id or "") / EXTRACTED_FASTA


def usable_outputs(records: list[CompletionRecord], step1_dir: Path) -> list[tuple[str, Path]]:
    """
    Select extraction outputs that can feed aggregation.

    A sample qualifies when its record reports SUCCESS with a nonzero
    SEQUENCES_EXTRACTED count and its FASTA exists and is non-empty.
    """
    usable: list[tuple[str, Path]] = []
    for record in records:
        sample_id = record.sample_id or "?"
        fasta = extraction_output(record, step1_dir)
        if (
            record.status is CompletionStatus.SUCCESS
            and record.count("SEQUENCES_EXTRACTED") > 0
            and fasta.is_file()
            and fasta.stat().st_size > 0
        ):
            usable.append((sample_id, fasta))
        else:
            logger.warning(
                f"Extraction incomplete or no DNA sequences for sample: {sample_id} "
                f"(status {record.status.value})",
            )
    return usable


def combine_sequences(inputs: list[Path], output: Path) -> int:
    """Concatenate FASTA files byte-for-byte, returning the record count."""
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("wb") as out:
        for path in inputs:
            with path.open("rb") as handle:
                shutil.copyfileobj(handle, out)
    return count_fasta_records(output)


def aggregate(
    records: list[CompletionRecord],
    step1_dir: Path,
    combined_path: Path,
    dedup_path: Path,
    toolkit: SequenceToolkit,
) -> AggregationResult:
    """
    Combine every usable per-sample output, in record order, and deduplicate.

    Deduplication is by exact sequence content; the first occurrence keeps its
    header.

    Raises:
        NoDataError: If no sample contributed any sequence
    """
    usable = usable_outputs(records, step1_dir)
    if not usable:
        msg = "No samples have DNA sequences available for processing"
        raise NoDataError(msg)

    logger.info(f"Verified {len(usable)} samples have DNA sequences available")

    combined_count = combine_sequences([path for _, path in usable], combined_path)
    logger.info(f"Combined {combined_count} DNA sequences")
    if combined_count == 0:
        msg = "No DNA sequences found to process"
        raise NoDataError(msg)

    toolkit.rmdup_by_seq(combined_path, dedup_path)
    dedup_count = count_fasta_records(dedup_path)
    logger.info(f"After deduplication: {dedup_count} unique DNA sequences")

    return AggregationResult(
        samples_used=[sample_id for sample_id, _ in usable],
        combined_count=combined_count,
        dedup_count=dedup_count,
        combined_path=combined_path,
        dedup_path=dedup_path,
    )
