"""
Per-sample extraction of target-assigned reads.

For one sample, scan its DIAMOND alignment table (as written by HUMAnN),
select reads assigned to a target UniRef ID, pull those reads out of the
sample's original FASTQ and store them as FASTA for translation downstream.

Each run walks a small state machine:

    PENDING -> NO_INPUT                       (alignment table absent)
    PENDING -> INVALID_INPUT                  (alignment table unparseable)
    PENDING -> SCANNED -> NO_TARGET_READS     (nothing assigned to a target)
    SCANNED -> READS_SELECTED -> INPUT_MISSING (raw FASTQ absent)
    READS_SELECTED -> TOOL_FAILURE            (toolkit failed)
    READS_SELECTED -> SEQUENCES_RETRIEVED -> COMPLETED

Every terminal state publishes exactly one completion record.
"""

import shutil
import time
from pathlib import Path

import polars as pl
from loguru import logger

from extract_peptides.completion import CompletionRecord, CompletionStore
from extract_peptides.errors import ConfigurationError, InputMissingError, PipelineError
from extract_peptides.schema import (
    EXTRACTION_TRANSITIONS,
    ExtractionResult,
    ExtractionState,
    Sample,
    Stage,
)
from extract_peptides.targets import ID_DELIMITER, TargetSet
from extract_peptides.toolkit import SequenceToolkit, count_fasta_records, write_id_list

SAMPLE_DIR_SUFFIX = "_dna_seqs"
EXTRACTED_FASTA = "target_dna_sequences.fa"
READ_IDS_FILE = "target_read_ids_clean.txt"
EXTRACTED_FASTQ = "target_dna_sequences.fq"

ALIGNMENT_SCHEMA = {"read_id": pl.String, "reference_id": pl.String}


def sample_output_dir(output_root: Path, sample_id: str) -> Path:
    return output_root / f"{sample_id}{SAMPLE_DIR_SUFFIX}"


def load_alignment_table(table: Path) -> pl.DataFrame:
    """
    Load read and reference IDs from a headerless DIAMOND tabular file.

    Only the first two columns are kept; HUMAnN writes the full 12-column
    BLAST tabular layout.

    Returns:
        DataFrame with `read_id` and `reference_id` columns (empty if the
        file has no rows)

    Raises:
        ConfigurationError: If the file cannot be parsed as a table with at
            least two columns
    """
    try:
        frame = pl.read_csv(
            table,
            separator="\t",
            has_header=False,
            columns=[0, 1],
            infer_schema=False,
            quote_char=None,
            truncate_ragged_lines=True,
        )
    except pl.exceptions.NoDataError:
        return pl.DataFrame(schema=ALIGNMENT_SCHEMA)
    except pl.exceptions.PolarsError as e:
        msg = f"Malformed alignment table {table}: {e}"
        raise ConfigurationError(msg) from e

    if frame.width != len(ALIGNMENT_SCHEMA):
        msg = f"Malformed alignment table {table}: expected at least 2 columns"
        raise ConfigurationError(msg)
    return frame.rename(dict(zip(frame.columns, ALIGNMENT_SCHEMA, strict=True)))


def canonical_expr(column: str) -> pl.Expr:
    """Expression equivalent of `canonical_id` for a string column."""
    return (
        pl.col(column)
        .str.split(ID_DELIMITER)
        .list.first()
        .str.strip_chars()
    )


def select_target_reads(alignments: pl.DataFrame, targets: TargetSet) -> list[str]:
    """
    Read IDs whose assigned reference is a target, in table order.

    A read listed more than once is reported once.
    """
    if not targets.ids or alignments.height == 0:
        return []
    return (
        alignments.filter(canonical_expr("reference_id").is_in(list(targets.ids)))
        .select("read_id")
        .unique(maintain_order=True)
        .to_series()
        .to_list()
    )


def clean_read_ids(read_ids: list[str]) -> list[str]:
    """Strip HUMAnN's `|<read length>` suffix so IDs match the FASTQ headers."""
    cleaned: dict[str, None] = {}
    for read_id in read_ids:
        cleaned[read_id.split(ID_DELIMITER, 1)[0].strip()] = None
    return list(cleaned)


class ExtractionTask:
    """One sample's extraction run and its state machine."""

    def __init__(
        self,
        sample: Sample,
        targets: TargetSet,
        output_root: Path,
        toolkit: SequenceToolkit,
    ) -> None:
        self.sample = sample
        self.targets = targets
        self.output_root = output_root
        self.toolkit = toolkit
        self.store = CompletionStore(output_root)
        self.state = ExtractionState.PENDING
        self.reads_assigned = 0
        self.sequences_extracted = 0
        self._started = 0.0

    @property
    def output_dir(self) -> Path:
        return sample_output_dir(self.output_root, self.sample.sample_id)

    def _advance(self, new_state: ExtractionState) -> None:
        allowed = EXTRACTION_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            msg = f"Illegal extraction transition {self.state.value} -> {new_state.value}"
            raise RuntimeError(msg)
        logger.debug(f"{self.sample.sample_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def run(self) -> ExtractionResult:
        """
        Execute the task to a terminal state.

        Every failure publishes a completion record describing it before the
        exception propagates.

        Raises:
            InputMissingError: If the alignment table or raw FASTQ is absent
            ConfigurationError: If the alignment table cannot be parsed
            DownstreamToolFailure: If the toolkit fails while retrieving reads
        """
        sample_id = self.sample.sample_id
        self._started = time.monotonic()
        self.store.retract(Stage.EXTRACTION, sample_id)

        logger.info(f"Processing {sample_id} with {len(self.targets)} target IDs")

        if not self.sample.alignment_table.is_file():
            self._advance(ExtractionState.NO_INPUT)
            self._finish()
            raise InputMissingError(sample_id, self.sample.alignment_table, "Alignment table")

        try:
            alignments = load_alignment_table(self.sample.alignment_table)
        except ConfigurationError as e:
            self._advance(ExtractionState.INVALID_INPUT)
            self._finish()
            msg = f"Sample {sample_id}: {e}"
            raise ConfigurationError(msg) from e

        read_ids = select_target_reads(alignments, self.targets)
        self._advance(ExtractionState.SCANNED)
        self.reads_assigned = len(read_ids)
        logger.info(f"Found {self.reads_assigned} reads assigned to target IDs")

        if not read_ids:
            logger.info(f"No target-assigned reads for {sample_id}")
            if self.output_dir.exists():
                shutil.rmtree(self.output_dir)
            self._advance(ExtractionState.NO_TARGET_READS)
            return self._finish()

        self._advance(ExtractionState.READS_SELECTED)

        if not self.sample.raw_sequences.is_file():
            self._advance(ExtractionState.INPUT_MISSING)
            self._finish()
            raise InputMissingError(sample_id, self.sample.raw_sequences, "FASTQ file")

        try:
            self._retrieve_sequences(clean_read_ids(read_ids))
        except PipelineError:
            logger.error(f"Sequence retrieval failed for {sample_id}")
            self._advance(ExtractionState.TOOL_FAILURE)
            self._finish()
            raise
        self._advance(ExtractionState.SEQUENCES_RETRIEVED)

        if self.sequences_extracted < self.reads_assigned:
            logger.warning(
                f"{sample_id}: {self.reads_assigned - self.sequences_extracted} assigned "
                "read(s) were not found in the FASTQ file",
            )

        self._advance(ExtractionState.COMPLETED)
        return self._finish()

    def _retrieve_sequences(self, read_ids: list[str]) -> None:
        out_dir = self.output_dir
        out_dir.mkdir(parents=True, exist_ok=True)

        ids_file = out_dir / READ_IDS_FILE
        fastq = out_dir / EXTRACTED_FASTQ
        fasta = out_dir / EXTRACTED_FASTA
        partial = out_dir / f"{EXTRACTED_FASTA}.partial"

        write_id_list(read_ids, ids_file)
        try:
            self.toolkit.grep(ids_file, self.sample.raw_sequences, fastq)
            self.toolkit.fq2fa(fastq, partial)
            partial.replace(fasta)
        finally:
            for intermediate in (ids_file, fastq, partial):
                intermediate.unlink(missing_ok=True)

        self.sequences_extracted = count_fasta_records(fasta)
        logger.info(f"Extracted {self.sequences_extracted} DNA sequences")

    def _finish(self) -> ExtractionResult:
        duration = int(time.monotonic() - self._started)
        output_path = None
        extras: dict[str, str] = {}
        if self.state is ExtractionState.COMPLETED:
            output_path = self.output_dir / EXTRACTED_FASTA
            extras["OUTPUT_FILE"] = str(output_path.relative_to(self.output_root))

        record = CompletionRecord(
            stage=Stage.EXTRACTION,
            status=self.state.status,
            sample_id=self.sample.sample_id,
            target_count=len(self.targets),
            duration_seconds=duration,
            counters={
                "READS_ASSIGNED": self.reads_assigned,
                "SEQUENCES_EXTRACTED": self.sequences_extracted,
            },
            extras=extras,
        )
        path = self.store.write(record)
        logger.info(
            f"{self.sample.sample_id}: {record.status.value} "
            f"(completion record {path.name})",
        )

        return ExtractionResult(
            sample_id=self.sample.sample_id,
            state=self.state,
            target_count=len(self.targets),
            reads_assigned=self.reads_assigned,
            sequences_extracted=self.sequences_extracted,
            duration_seconds=duration,
            output_path=output_path,
        )


def extract_sample(
    sample: Sample,
    targets: TargetSet,
    output_root: Path,
    toolkit: SequenceToolkit,
) -> ExtractionResult:
    """Run the extraction task for one sample. See `ExtractionTask.run`."""
    return ExtractionTask(sample, targets, output_root, toolkit).run()
