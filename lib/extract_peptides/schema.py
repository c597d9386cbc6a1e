"""
Pydantic models and enums shared by the pipeline stages.

These models define:
- the identity of a sample and where its inputs live
- the per-sample extraction state machine and its terminal outcomes
- the status vocabulary written into completion records
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

HUMANN_TEMP_SUFFIX = "_humann_temp"
ALIGNMENT_TABLE_SUFFIX = "_diamond_aligned.tsv"
RAW_SEQUENCE_SUFFIX = ".fastq.gz"


class Stage(str, Enum):
    """Pipeline stage identifiers used in completion records."""

    EXTRACTION = "step1"
    VALIDATION = "step2"


class CompletionStatus(str, Enum):
    """Terminal outcome of a unit of work."""

    SUCCESS = "SUCCESS"
    NO_TARGET_READS = "NO_TARGET_READS"
    NO_INPUT = "NO_INPUT"
    INPUT_MISSING = "INPUT_MISSING"
    INVALID_INPUT = "INVALID_INPUT"
    TOOL_FAILURE = "TOOL_FAILURE"

    @property
    def is_success(self) -> bool:
        return self in {CompletionStatus.SUCCESS, CompletionStatus.NO_TARGET_READS}


class RunMode(str, Enum):
    """Whether the validation stage recomputes everything or reuses the search output."""

    FULL = "FULL"
    RERUN = "RERUN"


class ExtractionState(str, Enum):
    """States of the per-sample extraction task."""

    PENDING = "PENDING"
    SCANNED = "SCANNED"
    READS_SELECTED = "READS_SELECTED"
    SEQUENCES_RETRIEVED = "SEQUENCES_RETRIEVED"
    COMPLETED = "COMPLETED"
    NO_INPUT = "NO_INPUT"
    NO_TARGET_READS = "NO_TARGET_READS"
    INPUT_MISSING = "INPUT_MISSING"
    INVALID_INPUT = "INVALID_INPUT"
    TOOL_FAILURE = "TOOL_FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUS

    @property
    def status(self) -> CompletionStatus:
        """Completion status recorded for a terminal state."""
        return TERMINAL_STATUS[self]


TERMINAL_STATUS = {
    ExtractionState.COMPLETED: CompletionStatus.SUCCESS,
    ExtractionState.NO_TARGET_READS: CompletionStatus.NO_TARGET_READS,
    ExtractionState.NO_INPUT: CompletionStatus.NO_INPUT,
    ExtractionState.INPUT_MISSING: CompletionStatus.INPUT_MISSING,
    ExtractionState.INVALID_INPUT: CompletionStatus.INVALID_INPUT,
    ExtractionState.TOOL_FAILURE: CompletionStatus.TOOL_FAILURE,
}

# Allowed forward transitions of the extraction state machine
EXTRACTION_TRANSITIONS: dict[ExtractionState, frozenset[ExtractionState]] = {
    ExtractionState.PENDING: frozenset(
        {ExtractionState.NO_INPUT, ExtractionState.INVALID_INPUT, ExtractionState.SCANNED},
    ),
    ExtractionState.SCANNED: frozenset(
        {ExtractionState.NO_TARGET_READS, ExtractionState.READS_SELECTED},
    ),
    ExtractionState.READS_SELECTED: frozenset(
        {
            ExtractionState.INPUT_MISSING,
            ExtractionState.TOOL_FAILURE,
            ExtractionState.SEQUENCES_RETRIEVED,
        },
    ),
    ExtractionState.SEQUENCES_RETRIEVED: frozenset({ExtractionState.COMPLETED}),
}


class Sample(BaseModel):
    """One independently processed input unit."""

    model_config = ConfigDict(frozen=True)

    sample_id: str = Field(min_length=1)
    alignment_table: Path
    raw_sequences: Path

    @classmethod
    def from_humann_temp(cls, temp_dir: Path, raw_sequence_dir: Path) -> "Sample":
        """
        Derive a sample from a HUMAnN `<sample>_humann_temp` directory.

        Example:
            humann_out/S01_humann_temp -> sample_id "S01", alignment table
            humann_out/S01_humann_temp/S01_diamond_aligned.tsv, raw reads
            <raw_sequence_dir>/S01.fastq.gz
        """
        sample_id = temp_dir.name.removesuffix(HUMANN_TEMP_SUFFIX)
        return cls(
            sample_id=sample_id,
            alignment_table=temp_dir / f"{sample_id}{ALIGNMENT_TABLE_SUFFIX}",
            raw_sequences=raw_sequence_dir / f"{sample_id}{RAW_SEQUENCE_SUFFIX}",
        )


class ExtractionResult(BaseModel):
    """Outcome of one per-sample extraction task."""

    sample_id: str
    state: ExtractionState
    target_count: int = Field(ge=0)
    reads_assigned: int = Field(default=0, ge=0)
    sequences_extracted: int = Field(default=0, ge=0)
    duration_seconds: int = Field(default=0, ge=0)
    output_path: Path | None = None

    @property
    def status(self) -> CompletionStatus:
        return self.state.status
