"""
Pipeline controller.

Step 1 fans out one extraction task per sample. Step 2 is a single consumer
that waits for every step-1 completion record, combines and deduplicates the
extracted reads, translates them in six frames, validates the translations
with the search engine and then filters, summarises and renumbers the hits.

In RERUN mode step 2 reuses an existing search output and starts at the
filtering step. RERUN is only honoured when that output exists and is not
empty; otherwise the run is demoted to FULL.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from extract_peptides.aggregation import aggregate
from extract_peptides.canonicalize import extract_accepted_sequences, write_final_fasta
from extract_peptides.completion import CompletionRecord, CompletionStore
from extract_peptides.config import StageArtifacts, ValidationSettings
from extract_peptides.errors import ConfigurationError, NoDataError, PipelineError
from extract_peptides.extraction import extract_sample
from extract_peptides.hits import count_hits, filter_hits, load_hits, write_hits
from extract_peptides.manifest import select_sample
from extract_peptides.schema import (
    TERMINAL_STATUS,
    CompletionStatus,
    ExtractionResult,
    ExtractionState,
    RunMode,
    Sample,
    Stage,
)
from extract_peptides.statistics import HitStatistics, compute_statistics, write_matched_targets
from extract_peptides.targets import TargetSet
from extract_peptides.toolkit import SequenceToolkit, ValidationEngine, count_fasta_records

STEP1_SUMMARY = "step1_samples_summary.tsv"


def decide_run_mode(requested: RunMode, validation_output: Path) -> RunMode:
    """
    Resolve the requested run mode against the artifacts on disk.

    The only cache check is that the previous search output exists and is
    non-empty; inputs that produced it are not fingerprinted.
    """
    if requested is RunMode.RERUN:
        if validation_output.is_file() and validation_output.stat().st_size > 0:
            logger.info("Rerun mode: using existing search output for filtering")
            return RunMode.RERUN
        logger.warning(
            f"Rerun requested but {validation_output.name} is missing or empty; "
            "proceeding with full pipeline execution",
        )
    return RunMode.FULL


class ValidationSummary(BaseModel):
    """Counts reported by step 2, mirrored in its completion record."""

    model_config = ConfigDict(frozen=True)

    mode: RunMode
    target_count: int = Field(ge=0)
    dna_sequences_combined: int = Field(default=0, ge=0)
    dna_sequences_dedup: int = Field(default=0, ge=0)
    aa_sequences_translated: int = Field(default=0, ge=0)
    validation_hits: int = Field(default=0, ge=0)
    final_sequences: int = Field(default=0, ge=0)
    statistics: HitStatistics = Field(default_factory=HitStatistics)
    duration_seconds: int = Field(default=0, ge=0)

    def counters(self) -> dict[str, int]:
        stats = self.statistics.counters()
        return {
            "ORIGINAL_TARGETS_MATCHED": stats["ORIGINAL_TARGETS_MATCHED"],
            "NEW_TARGETS_DISCOVERED": stats["NEW_TARGETS_DISCOVERED"],
            "TOTAL_TARGETS_WITH_HITS": stats["TOTAL_TARGETS_WITH_HITS"],
            "DNA_SEQUENCES_COMBINED": self.dna_sequences_combined,
            "DNA_SEQUENCES_DEDUP": self.dna_sequences_dedup,
            "FRAMES_SEARCHED": stats["FRAMES_SEARCHED"],
            "FRAMES_WITH_HITS": stats["FRAMES_WITH_HITS"],
            "SEQUENCES_WITH_HITS": stats["SEQUENCES_WITH_HITS"],
            "AA_SEQUENCES_TRANSLATED": self.aa_sequences_translated,
            "BLAST_HITS": self.validation_hits,
            "HIGH_QUALITY_HITS": stats["HIGH_QUALITY_HITS"],
            "PERFECT_HITS_100PCT": stats["PERFECT_HITS_100PCT"],
            "HIGH_QUALITY_HITS_95PCT": stats["HIGH_QUALITY_HITS_95PCT"],
            "FINAL_AA_SEQUENCES": self.final_sequences,
        }


class UpstreamCounts(BaseModel):
    combined: int = 0
    dedup: int = 0
    translated: int = 0
    hits: int = 0


class PipelineController:
    """
    Sequences step 2 over a step-1 output directory.

    Args:
        targets: Canonical target identifiers
        settings: Search and filtering thresholds
        step1_dir: Directory holding per-sample outputs and step-1 records
        output_dir: Directory for step-2 artifacts and the step-2 record
        toolkit: Sequence toolkit used for dedup, translation and subsetting
        engine: Validation engine; only used in FULL mode
        expected_samples: Sample IDs that must all report before aggregation.
            When None, whatever step-1 records exist are used.
    """

    def __init__(
        self,
        targets: TargetSet,
        settings: ValidationSettings,
        step1_dir: Path,
        output_dir: Path,
        toolkit: SequenceToolkit,
        engine: ValidationEngine | None = None,
        expected_samples: list[str] | None = None,
    ) -> None:
        self.targets = targets
        self.settings = settings
        self.step1_dir = step1_dir
        self.artifacts = StageArtifacts(output_dir=output_dir)
        self.toolkit = toolkit
        self.engine = engine
        self.expected_samples = expected_samples
        self.step1_store = CompletionStore(step1_dir)
        self.store = CompletionStore(output_dir)

    def wait_for_extraction(self, poll_interval: float = 60.0, timeout: float | None = None) -> None:
        """Block until every expected sample has a step-1 record."""
        if self.expected_samples is None:
            return
        self.step1_store.wait_for_barrier(
            Stage.EXTRACTION,
            self.expected_samples,
            poll_interval=poll_interval,
            timeout=timeout,
        )

    def extraction_records(self) -> list[CompletionRecord]:
        """
        Step-1 records gated by the barrier.

        Raises:
            ConfigurationError: If expected samples have not reported, or no
                step-1 record exists at all
            NoDataError: If every record reports zero extracted sequences
        """
        if self.expected_samples is not None:
            pending = self.step1_store.pending(Stage.EXTRACTION, self.expected_samples)
            if pending:
                msg = (
                    f"{len(pending)} sample(s) have no step 1 completion record: "
                    f"{', '.join(pending)}"
                )
                raise ConfigurationError(msg)

        records = self.step1_store.records(Stage.EXTRACTION)
        if self.expected_samples is not None:
            expected = set(self.expected_samples)
            records = [record for record in records if record.sample_id in expected]

        if not records:
            msg = f"No step 1 completion records found in {self.step1_dir}"
            raise ConfigurationError(msg)
        logger.info(f"Found {len(records)} step 1 completion records")

        failed = [record for record in records if not record.status.is_success]
        for record in failed:
            logger.warning(f"Sample {record.sample_id} failed step 1 ({record.status.value})")

        if all(record.count("SEQUENCES_EXTRACTED") == 0 for record in records):
            msg = "Every sample reported zero extracted DNA sequences"
            raise NoDataError(msg)
        return records

    def _full_upstream(self) -> UpstreamCounts:
        if self.engine is None:
            msg = "A validation engine is required for a full run"
            raise ConfigurationError(msg)

        records = self.extraction_records()
        aggregated = aggregate(
            records,
            self.step1_dir,
            self.artifacts.combined_dna,
            self.artifacts.dedup_dna,
            self.toolkit,
        )

        logger.info("Performing six-frame translation")
        self.toolkit.translate(aggregated.dedup_path, self.artifacts.translated_aa)
        translated = count_fasta_records(self.artifacts.translated_aa)
        logger.info(f"Translated to {translated} amino acid sequences")

        self.engine.search(self.artifacts.translated_aa, self.artifacts.validation_output, self.settings)
        hits = count_hits(self.artifacts.validation_output)
        logger.info(f"Search completed: {hits} hits")

        return UpstreamCounts(
            combined=aggregated.combined_count,
            dedup=aggregated.dedup_count,
            translated=translated,
            hits=hits,
        )

    def _rerun_upstream(self, previous: CompletionRecord | None) -> UpstreamCounts:
        """
        Recover upstream counts from the previous record, then from files on disk.

        Raises:
            ConfigurationError: If the translations the search output refers to
                are gone; accepted sequences are pulled from them
        """
        if not self.artifacts.translated_aa.is_file():
            msg = (
                f"Cannot rerun: {self.artifacts.translated_aa.name} is missing from "
                f"{self.artifacts.output_dir}; run without --rerun to regenerate it"
            )
            raise ConfigurationError(msg)

        if previous is not None:
            combined = previous.count("DNA_SEQUENCES_COMBINED")
            dedup = previous.count("DNA_SEQUENCES_DEDUP")
        else:
            combined = count_fasta_records(self.artifacts.combined_dna)
            dedup = count_fasta_records(self.artifacts.dedup_dna)

        counts = UpstreamCounts(
            combined=combined,
            dedup=dedup,
            translated=count_fasta_records(self.artifacts.translated_aa),
            hits=count_hits(self.artifacts.validation_output),
        )
        logger.info(
            f"Rerun mode: using existing data (translated: {counts.translated}, "
            f"hits: {counts.hits})",
        )
        if counts.dedup == 0:
            logger.warning("Deduplicated sequence count is unknown; frame totals will read 0")
        return counts

    def _warn_if_stale(self, previous: CompletionRecord | None) -> None:
        if previous is None:
            return
        if previous.extras.get("PARAMETERS") != self.settings.describe():
            logger.warning(
                "Reusing search output produced with different parameters "
                f"({previous.extras.get('PARAMETERS', 'unknown')})",
            )
        if previous.target_count != len(self.targets):
            logger.warning(
                f"Reusing search output produced for {previous.target_count} targets; "
                f"the current list has {len(self.targets)}",
            )

    def run(self, requested: RunMode = RunMode.FULL) -> ValidationSummary:
        """
        Run step 2 to completion and publish its completion record.

        Raises:
            ConfigurationError: Missing step-1 records or engine
            NoDataError: No extracted sequences to aggregate
            DownstreamToolFailure: An external tool failed
        """
        started = time.monotonic()
        self.artifacts.output_dir.mkdir(parents=True, exist_ok=True)

        mode = decide_run_mode(requested, self.artifacts.validation_output)
        previous = self.store.get(Stage.VALIDATION)

        if mode is RunMode.RERUN:
            self._warn_if_stale(previous)
            upstream = self._rerun_upstream(previous)
        else:
            upstream = self._full_upstream()

        accepted = filter_hits(
            load_hits(self.artifacts.validation_output),
            self.targets,
            self.settings.pident,
            self.settings.min_length,
        )
        write_hits(accepted, self.artifacts.filtered_hits)

        stats = compute_statistics(accepted, self.targets, upstream.dedup, self.settings.min_length)
        write_matched_targets(stats, self.artifacts.matched_targets)

        extract_accepted_sequences(
            accepted,
            self.artifacts.translated_aa,
            self.artifacts.accepted_query_ids,
            self.artifacts.high_quality_aa,
            self.toolkit,
        )
        final_count = write_final_fasta(
            accepted,
            self.artifacts.high_quality_aa,
            self.artifacts.final_output,
        )

        summary = ValidationSummary(
            mode=mode,
            target_count=len(self.targets),
            dna_sequences_combined=upstream.combined,
            dna_sequences_dedup=upstream.dedup,
            aa_sequences_translated=upstream.translated,
            validation_hits=upstream.hits,
            final_sequences=final_count,
            statistics=stats,
            duration_seconds=int(time.monotonic() - started),
        )
        self._publish(summary)
        return summary

    def _publish(self, summary: ValidationSummary) -> None:
        record = CompletionRecord(
            stage=Stage.VALIDATION,
            status=CompletionStatus.SUCCESS,
            target_count=summary.target_count,
            duration_seconds=summary.duration_seconds,
            counters=summary.counters(),
            extras={
                "MODE": summary.mode.value,
                "PARAMETERS": self.settings.describe(),
                "UNFORMATTED_OUTPUT_FILE": self.artifacts.high_quality_aa.name,
                "FORMATTED_OUTPUT_FILE": self.artifacts.final_output.name,
                "BLAST_OUTPUT": self.artifacts.validation_output.name,
            },
        )
        self.store.retract(Stage.VALIDATION)
        path = self.store.write(record)
        logger.success(f"Step 2 complete ({summary.mode.value}); record written to {path}")


def run_extraction_task(
    samples: list[Sample],
    index: int,
    targets: TargetSet,
    output_root: Path,
    toolkit: SequenceToolkit,
) -> ExtractionResult:
    """Run the extraction task addressed by a 1-based manifest index."""
    return extract_sample(select_sample(samples, index), targets, output_root, toolkit)


def refresh_extraction_summary(step1_dir: Path) -> Path:
    """Rewrite the cross-sample step-1 summary table from the current records."""
    output = step1_dir / STEP1_SUMMARY
    CompletionStore(step1_dir).write_summary(Stage.EXTRACTION, output)
    return output


def run_all_extractions(
    samples: list[Sample],
    targets: TargetSet,
    output_root: Path,
    toolkit: SequenceToolkit,
    workers: int = 1,
) -> list[ExtractionResult]:
    """
    Run every sample's extraction task locally.

    A sample that fails is reported and skipped. The task has already published
    its failure record, so siblings are unaffected.
    """
    results: list[ExtractionResult] = []
    store = CompletionStore(output_root)

    def run_one(sample: Sample) -> ExtractionResult:
        try:
            return extract_sample(sample, targets, output_root, toolkit)
        except PipelineError as e:
            logger.error(f"{sample.sample_id}: {e}")
            record = store.get(Stage.EXTRACTION, sample.sample_id)
            state = next(
                (
                    terminal
                    for terminal, status in TERMINAL_STATUS.items()
                    if record is not None and status is record.status
                ),
                ExtractionState.PENDING,
            )
            return ExtractionResult(
                sample_id=sample.sample_id,
                state=state,
                target_count=len(targets),
            )

    if workers <= 1:
        results = [run_one(sample) for sample in samples]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(run_one, sample) for sample in samples]
            results = [future.result() for future in as_completed(futures)]

    succeeded = sum(1 for result in results if result.state is ExtractionState.COMPLETED)
    logger.info(f"Step 1 finished: {succeeded} of {len(samples)} samples extracted sequences")
    refresh_extraction_summary(output_root)
    return results
