"""Tests for the per-sample extraction task."""

from pathlib import Path

import polars as pl
import pytest
from conftest import READS, make_sample, write_alignments
from extract_peptides.completion import CompletionStore
from extract_peptides.errors import ConfigurationError, DownstreamToolFailure, InputMissingError
from extract_peptides.extraction import (
    EXTRACTED_FASTA,
    ExtractionTask,
    clean_read_ids,
    extract_sample,
    load_alignment_table,
    sample_output_dir,
    select_target_reads,
)
from extract_peptides.schema import CompletionStatus, ExtractionState, Stage
from extract_peptides.targets import TargetSet
from extract_peptides.toolkit import BiopythonToolkit


class BrokenGrepToolkit(BiopythonToolkit):
    """Toolkit whose read retrieval fails the way a crashing seqkit would."""

    def grep(self, id_file: Path, source: Path, output: Path) -> None:
        raise DownstreamToolFailure(["seqkit", "grep", str(source)], 2, "[ERRO] xopen: corrupt input")


class TestAlignmentTable:
    """Test alignment table parsing and read selection."""

    def test_load_two_columns(self, tmp_path: Path) -> None:
        table = write_alignments(tmp_path / "aln.tsv", [("R1|151", "X1|Bact")])
        frame = load_alignment_table(table)
        assert frame.columns == ["read_id", "reference_id"]
        assert frame.row(0) == ("R1|151", "X1|Bact")

    def test_load_full_blast_tabular(self, tmp_path: Path) -> None:
        table = tmp_path / "S01_diamond_aligned.tsv"
        table.write_text(
            "R1|151\tX1|Bact\t95.0\t50\t2\t0\t1\t150\t1\t50\t1e-20\t90.5\n"
            "R2|149\tY9\t88.0\t48\t5\t1\t2\t146\t3\t50\t1e-15\t70.2\n",
        )
        frame = load_alignment_table(table)
        assert frame.columns == ["read_id", "reference_id"]
        assert frame.rows() == [("R1|151", "X1|Bact"), ("R2|149", "Y9")]

    def test_single_column_table_rejected(self, tmp_path: Path) -> None:
        table = tmp_path / "aln.tsv"
        table.write_text("R1\n")
        with pytest.raises(ConfigurationError, match="Malformed alignment table"):
            load_alignment_table(table)

    def test_load_empty_table(self, tmp_path: Path) -> None:
        table = tmp_path / "aln.tsv"
        table.write_text("")
        assert load_alignment_table(table).height == 0

    def test_select_canonicalizes_reference(self, targets: TargetSet) -> None:
        alignments = pl.DataFrame(
            {
                "read_id": ["R1|151", "R2|150", "R3|149", "R1|151"],
                "reference_id": ["X1|a", "Y9", "X2", "X1|b"],
            },
        )
        assert select_target_reads(alignments, targets) == ["R1|151", "R3|149"]

    def test_select_with_empty_targets(self) -> None:
        alignments = pl.DataFrame({"read_id": ["R1"], "reference_id": ["X1"]})
        assert select_target_reads(alignments, TargetSet()) == []

    def test_clean_read_ids(self) -> None:
        assert clean_read_ids(["R1|151", "R2|150", "R1|151", "R3"]) == ["R1", "R2", "R3"]


class TestExtractionTask:
    """Test the extraction state machine end to end with the Biopython toolkit."""

    def test_three_reads_assigned_to_one_target(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        """Three reads on X1 and none on X2 extract three sequences."""
        sample = make_sample(
            humann_root,
            fastq_dir,
            "S01",
            [("R1|30", "X1|a"), ("R2|30", "X1"), ("R3|30", "X1|b"), ("R5|30", "OTHER")],
            READS,
        )
        result = extract_sample(sample, targets, step1_dir, toolkit)

        assert result.state is ExtractionState.COMPLETED
        assert result.status is CompletionStatus.SUCCESS
        assert result.reads_assigned == 3
        assert result.sequences_extracted == 3

        fasta = sample_output_dir(step1_dir, "S01") / EXTRACTED_FASTA
        assert result.output_path == fasta
        headers = [line for line in fasta.read_text().splitlines() if line.startswith(">")]
        assert headers == [">R1", ">R2", ">R3"]

        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S01")
        assert record is not None
        assert record.status is CompletionStatus.SUCCESS
        assert record.target_count == 2
        assert record.count("READS_ASSIGNED") == 3
        assert record.count("SEQUENCES_EXTRACTED") == 3
        assert record.extras["OUTPUT_FILE"] == "S01_dna_seqs/target_dna_sequences.fa"

    def test_intermediates_removed(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S01", [("R1|30", "X1")], READS)
        extract_sample(sample, targets, step1_dir, toolkit)
        assert [p.name for p in sample_output_dir(step1_dir, "S01").iterdir()] == [EXTRACTED_FASTA]

    def test_no_target_reads_is_success(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S02", [("R1|30", "Y1")], READS)
        result = extract_sample(sample, TargetSet.from_ids(["X1"]), step1_dir, toolkit)

        assert result.state is ExtractionState.NO_TARGET_READS
        assert result.sequences_extracted == 0
        assert result.output_path is None
        assert not sample_output_dir(step1_dir, "S02").exists()
        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S02")
        assert record is not None
        assert record.status is CompletionStatus.NO_TARGET_READS
        assert record.count("SEQUENCES_EXTRACTED") == 0

    def test_missing_alignment_table(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S03", None, READS)
        with pytest.raises(InputMissingError) as excinfo:
            extract_sample(sample, targets, step1_dir, toolkit)

        assert excinfo.value.sample_id == "S03"
        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S03")
        assert record is not None
        assert record.status is CompletionStatus.NO_INPUT

    def test_missing_fastq(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S04", [("R1|30", "X1")], None)
        with pytest.raises(InputMissingError, match="FASTQ"):
            extract_sample(sample, targets, step1_dir, toolkit)

        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S04")
        assert record is not None
        assert record.status is CompletionStatus.INPUT_MISSING
        assert record.count("READS_ASSIGNED") == 1

    def test_malformed_alignment_table(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S08", None, READS)
        sample.alignment_table.write_text("R1\n")
        with pytest.raises(ConfigurationError, match="S08"):
            extract_sample(sample, targets, step1_dir, toolkit)

        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S08")
        assert record is not None
        assert record.status is CompletionStatus.INVALID_INPUT

    def test_tool_failure_publishes_record(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S09", [("R1|30", "X1"), ("R2|30", "X2")], READS)
        with pytest.raises(DownstreamToolFailure):
            extract_sample(sample, targets, step1_dir, BrokenGrepToolkit())

        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S09")
        assert record is not None
        assert record.status is CompletionStatus.TOOL_FAILURE
        assert not record.status.is_success
        assert record.count("READS_ASSIGNED") == 2
        assert record.count("SEQUENCES_EXTRACTED") == 0
        assert list(sample_output_dir(step1_dir, "S09").iterdir()) == []

    def test_corrupt_fastq_publishes_record(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S10", [("R1|30", "X1")], None)
        sample.raw_sequences.write_text("not gzip\n")
        with pytest.raises(DownstreamToolFailure):
            extract_sample(sample, targets, step1_dir, toolkit)

        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S10")
        assert record is not None
        assert record.status is CompletionStatus.TOOL_FAILURE

    def test_reads_absent_from_fastq_are_tolerated(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(
            humann_root,
            fastq_dir,
            "S05",
            [("R1|30", "X1"), ("GHOST|30", "X2")],
            READS,
        )
        result = extract_sample(sample, targets, step1_dir, toolkit)
        assert result.reads_assigned == 2
        assert result.sequences_extracted == 1
        assert result.status is CompletionStatus.SUCCESS

    def test_rerunning_a_sample_replaces_its_record(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S06", [("R1|30", "X1")], READS)
        extract_sample(sample, targets, step1_dir, toolkit)
        write_alignments(sample.alignment_table, [("R1|30", "X1"), ("R2|30", "X2")])
        result = extract_sample(sample, targets, step1_dir, toolkit)

        assert result.sequences_extracted == 2
        record = CompletionStore(step1_dir).get(Stage.EXTRACTION, "S06")
        assert record is not None
        assert record.count("SEQUENCES_EXTRACTED") == 2

    def test_illegal_transition(
        self,
        humann_root: Path,
        fastq_dir: Path,
        step1_dir: Path,
        targets: TargetSet,
        toolkit: BiopythonToolkit,
    ) -> None:
        sample = make_sample(humann_root, fastq_dir, "S07", [], READS)
        task = ExtractionTask(sample, targets, step1_dir, toolkit)
        with pytest.raises(RuntimeError, match="Illegal"):
            task._advance(ExtractionState.COMPLETED)
