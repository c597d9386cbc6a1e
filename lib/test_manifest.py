"""Tests for sample discovery and the persisted manifest."""

from pathlib import Path

import pytest
from conftest import READS, make_sample
from extract_peptides.errors import ConfigurationError
from extract_peptides.manifest import discover_samples, load_manifest, select_sample, write_manifest
from extract_peptides.schema import Sample


class TestSample:
    """Test deriving a sample from its HUMAnN directory."""

    def test_from_humann_temp(self, tmp_path: Path) -> None:
        sample = Sample.from_humann_temp(tmp_path / "S01_humann_temp", tmp_path / "fastq")
        assert sample.sample_id == "S01"
        assert sample.alignment_table == tmp_path / "S01_humann_temp" / "S01_diamond_aligned.tsv"
        assert sample.raw_sequences == tmp_path / "fastq" / "S01.fastq.gz"


class TestDiscoverSamples:
    """Test sample enumeration."""

    def test_sorted_by_directory_name(self, humann_root: Path, fastq_dir: Path) -> None:
        for sample_id in ("S10", "S02", "S01"):
            make_sample(humann_root, fastq_dir, sample_id, [], READS)
        (humann_root / "notes.txt").write_text("ignored")
        samples = discover_samples(humann_root, fastq_dir)
        assert [sample.sample_id for sample in samples] == ["S01", "S02", "S10"]

    def test_no_sample_directories(self, humann_root: Path, fastq_dir: Path) -> None:
        humann_root.mkdir()
        with pytest.raises(ConfigurationError, match="_humann_temp"):
            discover_samples(humann_root, fastq_dir)

    def test_missing_directories(self, tmp_path: Path, fastq_dir: Path) -> None:
        with pytest.raises(ConfigurationError):
            discover_samples(tmp_path / "nope", fastq_dir)
        with pytest.raises(ConfigurationError):
            discover_samples(fastq_dir, tmp_path / "nope")


class TestManifest:
    """Test writing, loading and indexing the manifest."""

    def test_round_trip_keeps_order(self, humann_root: Path, fastq_dir: Path, tmp_path: Path) -> None:
        samples = [
            make_sample(humann_root, fastq_dir, sample_id, [], READS) for sample_id in ("B", "A")
        ]
        path = write_manifest(samples, tmp_path / "out" / "samples.tsv")
        assert load_manifest(path) == samples

    def test_stable_after_new_directories(self, humann_root: Path, fastq_dir: Path, tmp_path: Path) -> None:
        """Indexes keep pointing at the same samples when inputs change later."""
        make_sample(humann_root, fastq_dir, "S02", [], READS)
        path = write_manifest(discover_samples(humann_root, fastq_dir), tmp_path / "samples.tsv")
        make_sample(humann_root, fastq_dir, "S01", [], READS)
        assert select_sample(load_manifest(path), 1).sample_id == "S02"

    def test_missing_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_manifest(tmp_path / "samples.tsv")

    def test_empty_manifest(self, tmp_path: Path) -> None:
        path = write_manifest([], tmp_path / "samples.tsv")
        with pytest.raises(ConfigurationError, match="empty"):
            load_manifest(path)

    def test_duplicate_sample_ids(self, tmp_path: Path) -> None:
        path = tmp_path / "samples.tsv"
        path.write_text(
            "index\tsample_id\talignment_table\traw_sequences\n"
            "1\tS1\ta.tsv\ta.fq.gz\n"
            "2\tS1\tb.tsv\tb.fq.gz\n",
        )
        with pytest.raises(ConfigurationError, match="duplicate"):
            load_manifest(path)

    @pytest.mark.parametrize("index", [0, 3])
    def test_select_out_of_range(self, tmp_path: Path, index: int) -> None:
        samples = [
            Sample(sample_id=name, alignment_table=tmp_path / "a", raw_sequences=tmp_path / "b")
            for name in ("S1", "S2")
        ]
        with pytest.raises(ConfigurationError):
            select_sample(samples, index)
