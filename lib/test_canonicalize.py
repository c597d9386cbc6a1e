"""Tests for canonical ID mapping and per-ID renumbering."""

from pathlib import Path

import polars as pl
import pytest
from extract_peptides.canonicalize import (
    best_subject_map,
    extract_accepted_sequences,
    format_header,
    map_to_canonical,
    renumber,
    write_final_fasta,
)
from extract_peptides.errors import NoDataError
from extract_peptides.hits import ValidationHit, filter_hits, hits_frame
from extract_peptides.targets import TargetSet
from extract_peptides.toolkit import BiopythonToolkit


@pytest.fixture
def accepted() -> pl.DataFrame:
    """q1 hits X1 then X2; q2 hits X1; q3 hits X2."""
    hits = [
        ValidationHit(query_id="q1_frame=1", subject_id="X1|a", pident=100, length=20),
        ValidationHit(query_id="q1_frame=1", subject_id="X2|b", pident=99, length=20),
        ValidationHit(query_id="q2_frame=-1", subject_id="X1", pident=95, length=20),
        ValidationHit(query_id="q3_frame=2", subject_id="X2", pident=91, length=20),
    ]
    return filter_hits(hits_frame(hits), TargetSet.from_ids(["X1", "X2"]), 90, 7)


@pytest.fixture
def translated(tmp_path: Path) -> Path:
    path = tmp_path / "six_frame_translated.fa"
    path.write_text(
        ">q1_frame=1\nMKAL\n>q1_frame=2\nWKS*\n>q2_frame=-1\nMKAV\n>q3_frame=2\nMRLK\n",
    )
    return path


class TestBestSubjectMap:
    """Test the query to canonical ID mapping."""

    def test_first_listed_hit_wins(self, accepted: pl.DataFrame) -> None:
        assert best_subject_map(accepted) == {
            "q1_frame=1": "X1",
            "q2_frame=-1": "X1",
            "q3_frame=2": "X2",
        }


class TestRenumber:
    """Test per-ID numbering."""

    def test_two_hits_same_target(self) -> None:
        assert list(renumber([("X1", "MA"), ("X1", "MB")])) == [("X1_1", "MA"), ("X1_2", "MB")]

    def test_numbering_restarts_per_id(self) -> None:
        numbered = list(renumber([("X1", "a"), ("X2", "b"), ("X1", "c"), ("X2", "d"), ("X1", "e")]))
        assert [name for name, _ in numbered] == ["X1_1", "X2_1", "X1_2", "X2_2", "X1_3"]

    def test_contiguous_from_one(self) -> None:
        names = [name for name, _ in renumber(("X1", str(i)) for i in range(25))]
        assert names == [f"X1_{i}" for i in range(1, 26)]

    def test_header_format(self) -> None:
        assert format_header("X1_2") == ">X1_2 GN=X1_2"


class TestMapToCanonical:
    """Test the first pass."""

    def test_unmapped_sequences_dropped(self) -> None:
        pairs = [("q1", "MA"), ("other", "MB"), ("q2 ", "MC")]
        assert list(map_to_canonical(pairs, {"q1": "X1", "q2": "X1"})) == [("X1", "MA"), ("X1", "MC")]


class TestWriteFinalFasta:
    """Test the end-to-end reformatting."""

    def test_final_output(
        self,
        accepted: pl.DataFrame,
        translated: Path,
        tmp_path: Path,
    ) -> None:
        high_quality = tmp_path / "high_quality_aa_sequences.fa"
        count = extract_accepted_sequences(
            accepted,
            translated,
            tmp_path / "ids.txt",
            high_quality,
            BiopythonToolkit(),
        )
        assert count == 3
        assert not (tmp_path / "ids.txt").exists()

        output = tmp_path / "final.faa"
        assert write_final_fasta(accepted, high_quality, output) == 3
        assert output.read_text().splitlines() == [
            ">X1_1 GN=X1_1",
            "MKAL",
            ">X1_2 GN=X1_2",
            "MKAV",
            ">X2_1 GN=X2_1",
            "MRLK",
        ]

    def test_nothing_accepted(self, translated: Path, tmp_path: Path) -> None:
        empty = filter_hits(hits_frame([]), TargetSet.from_ids(["X1"]), 90, 7)
        high_quality = tmp_path / "hq.fa"
        assert extract_accepted_sequences(empty, translated, tmp_path / "ids.txt", high_quality, BiopythonToolkit()) == 0
        assert high_quality.read_text() == ""

        output = tmp_path / "final.faa"
        assert write_final_fasta(empty, high_quality, output) == 0
        assert output.read_text() == ""

    def test_mismatched_inputs(self, accepted: pl.DataFrame, tmp_path: Path) -> None:
        unrelated = tmp_path / "unrelated.fa"
        unrelated.write_text(">zzz\nMKKK\n")
        with pytest.raises(NoDataError):
            write_final_fasta(accepted, unrelated, tmp_path / "final.faa")
        assert not (tmp_path / "final.faa").exists()
