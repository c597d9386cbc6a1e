"""Tests for the statistics aggregator."""

from pathlib import Path

import polars as pl
from extract_peptides.hits import ValidationHit, filter_hits, hits_frame
from extract_peptides.statistics import compute_statistics, write_matched_targets
from extract_peptides.targets import TargetSet


def accepted_hits(targets: TargetSet, hits: list[ValidationHit]) -> pl.DataFrame:
    return filter_hits(hits_frame(hits), targets, 90, 7)


class TestComputeStatistics:
    """Test match, frame and quality tier counts."""

    def test_scenario_single_target(self) -> None:
        targets = TargetSet.from_ids(["X1"])
        accepted = accepted_hits(
            targets,
            [
                ValidationHit(query_id="q1", subject_id="X1|foo", pident=100, length=50),
                ValidationHit(query_id="q2", subject_id="X1|foo", pident=80, length=50),
            ],
        )
        stats = compute_statistics(accepted, targets, unique_sequences=2, min_length=7)
        assert stats.matched_targets == ["X1"]
        assert stats.original_targets_matched == 1
        assert stats.new_targets == []
        assert stats.accepted_hits == 1

    def test_frame_coverage(self) -> None:
        targets = TargetSet.from_ids(["X1", "X2"])
        accepted = accepted_hits(
            targets,
            [
                ValidationHit(query_id="r1_frame=1", subject_id="X1", pident=100, length=20),
                ValidationHit(query_id="r1_frame=1", subject_id="X2", pident=96, length=20),
                ValidationHit(query_id="r1_frame=-3", subject_id="X2", pident=92, length=20),
                ValidationHit(query_id="r2_frame=2", subject_id="X1", pident=91, length=20),
            ],
        )
        stats = compute_statistics(accepted, targets, unique_sequences=4, min_length=7)
        assert stats.frames_searched == 24
        assert stats.frames_with_hits == 3
        assert stats.sequences_with_hits == 2
        assert stats.total_targets_with_hits == 2

    def test_quality_tiers(self) -> None:
        targets = TargetSet.from_ids(["X1"])
        accepted = accepted_hits(
            targets,
            [
                ValidationHit(query_id="a", subject_id="X1", pident=100, length=10),
                ValidationHit(query_id="b", subject_id="X1", pident=97.5, length=10),
                ValidationHit(query_id="c", subject_id="X1", pident=95, length=10),
                ValidationHit(query_id="d", subject_id="X1", pident=94.9, length=10),
            ],
        )
        stats = compute_statistics(accepted, targets, unique_sequences=1, min_length=7)
        assert stats.perfect_hits == 1
        assert stats.high_identity_hits == 3
        assert stats.accepted_hits == 4

    def test_new_targets_when_hits_fall_outside_target_set(self) -> None:
        """Statistics accept any hit table, including ones filtered against another list."""
        wider = TargetSet.from_ids(["X1", "X9"])
        accepted = accepted_hits(
            wider,
            [
                ValidationHit(query_id="a", subject_id="X1", pident=100, length=10),
                ValidationHit(query_id="b", subject_id="X9|x", pident=100, length=10),
            ],
        )
        stats = compute_statistics(accepted, TargetSet.from_ids(["X1"]), 1, 7)
        assert stats.original_targets_matched == 1
        assert stats.new_targets == ["X9"]
        assert stats.new_targets_discovered == 1

    def test_empty(self) -> None:
        targets = TargetSet.from_ids(["X1"])
        stats = compute_statistics(accepted_hits(targets, []), targets, 3, 7)
        assert stats.matched_targets == []
        assert stats.frames_searched == 18
        assert stats.frames_with_hits == 0
        assert stats.sequences_with_hits == 0

    def test_counters_keys(self) -> None:
        targets = TargetSet.from_ids(["X1"])
        counters = compute_statistics(accepted_hits(targets, []), targets, 0, 7).counters()
        assert list(counters)[:3] == [
            "ORIGINAL_TARGETS_MATCHED",
            "NEW_TARGETS_DISCOVERED",
            "TOTAL_TARGETS_WITH_HITS",
        ]


class TestWriteMatchedTargets:
    """Test the matched targets artifact."""

    def test_sorted_unique(self, tmp_path: Path) -> None:
        targets = TargetSet.from_ids(["B", "A"])
        accepted = accepted_hits(
            targets,
            [
                ValidationHit(query_id="1", subject_id="B|x", pident=100, length=10),
                ValidationHit(query_id="2", subject_id="A", pident=100, length=10),
                ValidationHit(query_id="3", subject_id="B", pident=100, length=10),
            ],
        )
        path = tmp_path / "matched_targets.txt"
        write_matched_targets(compute_statistics(accepted, targets, 3, 7), path)
        assert path.read_text() == "A\nB\n"
