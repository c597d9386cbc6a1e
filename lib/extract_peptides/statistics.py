"""
Summary statistics over accepted validation hits.

All values are plain counts derived from the filtered hit table and the
original target set, so they are reproducible for a given rerun.
"""

from pathlib import Path

import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from extract_peptides.targets import TargetSet
from extract_peptides.toolkit import FRAME_TAG, FRAMES

PERFECT_IDENTITY = 100.0
HIGH_IDENTITY = 95.0


class HitStatistics(BaseModel):
    """Match, discovery, frame coverage and quality tier counts."""

    model_config = ConfigDict(frozen=True)

    matched_targets: list[str] = Field(default_factory=list)
    original_targets_matched: int = Field(default=0, ge=0)
    new_targets: list[str] = Field(default_factory=list)
    frames_searched: int = Field(default=0, ge=0)
    frames_with_hits: int = Field(default=0, ge=0)
    sequences_with_hits: int = Field(default=0, ge=0)
    accepted_hits: int = Field(default=0, ge=0)
    perfect_hits: int = Field(default=0, ge=0)
    high_identity_hits: int = Field(default=0, ge=0)

    @property
    def total_targets_with_hits(self) -> int:
        return len(self.matched_targets)

    @property
    def new_targets_discovered(self) -> int:
        return len(self.new_targets)

    def counters(self) -> dict[str, int]:
        """Counters in the order they appear in the stage completion record."""
        return {
            "ORIGINAL_TARGETS_MATCHED": self.original_targets_matched,
            "NEW_TARGETS_DISCOVERED": self.new_targets_discovered,
            "TOTAL_TARGETS_WITH_HITS": self.total_targets_with_hits,
            "FRAMES_SEARCHED": self.frames_searched,
            "FRAMES_WITH_HITS": self.frames_with_hits,
            "SEQUENCES_WITH_HITS": self.sequences_with_hits,
            "HIGH_QUALITY_HITS": self.accepted_hits,
            "PERFECT_HITS_100PCT": self.perfect_hits,
            "HIGH_QUALITY_HITS_95PCT": self.high_identity_hits,
        }


def compute_statistics(
    accepted: pl.DataFrame,
    targets: TargetSet,
    unique_sequences: int,
    min_length: int,
) -> HitStatistics:
    """
    Summarise accepted hits.

    Args:
        accepted: Output of `filter_hits`, in engine order
        targets: The target set the hits were filtered against
        unique_sequences: Deduplicated nucleotide sequences that were translated;
            each contributes six searched frames
        min_length: Minimum alignment length applied to the quality tiers

    Returns:
        HitStatistics with every count populated
    """
    subjects = accepted.get_column("subject_id").str.split("|").list.first().str.strip_chars()
    matched = sorted(set(subjects.to_list()))
    original = [target for target in matched if target in targets.ids]
    new = [target for target in matched if target not in targets.ids]

    queries = accepted.get_column("query_id")
    frames_with_hits = queries.filter(queries.str.contains(FRAME_TAG, literal=True)).n_unique()
    sequences_with_hits = queries.str.replace(f"{FRAME_TAG}.*$", "").n_unique()

    long_enough = accepted.filter(pl.col("length") >= min_length)
    perfect = long_enough.filter(pl.col("pident") == PERFECT_IDENTITY).height
    high = long_enough.filter(pl.col("pident") >= HIGH_IDENTITY).height

    stats = HitStatistics(
        matched_targets=matched,
        original_targets_matched=len(original),
        new_targets=new,
        frames_searched=unique_sequences * len(FRAMES),
        frames_with_hits=frames_with_hits,
        sequences_with_hits=sequences_with_hits,
        accepted_hits=accepted.height,
        perfect_hits=perfect,
        high_identity_hits=high,
    )

    logger.info(
        f"Targets with hits: {stats.total_targets_with_hits} "
        f"({stats.original_targets_matched} original, {stats.new_targets_discovered} new)",
    )
    logger.info(
        f"Frames with hits: {stats.frames_with_hits} of {stats.frames_searched} searched; "
        f"{stats.perfect_hits} perfect and {stats.high_identity_hits} >=95% identity hits",
    )
    if stats.new_targets:
        logger.warning(
            f"{stats.new_targets_discovered} matched reference(s) were not in the target list",
        )
    return stats


def write_matched_targets(stats: HitStatistics, path: Path) -> None:
    """Write the sorted canonical IDs that received at least one accepted hit."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(f"{target}\n" for target in stats.matched_targets), encoding="utf-8")
