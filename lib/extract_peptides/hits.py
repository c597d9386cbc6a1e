"""
Validation engine hits and the hit filtering engine.

Hits are read from DIAMOND tabular output (`--outfmt 6 qseqid sseqid pident
length evalue bitscore`) into a Polars DataFrame. Filtering is a pure function
of the hits, the target set and the two thresholds; it keeps the engine's row
order, so applying it twice yields the same accepted hits.
"""

from collections.abc import Iterable, Iterator
from pathlib import Path

import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from extract_peptides.errors import ConfigurationError
from extract_peptides.targets import TargetSet, canonical_id
from extract_peptides.toolkit import FRAME_TAG

# Single source of truth for the tabular hit columns
HIT_SCHEMA = {
    "query_id": pl.String,
    "subject_id": pl.String,
    "pident": pl.Float64,
    "length": pl.Int64,
    "evalue": pl.Float64,
    "bitscore": pl.Float64,
}
HIT_COLUMNS = list(HIT_SCHEMA)


class ValidationHit(BaseModel):
    """One scored match reported by the validation engine."""

    model_config = ConfigDict(frozen=True)

    query_id: str
    subject_id: str
    pident: float = Field(ge=0, le=100)
    length: int = Field(ge=0)
    evalue: float = Field(default=0.0, ge=0)
    bitscore: float = 0.0

    @property
    def canonical_subject(self) -> str:
        return canonical_id(self.subject_id)

    @property
    def frame(self) -> int | None:
        return split_frame(self.query_id)[1]


def split_frame(query_id: str) -> tuple[str, int | None]:
    """
    Split a translated query ID into its source sequence ID and frame.

    Example:
        "READ7_frame=-2" -> ("READ7", -2)
        "READ7" -> ("READ7", None)
    """
    source, sep, frame = query_id.rpartition(FRAME_TAG)
    if not sep:
        return query_id, None
    try:
        return source, int(frame)
    except ValueError:
        return query_id, None


def empty_hits() -> pl.DataFrame:
    return pl.DataFrame(schema=HIT_SCHEMA)


def hits_frame(hits: Iterable[ValidationHit]) -> pl.DataFrame:
    """Build a hit DataFrame from models."""
    rows = [hit.model_dump() for hit in hits]
    if not rows:
        return empty_hits()
    return pl.DataFrame(rows, schema=HIT_SCHEMA)


def iter_hits(hits: pl.DataFrame) -> Iterator[ValidationHit]:
    for row in hits.select(HIT_COLUMNS).iter_rows(named=True):
        yield ValidationHit(**row)


def load_hits(path: Path) -> pl.DataFrame:
    """
    Load validation engine output.

    A missing or empty file yields an empty DataFrame with the hit schema.

    Raises:
        ConfigurationError: If a row does not fit the six-column hit layout
    """
    if not path.is_file() or path.stat().st_size == 0:
        return empty_hits()
    try:
        return pl.read_csv(
            path,
            separator="\t",
            has_header=False,
            schema=HIT_SCHEMA,
            quote_char=None,
        )
    except pl.exceptions.NoDataError:
        return empty_hits()
    except pl.exceptions.PolarsError as e:
        msg = f"Malformed validation output {path}: {e}"
        raise ConfigurationError(msg) from e


def count_hits(path: Path) -> int:
    """Number of hit rows in a validation output file (0 if absent)."""
    if not path.is_file():
        return 0
    with path.open(encoding="utf-8") as handle:
        return sum(1 for line in handle if line.strip())


def write_hits(hits: pl.DataFrame, path: Path) -> None:
    """Write hits in the engine's headerless tabular layout."""
    path.parent.mkdir(parents=True, exist_ok=True)
    hits.select(HIT_COLUMNS).write_csv(
        path,
        separator="\t",
        include_header=False,
        float_precision=None,
    )


def check_thresholds(pident_cutoff: float, min_length: int) -> None:
    if not 0 <= pident_cutoff <= 100:
        msg = f"Identity cutoff must be between 0 and 100: {pident_cutoff}"
        raise ConfigurationError(msg)
    if min_length < 1:
        msg = f"Minimum length must be a positive integer: {min_length}"
        raise ConfigurationError(msg)


def filter_hits(
    hits: pl.DataFrame,
    targets: TargetSet,
    pident_cutoff: float,
    min_length: int,
) -> pl.DataFrame:
    """
    Keep hits whose canonical subject is a target and that meet both cutoffs.

    Args:
        hits: Hits in engine order (see HIT_SCHEMA)
        targets: Canonical target identifiers
        pident_cutoff: Minimum percent identity, 0-100 inclusive
        min_length: Minimum alignment length in residues

    Returns:
        Accepted hits in their original order, with an added
        `canonical_subject` column
    """
    check_thresholds(pident_cutoff, min_length)

    with_canonical = hits.with_columns(
        pl.col("subject_id")
        .str.split("|")
        .list.first()
        .str.strip_chars()
        .alias("canonical_subject"),
    )
    if not targets.ids:
        return with_canonical.clear()

    accepted = with_canonical.filter(
        pl.col("canonical_subject").is_in(list(targets.ids))
        & (pl.col("pident") >= pident_cutoff)
        & (pl.col("length") >= min_length),
    )
    logger.info(
        f"Filtered {hits.height} hits to {accepted.height} high-quality hits "
        f"({pident_cutoff:g}% identity, {min_length}+ AA length, target ID match)",
    )
    return accepted
