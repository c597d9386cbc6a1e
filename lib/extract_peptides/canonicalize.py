"""
Map accepted translations to canonical target IDs and number them.

The final FASTA is meant for proteomics search engines, which want one gene
name per entry. Each accepted translated sequence is renamed after the
canonical ID of its first accepted hit and numbered per ID in encounter order:

    >UniRef50_A0A001_1 GN=UniRef50_A0A001_1
    MKVLAAGIVG...
    >UniRef50_A0A001_2 GN=UniRef50_A0A001_2
    MKVLAAGLVG...
"""

from collections.abc import Iterable, Iterator
from pathlib import Path

import polars as pl
from Bio import SeqIO
from loguru import logger

from extract_peptides.errors import NoDataError
from extract_peptides.toolkit import SequenceToolkit, count_fasta_records, write_id_list


def best_subject_map(accepted: pl.DataFrame) -> dict[str, str]:
    """
    Map each accepted query ID to the canonical subject of its first listed hit.

    Relies on `accepted` keeping the validation engine's ranking order.
    """
    mapping: dict[str, str] = {}
    for query_id, subject in accepted.select("query_id", "canonical_subject").iter_rows():
        mapping.setdefault(query_id.strip(), subject)
    return mapping


def extract_accepted_sequences(
    accepted: pl.DataFrame,
    translated: Path,
    id_file: Path,
    output: Path,
    toolkit: SequenceToolkit,
) -> int:
    """
    Pull the translated sequences of every accepted query out of `translated`.

    Writes an empty `output` when nothing was accepted. The intermediate ID
    list is removed afterwards.

    Returns:
        Number of sequences written
    """
    output.parent.mkdir(parents=True, exist_ok=True)
    if accepted.height == 0:
        logger.info("No high-quality hits found")
        output.write_text("", encoding="utf-8")
        return 0

    query_ids = sorted(set(accepted.get_column("query_id").str.strip_chars().to_list()))
    write_id_list(query_ids, id_file)
    try:
        toolkit.grep(id_file, translated, output)
    finally:
        id_file.unlink(missing_ok=True)

    count = count_fasta_records(output)
    logger.info(f"Extracted {count} high-quality amino acid sequences")
    return count


def map_to_canonical(
    records: Iterable[tuple[str, str]],
    mapping: dict[str, str],
) -> Iterator[tuple[str, str]]:
    """
    First pass: rename (ID, sequence) pairs to their canonical target ID.

    Sequences whose ID has no accepted hit are dropped.
    """
    for seq_id, sequence in records:
        canonical = mapping.get(seq_id.strip())
        if canonical is not None:
            yield canonical, sequence


def renumber(records: Iterable[tuple[str, str]]) -> Iterator[tuple[str, str]]:
    """
    Second pass: suffix each canonical ID with a per-ID, 1-based counter.

    Example:
        [("X1", s1), ("X2", s2), ("X1", s3)] ->
        [("X1_1", s1), ("X2_1", s2), ("X1_2", s3)]
    """
    counts: dict[str, int] = {}
    for canonical, sequence in records:
        counts[canonical] = counts.get(canonical, 0) + 1
        yield f"{canonical}_{counts[canonical]}", sequence


def format_header(name: str) -> str:
    return f">{name} GN={name}"


def read_fasta_pairs(path: Path) -> Iterator[tuple[str, str]]:
    with path.open(encoding="utf-8") as handle:
        for record in SeqIO.parse(handle, "fasta"):
            yield record.id, str(record.seq)


def write_final_fasta(
    accepted: pl.DataFrame,
    high_quality_aa: Path,
    output: Path,
) -> int:
    """
    Write the renumbered proteomics FASTA.

    Args:
        accepted: Accepted hits, in engine order, with `canonical_subject`
        high_quality_aa: Translated sequences of the accepted queries
        output: Final FASTA path

    Returns:
        Number of sequences written

    Raises:
        NoDataError: If accepted sequences exist but none could be mapped back
            to a canonical ID
    """
    output.parent.mkdir(parents=True, exist_ok=True)
    if count_fasta_records(high_quality_aa) == 0:
        output.write_text("", encoding="utf-8")
        logger.info("No sequences to reformat")
        return 0

    mapping = best_subject_map(accepted)
    partial = output.with_name(f"{output.name}.partial")
    written = 0
    with partial.open("w", encoding="utf-8") as out:
        numbered = renumber(map_to_canonical(read_fasta_pairs(high_quality_aa), mapping))
        for name, sequence in numbered:
            out.write(f"{format_header(name)}\n{sequence}\n")
            written += 1

    if written == 0:
        partial.unlink(missing_ok=True)
        msg = (
            f"None of the sequences in {high_quality_aa.name} matched an accepted "
            "query ID; check that the translation and hit files belong together"
        )
        raise NoDataError(msg)

    partial.replace(output)
    logger.info(f"Reformatted {written} sequences to proteomics format")
    return written
