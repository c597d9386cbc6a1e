"""
Sample discovery and the persisted sample manifest.

Extraction tasks are addressed by a 1-based index (typically the scheduler's
array task ID). The index is resolved against a manifest written once before
fan-out rather than against a fresh directory listing, so the task-to-sample
mapping cannot shift if the input directory changes while tasks are queued.
"""

from pathlib import Path

import polars as pl
from loguru import logger

from extract_peptides.errors import ConfigurationError
from extract_peptides.schema import HUMANN_TEMP_SUFFIX, Sample

MANIFEST_NAME = "samples.tsv"
MANIFEST_SCHEMA = {
    "index": pl.Int64,
    "sample_id": pl.String,
    "alignment_table": pl.String,
    "raw_sequences": pl.String,
}

# Above this many samples the validation job usually needs a longer time limit
LARGE_SAMPLE_COUNT_WARNING = 50


def discover_samples(humann_root: Path, raw_sequence_dir: Path) -> list[Sample]:
    """
    Enumerate samples from `<humann_root>/*_humann_temp` directories.

    Raises:
        ConfigurationError: If either directory is missing or no sample
            directories are found
    """
    if not humann_root.is_dir():
        msg = f"HUMAnN output directory does not exist: {humann_root}"
        raise ConfigurationError(msg)
    if not raw_sequence_dir.is_dir():
        msg = f"FASTQ directory does not exist: {raw_sequence_dir}"
        raise ConfigurationError(msg)

    temp_dirs = sorted(
        path for path in humann_root.glob(f"*{HUMANN_TEMP_SUFFIX}") if path.is_dir()
    )
    if not temp_dirs:
        msg = f"No *{HUMANN_TEMP_SUFFIX} directories found in {humann_root}"
        raise ConfigurationError(msg)

    samples = [Sample.from_humann_temp(path, raw_sequence_dir) for path in temp_dirs]
    logger.info(f"Discovered {len(samples)} samples in {humann_root}")

    if len(samples) > LARGE_SAMPLE_COUNT_WARNING:
        logger.warning(
            f"Large number of samples ({len(samples)}). "
            "Consider adjusting time limits, especially for the validation step.",
        )
    return samples


def write_manifest(samples: list[Sample], path: Path) -> Path:
    """Atomically write the sample manifest as a TSV with a 1-based index."""
    frame = pl.DataFrame(
        {
            "index": list(range(1, len(samples) + 1)),
            "sample_id": [sample.sample_id for sample in samples],
            "alignment_table": [str(sample.alignment_table) for sample in samples],
            "raw_sequences": [str(sample.raw_sequences) for sample in samples],
        },
        schema=MANIFEST_SCHEMA,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.tmp")
    frame.write_csv(temp_path, separator="\t")
    temp_path.replace(path)
    logger.info(f"Wrote manifest of {len(samples)} samples to {path}")
    return path


def load_manifest(path: Path) -> list[Sample]:
    """
    Load samples from a manifest, ordered by index.

    Raises:
        ConfigurationError: If the manifest is missing, malformed or empty
    """
    if not path.is_file():
        msg = f"Sample manifest not found: {path}"
        raise ConfigurationError(msg)

    try:
        frame = pl.read_csv(path, separator="\t", schema=MANIFEST_SCHEMA)
    except (pl.exceptions.PolarsError, OSError) as e:
        msg = f"Sample manifest could not be parsed: {path} ({e})"
        raise ConfigurationError(msg) from e

    if frame.height == 0:
        msg = f"Sample manifest is empty: {path}"
        raise ConfigurationError(msg)

    if frame["sample_id"].n_unique() != frame.height:
        msg = f"Sample manifest contains duplicate sample IDs: {path}"
        raise ConfigurationError(msg)

    return [
        Sample(
            sample_id=row["sample_id"],
            alignment_table=Path(row["alignment_table"]),
            raw_sequences=Path(row["raw_sequences"]),
        )
        for row in frame.sort("index").iter_rows(named=True)
    ]


def select_sample(samples: list[Sample], index: int) -> Sample:
    """
    Resolve a 1-based task index to a sample.

    Raises:
        ConfigurationError: If the index is out of range
    """
    if index < 1 or index > len(samples):
        msg = f"Sample index {index} out of range (1-{len(samples)})"
        raise ConfigurationError(msg)
    return samples[index - 1]
