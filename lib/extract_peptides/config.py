"""
Run configuration for the validation stage.

Thresholds are held in a frozen Pydantic model so that the same values flow
unchanged from the command line (or an optional YAML settings file) through
filtering, statistics and the stage completion record.
"""

from pathlib import Path
from typing import Annotated, Any

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from extract_peptides.errors import ConfigurationError

DEFAULT_MAX_TARGETS = 5
DEFAULT_EVALUE = 1e-3
DEFAULT_PIDENT = 90.0
DEFAULT_MIN_LENGTH = 7
DEFAULT_THREADS = 8


class ValidationSettings(BaseModel):
    """Thresholds and engine options for translation validation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_targets: Annotated[int, Field(ge=1)] = DEFAULT_MAX_TARGETS
    evalue: Annotated[float, Field(gt=0)] = DEFAULT_EVALUE
    pident: Annotated[float, Field(ge=0, le=100)] = DEFAULT_PIDENT
    min_length: Annotated[int, Field(ge=1)] = DEFAULT_MIN_LENGTH
    sensitive: bool = True
    threads: Annotated[int, Field(ge=1)] = DEFAULT_THREADS

    def describe(self) -> str:
        """Render the parameters the way they are stored in completion records."""
        return (
            f"max-targets={self.max_targets}, evalue={self.evalue:g}, "
            f"pident={self.pident:g}, min-length={self.min_length}, "
            f"sensitive={str(self.sensitive).lower()}"
        )


def build_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> ValidationSettings:
    """
    Build validated settings from an optional YAML file plus explicit overrides.

    Keys in the YAML file may use dashes or underscores. Overrides whose value
    is None are ignored so that unset CLI options fall through to the file or
    the defaults.

    Raises:
        ConfigurationError: If the file cannot be read or a value is out of range
    """
    values: dict[str, Any] = {}

    if config_file is not None:
        values.update(_read_settings_file(config_file))

    values.update({key: value for key, value in overrides.items() if value is not None})

    try:
        settings = ValidationSettings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        msg = f"Invalid validation settings: {problems}"
        raise ConfigurationError(msg) from e

    logger.debug(f"Validation settings: {settings.describe()}")
    return settings


def _read_settings_file(path: Path) -> dict[str, Any]:
    if not path.is_file():
        msg = f"Settings file not found: {path}"
        raise ConfigurationError(msg)

    try:
        with path.open(encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        msg = f"Settings file could not be parsed: {path} ({e})"
        raise ConfigurationError(msg) from e

    if not isinstance(data, dict):
        msg = f"Settings file must contain a mapping of option names to values: {path}"
        raise ConfigurationError(msg)

    return {str(key).replace("-", "_"): value for key, value in data.items()}


class StageArtifacts(BaseModel):
    """File layout of the aggregation and validation stage output directory."""

    model_config = ConfigDict(frozen=True)

    output_dir: Path

    @property
    def combined_dna(self) -> Path:
        return self.output_dir / "combined_dna_sequences.fa"

    @property
    def dedup_dna(self) -> Path:
        return self.output_dir / "deduplicated_dna_sequences.fa"

    @property
    def translated_aa(self) -> Path:
        return self.output_dir / "six_frame_translated.fa"

    @property
    def validation_output(self) -> Path:
        return self.output_dir / "diamond_blast_results.tsv"

    @property
    def filtered_hits(self) -> Path:
        return self.output_dir / "filtered_blast_hits.tsv"

    @property
    def matched_targets(self) -> Path:
        return self.output_dir / "matched_targets.txt"

    @property
    def accepted_query_ids(self) -> Path:
        return self.output_dir / "high_quality_query_ids.txt"

    @property
    def high_quality_aa(self) -> Path:
        return self.output_dir / "high_quality_aa_sequences.fa"

    @property
    def final_output(self) -> Path:
        return self.output_dir / "final_format_aa_sequences.faa"
