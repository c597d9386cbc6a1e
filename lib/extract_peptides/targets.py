"""
Target identifier handling.

UniRef identifiers in HUMAnN and DIAMOND output frequently carry a
`|`-delimited suffix (for example `UniRef50_A0A001|151` or
`UniRef50_Q8A1|Taxon`). Everything before the first `|` is the canonical
identifier and is the only part used for comparisons.
"""

from collections.abc import Iterable
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from extract_peptides.errors import ConfigurationError

ID_DELIMITER = "|"

# Above this many targets the validation step usually needs more memory/time
LARGE_TARGET_SET_WARNING = 5000


def canonical_id(raw_id: str) -> str:
    """
    Return the substring of an identifier before its first `|`, with surrounding
    whitespace removed (so `"X1 "`, `"X1|a"` and `" X1|b|c"` all give `"X1"`).
    """
    return raw_id.split(ID_DELIMITER, 1)[0].strip()


class TargetSet(BaseModel):
    """Immutable set of canonical target identifiers."""

    model_config = ConfigDict(frozen=True)

    ids: frozenset[str] = Field(default_factory=frozenset)
    source: Path | None = None

    @classmethod
    def from_ids(cls, raw_ids: Iterable[str], source: Path | None = None) -> "TargetSet":
        canonical = {canonical_id(raw) for raw in raw_ids}
        canonical.discard("")
        return cls(ids=frozenset(canonical), source=source)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, str) and canonical_id(item) in self.ids

    def __len__(self) -> int:
        return len(self.ids)

    def sorted_ids(self) -> list[str]:
        return sorted(self.ids)


def load_targets(path: Path) -> TargetSet:
    """
    Load a line-oriented target identifier file.

    Args:
        path: File with one identifier per line, optionally suffixed with `|...`

    Returns:
        TargetSet of canonical identifiers with duplicates collapsed

    Raises:
        ConfigurationError: If the file does not exist or cannot be read
    """
    if not path.is_file():
        msg = f"Targets file not found: {path}"
        raise ConfigurationError(msg)

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        msg = f"Targets file could not be read: {path} ({e})"
        raise ConfigurationError(msg) from e

    targets = TargetSet.from_ids(lines, source=path)
    logger.info(f"Loaded {len(targets)} canonical target IDs from {path}")

    if len(targets) > LARGE_TARGET_SET_WARNING:
        logger.warning(
            f"Large number of target IDs ({len(targets)}). "
            "Consider increasing memory/time limits.",
        )

    return targets
