"""
Completion record store.

Each finished unit of work publishes one human-readable record of `KEY: value`
lines, for example:

    STAGE: step1
    COMPLETED_AT: 2024-05-01T12:00:00
    SAMPLE: S01
    STATUS: SUCCESS
    TARGET_IDS_PROCESSED: 120
    READS_ASSIGNED: 42
    SEQUENCES_EXTRACTED: 40
    DURATION_SECONDS: 17
    DURATION_HUMAN: 00:00:17
    OUTPUT_FILE: S01_dna_seqs/target_dna_sequences.fa

Records are written to a temporary file and renamed into place, so a reader
polling the directory never observes a partial record. A record that cannot be
parsed is treated as "not terminal".
"""

import os
import time
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from extract_peptides.errors import BarrierTimeout
from extract_peptides.schema import CompletionStatus, Stage

RECORD_SUFFIX = "_completed.flag"
NOT_AVAILABLE = "NA"
SUMMARY_KEY = "SAMPLE"

# Keys with a dedicated model field; everything else is a counter or an extra
_STAGE = "STAGE"
_COMPLETED_AT = "COMPLETED_AT"
_SAMPLE = "SAMPLE"
_STATUS = "STATUS"
_TARGETS = "TARGET_IDS_PROCESSED"
_DURATION = "DURATION_SECONDS"
_DURATION_HUMAN = "DURATION_HUMAN"
REQUIRED_KEYS = (_STAGE, _STATUS, _TARGETS, _DURATION)


def format_duration(seconds: int) -> str:
    """Format a duration as HH:MM:SS."""
    hours, remainder = divmod(max(seconds, 0), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class CompletionRecord(BaseModel):
    """Durable, immutable status of one completed unit of work."""

    model_config = ConfigDict(frozen=True)

    stage: Stage
    status: CompletionStatus
    sample_id: str | None = None
    target_count: int = Field(ge=0)
    duration_seconds: int = Field(default=0, ge=0)
    completed_at: datetime = Field(default_factory=lambda: datetime.now().replace(microsecond=0))
    counters: dict[str, int] = Field(default_factory=dict)
    extras: dict[str, str] = Field(default_factory=dict)

    def count(self, key: str, default: int = 0) -> int:
        return self.counters.get(key, default)

    def to_fields(self) -> dict[str, str]:
        """Flatten the record into ordered key/value pairs."""
        fields = {
            _STAGE: self.stage.value,
            _COMPLETED_AT: self.completed_at.isoformat(),
        }
        if self.sample_id is not None:
            fields[_SAMPLE] = self.sample_id
        fields[_STATUS] = self.status.value
        fields[_TARGETS] = str(self.target_count)
        fields.update({key: str(value) for key, value in self.counters.items()})
        fields[_DURATION] = str(self.duration_seconds)
        fields[_DURATION_HUMAN] = format_duration(self.duration_seconds)
        fields.update(self.extras)
        return fields

    def render(self) -> str:
        return "".join(f"{key}: {value}\n" for key, value in self.to_fields().items())

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "CompletionRecord":
        """
        Rebuild a record from parsed key/value pairs.

        Raises:
            ValueError: If a required key is missing or a value is invalid
        """
        missing = [key for key in REQUIRED_KEYS if key not in fields]
        if missing:
            msg = f"missing required field(s): {', '.join(missing)}"
            raise ValueError(msg)

        counters: dict[str, int] = {}
        extras: dict[str, str] = {}
        known = {_STAGE, _COMPLETED_AT, _SAMPLE, _STATUS, _TARGETS, _DURATION, _DURATION_HUMAN}
        for key, value in fields.items():
            if key in known:
                continue
            if value.isdigit():
                counters[key] = int(value)
            else:
                extras[key] = value

        payload = {
            "stage": fields[_STAGE],
            "status": fields[_STATUS],
            "sample_id": fields.get(_SAMPLE),
            "target_count": int(fields[_TARGETS]),
            "duration_seconds": int(fields[_DURATION]),
            "counters": counters,
            "extras": extras,
        }
        if _COMPLETED_AT in fields:
            payload["completed_at"] = datetime.fromisoformat(fields[_COMPLETED_AT])

        try:
            return cls(**payload)
        except ValidationError as e:
            raise ValueError(str(e)) from e


def parse_record_text(text: str) -> dict[str, str]:
    """Parse `KEY: value` lines into a dict, skipping lines without a colon."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            continue
        fields[key.strip()] = value.strip()
    return fields


class CompletionStore:
    """
    Directory of completion records, one per unit of work.

    Extraction records are named `<sample>_step1_completed.flag`; the single
    validation stage record is `step2_completed.flag`.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def record_path(self, stage: Stage, sample_id: str | None = None) -> Path:
        if sample_id is None:
            return self.root / f"{stage.value}{RECORD_SUFFIX}"
        return self.root / f"{sample_id}_{stage.value}{RECORD_SUFFIX}"

    def write(self, record: CompletionRecord) -> Path:
        """
        Atomically publish a record.

        Raises:
            FileExistsError: If a record for this unit already exists. Records
                are immutable; call `retract` before re-running a unit.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.record_path(record.stage, record.sample_id)
        if path.exists():
            msg = f"Completion record already exists: {path}"
            raise FileExistsError(msg)

        temp_path = path.with_name(f".{path.name}.tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            handle.write(record.render())
            handle.flush()
            os.fsync(handle.fileno())
        temp_path.replace(path)

        logger.debug(f"Published completion record {path}")
        return path

    def retract(self, stage: Stage, sample_id: str | None = None) -> bool:
        """Remove a unit's record so that the unit can be re-run."""
        path = self.record_path(stage, sample_id)
        if path.exists():
            path.unlink()
            logger.info(f"Removed previous completion record {path.name}")
            return True
        return False

    def read(self, path: Path) -> CompletionRecord | None:
        """Read one record, returning None when it is unreadable or malformed."""
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read completion record {path}: {e}")
            return None

        try:
            return CompletionRecord.from_fields(parse_record_text(text))
        except ValueError as e:
            logger.warning(f"Ignoring malformed completion record {path.name}: {e}")
            return None

    def get(self, stage: Stage, sample_id: str | None = None) -> CompletionRecord | None:
        path = self.record_path(stage, sample_id)
        if not path.is_file():
            return None
        return self.read(path)

    def record_files(self, stage: Stage) -> list[Path]:
        if not self.root.is_dir():
            return []
        return sorted(self.root.glob(f"*{stage.value}{RECORD_SUFFIX}"))

    def records(self, stage: Stage) -> list[CompletionRecord]:
        """All parseable records of a stage, in file name order."""
        parsed = (self.read(path) for path in self.record_files(stage))
        return [record for record in parsed if record is not None and record.stage == stage]

    def pending(self, stage: Stage, expected: Iterable[str]) -> list[str]:
        """Expected units that have not yet published a terminal record."""
        return [sample_id for sample_id in expected if self.get(stage, sample_id) is None]

    def barrier_reached(self, stage: Stage, expected: Iterable[str]) -> bool:
        """Whether every expected unit has produced a terminal record."""
        return not self.pending(stage, expected)

    def wait_for_barrier(
        self,
        stage: Stage,
        expected: Iterable[str],
        poll_interval: float = 60.0,
        timeout: float | None = None,
    ) -> None:
        """
        Block until every expected unit has a terminal record.

        Args:
            stage: Stage whose records are awaited
            expected: Unit identifiers that must all report
            poll_interval: Seconds between directory scans
            timeout: Give up after this many seconds; None waits indefinitely

        Raises:
            BarrierTimeout: If the timeout elapses with units still pending
        """
        expected = list(expected)
        started = time.monotonic()
        polls = 0

        while True:
            pending = self.pending(stage, expected)
            if not pending:
                logger.info(f"All {len(expected)} {stage.value} task(s) have reported")
                return

            elapsed = time.monotonic() - started
            if timeout is not None and elapsed >= timeout:
                raise BarrierTimeout(stage.value, pending)

            polls += 1
            if polls % 5 == 0:
                logger.info(
                    f"Waiting on {len(pending)} {stage.value} task(s) "
                    f"({elapsed / 60:.1f} minutes elapsed)",
                )

            sleep_for = poll_interval
            if timeout is not None:
                sleep_for = min(poll_interval, max(timeout - elapsed, 0.0))
            time.sleep(sleep_for)

    def summary_table(self, stage: Stage) -> pl.DataFrame:
        """
        Build a cross-unit summary table.

        Columns are `SAMPLE` followed by the union of all fields observed in the
        stage's records, in first-seen order. Fields missing from a record are
        filled with `NA`.
        """
        rows: list[dict[str, str]] = []
        columns: dict[str, None] = {SUMMARY_KEY: None}

        for path in self.record_files(stage):
            record = self.read(path)
            if record is None:
                continue
            fields = record.to_fields()
            fields.pop(_SAMPLE, None)
            unit = record.sample_id or path.name.removesuffix(f"_{stage.value}{RECORD_SUFFIX}")
            rows.append({SUMMARY_KEY: unit, **fields})
            columns.update(dict.fromkeys(fields))

        schema = dict.fromkeys(columns, pl.String)
        if not rows:
            return pl.DataFrame(schema=schema)

        return pl.DataFrame(rows, schema=schema).fill_null(NOT_AVAILABLE)

    def write_summary(self, stage: Stage, output: Path) -> pl.DataFrame:
        table = self.summary_table(stage)
        output.parent.mkdir(parents=True, exist_ok=True)
        # Sibling tasks may refresh the table concurrently
        temp_path = output.with_name(f".{output.name}.{os.getpid()}.tmp")
        table.write_csv(temp_path, separator="\t")
        temp_path.replace(output)
        logger.info(
            f"Summary table written to {output} "
            f"(rows: {table.height}, columns: {table.width})",
        )
        return table
