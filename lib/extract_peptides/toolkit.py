"""
Wrappers around the external sequence tools.

The pipeline never manipulates reads or translations itself; it delegates to a
sequence toolkit (seqkit, or an in-process Biopython equivalent) and to a
validation engine (DIAMOND blastp). Both are used through small protocols so
that stages can be exercised without the binaries installed.
"""

import gzip
import shlex
import subprocess
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Protocol

from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord
from loguru import logger

from extract_peptides.config import ValidationSettings
from extract_peptides.errors import ConfigurationError, DownstreamToolFailure

# Bacterial, archaeal and plant plastid genetic code
TRANSLATION_TABLE = 11
FRAMES = (1, 2, 3, -1, -2, -3)
FRAME_TAG = "_frame="

VALIDATION_COLUMNS = ("qseqid", "sseqid", "pident", "length", "evalue", "bitscore")


def run_tool(command: list[str]) -> subprocess.CompletedProcess[str]:
    """
    Run an external tool to completion.

    Raises:
        ConfigurationError: If the executable cannot be found
        DownstreamToolFailure: If the tool exits with a nonzero status
    """
    logger.debug(f"Running: {shlex.join(command)}")
    try:
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        msg = f"Executable not found on PATH: {command[0]}"
        raise ConfigurationError(msg) from e

    if result.returncode != 0:
        raise DownstreamToolFailure(command, result.returncode, result.stderr)
    return result


def count_fasta_records(path: Path) -> int:
    """Count `>` header lines in a FASTA file; a missing file counts as zero."""
    if not path.is_file():
        return 0
    with _open_text(path) as handle:
        return sum(1 for line in handle if line.startswith(">"))


def write_id_list(ids: Iterable[str], path: Path) -> int:
    """Write one identifier per line, returning the number written."""
    count = 0
    with path.open("w", encoding="utf-8") as handle:
        for seq_id in ids:
            handle.write(f"{seq_id}\n")
            count += 1
    return count


def sequence_format(path: Path) -> str:
    """Infer `fastq` or `fasta` from a (possibly gzipped) file name."""
    suffixes = [suffix.lower() for suffix in path.suffixes if suffix.lower() != ".gz"]
    if suffixes and suffixes[-1] in {".fastq", ".fq"}:
        return "fastq"
    return "fasta"


@contextmanager
def _open_text(path: Path) -> Iterator[IO[str]]:
    if path.suffix == ".gz":
        with gzip.open(path, "rt", encoding="utf-8") as handle:
            yield handle
    else:
        with path.open(encoding="utf-8") as handle:
            yield handle


@contextmanager
def _in_process(step: str, source: Path) -> Iterator[None]:
    """Report a parsing or I/O failure as if an external tool had exited nonzero."""
    try:
        yield
    except (OSError, EOFError, ValueError) as e:
        raise DownstreamToolFailure(["biopython", step, str(source)], 1, str(e)) from e


class SequenceToolkit(Protocol):
    """FASTA/FASTQ manipulation operations the pipeline depends on."""

    def grep(self, id_file: Path, source: Path, output: Path) -> None:
        """Write records of `source` whose ID is listed in `id_file`."""
        ...

    def fq2fa(self, source: Path, output: Path) -> None:
        """Convert FASTQ to FASTA."""
        ...

    def rmdup_by_seq(self, source: Path, output: Path) -> None:
        """Remove records whose sequence duplicates an earlier record."""
        ...

    def translate(self, source: Path, output: Path) -> None:
        """Six-frame translation with frame-tagged identifiers."""
        ...


class SeqKitToolkit:
    """Sequence toolkit backed by the `seqkit` binary."""

    def __init__(self, executable: str = "seqkit", threads: int | None = None) -> None:
        self.executable = executable
        self.threads = threads

    def _command(self, *args: str) -> list[str]:
        command = [self.executable, *args]
        if self.threads:
            command.extend(["--threads", str(self.threads)])
        return command

    def grep(self, id_file: Path, source: Path, output: Path) -> None:
        run_tool(self._command("grep", "-f", str(id_file), str(source), "-o", str(output)))

    def fq2fa(self, source: Path, output: Path) -> None:
        run_tool(self._command("fq2fa", str(source), "-o", str(output)))

    def rmdup_by_seq(self, source: Path, output: Path) -> None:
        run_tool(self._command("rmdup", "-s", str(source), "-o", str(output)))

    def translate(self, source: Path, output: Path) -> None:
        run_tool(
            self._command(
                "translate",
                "-f",
                "6",
                "-F",
                "-T",
                str(TRANSLATION_TABLE),
                str(source),
                "-o",
                str(output),
            ),
        )


class BiopythonToolkit:
    """In-process sequence toolkit built on Bio.SeqIO, for hosts without seqkit."""

    def grep(self, id_file: Path, source: Path, output: Path) -> None:
        wanted = {
            line.strip()
            for line in id_file.read_text(encoding="utf-8").splitlines()
            if line.strip()
        }
        fmt = sequence_format(source)
        with (
            _in_process("grep", source),
            _open_text(source) as handle,
            output.open("w", encoding="utf-8") as out,
        ):
            matches = (record for record in SeqIO.parse(handle, fmt) if record.id in wanted)
            SeqIO.write(matches, out, fmt if fmt == "fastq" else "fasta-2line")

    def fq2fa(self, source: Path, output: Path) -> None:
        with (
            _in_process("fq2fa", source),
            _open_text(source) as handle,
            output.open("w", encoding="utf-8") as out,
        ):
            SeqIO.write(SeqIO.parse(handle, "fastq"), out, "fasta-2line")

    def rmdup_by_seq(self, source: Path, output: Path) -> None:
        seen: set[str] = set()
        removed = 0

        def unique_records() -> Iterator[SeqRecord]:
            nonlocal removed
            for record in SeqIO.parse(source, "fasta"):
                key = str(record.seq)
                if key in seen:
                    removed += 1
                    continue
                seen.add(key)
                yield record

        with _in_process("rmdup", source), output.open("w", encoding="utf-8") as out:
            SeqIO.write(unique_records(), out, "fasta-2line")
        logger.debug(f"Removed {removed} duplicated record(s) from {source.name}")

    def translate(self, source: Path, output: Path) -> None:
        with _in_process("translate", source), output.open("w", encoding="utf-8") as out:
            SeqIO.write(
                (
                    frame_record
                    for record in SeqIO.parse(source, "fasta")
                    for frame_record in six_frame_translation(record)
                ),
                out,
                "fasta-2line",
            )


def six_frame_translation(record: SeqRecord) -> list[SeqRecord]:
    """Translate a nucleotide record in frames 1, 2, 3, -1, -2, -3."""
    forward = record.seq
    reverse = forward.reverse_complement()
    translations = []
    for frame in FRAMES:
        strand = forward if frame > 0 else reverse
        offset = abs(frame) - 1
        usable = (len(strand) - offset) // 3 * 3
        coding = strand[offset : offset + usable] if usable > 0 else Seq("")
        translations.append(
            SeqRecord(
                coding.translate(table=TRANSLATION_TABLE),
                id=f"{record.id}{FRAME_TAG}{frame}",
                description="",
            ),
        )
    return translations


class ValidationEngine(Protocol):
    """Homology search of translated sequences against a reference database."""

    def search(self, query: Path, output: Path, settings: ValidationSettings) -> None:
        """Write tabular hits (see VALIDATION_COLUMNS) for `query` to `output`."""
        ...


class DiamondEngine:
    """Validation engine backed by `diamond blastp`."""

    def __init__(self, database: Path, executable: str = "diamond") -> None:
        self.database = database
        self.executable = executable

    def command(self, query: Path, output: Path, settings: ValidationSettings) -> list[str]:
        return [
            self.executable,
            "blastp",
            "--db",
            str(self.database),
            "--query",
            str(query),
            "--out",
            str(output),
            "--outfmt",
            "6",
            *VALIDATION_COLUMNS,
            "--max-target-seqs",
            str(settings.max_targets),
            "--evalue",
            f"{settings.evalue:g}",
            "--threads",
            str(settings.threads),
            "--sensitive" if settings.sensitive else "--fast",
        ]

    def search(self, query: Path, output: Path, settings: ValidationSettings) -> None:
        if not self.database.exists():
            msg = f"DIAMOND database not found: {self.database}"
            raise ConfigurationError(msg)
        logger.info(f"Running DIAMOND blastp against {self.database.name}")
        run_tool(self.command(query, output, settings))
