"""
Exception types raised by the extraction and validation pipeline.

Every fatal condition maps onto one of these classes so that the CLI can report
the cause and the affected unit of work, then exit nonzero.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(PipelineError):
    """A required input is missing, unreadable, or a parameter is out of range."""


class InputMissingError(PipelineError):
    """A per-sample alignment table or raw sequence file is absent."""

    def __init__(self, sample_id: str, path: object, what: str) -> None:
        self.sample_id = sample_id
        self.path = path
        self.what = what
        super().__init__(f"{what} not found for sample {sample_id}: {path}")


class NoDataError(PipelineError):
    """Zero usable records reached a stage that cannot proceed on empty input."""


class DownstreamToolFailure(PipelineError):
    """An external tool (seqkit, DIAMOND) exited abnormally."""

    def __init__(self, command: list[str], returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip().splitlines()[-5:] if stderr else []
        detail = "\n".join(tail)
        message = f"`{' '.join(command)}` exited with status {returncode}"
        if detail:
            message = f"{message}:\n{detail}"
        super().__init__(message)


class BarrierTimeout(PipelineError):
    """Not every expected unit of work reached a terminal state in time."""

    def __init__(self, stage: str, pending: list[str]) -> None:
        self.stage = stage
        self.pending = pending
        preview = ", ".join(pending[:10])
        if len(pending) > 10:
            preview = f"{preview}, ..."
        super().__init__(
            f"{len(pending)} {stage} task(s) have no terminal completion record: {preview}",
        )
