from __future__ import annotations

from typing import Iterable, List


class AssemblyError(Exception):
    """Base class for document assembly errors."""


class ValidationError(AssemblyError):
    """Input rejected before any pipeline stage runs."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = [str(error) for error in errors]
        super().__init__("; ".join(self.errors) or "invalid input")


class ExtractionError(AssemblyError):
    """The positioned text layer of a page could not be read."""

    def __init__(self, message: str, page_index: int | None = None):
        super().__init__(message)
        self.page_index = page_index


class StageTimeoutError(AssemblyError):
    label = "timeout"

    def __init__(self, stage: str | None, elapsed_ms: float, budget_ms: float):
        where = f" during '{stage}'" if stage else ""
        super().__init__(
            f"timeout: deadline of {budget_ms:.0f} ms exceeded{where} after {elapsed_ms:.0f} ms"
        )
        self.stage = stage
        self.elapsed_ms = elapsed_ms
        self.budget_ms = budget_ms


class StageFailure(AssemblyError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
        self.message = message


class FatalStageFailure(StageFailure):
    """A required stage failed; ``message`` carries the original error verbatim."""


class NoMatchWarning(UserWarning):
    """A pattern or region produced nothing usable. Recorded, never raised."""
