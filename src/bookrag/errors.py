"""
Error taxonomy shared by ingestion and query paths.

NotFound and InvalidInput are terminal for a request. Upstream failures are
retried per batch during ingestion and turned into visible degraded answers on
interactive paths. ParseFailure keeps the raw model output for diagnosis.
"""
from __future__ import annotations

from typing import Any


class BookRagError(Exception):
    """Base class for all engine errors."""


class NotFoundError(BookRagError):
    """A document, collection or chapter could not be located."""

    def __init__(self, message: str, *, sample: list[Any] | None = None):
        super().__init__(message)
        self.sample = list(sample or [])


class InvalidInputError(BookRagError):
    """Rejected before any I/O happens."""


class UpstreamUnavailableError(BookRagError):
    """An embedding, generation, vector-store or cache call failed."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class UpstreamTimeoutError(UpstreamUnavailableError):
    """The upstream call did not finish within its configured timeout."""

    def __init__(self, service: str, timeout_s: float):
        super().__init__(service, f"timed out after {timeout_s:.1f}s")
        self.timeout_s = float(timeout_s)


class DimensionMismatchError(BookRagError):
    """A vector does not match the collection's configured dimensionality."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"expected vector dimension {expected}, got {actual}")
        self.expected = int(expected)
        self.actual = int(actual)


class ParseFailureError(BookRagError):
    """Model output did not contain the expected structured payload."""

    def __init__(self, message: str, *, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output
