"""Error taxonomy for conversion jobs.

Parsing problems with a single message never raise; they become
:class:`~mboxpdf.models.SkipRecord` entries.  The exceptions here cover
file-level failures, render failures and cooperative cancellation.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class MboxPdfError(Exception):
    """Base class for all errors raised by this package."""


class InvalidInputError(MboxPdfError):
    """The source file has the wrong extension or cannot be read."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Invalid input {self.path}: {reason}")


class NoRecordsFoundError(MboxPdfError):
    """The stream produced zero parsable messages."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        super().__init__(f"No emails found in MBOX file {self.path}")


class RenderFailure(MboxPdfError):
    """Rendering one item (page or document) failed."""

    def __init__(self, item: str, reason: str) -> None:
        self.item = item
        self.reason = reason
        super().__init__(f"Failed to render {item}: {reason}")


class OutputWriteError(MboxPdfError):
    """The output location cannot be created or written."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Cannot write output {self.path}: {reason}")


class PartialRenderFailure(MboxPdfError):
    """Some documents were written, others failed.

    ``succeeded`` holds the paths that were produced so callers never lose
    finished output because of a later failure.
    """

    def __init__(self, succeeded: Sequence[Path], errors: Sequence[Exception]) -> None:
        self.succeeded = list(succeeded)
        self.errors = list(errors)
        super().__init__(
            f"Partial success: {len(self.succeeded)} documents written, "
            f"{len(self.errors)} failed"
        )


class ConversionCancelled(MboxPdfError):
    """Cooperative cancellation was observed.  Terminal, not retryable."""

    def __init__(self, stage: str = "conversion") -> None:
        self.stage = stage
        super().__init__(f"{stage.capitalize()} cancelled")
