"""Data models for the conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

_TEXT_LIKE_APPLICATION_TYPES = frozenset({
    "application/json",
    "application/xml",
    "application/javascript",
})


@dataclass(frozen=True)
class RawMessage:
    """One delimited message as it came out of the splitter."""

    ordinal: int
    text: str
    bytes_consumed: int = 0


@dataclass(frozen=True)
class Attachment:
    """A single attachment extracted from a MIME body."""

    filename: str
    mime_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")

    @property
    def is_text(self) -> bool:
        mime = self.mime_type.lower()
        return mime.startswith("text/") or mime in _TEXT_LIKE_APPLICATION_TYPES

    @property
    def mergeable(self) -> bool:
        """Text and images can be laid out inside the PDF."""
        return self.is_text or self.is_image


@dataclass(frozen=True)
class Email:
    """Structured representation of one parsed message."""

    index: int
    subject: str
    sender: str
    to: str
    raw_date: str
    body: str
    source_file: str
    cc: str | None = None
    parsed_date: datetime | None = None
    attachment_names: list[str] = field(default_factory=list)
    attachments: list[Attachment] | None = None

    @property
    def formatted_date(self) -> str:
        if self.parsed_date is None:
            return self.raw_date
        return self.parsed_date.strftime("%Y-%m-%d %H:%M:%S")

    @property
    def short_date(self) -> str:
        if self.parsed_date is None:
            return self.raw_date[:10]
        return self.parsed_date.strftime("%Y-%m-%d")

    @property
    def sender_name(self) -> str:
        """Display name from ``Name <addr>``, else the address, else the raw value."""
        if "<" in self.sender:
            name, _, rest = self.sender.partition("<")
            if name.strip():
                return name.strip()
            address = rest.split(">", 1)[0]
            if address:
                return address
        return self.sender


@dataclass(frozen=True)
class SkipRecord:
    """A message that could not be turned into an :class:`Email`."""

    index: int
    reason: str


@dataclass
class ParseOutcome:
    """Ordered result of parsing one or more MBOX streams.

    ``len(emails) + len(skipped) == total_processed`` always holds.
    """

    emails: list[Email] = field(default_factory=list)
    skipped: list[SkipRecord] = field(default_factory=list)
    total_processed: int = 0

    @property
    def summary(self) -> str:
        if not self.skipped:
            return f"Successfully parsed {len(self.emails)} emails"
        return (
            f"Parsed {len(self.emails)} emails, "
            f"skipped {len(self.skipped)} malformed emails"
        )

    def extend(self, other: ParseOutcome) -> None:
        self.emails.extend(other.emails)
        self.skipped.extend(other.skipped)
        self.total_processed += other.total_processed


@dataclass(frozen=True)
class PageFragment:
    """A contiguous slice ``[start, start + length)`` of a content stream."""

    start: int
    length: int
    footer_label: str | None = None

    @property
    def end(self) -> int:
        return self.start + self.length


class ConversionStatus(str, Enum):
    """Terminal status of a conversion job."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConversionSummary(BaseModel):
    """Report printed at the end of every run."""

    status: ConversionStatus = Field(description="Terminal status of the job")
    files: list[str] = Field(default_factory=list, description="Source MBOX files")
    parsed: int = Field(default=0, description="Emails parsed successfully")
    skipped: int = Field(default=0, description="Malformed messages skipped")
    failed: int = Field(default=0, description="Documents or pages that failed to render")
    outputs: list[str] = Field(default_factory=list, description="Files written")
    attachments_archive: str | None = Field(
        default=None,
        description="Archive holding non-mergeable attachments, if one was written",
    )
    duration_seconds: float = Field(default=0.0, description="Wall-clock duration")
    errors: list[str] = Field(default_factory=list, description="Human-readable errors")
