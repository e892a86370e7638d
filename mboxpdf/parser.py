"""MessageParser: one delimited raw message → :class:`Email` or :class:`SkipRecord`.

Header parsing is deliberately heuristic.  Archived mailboxes contain
messages whose header block runs straight into raw (often
quoted-printable) HTML, so a header-looking line with an implausible name
is taken as the start of the body.
"""

from __future__ import annotations

import email.utils
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from .codec import decode_encoded_words
from .mime import extract_attachments, extract_readable_body
from .models import Email, SkipRecord

logger = structlog.get_logger()

BOUNDARY_MARKER = "From "
NO_SUBJECT = "(No Subject)"

_MAX_HEADER_NAME_LENGTH = 50
_MAX_HEADER_LINE_LENGTH = 1_000_000
_INVALID_NAME_FRAGMENTS = ("=", "<", ">", "3D", " ")

DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S %z",
    "%d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%Y-%m-%d %H:%M:%S %z",
)


@dataclass
class HeaderTable:
    """Lower-cased header name → trimmed value, plus where the body starts."""

    values: dict[str, str] = field(default_factory=dict)
    body_start: int = 0

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.values.get(name.lower(), default)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self.values

    def __len__(self) -> int:
        return len(self.values)


def is_valid_header_name(name: str) -> bool:
    """Reject names that look like HTML or quoted-printable fragments.

    ``Received`` headers are always accepted.
    """
    if name.lower().startswith("received"):
        return True
    return len(name) < _MAX_HEADER_NAME_LENGTH and not any(
        fragment in name for fragment in _INVALID_NAME_FRAGMENTS
    )


def parse_headers(lines: list[str]) -> HeaderTable:
    """Build the header table for a message split into *lines*.

    Headers end at the first blank line or at the first header-looking
    line whose name fails :func:`is_valid_header_name`; in the latter
    case that line belongs to the body.  If headers never end the body
    is empty.
    """
    table = HeaderTable(body_start=len(lines))
    current_name = ""
    current_value = ""

    def commit() -> None:
        if current_name:
            table.values[current_name.lower()] = current_value.strip()

    for idx, line in enumerate(lines):
        if idx == 0 and line.startswith(BOUNDARY_MARKER):
            continue
        if len(line) >= _MAX_HEADER_LINE_LENGTH:
            continue

        if not line:
            table.body_start = idx + 1
            break
        if line[0].isspace():
            current_value += " " + line.strip()
            continue
        if ":" not in line:
            continue

        name, _, value = line.partition(":")
        name = name.strip()
        if not is_valid_header_name(name):
            table.body_start = idx
            break

        commit()
        current_name = name
        current_value = value

    commit()
    return table


def parse_date(value: str) -> datetime | None:
    """Try the fixed format list in order; first match wins."""
    candidate = value.strip()
    if candidate.endswith(")") and "(" in candidate:
        candidate = candidate[:candidate.rfind("(")].strip()

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(candidate, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)

    # Lenient RFC 5322 fallback (two-digit years, missing weekday, ...).
    try:
        parsed = email.utils.parsedate_to_datetime(candidate)
    except (TypeError, ValueError, IndexError):
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def truncate_body(body: str, budget: int) -> str:
    """Cap *body* at *budget* characters, appending a visible marker block."""
    if len(body) <= budget:
        return body
    truncated_mb = (len(body) - budget) / 1_000_000
    original_mb = len(body) / 1_000_000
    rule = "=" * 50
    return (
        body[:budget]
        + f"\n\n{rule}"
        + f"\n[CONTENT TRUNCATED - {truncated_mb:.1f}MB of content not displayed]"
        + f"\n[Original size: {original_mb:.1f}MB]"
        + f"\n{rule}"
    )


class MessageParser:
    """Stateless parser: raw message text → Email, or SkipRecord on failure.

    Never raises for malformed content; one bad message must not abort
    the batch it belongs to.
    """

    def parse(
        self,
        raw_text: str,
        ordinal: int,
        source_file: str,
        body_byte_budget: int,
    ) -> Email | SkipRecord:
        try:
            return self._parse(raw_text, ordinal, source_file, body_byte_budget)
        except Exception as exc:
            logger.warning(
                "email_parse_failed",
                index=ordinal,
                source_file=source_file,
                error=str(exc),
                exc_info=True,
            )
            return SkipRecord(index=ordinal, reason=f"Parse error: {type(exc).__name__}: {exc}")

    def _parse(
        self,
        raw_text: str,
        ordinal: int,
        source_file: str,
        body_byte_budget: int,
    ) -> Email | SkipRecord:
        if not raw_text.strip():
            return SkipRecord(index=ordinal, reason="Empty message")

        lines = raw_text.split("\n")
        headers = parse_headers(lines)
        if not len(headers):
            return SkipRecord(index=ordinal, reason="No valid headers found")

        raw_body = "\n".join(lines[headers.body_start:])
        body = extract_readable_body(raw_body, headers.values)
        body = truncate_body(body, body_byte_budget).strip()

        attachments = extract_attachments(raw_body, headers.values)

        raw_date = headers.get("date", "") or ""
        subject = headers.get("subject")
        cc = headers.get("cc")

        return Email(
            index=ordinal,
            subject=NO_SUBJECT if subject is None else decode_encoded_words(subject),
            sender=decode_encoded_words(headers.get("from", "") or ""),
            to=decode_encoded_words(headers.get("to", "") or ""),
            cc=None if cc is None else decode_encoded_words(cc),
            raw_date=raw_date,
            parsed_date=parse_date(raw_date) if raw_date else None,
            body=body,
            attachment_names=[a.filename for a in attachments],
            attachments=attachments or None,
            source_file=source_file,
        )


_default_parser = MessageParser()


def parse_message(
    raw_text: str,
    ordinal: int,
    source_file: str,
    body_byte_budget: int,
) -> Email | SkipRecord:
    """Module-level convenience wrapper around :meth:`MessageParser.parse`."""
    return _default_parser.parse(raw_text, ordinal, source_file, body_byte_budget)
