"""Output and attachment file names."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import PurePath

from .config import ComponentKind, NamingComponent
from .models import Email

UNTITLED = "untitled"
EMPTY_SUBJECT = "No Subject"

SUBJECT_MAX_LENGTH = 50
DATE_MAX_LENGTH = 20
SENDER_MAX_LENGTH = 30

_UNSAFE = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')


def sanitize_component(text: str, max_length: int | None = None) -> str:
    """Make *text* safe for use inside a file name.

    Reserved and control characters become ``_``; surrounding whitespace
    and dots are trimmed; an empty result becomes ``untitled``.
    """
    cleaned = _UNSAFE.sub("_", text).strip().strip(".").strip()
    if max_length is not None:
        cleaned = cleaned[:max_length].rstrip().rstrip(".")
    return cleaned or UNTITLED


def component_value(email: Email, kind: ComponentKind) -> str:
    if kind is ComponentKind.SUBJECT:
        subject = email.subject.strip() or EMPTY_SUBJECT
        return sanitize_component(subject, SUBJECT_MAX_LENGTH)
    if kind is ComponentKind.DATE:
        return sanitize_component(email.short_date, DATE_MAX_LENGTH)
    return sanitize_component(email.sender_name, SENDER_MAX_LENGTH)


def build_filename(
    email: Email,
    ordinal: int,
    components: Sequence[NamingComponent],
    ext: str = "pdf",
) -> str:
    """``{ordinal:06d}[_component...].{ext}`` from the enabled components."""
    parts = [f"{ordinal:06d}"]
    parts.extend(component_value(email, c.kind) for c in components if c.enabled)
    return f"{'_'.join(parts)}.{ext}"


def attachment_base_name(filename: str) -> str:
    """The sanitized base name of *filename*, without directories."""
    return sanitize_component(PurePath(filename.replace("\\", "/")).name or filename)


def unique_attachment_name(
    email_index: int,
    filename: str,
    occurrence: int = 1,
    duplicated: bool = False,
) -> str:
    """Staging name for an attachment: ``email_{index}_{filename}``.

    When the same base name appears more than once in one email, the
    *occurrence* number is inserted before the extension.
    """
    name = attachment_base_name(filename)
    if duplicated:
        path = PurePath(name)
        stem, suffix = (path.stem, path.suffix) if path.suffix else (name, "")
        name = f"{stem}_{occurrence}{suffix}"
    return f"email_{email_index}_{name}"
