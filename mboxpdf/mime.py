"""MIME body walking: readable text and attachment extraction.

Works on the raw body text split on the ``--boundary`` delimiter rather
than on a full MIME tree.  Two levels of multipart nesting are followed
(e.g. ``multipart/mixed`` containing ``multipart/alternative``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import unquote

from bs4 import BeautifulSoup

from .codec import decode_encoded_words, decode_transfer_encoding, decode_transfer_encoding_bytes
from .models import Attachment

_MAX_MULTIPART_DEPTH = 2

_BOUNDARY = re.compile(r"boundary\s*=\s*", re.IGNORECASE)
_CHARSET = re.compile(r"charset\s*=\s*\"?([^\";\s]+)", re.IGNORECASE)
_FILENAME = re.compile(r"filename\*?=\"?([^\";\n]+)\"?", re.IGNORECASE)
_NAME = re.compile(r"(?<![\w*])name\*?=\"?([^\";\n]+)\"?", re.IGNORECASE)

_BLOCK_TAGS = (
    "p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr", "td", "th",
    "blockquote", "pre", "ul", "ol", "dl", "dd", "dt", "header", "footer",
    "section", "article", "nav", "address", "fieldset", "form",
)

_HTML_MARKERS = (
    "<html", "<body", "<div", "<table", "<tr", "<td", "<th",
    "<p>", "<br>", "<br/>", "<span", "<a ", "<img", "<h1", "<h2", "<h3",
    "<ul", "<ol", "<li", "<strong", "<em", "<b>", "<i>", "<style",
)


@dataclass
class MimePart:
    """One body part: lower-cased headers and the undecoded body text."""

    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def disposition(self) -> str:
        return self.headers.get("content-disposition", "")

    @property
    def transfer_encoding(self) -> str:
        return self.headers.get("content-transfer-encoding", "")

    @property
    def charset(self) -> str | None:
        return extract_charset(self.content_type)

    @property
    def is_attachment(self) -> bool:
        disposition = self.disposition.lower()
        return "attachment" in disposition or "filename=" in disposition


# ------------------------------------------------------------------
# Header parameter helpers
# ------------------------------------------------------------------


def extract_boundary(content_type: str) -> str | None:
    """Return the ``boundary=`` parameter without quotes or trailing parameters."""
    match = _BOUNDARY.search(content_type)
    if match is None:
        return None
    value = content_type[match.end():].strip()
    if value.startswith('"'):
        closing = value.find('"', 1)
        value = value[1:closing] if closing != -1 else value[1:]
    else:
        value = value.split(";", 1)[0]
    value = value.strip()
    return value or None


def extract_charset(content_type: str) -> str | None:
    match = _CHARSET.search(content_type)
    return match.group(1) if match else None


def extract_filename(header: str) -> str | None:
    """Recover a filename from a Content-Disposition or Content-Type value.

    Handles ``filename=``, ``filename*=`` (RFC 2231 ``charset''value``
    with percent-encoding) and the Content-Type ``name=`` parameter.
    """
    match = _FILENAME.search(header) or _NAME.search(header)
    if match is None:
        return None
    filename = match.group(1).strip().strip('"')
    if "''" in filename:
        charset, _, value = filename.partition("''")
        try:
            filename = unquote(value, encoding=charset or "utf-8", errors="replace")
        except LookupError:
            filename = unquote(value)
    filename = decode_encoded_words(filename).strip()
    return filename or None


def mime_type_of(content_type: str) -> str:
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime or "application/octet-stream"


# ------------------------------------------------------------------
# Part splitting
# ------------------------------------------------------------------


def _parse_part(text: str) -> MimePart:
    # Whatever follows the delimiter on its own line is not part of the part.
    _, _, text = text.partition("\n")
    lines = text.split("\n")
    headers: dict[str, str] = {}
    current: str | None = None
    body_start = len(lines)

    for idx, line in enumerate(lines):
        if not line.strip():
            body_start = idx + 1
            break
        if line[0] in " \t" and current is not None:
            headers[current] += " " + line.strip()
        elif ":" in line:
            name, _, value = line.partition(":")
            current = name.strip().lower()
            headers[current] = value.strip()

    return MimePart(headers=headers, body="\n".join(lines[body_start:]))


def split_parts(raw_body: str, boundary: str, *, depth: int = 1) -> list[MimePart]:
    """Split *raw_body* on ``--boundary`` and parse each part.

    Empty segments and the closing ``--boundary--`` tail are skipped.
    Nested multipart parts are expanded in place until the depth limit.
    """
    parts: list[MimePart] = []
    for segment in raw_body.split(f"--{boundary}"):
        stripped = segment.strip()
        if not stripped or stripped.startswith("--"):
            continue
        part = _parse_part(segment)
        if not part.headers:
            # Preamble text before the first delimiter.
            continue

        if "multipart" in part.content_type.lower() and depth < _MAX_MULTIPART_DEPTH:
            nested = extract_boundary(part.content_type)
            if nested:
                parts.extend(split_parts(part.body, nested, depth=depth + 1))
                continue
        parts.append(part)
    return parts


def _multipart_parts(raw_body: str, headers: dict[str, str]) -> list[MimePart] | None:
    content_type = headers.get("content-type", "")
    if "multipart" not in content_type.lower():
        return None
    boundary = extract_boundary(content_type)
    if boundary is None:
        return None
    return split_parts(raw_body, boundary)


def _decode_part_text(part: MimePart) -> str:
    return decode_transfer_encoding(part.body.strip(), part.transfer_encoding, part.charset)


# ------------------------------------------------------------------
# Readable body
# ------------------------------------------------------------------


def extract_readable_body(raw_body: str, headers: dict[str, str]) -> str:
    """Return human-readable text for a message body.

    Multipart: the first ``text/plain`` part, else the first ``text/html``
    part converted to text, else the raw body.  Single part: decoded per
    Content-Transfer-Encoding, HTML converted to text.
    """
    content_type = headers.get("content-type", "")

    if "multipart" in content_type.lower():
        parts = _multipart_parts(raw_body, headers)
        if not parts:
            return raw_body.strip()

        inline = [p for p in parts if not p.is_attachment]
        for part in inline:
            if "text/plain" in part.content_type.lower():
                return _decode_part_text(part).strip()
        for part in inline:
            if "text/html" in part.content_type.lower():
                return html_to_text(_decode_part_text(part))
        return raw_body.strip()

    encoding = headers.get("content-transfer-encoding", "")
    decoded = decode_transfer_encoding(raw_body.strip(), encoding, extract_charset(content_type))
    if "text/html" in content_type.lower():
        return html_to_text(decoded)
    return decoded


# ------------------------------------------------------------------
# Attachments
# ------------------------------------------------------------------


def extract_attachments(raw_body: str, headers: dict[str, str]) -> list[Attachment]:
    """Collect attachments from a multipart body.

    A part is an attachment if its disposition says so (``attachment`` or
    ``filename=``) or if it is neither text/plain nor text/html.  Parts
    without a recoverable filename are treated as inline content.
    """
    parts = _multipart_parts(raw_body, headers)
    if not parts:
        return []

    attachments: list[Attachment] = []
    for part in parts:
        content_type = part.content_type.lower()
        if not part.is_attachment and ("text/plain" in content_type or "text/html" in content_type):
            continue

        filename = extract_filename(part.disposition) or extract_filename(part.content_type)
        if filename is None:
            continue

        data = decode_transfer_encoding_bytes(part.body.strip(), part.transfer_encoding)
        if data is None:
            continue

        attachments.append(
            Attachment(
                filename=filename,
                mime_type=mime_type_of(part.content_type),
                data=data,
            )
        )
    return attachments


# ------------------------------------------------------------------
# HTML degradation
# ------------------------------------------------------------------


def html_to_text(html: str) -> str:
    """Convert HTML to readable plain text.

    Block-level elements and ``<br>`` end a line, list items become
    bullets and table cells are space separated.  Entities are decoded
    by the parser.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.append("\n")
        if tag.name == "li":
            tag.insert(0, "\n• ")
        elif tag.name in ("td", "th"):
            tag.insert(0, " ")

    text = soup.get_text()
    text = re.sub(r"[ \t]+", " ", text)
    text = text.replace(" \n", "\n").replace("\n ", "\n")
    text = re.sub(r"\n\n\n+", "\n\n", text)
    return text.strip()


def looks_like_html(text: str) -> bool:
    """Heuristic: a doctype/``<html`` prefix, or at least two common tags."""
    lowered = text.strip().lower()
    if lowered.startswith("<!doctype html") or lowered.startswith("<html"):
        return True
    return sum(1 for marker in _HTML_MARKERS if marker in lowered) >= 2
