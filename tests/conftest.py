"""Shared test fixtures and MBOX builders."""

from __future__ import annotations

import io
from datetime import UTC, datetime
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

import pytest
from PIL import Image

from mboxpdf.config import ConversionSettings, ParserSettings, RenderSettings
from mboxpdf.models import Attachment, Email

FROM_LINE = "From sender@example.com Mon Jun  2 12:00:00 2025"
DEFAULT_DATE = "Mon, 02 Jun 2025 12:00:00 +0000"


@pytest.fixture
def settings() -> ConversionSettings:
    return ConversionSettings(max_concurrency=2)


@pytest.fixture
def render_settings() -> RenderSettings:
    return RenderSettings()


@pytest.fixture
def small_batch_settings() -> ConversionSettings:
    return ConversionSettings(
        max_concurrency=4,
        parser=ParserSettings(chunk_size=64, batch_size=3),
    )


# ------------------------------------------------------------------
# Sample message builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str | None = "Test Subject",
    from_addr: str = "Alice Example <alice@example.com>",
    to_addr: str = "bob@example.com",
    body: str = "Hello, World!",
    date: str | None = DEFAULT_DATE,
    cc: str | None = None,
) -> str:
    """Build a simple plain-text email as text."""
    msg = MIMEText(body, "plain")
    if subject is not None:
        msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    if date is not None:
        msg["Date"] = date
    if cc:
        msg["Cc"] = cc
    return msg.as_string()


def _build_html_email(*, body_html: str = "<html><body><p>Hello</p><p>World</p></body></html>") -> str:
    msg = MIMEText(body_html, "html")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = DEFAULT_DATE
    return msg.as_string()


def _build_multipart_email(
    *,
    subject: str = "Multipart Email",
    body_text: str | None = "Plain body",
    body_html: str = "<p>HTML body</p>",
    attachments: list[tuple[str, str, bytes]] | None = None,
) -> str:
    """Build a multipart email with text, HTML, and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Date"] = DEFAULT_DATE

    # Text + HTML alternative
    alt = MIMEMultipart("alternative")
    if body_text is not None:
        alt.attach(MIMEText(body_text, "plain"))
    alt.attach(MIMEText(body_html, "html"))
    msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_string()


def _build_mbox(*messages: str) -> bytes:
    """Concatenate messages into MBOX bytes, each preceded by a ``From `` line."""
    chunks = []
    for message in messages:
        text = message if message.endswith("\n") else message + "\n"
        chunks.append(f"{FROM_LINE}\n{text}\n")
    return "".join(chunks).encode("utf-8")


def _write_mbox(directory: Path, name: str, *messages: str) -> Path:
    path = directory / name
    path.write_bytes(_build_mbox(*messages))
    return path


def _png_bytes(width: int = 20, height: int = 10, color: str = "red") -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def plain_email_text() -> str:
    return _build_plain_email()


@pytest.fixture
def multipart_email_text() -> str:
    return _build_multipart_email(
        attachments=[
            ("report.pdf", "application/pdf", b"%PDF-1.4 fake pdf content"),
            ("data.csv", "text/csv", b"col1,col2\na,b\n"),
        ],
    )


@pytest.fixture
def two_message_mbox(tmp_path: Path) -> Path:
    return _write_mbox(
        tmp_path,
        "two.mbox",
        _build_plain_email(subject="First", body="First body"),
        _build_plain_email(subject="Second", body="Second body"),
    )


def _make_email(
    index: int = 1,
    *,
    subject: str = "Test Subject",
    sender: str = "Alice Example <alice@example.com>",
    body: str = "Hello, World!",
    cc: str | None = None,
    parsed_date: datetime | None = datetime(2025, 6, 2, 12, tzinfo=UTC),
    attachments: list[Attachment] | None = None,
) -> Email:
    """Build a parsed :class:`Email` directly, bypassing the parser."""
    return Email(
        index=index,
        subject=subject,
        sender=sender,
        to="bob@example.com",
        raw_date=DEFAULT_DATE,
        body=body,
        source_file="test.mbox",
        cc=cc,
        parsed_date=parsed_date,
        attachment_names=[a.filename for a in attachments or []],
        attachments=attachments,
    )
