"""Build the styled content stream for one email.

The stream holds the title, the header block, the message body and,
when enabled, the mergeable attachments (text inline, images embedded
after being downscaled with Pillow).
"""

from __future__ import annotations

import io

import structlog
from PIL import Image, UnidentifiedImageError

from .codec import decode_text
from .config import ConversionSettings, RenderSettings
from .layout import ContentStream, EmbeddedImage, TextStyle
from .mime import html_to_text, looks_like_html
from .models import Attachment, Email

logger = structlog.get_logger()

NO_CONTENT = "(No content)"
ATTACHMENT_RULE = "\u2500" * 50
TEXT_TRUNCATION_SUFFIX = "\n...[truncated]"
UNDECODABLE_IMAGE = "[image could not be decoded]"


def title_style(settings: RenderSettings) -> TextStyle:
    return TextStyle(font_name=settings.bold_font_name, font_size=settings.title_font_size)


def body_style(settings: RenderSettings) -> TextStyle:
    return TextStyle(font_name=settings.font_name, font_size=settings.body_font_size)


def label_style(settings: RenderSettings) -> TextStyle:
    return TextStyle(font_name=settings.bold_font_name, font_size=settings.body_font_size)


def prepare_image(data: bytes, max_width: float, max_height: float) -> EmbeddedImage | None:
    """Decode *data* and downscale it to fit ``max_width x max_height``.

    One pixel is drawn as one point.  Images are never upscaled.
    Returns None when Pillow cannot decode the data.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            if not width or not height:
                return None
            scale = min(1.0, max_width / width, max_height / height)
            if scale < 1.0:
                size = (max(1, round(width * scale)), max(1, round(height * scale)))
                img = img.resize(size, Image.Resampling.LANCZOS)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format="PNG")
            return EmbeddedImage(data=out.getvalue(), width=img.width, height=img.height)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.warning("image_decode_failed", error=str(exc))
        return None


def attachment_text(attachment: Attachment, max_chars: int) -> str:
    text = decode_text(attachment.data)
    if len(text) > max_chars:
        return text[:max_chars] + TEXT_TRUNCATION_SUFFIX
    return text


def readable_body(body: str) -> str:
    """Body text ready for layout; HTML that slipped through is degraded."""
    if not body.strip():
        return NO_CONTENT
    if looks_like_html(body):
        body = html_to_text(body) or NO_CONTENT
    return body.expandtabs(4)


def build_email_content(
    email: Email,
    settings: ConversionSettings,
    *,
    heading_index: int | None = None,
) -> ContentStream:
    """Content stream for *email*.

    *heading_index* prefixes the title with ``Email N:``; it is set when
    several emails share one document.
    """
    render = settings.render
    body = body_style(render)
    stream = ContentStream()

    title = email.subject
    if heading_index is not None:
        title = f"Email {heading_index}: {title}"
    stream.append(title, title_style(render))
    stream.append("\n", body)

    stream.append(f"From: {email.sender}", body)
    stream.append(f"To: {email.to}", body)
    if email.cc:
        stream.append(f"Cc: {email.cc}", body)
    stream.append(f"Date: {email.formatted_date}", body)
    if email.attachment_names:
        stream.append(f"Attachments: {', '.join(email.attachment_names)}", body)

    stream.append("\n", body)
    stream.append("Message:", label_style(render))
    stream.append(readable_body(email.body), body)

    if settings.merge_attachments_into_output:
        _append_attachments(stream, email, render)

    return stream


def _append_attachments(stream: ContentStream, email: Email, render: RenderSettings) -> None:
    mergeable = [a for a in email.attachments or [] if a.mergeable]
    if not mergeable:
        return

    body = body_style(render)
    stream.append("\n", body)
    stream.append(ATTACHMENT_RULE, body)
    stream.append("ATTACHMENTS", title_style(render))

    for attachment in mergeable:
        stream.append("\n", body)
        stream.append(f"[{attachment.filename}]", label_style(render))
        if attachment.is_image:
            image = prepare_image(attachment.data, render.image_max_width, render.image_max_height)
            if image is None:
                stream.append(UNDECODABLE_IMAGE, body)
            else:
                stream.append_image(image, body)
        else:
            text = attachment_text(attachment, render.text_attachment_max_chars)
            stream.append(text.expandtabs(4) or NO_CONTENT, body)
