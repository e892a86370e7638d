"""Conversion settings loaded from environment variables.

Uses pydantic-settings so every field can be overridden via ``MBOXPDF_*``
env vars; the CLI layers its flags on top.  Settings objects are frozen
and passed explicitly into every pipeline stage.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class ComponentKind(str, Enum):
    """A piece of email metadata that can appear in an output filename."""

    SUBJECT = "Subject"
    DATE = "Date"
    SENDER = "Sender"


class NamingComponent(BaseModel):
    """One entry of the ordered filename component list."""

    model_config = {"frozen": True}

    kind: ComponentKind = Field(description="Which email field to use")
    enabled: bool = Field(default=True, description="Include this component")


def _default_components() -> list[NamingComponent]:
    return [
        NamingComponent(kind=ComponentKind.SUBJECT, enabled=True),
        NamingComponent(kind=ComponentKind.DATE, enabled=False),
        NamingComponent(kind=ComponentKind.SENDER, enabled=False),
    ]


class ParserSettings(BaseSettings):
    """Streaming split and batch parse settings."""

    model_config = {"env_prefix": "MBOXPDF_PARSER_", "frozen": True}

    chunk_size: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Bytes read from the source file per chunk",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Raw messages submitted to the parser pool at once",
    )
    progress_every: int = Field(
        default=10,
        ge=1,
        description="Report progress every N completed units",
    )


class RenderSettings(BaseSettings):
    """Page geometry, fonts and render limits (sizes in PDF points)."""

    model_config = {"env_prefix": "MBOXPDF_RENDER_", "frozen": True}

    page_width: float = Field(default=612.0, description="US Letter width")
    page_height: float = Field(default=792.0, description="US Letter height")
    margin: float = Field(default=54.0, description="Margin on every side")
    footer_reserve: float = Field(
        default=30.0,
        description="Height kept free for the page footer on pages after the first",
    )
    max_pages: int = Field(
        default=1000,
        ge=1,
        description="Safety ceiling on pages per email",
    )
    min_advance: int = Field(
        default=100,
        ge=1,
        description="Characters forced onto a page when nothing fits",
    )
    page_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Wall-clock limit for rasterizing a single page",
    )
    image_max_width: float = Field(default=504.0, description="Merged image box width")
    image_max_height: float = Field(default=300.0, description="Merged image box height")
    text_attachment_max_chars: int = Field(
        default=5000,
        ge=1,
        description="Merged text attachments are truncated beyond this",
    )
    font_name: str = Field(default="Helvetica", description="Regular font")
    bold_font_name: str = Field(default="Helvetica-Bold", description="Title font")
    body_font_size: float = Field(default=10.0, description="Body and header font size")
    title_font_size: float = Field(default=16.0, description="Title font size")
    footer_font_size: float = Field(default=8.0, description="Footer font size")


class ConversionSettings(BaseSettings):
    """Root configuration for a conversion job.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "MBOXPDF_", "frozen": True}

    separate_outputs: bool = Field(
        default=False,
        description="Write one PDF per email (archived) instead of one combined PDF",
    )
    max_concurrency: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Maximum parse/render tasks in flight",
    )
    max_email_body_size_mb: int = Field(
        default=2,
        ge=1,
        le=60,
        description="Email bodies are truncated beyond this many megabytes",
    )
    merge_attachments_into_output: bool = Field(
        default=False,
        description="Append text and image attachments after the body",
    )
    bundle_non_mergeable_attachments: bool = Field(
        default=False,
        description="Zip attachments that cannot be merged into the PDF",
    )
    filename_components: list[NamingComponent] = Field(
        default_factory=_default_components,
        description="Ordered filename components for separate outputs",
    )

    parser: ParserSettings = Field(default_factory=ParserSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)

    @property
    def max_email_body_size_bytes(self) -> int:
        return self.max_email_body_size_mb * 1_000_000
