"""Tests for mboxpdf.render."""

from __future__ import annotations

import io
import time
from pathlib import Path

import pytest

from tests.conftest import _make_email, _png_bytes

from mboxpdf.config import ConversionSettings, RenderSettings
from mboxpdf.content import build_email_content, prepare_image
from mboxpdf.errors import ConversionCancelled, OutputWriteError, RenderFailure
from mboxpdf.layout import ContentStream, TextLayout, TextStyle
from mboxpdf.models import Attachment, PageFragment
from mboxpdf.pagination import PageBox, paginate
from mboxpdf import render
from mboxpdf.render import (
    DrawImage,
    DrawText,
    PdfCanvasWriter,
    rasterize_page,
    rasterize_pages,
    write_pdf,
)
from mboxpdf.shutdown import CancellationToken


def _layout(settings: ConversionSettings, email=None) -> TextLayout:
    stream = build_email_content(email or _make_email(), settings)
    return TextLayout(stream, PageBox.from_settings(settings.render).width)


def _long_layout(render_settings: RenderSettings) -> tuple[TextLayout, list[PageFragment]]:
    stream = ContentStream()
    stream.append("\n".join(f"row {i}" for i in range(200)), TextStyle())
    layout = TextLayout(stream, PageBox.from_settings(render_settings).width)
    return layout, paginate(layout, PageBox.from_settings(render_settings)).fragments


class TestRasterizePage:
    def test_first_page(self, settings: ConversionSettings):
        layout = _layout(settings)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        texts = [op.text for op in page.operations]
        assert texts == [
            "Test Subject",
            "From: Alice Example <alice@example.com>",
            "To: bob@example.com",
            "Date: 2025-06-02 12:00:00",
            "Message:",
            "Hello, World!",
        ]
        title = page.operations[0]
        assert (title.x, title.y) == (54, pytest.approx(792 - 54 - 16 * 0.8))
        assert title.font_name == "Helvetica-Bold"
        assert page.footer is None
        assert (page.width, page.height) == (612, 792)

    def test_lines_descend(self, settings: ConversionSettings):
        layout = _layout(settings)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        ys = [op.y for op in page.operations]
        assert ys == sorted(ys, reverse=True)

    def test_clipped_to_fragment(self, render_settings: RenderSettings):
        stream = ContentStream()
        stream.append("Hello World", TextStyle())
        layout = TextLayout(stream, 500)
        fragment = PageFragment(start=2, length=5, footer_label="Page 2 of 3")
        page = rasterize_page(layout, fragment, render_settings)
        (op,) = page.operations
        assert op.text == "llo W"
        assert page.footer == DrawText(
            x=306, y=65, text="Page 2 of 3", font_name="Helvetica", font_size=8
        )

    def test_unprintable_glyphs_replaced(self, render_settings: RenderSettings):
        stream = ContentStream()
        stream.append("snow \u2603 man", TextStyle())
        layout = TextLayout(stream, 500)
        page = rasterize_page(layout, PageFragment(0, len(layout)), render_settings)
        assert page.operations[0].text == "snow ? man"

    def test_image_operation(self, render_settings: RenderSettings):
        stream = ContentStream()
        image = prepare_image(_png_bytes(40, 20), 504, 300)
        stream.append_image(image, TextStyle())
        layout = TextLayout(stream, 500)
        page = rasterize_page(layout, PageFragment(0, len(layout)), render_settings)
        (op,) = page.operations
        assert isinstance(op, DrawImage)
        assert (op.width, op.height) == (40, 20)
        assert op.y == pytest.approx(792 - 54 - 20)


class TestRasterizePages:
    @pytest.mark.asyncio
    async def test_all_pages(self, render_settings: RenderSettings):
        layout, fragments = _long_layout(render_settings)
        result = await rasterize_pages(layout, fragments, render_settings)
        assert len(result.pages) == len(fragments)
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_failed_page_omitted(self, render_settings: RenderSettings, monkeypatch):
        layout, fragments = _long_layout(render_settings)
        original = render.rasterize_page

        def flaky(layout, fragment, settings):
            if fragment is fragments[1]:
                raise RuntimeError("bad page")
            return original(layout, fragment, settings)

        monkeypatch.setattr(render, "rasterize_page", flaky)
        result = await rasterize_pages(layout, fragments, render_settings)
        assert result.failed == 1
        assert len(result.pages) == len(fragments) - 1

    @pytest.mark.asyncio
    async def test_timeout_skips_page(self, monkeypatch):
        settings = RenderSettings(page_timeout_seconds=0.05)
        layout, fragments = _long_layout(settings)
        original = render.rasterize_page

        def slow(layout, fragment, settings):
            if fragment is fragments[0]:
                time.sleep(0.3)
            return original(layout, fragment, settings)

        monkeypatch.setattr(render, "rasterize_page", slow)
        result = await rasterize_pages(layout, fragments, settings)
        assert result.failed == 1
        assert len(result.pages) == len(fragments) - 1

    @pytest.mark.asyncio
    async def test_cancelled(self, render_settings: RenderSettings):
        layout, fragments = _long_layout(render_settings)
        token = CancellationToken()
        token.set()
        with pytest.raises(ConversionCancelled, match="Rendering cancelled"):
            await rasterize_pages(layout, fragments, render_settings, cancel=token)


class TestWritePdf:
    @pytest.mark.asyncio
    async def test_writes_pdf(self, tmp_path: Path, render_settings: RenderSettings):
        layout, fragments = _long_layout(render_settings)
        pages = (await rasterize_pages(layout, fragments, render_settings)).pages
        target = tmp_path / "out.pdf"
        assert write_pdf(pages, target, title="Rows") == target
        assert target.read_bytes().startswith(b"%PDF")
        assert list(tmp_path.iterdir()) == [target]

    def test_with_image(self, tmp_path: Path):
        settings = ConversionSettings(merge_attachments_into_output=True)
        email = _make_email(attachments=[Attachment("p.png", "image/png", _png_bytes(50, 50))])
        layout = _layout(settings, email)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        target = write_pdf([page], tmp_path / "img.pdf")
        assert target.stat().st_size > 0

    def test_zero_pages_rejected(self, tmp_path: Path):
        target = tmp_path / "empty.pdf"
        with pytest.raises(RenderFailure, match="no pages could be rendered"):
            write_pdf([], target)
        assert list(tmp_path.iterdir()) == []

    def test_creates_parent_directory(self, tmp_path: Path, settings: ConversionSettings):
        layout = _layout(settings)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        target = write_pdf([page], tmp_path / "nested" / "a.pdf")
        assert target.exists()

    def test_parent_is_a_file(self, tmp_path: Path, settings: ConversionSettings):
        layout = _layout(settings)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises(OutputWriteError, match="Cannot write output"):
            write_pdf([page], blocker / "a.pdf")

    def test_target_is_a_directory(self, tmp_path: Path, settings: ConversionSettings):
        layout = _layout(settings)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        target = tmp_path / "taken.pdf"
        target.mkdir()
        with pytest.raises(OutputWriteError):
            write_pdf([page], target)
        assert sorted(p.name for p in tmp_path.iterdir()) == ["taken.pdf"]

    def test_canvas_writer_to_buffer(self, settings: ConversionSettings):
        layout = _layout(settings)
        page = rasterize_page(layout, PageFragment(0, len(layout)), settings.render)
        buffer = io.BytesIO()
        writer = PdfCanvasWriter(buffer)
        writer.draw(page)
        writer.save()
        assert writer.page_count == 1
        assert buffer.getvalue().startswith(b"%PDF")
