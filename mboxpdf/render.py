"""Page rasterizer and PDF writer.

:func:`rasterize_page` turns one :class:`~mboxpdf.models.PageFragment`
into positioned drawing operations; :class:`PdfCanvasWriter` replays them
on a ReportLab canvas.  Coordinates are PDF points with the origin at the
bottom-left corner of the page.
"""

from __future__ import annotations

import asyncio
import io
import os
import tempfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .config import RenderSettings
from .errors import OutputWriteError, RenderFailure
from .layout import TextLayout, printable_text
from .models import PageFragment
from .shutdown import CancellationToken

logger = structlog.get_logger()

# Baseline sits this fraction of the font size below the line top.
_ASCENT = 0.8


@dataclass(frozen=True)
class DrawText:
    x: float
    y: float
    text: str
    font_name: str
    font_size: float


@dataclass(frozen=True)
class DrawImage:
    x: float
    y: float
    width: float
    height: float
    data: bytes


@dataclass
class RenderedPage:
    """Drawing operations for one page."""

    width: float
    height: float
    operations: list[DrawText | DrawImage] = field(default_factory=list)
    footer: DrawText | None = None


@dataclass
class RasterizeResult:
    pages: list[RenderedPage] = field(default_factory=list)
    failed: int = 0


def rasterize_page(
    layout: TextLayout,
    fragment: PageFragment,
    settings: RenderSettings,
) -> RenderedPage:
    """Position the lines of *fragment*, clipped to its range."""
    page = RenderedPage(width=settings.page_width, height=settings.page_height)
    lines = layout.lines_in(fragment.start, fragment.end)
    if lines:
        origin = lines[0].top
        text = layout.stream.text
        content_top = settings.page_height - settings.margin
        for line in lines:
            top = content_top - (line.top - origin)
            if line.image is not None:
                page.operations.append(
                    DrawImage(
                        x=settings.margin,
                        y=top - line.image.height,
                        width=line.image.width,
                        height=line.image.height,
                        data=line.image.data,
                    )
                )
                continue
            start = max(line.start, fragment.start)
            end = min(line.end, fragment.end)
            segment = text[start:end].rstrip()
            if not segment:
                continue
            page.operations.append(
                DrawText(
                    x=settings.margin,
                    y=top - line.style.font_size * _ASCENT,
                    text=printable_text(segment),
                    font_name=line.style.font_name,
                    font_size=line.style.font_size,
                )
            )

    if fragment.footer_label:
        page.footer = DrawText(
            x=settings.page_width / 2,
            y=settings.margin + (settings.footer_reserve - settings.footer_font_size) / 2,
            text=fragment.footer_label,
            font_name=settings.font_name,
            font_size=settings.footer_font_size,
        )
    return page


async def rasterize_pages(
    layout: TextLayout,
    fragments: Sequence[PageFragment],
    settings: RenderSettings,
    *,
    cancel: CancellationToken | None = None,
    label: str = "",
) -> RasterizeResult:
    """Rasterize *fragments* in order, each in a worker thread.

    A page that fails or exceeds ``page_timeout_seconds`` is omitted and
    counted in ``failed``; the remaining pages are kept.
    """
    result = RasterizeResult()
    for number, fragment in enumerate(fragments, start=1):
        if cancel is not None:
            cancel.raise_if_set("rendering")
        try:
            page = await asyncio.wait_for(
                asyncio.to_thread(rasterize_page, layout, fragment, settings),
                timeout=settings.page_timeout_seconds,
            )
        except TimeoutError:
            result.failed += 1
            logger.warning(
                "page_render_timeout",
                document=label,
                page=number,
                timeout=settings.page_timeout_seconds,
            )
            continue
        except Exception as exc:
            result.failed += 1
            logger.warning("page_render_failed", document=label, page=number, error=str(exc))
            continue
        result.pages.append(page)
    return result


class PdfCanvasWriter:
    """Replay :class:`RenderedPage` operations onto a ReportLab canvas."""

    def __init__(self, target: str | Path | io.BytesIO, *, title: str | None = None) -> None:
        if isinstance(target, Path):
            target = str(target)
        self._canvas = canvas.Canvas(target, pageCompression=1)
        if title:
            self._canvas.setTitle(title)
        self._canvas.setCreator("mboxpdf")
        self.page_count = 0

    def draw(self, page: RenderedPage) -> None:
        c = self._canvas
        c.setPageSize((page.width, page.height))
        for op in page.operations:
            if isinstance(op, DrawImage):
                c.drawImage(ImageReader(io.BytesIO(op.data)), op.x, op.y, op.width, op.height)
            else:
                c.setFont(op.font_name, op.font_size)
                c.drawString(op.x, op.y, op.text)
        if page.footer is not None:
            c.setFont(page.footer.font_name, page.footer.font_size)
            c.drawCentredString(page.footer.x, page.footer.y, page.footer.text)
        c.showPage()
        self.page_count += 1

    def save(self) -> None:
        self._canvas.save()


def write_pdf(pages: Iterable[RenderedPage], path: str | Path, *, title: str | None = None) -> Path:
    """Write *pages* to *path* atomically.

    The document is written to a temporary file next to *path* and
    renamed into place; on any failure the temporary file is removed and
    *path* is left untouched.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise OutputWriteError(path, str(exc)) from exc
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        writer = PdfCanvasWriter(tmp_path, title=title)
        for page in pages:
            writer.draw(page)
        if writer.page_count == 0:
            raise RenderFailure(path.name, "no pages could be rendered")
        writer.save()
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise OutputWriteError(path, str(exc)) from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info("pdf_written", path=str(path), pages=writer.page_count)
    return path
