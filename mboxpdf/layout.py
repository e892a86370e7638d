"""Styled content streams and line layout.

A :class:`ContentStream` is one flat string plus styled runs covering it.
Every embedded image occupies exactly one ``U+FFFC`` character, so offsets
into the stream address text and images alike.  :class:`TextLayout`
word-wraps the stream to a fixed width using ReportLab font metrics and
assigns every line a vertical position; pagination then works purely on
character offsets.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass
from functools import lru_cache

from reportlab.pdfbase import pdfmetrics

OBJECT_REPLACEMENT = "\ufffc"
IMAGE_PADDING = 6.0

_TOKEN = re.compile(r"\s+|\S+\s*")

# Glyphs the standard PDF fonts lack, mapped to a printable stand-in.
_GLYPH_SUBSTITUTES = {
    "\u2500": "-",
    "\t": " ",
    OBJECT_REPLACEMENT: " ",
}


def printable_glyph(ch: str) -> str:
    """Map *ch* to one character the WinAnsi-encoded base fonts can draw."""
    substitute = _GLYPH_SUBSTITUTES.get(ch)
    if substitute is not None:
        return substitute
    if ch < " " or ch == "\x7f":
        return "?"
    try:
        ch.encode("cp1252")
    except UnicodeEncodeError:
        return "?"
    return ch


def printable_text(text: str) -> str:
    """Apply :func:`printable_glyph` per character; length is preserved."""
    return "".join(printable_glyph(ch) for ch in text)


@lru_cache(maxsize=65536)
def _glyph_width(font_name: str, ch: str) -> float:
    # Width at 1000 pt; callers scale by font size.
    return pdfmetrics.stringWidth(printable_glyph(ch), font_name, 1000)


def text_width(text: str, font_name: str, font_size: float) -> float:
    """Width of *text* in points, as it will be drawn."""
    return sum(_glyph_width(font_name, ch) for ch in text) * font_size / 1000


@dataclass(frozen=True)
class TextStyle:
    font_name: str = "Helvetica"
    font_size: float = 10.0
    line_spacing: float = 1.2

    @property
    def leading(self) -> float:
        return self.font_size * self.line_spacing


@dataclass(frozen=True)
class EmbeddedImage:
    """Image bytes already scaled to their drawn size (in points)."""

    data: bytes
    width: float
    height: float


@dataclass(frozen=True)
class StyledRun:
    start: int
    end: int
    style: TextStyle


class ContentStream:
    """Append-only styled text with inline images."""

    def __init__(self) -> None:
        self.runs: list[StyledRun] = []
        self.images: dict[int, EmbeddedImage] = {}
        self._parts: list[str] = []
        self._length = 0

    def __len__(self) -> int:
        return self._length

    @property
    def text(self) -> str:
        if len(self._parts) > 1:
            self._parts = ["".join(self._parts)]
        return self._parts[0] if self._parts else ""

    def append(self, text: str, style: TextStyle) -> None:
        """Append *text* in *style*.  Runs always end on a line break."""
        if not text:
            return
        if not text.endswith("\n"):
            text += "\n"
        start = self._length
        self._parts.append(text)
        self._length += len(text)
        self.runs.append(StyledRun(start, self._length, style))

    def append_image(self, image: EmbeddedImage, style: TextStyle) -> None:
        offset = self._length
        self.append(OBJECT_REPLACEMENT, style)
        self.images[offset] = image


@dataclass(frozen=True)
class LayoutLine:
    """One laid-out line covering stream offsets ``[start, end)``."""

    start: int
    end: int
    top: float
    height: float
    style: TextStyle
    image: EmbeddedImage | None = None

    @property
    def bottom(self) -> float:
        return self.top + self.height


class TextLayout:
    """Wrap a :class:`ContentStream` to *width* points.

    Lines exactly tile ``[0, len(stream))``: trailing whitespace and the
    line break belong to the line they end.
    """

    def __init__(self, stream: ContentStream, width: float) -> None:
        if width <= 0:
            raise ValueError("layout width must be positive")
        self.stream = stream
        self.width = width
        self.lines: list[LayoutLine] = []
        self._starts: list[int] = []
        self._layout()

    def __len__(self) -> int:
        return len(self.stream)

    @property
    def total_height(self) -> float:
        return self.lines[-1].bottom if self.lines else 0.0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def line_index(self, offset: int) -> int:
        """Index of the line containing *offset*."""
        return max(0, bisect.bisect_right(self._starts, offset) - 1)

    def lines_in(self, start: int, end: int) -> list[LayoutLine]:
        """Lines touched by the range ``[start, end)``."""
        if end <= start or not self.lines:
            return []
        first = self.line_index(start)
        last = bisect.bisect_left(self._starts, end) - 1
        return self.lines[first:last + 1]

    def bounding_height(self, start: int, end: int) -> float:
        """Vertical extent of the lines touched by ``[start, end)``."""
        if end <= start or not self.lines:
            return 0.0
        first = self.lines[self.line_index(start)]
        last = self.lines[bisect.bisect_left(self._starts, end) - 1]
        return last.bottom - first.top

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _add(self, start: int, end: int, height: float, style: TextStyle,
             image: EmbeddedImage | None = None) -> None:
        top = self.lines[-1].bottom if self.lines else 0.0
        self.lines.append(LayoutLine(start, end, top, height, style, image))
        self._starts.append(start)

    def _layout(self) -> None:
        text = self.stream.text
        for run in self.stream.runs:
            pos = run.start
            while pos < run.end:
                newline = text.find("\n", pos, run.end)
                para_end = run.end if newline == -1 else newline
                line_end = run.end if newline == -1 else newline + 1
                image = self.stream.images.get(pos)
                if image is not None and para_end == pos + 1:
                    self._add(pos, line_end, image.height + IMAGE_PADDING, run.style, image)
                else:
                    self._wrap(text, pos, para_end, line_end, run.style)
                pos = line_end

    def _wrap(self, text: str, start: int, para_end: int, line_end: int,
              style: TextStyle) -> None:
        """Greedy word wrap of ``text[start:para_end]``."""
        if para_end == start:
            self._add(start, line_end, style.leading, style)
            return

        font, size = style.font_name, style.font_size
        line_start = start
        used = 0.0
        for token in _TOKEN.finditer(text, start, para_end):
            word = token.group()
            visible = text_width(word.rstrip(), font, size)
            if used and used + visible > self.width:
                self._add(line_start, token.start(), style.leading, style)
                line_start = token.start()
                used = 0.0
            if visible > self.width:
                line_start, used = self._hard_wrap(text, token.start(), token.end(), style)
                continue
            used += text_width(word, font, size)

        self._add(line_start, line_end, style.leading, style)

    def _hard_wrap(self, text: str, start: int, end: int,
                   style: TextStyle) -> tuple[int, float]:
        """Break a word wider than the line at character granularity.

        Emits every full line and returns the start and width of the
        remainder, which stays open for the next token.
        """
        font, size = style.font_name, style.font_size
        line_start = start
        used = 0.0
        for offset in range(start, end):
            advance = _glyph_width(font, text[offset]) * size / 1000
            if used and used + advance > self.width and not text[offset].isspace():
                self._add(line_start, offset, style.leading, style)
                line_start = offset
                used = 0.0
            used += advance
        return line_start, used
