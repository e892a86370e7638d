"""StreamingSplitter: delimit MBOX messages without loading the whole file.

The source is read in fixed-size chunks; the trailing partial line of
each chunk is carried over to the next one.  A line starting with
``"From "`` begins a new message whenever the current one is non-empty.
Body lines that happen to start with ``"From "`` are indistinguishable
from real boundaries; that ambiguity is inherent to MBOX and is kept.
"""

from __future__ import annotations

import codecs
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

import structlog

from .models import RawMessage
from .parser import BOUNDARY_MARKER
from .shutdown import CancellationToken

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 1024 * 1024


class _ChunkDecoder:
    """UTF-8 incremental decoding with a per-chunk Latin-1 fallback."""

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")()

    def decode(self, chunk: bytes, final: bool = False) -> str:
        pending, _ = self._utf8.getstate()
        try:
            return self._utf8.decode(chunk, final)
        except UnicodeDecodeError:
            self._utf8.reset()
            return (pending + chunk).decode("latin-1")


class StreamingSplitter:
    """Lazily split a byte stream into :class:`RawMessage` spans in file order.

    The returned iterator can only be restarted by calling :meth:`split`
    again on a fresh (or rewound) source.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: CancellationToken | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size
        self._cancel = cancel

    def split(self, source: BinaryIO, *, start_ordinal: int = 1) -> Iterator[RawMessage]:
        decoder = _ChunkDecoder()
        ordinal = start_ordinal
        bytes_read = 0
        carry = ""
        current: list[str] = []

        def flush() -> RawMessage:
            nonlocal ordinal
            message = RawMessage(
                ordinal=ordinal,
                text="\n".join(current) + "\n",
                bytes_consumed=bytes_read,
            )
            ordinal += 1
            current.clear()
            return message

        while True:
            if self._cancel is not None:
                self._cancel.raise_if_set("parsing")

            chunk = source.read(self._chunk_size)
            final = not chunk
            bytes_read += len(chunk)

            text = carry + decoder.decode(chunk, final)
            # A CR at the very end may be the first half of a CRLF pair.
            hold = ""
            if not final and text.endswith("\r"):
                text, hold = text[:-1], "\r"
            text = text.replace("\r\n", "\n").replace("\r", "\n")

            lines = text.split("\n")
            carry = "" if final else lines.pop() + hold
            if final and lines and lines[-1] == "":
                lines.pop()

            for line in lines:
                if line.startswith(BOUNDARY_MARKER) and current:
                    yield flush()
                current.append(line)

            if final:
                break

        if current:
            yield flush()

        logger.debug("mbox_split_complete", messages=ordinal - start_ordinal, bytes_read=bytes_read)


def iter_messages(
    path: str | Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    cancel: CancellationToken | None = None,
    start_ordinal: int = 1,
) -> Iterator[RawMessage]:
    """Open *path* and yield its messages; the file is closed when iteration ends."""
    splitter = StreamingSplitter(chunk_size=chunk_size, cancel=cancel)
    with open(path, "rb") as source:
        yield from splitter.split(source, start_ordinal=start_ordinal)
