"""ConversionJob: MBOX files in, PDF documents and archives out."""

from __future__ import annotations

import asyncio
import functools
import os
import tempfile
import time
from collections.abc import Collection, Sequence
from pathlib import Path

import structlog

from .assembler import DocumentAssembler, bundle_non_mergeable_attachments, create_archive
from .config import ConversionSettings
from .errors import (
    ConversionCancelled,
    InvalidInputError,
    MboxPdfError,
    NoRecordsFoundError,
    PartialRenderFailure,
)
from .models import ConversionStatus, ConversionSummary, Email, ParseOutcome, RawMessage, SkipRecord
from .parser import parse_message
from .scheduler import BatchScheduler, ProgressCallback, ProgressReporter
from .shutdown import CancellationToken
from .splitter import iter_messages

logger = structlog.get_logger()

MBOX_EXTENSIONS = frozenset({".mbox", ".mbx"})
PARSE_DONE = 0.85


def validate_input(path: str | Path) -> Path:
    """Check extension and readability of an MBOX source."""
    path = Path(path)
    if path.suffix.lower() not in MBOX_EXTENSIONS:
        raise InvalidInputError(path, "expected a .mbox or .mbx file")
    if not path.is_file():
        raise InvalidInputError(path, "file does not exist")
    if not os.access(path, os.R_OK):
        raise InvalidInputError(path, "file is not readable")
    return path


def _parse_raw(raw: RawMessage, *, source_file: str, budget: int) -> Email | SkipRecord:
    return parse_message(raw.text, raw.ordinal, source_file, budget)


class ConversionJob:
    """One conversion run over one or more MBOX files.

    Per-message problems become skip records; per-file problems are
    fatal for a single file and recorded-and-skipped when several files
    are converted together.
    """

    def __init__(
        self,
        settings: ConversionSettings | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.settings = settings or ConversionSettings()
        self.cancel = cancel or CancellationToken()
        self.file_errors: list[MboxPdfError] = []

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    async def parse_file(
        self,
        path: str | Path,
        *,
        start_ordinal: int = 1,
        progress: ProgressReporter | None = None,
    ) -> ParseOutcome:
        """Split and parse one file.  Raises :class:`NoRecordsFoundError` if it holds no emails."""
        path = validate_input(path)
        parser_settings = self.settings.parser
        scheduler = BatchScheduler(
            functools.partial(
                _parse_raw,
                source_file=path.name,
                budget=self.settings.max_email_body_size_bytes,
            ),
            batch_size=parser_settings.batch_size,
            max_concurrency=self.settings.max_concurrency,
        )

        with structlog.contextvars.bound_contextvars(source_file=path.name):
            logger.info("mbox_split_started", size_bytes=path.stat().st_size)
            messages = iter_messages(
                path,
                chunk_size=parser_settings.chunk_size,
                cancel=self.cancel,
                start_ordinal=start_ordinal,
            )
            try:
                outcome = await scheduler.process(
                    messages,
                    total_bytes=path.stat().st_size,
                    progress=progress,
                    cancel=self.cancel,
                )
            finally:
                messages.close()

            if not outcome.emails:
                raise NoRecordsFoundError(path)
            logger.info(
                "mbox_parsed",
                parsed=len(outcome.emails),
                skipped=len(outcome.skipped),
                total=outcome.total_processed,
            )
        return outcome

    async def parse_files(
        self,
        paths: Sequence[str | Path],
        *,
        progress: ProgressReporter | None = None,
    ) -> ParseOutcome:
        """Parse *paths* in order; ordinals continue from file to file."""
        if not paths:
            raise InvalidInputError("", "no input files")

        outcome = ParseOutcome()
        count = len(paths)
        for i, path in enumerate(paths):
            scoped = progress.scoped(i / count, (i + 1) / count) if progress else None
            try:
                file_outcome = await self.parse_file(
                    path,
                    start_ordinal=outcome.total_processed + 1,
                    progress=scoped,
                )
            except (InvalidInputError, NoRecordsFoundError) as exc:
                if count == 1:
                    raise
                logger.warning("mbox_file_rejected", path=str(path), error=str(exc))
                self.file_errors.append(exc)
                continue
            outcome.extend(file_outcome)

        if not outcome.emails:
            raise NoRecordsFoundError(", ".join(str(p) for p in paths))
        if progress is not None:
            await progress.report(PARSE_DONE, outcome.summary)
        return outcome

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def convert(
        self,
        paths: Sequence[str | Path],
        output: str | Path,
        *,
        selection: Collection[int] | None = None,
        progress: ProgressCallback | None = None,
    ) -> ConversionSummary:
        """Parse *paths* and write the PDF output to *output*.

        In separate mode *output* is the zip archive holding one PDF per
        email.  Never raises for expected failures; the returned summary
        carries the status.
        """
        started = time.monotonic()
        output = Path(output)
        reporter = ProgressReporter(progress, every=self.settings.parser.progress_every)
        summary = ConversionSummary(
            status=ConversionStatus.SUCCESS,
            files=[str(p) for p in paths],
        )

        try:
            outcome = await self.parse_files(paths, progress=reporter)
            summary.parsed = len(outcome.emails)
            summary.skipped = len(outcome.skipped)
            summary.errors.extend(str(e) for e in self.file_errors)

            emails = outcome.emails
            if selection is not None:
                wanted = set(selection)
                emails = [e for e in emails if e.index in wanted]
            if not emails:
                raise MboxPdfError("No emails match the selection")

            assembler = DocumentAssembler(
                self.settings,
                cancel=self.cancel,
                progress=reporter.scoped(PARSE_DONE, 1.0),
            )
            try:
                if self.settings.separate_outputs:
                    summary.outputs = await self._convert_separate(assembler, emails, output)
                else:
                    path = await assembler.assemble_single(emails, output)
                    summary.outputs = [str(path)]
            except PartialRenderFailure as exc:
                summary.outputs = [str(p) for p in exc.succeeded]
                summary.failed += len(exc.errors)
                summary.errors.extend(str(e) for e in exc.errors)
            summary.failed += assembler.failed_pages

            if self.settings.bundle_non_mergeable_attachments:
                self.cancel.raise_if_set("bundling")
                archive = await asyncio.to_thread(
                    bundle_non_mergeable_attachments,
                    emails,
                    self._attachments_archive_path(output),
                )
                summary.attachments_archive = str(archive) if archive else None

        except ConversionCancelled as exc:
            logger.warning("conversion_cancelled", stage=exc.stage)
            summary.status = ConversionStatus.CANCELLED
            summary.errors.append(str(exc))
        except MboxPdfError as exc:
            logger.error("conversion_failed", error=str(exc))
            summary.status = ConversionStatus.FAILED
            summary.failed += 1
            summary.errors.append(str(exc))
        else:
            if summary.failed or self.file_errors:
                summary.status = ConversionStatus.PARTIAL

        summary.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            "conversion_finished",
            status=summary.status.value,
            parsed=summary.parsed,
            skipped=summary.skipped,
            failed=summary.failed,
            outputs=len(summary.outputs),
            duration_seconds=summary.duration_seconds,
        )
        return summary

    async def _convert_separate(
        self,
        assembler: DocumentAssembler,
        emails: Sequence[Email],
        output: Path,
    ) -> list[str]:
        """Render into a scratch directory, then archive into *output*."""
        with tempfile.TemporaryDirectory(prefix="mboxpdf-") as scratch:
            try:
                paths = await assembler.assemble_separate(emails, scratch)
            except PartialRenderFailure as exc:
                archive = await asyncio.to_thread(create_archive, exc.succeeded, output)
                raise PartialRenderFailure([archive], exc.errors) from exc
            await asyncio.to_thread(create_archive, paths, output)
        return [str(output)]

    def _attachments_archive_path(self, output: Path) -> Path:
        if self.settings.separate_outputs:
            return output.parent / "attachments.zip"
        return output.with_name(f"{output.stem}.attachments.zip")
