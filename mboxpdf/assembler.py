"""DocumentAssembler: rendered pages → PDF documents and archives."""

from __future__ import annotations

import asyncio
import os
import tempfile
import zipfile
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from .config import ConversionSettings
from .content import build_email_content
from .errors import ConversionCancelled, MboxPdfError, OutputWriteError, PartialRenderFailure, RenderFailure
from .layout import TextLayout
from .models import Email
from .naming import attachment_base_name, build_filename, unique_attachment_name
from .pagination import PageBox, PaginationResult, paginate
from .render import RasterizeResult, RenderedPage, rasterize_pages, write_pdf
from .scheduler import AdmissionGate, ProgressReporter
from .shutdown import CancellationToken

logger = structlog.get_logger()

LARGE_BODY_CHARS = 500_000
HUGE_BODY_CHARS = 2_000_000
MANY_LARGE_BODIES = 5


def effective_concurrency(emails: Sequence[Email], limit: int) -> int:
    """Lower *limit* when the batch holds very large bodies."""
    if any(len(e.body) > HUGE_BODY_CHARS for e in emails):
        return min(limit, 2)
    if sum(1 for e in emails if len(e.body) > LARGE_BODY_CHARS) > MANY_LARGE_BODIES:
        return min(limit, 3)
    return limit


@dataclass
class _Laid:
    layout: TextLayout
    pagination: PaginationResult


class DocumentAssembler:
    """Render emails and write them as one combined or several separate PDFs.

    ``failed_pages`` counts pages dropped because they timed out or failed
    to rasterize; documents that still had pages are written anyway.
    """

    def __init__(
        self,
        settings: ConversionSettings,
        *,
        cancel: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> None:
        self._settings = settings
        self._cancel = cancel
        self._progress = progress
        self._box = PageBox.from_settings(settings.render)
        self.failed_pages = 0

    # ------------------------------------------------------------------
    # Per-email rendering
    # ------------------------------------------------------------------

    def _lay_out(self, email: Email, heading_index: int | None) -> _Laid:
        render = self._settings.render
        stream = build_email_content(email, self._settings, heading_index=heading_index)
        layout = TextLayout(stream, self._box.width)
        pagination = paginate(
            layout,
            self._box,
            max_pages=render.max_pages,
            min_advance=render.min_advance,
        )
        if pagination.truncated:
            logger.warning("email_pages_truncated", index=email.index, pages=len(pagination))
        return _Laid(layout, pagination)

    async def render_email(self, email: Email, *, heading_index: int | None = None) -> list[RenderedPage]:
        """Lay out, paginate and rasterize one email."""
        laid = await asyncio.to_thread(self._lay_out, email, heading_index)
        result: RasterizeResult = await rasterize_pages(
            laid.layout,
            laid.pagination.fragments,
            self._settings.render,
            cancel=self._cancel,
            label=f"email {email.index}",
        )
        self.failed_pages += result.failed
        return result.pages

    def _check_cancelled(self) -> None:
        if self._cancel is not None:
            self._cancel.raise_if_set("rendering")

    def _admission_gate(self, emails: Sequence[Email]) -> AdmissionGate:
        limit = effective_concurrency(emails, self._settings.max_concurrency)
        if limit < self._settings.max_concurrency:
            logger.info("render_concurrency_reduced", limit=limit)
        return AdmissionGate(limit)

    def _reporter(self, total: int) -> ProgressReporter | None:
        if self._progress is None:
            return None
        return self._progress.scoped(0.0, 1.0, total=total)

    # ------------------------------------------------------------------
    # Single document
    # ------------------------------------------------------------------

    async def assemble_single(self, emails: Sequence[Email], output_path: str | Path) -> Path:
        """Render every email, in order, into one PDF at *output_path*."""
        if not emails:
            raise RenderFailure(str(output_path), "no emails to render")

        gate = self._admission_gate(emails)
        reporter = self._reporter(len(emails))
        numbered = len(emails) > 1
        rendered: list[list[RenderedPage]] = [[] for _ in emails]
        errors: list[Exception] = []

        async def render_one(position: int, email: Email) -> None:
            async with gate:
                if self._cancel is not None and self._cancel.is_set():
                    return
                try:
                    rendered[position] = await self.render_email(
                        email, heading_index=position + 1 if numbered else None
                    )
                except ConversionCancelled:
                    return
                except Exception as exc:
                    logger.warning("email_render_failed", index=email.index, error=str(exc))
                    errors.append(RenderFailure(f"email {email.index}", str(exc)))
            if reporter is not None:
                await reporter.advance(lambda i, n: f"Rendering email {i} of {n}...")

        async with asyncio.TaskGroup() as tg:
            for position, email in enumerate(emails):
                tg.create_task(render_one(position, email))
        self._check_cancelled()
        if len(errors) == len(emails):
            raise errors[0]

        pages = [page for email_pages in rendered for page in email_pages]
        title = emails[0].subject if len(emails) == 1 else None
        path = await asyncio.to_thread(write_pdf, pages, output_path, title=title)
        if errors:
            raise PartialRenderFailure([path], errors)
        return path

    # ------------------------------------------------------------------
    # One document per email
    # ------------------------------------------------------------------

    async def assemble_separate(self, emails: Sequence[Email], output_dir: str | Path) -> list[Path]:
        """Write one PDF per email into *output_dir*.

        Raises the first error if every document failed, or
        :class:`PartialRenderFailure` carrying the written paths if only
        some did.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        components = self._settings.filename_components
        # Names are fixed up front so concurrent tasks never race on them.
        targets = [
            output_dir / build_filename(email, position, components)
            for position, email in enumerate(emails, start=1)
        ]

        gate = self._admission_gate(emails)
        reporter = self._reporter(len(emails))

        written: dict[int, Path] = {}
        errors: dict[int, Exception] = {}
        lock = asyncio.Lock()

        async def render_one(position: int, email: Email) -> None:
            async with gate:
                if self._cancel is not None and self._cancel.is_set():
                    return
                try:
                    pages = await self.render_email(email)
                    path = await asyncio.to_thread(
                        write_pdf, pages, targets[position], title=email.subject
                    )
                except ConversionCancelled:
                    return
                except Exception as exc:
                    logger.warning("document_render_failed", index=email.index, error=str(exc))
                    if not isinstance(exc, MboxPdfError):
                        exc = RenderFailure(f"email {email.index}", str(exc))
                    async with lock:
                        errors[position] = exc
                else:
                    async with lock:
                        written[position] = path
            if reporter is not None:
                await reporter.advance(lambda i, n: f"Generating PDF {i} of {n}...")

        async with asyncio.TaskGroup() as tg:
            for position, email in enumerate(emails):
                tg.create_task(render_one(position, email))
        self._check_cancelled()

        paths = [written[k] for k in sorted(written)]
        failures = [errors[k] for k in sorted(errors)]
        if failures and not paths:
            raise failures[0]
        if failures:
            raise PartialRenderFailure(paths, failures)
        return paths


# ----------------------------------------------------------------------
# Archives
# ----------------------------------------------------------------------


def create_archive(paths: Iterable[Path], archive_path: str | Path) -> Path:
    """Zip *paths* under their base names, written atomically."""
    archive_path = Path(archive_path)
    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{archive_path.stem}.", suffix=".tmp", dir=archive_path.parent)
    except OSError as exc:
        raise OutputWriteError(archive_path, str(exc)) from exc
    os.close(fd)
    tmp_path = Path(tmp_name)
    count = 0
    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in paths:
                archive.write(path, arcname=path.name)
                count += 1
        os.replace(tmp_path, archive_path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise OutputWriteError(archive_path, str(exc)) from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    logger.info("archive_written", path=str(archive_path), entries=count)
    return archive_path


def bundle_non_mergeable_attachments(emails: Iterable[Email], archive_path: str | Path) -> Path | None:
    """Zip every attachment that cannot be merged into a PDF.

    Returns None, without writing anything, when there is nothing to bundle.
    """
    with tempfile.TemporaryDirectory(prefix="mboxpdf-attachments-") as staging:
        staged: list[Path] = []
        for email in emails:
            attachments = [a for a in email.attachments or [] if not a.mergeable]
            bases = [attachment_base_name(a.filename) for a in attachments]
            counts = Counter(bases)
            seen: Counter[str] = Counter()
            used: set[str] = set()
            for attachment, base in zip(attachments, bases):
                seen[base] += 1
                name = unique_attachment_name(
                    email.index,
                    attachment.filename,
                    occurrence=seen[base],
                    duplicated=counts[base] > 1,
                )
                # A numbered name can still clash with a literal one.
                while name in used:
                    seen[base] += 1
                    name = unique_attachment_name(
                        email.index, attachment.filename, occurrence=seen[base], duplicated=True
                    )
                used.add(name)
                target = Path(staging) / name
                try:
                    target.write_bytes(attachment.data)
                except OSError as exc:
                    raise OutputWriteError(name, str(exc)) from exc
                staged.append(target)

        if not staged:
            logger.info("attachments_bundle_skipped", reason="no non-mergeable attachments")
            return None

        path = create_archive(staged, archive_path)
    logger.info("attachments_bundled", path=str(path), count=len(staged))
    return path
