"""BatchScheduler: bounded-concurrency parsing that preserves input order.

Raw messages are pulled from the (sequential) splitter in batches.  Each
batch fans out into one task per message inside an
:class:`asyncio.TaskGroup`; an :class:`AdmissionGate` bounds how many
parse calls run in worker threads at once.  After the batch joins, its
results are sorted by ordinal and appended to the outcome, so completion
order never leaks into the output.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import os
from collections.abc import Awaitable, Callable, Iterable, Iterator
from types import TracebackType

import structlog

from .models import Email, ParseOutcome, RawMessage, SkipRecord
from .shutdown import CancellationToken

logger = structlog.get_logger()

ProgressCallback = Callable[[float, str], Awaitable[None] | None]
ParseFn = Callable[[RawMessage], Email | SkipRecord]

MAX_DEFAULT_CONCURRENCY = 8


def default_concurrency() -> int:
    """Hardware parallelism, capped low."""
    return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_CONCURRENCY))


class AdmissionGate:
    """Counting gate bounding the number of tasks inside ``async with``.

    The slot is released on exit whether the body returned or raised.
    ``peak`` records the highest number of simultaneous holders.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.in_flight = 0
        self.peak = 0
        self._semaphore = asyncio.Semaphore(limit)

    async def __aenter__(self) -> AdmissionGate:
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.in_flight -= 1
        self._semaphore.release()


class ProgressReporter:
    """Throttled progress callback.

    Fractions are mapped into ``[start, end]`` so one stage can own a
    slice of the overall job.  :meth:`advance` counts completed units and
    reports every ``every`` units and on completion.
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        *,
        total: int = 0,
        every: int = 10,
        start: float = 0.0,
        end: float = 1.0,
    ) -> None:
        self._callback = callback
        self._total = total
        self._every = max(1, every)
        self._start = start
        self._end = end
        self._completed = 0
        self._last_reported = 0
        self._lock = asyncio.Lock()

    @property
    def completed(self) -> int:
        return self._completed

    def scoped(self, start: float, end: float, *, total: int = 0) -> ProgressReporter:
        """A reporter for a sub-range of this reporter's range."""
        span = self._end - self._start
        return ProgressReporter(
            self._callback,
            total=total,
            every=self._every,
            start=self._start + start * span,
            end=self._start + end * span,
        )

    async def report(self, fraction: float, message: str) -> None:
        if self._callback is None:
            return
        fraction = min(max(fraction, 0.0), 1.0)
        scaled = self._start + fraction * (self._end - self._start)
        result = self._callback(scaled, message)
        if inspect.isawaitable(result):
            await result

    async def advance(self, message: Callable[[int, int], str]) -> None:
        """Mark one unit done; *message* receives ``(completed, total)``."""
        async with self._lock:
            self._completed += 1
            done = self._completed
            due = done == self._total or done - self._last_reported >= self._every
            if due:
                self._last_reported = done
        if due:
            fraction = done / self._total if self._total else 1.0
            await self.report(fraction, message(done, self._total))


def _take(iterator: Iterator[RawMessage], size: int) -> list[RawMessage]:
    return list(itertools.islice(iterator, size))


class BatchScheduler:
    """Parse raw messages in ordered batches under bounded concurrency."""

    def __init__(
        self,
        parse_fn: ParseFn,
        *,
        batch_size: int = 100,
        max_concurrency: int | None = None,
        progress_span: tuple[float, float] = (0.0, 0.8),
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._parse_fn = parse_fn
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency or default_concurrency()
        self._progress_span = progress_span
        self.gate: AdmissionGate | None = None

    async def process(
        self,
        messages: Iterable[RawMessage],
        *,
        total_bytes: int = 0,
        progress: ProgressReporter | None = None,
        cancel: CancellationToken | None = None,
    ) -> ParseOutcome:
        """Consume *messages* and return an ordered :class:`ParseOutcome`.

        Raises :class:`~mboxpdf.errors.ConversionCancelled` if *cancel* is
        set; the batch in flight is discarded.
        """
        self.gate = AdmissionGate(self._max_concurrency)
        outcome = ParseOutcome()
        iterator = iter(messages)
        lo, hi = self._progress_span

        while True:
            if cancel is not None:
                cancel.raise_if_set("parsing")

            # The splitter reads the file; keep that off the event loop.
            batch = await asyncio.to_thread(_take, iterator, self._batch_size)
            if not batch:
                break

            results = await self._run_batch(batch, cancel)
            if cancel is not None:
                cancel.raise_if_set("parsing")

            results.sort(key=lambda r: r.index)
            for result in results:
                if isinstance(result, SkipRecord):
                    outcome.skipped.append(result)
                    logger.warning("email_skipped", index=result.index, reason=result.reason)
                else:
                    outcome.emails.append(result)
            outcome.total_processed += len(batch)

            logger.debug(
                "batch_parsed",
                size=len(batch),
                first=batch[0].ordinal,
                last=batch[-1].ordinal,
                peak_concurrency=self.gate.peak,
            )
            if progress is not None:
                consumed = batch[-1].bytes_consumed
                fraction = consumed / total_bytes if total_bytes else 0.0
                await progress.report(
                    lo + fraction * (hi - lo),
                    f"Parsed {outcome.total_processed} emails...",
                )

        return outcome

    async def _run_batch(
        self,
        batch: list[RawMessage],
        cancel: CancellationToken | None,
    ) -> list[Email | SkipRecord]:
        assert self.gate is not None
        gate = self.gate
        results: list[Email | SkipRecord] = []
        lock = asyncio.Lock()

        async def parse_one(raw: RawMessage) -> None:
            async with gate:
                if cancel is not None and cancel.is_set():
                    return
                try:
                    result = await asyncio.to_thread(self._parse_fn, raw)
                except Exception as exc:
                    logger.exception("parse_task_failed", index=raw.ordinal)
                    result = SkipRecord(index=raw.ordinal, reason=f"Parse error: {exc}")
            async with lock:
                results.append(result)

        async with asyncio.TaskGroup() as tg:
            for raw in batch:
                tg.create_task(parse_one(raw))

        return results
