"""Cooperative cancellation and SIGTERM / SIGINT handling."""

from __future__ import annotations

import asyncio
import signal
import threading

import structlog

from .errors import ConversionCancelled

logger = structlog.get_logger()


class CancellationToken:
    """Cancellation flag shared by the event loop and worker threads.

    The splitter and parser run inside worker threads and poll
    :meth:`is_set` synchronously, so a plain asyncio event is not enough.
    """

    def __init__(self) -> None:
        self._flag = threading.Event()

    def is_set(self) -> bool:
        return self._flag.is_set()

    def set(self) -> None:
        self._flag.set()

    def raise_if_set(self, stage: str = "conversion") -> None:
        """Raise :class:`ConversionCancelled` if cancellation was requested."""
        if self._flag.is_set():
            raise ConversionCancelled(stage)


def install_signal_handlers(token: CancellationToken) -> None:
    """Register SIGTERM and SIGINT handlers that set *token*.

    Call this once from the running event loop.  When a signal is
    received the token is set and every pipeline stage stops at its next
    cancellation check.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        token.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)
