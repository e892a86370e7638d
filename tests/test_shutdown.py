"""Tests for mboxpdf.shutdown."""

from __future__ import annotations

import asyncio
import os
import signal
import threading

import pytest

from mboxpdf.errors import ConversionCancelled
from mboxpdf.shutdown import CancellationToken, install_signal_handlers


class TestCancellationToken:
    def test_initially_clear(self):
        token = CancellationToken()
        assert not token.is_set()
        token.raise_if_set()

    def test_raise_if_set_names_stage(self):
        token = CancellationToken()
        token.set()
        with pytest.raises(ConversionCancelled, match="Parsing cancelled") as exc_info:
            token.raise_if_set("parsing")
        assert exc_info.value.stage == "parsing"

    def test_visible_across_threads(self):
        token = CancellationToken()
        thread = threading.Thread(target=token.set)
        thread.start()
        thread.join()
        assert token.is_set()


class TestInstallSignalHandlers:
    @pytest.mark.asyncio
    async def test_sigterm_sets_token(self):
        token = CancellationToken()
        install_signal_handlers(token)

        assert not token.is_set()
        os.kill(os.getpid(), signal.SIGTERM)
        # The event loop needs an I/O poll cycle to process the signal
        # self-pipe; sleep(0) only runs scheduled callbacks.
        await asyncio.sleep(0.05)
        assert token.is_set()

    @pytest.mark.asyncio
    async def test_multiple_signals_are_idempotent(self):
        token = CancellationToken()
        install_signal_handlers(token)

        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(0.05)
        assert token.is_set()

    @pytest.mark.asyncio
    async def test_handlers_registered_for_both_signals(self):
        install_signal_handlers(CancellationToken())
        loop = asyncio.get_running_loop()

        assert loop.remove_signal_handler(signal.SIGTERM) is True
        assert loop.remove_signal_handler(signal.SIGINT) is True
