from __future__ import annotations

import asyncio
from typing import Protocol

from crm_voice.telemetry.logging import get_logger


class ManualInputSource(Protocol):
    async def request(self, prompt: str) -> str | None:
        """Return the typed text, or None when the user declines."""
        ...

    def cancel(self) -> None:
        """Settle an outstanding :meth:`request` with None; no-op when idle."""
        ...


class ConsoleManualInput:
    """Reads one line from stdin.

    A blocked ``input()`` call cannot be interrupted; after :meth:`cancel` the
    line it eventually returns is discarded by the caller.
    """

    async def request(self, prompt: str) -> str | None:
        try:
            return await asyncio.to_thread(input, f"{prompt}\n> ")
        except EOFError:
            return None

    def cancel(self) -> None:
        return None


class PendingManualInput:
    """Manual input answered out-of-band, e.g. by a later HTTP request."""

    def __init__(self, wait_seconds: float = 120.0) -> None:
        self._wait_seconds = wait_seconds
        self._pending: asyncio.Future[str | None] | None = None
        self._prompt: str | None = None
        self._logger = get_logger(__name__)

    @property
    def prompt(self) -> str | None:
        return self._prompt if self.waiting else None

    @property
    def waiting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def request(self, prompt: str) -> str | None:
        if self.waiting:
            raise RuntimeError("manual input already requested")
        pending = asyncio.get_running_loop().create_future()
        self._pending = pending
        self._prompt = prompt
        self._logger.info("manual_input.requested")
        try:
            return await asyncio.wait_for(pending, timeout=self._wait_seconds)
        except asyncio.TimeoutError:
            self._logger.info("manual_input.expired")
            return None
        finally:
            if self._pending is pending:
                self._pending = None
                self._prompt = None

    def submit(self, text: str) -> bool:
        if not self.waiting:
            return False
        assert self._pending is not None
        self._pending.set_result(text)
        return True

    def decline(self) -> bool:
        if not self.waiting:
            return False
        assert self._pending is not None
        self._pending.set_result(None)
        return True

    def cancel(self) -> None:
        if self.decline():
            self._logger.info("manual_input.cancelled")


__all__ = ["ConsoleManualInput", "ManualInputSource", "PendingManualInput"]
