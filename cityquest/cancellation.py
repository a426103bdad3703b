"""Cancellation tokens for relay consumption loops.

A token is handed to every loop that drains a relay stream. Loops check it
at each suspension point (each received chunk, each upstream call), so
starting a new adventure stops the previous drain deterministically.
"""

import asyncio

from .errors import StreamCancelled


class CancelToken:
    """One-shot cancellation flag shared between a producer and its consumer."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelled("Stream consumption was cancelled")

    async def wait(self) -> None:
        await self._event.wait()
