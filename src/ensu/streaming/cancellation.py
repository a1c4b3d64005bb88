"""Cooperative cancellation shared between a stream's owner and its provider.

The owner calls ``cancel()``; the provider checks ``cancelled`` between
chunks and registers callbacks to propagate the request into its own
transport (aborting an HTTP read, interrupting an on-device engine).
A chunk that was already buffered when the flag flipped may still be read,
but it must not be forwarded.
"""

import asyncio
import logging
from collections.abc import Callable

from ..errors import StreamCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag with callbacks and an awaitable."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None
        self._callbacks: list[Callable[[], object]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Request cancellation.

        Returns:
            True for the first call, False for every later call
        """
        if self._cancelled:
            return False
        self._cancelled = True
        if self._event is not None:
            self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancellation callback failed", exc_info=True)
        return True

    def add_callback(self, callback: Callable[[], object]) -> Callable[[], None]:
        """Run ``callback`` on cancellation (immediately if already cancelled).

        Returns:
            A function that unregisters the callback
        """
        if self._cancelled:
            callback()
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise StreamCancelled("Stream was cancelled")

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()
