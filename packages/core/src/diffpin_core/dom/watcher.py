"""Debounced re-mapping of comments when the rendered page changes.

Pages load diffs progressively, so a comment whose file is not rendered yet
may become placeable moments later. A ``DomChangeFeed`` carries "page changed"
signals from whatever observes the page; ``RemapWatcher`` coalesces bursts of
them and re-runs the mapping once the page has been quiet for a short while.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

from diffpin_core.errors import DiffpinError

logger = logging.getLogger(__name__)

_CLOSED = object()


class DomChangeFeed:
    """Async stream of change signals. ``reset()`` makes a closed feed usable again."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self, signal: Any = None) -> None:
        if not self._closed:
            self._queue.put_nowait(signal)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def reset(self) -> None:
        self._queue = asyncio.Queue()
        self._closed = False

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        queue = self._queue
        while True:
            signal = await queue.get()
            if signal is _CLOSED:
                return
            yield signal


async def _next(iterator: AsyncIterator[Any]) -> Any:
    return await iterator.__anext__()


async def debounce(source: AsyncIterable[Any], quiet: float) -> AsyncIterator[Any]:
    """Yield the latest item of each burst once ``quiet`` seconds pass without a new one.

    A burst still pending when the source ends is flushed before stopping.
    """
    iterator = source.__aiter__()
    pending = False
    latest: Any = None
    fetch = asyncio.create_task(_next(iterator))
    try:
        while True:
            done, _ = await asyncio.wait({fetch}, timeout=quiet if pending else None)
            if fetch not in done:
                pending = False
                yield latest
                continue
            try:
                latest = fetch.result()
            except StopAsyncIteration:
                if pending:
                    yield latest
                return
            pending = True
            fetch = asyncio.create_task(_next(iterator))
    finally:
        if not fetch.done():
            fetch.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await fetch


class RemapWatcher:
    """Re-run ``remap`` after page changes settle, and poll until something maps.

    ``remap`` returns the number of comments it managed to place.
    """

    def __init__(
        self,
        source: AsyncIterable[Any],
        remap: Callable[[], int],
        *,
        quiet: float = 0.09,
        retry_interval: float = 0.7,
        max_retries: int = 12,
    ) -> None:
        self._source = source
        self._remap = remap
        self._quiet = quiet
        self._retry_interval = retry_interval
        self._max_retries = max_retries
        self._task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self.retries_remaining = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._watch())
        logger.info("Remap watcher started")

    async def stop(self) -> None:
        tasks = [t for t in (self._task, self._retry_task) if t is not None]
        self.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Remap watcher stopped")

    def cancel(self) -> None:
        for task in (self._task, self._retry_task):
            if task is not None and not task.done():
                task.cancel()
        self._task = None
        self._retry_task = None
        self.retries_remaining = 0

    def start_retry_loop(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            return
        self.retries_remaining = self._max_retries
        self._retry_task = asyncio.create_task(self._retry())

    def remap_now(self) -> int | None:
        """Run the remap callback once.

        Returns the number of comments placed, or None when the callback
        raised something other than a ``DiffpinError``. A broken callback
        is not retried; the watcher keeps listening for the next change.
        """
        try:
            return int(self._remap() or 0)
        except DiffpinError as e:
            logger.warning("Remap failed: %s", e)
            return 0
        except Exception:
            logger.exception("Error in remap callback")
            return None

    async def _watch(self) -> None:
        async for _ in debounce(self._source, self._quiet):
            if self.remap_now() == 0:
                # Nothing placed yet; the page may still be loading diffs.
                self.start_retry_loop()

    async def _retry(self) -> None:
        try:
            while self.retries_remaining > 0:
                await asyncio.sleep(self._retry_interval)
                self.retries_remaining -= 1
                placed = self.remap_now()
                if placed is None:
                    logger.debug("Remap callback failed; stopping retry loop")
                    break
                if placed > 0:
                    logger.debug("Retry loop placed comments; stopping")
                    break
        finally:
            self.retries_remaining = 0
