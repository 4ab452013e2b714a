"""
Progress channel and cancellation token for cooperative ingestion.
"""

import asyncio
from typing import AsyncIterator, List, Optional

from keyed_ingest.core.exceptions import IngestionCancelledError
from keyed_ingest.schemas.progress import ProgressEvent


class CancellationToken:
    """Checked by the coordinator between chunks and write batches."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, file_id: Optional[str] = None) -> None:
        if self.cancelled:
            raise IngestionCancelledError(file_id)


class ProgressChannel:
    """
    Single-consumer stream of progress events.

    The producer publishes without blocking; the consumer iterates with
    ``async for`` until the producer closes the channel. A consumer that
    stops listening calls ``aclose``, which cancels the linked token.
    """

    _CLOSED = object()

    def __init__(self, token: Optional[CancellationToken] = None, history: bool = False):
        self.token = token
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._history: Optional[List[ProgressEvent]] = [] if history else None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def events(self) -> List[ProgressEvent]:
        """Every event published so far, when created with ``history=True``."""
        return list(self._history or [])

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        if self._history is not None:
            self._history.append(event)
        self._queue.put_nowait(event)

    def close(self) -> None:
        """Producer side: no more events."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def aclose(self) -> None:
        """Consumer side: stop listening and request cancellation."""
        if self.token is not None:
            self.token.cancel("progress consumer closed")
        self.close()

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
