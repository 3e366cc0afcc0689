"""Broadcast channel for pipeline progress snapshots."""

import asyncio
from typing import AsyncIterator, List, Optional

from app.api.v1.features.imagery.mosaic.schemas import ProgressEvent


class ProgressStream:
    """Fan out progress events to any number of subscribers.

    Each subscriber owns an unbounded queue, so a slow observer never stalls
    the pipeline. A subscriber that joins late starts from the latest snapshot.
    """

    def __init__(self) -> None:
        self._queues: List[asyncio.Queue] = []
        self._closed = False
        self.latest: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self.latest = event
        for queue in self._queues:
            queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(None)

    async def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the run finishes.

        Breaking out of the loop unsubscribes without affecting the run.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if self.latest is not None:
            queue.put_nowait(self.latest)
        if self._closed:
            queue.put_nowait(None)
        else:
            self._queues.append(queue)

        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)
