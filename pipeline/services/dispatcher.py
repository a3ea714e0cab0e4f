"""
Intake dispatcher.

Consumes a stream of eligible messages and runs each one through the
processor, never more than `concurrency_limit` at a time. The stream is
any async iterable of RawMessage; PollingFeed is the one shipped here.
"""

import asyncio
import logging
from typing import AsyncIterator, Protocol

from pipeline.db.models import RawMessage
from pipeline.db.repository import DocumentStore
from pipeline.services.processor import MessageProcessor, ProcessingOutcome

logger = logging.getLogger(__name__)


class MessageFeed(Protocol):
    def __aiter__(self) -> AsyncIterator[RawMessage]: ...


class PollingFeed:
    """Pulls unprocessed, unclaimed messages from the store on a fixed interval."""

    def __init__(self, store: DocumentStore, interval: float = 2.0, batch_size: int = 5):
        self.store = store
        self.interval = interval
        self.batch_size = batch_size
        self._stopped = asyncio.Event()

    async def poll_once(self) -> list[RawMessage]:
        return await self.store.fetch_eligible(self.batch_size)

    def stop(self) -> None:
        self._stopped.set()

    async def __aiter__(self) -> AsyncIterator[RawMessage]:
        while not self._stopped.is_set():
            try:
                batch = await self.poll_once()
            except Exception:
                logger.exception("Polling error")
                batch = []

            for message in batch:
                yield message

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass


class IntakeDispatcher:
    def __init__(self, processor: MessageProcessor, feed: MessageFeed, concurrency_limit: int = 5):
        self.processor = processor
        self.feed = feed
        self.concurrency_limit = concurrency_limit
        self._semaphore = asyncio.Semaphore(concurrency_limit)
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self.running = False

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self) -> None:
        """Admit messages from the feed until it ends or the task is cancelled."""
        logger.info("Starting intake dispatcher (concurrency %d)", self.concurrency_limit)
        self.running = True
        try:
            async for message in self.feed:
                await self.admit(message.id)
        finally:
            self.running = False
            logger.info("Intake dispatcher stopped")

    async def admit(self, message_id: str) -> asyncio.Task | None:
        """
        Wait for a free slot and start processing `message_id` in the background.
        Returns None if the message is already in flight in this process.
        """
        if message_id in self._in_flight:
            return None

        await self._semaphore.acquire()
        self._in_flight.add(message_id)
        task = asyncio.create_task(self._process(message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(self, message_ids: list[str]) -> list[ProcessingOutcome | None]:
        """Process a fixed batch and wait for all of it."""
        tasks = [await self.admit(message_id) for message_id in message_ids]
        started = [task for task in tasks if task is not None]
        results = iter(await asyncio.gather(*started))
        return [next(results) if task is not None else None for task in tasks]

    async def run_once(self, feed: PollingFeed) -> list[ProcessingOutcome | None]:
        batch = await feed.poll_once()
        return await self.dispatch([message.id for message in batch])

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _process(self, message_id: str) -> ProcessingOutcome | None:
        try:
            return await self.processor.process(message_id)
        except Exception:
            # The processor contains its own failures; this only catches claim errors
            logger.exception("Unhandled error processing message %s", message_id)
            return None
        finally:
            self._in_flight.discard(message_id)
            self._semaphore.release()
