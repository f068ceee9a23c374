"""Progress push channel for extraction runs.

The pipeline publishes :class:`ProgressEvent` messages (started, progress,
completed, error).  Delivery is fire-and-forget from the run's point of
view: a subscriber that raises is logged and skipped, never propagated.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

import structlog

from src.models.enums import ExtractionEvent
from src.models.extraction import ProgressEvent, RunResult

logger = structlog.get_logger(__name__)


@runtime_checkable
class ProgressNotifier(Protocol):
    async def publish(self, event: ProgressEvent) -> None: ...


class BaseProgressNotifier:
    """Convenience helpers on top of :meth:`publish`."""

    async def publish(self, event: ProgressEvent) -> None:
        raise NotImplementedError

    async def started(self, message: str | None = None) -> None:
        await self.publish(ProgressEvent(event=ExtractionEvent.STARTED, message=message))

    async def progress(self, strategy: str, count_so_far: int) -> None:
        await self.publish(
            ProgressEvent(
                event=ExtractionEvent.PROGRESS,
                strategy=strategy,
                count_so_far=count_so_far,
            )
        )

    async def completed(self, result: RunResult) -> None:
        await self.publish(ProgressEvent(event=ExtractionEvent.COMPLETED, result=result.to_dict()))

    async def error(self, message: str) -> None:
        await self.publish(ProgressEvent(event=ExtractionEvent.ERROR, message=message))


class LoggingProgressNotifier(BaseProgressNotifier):
    """Writes every event to the structured log."""

    async def publish(self, event: ProgressEvent) -> None:
        log = logger.warning if event.event == ExtractionEvent.ERROR else logger.info
        log(
            "extraction.progress_event",
            progress_event=str(event.event),
            strategy=event.strategy,
            count_so_far=event.count_so_far,
            message=event.message,
        )


class QueueProgressNotifier(BaseProgressNotifier):
    """Pushes events onto an :class:`asyncio.Queue` for a websocket bridge.

    When the queue is bounded and full the oldest event is dropped so a slow
    consumer never stalls extraction.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=maxsize)

    async def publish(self, event: ProgressEvent) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            logger.debug("progress.queue_overflow", dropped=1)
        self.queue.put_nowait(event)


class CompositeNotifier(BaseProgressNotifier):
    """Fans each event out to several notifiers."""

    def __init__(self, *notifiers: ProgressNotifier) -> None:
        self._notifiers = list(notifiers)

    def add(self, notifier: ProgressNotifier) -> None:
        self._notifiers.append(notifier)

    async def publish(self, event: ProgressEvent) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.publish(event)
            except Exception:
                logger.warning(
                    "progress.subscriber_failed",
                    subscriber=type(notifier).__name__,
                    progress_event=str(event.event),
                    exc_info=True,
                )


async def safe_publish(notifier: ProgressNotifier, event: ProgressEvent) -> None:
    """Publish *event*, logging instead of raising if the notifier fails."""
    try:
        await notifier.publish(event)
    except Exception:
        logger.warning(
            "progress.publish_failed",
            subscriber=type(notifier).__name__,
            progress_event=str(event.event),
            exc_info=True,
        )
