"""Tests for the progress notifiers."""

from __future__ import annotations

import pytest

from src.models.enums import ExtractionEvent
from src.models.extraction import ProgressEvent, RunResult
from src.services.extraction.progress import (
    CompositeNotifier,
    LoggingProgressNotifier,
    QueueProgressNotifier,
    safe_publish,
)
from tests.fakes import RecordingNotifier


class _BrokenNotifier:
    async def publish(self, event: ProgressEvent) -> None:
        raise ConnectionResetError("websocket closed")


class TestNotifierHelpers:
    @pytest.mark.asyncio
    async def test_helpers_build_events(self):
        notifier = RecordingNotifier()
        await notifier.started()
        await notifier.progress("category-sweep", 12)
        await notifier.completed(RunResult(unique_extracted=12))
        await notifier.error("boom")

        assert notifier.names() == [
            "extraction-started",
            "extraction-progress",
            "extraction-completed",
            "extraction-error",
        ]
        assert notifier.events[1].strategy == "category-sweep"
        assert notifier.events[1].count_so_far == 12
        assert notifier.events[2].result is not None
        assert notifier.events[2].result["unique_extracted"] == 12
        assert notifier.events[3].message == "boom"

    @pytest.mark.asyncio
    async def test_logging_notifier_accepts_every_event(self):
        notifier = LoggingProgressNotifier()
        for event in ExtractionEvent:
            await notifier.publish(ProgressEvent(event=event))


class TestQueueProgressNotifier:
    @pytest.mark.asyncio
    async def test_events_are_queued_in_order(self):
        notifier = QueueProgressNotifier()
        await notifier.started()
        await notifier.progress("direct-paginated-api", 50)

        first = notifier.queue.get_nowait()
        second = notifier.queue.get_nowait()
        assert first.event == ExtractionEvent.STARTED
        assert second.count_so_far == 50

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        notifier = QueueProgressNotifier(maxsize=2)
        for count in (1, 2, 3):
            await notifier.progress("s", count)

        assert notifier.queue.qsize() == 2
        assert [notifier.queue.get_nowait().count_so_far for _ in range(2)] == [2, 3]


class TestCompositeNotifier:
    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        recorder = RecordingNotifier()
        composite = CompositeNotifier(_BrokenNotifier(), recorder)

        await composite.progress("ministry-sweep", 3)

        assert recorder.names() == ["extraction-progress"]

    @pytest.mark.asyncio
    async def test_add_subscriber(self):
        recorder = RecordingNotifier()
        composite = CompositeNotifier()
        composite.add(recorder)
        await composite.started()
        assert len(recorder.events) == 1


class TestSafePublish:
    @pytest.mark.asyncio
    async def test_swallows_and_logs_subscriber_errors(self):
        await safe_publish(_BrokenNotifier(), ProgressEvent(event=ExtractionEvent.STARTED))
