"""End-to-end tests for the extraction pipeline with scripted transports."""

from __future__ import annotations

import asyncio

import pytest

from config.settings import Settings
from src.models.enums import ExtractionEvent
from src.models.extraction import ExtractionOptions
from src.services.extraction.errors import TransportInitError
from src.services.extraction.pipeline import ExtractionPipeline, run_extraction
from src.services.extraction.store import InMemorySchemeStore, JsonFileSchemeStore
from tests.fakes import (
    BlockingTransport,
    FakeTransport,
    FlakyStore,
    RecordingNotifier,
    api_item,
    hits_payload,
    query_of,
)

_EXAMPLE_PAYLOAD = {
    "data": {"hits": {"items": [{"id": "S1", "fields": {"schemeName": "Test Yojana", "ministry": "M1"}}]}}
}


def _options(**overrides) -> ExtractionOptions:
    values = {"inter_request_delay_ms": 0, "max_pages_per_strategy": 2}
    values.update(overrides)
    return ExtractionOptions(**values)


def _example_direct(url: str):
    query = query_of(url)
    if query.get("q") == "[]" and query.get("from") == "0":
        return _EXAMPLE_PAYLOAD
    return None


@pytest.fixture
def settings() -> Settings:
    return Settings(transport="http")


class TestExtractionPipeline:
    @pytest.mark.asyncio
    async def test_example_is_idempotent_across_runs(self, settings):
        store = InMemorySchemeStore()
        pipeline = ExtractionPipeline(
            store,
            notifier=RecordingNotifier(),
            transport_factory=lambda: FakeTransport(direct=_example_direct),
            settings=settings,
        )

        first = await pipeline.run(_options())
        second = await pipeline.run(_options())

        assert first.unique_extracted == 1
        assert (first.created, first.updated) == (1, 0)
        assert (second.created, second.updated) == (0, 1)
        assert pipeline.last_result is second

        stored = store.all()
        assert len(stored) == 1
        assert stored[0].external_id == "S1"
        assert stored[0].ministry == "M1"

    @pytest.mark.asyncio
    async def test_event_sequence(self, settings):
        notifier = RecordingNotifier()
        pipeline = ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=notifier,
            transport_factory=lambda: FakeTransport(direct=_example_direct),
            settings=settings,
        )
        result = await pipeline.run(_options(ingest_batch_size=1))

        names = notifier.names()
        assert names[0] == "extraction-started"
        assert names[-1] == "extraction-completed"
        assert "extraction-error" not in names
        assert notifier.events[-1].result == result.to_dict()

        ingestion = [e for e in notifier.events if e.strategy == "ingestion"]
        assert len(ingestion) == 1
        assert ingestion[0].count_so_far == 1

    @pytest.mark.asyncio
    async def test_empty_transport_uses_bundled_seed(self, settings):
        store = InMemorySchemeStore()
        result = await ExtractionPipeline(
            store,
            notifier=RecordingNotifier(),
            transport_factory=FakeTransport,
            settings=settings,
        ).run(_options())

        assert result.used_seed_fallback is True
        assert result.seed_version is not None
        assert result.unique_extracted >= 1
        assert result.created == result.unique_extracted
        assert all(r.source_label == "sample-data-fallback" for r in store.all())

    @pytest.mark.asyncio
    async def test_persist_false_skips_store(self, settings):
        store = InMemorySchemeStore()
        result = await ExtractionPipeline(
            store,
            notifier=RecordingNotifier(),
            transport_factory=lambda: FakeTransport(direct=_example_direct),
            settings=settings,
        ).run(_options(persist=False))

        assert result.unique_extracted == 1
        assert result.created == result.updated == 0
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_store_failures_are_counted(self, settings):
        def direct(url: str):
            if query_of(url).get("q") == "[]" and query_of(url)["from"] == "0":
                return hits_payload(api_item("S1", "One"), api_item("S2", "Two"))
            return None

        result = await ExtractionPipeline(
            FlakyStore(reject={"S2"}),
            notifier=RecordingNotifier(),
            transport_factory=lambda: FakeTransport(direct=direct),
            settings=settings,
        ).run(_options())

        assert (result.created, result.updated, result.failed) == (1, 0, 1)
        assert any("S2" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_json_store_is_flushed(self, settings, tmp_path):
        path = tmp_path / "extracted.json"
        await ExtractionPipeline(
            JsonFileSchemeStore(path),
            notifier=RecordingNotifier(),
            transport_factory=lambda: FakeTransport(direct=_example_direct),
            settings=settings,
        ).run(_options())

        assert path.exists()
        assert "Test Yojana" in path.read_text(encoding="utf-8")


class TestTransportLifecycle:
    @pytest.mark.asyncio
    async def test_init_failure_emits_error_and_raises(self, settings):
        notifier = RecordingNotifier()
        pipeline = ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=notifier,
            transport_factory=lambda: FakeTransport(fail_open=True),
            settings=settings,
        )

        with pytest.raises(TransportInitError):
            await pipeline.run(_options())

        assert notifier.names() == ["extraction-started", "extraction-error"]
        assert "Chromium" in (notifier.events[-1].message or "")
        assert pipeline.last_result is None

    @pytest.mark.asyncio
    async def test_transport_closed_after_success(self, settings):
        transport = FakeTransport(direct=_example_direct)
        await ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=RecordingNotifier(),
            transport_factory=lambda: transport,
            settings=settings,
        ).run(_options())

        assert transport.opened is True
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_transport_closed_when_task_cancelled(self, settings):
        transport = BlockingTransport()
        pipeline = ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=RecordingNotifier(),
            transport_factory=lambda: transport,
            settings=settings,
        )

        task = asyncio.create_task(pipeline.run(_options()))
        await asyncio.wait_for(transport.entered.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert transport.closed is True


class TestBackgroundRuns:
    @pytest.mark.asyncio
    async def test_background_run_completes(self, settings):
        notifier = RecordingNotifier()
        pipeline = ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=notifier,
            transport_factory=lambda: FakeTransport(direct=_example_direct),
            settings=settings,
        )

        handle = pipeline.start_background(_options())
        result = await handle.wait()

        assert handle.done
        assert result.created == 1
        assert notifier.events[-1].event == ExtractionEvent.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_handle_stops_cooperatively(self, settings):
        started = asyncio.Event()

        class SlowTransport(FakeTransport):
            async def fetch_direct(self, url):
                started.set()
                await asyncio.sleep(0.01)
                return await super().fetch_direct(url)

        transport = SlowTransport(direct=_example_direct)
        pipeline = ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=RecordingNotifier(),
            transport_factory=lambda: transport,
            settings=settings,
        )

        handle = pipeline.start_background(_options())
        await started.wait()
        handle.cancel()
        result = await handle.wait()

        assert result.cancelled is True
        assert result.unique_extracted == 1
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_only_one_background_run_at_a_time(self, settings):
        pipeline = ExtractionPipeline(
            InMemorySchemeStore(),
            notifier=RecordingNotifier(),
            transport_factory=BlockingTransport,
            settings=settings,
        )
        handle = pipeline.start_background(_options())
        try:
            with pytest.raises(RuntimeError):
                pipeline.start_background(_options())
        finally:
            handle.task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await handle.task


class TestRunExtraction:
    @pytest.mark.asyncio
    async def test_convenience_wrapper(self, settings):
        store = InMemorySchemeStore()
        result = await run_extraction(
            _options(),
            store=store,
            notifier=RecordingNotifier(),
            transport_factory=lambda: FakeTransport(direct=_example_direct),
            settings=settings,
        )
        assert result.created == 1
        assert len(store) == 1
