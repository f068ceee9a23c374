"""Tests for the in-memory and JSON-file scheme stores."""

from __future__ import annotations

import json

import pytest

from src.models.enums import IdentityKind, SchemeLevel
from src.models.scheme import CanonicalRecord, IdentityKey
from src.services.extraction.ingestor import Ingestor
from src.services.extraction.store import InMemorySchemeStore, JsonFileSchemeStore, SchemeStore


def _fields(name: str, **extra) -> dict:
    base = {"name": name, "ministry": "", "level": SchemeLevel.UNKNOWN}
    base.update(extra)
    return base


class TestInMemorySchemeStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemorySchemeStore(), SchemeStore)

    @pytest.mark.asyncio
    async def test_create_then_update(self):
        store = InMemorySchemeStore()
        key = IdentityKey(IdentityKind.EXTERNAL_ID, "S1")

        first = await store.upsert(key, _fields("Test Yojana", external_id="S1"))
        second = await store.upsert(key, _fields("Test Yojana", external_id="S1", ministry="M1"))

        assert first.created is True
        assert second.created is False
        assert len(store) == 1
        found = await store.find_by_identity(key)
        assert found is not None
        assert found.ministry == "M1"
        assert found.updated_at >= found.created_at

    @pytest.mark.asyncio
    async def test_update_never_erases_with_blank(self):
        store = InMemorySchemeStore()
        key = IdentityKey(IdentityKind.NAME, "test yojana")
        await store.upsert(key, _fields("Test Yojana", ministry="M1", level=SchemeLevel.CENTRAL))
        await store.upsert(key, _fields("Test Yojana", ministry=""))

        found = await store.find_by_identity(key)
        assert found is not None
        assert found.ministry == "M1"
        assert found.level is SchemeLevel.CENTRAL

    @pytest.mark.asyncio
    async def test_name_match_is_case_insensitive(self):
        store = InMemorySchemeStore()
        await store.upsert(IdentityKey(IdentityKind.NAME, "test yojana"), _fields("Test Yojana"))

        found = await store.find_by_identity(IdentityKey(IdentityKind.NAME, "  TEST Yojana "))
        assert found is not None
        assert found.name == "Test Yojana"

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self):
        store = InMemorySchemeStore()
        assert await store.find_by_identity(IdentityKey(IdentityKind.EXTERNAL_ID, "nope")) is None


class TestJsonFileSchemeStore:
    @pytest.mark.asyncio
    async def test_flush_and_reload(self, tmp_path):
        path = tmp_path / "store" / "schemes.json"
        store = JsonFileSchemeStore(path)
        await store.upsert(
            IdentityKey(IdentityKind.EXTERNAL_ID, "S1"),
            _fields("Test Yojana", external_id="S1", ministry="M1"),
        )
        await store.upsert(IdentityKey(IdentityKind.NAME, "other scheme"), _fields("Other Scheme"))
        await store.flush()

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert len(raw) == 2
        assert {r["name"] for r in raw} == {"Test Yojana", "Other Scheme"}

        reloaded = JsonFileSchemeStore(path)
        found = await reloaded.find_by_identity(IdentityKey(IdentityKind.EXTERNAL_ID, "S1"))
        assert found is not None
        assert found.ministry == "M1"

        outcome = await reloaded.upsert(
            IdentityKey(IdentityKind.EXTERNAL_ID, "S1"),
            _fields("Test Yojana", external_id="S1"),
        )
        assert outcome.created is False

    @pytest.mark.asyncio
    async def test_flush_without_changes_writes_nothing(self, tmp_path):
        path = tmp_path / "schemes.json"
        store = JsonFileSchemeStore(path)
        await store.flush()
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_output_is_stable_across_flushes(self, tmp_path):
        path = tmp_path / "schemes.json"
        store = JsonFileSchemeStore(path)
        for ext_id in ("b", "a", "c"):
            await store.upsert(
                IdentityKey(IdentityKind.EXTERNAL_ID, ext_id),
                _fields(f"Scheme {ext_id}", external_id=ext_id),
            )
        await store.flush()

        raw = json.loads(path.read_text(encoding="utf-8"))
        assert [r["external_id"] for r in raw] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_invalid_doc_does_not_drop_later_records(self, tmp_path):
        path = tmp_path / "schemes.json"
        path.write_text(
            json.dumps(
                [
                    {"external_id": "A", "name": "Alpha"},
                    {"external_id": "B", "name": ""},
                    {"external_id": "C", "name": "Gamma"},
                    {"external_id": "D", "name": "Delta"},
                ]
            ),
            encoding="utf-8",
        )
        store = JsonFileSchemeStore(path)

        outcome = await Ingestor(store).ingest(
            [
                CanonicalRecord(external_id="N1", name="New Scheme"),
                CanonicalRecord(external_id="C", name="Gamma", ministry="M1"),
            ]
        )
        await store.flush()

        assert (outcome.created, outcome.updated, outcome.failed) == (1, 1, 0)
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert [r["external_id"] for r in raw] == ["A", "C", "D", "N1", "B"]
        assert raw[-1] == {"external_id": "B", "name": ""}

    @pytest.mark.asyncio
    async def test_malformed_file_is_never_overwritten(self, tmp_path):
        path = tmp_path / "schemes.json"
        path.write_text("[{not json", encoding="utf-8")
        store = JsonFileSchemeStore(path)

        outcome = await Ingestor(store).ingest([CanonicalRecord(external_id="N1", name="New Scheme")])
        await store.flush()

        assert outcome.failed == 1
        assert outcome.created == 0
        assert path.read_text(encoding="utf-8") == "[{not json"
