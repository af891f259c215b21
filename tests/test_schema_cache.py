"""Tests for the stale-while-revalidate schema cache."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from sqldeck.errors import SchemaExtractionError
from sqldeck.models import ColumnSchema, ConnectionDraft, Dialect, KeyKind, SchemaModel, TableSchema
from sqldeck.schema import SchemaExtractor, normalize_schema
from sqldeck.schema_cache import SchemaCache, cache_filename


def _schema(*names: str) -> SchemaModel:
    return SchemaModel(tables=tuple(TableSchema(name=name) for name in names))


class _Extractor:
    """Hands out queued schemas; each call can be held open with a gate."""

    def __init__(self, *schemas: SchemaModel) -> None:
        self.schemas = list(schemas)
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self, connection_id: str) -> SchemaModel:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.schemas.pop(0)


def test_cache_filename_is_sanitized() -> None:
    assert cache_filename("abc-DEF_1") == "abc-DEF_1.json"
    assert cache_filename("../etc/passwd") == "___etc_passwd.json"


@pytest.mark.anyio
async def test_cold_get_extracts_once_for_concurrent_callers() -> None:
    extractor = _Extractor(_schema("users"))
    extractor.gate = asyncio.Event()
    cache = SchemaCache(extractor)

    waiters = [asyncio.create_task(cache.get("conn")) for _ in range(5)]
    await asyncio.sleep(0)
    extractor.gate.set()
    results = await asyncio.gather(*waiters)

    assert extractor.calls == 1
    assert all(result.table_names == ("users",) for result in results)


@pytest.mark.anyio
async def test_cold_get_surfaces_extraction_errors() -> None:
    extractor = _Extractor()
    extractor.error = SchemaExtractionError("catalog unavailable")
    cache = SchemaCache(extractor)

    with pytest.raises(SchemaExtractionError):
        await cache.get("conn")


@pytest.mark.anyio
async def test_get_during_refresh_serves_previous_value() -> None:
    extractor = _Extractor(_schema("v1"), _schema("v2"))
    cache = SchemaCache(extractor)
    assert (await cache.get("conn")).table_names == ("v1",)

    extractor.gate = asyncio.Event()
    refresh = cache.refresh("conn")
    await asyncio.sleep(0)

    assert cache.is_refreshing("conn")
    assert (await cache.get("conn")).table_names == ("v1",)
    extractor.gate.set()
    entry = await refresh
    assert entry is not None
    assert (await cache.get("conn")).table_names == ("v2",)


@pytest.mark.anyio
async def test_duplicate_refreshes_collapse() -> None:
    extractor = _Extractor(_schema("v1"))
    extractor.gate = asyncio.Event()
    cache = SchemaCache(extractor)

    first = cache.refresh("conn")
    second = cache.refresh("conn")
    extractor.gate.set()
    await asyncio.gather(first, second)

    assert first is second
    assert extractor.calls == 1


@pytest.mark.anyio
async def test_failed_refresh_keeps_old_entry() -> None:
    extractor = _Extractor(_schema("v1"))
    cache = SchemaCache(extractor)
    await cache.get("conn")
    extractor.error = SchemaExtractionError("lost connection")

    assert await cache.refresh("conn") is None

    assert (await cache.get("conn")).table_names == ("v1",)


@pytest.mark.anyio
async def test_invalidate_wins_over_in_flight_refresh(tmp_path: Path) -> None:
    extractor = _Extractor(_schema("stale"), _schema("fresh"))
    extractor.gate = asyncio.Event()
    cache = SchemaCache(extractor, tmp_path)

    refresh = cache.refresh("conn")
    await asyncio.sleep(0)
    cache.invalidate("conn")
    extractor.gate.set()

    assert await refresh is None
    assert cache.peek("conn") is None
    assert not (tmp_path / cache_filename("conn")).exists()
    assert (await cache.get("conn")).table_names == ("fresh",)
    assert extractor.calls == 2


@pytest.mark.anyio
async def test_listeners_receive_refreshed_entries() -> None:
    extractor = _Extractor(_schema("v1"))
    cache = SchemaCache(extractor)
    seen: list[tuple[str, tuple[str, ...]]] = []
    cache.subscribe(lambda connection_id, entry: seen.append((connection_id, entry.schema_model.table_names)))

    await cache.refresh("conn")

    assert seen == [("conn", ("v1",))]


@pytest.mark.anyio
async def test_disk_entry_serves_cold_start_and_revalidates(tmp_path: Path) -> None:
    first = SchemaCache(_Extractor(_schema("v1")), tmp_path)
    await first.get("conn")

    extractor = _Extractor(_schema("v2"))
    extractor.gate = asyncio.Event()
    restarted = SchemaCache(extractor, tmp_path)

    assert (await restarted.get("conn")).table_names == ("v1",)
    assert restarted.is_refreshing("conn")
    extractor.gate.set()
    await restarted.refresh("conn")
    assert (await restarted.get("conn")).table_names == ("v2",)


@pytest.mark.anyio
async def test_corrupt_cache_file_is_treated_as_absent(tmp_path: Path) -> None:
    (tmp_path / cache_filename("conn")).write_text("{ nope")
    cache = SchemaCache(_Extractor(_schema("live")), tmp_path)

    assert (await cache.get("conn")).table_names == ("live",)


@pytest.mark.anyio
async def test_keys_round_trip_through_cache_file(tmp_path: Path, facts) -> None:
    schema = normalize_schema(facts)
    await SchemaCache(_Extractor(schema), tmp_path).get("conn")

    reloaded = SchemaCache(_Extractor(schema), tmp_path).peek("conn")

    assert reloaded is not None
    assert reloaded.schema_model == schema
    orders = reloaded.schema_model.table("orders")
    assert orders.column("id").key_kind is KeyKind.PRIMARY
    user_id: ColumnSchema = orders.column("user_id")
    assert user_id.key_kind is KeyKind.FOREIGN
    assert user_id.foreign_key_ref.table == "users"
    assert user_id.foreign_key_ref.column == "id"


@pytest.mark.anyio
async def test_registry_delete_invalidates(tmp_path: Path, registry, pool) -> None:
    connection_id = registry.create(ConnectionDraft(name="gone", dialect=Dialect.SQLITE, path="fake.db"))
    cache = SchemaCache(SchemaExtractor(pool), tmp_path, registry=registry)
    await cache.get(connection_id)
    assert (tmp_path / cache_filename(connection_id)).exists()

    await registry.delete(connection_id)

    assert cache.peek(connection_id) is None
    assert not (tmp_path / cache_filename(connection_id)).exists()
