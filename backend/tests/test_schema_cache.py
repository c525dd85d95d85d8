from __future__ import annotations

import asyncio

from conftest import FakeShopify

from shopify_extractor.core.schema import load_schema
from shopify_extractor.core.schema_cache import SchemaCache


def test_save_then_load_round_trips(tmp_path, schema_types):
    cache = SchemaCache(tmp_path / "schema-cache.json")
    cache.save(schema_types, "2025-01")

    entry = cache.load()

    assert entry is not None
    assert entry.api_version == "2025-01"
    assert entry.schema_types == schema_types
    assert entry.timestamp


def test_clear_then_load_is_a_miss(tmp_path, schema_types):
    cache = SchemaCache(tmp_path / "schema-cache.json")
    cache.save(schema_types, "2025-01")

    cache.clear()

    assert cache.load() is None
    assert cache.info() is None
    cache.clear()


def test_freshness_is_keyed_on_api_version_only(tmp_path, schema_types):
    cache = SchemaCache(tmp_path / "schema-cache.json")
    entry = cache.save(schema_types, "2024-10")

    assert SchemaCache.is_fresh(entry, "2024-10")
    assert not SchemaCache.is_fresh(entry, "2025-01")
    assert not SchemaCache.is_fresh(None, "2025-01")


def test_corrupt_cache_file_is_a_miss(tmp_path):
    path = tmp_path / "schema-cache.json"
    path.write_text("{not json", encoding="utf-8")

    assert SchemaCache(path).load() is None


def test_save_uses_camel_case_keys(tmp_path, schema_types):
    path = tmp_path / "schema-cache.json"
    SchemaCache(path).save(schema_types, "2025-01")

    text = path.read_text(encoding="utf-8")
    assert '"apiVersion": "2025-01"' in text
    assert '"schema"' in text
    assert '"ofType"' in text


def test_load_schema_prefers_fresh_cache(tmp_path, credentials, schema_types):
    cache = SchemaCache(tmp_path / "schema-cache.json")
    cache.save(schema_types, credentials.api_version)
    fake = FakeShopify(lambda query, variables: {"data": None})

    async def run():
        async with fake.client(credentials) as client:
            return await load_schema(client, cache, credentials.api_version)

    assert asyncio.run(run()) == schema_types
    assert fake.requests == []


def test_load_schema_refetches_on_version_change(tmp_path, credentials, schema_types, raw_schema):
    cache = SchemaCache(tmp_path / "schema-cache.json")
    cache.save(schema_types[:1], "2023-07")
    fake = FakeShopify(lambda query, variables: {"data": {"__schema": {"types": raw_schema}}})

    async def run():
        async with fake.client(credentials) as client:
            return await load_schema(client, cache, credentials.api_version)

    types = asyncio.run(run())

    assert len(fake.requests) == 1
    assert [t.name for t in types] == [t.name for t in schema_types]
    assert cache.load().api_version == credentials.api_version
