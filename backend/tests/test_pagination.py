from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from conftest import FakeShopify, connection_page

from shopify_extractor.core.errors import (
    ExtractionCancelled,
    GraphQLQueryError,
    SchemaCompatibilityError,
    TransportError,
)
from shopify_extractor.core.models import ExtractionKind
from shopify_extractor.core.pagination import PaginatedFetcher, page_progress
from shopify_extractor.core.storage import ExtractionRegistry, ExtractionTracker

QUERY = "query Q($first: Int!, $after: String) { products(first: $first, after: $after) { edges { node { id } } } }"


def paged_responder(pages):
    """Serve ``pages`` (lists of ids) keyed by cursor: page n is requested with after=str(n)."""

    def respond(query, variables):
        index = 0 if variables.get("after") is None else int(variables["after"])
        has_next = index < len(pages) - 1
        nodes = [{"id": i} for i in pages[index]]
        return {"data": {"products": connection_page(nodes, has_next, str(index + 1) if has_next else None)}}

    return respond


def run_fetch(fake, credentials, tracker=None, **kwargs):
    async def run():
        async with fake.client(credentials) as client:
            fetcher = PaginatedFetcher(client, tracker=tracker, page_delay=0, page_dir=kwargs.pop("page_dir", None))
            items = await fetcher.fetch_all(QUERY, {"first": 3}, **kwargs)
            return fetcher, items

    return asyncio.run(run())


def test_progress_curve():
    assert page_progress(1, False) == 100
    assert page_progress(1, True) == 15
    assert page_progress(6, True) == 90
    assert page_progress(10, True) == 90
    assert page_progress(10, False) == 100


def test_accumulates_all_pages_in_cursor_order(credentials):
    pages = [["a", "b", "c"], ["d", "e"], ["f"]]
    fake = FakeShopify(paged_responder(pages))

    _, items = run_fetch(fake, credentials, resource_key="products")

    assert [item["id"] for item in items] == ["a", "b", "c", "d", "e", "f"]
    afters = [r["payload"]["variables"]["after"] for r in fake.requests]
    assert afters == [None, "1", "2"]
    assert all(r["payload"]["variables"]["first"] == 3 for r in fake.requests)


def test_resource_key_defaults_to_first_root(credentials):
    fake = FakeShopify(paged_responder([["x"]]))

    _, items = run_fetch(fake, credentials)

    assert items == [{"id": "x"}]


def test_page_files_are_written(tmp_path, credentials):
    fake = FakeShopify(paged_responder([["a"], ["b"]]))

    run_fetch(fake, credentials, resource_key="products", label="products", page_dir=tmp_path)

    first = json.loads((tmp_path / "products_page_1.json").read_text(encoding="utf-8"))
    assert first["data"]["products"]["edges"] == [{"node": {"id": "a"}}]
    assert (tmp_path / "products_page_2.json").exists()


def test_progress_is_monotonic_and_reaches_100_only_on_last_page(tmp_path, credentials):
    pages = [[str(i)] for i in range(8)]
    fake = FakeShopify(paged_responder(pages))
    seen = []

    async def run():
        registry = ExtractionRegistry(tmp_path / "runs", tmp_path)
        record = await registry.create_run("products", ExtractionKind.resource)
        tracker = ExtractionTracker(registry, record.run_id)
        original = tracker.set_progress

        async def capture(progress, records_processed=None, total_records=None):
            seen.append(progress)
            await original(progress, records_processed, total_records)

        tracker.set_progress = capture
        async with fake.client(credentials) as client:
            await PaginatedFetcher(client, tracker=tracker, page_delay=0).fetch_all(QUERY, {"first": 1}, "products")
        return await registry.get_record(record.run_id)

    record = asyncio.run(run())

    assert seen == sorted(seen)
    assert seen[-1] == 100
    assert seen.count(100) == 1
    assert record.progress == 100
    assert record.records_processed == 8


def test_graphql_error_regenerates_once_and_keeps_new_query(credentials):
    calls = []

    def respond(query, variables):
        calls.append(query)
        if query == QUERY:
            return {"errors": [{"message": "Field 'bodyHtml' doesn't exist on type 'Product'"}]}
        return paged_responder([["a"], ["b"]])(query, variables)

    async def regenerate():
        return "query Fixed { products { edges { node { id } } } }"

    fake = FakeShopify(respond)
    fetcher, items = run_fetch(fake, credentials, resource_key="products", regenerate=regenerate)

    assert [i["id"] for i in items] == ["a", "b"]
    assert calls[0] == QUERY
    assert calls[1:] == ["query Fixed { products { edges { node { id } } } }"] * 2
    assert fetcher.query.startswith("query Fixed")
    # retry repeated the same page
    assert [r["payload"]["variables"]["after"] for r in fake.requests] == [None, None, "1"]


def test_second_graphql_error_aborts(credentials):
    fake = FakeShopify(lambda q, v: {"errors": [{"message": "Field 'x' doesn't exist on type 'Product'"}]})

    async def regenerate():
        return "query Other { products { edges { node { id } } } }"

    with pytest.raises(SchemaCompatibilityError):
        run_fetch(fake, credentials, resource_key="products", regenerate=regenerate)
    assert len(fake.requests) == 2


def test_graphql_error_without_regenerator_is_fatal(credentials):
    fake = FakeShopify(lambda q, v: {"errors": [{"message": "Throttled"}]})

    with pytest.raises(GraphQLQueryError) as excinfo:
        run_fetch(fake, credentials, resource_key="products")
    assert not isinstance(excinfo.value, SchemaCompatibilityError)
    assert str(excinfo.value) == "GraphQL Error: Throttled"


def test_transport_failure_is_fatal(credentials):
    def respond(query, variables):
        raise httpx.ConnectError("connection refused")

    fake = FakeShopify(respond)

    with pytest.raises(TransportError):
        run_fetch(fake, credentials, resource_key="products")


def test_cancellation_is_checked_before_each_request(tmp_path, credentials):
    fake = FakeShopify(paged_responder([["a"], ["b"], ["c"]]))

    async def run():
        registry = ExtractionRegistry(tmp_path / "runs", tmp_path)
        record = await registry.create_run("products")
        tracker = ExtractionTracker(registry, record.run_id)
        await registry.request_cancel(record.run_id)
        async with fake.client(credentials) as client:
            await PaginatedFetcher(client, tracker=tracker, page_delay=0).fetch_all(QUERY, {"first": 1}, "products")

    with pytest.raises(ExtractionCancelled):
        asyncio.run(run())
    assert fake.requests == []
