from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
from shopify_extractor.core.models import Credentials, SchemaType, settings

Responder = Callable[[str, Dict[str, Any]], Any]


def scalar(name: str) -> Dict[str, Any]:
    return {"name": name, "kind": "SCALAR", "ofType": None}


def enum(name: str) -> Dict[str, Any]:
    return {"name": name, "kind": "ENUM", "ofType": None}


def obj(name: str) -> Dict[str, Any]:
    return {"name": name, "kind": "OBJECT", "ofType": None}


def non_null(inner: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": None, "kind": "NON_NULL", "ofType": inner}


def list_of(inner: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": None, "kind": "LIST", "ofType": inner}


def field(name: str, type_ref: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": name, "description": None, "type": type_ref}


def connection_types(node: str) -> List[Dict[str, Any]]:
    return [
        {
            "name": f"{node}Connection",
            "kind": "OBJECT",
            "fields": [
                field("pageInfo", non_null(obj("PageInfo"))),
                field("edges", non_null(list_of(non_null(obj(f"{node}Edge"))))),
            ],
        },
        {
            "name": f"{node}Edge",
            "kind": "OBJECT",
            "fields": [field("cursor", non_null(scalar("String"))), field("node", non_null(obj(node)))],
        },
    ]


RAW_SCHEMA: List[Dict[str, Any]] = [
    {
        "name": "QueryRoot",
        "kind": "OBJECT",
        "fields": [
            field("products", non_null(obj("ProductConnection"))),
            field("product", obj("Product")),
            field("productVariant", obj("ProductVariant")),
        ],
    },
    {
        "name": "Product",
        "kind": "OBJECT",
        "fields": [
            field("id", non_null(scalar("ID"))),
            field("title", non_null(scalar("String"))),
            field("handle", non_null(scalar("String"))),
            field("status", non_null(enum("ProductStatus"))),
            field("variants", non_null(obj("ProductVariantConnection"))),
            field("featuredImage", obj("Image")),
        ],
    },
    {
        "name": "ProductVariant",
        "kind": "OBJECT",
        "fields": [
            field("id", non_null(scalar("ID"))),
            field("title", non_null(scalar("String"))),
            field("sku", scalar("String")),
            field("price", non_null(scalar("Money"))),
            field("product", non_null(obj("Product"))),
        ],
    },
    {
        "name": "Image",
        "kind": "OBJECT",
        "fields": [
            field("id", scalar("ID")),
            field("url", non_null(scalar("URL"))),
            field("altText", scalar("String")),
        ],
    },
    {
        "name": "PageInfo",
        "kind": "OBJECT",
        "fields": [
            field("hasNextPage", non_null(scalar("Boolean"))),
            field("endCursor", scalar("String")),
        ],
    },
    *connection_types("Product"),
    *connection_types("ProductVariant"),
    {"name": "ID", "kind": "SCALAR", "fields": None},
    {"name": "String", "kind": "SCALAR", "fields": None},
    {"name": "Boolean", "kind": "SCALAR", "fields": None},
    {"name": "Money", "kind": "SCALAR", "fields": None},
    {"name": "URL", "kind": "SCALAR", "fields": None},
    {"name": "ProductStatus", "kind": "ENUM", "fields": None},
]


@pytest.fixture
def raw_schema() -> List[Dict[str, Any]]:
    return json.loads(json.dumps(RAW_SCHEMA))


@pytest.fixture
def schema_types(raw_schema) -> List[SchemaType]:
    return [SchemaType.model_validate(t) for t in raw_schema]


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(storeName="demo-shop", accessToken="shpat_test", clientId="client", apiVersion="2025-01")


class FakeShopify:
    """Records every GraphQL request and answers through ``responder(query, variables)``."""

    def __init__(self, responder: Responder) -> None:
        self.responder = responder
        self.requests: List[Dict[str, Any]] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append({"payload": payload, "headers": dict(request.headers), "url": str(request.url)})
        result = self.responder(payload["query"], payload.get("variables") or {})
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self, credentials: Credentials) -> ShopifyGraphQLClient:
        return ShopifyGraphQLClient(credentials, transport=self.transport)


def connection_page(nodes: List[Dict[str, Any]], has_next_page: bool, end_cursor: Optional[str]) -> Dict[str, Any]:
    return {
        "pageInfo": {"hasNextPage": has_next_page, "endCursor": end_cursor},
        "edges": [{"node": n} for n in nodes],
    }


@pytest.fixture
def no_delays(monkeypatch):
    monkeypatch.setattr(settings, "PAGE_DELAY", 0)
    monkeypatch.setattr(settings, "BATCH_DELAY", 0)
