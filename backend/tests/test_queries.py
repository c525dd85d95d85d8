from __future__ import annotations

import pytest
from graphql import parse

from shopify_extractor.core.errors import UnknownPredefinedQueryError, UnknownTemplateError
from shopify_extractor.core.queries import (
    PREDEFINED_QUERIES,
    TEMPLATES,
    get_predefined_query,
    get_query_template,
    list_templates,
)
from shopify_extractor.core.query_builder import extract_fields_from_query


def edges(*nodes):
    return {"edges": [{"node": n} for n in nodes]}


def test_twelve_templates_with_discount_usage_hidden():
    assert len(TEMPLATES) == 12
    names = [t.name for t in list_templates()]
    assert "discount-usage" not in names
    assert len(names) == 11
    assert get_query_template("discount-usage").enabled is False


def test_unknown_lookups_raise():
    with pytest.raises(UnknownTemplateError, match="Unknown query type: nope"):
        get_query_template("nope")
    with pytest.raises(UnknownPredefinedQueryError):
        get_predefined_query("giftCards")


@pytest.mark.parametrize("name", sorted(TEMPLATES))
def test_template_documents_parse(name):
    template = TEMPLATES[name]
    parse(template.primary_query)
    query, variables = template.build_secondary("gid://shopify/Thing/1")
    parse(query)
    assert variables == {"id": "gid://shopify/Thing/1"}


@pytest.mark.parametrize("name", sorted(PREDEFINED_QUERIES))
def test_predefined_field_labels_match_query(name):
    predefined = PREDEFINED_QUERIES[name]
    assert extract_fields_from_query(predefined.query) == predefined.fields


def test_product_variants_ids_and_merge():
    template = get_query_template("product-variants")
    products = [
        {"id": "p1", "variants": edges({"id": "v1"}, {"id": "v2"})},
        {"id": "p2", "variants": edges({"id": "v3"})},
    ]

    assert template.id_extractor(products) == ["v1", "v2", "v3"]

    secondary = [{"productVariant": {"id": "v2", "sku": "B"}}, {"productVariant": {"id": "v1", "sku": "A"}}]
    merged = template.result_merger(products, secondary)

    assert [v["sku"] for v in merged[0]["detailedVariants"]] == ["A", "B"]
    assert merged[1]["detailedVariants"] == []
    assert merged[0]["variants"] == products[0]["variants"]


@pytest.mark.parametrize(
    "name,root,child,target",
    [
        ("metafields", "product", "metafields", "detailedMetafields"),
        ("order-line-items", "order", "lineItems", "detailedLineItems"),
        ("customer-order-history", "customer", "orders", "detailedOrders"),
        ("fulfillment-details", "order", "fulfillments", "detailedFulfillments"),
        ("product-collections", "collection", "products", "detailedProducts"),
        ("discount-usage", "priceRule", "discountCodes", "detailedDiscountCodes"),
    ],
)
def test_join_by_id_templates(name, root, child, target):
    template = get_query_template(name)
    primary = [{"id": "a"}, {"id": "b"}]
    secondary = [{root: {"id": "b", child: edges({"id": "b-1"}, {"id": "b-2"})}}, {root: None}]

    assert template.id_extractor(primary) == ["a", "b"]
    merged = template.result_merger(primary, secondary)

    assert merged[0][target] == []
    assert [n["id"] for n in merged[1][target]] == ["b-1", "b-2"]


def test_inventory_merge_collects_locations():
    template = get_query_template("inventory-across-locations")
    items = [{"id": "i1", "sku": "A"}, {"id": "i2", "sku": "B"}, {"id": "i3", "sku": "C"}]
    warehouse = {"id": "l1", "name": "Warehouse", "isActive": True}
    store = {"id": "l2", "name": "Store", "isActive": True}
    secondary = [
        {"inventoryItem": {"id": "i1", "inventoryLevels": edges({"id": "x", "quantity": 3, "location": warehouse})}},
        {
            "inventoryItem": {
                "id": "i2",
                "inventoryLevels": edges(
                    {"id": "y", "quantity": 1, "location": warehouse},
                    {"id": "z", "quantity": 0, "location": store},
                ),
            }
        },
    ]

    merged = template.result_merger(items, secondary)

    assert merged["locations"] == [warehouse, store]
    assert [len(i["inventoryLevels"]) for i in merged["inventoryItems"]] == [1, 2, 0]


def test_customer_tags_parses_strings_and_lists():
    template = get_query_template("customer-tags")
    customers = [{"id": "c1", "tags": "vip, wholesale"}, {"id": "c2", "tags": ["a", "b"]}, {"id": "c3"}]
    secondary = [{"customer": {"id": "c1", "metafields": edges({"key": "tier"})}}]

    merged = template.result_merger(customers, secondary)

    assert [m["parsedTags"] for m in merged] == [["vip", "wholesale"], ["a", "b"], []]
    assert merged[0]["detailedTagMetafields"] == [{"key": "tier"}]
    assert merged[2]["detailedTagMetafields"] == []


def test_product_media_defaults_to_empty_lists():
    template = get_query_template("product-media")
    secondary = [{"product": {"id": "p1", "images": edges({"url": "u"}), "media": None}}]

    merged = template.result_merger([{"id": "p1"}, {"id": "p2"}], secondary)

    assert merged[0]["detailedImages"] == [{"url": "u"}]
    assert merged[0]["detailedMedia"] == []
    assert merged[1]["detailedImages"] == [] and merged[1]["detailedMedia"] == []


def test_order_transactions_uses_plain_list():
    template = get_query_template("order-transactions")
    secondary = [{"order": {"id": "o1", "transactions": [{"id": "t1", "kind": "SALE"}]}}]

    merged = template.result_merger([{"id": "o1"}, {"id": "o2"}], secondary)

    assert merged[0]["detailedTransactions"] == [{"id": "t1", "kind": "SALE"}]
    assert merged[1]["detailedTransactions"] == []


def test_draft_orders_merge():
    template = get_query_template("draft-orders")
    order = {"id": "o9", "name": "#1009"}
    secondary = [
        {"draftOrder": {"id": "d1", "completedAt": "2025-01-02T00:00:00Z", "order": order, "lineItems": edges({"id": "li"})}}
    ]

    merged = template.result_merger([{"id": "d1"}, {"id": "d2"}], secondary)

    assert merged[0]["convertedOrder"] == order
    assert merged[0]["completedAt"] == "2025-01-02T00:00:00Z"
    assert merged[0]["detailedLineItems"] == [{"id": "li"}]
    assert merged[1]["convertedOrder"] is None
    assert merged[1]["detailedLineItems"] == []
