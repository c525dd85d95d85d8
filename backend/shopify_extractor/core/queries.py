"""Hand-authored GraphQL documents: predefined single-resource queries and dependent query templates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from shopify_extractor.core.errors import UnknownPredefinedQueryError, UnknownTemplateError
from shopify_extractor.core.models import PredefinedQuery, TemplateInfo

Record = Dict[str, Any]

# Predefined single-resource queries ------------------------------------------

PRODUCTS_QUERY = """
query GetProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        title
        handle
        description
        productType
        vendor
        status
        tags
        createdAt
        updatedAt
        publishedAt
        onlineStoreUrl
        featuredImage {
          id
          url
          altText
        }
        priceRangeV2 {
          minVariantPrice {
            amount
            currencyCode
          }
          maxVariantPrice {
            amount
            currencyCode
          }
        }
        totalInventory
        variants(first: 50) {
          edges {
            node {
              id
              title
              sku
              price
              compareAtPrice
              inventoryQuantity
              barcode
              availableForSale
              taxable
              selectedOptions {
                name
                value
              }
            }
          }
        }
        images(first: 20) {
          edges {
            node {
              id
              url
              width
              height
              altText
            }
          }
        }
        metafields(first: 10) {
          edges {
            node {
              id
              namespace
              key
              value
              type
            }
          }
        }
      }
    }
  }
}
"""

ORDERS_QUERY = """
query GetOrders($first: Int!, $after: String) {
  orders(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        name
        email
        phone
        closed
        cancelReason
        cancelledAt
        processedAt
        createdAt
        updatedAt
        displayFinancialStatus
        displayFulfillmentStatus
        note
        tags
        subtotalLineItemsQuantity
        totalPriceSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        subtotalPriceSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        totalShippingPriceSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        totalTaxSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        totalDiscountsSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        customer {
          id
          firstName
          lastName
          email
          phone
        }
        shippingAddress {
          firstName
          lastName
          address1
          address2
          city
          province
          country
          zip
          phone
          company
          formatted
        }
        billingAddress {
          firstName
          lastName
          address1
          address2
          city
          province
          country
          zip
          phone
          company
          formatted
        }
        lineItems(first: 50) {
          edges {
            node {
              id
              title
              quantity
              discountedTotalSet {
                shopMoney {
                  amount
                  currencyCode
                }
              }
              originalTotalSet {
                shopMoney {
                  amount
                  currencyCode
                }
              }
              variant {
                id
                title
                sku
                price
                product {
                  id
                  title
                  handle
                }
              }
            }
          }
        }
        transactions {
          id
          status
          kind
          gateway
          createdAt
          amountSet {
            shopMoney {
              amount
              currencyCode
            }
          }
        }
      }
    }
  }
}
"""

CUSTOMERS_QUERY = """
query GetCustomers($first: Int!, $after: String) {
  customers(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        firstName
        lastName
        email
        phone
        displayName
        createdAt
        updatedAt
        defaultAddress {
          id
          address1
          address2
          city
          country
          firstName
          lastName
          company
          phone
          province
          zip
          formatted
        }
        addresses {
          id
          address1
          address2
          city
          country
          firstName
          lastName
          company
          phone
          province
          zip
          formatted
        }
        note
        tags
        state
        taxExempt
        metafields(first: 10) {
          edges {
            node {
              id
              namespace
              key
              value
              type
            }
          }
        }
        orders(first: 5) {
          edges {
            node {
              id
              name
              processedAt
              displayFulfillmentStatus
              displayFinancialStatus
              totalPriceSet {
                shopMoney {
                  amount
                  currencyCode
                }
              }
            }
          }
        }
      }
    }
  }
}
"""

PREDEFINED_QUERIES: Dict[str, PredefinedQuery] = {
    "products": PredefinedQuery(
        query=PRODUCTS_QUERY,
        fields=[
            "id", "title", "handle", "description", "productType", "vendor", "status", "tags",
            "createdAt", "updatedAt", "publishedAt", "onlineStoreUrl", "featuredImage",
            "priceRangeV2", "totalInventory", "variants", "images", "metafields",
        ],
    ),
    "orders": PredefinedQuery(
        query=ORDERS_QUERY,
        fields=[
            "id", "name", "email", "phone", "closed", "cancelReason", "cancelledAt", "processedAt",
            "createdAt", "updatedAt", "displayFinancialStatus", "displayFulfillmentStatus",
            "note", "tags", "subtotalLineItemsQuantity", "totalPriceSet", "subtotalPriceSet",
            "totalShippingPriceSet", "totalTaxSet", "totalDiscountsSet", "customer",
            "shippingAddress", "billingAddress", "lineItems", "transactions",
        ],
    ),
    "customers": PredefinedQuery(
        query=CUSTOMERS_QUERY,
        fields=[
            "id", "firstName", "lastName", "email", "phone", "displayName", "createdAt", "updatedAt",
            "defaultAddress", "addresses", "note", "tags", "state", "taxExempt",
            "metafields", "orders",
        ],
    ),
}


def get_predefined_query(name: str) -> PredefinedQuery:
    try:
        return PREDEFINED_QUERIES[name]
    except KeyError:
        raise UnknownPredefinedQueryError(name) from None


# Merge helpers ----------------------------------------------------------------


def nodes(connection: Optional[Dict[str, Any]]) -> List[Record]:
    """``edges[].node`` of a connection, or ``[]``."""
    if not connection:
        return []
    return [edge["node"] for edge in connection.get("edges") or [] if edge and edge.get("node") is not None]


def record_ids(records: List[Record]) -> List[str]:
    return [r["id"] for r in records if r.get("id")]


def index_by_id(results: List[Record], root: str) -> Dict[str, Record]:
    """Map each secondary result's ``root`` object by its id."""
    index: Dict[str, Record] = {}
    for result in results:
        obj = (result or {}).get(root)
        if obj and obj.get("id"):
            index[obj["id"]] = obj
    return index


def join_by_id(root: str, extract: Callable[[Record], Any], target: str) -> Callable[[List[Record], List[Record]], List[Record]]:
    """Merger giving every primary record ``target``, ``[]`` when nothing matched."""

    def merge(primary: List[Record], secondary: List[Record]) -> List[Record]:
        index = index_by_id(secondary, root)
        merged = []
        for record in primary:
            found = index.get(record.get("id"))
            merged.append({**record, target: extract(found) if found is not None else []})
        return merged

    return merge


def connection_nodes(field: str) -> Callable[[Record], List[Record]]:
    return lambda obj: nodes(obj.get(field))


# Dependent query templates ----------------------------------------------------


@dataclass(frozen=True)
class QueryTemplate:
    name: str
    label: str
    description: str
    help: str
    primary_query: str
    secondary_query: str
    id_extractor: Callable[[List[Record]], List[str]]
    result_merger: Callable[[List[Record], List[Record]], Any]
    enabled: bool = True

    def build_secondary(self, item_id: str) -> Tuple[str, Dict[str, Any]]:
        return self.secondary_query, {"id": item_id}

    def info(self) -> TemplateInfo:
        return TemplateInfo(name=self.name, label=self.label, description=self.description, help=self.help)


def _variant_ids(products: List[Record]) -> List[str]:
    return [variant["id"] for product in products for variant in nodes(product.get("variants"))]


def _merge_variants(products: List[Record], results: List[Record]) -> List[Record]:
    variants = index_by_id(results, "productVariant")
    merged = []
    for product in products:
        detailed = [variants[v["id"]] for v in nodes(product.get("variants")) if v["id"] in variants]
        merged.append({**product, "detailedVariants": detailed})
    return merged


def _merge_inventory(items: List[Record], results: List[Record]) -> Dict[str, List[Record]]:
    levels = index_by_id(results, "inventoryItem")
    locations: Dict[str, Record] = {}
    enriched = []
    for item in items:
        found = levels.get(item.get("id"))
        item_levels = nodes(found.get("inventoryLevels")) if found else []
        for level in item_levels:
            location = level.get("location")
            if location and location.get("id"):
                locations.setdefault(location["id"], location)
        enriched.append({**item, "inventoryLevels": item_levels})
    return {"locations": list(locations.values()), "inventoryItems": enriched}


def _parse_tags(tags: Any) -> List[str]:
    if isinstance(tags, str):
        return [tag.strip() for tag in tags.split(",") if tag.strip()]
    if isinstance(tags, list):
        return tags
    return []


def _merge_customer_tags(customers: List[Record], results: List[Record]) -> List[Record]:
    found = index_by_id(results, "customer")
    return [
        {
            **customer,
            "parsedTags": _parse_tags(customer.get("tags")),
            "detailedTagMetafields": nodes(found[customer["id"]].get("metafields")) if customer.get("id") in found else [],
        }
        for customer in customers
    ]


def _merge_media(products: List[Record], results: List[Record]) -> List[Record]:
    found = index_by_id(results, "product")
    merged = []
    for product in products:
        media = found.get(product.get("id")) or {}
        merged.append(
            {
                **product,
                "detailedImages": nodes(media.get("images")),
                "detailedMedia": nodes(media.get("media")),
            }
        )
    return merged


def _merge_draft_orders(drafts: List[Record], results: List[Record]) -> List[Record]:
    found = index_by_id(results, "draftOrder")
    merged = []
    for draft in drafts:
        details = found.get(draft.get("id")) or {}
        merged.append(
            {
                **draft,
                "completedAt": details.get("completedAt"),
                "convertedOrder": details.get("order"),
                "detailedLineItems": nodes(details.get("lineItems")),
            }
        )
    return merged


MONEY = """{
            shopMoney {
              amount
              currencyCode
            }
          }"""

TEMPLATES: Dict[str, QueryTemplate] = {}


def register(template: QueryTemplate) -> QueryTemplate:
    TEMPLATES[template.name] = template
    return template


register(
    QueryTemplate(
        name="product-variants",
        label="Product Variants",
        description="Extract detailed variant information including inventory, prices, and options.",
        help="First fetches products, then queries each variant individually.",
        primary_query="""
query GetProductsWithVariantIds($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        status
        variants(first: 20) {
          edges { node { id } }
        }
      }
    }
  }
}
""",
        secondary_query="""
query GetProductVariant($id: ID!) {
  productVariant(id: $id) {
    id
    title
    sku
    price
    compareAtPrice
    barcode
    inventoryQuantity
    selectedOptions { name value }
    inventoryItem { id tracked }
    product { id }
  }
}
""",
        id_extractor=_variant_ids,
        result_merger=_merge_variants,
    )
)

register(
    QueryTemplate(
        name="metafields",
        label="Metafields",
        description="Extract metafields for products, orders, customers, etc.",
        help="First fetches resources, then queries metafields for each item.",
        primary_query="""
query GetProductsForMetafields($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges { node { id title handle } }
  }
}
""",
        secondary_query="""
query GetProductMetafields($id: ID!) {
  product(id: $id) {
    id
    metafields(first: 20) {
      edges { node { id namespace key value type } }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("product", connection_nodes("metafields"), "detailedMetafields"),
    )
)

register(
    QueryTemplate(
        name="order-line-items",
        label="Order Line Items",
        description="Extract detailed line item information for orders.",
        help="Useful for orders with many line items that exceed pagination limits.",
        primary_query=f"""
query GetOrdersForLineItems($first: Int!, $after: String) {{
  orders(first: $first, after: $after) {{
    pageInfo {{ hasNextPage endCursor }}
    edges {{
      node {{
        id
        name
        createdAt
        displayFinancialStatus
        displayFulfillmentStatus
        totalPriceSet {MONEY}
      }}
    }}
  }}
}}
""",
        secondary_query=f"""
query GetOrderLineItems($id: ID!) {{
  order(id: $id) {{
    id
    lineItems(first: 250) {{
      edges {{
        node {{
          id
          title
          quantity
          originalTotalSet {MONEY}
          discountedTotalSet {MONEY}
          variant {{
            id
            title
            sku
            price
            product {{ id title }}
          }}
        }}
      }}
    }}
  }}
}}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("order", connection_nodes("lineItems"), "detailedLineItems"),
    )
)

register(
    QueryTemplate(
        name="customer-order-history",
        label="Customer Order History",
        description="Extract complete order history for customers.",
        help="Analyze customer lifetime value, purchase frequency, and buying patterns.",
        primary_query="""
query GetCustomersForOrderHistory($first: Int!, $after: String) {
  customers(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges { node { id email firstName lastName displayName } }
  }
}
""",
        secondary_query=f"""
query GetCustomerOrders($id: ID!) {{
  customer(id: $id) {{
    id
    orders(first: 250) {{
      edges {{
        node {{
          id
          name
          processedAt
          displayFinancialStatus
          displayFulfillmentStatus
          totalPriceSet {MONEY}
          subtotalPriceSet {MONEY}
          totalTaxSet {MONEY}
          totalShippingPriceSet {MONEY}
        }}
      }}
    }}
  }}
}}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("customer", connection_nodes("orders"), "detailedOrders"),
    )
)

# Locations are collected from the per-item inventory levels, so the primary
# query pages over inventory items only.
register(
    QueryTemplate(
        name="inventory-across-locations",
        label="Inventory Across Locations",
        description="Extract inventory levels for all items across all locations.",
        help="Complete inventory visibility across multiple store locations.",
        primary_query="""
query GetInventoryItems($first: Int!, $after: String) {
  inventoryItems(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        sku
        tracked
        variant {
          id
          displayName
          product { id title }
        }
      }
    }
  }
}
""",
        secondary_query="""
query GetInventoryLevels($id: ID!) {
  inventoryItem(id: $id) {
    id
    inventoryLevels(first: 20) {
      edges {
        node {
          id
          quantity
          location { id name isActive }
        }
      }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=_merge_inventory,
    )
)

register(
    QueryTemplate(
        name="fulfillment-details",
        label="Fulfillment Details",
        description="Extract detailed fulfillment information for orders.",
        help="Analyze shipping performance, fulfillment times, and delivery issues.",
        primary_query="""
query GetOrdersForFulfillments($first: Int!, $after: String) {
  orders(first: $first, after: $after, query: "fulfillment_status:partial OR fulfillment_status:fulfilled") {
    pageInfo { hasNextPage endCursor }
    edges { node { id name createdAt displayFulfillmentStatus } }
  }
}
""",
        secondary_query="""
query GetOrderFulfillments($id: ID!) {
  order(id: $id) {
    id
    fulfillments(first: 20) {
      edges {
        node {
          id
          status
          createdAt
          updatedAt
          trackingInfo { company number url }
          deliveredAt
          estimatedDeliveryAt
          shipmentStatus
          service
          totalQuantity
          lineItems(first: 10) {
            edges { node { id title quantity } }
          }
        }
      }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("order", connection_nodes("fulfillments"), "detailedFulfillments"),
    )
)

register(
    QueryTemplate(
        name="product-collections",
        label="Product Collections",
        description="Extract all products within each collection.",
        help="Analyze collection performance and product categorization.",
        primary_query="""
query GetCollections($first: Int!, $after: String) {
  collections(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        handle
        productsCount { count }
        updatedAt
      }
    }
  }
}
""",
        secondary_query="""
query GetCollectionProducts($id: ID!) {
  collection(id: $id) {
    id
    products(first: 250) {
      pageInfo { hasNextPage endCursor }
      edges {
        node {
          id
          title
          handle
          productType
          vendor
          publishedAt
          images(first: 1) {
            edges { node { id url } }
          }
          variants(first: 1) {
            edges { node { id price } }
          }
        }
      }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("collection", connection_nodes("products"), "detailedProducts"),
    )
)

# priceRules is missing from several API versions
register(
    QueryTemplate(
        name="discount-usage",
        label="Discount Usage",
        description="Extract discount codes and usage statistics for each price rule.",
        help=(
            "Measure promotion effectiveness and discount usage patterns. Note: This template may not be "
            "compatible with all API versions as priceRules field is not available in some versions."
        ),
        primary_query="""
query GetPriceRules($first: Int!, $after: String) {
  priceRules(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges { node { id title target startsAt endsAt status valueType value } }
  }
}
""",
        secondary_query="""
query GetDiscountCodes($id: ID!) {
  priceRule(id: $id) {
    id
    discountCodes(first: 50) {
      edges { node { id code usageCount createdAt } }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("priceRule", connection_nodes("discountCodes"), "detailedDiscountCodes"),
        enabled=False,
    )
)

register(
    QueryTemplate(
        name="customer-tags",
        label="Customer Tags & Segments",
        description="Extract detailed tag and segment information for customers.",
        help="Analyze customer segmentation and targeting effectiveness.",
        primary_query="""
query GetCustomersForTags($first: Int!, $after: String) {
  customers(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges { node { id email firstName lastName displayName tags } }
  }
}
""",
        secondary_query="""
query GetCustomerTagDetails($id: ID!) {
  customer(id: $id) {
    id
    metafields(first: 50, namespace: "customer") {
      edges { node { id namespace key value type } }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=_merge_customer_tags,
    )
)

register(
    QueryTemplate(
        name="product-media",
        label="Product Media & Images",
        description="Extract all media and images for each product.",
        help="Analyze product presentation completeness and quality.",
        primary_query="""
query GetProductsForMedia($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges { node { id title handle status } }
  }
}
""",
        secondary_query="""
query GetProductMedia($id: ID!) {
  product(id: $id) {
    id
    images(first: 50) {
      edges { node { id url width height altText } }
    }
    media(first: 50) {
      edges {
        node {
          id
          mediaContentType
          preview { image { url } }
          status
        }
      }
    }
  }
}
""",
        id_extractor=record_ids,
        result_merger=_merge_media,
    )
)

register(
    QueryTemplate(
        name="order-transactions",
        label="Order Transactions",
        description="Extract detailed transaction history for each order.",
        help="Analyze payment methods, refunds, and transaction issues.",
        primary_query=f"""
query GetOrdersForTransactions($first: Int!, $after: String) {{
  orders(first: $first, after: $after) {{
    pageInfo {{ hasNextPage endCursor }}
    edges {{
      node {{
        id
        name
        createdAt
        displayFinancialStatus
        totalPriceSet {MONEY}
      }}
    }}
  }}
}}
""",
        secondary_query=f"""
query GetOrderTransactions($id: ID!) {{
  order(id: $id) {{
    id
    transactions {{
      id
      status
      kind
      gateway
      test
      amountSet {MONEY}
      createdAt
      formattedGateway
      parentTransaction {{ id kind }}
    }}
  }}
}}
""",
        id_extractor=record_ids,
        result_merger=join_by_id("order", lambda order: order.get("transactions") or [], "detailedTransactions"),
    )
)

register(
    QueryTemplate(
        name="draft-orders",
        label="Draft Order Conversions",
        description="Track which draft orders converted to actual orders.",
        help="Analyze sales process efficiency and abandoned cart recovery.",
        primary_query="""
query GetDraftOrders($first: Int!, $after: String) {
  draftOrders(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        name
        status
        createdAt
        updatedAt
        totalPrice
        customer { id email displayName }
      }
    }
  }
}
""",
        secondary_query=f"""
query GetDraftOrderDetails($id: ID!) {{
  draftOrder(id: $id) {{
    id
    completedAt
    order {{
      id
      name
      createdAt
      displayFinancialStatus
      displayFulfillmentStatus
      totalPriceSet {MONEY}
    }}
    lineItems(first: 10) {{
      edges {{ node {{ id title quantity variantTitle }} }}
    }}
  }}
}}
""",
        id_extractor=record_ids,
        result_merger=_merge_draft_orders,
    )
)


def get_query_template(name: str) -> QueryTemplate:
    try:
        return TEMPLATES[name]
    except KeyError:
        raise UnknownTemplateError(name) from None


def list_templates() -> List[TemplateInfo]:
    return [t.info() for t in TEMPLATES.values() if t.enabled]
