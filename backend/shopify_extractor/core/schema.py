from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from shopify_extractor.core.errors import GraphQLQueryError, TransportError
from shopify_extractor.core.models import SchemaField, SchemaType, TypeRef

if TYPE_CHECKING:
    from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
    from shopify_extractor.core.schema_cache import SchemaCache
    from shopify_extractor.core.storage import ExtractionTracker

logger = logging.getLogger(__name__)

INTROSPECTION_QUERY = """
query IntrospectionQuery {
  __schema {
    types {
      name
      kind
      description
      fields {
        name
        description
        type {
          name
          kind
          ofType {
            name
            kind
            ofType {
              name
              kind
              ofType {
                name
                kind
                ofType {
                  name
                  kind
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

RESOURCE_TYPE_NAMES: Dict[str, str] = {
    "products": "Product",
    "orders": "Order",
    "customers": "Customer",
    "collections": "Collection",
    "metafields": "Metafield",
    "inventory": "InventoryItem",
    "fulfillments": "Fulfillment",
}


def _is_internal(name: Optional[str]) -> bool:
    return bool(name) and name.startswith("__")


def parse_schema_types(raw_types: Iterable[dict]) -> List[SchemaType]:
    types: List[SchemaType] = []
    for raw in raw_types:
        if _is_internal(raw.get("name")):
            continue
        fields = raw.get("fields")
        if fields is not None:
            raw = {**raw, "fields": [f for f in fields if not _is_internal(f.get("name"))]}
        types.append(SchemaType.model_validate(raw))
    return types


async def fetch_schema(client: "ShopifyGraphQLClient") -> List[SchemaType]:
    """Run the introspection query and return the flat type list."""
    response = await client.execute(INTROSPECTION_QUERY)
    if response.has_errors:
        raise GraphQLQueryError(f"Schema fetch failed: {response.first_error_message}", response.messages)
    schema = (response.data or {}).get("__schema")
    if not schema or "types" not in schema:
        raise TransportError("Invalid schema response structure", response.status_code)
    types = parse_schema_types(schema["types"])
    logger.info("Fetched schema with %d types", len(types))
    return types


async def load_schema(
    client: "ShopifyGraphQLClient",
    cache: "SchemaCache",
    api_version: str,
    tracker: Optional["ExtractionTracker"] = None,
) -> List[SchemaType]:
    entry = cache.load()
    if entry is not None and cache.is_fresh(entry, api_version):
        if tracker:
            await tracker.log("Using cached schema")
        return entry.schema_types

    if tracker:
        await tracker.log("Fetching current schema from Shopify...")
    types = await fetch_schema(client)
    cache.save(types, api_version)
    if tracker:
        await tracker.log("Schema fetched and cached")
    return types


# Lookups --------------------------------------------------------------------


def get_type(schema_types: List[SchemaType], type_name: str) -> Optional[SchemaType]:
    for schema_type in schema_types:
        if schema_type.name == type_name:
            return schema_type
    return None


def get_type_fields(schema_types: List[SchemaType], type_name: str) -> List[SchemaField]:
    schema_type = get_type(schema_types, type_name)
    if not schema_type or not schema_type.fields:
        return []
    return [f for f in schema_type.fields if not _is_internal(f.name)]


def get_field(schema_types: List[SchemaType], type_name: str, field_name: str) -> Optional[SchemaField]:
    for field in get_type_fields(schema_types, type_name):
        if field.name == field_name:
            return field
    return None


def get_field_type(schema_types: List[SchemaType], type_name: str, field_name: str) -> Optional[TypeRef]:
    field = get_field(schema_types, type_name, field_name)
    if field is None:
        return None
    return field.type.named_type()


def is_scalar(type_ref: Optional[TypeRef]) -> bool:
    return type_ref is not None and type_ref.kind == "SCALAR"


def is_enum(type_ref: Optional[TypeRef]) -> bool:
    return type_ref is not None and type_ref.kind == "ENUM"


def is_leaf(type_ref: Optional[TypeRef]) -> bool:
    return is_scalar(type_ref) or is_enum(type_ref)


def is_object(type_ref: Optional[TypeRef]) -> bool:
    return type_ref is not None and type_ref.kind == "OBJECT"


def is_connection(type_ref: Optional[TypeRef]) -> bool:
    return type_ref is not None and bool(type_ref.name) and type_ref.name.endswith("Connection")


def resource_type_name(resource: str) -> str:
    """Map a plural resource name (``products``) to its GraphQL type (``Product``)."""
    if resource in RESOURCE_TYPE_NAMES:
        return RESOURCE_TYPE_NAMES[resource]
    singular = resource[:-1] if resource.endswith("s") else resource
    return singular[:1].upper() + singular[1:]


def full_type_name(type_ref: Optional[TypeRef]) -> str:
    if type_ref is None:
        return "Unknown"
    if type_ref.kind == "NON_NULL":
        return f"{full_type_name(type_ref.of_type)}!"
    if type_ref.kind == "LIST":
        return f"[{full_type_name(type_ref.of_type)}]"
    return type_ref.name or "Unknown"


def field_exists(schema_types: List[SchemaType], type_name: str, field_name: str) -> bool:
    return get_field(schema_types, type_name, field_name) is not None


def validate_query_fields(schema_types: List[SchemaType], type_name: str, fields: List[str]) -> List[str]:
    return [f for f in fields if field_exists(schema_types, type_name, f)]


def compare_versions(left: str, right: str) -> int:
    """Negative when ``left`` is older than ``right``; versions look like ``2024-01``."""
    left_year, left_month = (int(part) for part in left.split("-")[:2])
    right_year, right_month = (int(part) for part in right.split("-")[:2])
    if left_year != right_year:
        return left_year - right_year
    return left_month - right_month
