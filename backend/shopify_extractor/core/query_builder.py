from __future__ import annotations

from typing import List, Optional

from graphql import parse
from graphql.language.ast import FieldNode, OperationDefinitionNode, SelectionSetNode

from shopify_extractor.core.models import SchemaField, SchemaType, settings
from shopify_extractor.core.schema import (
    get_field_type,
    get_type_fields,
    is_connection,
    is_leaf,
    is_object,
    resource_type_name,
)


def _leaf_sub_fields(schema_types: List[SchemaType], type_name: str, limit: int) -> List[str]:
    names = [
        f.name
        for f in get_type_fields(schema_types, type_name)
        if f.name != "id" and is_leaf(get_field_type(schema_types, type_name, f.name))
    ]
    return names[:limit]


def _has_id(schema_types: List[SchemaType], type_name: str) -> bool:
    return any(f.name == "id" for f in get_type_fields(schema_types, type_name))


def _object_block(
    schema_types: List[SchemaType], type_name: str, max_sub_fields: int, indent: str
) -> Optional[List[str]]:
    selections = ["id"] if _has_id(schema_types, type_name) else []
    selections += _leaf_sub_fields(schema_types, type_name, max_sub_fields)
    if not selections:
        return None
    return [f"{indent}{name}" for name in selections]


def _field_lines(
    schema_types: List[SchemaType],
    type_name: str,
    field: SchemaField,
    max_sub_fields: int,
    connection_page_size: int,
) -> List[str]:
    pad = " " * 8
    field_type = get_field_type(schema_types, type_name, field.name)
    if field_type is None:
        return []
    if is_leaf(field_type):
        return [f"{pad}{field.name}"]
    if not is_object(field_type):
        return []

    if is_connection(field_type):
        node_type = field_type.name[: -len("Connection")]
        if not get_type_fields(schema_types, node_type):
            return []
        inner = _object_block(schema_types, node_type, max_sub_fields, pad + " " * 6)
        if not inner:
            return []
        return [
            f"{pad}{field.name}(first: {connection_page_size}) {{",
            f"{pad}  edges {{",
            f"{pad}    node {{",
            *inner,
            f"{pad}    }}",
            f"{pad}  }}",
            f"{pad}}}",
        ]

    inner = _object_block(schema_types, field_type.name, max_sub_fields, pad + "  ")
    if not inner:
        return []
    return [f"{pad}{field.name} {{", *inner, f"{pad}}}"]


def build_dynamic_query(
    schema_types: List[SchemaType],
    resource: str,
    selected_fields: Optional[List[str]] = None,
    max_sub_fields: Optional[int] = None,
    connection_page_size: Optional[int] = None,
) -> str:
    """Synthesize a paginated query for ``resource`` from the introspected schema.

    Leaf fields are selected directly. Nested objects and connections only get
    ``id`` plus a bounded number of leaf sub-fields so the query stays within
    the API's cost limits.
    """
    max_sub_fields = settings.MAX_SUB_FIELDS if max_sub_fields is None else max_sub_fields
    connection_page_size = settings.CONNECTION_PAGE_SIZE if connection_page_size is None else connection_page_size

    type_name = resource_type_name(resource)
    fields = get_type_fields(schema_types, type_name)
    if selected_fields:
        fields = [f for f in fields if f.name in selected_fields]

    body: List[str] = []
    for field in fields:
        body.extend(_field_lines(schema_types, type_name, field, max_sub_fields, connection_page_size))
    if not body:
        # an empty selection set does not parse
        body = [" " * 8 + "id"]

    lines = [
        f"query Get{type_name}s($first: Int!, $after: String) {{",
        f"  {resource}(first: $first, after: $after) {{",
        "    pageInfo {",
        "      hasNextPage",
        "      endCursor",
        "    }",
        "    edges {",
        "      node {",
        *body,
        "      }",
        "    }",
        "  }",
        "}",
    ]
    return "\n".join(lines)


def _child_field(selection_set: Optional[SelectionSetNode], name: str) -> Optional[FieldNode]:
    if selection_set is None:
        return None
    for selection in selection_set.selections:
        if isinstance(selection, FieldNode) and selection.name.value == name:
            return selection
    return None


def extract_fields_from_query(query: str) -> List[str]:
    """Field names selected directly under ``edges.node`` of the first root connection."""
    document = parse(query)
    for definition in document.definitions:
        if not isinstance(definition, OperationDefinitionNode):
            continue
        for root in definition.selection_set.selections:
            if not isinstance(root, FieldNode):
                continue
            edges = _child_field(root.selection_set, "edges")
            node = _child_field(edges.selection_set if edges else None, "node")
            if node is None or node.selection_set is None:
                continue
            return [s.name.value for s in node.selection_set.selections if isinstance(s, FieldNode)]
    return []
