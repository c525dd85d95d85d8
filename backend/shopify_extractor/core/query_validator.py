from __future__ import annotations

import logging
from typing import Dict, List, Optional

from graphql import GraphQLError, parse
from graphql.language.ast import (
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    OperationDefinitionNode,
    SelectionSetNode,
)

from shopify_extractor.core.models import PredefinedQuery, SchemaType
from shopify_extractor.core.query_builder import build_dynamic_query
from shopify_extractor.core.schema import get_field, get_type

logger = logging.getLogger(__name__)

ROOT_TYPE_NAMES = ("QueryRoot", "Query")


def _root_type(schema_types: List[SchemaType]) -> Optional[SchemaType]:
    for name in ROOT_TYPE_NAMES:
        root = get_type(schema_types, name)
        if root is not None:
            return root
    return None


def find_invalid_fields(schema_types: List[SchemaType], query: str) -> List[str]:
    """Walk the query's selection sets and return the dotted paths that don't resolve against the schema."""
    document = parse(query)
    fragments: Dict[str, FragmentDefinitionNode] = {
        d.name.value: d for d in document.definitions if isinstance(d, FragmentDefinitionNode)
    }
    invalid: List[str] = []

    def traverse_selection(selection_set: SelectionSetNode, parent: SchemaType, path: List[str]) -> None:
        for selection in selection_set.selections:
            if isinstance(selection, FieldNode):
                field_name = selection.name.value
                if field_name == "__typename":
                    continue
                field_path = ".".join(path + [field_name])
                field = get_field(schema_types, parent.name, field_name)
                if field is None:
                    invalid.append(field_path)
                    continue
                if selection.selection_set is None:
                    continue
                named = field.type.named_type()
                child = get_type(schema_types, named.name) if named and named.name else None
                if child is None:
                    invalid.append(field_path)
                    continue
                traverse_selection(selection.selection_set, child, path + [field_name])
            elif isinstance(selection, InlineFragmentNode):
                target = parent
                if selection.type_condition is not None:
                    target = get_type(schema_types, selection.type_condition.name.value)
                    if target is None:
                        invalid.append(".".join(path + [f"... on {selection.type_condition.name.value}"]))
                        continue
                traverse_selection(selection.selection_set, target, path)
            elif isinstance(selection, FragmentSpreadNode):
                fragment = fragments.get(selection.name.value)
                if fragment is None:
                    invalid.append(".".join(path + [f"...{selection.name.value}"]))
                    continue
                target = get_type(schema_types, fragment.type_condition.name.value)
                if target is None:
                    invalid.append(".".join(path + [f"...{selection.name.value}"]))
                    continue
                traverse_selection(fragment.selection_set, target, path)

    root = _root_type(schema_types)
    if root is None:
        return list(ROOT_TYPE_NAMES)

    for definition in document.definitions:
        if isinstance(definition, OperationDefinitionNode) and definition.operation.value == "query":
            traverse_selection(definition.selection_set, root, [])
    return invalid


def validate_query_against_schema(schema_types: List[SchemaType], query: str) -> bool:
    try:
        invalid = find_invalid_fields(schema_types, query)
    except GraphQLError as exc:
        logger.warning("Could not parse query: %s", exc.message)
        return False
    if invalid:
        logger.info("Query selects fields missing from the schema: %s", ", ".join(invalid))
    return not invalid


def validate_and_update_predefined_query(
    schema_types: List[SchemaType], resource: str, predefined: PredefinedQuery
) -> PredefinedQuery:
    """Keep a predefined query when it still matches the schema, otherwise regenerate it."""
    try:
        if validate_query_against_schema(schema_types, predefined.query):
            return predefined
        logger.warning("Predefined query for %s validation failed, generating dynamic query instead", resource)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Error validating predefined query: %s", exc)
    return PredefinedQuery(query=build_dynamic_query(schema_types, resource), fields=predefined.fields)
