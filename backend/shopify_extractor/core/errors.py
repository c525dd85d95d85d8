"""Exceptions raised by the extractor."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

SCHEMA_COMPATIBILITY_MARKER = "doesn't exist on type"


class ExtractorError(Exception):
    """Base exception for all extractor errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}


class MissingCredentialsError(ExtractorError):
    def __init__(self, message: str = "Missing credentials") -> None:
        super().__init__(message)


class MissingParameterError(ExtractorError):
    def __init__(self, parameter: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{parameter} is required", {"parameter": parameter})
        self.parameter = parameter


class TransportError(ExtractorError):
    """Network failure, or a non-2xx response without a GraphQL error body."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_text: Optional[str] = None) -> None:
        super().__init__(message, {"status_code": status_code})
        self.status_code = status_code
        self.response_text = response_text


class GraphQLQueryError(ExtractorError):
    """The API answered with a GraphQL ``errors`` array."""

    def __init__(self, message: str, messages: Optional[List[str]] = None) -> None:
        super().__init__(message, {"errors": messages or []})
        self.messages = messages or []

    @property
    def is_schema_compatibility(self) -> bool:
        return any(is_schema_compatibility_message(m) for m in self.messages)


class SchemaCompatibilityError(GraphQLQueryError):
    """A selected field is missing from the live API version."""


class UnknownTemplateError(ExtractorError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown query type: {name}", {"name": name})
        self.name = name


class UnknownPredefinedQueryError(ExtractorError):
    def __init__(self, name: str) -> None:
        super().__init__(f"No predefined query for type: {name}", {"name": name})
        self.name = name


class ExtractionConflictError(ExtractorError):
    def __init__(self, active_run_id: str) -> None:
        super().__init__(f"Extraction {active_run_id} is still running", {"run_id": active_run_id})
        self.active_run_id = active_run_id


class ExtractionCancelled(ExtractorError):
    def __init__(self, run_id: Optional[str] = None) -> None:
        super().__init__("Extraction cancelled", {"run_id": run_id})


def is_schema_compatibility_message(message: str) -> bool:
    return SCHEMA_COMPATIBILITY_MARKER in message


def graphql_error(messages: List[str], context: str = "GraphQL Error") -> GraphQLQueryError:
    """Build the right GraphQL error class for a list of error messages."""
    first = messages[0] if messages else "unknown error"
    if any(is_schema_compatibility_message(m) for m in messages):
        return SchemaCompatibilityError(
            f"Schema compatibility issue: {first}. This query may not be compatible with your shop's API version.",
            messages,
        )
    return GraphQLQueryError(f"{context}: {first}", messages)
