from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from shopify_extractor.core.credentials import CredentialStore
from shopify_extractor.core.csv_export import records_to_csv
from shopify_extractor.core.errors import (
    ExtractionConflictError,
    ExtractorError,
    GraphQLQueryError,
    MissingCredentialsError,
    MissingParameterError,
    TransportError,
    UnknownPredefinedQueryError,
    UnknownTemplateError,
)
from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
from shopify_extractor.core.models import (
    BuildQueryRequest,
    CreateExtractionResponse,
    Credentials,
    CredentialsRequest,
    DEFAULT_API_VERSION,
    DependentExtractRequest,
    ExtractionKind,
    ExtractionStatus,
    ExtractionStatusResponse,
    ExtractRequest,
    LogsResponse,
    PredefinedQuery,
    TemplateInfo,
    ValidateQueryRequest,
)
from shopify_extractor.core.queries import get_predefined_query, get_query_template, list_templates
from shopify_extractor.core.query_builder import build_dynamic_query, extract_fields_from_query
from shopify_extractor.core.query_validator import validate_and_update_predefined_query
from shopify_extractor.core.runner import run_dependent_extraction, run_resource_extraction
from shopify_extractor.core.schema import load_schema, resource_type_name
from shopify_extractor.core.schema_cache import SchemaCache
from shopify_extractor.core.storage import ExtractionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ClientFactory = Callable[[Credentials], ShopifyGraphQLClient]

# background extractions, kept referenced until they finish
_tasks: Set["asyncio.Task[None]"] = set()


async def get_registry() -> ExtractionRegistry:
    return router.registry  # type: ignore[attr-defined]


async def get_credential_store() -> CredentialStore:
    return router.credential_store  # type: ignore[attr-defined]


async def get_schema_cache() -> SchemaCache:
    return router.schema_cache  # type: ignore[attr-defined]


async def get_client_factory() -> ClientFactory:
    return getattr(router, "client_factory", ShopifyGraphQLClient)


def _http_error(exc: ExtractorError) -> HTTPException:
    if isinstance(exc, ExtractionConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (TransportError, GraphQLQueryError)):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, (MissingCredentialsError, MissingParameterError, UnknownTemplateError, UnknownPredefinedQueryError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _require_credentials(store: CredentialStore) -> Credentials:
    try:
        return store.require()
    except MissingCredentialsError as exc:
        raise _http_error(exc) from exc


def _require(value: Any, parameter: str, message: str) -> Any:
    if not value:
        raise _http_error(MissingParameterError(parameter, message))
    return value


def _spawn(coro) -> None:
    task = asyncio.create_task(coro)
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)


async def _schema_types(credentials: Credentials, cache: SchemaCache, factory: ClientFactory):
    async with factory(credentials) as client:
        return await load_schema(client, cache, credentials.api_version)


@router.post("/credentials")
async def save_credentials(
    payload: CredentialsRequest, store: CredentialStore = Depends(get_credential_store)
) -> Dict[str, Any]:
    if not payload.store_name or not payload.client_id or not payload.access_token:
        raise HTTPException(status_code=400, detail="Missing required credentials")
    credentials = Credentials(
        storeName=payload.store_name,
        clientId=payload.client_id,
        accessToken=payload.access_token,
        apiVersion=payload.api_version or DEFAULT_API_VERSION,
    )
    store.update(credentials, env_file=getattr(router, "env_file", None))
    return {"success": True, "message": "Credentials saved"}


@router.get("/test-connection")
async def test_connection(
    store: CredentialStore = Depends(get_credential_store),
    factory: ClientFactory = Depends(get_client_factory),
) -> Dict[str, Any]:
    credentials = _require_credentials(store)
    try:
        async with factory(credentials) as client:
            shop = await client.test_connection()
    except ExtractorError as exc:
        logger.error("Connection test error: %s", exc)
        raise _http_error(exc) from exc
    return {"success": True, "message": "Connection successful", "shop": shop}


@router.get("/schema")
async def get_schema(
    store: CredentialStore = Depends(get_credential_store),
    cache: SchemaCache = Depends(get_schema_cache),
    factory: ClientFactory = Depends(get_client_factory),
) -> List[Dict[str, Any]]:
    credentials = _require_credentials(store)
    try:
        types = await _schema_types(credentials, cache, factory)
    except ExtractorError as exc:
        raise _http_error(exc) from exc
    return [t.model_dump(by_alias=True, exclude_none=True) for t in types]


@router.get("/resource-fields")
async def get_resource_fields(
    resource: Optional[str] = Query(None),
    store: CredentialStore = Depends(get_credential_store),
    factory: ClientFactory = Depends(get_client_factory),
) -> Dict[str, Any]:
    _require(resource, "resource", "Resource name is required")
    credentials = _require_credentials(store)
    try:
        async with factory(credentials) as client:
            schema_type = await client.fetch_type(resource_type_name(resource))
    except ExtractorError as exc:
        raise _http_error(exc) from exc
    if schema_type is None:
        raise HTTPException(status_code=502, detail="Invalid type response from Shopify")
    return {
        "resource": resource,
        "type": schema_type.name,
        "description": schema_type.description,
        "fields": [f.model_dump(by_alias=True, exclude_none=True) for f in schema_type.fields or []],
    }


@router.post("/extract", response_model=CreateExtractionResponse)
async def start_extraction(
    payload: ExtractRequest,
    registry: ExtractionRegistry = Depends(get_registry),
    store: CredentialStore = Depends(get_credential_store),
    cache: SchemaCache = Depends(get_schema_cache),
    factory: ClientFactory = Depends(get_client_factory),
) -> CreateExtractionResponse:
    resource = _require(payload.resource, "resource", "Resource name is required")
    credentials = _require_credentials(store)
    active = await registry.active_run()
    if active:
        raise _http_error(ExtractionConflictError(active.run_id))
    try:
        schema_types = await _schema_types(credentials, cache, factory)
        query = payload.query or build_dynamic_query(schema_types, resource, payload.fields)
        record = await registry.create_run(resource, ExtractionKind.resource, query=query)
    except ExtractorError as exc:
        raise _http_error(exc) from exc

    _spawn(run_resource_extraction(record.run_id, factory(credentials), resource, query, schema_types, registry))
    return CreateExtractionResponse(runId=record.run_id, status=record.status, message="Extraction started")


@router.post("/dependent-extract", response_model=CreateExtractionResponse)
async def start_dependent_extraction(
    payload: DependentExtractRequest,
    registry: ExtractionRegistry = Depends(get_registry),
    store: CredentialStore = Depends(get_credential_store),
    cache: SchemaCache = Depends(get_schema_cache),
    factory: ClientFactory = Depends(get_client_factory),
) -> CreateExtractionResponse:
    query_type = _require(payload.query_type, "queryType", "Query type is required")
    credentials = _require_credentials(store)
    try:
        template = get_query_template(query_type)
        record = await registry.create_run(query_type, ExtractionKind.dependent, label=template.label)
    except ExtractorError as exc:
        raise _http_error(exc) from exc

    _spawn(run_dependent_extraction(record.run_id, factory(credentials), query_type, registry, cache))
    return CreateExtractionResponse(runId=record.run_id, status=record.status, message="Dependent extraction started")


@router.get("/extraction-status")
async def latest_extraction_status(registry: ExtractionRegistry = Depends(get_registry)):
    run_id = await registry.latest_run_id()
    if run_id is None:
        return {"status": ExtractionStatus.idle.value, "progress": 0, "recordsProcessed": 0, "totalRecords": 0, "log": None, "data": None}
    return await registry.get_status(run_id)


@router.get("/extractions/{run_id}", response_model=ExtractionStatusResponse)
async def get_extraction(run_id: str, registry: ExtractionRegistry = Depends(get_registry)) -> ExtractionStatusResponse:
    status = await registry.get_status(run_id)
    if not status:
        raise HTTPException(status_code=404, detail="Extraction not found")
    return status


@router.get("/extractions/{run_id}/logs", response_model=LogsResponse)
async def get_logs(
    run_id: str, cursor: int = Query(0, ge=0), registry: ExtractionRegistry = Depends(get_registry)
) -> LogsResponse:
    logs = await registry.get_logs(run_id, cursor)
    if not logs:
        raise HTTPException(status_code=404, detail="Extraction not found")
    return logs


@router.get("/extractions/{run_id}/results")
async def get_results(
    run_id: str,
    format: str = Query("json", pattern="^(json|csv)$"),
    registry: ExtractionRegistry = Depends(get_registry),
):
    record = await registry.get_record(run_id)
    if not record:
        raise HTTPException(status_code=404, detail="Extraction not found")
    if record.status != ExtractionStatus.completed:
        raise HTTPException(status_code=404, detail="Results not ready")
    data = await registry.load_results(run_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Results not available")
    if format == "csv":
        rows = data if isinstance(data, list) else [data]
        return PlainTextResponse(
            records_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{record.resource}.csv"'},
        )
    return data


@router.post("/extractions/{run_id}/cancel")
async def cancel_extraction(run_id: str, registry: ExtractionRegistry = Depends(get_registry)) -> Dict[str, Any]:
    record = await registry.get_record(run_id)
    if not record:
        raise HTTPException(status_code=404, detail="Extraction not found")
    requested = await registry.request_cancel(run_id)
    if requested:
        await registry.append_log(run_id, "Cancellation requested")
    return {"runId": run_id, "cancelRequested": requested, "status": record.status}


@router.get("/dependent-query-templates", response_model=List[TemplateInfo])
async def get_templates() -> List[TemplateInfo]:
    return list_templates()


@router.post("/validate-query", response_model=PredefinedQuery)
async def validate_query(
    payload: ValidateQueryRequest,
    store: CredentialStore = Depends(get_credential_store),
    cache: SchemaCache = Depends(get_schema_cache),
    factory: ClientFactory = Depends(get_client_factory),
) -> PredefinedQuery:
    resource_type = _require(payload.resource_type, "resourceType", "Resource type is required")
    credentials = _require_credentials(store)
    try:
        predefined = get_predefined_query(payload.predefined_type) if payload.predefined_type else None
        schema_types = await _schema_types(credentials, cache, factory)
    except ExtractorError as exc:
        raise _http_error(exc) from exc
    if predefined is not None:
        return validate_and_update_predefined_query(schema_types, resource_type, predefined)
    query = build_dynamic_query(schema_types, resource_type)
    return PredefinedQuery(query=query, fields=extract_fields_from_query(query))


@router.post("/build-query")
async def build_query(
    payload: BuildQueryRequest,
    store: CredentialStore = Depends(get_credential_store),
    cache: SchemaCache = Depends(get_schema_cache),
    factory: ClientFactory = Depends(get_client_factory),
) -> Dict[str, str]:
    resource = _require(payload.resource, "resource", "Resource name is required")
    credentials = _require_credentials(store)
    try:
        schema_types = await _schema_types(credentials, cache, factory)
    except ExtractorError as exc:
        raise _http_error(exc) from exc
    return {"query": build_dynamic_query(schema_types, resource, payload.fields)}


@router.get("/schema-info")
async def schema_info(
    store: CredentialStore = Depends(get_credential_store),
    cache: SchemaCache = Depends(get_schema_cache),
) -> Dict[str, Any]:
    return {"apiVersion": store.credentials.api_version, "schemaCache": cache.info()}


@router.post("/clear-schema-cache")
async def clear_schema_cache(cache: SchemaCache = Depends(get_schema_cache)) -> Dict[str, Any]:
    cache.clear()
    return {"success": True, "message": "Schema cache cleared"}
