from __future__ import annotations

from typing import Any, List, Optional

from shopify_extractor.core.dependent import DependentQueryExecutor
from shopify_extractor.core.errors import (
    ExtractionCancelled,
    GraphQLQueryError,
    is_schema_compatibility_message,
)
from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
from shopify_extractor.core.models import ExtractionStatus, SchemaType, settings
from shopify_extractor.core.pagination import PaginatedFetcher
from shopify_extractor.core.queries import get_query_template
from shopify_extractor.core.query_builder import build_dynamic_query
from shopify_extractor.core.query_validator import find_invalid_fields
from shopify_extractor.core.schema import load_schema
from shopify_extractor.core.schema_cache import SchemaCache
from shopify_extractor.core.storage import ExtractionRegistry, ExtractionTracker


def _record_count(data: Any) -> int:
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        # multi-root results such as {"locations": [...], "inventoryItems": [...]}
        return sum(len(v) for v in data.values() if isinstance(v, list))
    return 1


async def run_resource_extraction(
    run_id: str,
    client: ShopifyGraphQLClient,
    resource: str,
    query: str,
    schema_types: List[SchemaType],
    registry: ExtractionRegistry,
    page_size: Optional[int] = None,
    page_delay: Optional[float] = None,
) -> None:
    tracker = ExtractionTracker(registry, run_id)

    async def regenerate() -> str:
        new_query = build_dynamic_query(schema_types, resource)
        await registry.update_status(run_id, query=new_query)
        await tracker.log("Retrying with dynamically generated query")
        return new_query

    try:
        await tracker.set_status(ExtractionStatus.running)
        await tracker.log(f"Extraction initiated for {resource} (API version {client.credentials.api_version})")
        await tracker.set_status(ExtractionStatus.paginating)
        fetcher = PaginatedFetcher(client, tracker=tracker, page_delay=page_delay)
        items = await fetcher.fetch_all(
            query,
            {"first": page_size or settings.PAGE_SIZE},
            resource_key=resource,
            regenerate=regenerate,
            label=resource,
        )

        await tracker.set_status(ExtractionStatus.processing, total_records=len(items))
        await tracker.log(f"Processing {len(items)} items...")
        path = await registry.save_results(run_id, resource, items)
        if path:
            await tracker.log(f"Data saved to file: {path.name}")
        await tracker.set_status(ExtractionStatus.completed, progress=100, records_processed=len(items))
        await tracker.log(f"Extraction of {len(items)} {resource} completed successfully!")
    except ExtractionCancelled:
        await tracker.log("Extraction cancelled")
        await tracker.set_status(ExtractionStatus.cancelled)
    except Exception as exc:  # noqa: BLE001
        await tracker.log(f"Error: {exc}")
        await tracker.set_status(ExtractionStatus.failed, error=str(exc))
    finally:
        await client.aclose()


async def run_dependent_extraction(
    run_id: str,
    client: ShopifyGraphQLClient,
    template_name: str,
    registry: ExtractionRegistry,
    cache: SchemaCache,
    batch_size: Optional[int] = None,
    page_delay: Optional[float] = None,
    batch_delay: Optional[float] = None,
) -> None:
    tracker = ExtractionTracker(registry, run_id)
    try:
        template = get_query_template(template_name)
        schema_types = await load_schema(client, cache, client.credentials.api_version, tracker)

        await tracker.log(f"Validating {template.label} template against schema...")
        invalid = find_invalid_fields(schema_types, template.primary_query)
        if invalid:
            await tracker.log(f"Warning: fields not found in schema: {', '.join(invalid)}")

        await tracker.log(f"Starting {template.label} extraction with primary query...")
        executor = DependentQueryExecutor(client, tracker=tracker, page_delay=page_delay)
        results = await executor.execute_template(
            template,
            batch_size=batch_size,
            inter_batch_delay=batch_delay,
        )

        count = _record_count(results)
        path = await registry.save_results(run_id, template_name, results)
        await tracker.set_status(
            ExtractionStatus.completed, progress=100, records_processed=count, total_records=count
        )
        await tracker.log(f"Extraction completed: {count} records extracted")
        if path:
            await tracker.log(f"Results saved to file: {path.name}")
    except ExtractionCancelled:
        await tracker.log("Extraction cancelled")
        await tracker.set_status(ExtractionStatus.cancelled)
    except Exception as exc:  # noqa: BLE001
        message = str(exc)
        schema_issue = (isinstance(exc, GraphQLQueryError) and exc.is_schema_compatibility) or (
            is_schema_compatibility_message(message)
        )
        if schema_issue:
            await tracker.log(f"Schema Compatibility Error: {message}")
            await tracker.log("This template may not be compatible with your Shopify API version or shop configuration.")
            await tracker.log("Consider trying a different template or customizing this template for your shop.")
        else:
            await tracker.log(f"Error: {message}")
        await tracker.set_status(ExtractionStatus.failed, error=message)
    finally:
        await client.aclose()
