from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from shopify_extractor.core.errors import ExtractorError, TransportError, graphql_error
from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
from shopify_extractor.core.models import ExtractionStatus, GraphQLResponse, PageResult, settings
from shopify_extractor.core.pagination import connection_from
from shopify_extractor.core.storage import ExtractionTracker

if TYPE_CHECKING:
    from shopify_extractor.core.queries import QueryTemplate

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
SecondaryQueryBuilder = Callable[[str], Tuple[str, Dict[str, Any]]]
IdExtractor = Callable[[List[Record]], List[str]]
ResultMerger = Callable[[List[Record], List[Record]], Any]


def primary_progress(page: int) -> int:
    return min(50, 10 * page)


def batch_progress(done: int, total: int) -> int:
    return 50 + math.floor(done / total * 50)


def make_batches(ids: List[str], batch_size: int) -> List[List[str]]:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [ids[i : i + batch_size] for i in range(0, len(ids), batch_size)]


class DependentQueryExecutor:
    """Two-phase extraction: paginate a primary query, then fetch per-id details in batches and merge."""

    def __init__(
        self,
        client: ShopifyGraphQLClient,
        tracker: Optional[ExtractionTracker] = None,
        page_delay: Optional[float] = None,
    ) -> None:
        self.client = client
        self.tracker = tracker
        self.page_delay = settings.PAGE_DELAY if page_delay is None else page_delay

    async def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        if self.tracker:
            await self.tracker.log(message)

    async def _check_cancelled(self) -> None:
        if self.tracker:
            await self.tracker.raise_if_cancelled()

    async def fetch_primary(
        self,
        primary_query: str,
        id_extractor: IdExtractor,
        primary_variables: Optional[Dict[str, Any]] = None,
    ) -> Tuple[List[Record], List[str]]:
        if primary_variables is None:
            primary_variables = {"first": settings.PRIMARY_PAGE_SIZE, "after": None}
        if self.tracker:
            await self.tracker.set_status(ExtractionStatus.fetching_primary)
        await self._log("Starting primary query execution...")

        records: List[Record] = []
        ids: List[str] = []
        cursor: Optional[str] = None
        has_next_page = True
        page = 0
        while has_next_page:
            page += 1
            await self._check_cancelled()
            await self._log(f"Executing primary query page {page}...")
            try:
                response = await self.client.execute(primary_query, {**primary_variables, "after": cursor})
                if response.has_errors:
                    error = graphql_error(response.messages)
                    if error.is_schema_compatibility:
                        await self._log(f"Schema Compatibility Warning: {response.first_error_message}")
                        await self._log(
                            "This often occurs due to differences in API versions or shop-specific features."
                        )
                    raise error
                result = PageResult.from_connection(connection_from(response.data, None))
                if result.has_next_page and not result.end_cursor:
                    raise TransportError(f"Page {page} reported hasNextPage without an endCursor")
            except ExtractorError as exc:
                await self._log(f"Error: Primary query failed on page {page}: {exc}", logging.ERROR)
                raise

            records.extend(result.items)
            ids.extend(id_extractor(result.items))
            has_next_page = result.has_next_page
            cursor = result.end_cursor

            progress = primary_progress(page)
            if self.tracker:
                await self.tracker.set_progress(progress, records_processed=len(records))
            await self._log(
                f"Retrieved {len(result.items)} primary records (total: {len(records)}) - Progress: {progress}%"
            )
            if has_next_page and self.page_delay:
                await asyncio.sleep(self.page_delay)
        return records, ids

    async def _fetch_secondary(self, item_id: str, builder: SecondaryQueryBuilder) -> GraphQLResponse:
        query, variables = builder(item_id)
        return await self.client.execute(query, variables)

    async def fetch_secondary(
        self,
        ids: List[str],
        secondary_query_builder: SecondaryQueryBuilder,
        batch_size: int,
        inter_batch_delay: float,
    ) -> List[Record]:
        batches = make_batches(ids, batch_size)
        if self.tracker:
            await self.tracker.set_status(ExtractionStatus.fetching_secondary, total_records=len(ids))
        await self._log(f"Starting dependent queries for {len(ids)} items in {len(batches)} batches...")

        results: List[Record] = []
        for index, batch in enumerate(batches):
            await self._check_cancelled()
            await self._log(f"Processing batch {index + 1}/{len(batches)} ({len(batch)} items)")
            # every request in the batch settles before a failure is raised
            responses = await asyncio.gather(
                *(self._fetch_secondary(item_id, secondary_query_builder) for item_id in batch),
                return_exceptions=True,
            )
            failures = [r for r in responses if isinstance(r, BaseException)]
            if failures:
                exc = failures[0]
                await self._log(f"Error: Secondary query batch {index + 1} failed: {exc}", logging.ERROR)
                if isinstance(exc, TransportError):
                    raise exc
                raise TransportError(f"Secondary query batch {index + 1} failed: {exc}") from exc

            for item_id, response in zip(batch, responses):
                if response.has_errors:
                    await self._log(
                        f"Warning: Secondary query warning for ID {item_id}: {response.first_error_message}",
                        logging.WARNING,
                    )
                if response.data:
                    results.append(response.data)

            progress = batch_progress(index + 1, len(batches))
            if self.tracker:
                await self.tracker.set_progress(progress, records_processed=len(results))
            await self._log(
                f"Completed batch {index + 1}/{len(batches)} "
                f"({len(results)} secondary records retrieved) - Progress: {progress}%"
            )
            if index < len(batches) - 1 and inter_batch_delay:
                await asyncio.sleep(inter_batch_delay)
        return results

    async def execute(
        self,
        primary_query: str,
        secondary_query_builder: SecondaryQueryBuilder,
        id_extractor: IdExtractor,
        result_merger: ResultMerger,
        primary_variables: Optional[Dict[str, Any]] = None,
        batch_size: Optional[int] = None,
        inter_batch_delay: Optional[float] = None,
    ) -> Any:
        batch_size = settings.BATCH_SIZE if batch_size is None else batch_size
        inter_batch_delay = settings.BATCH_DELAY if inter_batch_delay is None else inter_batch_delay

        primary, ids = await self.fetch_primary(primary_query, id_extractor, primary_variables)
        secondary = await self.fetch_secondary(ids, secondary_query_builder, batch_size, inter_batch_delay)

        merged = result_merger(primary, secondary)
        if self.tracker:
            await self.tracker.set_progress(100)
        await self._log(
            f"Successfully merged {len(primary)} primary records with {len(secondary)} secondary records"
        )
        return merged

    async def execute_template(
        self,
        template: "QueryTemplate",
        primary_variables: Optional[Dict[str, Any]] = None,
        batch_size: Optional[int] = None,
        inter_batch_delay: Optional[float] = None,
    ) -> Any:
        return await self.execute(
            template.primary_query,
            template.build_secondary,
            template.id_extractor,
            template.result_merger,
            primary_variables=primary_variables,
            batch_size=batch_size,
            inter_batch_delay=inter_batch_delay,
        )
