from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shopify_extractor.core.errors import TransportError, graphql_error
from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
from shopify_extractor.core.models import GraphQLResponse, PageResult, settings
from shopify_extractor.core.storage import ExtractionTracker

logger = logging.getLogger(__name__)

QueryRegenerator = Callable[[], Awaitable[str]]


def page_progress(page: int, has_next_page: bool) -> int:
    """100 on the last page, otherwise an estimate that stays at or below 90."""
    if not has_next_page:
        return 100
    return min(90, 15 * page)


def connection_from(data: Optional[Dict[str, Any]], resource_key: Optional[str]) -> Dict[str, Any]:
    if not data:
        raise TransportError("Response carried no data")
    key = resource_key or next(iter(data))
    connection = data.get(key)
    if not isinstance(connection, dict):
        raise TransportError(f"Response has no '{key}' connection")
    return connection


class PaginatedFetcher:
    """Cursor loop over one connection query, accumulating ``edges[].node`` in page order."""

    def __init__(
        self,
        client: ShopifyGraphQLClient,
        tracker: Optional[ExtractionTracker] = None,
        page_delay: Optional[float] = None,
        page_dir: Optional[Path] = None,
    ) -> None:
        self.client = client
        self.tracker = tracker
        self.page_delay = settings.PAGE_DELAY if page_delay is None else page_delay
        self.page_dir = page_dir
        self.query: Optional[str] = None

    async def _log(self, message: str) -> None:
        logger.info(message)
        if self.tracker:
            await self.tracker.log(message)

    def _save_page(self, label: str, page: int, response: GraphQLResponse) -> None:
        if self.page_dir is None:
            return
        self.page_dir.mkdir(parents=True, exist_ok=True)
        payload: Dict[str, Any] = {"data": response.data}
        if response.errors:
            payload["errors"] = response.errors
        path = self.page_dir / f"{label}_page_{page}.json"
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    async def fetch_all(
        self,
        query: str,
        initial_variables: Optional[Dict[str, Any]] = None,
        resource_key: Optional[str] = None,
        regenerate: Optional[QueryRegenerator] = None,
        label: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        label = label or resource_key or "records"
        self.query = query
        items: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        has_next_page = True
        regenerated = False
        page = 0

        await self._log(f"Starting paginated extraction for {label}...")
        while has_next_page:
            page += 1
            variables = {**(initial_variables or {}), "after": cursor}
            await self._log(f"Fetching page {page}...")
            if self.tracker:
                await self.tracker.raise_if_cancelled()
            response = await self.client.execute(self.query, variables)

            if response.has_errors:
                self._save_page(label, page, response)
                if regenerate is None or regenerated:
                    await self._log(f"GraphQL Error: {response.first_error_message}")
                    raise graphql_error(response.messages)
                regenerated = True
                await self._log(f"GraphQL errors on page {page}: {response.first_error_message}")
                await self._log("Regenerating query using schema...")
                self.query = await regenerate()
                if self.tracker:
                    await self.tracker.raise_if_cancelled()
                response = await self.client.execute(self.query, variables)
                if response.has_errors:
                    self._save_page(label, page, response)
                    await self._log(f"GraphQL Error after regeneration: {response.first_error_message}")
                    raise graphql_error(response.messages)
                await self._log("Regenerated query succeeded")

            self._save_page(label, page, response)
            result = PageResult.from_connection(connection_from(response.data, resource_key))
            items.extend(result.items)
            has_next_page = result.has_next_page
            cursor = result.end_cursor

            progress = page_progress(page, has_next_page)
            if self.tracker:
                await self.tracker.set_progress(progress, records_processed=len(items))
            await self._log(f"Retrieved {len(result.items)} records (total: {len(items)}) - Progress: {progress}%")

            if has_next_page and not cursor:
                # a next page without a cursor would refetch the same page forever
                raise TransportError(f"Page {page} reported hasNextPage without an endCursor")
            if has_next_page and self.page_delay:
                await asyncio.sleep(self.page_delay)

        await self._log(f"Completed extraction for {label}. Total items: {len(items)}")
        return items
