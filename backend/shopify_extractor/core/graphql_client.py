from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from shopify_extractor.core.errors import GraphQLQueryError, TransportError, graphql_error
from shopify_extractor.core.models import Credentials, GraphQLResponse, SchemaType, settings

logger = logging.getLogger(__name__)

SHOP_QUERY = """
{
  shop {
    name
    primaryDomain {
      url
    }
  }
}
"""

TYPE_QUERY = """
query GetResourceType($name: String!) {
  __type(name: $name) {
    name
    kind
    description
    fields {
      name
      description
      type {
        kind
        name
        ofType {
          kind
          name
          ofType {
            kind
            name
            ofType {
              kind
              name
            }
          }
        }
      }
    }
  }
}
"""


def _normalize_errors(raw: Any) -> List[Dict[str, Any]]:
    if not raw:
        return []
    if isinstance(raw, str):
        return [{"message": raw}]
    if isinstance(raw, dict):
        return [raw if "message" in raw else {"message": str(raw)}]
    if isinstance(raw, list):
        return [err if isinstance(err, dict) else {"message": str(err)} for err in raw]
    return [{"message": str(raw)}]


class ShopifyGraphQLClient:
    def __init__(
        self,
        credentials: Credentials,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.endpoint = credentials.endpoint
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.credentials.access_token,
        }

    async def __aenter__(self) -> "ShopifyGraphQLClient":
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> GraphQLResponse:
        """POST one GraphQL document. GraphQL errors come back on the response; transport errors raise."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        payload = {"query": query, "variables": variables or {}}
        try:
            resp = await self._client.post(self.endpoint, json=payload, headers=self.headers)
        except httpx.HTTPError as exc:
            logger.error("Request to %s failed: %s", self.endpoint, exc)
            raise TransportError(f"Request failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not isinstance(body, dict) or ("data" not in body and "errors" not in body):
            if resp.is_success:
                raise TransportError("Invalid response body from Shopify", resp.status_code, resp.text)
            raise TransportError(f"HTTP {resp.status_code} from Shopify", resp.status_code, resp.text)

        errors = _normalize_errors(body.get("errors"))
        if not resp.is_success and not errors:
            raise TransportError(f"HTTP {resp.status_code} from Shopify", resp.status_code, resp.text)
        if errors:
            logger.debug("GraphQL errors from %s: %s", self.endpoint, errors)
        return GraphQLResponse(data=body.get("data"), errors=errors, status_code=resp.status_code)

    async def test_connection(self) -> Dict[str, Any]:
        response = await self.execute(SHOP_QUERY)
        if response.has_errors:
            raise graphql_error(response.messages, "Connection test failed")
        shop = (response.data or {}).get("shop")
        if not shop:
            raise TransportError("Invalid response from Shopify", response.status_code)
        return shop

    async def fetch_type(self, type_name: str) -> Optional[SchemaType]:
        response = await self.execute(TYPE_QUERY, {"name": type_name})
        if response.has_errors:
            raise GraphQLQueryError(f"Type lookup failed: {response.first_error_message}", response.messages)
        raw = (response.data or {}).get("__type")
        if not raw:
            return None
        raw["fields"] = [f for f in raw.get("fields") or [] if not f["name"].startswith("__")]
        return SchemaType.model_validate(raw)
