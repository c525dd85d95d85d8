from __future__ import annotations

import datetime as dt
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DATA_DIR: Path = Path("data")
    CACHE_DIR: Path = Path("cache")
    ENV_FILE: Path = Path(".env")
    CORS_ORIGINS: str = "http://localhost:3000"

    SHOPIFY_STORE_NAME: str = ""
    SHOPIFY_ACCESS_TOKEN: str = ""
    SHOPIFY_CLIENT_ID: str = ""
    SHOPIFY_API_VERSION: str = "2025-01"

    REQUEST_TIMEOUT: float = 30.0
    PAGE_SIZE: int = 250
    PRIMARY_PAGE_SIZE: int = 50
    PAGE_DELAY: float = 0.5
    BATCH_DELAY: float = 0.5
    BATCH_SIZE: int = 5
    MAX_SUB_FIELDS: int = 5
    CONNECTION_PAGE_SIZE: int = 10

    @property
    def schema_cache_path(self) -> Path:
        return self.CACHE_DIR / "schema-cache.json"

    @property
    def runs_dir(self) -> Path:
        return self.DATA_DIR / "runs"


DEFAULT_API_VERSION = "2025-01"


class Credentials(BaseModel):
    """Shopify Admin API credentials for one store."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    store_name: str = Field("", alias="storeName")
    access_token: str = Field("", alias="accessToken")
    client_id: str = Field("", alias="clientId")
    api_version: str = Field(DEFAULT_API_VERSION, alias="apiVersion")

    @property
    def endpoint(self) -> str:
        return f"https://{self.store_name}.myshopify.com/admin/api/{self.api_version}/graphql.json"

    @property
    def is_complete(self) -> bool:
        return bool(self.store_name and self.access_token)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "Credentials":
        return cls(
            storeName=cfg.SHOPIFY_STORE_NAME,
            accessToken=cfg.SHOPIFY_ACCESS_TOKEN,
            clientId=cfg.SHOPIFY_CLIENT_ID,
            apiVersion=cfg.SHOPIFY_API_VERSION or DEFAULT_API_VERSION,
        )


# Schema ---------------------------------------------------------------------

WRAPPER_KINDS = {"LIST", "NON_NULL"}


class TypeRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    kind: str
    of_type: Optional["TypeRef"] = Field(None, alias="ofType")

    def named_type(self) -> Optional["TypeRef"]:
        """Strip LIST/NON_NULL wrappers down to the terminal named type."""
        current: Optional[TypeRef] = self
        while current is not None and current.kind in WRAPPER_KINDS:
            current = current.of_type
        return current


class SchemaField(BaseModel):
    name: str
    description: Optional[str] = None
    type: TypeRef


class SchemaType(BaseModel):
    name: str
    kind: str
    description: Optional[str] = None
    fields: Optional[List[SchemaField]] = None


class SchemaCacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(..., alias="apiVersion")
    timestamp: str
    schema_types: List[SchemaType] = Field(default_factory=list, alias="schema")


# GraphQL transport ----------------------------------------------------------


class GraphQLResponse(BaseModel):
    data: Optional[Dict[str, Any]] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    status_code: int = 200

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def messages(self) -> List[str]:
        return [str(err.get("message", err)) for err in self.errors]

    @property
    def first_error_message(self) -> Optional[str]:
        messages = self.messages
        return messages[0] if messages else None


class PageResult(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None

    @classmethod
    def from_connection(cls, connection: Optional[Dict[str, Any]]) -> "PageResult":
        connection = connection or {}
        edges = connection.get("edges") or []
        page_info = connection.get("pageInfo") or {}
        return cls(
            items=[edge.get("node") for edge in edges if isinstance(edge, dict)],
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )


# Queries --------------------------------------------------------------------


class PredefinedQuery(BaseModel):
    query: str
    fields: List[str] = Field(default_factory=list)


# Extraction sessions ----------------------------------------------------------


class ExtractionStatus(str, Enum):
    idle = "idle"
    initializing = "initializing"
    fetching_primary = "fetching-primary"
    fetching_secondary = "fetching-secondary"
    paginating = "paginating"
    running = "running"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {ExtractionStatus.completed, ExtractionStatus.failed, ExtractionStatus.cancelled}


class ExtractionKind(str, Enum):
    resource = "resource"
    dependent = "dependent"


class ExtractionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    kind: ExtractionKind = ExtractionKind.resource
    resource: str
    status: ExtractionStatus = ExtractionStatus.initializing
    progress: int = 0
    records_processed: int = Field(0, alias="recordsProcessed")
    total_records: int = Field(0, alias="totalRecords")
    query: Optional[str] = None
    error: Optional[str] = None
    started_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc), alias="startedAt")
    finished_at: Optional[dt.datetime] = Field(default=None, alias="finishedAt")
    cancel_requested: bool = False
    logs_path: Optional[Path] = None
    result_path: Optional[Path] = None
    data: Optional[Any] = None


# HTTP payloads --------------------------------------------------------------


class CredentialsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_name: Optional[str] = Field(None, alias="storeName")
    client_id: Optional[str] = Field(None, alias="clientId")
    access_token: Optional[str] = Field(None, alias="accessToken")
    api_version: Optional[str] = Field(None, alias="apiVersion")


class ExtractRequest(BaseModel):
    resource: Optional[str] = None
    query: Optional[str] = None
    fields: Optional[List[str]] = None


class DependentExtractRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query_type: Optional[str] = Field(None, alias="queryType")


class ValidateQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resource_type: Optional[str] = Field(None, alias="resourceType")
    predefined_type: Optional[str] = Field(None, alias="predefinedType")


class BuildQueryRequest(BaseModel):
    resource: Optional[str] = None
    fields: Optional[List[str]] = None


class CreateExtractionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    status: ExtractionStatus
    message: str


class ExtractionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    resource: str
    status: ExtractionStatus
    progress: int
    records_processed: int = Field(..., alias="recordsProcessed")
    total_records: int = Field(..., alias="totalRecords")
    log: Optional[str] = None
    error: Optional[str] = None
    data: Optional[Any] = None
    started_at: dt.datetime = Field(..., alias="startedAt")
    finished_at: Optional[dt.datetime] = Field(default=None, alias="finishedAt")


class LogsResponse(BaseModel):
    lines: List[str]
    next_cursor: int


class TemplateInfo(BaseModel):
    name: str
    label: str
    description: str
    help: str


settings = Settings()
