from __future__ import annotations

from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shopify_extractor.api.extractions import router as extractions_router
from shopify_extractor.core.credentials import CredentialStore
from shopify_extractor.core.models import settings
from shopify_extractor.core.schema_cache import SchemaCache
from shopify_extractor.core.storage import ExtractionRegistry

app = FastAPI(title="Shopify Data Extractor", version="0.1.0")

allowed_origins: List[str] = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

registry = ExtractionRegistry(settings.runs_dir, settings.DATA_DIR)
extractions_router.registry = registry  # type: ignore[attr-defined]
extractions_router.credential_store = CredentialStore()  # type: ignore[attr-defined]
extractions_router.schema_cache = SchemaCache(settings.schema_cache_path)  # type: ignore[attr-defined]
extractions_router.env_file = settings.ENV_FILE  # type: ignore[attr-defined]
app.include_router(extractions_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.on_event("startup")
async def startup_event():
    registry.runs_dir.mkdir(parents=True, exist_ok=True)
    settings.CACHE_DIR.mkdir(parents=True, exist_ok=True)
