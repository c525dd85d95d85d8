from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from shopify_extractor.core.models import SchemaCacheEntry, SchemaType, settings

logger = logging.getLogger(__name__)


class SchemaCache:
    """Single-file cache of the introspected type list, keyed by API version."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or settings.schema_cache_path)

    def load(self) -> Optional[SchemaCacheEntry]:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return SchemaCacheEntry.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Error loading schema cache %s: %s", self.path, exc)
            return None

    def save(self, schema_types: List[SchemaType], api_version: str) -> SchemaCacheEntry:
        entry = SchemaCacheEntry(
            apiVersion=api_version,
            timestamp=dt.datetime.now(dt.timezone.utc).isoformat(),
            schema=schema_types,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = entry.model_dump(mode="json", by_alias=True, exclude_none=True)
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.debug("Saved schema cache for API version %s", api_version)
        return entry

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info("Cleared schema cache %s", self.path)

    @staticmethod
    def is_fresh(entry: Optional[SchemaCacheEntry], api_version: str) -> bool:
        return entry is not None and entry.api_version == api_version

    def info(self) -> Optional[Dict[str, Any]]:
        entry = self.load()
        if entry is None:
            return None
        return {"timestamp": entry.timestamp, "apiVersion": entry.api_version}
