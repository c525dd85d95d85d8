from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from dotenv import set_key

from shopify_extractor.core.errors import MissingCredentialsError
from shopify_extractor.core.models import Credentials, settings

logger = logging.getLogger(__name__)

ENV_KEYS = {
    "client_id": "SHOPIFY_CLIENT_ID",
    "access_token": "SHOPIFY_ACCESS_TOKEN",
    "store_name": "SHOPIFY_STORE_NAME",
    "api_version": "SHOPIFY_API_VERSION",
}


def persist_credentials(credentials: Credentials, env_file: Optional[Path] = None) -> Path:
    path = Path(env_file or settings.ENV_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    for attr, key in ENV_KEYS.items():
        set_key(str(path), key, getattr(credentials, attr), quote_mode="never")
    return path


class CredentialStore:
    """Process-local credentials, seeded from the environment."""

    def __init__(self, credentials: Optional[Credentials] = None) -> None:
        self._credentials = credentials or Credentials.from_settings(settings)

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    def require(self) -> Credentials:
        if not self._credentials.is_complete:
            raise MissingCredentialsError()
        return self._credentials

    def update(self, credentials: Credentials, env_file: Optional[Path] = None, persist: bool = True) -> Credentials:
        self._credentials = credentials
        logger.info("Credentials saved with API version: %s", credentials.api_version)
        if persist:
            try:
                persist_credentials(credentials, env_file)
            except OSError as exc:
                # the in-memory credentials stay usable
                logger.error("Error saving credentials to file: %s", exc)
        return credentials
