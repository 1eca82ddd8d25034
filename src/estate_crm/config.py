"""Environment-driven runtime configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Optional

from estate_crm.rest_client import DEFAULT_API_URL, DEFAULT_TIMEOUT, RestClient, health_url
from estate_crm.storage import FileStorage
from estate_crm.store import BaseStore, RestStore, Store

logger = logging.getLogger(__name__)

StorageMode = Literal["local", "rest"]

DEFAULT_DATA_DIR = "~/.estate_crm"


@dataclass(slots=True)
class AppConfig:
    storage: StorageMode = "local"
    data_dir: Path = Path(DEFAULT_DATA_DIR).expanduser()
    api_url: str = DEFAULT_API_URL
    timeout: float = DEFAULT_TIMEOUT

    @property
    def health_url(self) -> str:
        return health_url(self.api_url)


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Read ``CRM_STORAGE``, ``CRM_DATA_DIR``, ``CRM_API_URL`` and ``CRM_TIMEOUT``."""
    env = os.environ if environ is None else environ

    storage = (env.get("CRM_STORAGE") or "local").strip().lower()
    if storage not in ("local", "rest"):
        raise ValueError(f"CRM_STORAGE must be 'local' or 'rest', got {storage!r}")

    raw_timeout = env.get("CRM_TIMEOUT")
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
    except ValueError:
        raise ValueError(f"CRM_TIMEOUT must be a number of seconds, got {raw_timeout!r}") from None
    if timeout <= 0:
        raise ValueError("CRM_TIMEOUT must be positive")

    return AppConfig(
        storage=storage,  # type: ignore[arg-type]
        data_dir=Path(env.get("CRM_DATA_DIR") or DEFAULT_DATA_DIR).expanduser(),
        api_url=(env.get("CRM_API_URL") or DEFAULT_API_URL).rstrip("/"),
        timeout=timeout,
    )


def open_store(config: AppConfig) -> BaseStore:
    """Build the store selected by ``config``."""
    if config.storage == "rest":
        logger.debug("Using REST backend at %s", config.api_url)
        return RestStore(
            RestClient(config.api_url, timeout=config.timeout),
            snapshots=FileStorage(config.data_dir),
        )
    logger.debug("Using local storage in %s", config.data_dir)
    return Store(FileStorage(config.data_dir))


__all__ = ["AppConfig", "DEFAULT_DATA_DIR", "load_config", "open_store"]
