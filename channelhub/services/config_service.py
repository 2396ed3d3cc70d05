"""Configuration service — loads and provides read access to AppConfig."""
from __future__ import annotations

import json
import logging
import os

from pydantic import ValidationError

from channelhub.models.config import AppConfig, Options, Source

logger = logging.getLogger(__name__)

MIN_SYNC_INTERVAL = 300


def resolve_data_dir() -> str:
    """``DATA_DIR`` env var, else ``/data`` when present, else ``./data``."""
    data_dir = os.environ.get("DATA_DIR")
    if data_dir:
        return data_dir
    return "/data" if os.path.isdir("/data") else os.path.abspath("data")


class ConfigService:
    """Loads application configuration from ``config.json``.

    The config is kept in-memory after ``load()``. Sources are maintained
    by the operator; this service only reads them.
    """

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.config_file = os.path.join(data_dir, "config.json")
        self._config = AppConfig()

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> AppConfig:
        """Load configuration from disk, falling back to defaults."""
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file) as f:
                    self._config = AppConfig.model_validate(json.load(f))
                logger.info(f"Loaded {len(self._config.sources)} sources from {self.config_file}")
                return self._config
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Error loading config: {e}")

        self._config = AppConfig()
        return self._config

    @property
    def options(self) -> Options:
        return self._config.options

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def get_sources(self) -> list[Source]:
        return self._config.sources

    def get_enabled_sources(self) -> list[Source]:
        return [s for s in self.get_sources() if s.enabled]

    def get_source_by_id(self, source_id: str) -> Source | None:
        for source in self.get_sources():
            if source.id == source_id:
                return source
        return None

    def get_sync_interval(self) -> int:
        """Seconds between periodic syncs; 0 disables them."""
        interval = self.options.sync_interval
        if interval <= 0:
            return 0
        return max(interval, MIN_SYNC_INTERVAL)

    sync_interval = property(get_sync_interval)
