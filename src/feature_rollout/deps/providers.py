"""Singleton providers for application-wide services and clients.

This module handles lazy initialization of singleton instances like Settings,
the cache client and the staged rollout scheduler. The composition root
replaces the module-level clients at startup.
"""

from typing import Any, Optional

from ..config import Settings
from ..infrastructure.cache.redis_client import InMemoryCache

# Lazy singletons to avoid import-time side-effects
_settings: Settings | None = None
_app_cache_client: Any = None
_app_rollout_scheduler: Any = None


def get_settings() -> Settings:
    """Get or create singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_cache_client():
    """Get cache client: prefer app-initialized client, fallback to InMemoryCache."""
    global _app_cache_client
    if _app_cache_client is None:
        # shared process-local cache until startup installs the configured one
        _app_cache_client = InMemoryCache()
    return _app_cache_client


def get_rollout_scheduler() -> Optional[Any]:
    """Get the app-wide staged rollout scheduler (None before startup)."""
    return _app_rollout_scheduler
