"""Dependency injection for FastAPI.

This package provides all FastAPI dependency functions organized by responsibility:
- providers: Singleton providers (settings, cache, rollout scheduler)
- injection: Repository and service dependency injection, user context, feature gates
"""

from .injection import (
    build_feature_service,
    get_db,
    get_feature_service,
    get_scheduler,
    get_user_context,
    require_feature,
    session_service_factory,
)
from .providers import get_cache_client, get_rollout_scheduler, get_settings

__all__ = [
    # Providers
    "get_settings",
    "get_cache_client",
    "get_rollout_scheduler",
    # Injection
    "get_db",
    "get_feature_service",
    "get_scheduler",
    "get_user_context",
    "require_feature",
    "build_feature_service",
    "session_service_factory",
]
