"""Caching repository decorators.

Cache-aside wrappers for repositories whose reads sit on the evaluation hot
path. Each wraps a base repository and adds transparent caching with Redis or
the in-memory cache.
"""

from .feature_flag_caching import CachingFeatureFlagRepository

__all__ = ["CachingFeatureFlagRepository"]
