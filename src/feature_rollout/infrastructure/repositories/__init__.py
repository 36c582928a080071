"""Repository adapters package: explicit public exports.

Call `get_repositories(db_session, cache=None)` to obtain repository instances.
"""


def get_repositories(db_session, cache=None, ttl: int = 300):
    """Return a simple container of repository instances wired to the given db_session and optional cache."""
    # import concrete implementations lazily so callers obtain repositories
    # only via the factory API (get_repositories) rather than top-level imports
    from .analytics_repository import SqlAlchemyAnalyticsRepository
    from .assignment_repository import SqlAlchemyAssignmentRepository
    from .feature_repository import SqlAlchemyFeatureFlagRepository
    from .segment_repository import SqlAlchemySegmentRepository

    features = SqlAlchemyFeatureFlagRepository(db_session)

    # Apply caching wrappers when cache present
    if cache is not None:
        from .caching import CachingFeatureFlagRepository

        features = CachingFeatureFlagRepository(features, cache, ttl=ttl)  # type: ignore[assignment]

    return {
        "feature_flags": features,
        "segments": SqlAlchemySegmentRepository(db_session),
        "assignments": SqlAlchemyAssignmentRepository(db_session),
        "analytics": SqlAlchemyAnalyticsRepository(db_session),
    }


__all__ = ["get_repositories"]
