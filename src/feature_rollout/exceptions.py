"""Error taxonomy shared by the service, repositories and HTTP surface."""


class FeatureRolloutError(Exception):
    """Base class for errors raised by the feature rollout service."""

    status_code: int = 500


class NotFoundError(FeatureRolloutError):
    """A flag, segment or rollout does not exist."""

    status_code = 404


class InvalidArgumentError(FeatureRolloutError, ValueError):
    """Caller supplied a malformed value (percentage out of range, empty user id)."""

    status_code = 400


class UpstreamUnavailableError(FeatureRolloutError):
    """Reading flag or assignment data from storage failed."""

    status_code = 503


class DuplicateError(FeatureRolloutError):
    """Conflicting resource already exists."""

    status_code = 409


def validate_percentage(percentage, field: str = "rollout_percentage") -> int:
    if isinstance(percentage, bool) or not isinstance(percentage, int):
        raise InvalidArgumentError(f"{field} must be an integer, got {percentage!r}")
    if percentage < 0 or percentage > 100:
        raise InvalidArgumentError(f"{field} must be between 0 and 100, got {percentage}")
    return percentage
