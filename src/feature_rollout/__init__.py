"""Feature flag rollout service: deterministic bucketing, staged rollouts and a kill switch."""

__version__ = "0.1.0"
