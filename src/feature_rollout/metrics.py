import prometheus_client
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Guard against duplicated metric registration when the module is imported
# multiple times (for example, when running uvicorn with the reloader).
REQUEST_COUNT = getattr(prometheus_client, "rollout_REQUEST_COUNT", None)
REQUEST_LATENCY = getattr(prometheus_client, "rollout_REQUEST_LATENCY", None)
CACHE_OPERATIONS = getattr(prometheus_client, "rollout_CACHE_OPERATIONS", None)
CACHE_HITS = getattr(prometheus_client, "rollout_CACHE_HITS", None)
CACHE_MISSES = getattr(prometheus_client, "rollout_CACHE_MISSES", None)
CACHE_OPERATION_DURATION = getattr(prometheus_client, "rollout_CACHE_OPERATION_DURATION", None)
FEATURE_FLAG_EVALUATIONS = getattr(prometheus_client, "rollout_FEATURE_FLAG_EVALUATIONS", None)
ASSIGNMENTS_CREATED = getattr(prometheus_client, "rollout_ASSIGNMENTS_CREATED", None)
KILL_SWITCH_ACTIVATIONS = getattr(prometheus_client, "rollout_KILL_SWITCH_ACTIVATIONS", None)
ROLLOUT_STAGE_PERCENTAGE = getattr(prometheus_client, "rollout_ROLLOUT_STAGE_PERCENTAGE", None)

# Initialize all metrics if any are None
if REQUEST_COUNT is None:
    # HTTP Metrics
    REQUEST_COUNT = Counter(
        "http_requests_total", "Total HTTP requests", ["method", "endpoint", "http_status"]
    )
    REQUEST_LATENCY = Histogram(
        "http_request_latency_seconds", "HTTP request latency in seconds", ["method", "endpoint"]
    )

    # Cache Metrics
    CACHE_OPERATIONS = Counter(
        "cache_operations_total", "Total cache operations", ["operation", "cache_type"]
    )
    CACHE_HITS = Counter("cache_hits_total", "Total cache hits", ["cache_type", "key_pattern"])
    CACHE_MISSES = Counter(
        "cache_misses_total", "Total cache misses", ["cache_type", "key_pattern"]
    )
    CACHE_OPERATION_DURATION = Histogram(
        "cache_operation_duration_seconds",
        "Cache operation duration in seconds",
        ["operation", "cache_type"],
    )

    # Rollout Metrics
    FEATURE_FLAG_EVALUATIONS = Counter(
        "feature_flag_evaluations_total",
        "Total feature flag evaluations",
        ["key", "result"],  # result: enabled/disabled
    )
    ASSIGNMENTS_CREATED = Counter(
        "feature_flag_assignments_created_total",
        "Sticky user assignments written",
        ["key", "strategy"],
    )
    KILL_SWITCH_ACTIVATIONS = Counter(
        "feature_flag_kill_switch_activations_total", "Total kill switch activations"
    )
    ROLLOUT_STAGE_PERCENTAGE = Gauge(
        "feature_flag_rollout_stage_percentage",
        "Percentage applied by the current staged rollout stage",
        ["key"],
    )

    # Register all metrics on the prometheus_client module
    prometheus_client.rollout_REQUEST_COUNT = REQUEST_COUNT  # type: ignore[attr-defined]
    prometheus_client.rollout_REQUEST_LATENCY = REQUEST_LATENCY  # type: ignore[attr-defined]
    prometheus_client.rollout_CACHE_OPERATIONS = CACHE_OPERATIONS  # type: ignore[attr-defined]
    prometheus_client.rollout_CACHE_HITS = CACHE_HITS  # type: ignore[attr-defined]
    prometheus_client.rollout_CACHE_MISSES = CACHE_MISSES  # type: ignore[attr-defined]
    prometheus_client.rollout_CACHE_OPERATION_DURATION = CACHE_OPERATION_DURATION  # type: ignore[attr-defined]
    prometheus_client.rollout_FEATURE_FLAG_EVALUATIONS = FEATURE_FLAG_EVALUATIONS  # type: ignore[attr-defined]
    prometheus_client.rollout_ASSIGNMENTS_CREATED = ASSIGNMENTS_CREATED  # type: ignore[attr-defined]
    prometheus_client.rollout_KILL_SWITCH_ACTIVATIONS = KILL_SWITCH_ACTIVATIONS  # type: ignore[attr-defined]
    prometheus_client.rollout_ROLLOUT_STAGE_PERCENTAGE = ROLLOUT_STAGE_PERCENTAGE  # type: ignore[attr-defined]


def record_evaluation(key: str, enabled: bool) -> None:
    if FEATURE_FLAG_EVALUATIONS is not None:
        FEATURE_FLAG_EVALUATIONS.labels(key=key, result="enabled" if enabled else "disabled").inc()


def metrics_response():
    data = generate_latest()
    return data, CONTENT_TYPE_LATEST
