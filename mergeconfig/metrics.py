import os
from prometheus_client import CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest, Counter, Gauge, Histogram

try:
    from prometheus_client import multiprocess
except Exception:  # pragma: no cover
    multiprocess = None  # type: ignore


def build_registry() -> CollectorRegistry:
    """Build a Prometheus registry, supporting multiprocess if PROMETHEUS_MULTIPROC_DIR is set."""
    registry = CollectorRegistry()
    mp_dir = os.getenv("PROMETHEUS_MULTIPROC_DIR")
    if mp_dir and multiprocess is not None:
        multiprocess.MultiProcessCollector(registry)
    return registry


REGISTRY: CollectorRegistry = build_registry()

# Webhook ingress metrics
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Webhook requests received",
    labelnames=("event", "action", "code"),
    registry=REGISTRY,
)
webhook_invalid_signatures_total = Counter(
    "webhook_invalid_signatures_total",
    "Webhook requests with invalid HMAC signatures",
    registry=REGISTRY,
)

# GitHub API metrics
github_api_requests_total = Counter(
    "github_api_requests_total",
    "Outbound GitHub API requests",
    labelnames=("endpoint", "status"),
    registry=REGISTRY,
)
github_api_latency_seconds = Histogram(
    "github_api_latency_seconds",
    "Latency of GitHub API requests",
    labelnames=("endpoint",),
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

# Configuration lookup metrics
config_fetch_total = Counter(
    "config_fetch_total",
    "Configuration file fetch attempts by candidate kind and outcome",
    labelnames=("kind", "result"),
    registry=REGISTRY,
)
config_decode_failures_total = Counter(
    "config_decode_failures_total",
    "Configuration documents rejected by schema",
    labelnames=("schema",),
    registry=REGISTRY,
)
config_resolutions_total = Counter(
    "config_resolutions_total",
    "Completed configuration resolutions by winning source (v1, v0 or none)",
    labelnames=("source",),
    registry=REGISTRY,
)
config_resolution_seconds = Histogram(
    "config_resolution_seconds",
    "Time spent resolving configuration for a pull request",
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

# Build info (set from environment)
service_info = Gauge(
    "service_info",
    "Service build/version info labeled on 1",
    labelnames=("version",),
    registry=REGISTRY,
)
service_info.labels(version=os.getenv("SERVICE_VERSION", "dev")).set(1)


def metrics_response():
    data = generate_latest(REGISTRY)
    return CONTENT_TYPE_LATEST, data
