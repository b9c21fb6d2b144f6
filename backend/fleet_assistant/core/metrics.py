"""
Prometheus metrics for the fleet assistant API.

Metric groups:
- RED metrics for every HTTP route
- Orchestration: domain classification, agent runs, plugin resolution
- Tenant gate: authorization decisions and recorded usage
- Completion service: requests, latency, errors, tokens
- Config cache hits/misses
- Process resources (refreshed on scrape)

Naming follows Prometheus conventions: counters end in _total, durations in _seconds.
"""
import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from fleet_assistant.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

fleet_domains_classified_total = Counter(
    "fleet_domains_classified_total",
    "Domains selected by query classification",
    ["domain"],
    registry=registry,
)

fleet_agent_runs_total = Counter(
    "fleet_agent_runs_total",
    "Domain agent runs by outcome",
    ["agent", "outcome"],
    registry=registry,
)

fleet_agent_duration_seconds = Histogram(
    "fleet_agent_duration_seconds",
    "Domain agent run duration in seconds",
    ["agent"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
    registry=registry,
)

fleet_plugin_resolutions_total = Counter(
    "fleet_plugin_resolutions_total",
    "Plugin tool bundle builds by outcome",
    ["plugin", "outcome"],
    registry=registry,
)

# ============================================================================
# TENANT GATE METRICS
# ============================================================================

fleet_authorization_decisions_total = Counter(
    "fleet_authorization_decisions_total",
    "Authorization gate decisions",
    ["outcome", "reason"],
    registry=registry,
)

fleet_tenant_requests_total = Counter(
    "fleet_tenant_requests_total",
    "Completed tenant requests recorded against quota",
    ["outcome"],
    registry=registry,
)

# ============================================================================
# COMPLETION SERVICE METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Completion service requests",
    ["agent", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Completion service latency in seconds",
    ["agent", "model"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Completion service errors",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Tokens consumed by completion calls",
    ["agent", "model", "direction"],
    registry=registry,
)

# ============================================================================
# CACHE / RESOURCE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """Strip query strings and trailing slashes to keep label cardinality bounded."""
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    normalized_endpoint = normalize_endpoint(endpoint)
    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()
    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()
    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_domain_classified(domain: str) -> None:
    fleet_domains_classified_total.labels(domain=domain).inc()


def record_agent_run(agent: str, success: bool, duration_seconds: float) -> None:
    """Record one domain agent run (outcome: success or failure)."""
    fleet_agent_runs_total.labels(
        agent=agent,
        outcome="success" if success else "failure",
    ).inc()
    fleet_agent_duration_seconds.labels(agent=agent).observe(duration_seconds)


def record_plugin_resolution(plugin: str, outcome: str) -> None:
    """Record a plugin build; outcome is built, failed or timeout."""
    fleet_plugin_resolutions_total.labels(plugin=plugin, outcome=outcome).inc()


def record_authorization_decision(allowed: bool, reason: str = "") -> None:
    fleet_authorization_decisions_total.labels(
        outcome="allowed" if allowed else "denied",
        reason=reason or "none",
    ).inc()


def record_tenant_request(success: bool) -> None:
    fleet_tenant_requests_total.labels(outcome="success" if success else "error").inc()


def record_llm_request(agent: str, model: str, duration_seconds: float) -> None:
    llm_requests_total.labels(agent=agent, model=model).inc()
    llm_request_duration_seconds.labels(agent=agent, model=model).observe(duration_seconds)


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens(agent: str, model: str, input_tokens: int, output_tokens: int) -> None:
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def update_resource_metrics() -> None:
    """Refresh CPU and memory gauges; failures only cost a stale reading."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Prometheus text exposition of every registered metric."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
