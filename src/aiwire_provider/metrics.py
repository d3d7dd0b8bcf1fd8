from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

server_requests_total = Counter(
    "aiwire_server_requests_total",
    "Total HTTP requests handled by the admin server",
    labelnames=["path", "status"],
)

dispatch_total = Counter(
    "aiwire_dispatch_total",
    "Dispatch attempts by provider and outcome",
    labelnames=["provider", "status"],
)

dispatch_latency_seconds = Histogram(
    "aiwire_dispatch_latency_seconds",
    "Vendor call latency (seconds)",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["provider"],
)

cache_events_total = Counter(
    "aiwire_cache_events_total",
    "Response cache events",
    labelnames=["event"],
)

fallback_attempts_total = Counter(
    "aiwire_fallback_attempts_total",
    "Credentials tried by the fallback loop",
    labelnames=["provider"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
