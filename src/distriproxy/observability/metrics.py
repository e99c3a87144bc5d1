from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

HTTP_REQUESTS = Counter(
    "distriproxy_requests_total",
    "Total relayed requests",
    ["route", "method", "status"],
)

REJECTED_REQUESTS = Counter(
    "distriproxy_rejected_requests_total",
    "Requests answered without contacting an upstream",
    ["reason"],  # proxy_request, method, not_found
)

UPSTREAM_ERRORS = Counter(
    "distriproxy_upstream_errors_total",
    "Failed upstream exchanges",
    ["route", "kind"],  # kind: construct, request, stream
)

BYTES_RELAYED = Counter(
    "distriproxy_bytes_relayed_total",
    "Response body bytes relayed to clients",
    ["route"],
)

IN_FLIGHT_REQUESTS = Gauge(
    "distriproxy_in_flight_requests",
    "Requests currently being served",
)

REQUEST_DURATION = Histogram(
    "distriproxy_request_duration_seconds",
    "Time from request start until the response body is relayed",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


def bucket_status(status: int) -> str:
    """Bucket HTTP status to prevent cardinality explosion."""
    if 100 <= status < 600:
        return f"{status // 100}xx"
    return "other"


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
