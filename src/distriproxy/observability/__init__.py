from distriproxy.observability.metrics import (
    BYTES_RELAYED,
    HTTP_REQUESTS,
    IN_FLIGHT_REQUESTS,
    REJECTED_REQUESTS,
    REQUEST_DURATION,
    UPSTREAM_ERRORS,
    bucket_status,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "HTTP_REQUESTS",
    "REJECTED_REQUESTS",
    "UPSTREAM_ERRORS",
    "BYTES_RELAYED",
    "IN_FLIGHT_REQUESTS",
    "REQUEST_DURATION",
    "bucket_status",
    "generate_metrics",
    "get_content_type",
]
