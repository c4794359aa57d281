import prometheus_client as prom

from .models import GraphQLRequest, Request, RestRequest, WebSocketRequest

latency_histogram = prom.Histogram(
    "aio_exchange_latency",
    "Duration of executed requests.",
    labelnames=(
        "request_kind",
        "response_status",
    ),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.075,
        0.1,
        0.15,
        0.2,
        0.25,
        0.3,
        0.35,
        0.4,
        0.45,
        0.5,
        0.75,
        1.0,
        5.0,
        10.0,
        15.0,
        20.0,
        30.0,
        60.0,
    ),
)


def request_kind(request: Request) -> str:
    if isinstance(request, RestRequest):
        return "rest"
    if isinstance(request, GraphQLRequest):
        if request.is_subscription:
            return f"graphql_subscription_{request.subscription_transport}"
        return f"graphql_{request.operation_type}"
    if isinstance(request, WebSocketRequest):
        return "websocket"
    return "unknown"


def capture_metrics(*, request: Request, status: int, elapsed: float) -> None:
    label_values = (
        request_kind(request),
        str(status),
    )
    latency_histogram.labels(*label_values).observe(elapsed)
