from fastapi import Response
from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

# Private registry so only this service's series are exposed
APP_REGISTRY = CollectorRegistry()

VERIFICATION_QUERIES_TOTAL = Counter(
    'verification_queries_total',
    'Total number of aggregation queries by decision shape and outcome.',
    ['flavor', 'decision', 'outcome'],
    registry=APP_REGISTRY
)
VERIFICATION_PROVIDER_CALLS_TOTAL = Counter(
    'verification_provider_calls_total',
    'Total number of provider decision calls by outcome.',
    ['flavor', 'outcome'],
    registry=APP_REGISTRY
)
VERIFICATION_QUERY_LATENCY_SECONDS = Histogram(
    'verification_query_latency_seconds',
    'Latency of aggregation queries in seconds.',
    ['flavor'],
    registry=APP_REGISTRY
)
VERIFICATION_REGISTRY_MUTATIONS_TOTAL = Counter(
    'verification_registry_mutations_total',
    'Total number of administrative registry operations, split by whether they changed state.',
    ['flavor', 'operation', 'applied'],
    registry=APP_REGISTRY
)


def metrics_content() -> Response:
    """Returns Prometheus metrics in the text exposition format."""
    payload = generate_latest(APP_REGISTRY)
    return Response(
        content=payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
