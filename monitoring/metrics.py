from prometheus_client import Counter, Gauge, Histogram

# Cache metrics
CACHE_HITS = Counter(
    'gateway_cache_hits_total',
    'Total number of result cache hits',
    ['method']
)
CACHE_MISSES = Counter(
    'gateway_cache_misses_total',
    'Total number of result cache misses',
    ['method']
)
CACHE_ITEMS = Gauge(
    'gateway_cache_items',
    'Current number of items in the result cache'
)

# Upstream metrics
UPSTREAM_REQUESTS = Counter(
    'gateway_upstream_requests_total',
    'Upstream daemon and pool calls by outcome',
    ['method', 'outcome']
)
UPSTREAM_LATENCY = Histogram(
    'gateway_upstream_latency_seconds',
    'Upstream call latency',
    ['method'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10]
)

# Mirror metrics
MIRROR_FALLBACKS = Counter(
    'gateway_mirror_fallbacks_total',
    'Explorer queries answered by a live node instead of the mirror',
    ['operation', 'reason']
)
MIRROR_READY = Gauge(
    'gateway_mirror_ready',
    'Whether the local mirror reports itself ready (1) or not (0)'
)

# Aggregation metrics
AGGREGATE_CONFIDENCE = Gauge(
    'gateway_aggregate_confidence',
    'Vote share of the winning value in the latest aggregation round',
    ['quantity']
)
AGGREGATE_ANSWERS = Gauge(
    'gateway_aggregate_answers',
    'Sources with a usable value in the latest aggregation round',
    ['quantity']
)

# HTTP metrics
REQUEST_COUNT = Counter(
    'gateway_http_requests_total',
    'Total HTTP requests',
    ['endpoint', 'method', 'status']
)
REQUEST_LATENCY = Histogram(
    'gateway_http_request_duration_seconds',
    'HTTP request latency',
    ['endpoint', 'method']
)


def record_aggregate(quantity: str, confidence: float, answers: int) -> None:
    """Publish the outcome of one aggregation round."""
    AGGREGATE_CONFIDENCE.labels(quantity=quantity).set(confidence)
    AGGREGATE_ANSWERS.labels(quantity=quantity).set(answers)
