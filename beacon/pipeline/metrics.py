from shared.metrics import get_counter, get_gauge, get_histogram

SERVICE = "beacon"

# Ingestion
LINES_READ_TOTAL = get_counter(
    "lines_read_total", "Raw lines read from the access log.", SERVICE
)
LINES_DROPPED_TOTAL = get_counter(
    "lines_dropped_total", "Lines without a tracking marker.", SERVICE
)
READ_ERRORS_TOTAL = get_counter(
    "read_errors_total", "Non-EOF errors while reading the access log.", SERVICE
)

# Classification
PARSE_ERRORS_TOTAL = get_counter(
    "parse_errors_total",
    "Beacons rejected during classification.",
    SERVICE,
    labelnames=("reason",),
)
HITS_CLASSIFIED_TOTAL = get_counter(
    "hits_classified_total",
    "Beacons classified into a resource.",
    SERVICE,
    labelnames=("resource_type",),
)

# Internal queues
QUEUE_CURRENT_SIZE = get_gauge(
    "queue_current_size",
    "Current size of a pipeline queue.",
    SERVICE,
    labelnames=("stage",),
)

# Store
STORE_UPDATES_TOTAL = get_counter(
    "store_updates_total",
    "Update requests applied to the store.",
    SERVICE,
    labelnames=("kind",),
)
STORE_FAILURES_TOTAL = get_counter(
    "store_failures_total",
    "Update requests dropped after store failures.",
    SERVICE,
    labelnames=("kind",),
)
STORE_RETRIES_TOTAL = get_counter(
    "store_retries_total",
    "Retried update attempts.",
    SERVICE,
    labelnames=("kind",),
)
EVENT_TIME_FALLBACKS_TOTAL = get_counter(
    "event_time_fallbacks_total",
    "Hits bucketed by ingestion time because the client timestamp was unusable.",
    SERVICE,
)
KEEPALIVE_FAILURES_TOTAL = get_counter(
    "keepalive_failures_total", "Failed keep-alive pings.", SERVICE
)
STORE_WRITE_LATENCY_SECONDS = get_histogram(
    "store_write_latency_seconds",
    "Latency of one update protocol run.",
    SERVICE,
    labelnames=("kind",),
)
