"""
Metrics tracking utilities
"""
from prometheus_client import Counter, Histogram, Gauge
import structlog

logger = structlog.get_logger()

# Define metrics
request_counter = Counter(
    'pagerag_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'pagerag_request_duration_seconds',
    'HTTP request duration',
    ['method', 'endpoint']
)

active_connections = Gauge(
    'pagerag_active_connections',
    'Number of active connections'
)

embedding_requests = Counter(
    'pagerag_embedding_requests_total',
    'Embedding provider calls by outcome',
    ['outcome']
)

embedding_retries = Counter(
    'pagerag_embedding_retries_total',
    'Embedding provider retries'
)

chunks_stored = Counter(
    'pagerag_chunks_stored_total',
    'Chunks persisted to the chunk store'
)

retrieval_duration = Histogram(
    'pagerag_retrieval_duration_seconds',
    'Time spent in retrieval',
    ['mode'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0]
)

chunk_retrieval_count = Histogram(
    'pagerag_chunks_retrieved',
    'Number of chunks retrieved per query',
    buckets=[0, 1, 2, 3, 5, 10, 20]
)

answer_confidence = Histogram(
    'pagerag_answer_confidence',
    'Distribution of answer confidence scores',
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

no_context_counter = Counter(
    'pagerag_no_context_answers_total',
    'Answers returned without any relevant context'
)

history_write_failures = Counter(
    'pagerag_history_write_failures_total',
    'Chat history writes that failed and were skipped'
)


def track_request_duration(duration: float, endpoint: str):
    """Track request duration"""
    logger.info(
        "Request completed",
        duration=duration,
        endpoint=endpoint
    )
