"""
Metrics tracking utilities
"""
from prometheus_client import Counter, Histogram
import structlog

logger = structlog.get_logger()

# Define metrics
branch_counter = Counter(
    'sales_copilot_chat_branch_total',
    'Chat turns by routing branch',
    ['branch']
)

external_call_counter = Counter(
    'sales_copilot_external_calls_total',
    'Outcome of external calls (model, search, persistence)',
    ['call', 'strategy', 'outcome']
)

safety_counter = Counter(
    'sales_copilot_safety_interventions_total',
    'Post-generation safety interventions',
    ['kind']
)

doc_lookup_failures = Counter(
    'sales_copilot_doc_lookup_failures_total',
    'Document search lookups that contributed no results due to an error',
    ['reason']
)

docs_recommended = Histogram(
    'sales_copilot_docs_recommended',
    'Number of documents recommended per turn',
    buckets=[0, 1, 5, 10, 20, 30, 50]
)

generation_duration = Histogram(
    'sales_copilot_generation_duration_seconds',
    'Time spent generating (and filtering) an answer',
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 45.0, 90.0]
)


def track_branch(branch: str):
    """Track the routing branch a turn resolved to"""
    branch_counter.labels(branch=branch).inc()


def track_safety(kind: str):
    """Track a safety intervention"""
    safety_counter.labels(kind=kind).inc()
    logger.info(
        "Safety intervention",
        kind=kind
    )
