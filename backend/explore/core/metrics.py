"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Gauge, Histogram, Info, generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY
from pydantic import ValidationError

from explore.core.config import get_settings


def _exposition_registry():
    """Registry to expose: aggregated across workers in multiprocess mode"""
    if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
        registry = CollectorRegistry()
        MultiProcessCollector(registry)
        return registry
    return REGISTRY


# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

# ============================================================================
# Database Metrics
# ============================================================================

db_queries_total = Counter(
    'db_queries_total',
    'Total number of database queries',
    ['operation', 'table']  # operation: 'select', 'insert', 'update', 'delete'
)

db_query_duration_seconds = Histogram(
    'db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation', 'table'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

db_connection_pool_size = Gauge(
    'db_connection_pool_size',
    'Database connection pool size',
    ['state']  # state: 'active', 'idle'
)

db_connection_pool_overflow = Gauge(
    'db_connection_pool_overflow',
    'Database connection pool overflow count',
    []
)

# ============================================================================
# Explore Metrics
# ============================================================================

explore_decisions_total = Counter(
    'explore_decisions_total',
    'Total number of recorded decisions',
    ['liked']  # liked: 'true', 'false'
)

explore_mutual_matches_total = Counter(
    'explore_mutual_matches_total',
    'Total number of decisions that completed a mutual like'
)

explore_feed_pages_total = Counter(
    'explore_feed_pages_total',
    'Total number of liked-you pages served',
    ['feed']  # feed: 'all', 'new'
)

explore_store_errors_total = Counter(
    'explore_store_errors_total',
    'Total number of decision store errors',
    ['error_type']
)

# ============================================================================
# System Info
# ============================================================================

app_info = Info(
    'app_info',
    'Application information'
)

try:
    settings = get_settings()
    app_info.info({
        'app_name': settings.app_name,
        'app_env': settings.app_env,
        'version': '0.1.0'
    })
except ValidationError:
    pass  # Settings may not be available during import

# ============================================================================
# Helper Functions
# ============================================================================

def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(_exposition_registry())


def get_metrics_content_type():
    """
    Get content type for Prometheus metrics

    Returns:
        str: Content type for metrics endpoint
    """
    return CONTENT_TYPE_LATEST
