"""
Prometheus metrics for the webhook receiver.

Exposes /metrics with HTTP request metrics plus counters for webhook
deliveries and outbox side effects. Scrape from the internal network only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

# Metrics register themselves on the default registry; the multiprocess
# collector reads the per-worker files instead.
_metric_registry = None if MULTIPROCESS_MODE else registry

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# Outcome is one of: success, skipped, failed, duplicate, rejected.
# event_type is limited to the handled Square types plus 'other' and 'unknown'.
webhook_deliveries_total = Counter(
    'webhook_deliveries_total',
    'Webhook deliveries by provider, event type and outcome',
    ['provider', 'event_type', 'outcome'],
    registry=_metric_registry
)

outbox_deliveries_total = Counter(
    'outbox_deliveries_total',
    'Outbox side-effect attempts by kind and outcome',
    ['kind', 'outcome'],
    registry=_metric_registry
)


def record_webhook(provider: str, event_type: str, outcome: str):
    webhook_deliveries_total.labels(provider=provider, event_type=event_type, outcome=outcome).inc()


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status."""

    @app.before_request
    def start_request_timer():
        g._request_started_at = time.time()

    @app.after_request
    def observe_request(response):
        try:
            started_at = g.get('_request_started_at')
            if started_at is not None:
                endpoint = request.endpoint or 'unknown'
                http_request_duration_seconds.labels(
                    method=request.method,
                    endpoint=endpoint
                ).observe(time.time() - started_at)
                http_requests_total.labels(
                    method=request.method,
                    endpoint=endpoint,
                    http_status=response.status_code
                ).inc()
        except Exception as e:
            # Don't break request flow if metrics fail
            app.logger.warning(f"Failed to record metrics: {e}")

        return response


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.

    Not authenticated; restrict it with network rules in production.
    """
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
