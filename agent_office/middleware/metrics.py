"""Prometheus metrics middleware and workflow metrics."""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST


# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'HTTP requests currently in progress',
    ['method']
)

# Workflows

agent_tasks_total = Counter(
    'agent_tasks_total',
    'Agent tasks settled by the task graph executor',
    ['role', 'status']
)

workflow_runs_total = Counter(
    'workflow_runs_total',
    'Workflow invocations',
    ['kind', 'source', 'outcome']
)

workflow_duration_seconds = Histogram(
    'workflow_duration_seconds',
    'Workflow duration in seconds',
    ['kind'],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1200]
)

deploy_monitor_polls_total = Counter(
    'deploy_monitor_polls_total',
    'Remote job monitor polls',
    ['outcome']  # waiting, changed, error, terminal
)

active_workflows = Gauge(
    'active_workflows',
    'Workflows currently running'
)


def _endpoint_label(request: Request) -> str:
    """Route template (e.g. /workflows/{workflow_id}) so ids do not become labels."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware:
    """Records count, latency and concurrency of HTTP requests per route."""

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        """
        Time one request.

        Args:
            request: Incoming request
            call_next: Rest of the middleware stack

        Returns:
            The downstream response, unchanged
        """
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        http_requests_in_progress.labels(method=method).inc()
        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Routing has run by now, so the matched route is on the scope
            endpoint = _endpoint_label(request)
            http_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start
            )
            http_requests_in_progress.labels(method=method).dec()


def get_metrics() -> Response:
    """Render every registered metric in the Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Helper functions to track application-specific metrics

def track_agent_task(role: str, status: str):
    """Track a settled agent task."""
    agent_tasks_total.labels(role=role, status=status).inc()


def track_workflow_started():
    """Track workflow start."""
    active_workflows.inc()


def track_workflow_finished(kind: str, source: str, outcome: str, duration: float):
    """Track workflow completion."""
    active_workflows.dec()
    workflow_runs_total.labels(kind=kind, source=source, outcome=outcome).inc()
    workflow_duration_seconds.labels(kind=kind).observe(duration)


def track_monitor_poll(outcome: str):
    """Track one remote job monitor poll."""
    deploy_monitor_polls_total.labels(outcome=outcome).inc()
