"""Prometheus metrics for pipeline execution.

Key Responsibilities:
    - Define counters and histograms describing submissions, stage timings,
      capture deliveries and repository calls
    - Offer small ``record_*`` helpers so call-sites never touch label plumbing

Collaborators:
    - Upstream: ``PipelineExecutor``, ``PipelineOrchestrator``,
      ``CaptureEndpoint`` and ``RepositoryEndpoint``
    - Downstream: The default ``prometheus_client`` registry

Thread Safety:
    - Thread-safe: Prometheus metric operations are atomic
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

PIPELINE_SUBMISSIONS_TOTAL = Counter(
    "resource_flow_pipeline_submissions_total",
    "Messages submitted to a pipeline entry point",
    ["pipeline", "outcome"],
)

PIPELINE_STAGE_DURATION_SECONDS = Histogram(
    "resource_flow_pipeline_stage_duration_seconds",
    "Duration of individual pipeline stages",
    ["pipeline", "kind"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

PIPELINE_MESSAGES_DROPPED_TOTAL = Counter(
    "resource_flow_pipeline_messages_dropped_total",
    "Messages halted by a filter stage",
    ["pipeline"],
)

PIPELINE_SPLIT_MESSAGES_TOTAL = Counter(
    "resource_flow_pipeline_split_messages_total",
    "Messages produced by split stages",
    ["pipeline"],
)

CAPTURE_DELIVERIES_TOTAL = Counter(
    "resource_flow_capture_deliveries_total",
    "Messages delivered to capture endpoints",
    ["endpoint"],
)

REPOSITORY_REQUESTS_TOTAL = Counter(
    "resource_flow_repository_requests_total",
    "Requests issued against the resource repository",
    ["method", "status"],
)


def record_submission(pipeline: str, outcome: str) -> None:
    PIPELINE_SUBMISSIONS_TOTAL.labels(pipeline=pipeline, outcome=outcome).inc()


def observe_stage(pipeline: str, kind: str, duration_seconds: float) -> None:
    PIPELINE_STAGE_DURATION_SECONDS.labels(pipeline=pipeline, kind=kind).observe(duration_seconds)


def record_dropped(pipeline: str) -> None:
    PIPELINE_MESSAGES_DROPPED_TOTAL.labels(pipeline=pipeline).inc()


def record_split(pipeline: str, count: int) -> None:
    if count:
        PIPELINE_SPLIT_MESSAGES_TOTAL.labels(pipeline=pipeline).inc(count)


def record_capture(endpoint: str) -> None:
    CAPTURE_DELIVERIES_TOTAL.labels(endpoint=endpoint).inc()


def record_repository_request(method: str, status: int | None) -> None:
    """Count a repository call; transport failures are labelled ``error``."""
    REPOSITORY_REQUESTS_TOTAL.labels(
        method=method, status=str(status) if status is not None else "error"
    ).inc()


__all__ = [
    "CAPTURE_DELIVERIES_TOTAL",
    "PIPELINE_MESSAGES_DROPPED_TOTAL",
    "PIPELINE_SPLIT_MESSAGES_TOTAL",
    "PIPELINE_STAGE_DURATION_SECONDS",
    "PIPELINE_SUBMISSIONS_TOTAL",
    "REPOSITORY_REQUESTS_TOTAL",
    "observe_stage",
    "record_capture",
    "record_dropped",
    "record_repository_request",
    "record_split",
    "record_submission",
]
