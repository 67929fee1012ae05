"""Prometheus metrics for outreach monitoring.

Provides counters and gauges for queue claims, call placement,
dispositions, billing and IVR progress.
Feature-flagged via ENABLE_PROMETHEUS_METRICS.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

from outreach.core.config import settings

logger = structlog.get_logger()

# Create custom registry to avoid conflicts
REGISTRY = CollectorRegistry(auto_describe=True)

# Counters
CALLS_PLACED = Counter(
    "outreach_calls_placed_total",
    "Total number of calls or messages handed to the provider",
    ["campaign_id", "channel"],
    registry=REGISTRY,
)

PLACEMENT_FAILURES = Counter(
    "outreach_placement_failures_total",
    "Total number of placement requests that failed",
    ["campaign_id", "channel"],
    registry=REGISTRY,
)

CLAIM_CONFLICTS = Counter(
    "outreach_claim_conflicts_total",
    "Total number of claim races lost to another caller",
    ["campaign_id"],
    registry=REGISTRY,
)

DISPOSITIONS_APPLIED = Counter(
    "outreach_dispositions_applied_total",
    "Total number of attempt disposition transitions applied",
    ["disposition"],
    registry=REGISTRY,
)

DISPOSITIONS_IGNORED = Counter(
    "outreach_dispositions_ignored_total",
    "Total number of late or duplicate disposition updates discarded",
    ["disposition"],
    registry=REGISTRY,
)

BILLING_DEBITS = Counter(
    "outreach_billing_debits_total",
    "Total number of ledger debit requests emitted",
    ["kind"],
    registry=REGISTRY,
)

IVR_STEPS = Counter(
    "outreach_ivr_steps_total",
    "Total number of IVR steps served",
    ["outcome"],
    registry=REGISTRY,
)

# Gauges
ACTIVE_CALLERS = Gauge(
    "outreach_active_callers_current",
    "Current number of open caller sessions",
    registry=REGISTRY,
)


def record_call_placed(campaign_id: str, channel: str) -> None:
    """Record a successful placement.

    Args:
        campaign_id: Campaign the call or message belongs to.
        channel: "call" or "message".
    """
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    CALLS_PLACED.labels(campaign_id=campaign_id, channel=channel).inc()
    logger.debug("metric_call_placed", campaign_id=campaign_id, channel=channel)


def record_placement_failure(campaign_id: str, channel: str) -> None:
    """Record a failed placement.

    Args:
        campaign_id: Campaign the call or message belongs to.
        channel: "call" or "message".
    """
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    PLACEMENT_FAILURES.labels(campaign_id=campaign_id, channel=channel).inc()
    logger.debug("metric_placement_failure", campaign_id=campaign_id, channel=channel)


def record_claim_conflict(campaign_id: str) -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    CLAIM_CONFLICTS.labels(campaign_id=campaign_id).inc()


def record_disposition(disposition: str, applied: bool) -> None:
    """Record a disposition update.

    Args:
        disposition: Target disposition.
        applied: False when the update was discarded as late or duplicate.
    """
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    if applied:
        DISPOSITIONS_APPLIED.labels(disposition=disposition).inc()
    else:
        DISPOSITIONS_IGNORED.labels(disposition=disposition).inc()


def record_billing_debit(kind: str) -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    BILLING_DEBITS.labels(kind=kind).inc()


def record_ivr_step(outcome: str) -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    IVR_STEPS.labels(outcome=outcome).inc()


def record_caller_joined() -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    ACTIVE_CALLERS.inc()


def record_caller_left() -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    ACTIVE_CALLERS.dec()


def get_metrics_router() -> APIRouter:
    """Get router with /metrics endpoint.

    Returns:
        FastAPI router with Prometheus metrics endpoint.
    """
    router = APIRouter()

    @router.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        if not settings.ENABLE_PROMETHEUS_METRICS:
            return Response(
                content="Prometheus metrics disabled",
                status_code=503,
            )

        return Response(
            content=generate_latest(REGISTRY),
            media_type=CONTENT_TYPE_LATEST,
        )

    return router


__all__ = [
    "ACTIVE_CALLERS",
    "BILLING_DEBITS",
    "CALLS_PLACED",
    "CLAIM_CONFLICTS",
    "DISPOSITIONS_APPLIED",
    "DISPOSITIONS_IGNORED",
    "IVR_STEPS",
    "PLACEMENT_FAILURES",
    "get_metrics_router",
    "record_billing_debit",
    "record_call_placed",
    "record_caller_joined",
    "record_caller_left",
    "record_claim_conflict",
    "record_disposition",
    "record_ivr_step",
    "record_placement_failure",
]
