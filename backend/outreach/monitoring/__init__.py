"""Monitoring module for Prometheus metrics and health checks."""

from outreach.monitoring.metrics import (
    REGISTRY,
    get_metrics_router,
    record_billing_debit,
    record_call_placed,
    record_claim_conflict,
    record_disposition,
    record_ivr_step,
    record_placement_failure,
)

__all__ = [
    "REGISTRY",
    "get_metrics_router",
    "record_billing_debit",
    "record_call_placed",
    "record_claim_conflict",
    "record_disposition",
    "record_ivr_step",
    "record_placement_failure",
]
