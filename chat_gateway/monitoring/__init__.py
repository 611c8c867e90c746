from .metrics import (
    api_cost,
    attachments_skipped,
    credential_rotations,
    error_count,
    metrics_endpoint,
    model_latency,
    record_usage,
    tokens_used,
)

__all__ = [
    "api_cost",
    "attachments_skipped",
    "credential_rotations",
    "error_count",
    "metrics_endpoint",
    "model_latency",
    "record_usage",
    "tokens_used",
]
