from prometheus_client import Counter, Histogram, generate_latest
from fastapi import Response

tokens_used = Counter(
    'chat_gateway_tokens_total',
    'Total tokens used',
    ['provider', 'model']
)

api_cost = Counter(
    'chat_gateway_cost_dollars_total',
    'Estimated upstream cost in dollars',
    ['provider', 'model']
)

model_latency = Histogram(
    'chat_gateway_model_latency_seconds',
    'Model response latency',
    ['provider', 'model'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

error_count = Counter(
    'chat_gateway_errors_total',
    'Total number of failed chat calls',
    ['error_type']
)

credential_rotations = Counter(
    'chat_gateway_credential_rotations_total',
    'Credential rotations after a rate limit',
    ['provider']
)

attachments_skipped = Counter(
    'chat_gateway_attachments_skipped_total',
    'Attachments dropped during normalization',
    ['reason']
)


def record_usage(provider: str, model: str, tokens: int, cost: float) -> None:
    tokens_used.labels(provider=provider, model=model).inc(tokens)
    api_cost.labels(provider=provider, model=model).inc(cost)


# Metrics endpoint
async def metrics_endpoint():
    return Response(content=generate_latest(), media_type="text/plain")
