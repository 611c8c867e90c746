from .token_estimator import estimate_message_tokens, estimate_tokens
from .usage_ledger import UsageLedger

__all__ = ["UsageLedger", "estimate_message_tokens", "estimate_tokens"]
