"""Gateway error taxonomy."""
from typing import Optional


class GatewayError(Exception):
    """Base class for every error the gateway surfaces to callers."""

    retryable: bool = False

    def __init__(self, message: str, *, provider: Optional[str] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        if retryable is not None:
            self.retryable = retryable

    @property
    def user_message(self) -> str:
        return self.message


class AllCredentialsExhaustedError(GatewayError):
    """No credential for the provider is available and none has cooled down."""

    retryable = True

    @property
    def user_message(self) -> str:
        return f"All {self.provider} API keys are currently rate limited. Please try again later."


class RateLimitedError(GatewayError):
    """Upstream rejected the call with a rate-limit or quota signal."""

    retryable = True


class UpstreamError(GatewayError):
    """Upstream returned a failure that is not a rate limit."""

    def __init__(self, message: str, *, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderTimeoutError(UpstreamError):
    """The provider call exceeded its deadline."""


class AttachmentFetchError(GatewayError):
    """A single attachment could not be fetched; recovered by skipping it."""


class UnsupportedProviderError(GatewayError):
    """Caller asked for a provider the gateway has no adapter for."""

    def __init__(self, provider: str):
        super().__init__(f"Unsupported AI provider: {provider}", provider=provider)
