from .config import Settings, get_settings
from .errors import (
    AllCredentialsExhaustedError,
    AttachmentFetchError,
    GatewayError,
    ProviderTimeoutError,
    RateLimitedError,
    UnsupportedProviderError,
    UpstreamError,
)
from .factory import build_gateway
from .orchestration import ChatOrchestrator, CredentialPool
from .streaming import StreamHandle, sse_response

__version__ = "0.1.0"

__all__ = [
    "AllCredentialsExhaustedError",
    "AttachmentFetchError",
    "ChatOrchestrator",
    "CredentialPool",
    "GatewayError",
    "ProviderTimeoutError",
    "RateLimitedError",
    "Settings",
    "StreamHandle",
    "UnsupportedProviderError",
    "UpstreamError",
    "build_gateway",
    "get_settings",
    "sse_response",
]
