from .credential_pool import Credential, CredentialHandle, CredentialPool
from .chat_orchestrator import ChatOrchestrator, ChatTurn, TurnState, apply_inline_markers

__all__ = [
    "ChatOrchestrator",
    "ChatTurn",
    "Credential",
    "CredentialHandle",
    "CredentialPool",
    "TurnState",
    "apply_inline_markers",
]
