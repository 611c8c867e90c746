"""Upstream credential pool with sticky round-robin selection and cooldown recovery."""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import AllCredentialsExhaustedError

logger = logging.getLogger(__name__)


@dataclass
class Credential:
    provider: str
    index: int
    secret: str = field(repr=False)
    available: bool = True
    last_failure_at: Optional[float] = None
    failure_count: int = 0
    success_count: int = 0
    last_failure_reason: Optional[str] = None


@dataclass(frozen=True)
class CredentialHandle:
    """What a caller holds while dispatching. Credentials are shared, never checked out."""

    provider: str
    index: int
    secret: str = field(repr=False, compare=False)

    def __str__(self) -> str:
        return f"{self.provider}#{self.index}"


class CredentialPool:
    def __init__(
        self,
        credentials: Dict[str, List[str]],
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._credentials: Dict[str, List[Credential]] = {
            provider: [Credential(provider=provider, index=i, secret=secret) for i, secret in enumerate(secrets)]
            for provider, secrets in credentials.items()
        }
        # One lock per provider so unrelated providers never contend.
        self._locks: Dict[str, threading.Lock] = {provider: threading.Lock() for provider in self._credentials}
        self._bindings: Dict[Tuple[str, str], int] = {}
        self._cursors: Dict[str, int] = {provider: 0 for provider in self._credentials}

        for provider, creds in self._credentials.items():
            logger.info(f"Loaded {len(creds)} credential(s) for {provider}")

    @property
    def providers(self) -> List[str]:
        return list(self._credentials)

    def acquire(self, tenant_id: str, provider: str) -> CredentialHandle:
        """Pick the next available credential for a tenant.

        Credentials past their cooldown are recovered first, then the scan
        runs round-robin from the tenant's last-used credential, or from the
        provider cursor for a tenant seen for the first time.
        """
        creds = self._credentials.get(provider)
        if not creds:
            raise AllCredentialsExhaustedError(f"No {provider} credentials configured", provider=provider)

        with self._locks[provider]:
            bound = self._bindings.get((tenant_id, provider))
            start = bound if bound is not None else self._cursors[provider]

            self._recover_expired_locked(provider)
            index = self._scan(creds, start)
            if index is None:
                logger.error(f"All {provider} credentials unavailable for tenant {tenant_id}")
                raise AllCredentialsExhaustedError(
                    f"All {provider} API keys are currently unavailable", provider=provider
                )

            if bound is None:
                self._cursors[provider] = (index + 1) % len(creds)

            credential = creds[index]
            return CredentialHandle(provider=provider, index=index, secret=credential.secret)

    def report_failure(self, handle: CredentialHandle, reason: str = "rate_limit") -> None:
        credential = self._credentials[handle.provider][handle.index]
        with self._locks[handle.provider]:
            credential.available = False
            credential.last_failure_at = self._clock()
            credential.failure_count += 1
            credential.last_failure_reason = reason
        logger.warning(f"Credential {handle} marked unavailable ({reason})")

    def report_success(self, tenant_id: str, handle: CredentialHandle) -> None:
        """Record a successful dispatch and bind the tenant to the credential used."""
        credential = self._credentials[handle.provider][handle.index]
        with self._locks[handle.provider]:
            credential.success_count += 1
            previous = self._bindings.get((tenant_id, handle.provider))
            self._bindings[(tenant_id, handle.provider)] = handle.index
        if previous is not None and previous != handle.index:
            logger.info(f"Tenant {tenant_id} rotated from {handle.provider}#{previous} to {handle}")

    def binding_for(self, tenant_id: str, provider: str) -> Optional[int]:
        with self._locks[provider]:
            return self._bindings.get((tenant_id, provider))

    def recover_expired(self, provider: str) -> int:
        with self._locks[provider]:
            return self._recover_expired_locked(provider)

    def snapshot(self) -> Dict[str, List[Dict]]:
        now = self._clock()
        report = {}
        for provider, creds in self._credentials.items():
            with self._locks[provider]:
                report[provider] = [
                    {
                        "index": cred.index,
                        "available": cred.available,
                        "failure_count": cred.failure_count,
                        "success_count": cred.success_count,
                        "seconds_since_failure": (
                            round(now - cred.last_failure_at, 3) if cred.last_failure_at is not None else None
                        ),
                        "last_failure_reason": cred.last_failure_reason,
                    }
                    for cred in creds
                ]
        return report

    def _scan(self, creds: List[Credential], start: int) -> Optional[int]:
        count = len(creds)
        for offset in range(count):
            index = (start + offset) % count
            if creds[index].available:
                return index
        return None

    def _recover_expired_locked(self, provider: str) -> int:
        now = self._clock()
        recovered = 0
        for cred in self._credentials[provider]:
            if cred.available or cred.last_failure_at is None:
                continue
            if now - cred.last_failure_at >= self.cooldown_seconds:
                cred.available = True
                recovered += 1
                logger.info(f"Credential {provider}#{cred.index} recovered after cooldown")
        return recovered
