"""Data models for the credential pool."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Why an external call failed, as classified by the caller."""

    QUOTA_EXCEEDED = "quota_exceeded"
    OTHER = "other"


@dataclass(frozen=True)
class QuotaLimits:
    """Per-credential limits for one model tier."""

    rpm: int
    rpd: int

    def __post_init__(self):
        if self.rpm <= 0 or self.rpd <= 0:
            raise ValueError("rpm and rpd must be positive integers")


@dataclass
class Credential:
    """A single API key in the pool plus its observability counters."""

    id: str
    key: str
    last_used: Optional[datetime] = None
    last_error: Optional[datetime] = None
    consecutive_failures: int = 0

    @property
    def fingerprint(self) -> str:
        """Stable identifier for persisted counters; never the key itself."""
        return hashlib.sha256(self.key.encode("utf-8")).hexdigest()[:16]

    def key_prefix(self) -> str:
        if len(self.key) <= 11:
            return self.key
        return f"{self.key[:8]}...{self.key[-3:]}"


@dataclass(frozen=True)
class CredentialHandle:
    """What acquire() hands to a caller for one external call."""

    key_id: str
    api_key: str = field(repr=False)
    tier: str
    lease_id: str
    model: str = ""


@dataclass
class Lease:
    """A provisional admission waiting for its outcome report."""

    lease_id: str
    key_id: str
    tier: str
    created_at: float

    def expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl
