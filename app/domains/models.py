"""
Custom domain data model for SimplHost.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

# Lifecycle states derived from the provider status
STATE_PENDING = "pending"
STATE_ACTIVE = "active"
STATE_FAILED = "failed"

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"

# Verification methods, in the order users should prefer them
METHOD_CNAME = "cname"
METHOD_TXT = "txt"
METHOD_HTTP = "http"
METHOD_NONE = "none"

# Provider statuses after which the hostname will not become active by itself
_FAILED_STATUSES = {
    "validation_timed_out",
    "issuance_timed_out",
    "deployment_timed_out",
    "deletion_timed_out",
    "expired",
    "deleted",
    "revoked",
    "failed",
    "blocked",
    "moved",
}

# Repeated schemes and trailing slashes are stripped in one pass each
_SCHEME_RE = re.compile(r"^(?:\s*https?://)+")
_TRAILING_RE = re.compile(r"[\s/]+$")

# Valid hostname pattern: allows subdomains of any depth and punycode TLDs
_HOSTNAME_RE = re.compile(
    r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+"
    r"(?:[a-z]{2,}|xn--[a-z0-9-]*[a-z0-9])$"
)


def normalize_hostname(hostname: str) -> str:
    """Lower-case a hostname and strip the URL scheme and trailing slashes."""
    hostname = hostname.strip().lower()
    hostname = _SCHEME_RE.sub("", hostname)
    return _TRAILING_RE.sub("", hostname).strip()


def is_valid_hostname(hostname: str) -> bool:
    return len(hostname) <= 253 and bool(_HOSTNAME_RE.match(hostname))


def lifecycle_state(status: Optional[str]) -> str:
    """Map a provider status onto pending / active / failed."""
    if not status:
        return STATE_PENDING
    status = status.lower()
    if status == STATUS_ACTIVE:
        return STATE_ACTIVE
    if status in _FAILED_STATUSES or status.endswith("_timed_out"):
        return STATE_FAILED
    return STATE_PENDING


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class VerificationDescriptor:
    """What DNS record (or file) proves ownership of a hostname."""

    method: str = METHOD_NONE
    value: Optional[str] = None

    @property
    def stored_method(self) -> Optional[str]:
        """Method as persisted; ``none`` is stored as null."""
        return None if self.method == METHOD_NONE else self.method


@dataclass
class ProviderHostname:
    """Normalized view of a provider custom-hostname resource."""

    provider_id: str
    status: str
    verification: VerificationDescriptor
    validation_records: List[dict] = field(default_factory=list)


@dataclass
class Domain:
    """A custom hostname attached to a user's site."""

    user_id: str
    site_id: str
    hostname: str
    provider_hostname_id: Optional[str] = None
    status: str = STATUS_PENDING
    verification_method: Optional[str] = None
    verification_value: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_provider(
        cls,
        user_id: str,
        site_id: str,
        hostname: str,
        provider: ProviderHostname,
    ) -> "Domain":
        """Build a new record from a successful provider registration."""
        return cls(
            user_id=user_id,
            site_id=site_id,
            hostname=hostname,
            provider_hostname_id=provider.provider_id,
            status=provider.status or STATUS_PENDING,
            verification_method=provider.verification.stored_method,
            verification_value=provider.verification.value,
        )

    @property
    def state(self) -> str:
        return lifecycle_state(self.status)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "site_id": self.site_id,
            "hostname": self.hostname,
            "provider_hostname_id": self.provider_hostname_id,
            "status": self.status,
            "verification_method": self.verification_method,
            "verification_value": self.verification_value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Domain":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            site_id=data["site_id"],
            hostname=data["hostname"],
            provider_hostname_id=data.get("provider_hostname_id"),
            status=data.get("status") or STATUS_PENDING,
            verification_method=data.get("verification_method"),
            verification_value=data.get("verification_value"),
            created_at=_parse(data.get("created_at")) or _utcnow(),
            updated_at=_parse(data.get("updated_at")) or _utcnow(),
        )

    def to_api_response(self) -> dict:
        """Convert to API response, including the derived lifecycle state."""
        resp = self.to_dict()
        resp["state"] = self.state
        return resp
