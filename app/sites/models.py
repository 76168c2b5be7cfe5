"""
Site data model for SimplHost.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize_subdomain(label: str) -> str:
    return label.strip().lower()


def is_valid_subdomain(label: str) -> bool:
    """A single DNS label: letters, digits and inner hyphens."""
    return bool(_LABEL_RE.match(label))


@dataclass
class Site:
    """A deployed static site served under a platform subdomain."""

    user_id: str
    subdomain: str
    url: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def build_url(self, base_domain: str) -> str:
        """Build public URL for this site."""
        self.url = f"https://{self.subdomain}.{base_domain}"
        return self.url

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subdomain": self.subdomain,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Site":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            subdomain=data["subdomain"],
            url=data.get("url", ""),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now(timezone.utc),
        )
