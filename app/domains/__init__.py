"""Custom domain management for SimplHost."""

from .lifecycle import DomainLifecycle, DomainResult
from .models import Domain, ProviderHostname, VerificationDescriptor, normalize_hostname
from .poller import DomainPoller
from .provider import CloudflareProvider
from .registry import DomainRegistry

__all__ = [
    "CloudflareProvider",
    "Domain",
    "DomainLifecycle",
    "DomainPoller",
    "DomainRegistry",
    "DomainResult",
    "ProviderHostname",
    "VerificationDescriptor",
    "normalize_hostname",
]
