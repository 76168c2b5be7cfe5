"""
Custom domain lifecycle.

A domain moves absent -> pending -> active | failed. The provider owns that
state; the local record is a cache of the last successful provider answer
and is only brought up to date by an explicit refresh. Staleness between
refreshes is expected.

Create is a two-step saga without a shared transaction: the hostname is
registered with the provider first and persisted locally second. A local
record never exists without its provider hostname. The reverse (a provider
hostname without a local record) can happen when the insert fails; we then
try to deregister it, and log and count it as orphaned if that fails too.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List

from ..errors import (
    AppError,
    Conflict,
    PreconditionFailed,
    ProviderError,
    ValidationError,
)
from ..metrics import ORPHANED_HOSTNAMES
from .models import (
    STATE_PENDING,
    Domain,
    ProviderHostname,
    is_valid_hostname,
    normalize_hostname,
)
from .provider import CloudflareProvider
from .registry import DomainRegistry

if TYPE_CHECKING:
    from ..auth.scope import UserScope

logger = logging.getLogger("simplhost.domains.lifecycle")


@dataclass
class DomainResult:
    """A domain together with the DNS instructions from the provider."""

    domain: Domain
    dns_records: List[dict] = field(default_factory=list)
    cname_target: str = ""

    def to_api_response(self) -> dict:
        return {
            "success": True,
            "domain": self.domain.to_api_response(),
            "dnsRecords": self.dns_records,
            "cnameTarget": self.cname_target,
        }


def _status_patch(fetched: ProviderHostname) -> dict:
    """Overwrite every provider-mirrored field with the latest answer."""
    return {
        "status": fetched.status,
        "verification_method": fetched.verification.stored_method,
        "verification_value": fetched.verification.value,
        "updated_at": datetime.now(timezone.utc),
    }


class DomainLifecycle:
    """Coordinates the provider and the domain registry."""

    def __init__(
        self,
        registry: DomainRegistry,
        provider: CloudflareProvider,
        cname_target: str = "edge.simplhost.com",
        reserved_domain: str = "",
    ):
        self.registry = registry
        self.provider = provider
        self.cname_target = cname_target
        self.reserved_domain = reserved_domain.lower().rstrip(".")

    def _result(self, domain: Domain, fetched: ProviderHostname) -> DomainResult:
        return DomainResult(
            domain=domain,
            dns_records=fetched.validation_records,
            cname_target=self.cname_target,
        )

    def _check_hostname(self, hostname: str) -> None:
        if not is_valid_hostname(hostname):
            raise ValidationError("Invalid hostname")
        reserved = self.reserved_domain
        if reserved and (hostname == reserved or hostname.endswith(f".{reserved}")):
            raise ValidationError(f"Cannot attach subdomains of {reserved}")

    async def list(self, scope: "UserScope") -> List[Domain]:
        return await scope.domains.list()

    async def get(self, scope: "UserScope", domain_id: str) -> Domain:
        return await scope.domains.get(domain_id)

    async def create(
        self,
        scope: "UserScope",
        site_id: str,
        raw_hostname: str,
    ) -> DomainResult:
        """Attach a custom hostname to one of the user's sites."""
        site_id = (site_id or "").strip()
        raw_hostname = (raw_hostname or "").strip()
        if not site_id or not raw_hostname:
            raise ValidationError("Missing siteId or hostname")

        site = await scope.sites.get(site_id)
        hostname = normalize_hostname(raw_hostname)
        self._check_hostname(hostname)

        # Fast path only; the registry's atomic claim settles races
        if await self.registry.find_by_hostname(hostname):
            raise Conflict("Hostname already in use")

        created = await self.provider.create_hostname(hostname)

        domain = Domain.from_provider(scope.user_id, site.id, hostname, created)
        try:
            await scope.domains.insert(domain)
        except Exception as e:
            await self._compensate_create(hostname, created, e)
            if isinstance(e, AppError):
                raise
            raise AppError("Created with the provider but failed to save the domain") from e

        logger.info(
            f"Domain {hostname} attached to site {site.id} "
            f"(provider {created.provider_id}, {domain.status})"
        )
        return self._result(domain, created)

    async def _compensate_create(
        self,
        hostname: str,
        created: ProviderHostname,
        cause: Exception,
    ) -> None:
        """Undo the provider registration after a failed insert."""
        logger.error(f"Saving domain {hostname} failed after provider create: {cause}")

        # A lost race may have been won with this very provider hostname
        try:
            winner = await self.registry.find_by_hostname(hostname)
        except AppError:
            winner = None
        if winner and winner.provider_hostname_id == created.provider_id:
            return

        try:
            await self.provider.delete_hostname(created.provider_id)
            logger.info(f"Rolled back provider hostname {created.provider_id} for {hostname}")
        except ProviderError as e:
            ORPHANED_HOSTNAMES.labels(reason="insert_failed").inc()
            logger.error(
                f"Orphaned provider hostname {created.provider_id} for {hostname}: "
                f"rollback failed: {e.message}"
            )

    async def refresh(self, scope: "UserScope", domain_id: str) -> DomainResult:
        """Resync a domain's status and verification from the provider."""
        domain_id = (domain_id or "").strip()
        if not domain_id:
            raise ValidationError("Missing domain id")

        domain = await scope.domains.get(domain_id)
        if not domain.provider_hostname_id:
            raise PreconditionFailed("Missing Cloudflare mapping for this domain")

        # On failure the record keeps its last known good state
        fetched = await self.provider.fetch_status(domain.provider_hostname_id)
        updated = await scope.domains.update(domain.id, _status_patch(fetched))
        return self._result(updated, fetched)

    async def delete(self, scope: "UserScope", domain_id: str) -> Domain:
        """
        Remove a domain.

        Provider deregistration is best effort: the local record is removed
        even when it fails, and the leftover hostname is logged and counted.
        """
        domain_id = (domain_id or "").strip()
        if not domain_id:
            raise ValidationError("Missing domain id")

        domain = await scope.domains.get(domain_id)
        await self._deregister(domain)
        return await scope.domains.delete(domain.id)

    async def _deregister(self, domain: Domain) -> None:
        if not domain.provider_hostname_id:
            return
        if not self.provider.configured:
            ORPHANED_HOSTNAMES.labels(reason="delete_failed").inc()
            logger.warning(
                f"Provider not configured, leaving hostname "
                f"{domain.provider_hostname_id} ({domain.hostname}) registered"
            )
            return
        try:
            await self.provider.delete_hostname(domain.provider_hostname_id)
        except ProviderError as e:
            ORPHANED_HOSTNAMES.labels(reason="delete_failed").inc()
            logger.warning(
                f"Provider delete failed (non-blocking) for {domain.hostname} "
                f"({domain.provider_hostname_id}): {e.message}"
            )

    async def delete_for_site(self, scope: "UserScope", site_id: str) -> int:
        """Remove every domain attached to a site."""
        domains = await scope.domains.list_by_site(site_id)
        for domain in domains:
            await self.delete(scope, domain.id)
        return len(domains)

    async def refresh_all_pending(self) -> int:
        """
        Refresh every domain still waiting on the provider.

        Used by the background poller. Failures are logged per domain and
        do not stop the sweep. Returns the number of refreshed domains.
        """
        refreshed = 0
        for domain in await self.registry.list_all():
            if domain.state != STATE_PENDING or not domain.provider_hostname_id:
                continue
            try:
                fetched = await self.provider.fetch_status(domain.provider_hostname_id)
                await self.registry.update(
                    domain.user_id, domain.id, _status_patch(fetched)
                )
                refreshed += 1
            except AppError as e:
                logger.warning(f"Background refresh of {domain.hostname} failed: {e.message}")
        if refreshed:
            logger.info(f"Refreshed {refreshed} pending domains")
        return refreshed
