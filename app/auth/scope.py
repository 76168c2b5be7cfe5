"""
User-bound views over the registries.

Handlers never see a raw user id to pass around: they get a UserScope whose
handles already filter every read and write to the authenticated user.
"""

from dataclasses import dataclass
from typing import List, Optional

from ..domains.models import Domain
from ..domains.registry import DomainRegistry
from ..sites.models import Site
from ..sites.registry import SiteRegistry


@dataclass
class AuthenticatedUser:
    """Identity resolved from a bearer token."""
    id: str
    email: Optional[str] = None


class ScopedDomains:
    """Domain registry operations bound to one user."""

    def __init__(self, registry: DomainRegistry, user_id: str):
        self._registry = registry
        self.user_id = user_id

    async def list(self) -> List[Domain]:
        return await self._registry.list(self.user_id)

    async def list_by_site(self, site_id: str) -> List[Domain]:
        return await self._registry.list_by_site(self.user_id, site_id)

    async def get(self, domain_id: str) -> Domain:
        return await self._registry.get(self.user_id, domain_id)

    async def insert(self, domain: Domain) -> Domain:
        if domain.user_id != self.user_id:
            raise ValueError("Domain belongs to another user")
        return await self._registry.insert(domain)

    async def update(self, domain_id: str, patch: dict) -> Domain:
        return await self._registry.update(self.user_id, domain_id, patch)

    async def delete(self, domain_id: str) -> Domain:
        return await self._registry.delete(self.user_id, domain_id)


class ScopedSites:
    """Site registry operations bound to one user."""

    def __init__(self, registry: SiteRegistry, user_id: str):
        self._registry = registry
        self.user_id = user_id

    async def list(self) -> List[Site]:
        return await self._registry.list(self.user_id)

    async def get(self, site_id: str) -> Site:
        return await self._registry.get(self.user_id, site_id)

    async def create(self, subdomain: str) -> Site:
        return await self._registry.create(self.user_id, subdomain)

    async def rename(self, site_id: str, subdomain: str) -> Site:
        return await self._registry.rename(self.user_id, site_id, subdomain)

    async def delete(self, site_id: str) -> Site:
        return await self._registry.delete(self.user_id, site_id)


class UserScope:
    """The authenticated user plus data handles bound to them."""

    def __init__(
        self,
        user: AuthenticatedUser,
        domain_registry: DomainRegistry,
        site_registry: SiteRegistry,
    ):
        self.user = user
        self.domains = ScopedDomains(domain_registry, user.id)
        self.sites = ScopedSites(site_registry, user.id)

    @property
    def user_id(self) -> str:
        return self.user.id
