"""
Domain registry: persisted custom domain records.
"""

import json
import logging
from typing import Dict, List, Optional

from redis.exceptions import RedisError

from ..errors import Conflict, NotFound
from ..registry.store import RedisStore
from .models import Domain

logger = logging.getLogger("simplhost.domains.registry")

# Fields a refresh may overwrite; everything else is fixed at insert
PATCHABLE_FIELDS = (
    "status",
    "verification_method",
    "verification_value",
    "updated_at",
)


class DomainRegistry(RedisStore):
    """
    Registry of custom domains.

    Hostnames are claimed atomically (Redis SET NX, or under a lock in
    memory) so that concurrent inserts of the same hostname cannot both
    succeed, whatever the callers checked beforehand.
    """

    name = "domain registry"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "simplhost:",
    ):
        super().__init__(redis_url=redis_url, key_prefix=key_prefix)
        # In-memory fallback
        self._memory_store: Dict[str, dict] = {}
        self._hostname_index: Dict[str, str] = {}

    def _domain_key(self, domain_id: str) -> str:
        return f"{self.key_prefix}domain:{domain_id}"

    def _hostname_key(self, hostname: str) -> str:
        return f"{self.key_prefix}hostname:{hostname}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.key_prefix}domains:{user_id}"

    async def _load(self, domain_id: str) -> Optional[Domain]:
        r = await self._get_redis()
        if r:
            with self._storage_errors("read"):
                data = await r.get(self._domain_key(domain_id))
            if not data:
                return None
            return Domain.from_dict(json.loads(data))

        info = self._memory_store.get(domain_id)
        return Domain.from_dict(info) if info else None

    async def _release_claim(self, r, hostname: str, domain_id: str) -> None:
        """Drop the hostname claim of an insert that did not complete."""
        try:
            await r.delete(self._hostname_key(hostname))
        except RedisError as e:
            logger.error(
                f"Could not release claim on {hostname} for {domain_id}, "
                f"key {self._hostname_key(hostname)} must be removed by hand: {e}"
            )

    async def insert(self, domain: Domain) -> Domain:
        """
        Persist a new domain.

        Raises Conflict if the hostname is already claimed.
        """
        hostname = domain.hostname.lower()
        data = domain.to_dict()

        r = await self._get_redis()
        if r:
            with self._storage_errors("insert"):
                claimed = await r.set(
                    self._hostname_key(hostname), domain.id, nx=True
                )
                if not claimed:
                    raise Conflict("Hostname already in use")
                try:
                    async with r.pipeline(transaction=True) as pipe:
                        pipe.set(self._domain_key(domain.id), json.dumps(data))
                        pipe.zadd(
                            self._user_key(domain.user_id),
                            {domain.id: domain.created_at.timestamp()},
                        )
                        await pipe.execute()
                except Exception:
                    await self._release_claim(r, hostname, domain.id)
                    raise
        else:
            async with self._lock:
                if hostname in self._hostname_index:
                    raise Conflict("Hostname already in use")
                self._hostname_index[hostname] = domain.id
                self._memory_store[domain.id] = data

        logger.info(f"Inserted domain: {hostname} -> site {domain.site_id}")
        return domain

    async def get(self, user_id: str, domain_id: str) -> Domain:
        """Get a domain owned by user_id; anything else is NotFound."""
        domain = await self._load(domain_id)
        if domain is None or domain.user_id != user_id:
            raise NotFound("Domain not found")
        return domain

    async def find_by_hostname(self, hostname: str) -> Optional[Domain]:
        """Global lookup used for uniqueness checks."""
        hostname = hostname.lower()
        r = await self._get_redis()
        if r:
            with self._storage_errors("hostname lookup"):
                domain_id = await r.get(self._hostname_key(hostname))
        else:
            domain_id = self._hostname_index.get(hostname)

        if not domain_id:
            return None
        return await self._load(domain_id)

    async def list(self, user_id: str) -> List[Domain]:
        """List all domains of a user, most recent first."""
        r = await self._get_redis()
        domains: List[Domain] = []

        if r:
            with self._storage_errors("list"):
                ids = await r.zrevrange(self._user_key(user_id), 0, -1)
            for domain_id in ids:
                entry = await self._load(domain_id)
                if entry:
                    domains.append(entry)
            return domains

        for data in self._memory_store.values():
            if data["user_id"] == user_id:
                domains.append(Domain.from_dict(data))
        domains.sort(key=lambda d: d.created_at, reverse=True)
        return domains

    async def list_by_site(self, user_id: str, site_id: str) -> List[Domain]:
        """List a user's domains attached to one site."""
        return [d for d in await self.list(user_id) if d.site_id == site_id]

    async def list_all(self) -> List[Domain]:
        """List every domain in the store (background jobs only)."""
        r = await self._get_redis()
        domains: List[Domain] = []

        if r:
            cursor = 0
            pattern = f"{self.key_prefix}domain:*"
            with self._storage_errors("scan"):
                while True:
                    cursor, keys = await r.scan(cursor, match=pattern, count=100)
                    for key in keys:
                        data = await r.get(key)
                        if data:
                            domains.append(Domain.from_dict(json.loads(data)))
                    if cursor == 0:
                        break
        else:
            domains = [Domain.from_dict(d) for d in self._memory_store.values()]

        return domains

    async def update(self, user_id: str, domain_id: str, patch: dict) -> Domain:
        """Apply a provider-state patch to a domain owned by user_id."""
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not patchable: {', '.join(sorted(unknown))}")

        domain = await self.get(user_id, domain_id)
        for name, value in patch.items():
            setattr(domain, name, value)
        data = domain.to_dict()

        r = await self._get_redis()
        if r:
            with self._storage_errors("update"):
                # xx: never resurrect a record deleted in the meantime
                written = await r.set(
                    self._domain_key(domain_id), json.dumps(data), xx=True
                )
            if not written:
                raise NotFound("Domain not found")
        else:
            async with self._lock:
                if domain_id not in self._memory_store:
                    raise NotFound("Domain not found")
                self._memory_store[domain_id] = data

        logger.info(f"Updated domain: {domain.hostname} ({domain.status})")
        return domain

    async def delete(self, user_id: str, domain_id: str) -> Domain:
        """Delete a domain owned by user_id and release its hostname."""
        domain = await self.get(user_id, domain_id)
        hostname = domain.hostname.lower()

        r = await self._get_redis()
        if r:
            with self._storage_errors("delete"):
                async with r.pipeline(transaction=True) as pipe:
                    pipe.delete(self._domain_key(domain_id))
                    pipe.zrem(self._user_key(user_id), domain_id)
                    pipe.delete(self._hostname_key(hostname))
                    await pipe.execute()
        else:
            async with self._lock:
                self._memory_store.pop(domain_id, None)
                if self._hostname_index.get(hostname) == domain_id:
                    del self._hostname_index[hostname]

        logger.info(f"Deleted domain: {hostname}")
        return domain
