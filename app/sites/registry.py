"""
Site registry: site records keyed by id, with unique subdomain labels.
"""

import json
import logging
from typing import Dict, List, Optional

from ..errors import Conflict, NotFound, ValidationError
from ..registry.store import RedisStore
from .models import Site, is_valid_subdomain, normalize_subdomain

logger = logging.getLogger("simplhost.sites.registry")


class SiteRegistry(RedisStore):
    """Registry of deployed sites. Content storage lives elsewhere."""

    name = "site registry"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "simplhost:",
        base_domain: str = "simplhost.com",
    ):
        super().__init__(redis_url=redis_url, key_prefix=key_prefix)
        self.base_domain = base_domain
        # In-memory fallback
        self._memory_store: Dict[str, dict] = {}
        self._subdomain_index: Dict[str, str] = {}

    def _site_key(self, site_id: str) -> str:
        return f"{self.key_prefix}site:{site_id}"

    def _subdomain_key(self, subdomain: str) -> str:
        return f"{self.key_prefix}subdomain:{subdomain}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.key_prefix}sites:{user_id}"

    def _checked_label(self, subdomain: str) -> str:
        label = normalize_subdomain(subdomain or "")
        if not is_valid_subdomain(label):
            raise ValidationError("Invalid subdomain")
        return label

    async def _claim(self, label: str, site_id: str) -> None:
        r = await self._get_redis()
        if r:
            with self._storage_errors("claim subdomain"):
                claimed = await r.set(self._subdomain_key(label), site_id, nx=True)
        else:
            claimed = label not in self._subdomain_index
            if claimed:
                self._subdomain_index[label] = site_id
        if not claimed:
            raise Conflict("Subdomain already in use")

    async def _release(self, label: str) -> None:
        r = await self._get_redis()
        if r:
            with self._storage_errors("release subdomain"):
                await r.delete(self._subdomain_key(label))
        else:
            self._subdomain_index.pop(label, None)

    async def _save(self, site: Site, new: bool = False) -> None:
        data = site.to_dict()
        r = await self._get_redis()
        if r:
            with self._storage_errors("save"):
                async with r.pipeline(transaction=True) as pipe:
                    pipe.set(self._site_key(site.id), json.dumps(data))
                    if new:
                        pipe.zadd(
                            self._user_key(site.user_id),
                            {site.id: site.created_at.timestamp()},
                        )
                    await pipe.execute()
        else:
            self._memory_store[site.id] = data

    async def _load(self, site_id: str) -> Optional[Site]:
        r = await self._get_redis()
        if r:
            with self._storage_errors("read"):
                data = await r.get(self._site_key(site_id))
            return Site.from_dict(json.loads(data)) if data else None
        info = self._memory_store.get(site_id)
        return Site.from_dict(info) if info else None

    async def create(self, user_id: str, subdomain: str) -> Site:
        """Record a newly deployed site under a unique subdomain."""
        label = self._checked_label(subdomain)
        site = Site(user_id=user_id, subdomain=label)
        site.build_url(self.base_domain)

        async with self._lock:
            await self._claim(label, site.id)
            try:
                await self._save(site, new=True)
            except Exception:
                await self._release(label)
                raise

        logger.info(f"Created site {site.id}: {site.url}")
        return site

    async def get(self, user_id: str, site_id: str) -> Site:
        """Get a site owned by user_id; anything else is NotFound."""
        site = await self._load(site_id)
        if site is None or site.user_id != user_id:
            raise NotFound("Site not found")
        return site

    async def list(self, user_id: str) -> List[Site]:
        """List a user's sites, most recent first."""
        r = await self._get_redis()
        if r:
            with self._storage_errors("list"):
                ids = await r.zrevrange(self._user_key(user_id), 0, -1)
            sites = []
            for site_id in ids:
                site = await self._load(site_id)
                if site:
                    sites.append(site)
            return sites

        sites = [
            Site.from_dict(d) for d in self._memory_store.values()
            if d["user_id"] == user_id
        ]
        sites.sort(key=lambda s: s.created_at, reverse=True)
        return sites

    async def rename(self, user_id: str, site_id: str, subdomain: str) -> Site:
        """Move a site to a new subdomain label."""
        label = self._checked_label(subdomain)
        site = await self.get(user_id, site_id)
        if label == site.subdomain:
            return site

        old_label = site.subdomain
        async with self._lock:
            await self._claim(label, site.id)
            site.subdomain = label
            site.build_url(self.base_domain)
            try:
                await self._save(site)
            except Exception:
                await self._release(label)
                raise
            await self._release(old_label)

        logger.info(f"Renamed site {site.id}: {old_label} -> {label}")
        return site

    async def delete(self, user_id: str, site_id: str) -> Site:
        """Delete a site record owned by user_id."""
        site = await self.get(user_id, site_id)

        r = await self._get_redis()
        if r:
            with self._storage_errors("delete"):
                async with r.pipeline(transaction=True) as pipe:
                    pipe.delete(self._site_key(site_id))
                    pipe.zrem(self._user_key(user_id), site_id)
                    pipe.delete(self._subdomain_key(site.subdomain))
                    await pipe.execute()
        else:
            async with self._lock:
                self._memory_store.pop(site_id, None)
                self._subdomain_index.pop(site.subdomain, None)

        logger.info(f"Deleted site {site_id} ({site.subdomain})")
        return site
