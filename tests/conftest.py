"""
Pytest configuration for SimplHost tests.
"""

import asyncio
import os
import sys
from collections import deque

import pytest

# Add app directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables
os.environ["SIMPLHOST_DEBUG"] = "true"
os.environ["SIMPLHOST_CLOUDFLARE_API_TOKEN"] = "cf-test-token"
os.environ["SIMPLHOST_CLOUDFLARE_ZONE_ID"] = "zone123"
os.environ["SIMPLHOST_SUPABASE_URL"] = "https://project.supabase.co"
os.environ["SIMPLHOST_SUPABASE_ANON_KEY"] = "anon-key"


# ── Fake aiohttp session ─────────────────────────────────────────────


class FakeResponse:
    """Async context manager standing in for aiohttp.ClientResponse."""

    def __init__(self, status, payload, interleave=False):
        self.status = status
        self._payload = payload
        self._interleave = interleave

    async def __aenter__(self):
        if self._interleave:
            # Let other tasks run while this request is "in flight"
            await asyncio.sleep(0)
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _RaisingContext:
    def __init__(self, error):
        self._error = error

    async def __aenter__(self):
        raise self._error

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays queued responses and records every request."""

    def __init__(self, interleave=False):
        self.closed = False
        self.interleave = interleave
        self.calls = []
        self._responses = deque()

    def queue(self, status, payload=None):
        self._responses.append((status, payload if payload is not None else {}))

    def queue_error(self, error):
        self._responses.append(error)

    def request(self, method, url, headers=None, json=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json})
        item = self._responses.popleft()
        if isinstance(item, Exception):
            return _RaisingContext(item)
        return FakeResponse(*item, interleave=self.interleave)

    def get(self, url, headers=None):
        return self.request("GET", url, headers=headers)

    async def close(self):
        self.closed = True


# ── Fake collaborators ───────────────────────────────────────────────


def cloudflare_result(provider_id, hostname, status="pending", records=None):
    """A custom hostname resource shaped like Cloudflare's."""
    if records is None:
        records = [{
            "cname_name": f"_cf.{hostname}",
            "cname_target": "dv.provider.net",
        }]
    return {
        "id": provider_id,
        "hostname": hostname,
        "ssl": {"status": status, "validation_records": records},
    }


class FakeProvider:
    """In-memory CloudflareProvider double built on the real normalizer."""

    def __init__(self, reject_duplicates=False):
        self.configured = True
        self.reject_duplicates = reject_duplicates
        self.results = {}
        self.deleted = []
        self.create_error = None
        self.fetch_error = None
        self.delete_error = None
        self.create_calls = 0
        self.fetch_calls = 0
        self._counter = 0

    async def create_hostname(self, hostname):
        from app.domains.provider import normalize_hostname_result

        self.create_calls += 1
        # Yield so concurrent creates interleave like real network calls
        await asyncio.sleep(0)
        if self.create_error:
            raise self.create_error
        if self.reject_duplicates and any(
            r["hostname"] == hostname for r in self.results.values()
        ):
            from app.errors import Conflict
            raise Conflict("Hostname already in use")
        self._counter += 1
        provider_id = f"cf{self._counter}"
        self.results[provider_id] = cloudflare_result(provider_id, hostname)
        return normalize_hostname_result(self.results[provider_id])

    async def fetch_status(self, provider_id):
        from app.domains.provider import normalize_hostname_result
        from app.errors import ProviderNotFound

        self.fetch_calls += 1
        if self.fetch_error:
            raise self.fetch_error
        if provider_id not in self.results:
            raise ProviderNotFound()
        return normalize_hostname_result(self.results[provider_id])

    async def delete_hostname(self, provider_id):
        if self.delete_error:
            raise self.delete_error
        self.results.pop(provider_id, None)
        self.deleted.append(provider_id)

    async def close(self):
        pass


class FakeAuthClient:
    """Maps fixed bearer tokens to users."""

    def __init__(self):
        from app.auth.scope import AuthenticatedUser

        self.tokens = {
            "token-alice": AuthenticatedUser(id="user-alice", email="alice@example.com"),
            "token-bob": AuthenticatedUser(id="user-bob", email="bob@example.com"),
        }

    async def get_user(self, token):
        from app.errors import Unauthorized

        user = self.tokens.get(token)
        if user is None:
            raise Unauthorized()
        return user

    async def close(self):
        pass


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def test_settings():
    """Provide test settings."""
    from app.config import Settings
    return Settings()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def domain_registry():
    """In-memory domain registry (no Redis)."""
    from app.domains.registry import DomainRegistry
    reg = DomainRegistry()
    reg._use_redis = False
    return reg


@pytest.fixture
def site_registry():
    """In-memory site registry (no Redis)."""
    from app.sites.registry import SiteRegistry
    reg = SiteRegistry(base_domain="simplhost.com")
    reg._use_redis = False
    return reg


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def lifecycle(domain_registry, provider):
    from app.domains.lifecycle import DomainLifecycle
    return DomainLifecycle(
        registry=domain_registry,
        provider=provider,
        cname_target="edge.simplhost.com",
        reserved_domain="simplhost.com",
    )


@pytest.fixture
def alice(domain_registry, site_registry):
    from app.auth.scope import AuthenticatedUser, UserScope
    return UserScope(AuthenticatedUser(id="user-alice"), domain_registry, site_registry)


@pytest.fixture
def bob(domain_registry, site_registry):
    from app.auth.scope import AuthenticatedUser, UserScope
    return UserScope(AuthenticatedUser(id="user-bob"), domain_registry, site_registry)


@pytest.fixture
def client(test_settings, domain_registry, site_registry, provider):
    """API client wired to in-memory registries and fake collaborators."""
    from fastapi.testclient import TestClient
    from app.main import create_app

    application = create_app(
        settings=test_settings,
        domain_registry=domain_registry,
        site_registry=site_registry,
        provider=provider,
        auth_client=FakeAuthClient(),
    )
    return TestClient(application, raise_server_exceptions=False)
