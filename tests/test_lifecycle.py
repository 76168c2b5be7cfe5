"""
Tests for the custom domain lifecycle.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from prometheus_client import REGISTRY

from app.domains.lifecycle import DomainLifecycle
from app.domains.poller import DomainPoller
from app.domains.provider import CloudflareProvider
from app.errors import (
    Conflict,
    NotFound,
    PreconditionFailed,
    ProviderError,
    ProviderNotFound,
    StorageUnavailable,
    ValidationError,
)

from conftest import FakeProvider, FakeSession, cloudflare_result


def _orphans(reason):
    return REGISTRY.get_sample_value(
        "simplhost_orphaned_hostnames_total", {"reason": reason}
    ) or 0.0


class TestCreate:
    @pytest.mark.asyncio
    async def test_end_to_end(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")

        result = await lifecycle.create(alice, site.id, "Example.com")

        domain = result.domain
        assert domain.hostname == "example.com"
        assert domain.status == "pending"
        assert domain.verification_method == "cname"
        assert domain.verification_value == "dv.provider.net"
        assert domain.provider_hostname_id == "cf1"
        assert domain.site_id == site.id
        assert domain.user_id == "user-alice"
        assert result.cname_target == "edge.simplhost.com"
        assert result.dns_records == [
            {"cname_name": "_cf.example.com", "cname_target": "dv.provider.net"}
        ]

        stored = await alice.domains.get(domain.id)
        assert stored == domain

    @pytest.mark.asyncio
    async def test_hostname_normalized_before_provider(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        result = await lifecycle.create(alice, site.id, "  HTTPS://Shop.Example.com/ ")
        assert result.domain.hostname == "shop.example.com"
        assert provider.results["cf1"]["hostname"] == "shop.example.com"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("site_id,hostname", [
        ("", "example.com"),
        ("site", ""),
        (None, "example.com"),
        ("site", "   "),
    ])
    async def test_missing_fields(self, lifecycle, alice, provider, site_id, hostname):
        with pytest.raises(ValidationError, match="Missing siteId or hostname"):
            await lifecycle.create(alice, site_id, hostname)
        assert provider.create_calls == 0

    @pytest.mark.asyncio
    async def test_invalid_hostname(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        with pytest.raises(ValidationError, match="Invalid hostname"):
            await lifecycle.create(alice, site.id, "not a hostname")
        assert provider.create_calls == 0

    @pytest.mark.asyncio
    async def test_platform_subdomains_rejected(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        with pytest.raises(ValidationError, match="simplhost.com"):
            await lifecycle.create(alice, site.id, "other.simplhost.com")
        assert provider.create_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_site(self, lifecycle, alice, provider):
        with pytest.raises(NotFound, match="Site not found"):
            await lifecycle.create(alice, "missing-site", "example.com")
        assert provider.create_calls == 0

    @pytest.mark.asyncio
    async def test_other_users_site(self, lifecycle, alice, bob, provider):
        site = await bob.sites.create("bobsite")
        with pytest.raises(NotFound):
            await lifecycle.create(alice, site.id, "example.com")
        assert provider.create_calls == 0

    @pytest.mark.asyncio
    async def test_hostname_taken_by_another_user(self, lifecycle, alice, bob, provider):
        bob_site = await bob.sites.create("bobsite")
        await lifecycle.create(bob, bob_site.id, "example.com")

        site = await alice.sites.create("s1")
        with pytest.raises(Conflict, match="Hostname already in use"):
            await lifecycle.create(alice, site.id, "https://EXAMPLE.com/")
        assert provider.create_calls == 1

    @pytest.mark.asyncio
    async def test_provider_failure_persists_nothing(self, lifecycle, alice, provider, domain_registry):
        site = await alice.sites.create("s1")
        provider.create_error = ProviderError("Authentication error")

        with pytest.raises(ProviderError, match="Authentication error"):
            await lifecycle.create(alice, site.id, "example.com")

        assert await alice.domains.list() == []
        assert await domain_registry.find_by_hostname("example.com") is None

    @pytest.mark.asyncio
    async def test_concurrent_creates(self, lifecycle, alice, bob, provider):
        site_a = await alice.sites.create("alice")
        site_b = await bob.sites.create("bob")

        results = await asyncio.gather(
            lifecycle.create(alice, site_a.id, "race.example.com"),
            lifecycle.create(bob, site_b.id, "Race.Example.com"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, Conflict)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(successes) == 1

        records = await alice.domains.list() + await bob.domains.list()
        assert len(records) == 1
        # The loser's provider hostname was rolled back
        assert list(provider.results) == [records[0].provider_hostname_id]

    @pytest.mark.asyncio
    async def test_concurrent_creates_provider_rejects_duplicate(
        self, domain_registry, alice, bob
    ):
        provider = FakeProvider(reject_duplicates=True)
        lifecycle = DomainLifecycle(domain_registry, provider, "edge.simplhost.com")
        site_a = await alice.sites.create("alice")
        site_b = await bob.sites.create("bob")

        results = await asyncio.gather(
            lifecycle.create(alice, site_a.id, "race.example.com"),
            lifecycle.create(bob, site_b.id, "race.example.com"),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, Conflict)]) == 1
        assert len([r for r in results if not isinstance(r, Exception)]) == 1
        assert list(provider.results) == ["cf1"]
        assert provider.deleted == []

    @pytest.mark.asyncio
    async def test_concurrent_creates_against_cloudflare_duplicate(
        self, domain_registry, alice, bob
    ):
        session = FakeSession(interleave=True)
        session.queue(200, {
            "success": True,
            "errors": [],
            "result": cloudflare_result("cf1", "race.example.com"),
        })
        session.queue(409, {
            "success": False,
            "errors": [{"code": 1406, "message": "Duplicate custom hostname found."}],
        })
        cf = CloudflareProvider(api_token="cf-token", zone_id="zone123", session=session)
        lifecycle = DomainLifecycle(domain_registry, cf, "edge.simplhost.com")
        site_a = await alice.sites.create("alice")
        site_b = await bob.sites.create("bob")

        results = await asyncio.gather(
            lifecycle.create(alice, site_a.id, "race.example.com"),
            lifecycle.create(bob, site_b.id, "race.example.com"),
            return_exceptions=True,
        )

        assert [type(r).__name__ for r in results] == ["DomainResult", "Conflict"]
        assert results[1].status_code == 409
        assert len(session.calls) == 2
        stored = await domain_registry.find_by_hostname("race.example.com")
        assert stored.provider_hostname_id == "cf1"
        assert stored.user_id == "user-alice"

    @pytest.mark.asyncio
    async def test_store_constraint_catches_missed_precheck(
        self, lifecycle, alice, provider, domain_registry
    ):
        site = await alice.sites.create("s1")
        await lifecycle.create(alice, site.id, "example.com")

        # Simulate a race where the advisory check saw nothing
        real_find = domain_registry.find_by_hostname
        with patch.object(
            domain_registry, "find_by_hostname",
            new=AsyncMock(side_effect=[None, await real_find("example.com")]),
        ):
            with pytest.raises(Conflict):
                await lifecycle.create(alice, site.id, "example.com")

        assert len(await alice.domains.list()) == 1
        assert provider.deleted == ["cf2"]

    @pytest.mark.asyncio
    async def test_insert_failure_rolls_back_provider(
        self, lifecycle, alice, provider, domain_registry
    ):
        site = await alice.sites.create("s1")

        with patch.object(
            domain_registry, "insert", new=AsyncMock(side_effect=StorageUnavailable())
        ):
            with pytest.raises(StorageUnavailable):
                await lifecycle.create(alice, site.id, "example.com")

        assert provider.deleted == ["cf1"]
        assert await alice.domains.list() == []

    @pytest.mark.asyncio
    async def test_failed_rollback_counts_orphan(
        self, lifecycle, alice, provider, domain_registry
    ):
        site = await alice.sites.create("s1")
        provider.delete_error = ProviderError("Internal error")
        before = _orphans("insert_failed")

        with patch.object(
            domain_registry, "insert", new=AsyncMock(side_effect=RuntimeError("disk full"))
        ):
            with pytest.raises(Exception) as exc_info:
                await lifecycle.create(alice, site.id, "example.com")

        assert exc_info.value.status_code == 500
        assert "failed to save" in exc_info.value.message
        assert _orphans("insert_failed") == before + 1
        assert await alice.domains.list() == []


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_overwrites_with_provider_state(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")

        provider.results["cf1"]["ssl"] = {
            "status": "pending_validation",
            "validation_records": [{"txt_name": "_acme.example.com", "txt_value": "abc"}],
        }
        result = await lifecycle.refresh(alice, created.domain.id)

        assert result.domain.status == "pending_validation"
        assert result.domain.verification_method == "txt"
        assert result.domain.verification_value == "abc"
        assert result.dns_records == [{"txt_name": "_acme.example.com", "txt_value": "abc"}]

        provider.results["cf1"]["ssl"] = {"status": "active", "validation_records": []}
        result = await lifecycle.refresh(alice, created.domain.id)

        assert result.domain.status == "active"
        assert result.domain.state == "active"
        assert result.domain.verification_method is None
        assert result.domain.verification_value is None

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")

        first = (await lifecycle.refresh(alice, created.domain.id)).domain
        second = (await lifecycle.refresh(alice, created.domain.id)).domain

        assert second.updated_at >= first.updated_at
        first.updated_at = second.updated_at
        assert first == second

    @pytest.mark.asyncio
    async def test_refresh_without_provider_mapping(self, lifecycle, alice, domain_registry):
        from app.domains.models import Domain

        legacy = Domain(user_id="user-alice", site_id="s1", hostname="legacy.example.com")
        await domain_registry.insert(legacy)

        with pytest.raises(PreconditionFailed, match="Missing Cloudflare mapping"):
            await lifecycle.refresh(alice, legacy.id)

    @pytest.mark.asyncio
    async def test_refresh_provider_failure_keeps_record(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")
        provider.fetch_error = ProviderError("Cloudflare fetch failed")

        with pytest.raises(ProviderError):
            await lifecycle.refresh(alice, created.domain.id)

        assert await alice.domains.get(created.domain.id) == created.domain

    @pytest.mark.asyncio
    async def test_refresh_provider_lost_hostname(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")
        provider.results.clear()

        with pytest.raises(ProviderNotFound):
            await lifecycle.refresh(alice, created.domain.id)

    @pytest.mark.asyncio
    async def test_refresh_scoped(self, lifecycle, alice, bob):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")

        with pytest.raises(NotFound):
            await lifecycle.refresh(bob, created.domain.id)
        with pytest.raises(ValidationError, match="Missing domain id"):
            await lifecycle.refresh(alice, " ")


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")

        await lifecycle.delete(alice, created.domain.id)

        assert provider.deleted == ["cf1"]
        with pytest.raises(NotFound):
            await lifecycle.get(alice, created.domain.id)
        with pytest.raises(NotFound):
            await lifecycle.delete(alice, created.domain.id)

    @pytest.mark.asyncio
    async def test_delete_survives_provider_failure(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")
        provider.delete_error = ProviderError("Internal error")
        before = _orphans("delete_failed")

        await lifecycle.delete(alice, created.domain.id)

        with pytest.raises(NotFound):
            await lifecycle.get(alice, created.domain.id)
        assert _orphans("delete_failed") == before + 1

    @pytest.mark.asyncio
    async def test_delete_when_provider_unconfigured(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")
        provider.configured = False

        await lifecycle.delete(alice, created.domain.id)

        assert provider.deleted == []
        assert await alice.domains.list() == []

    @pytest.mark.asyncio
    async def test_delete_other_users_domain(self, lifecycle, alice, bob, provider):
        site = await alice.sites.create("s1")
        created = await lifecycle.create(alice, site.id, "example.com")

        with pytest.raises(NotFound):
            await lifecycle.delete(bob, created.domain.id)
        assert provider.deleted == []

    @pytest.mark.asyncio
    async def test_delete_for_site(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        other = await alice.sites.create("s2")
        await lifecycle.create(alice, site.id, "a.example.com")
        await lifecycle.create(alice, site.id, "b.example.com")
        await lifecycle.create(alice, other.id, "c.example.com")

        removed = await lifecycle.delete_for_site(alice, site.id)

        assert removed == 2
        assert [d.hostname for d in await alice.domains.list()] == ["c.example.com"]


class TestBackgroundRefresh:
    @pytest.mark.asyncio
    async def test_refresh_all_pending(self, lifecycle, alice, bob, provider):
        site_a = await alice.sites.create("alice")
        site_b = await bob.sites.create("bob")
        a = await lifecycle.create(alice, site_a.id, "a.example.com")
        b = await lifecycle.create(bob, site_b.id, "b.example.com")

        provider.results["cf1"]["ssl"]["status"] = "active"
        assert await lifecycle.refresh_all_pending() == 2
        assert (await alice.domains.get(a.domain.id)).status == "active"
        assert (await bob.domains.get(b.domain.id)).status == "pending"

        # Active domains are no longer polled
        provider.fetch_calls = 0
        assert await lifecycle.refresh_all_pending() == 1
        assert provider.fetch_calls == 1

    @pytest.mark.asyncio
    async def test_refresh_all_pending_continues_after_failure(self, lifecycle, alice, provider):
        site = await alice.sites.create("s1")
        await lifecycle.create(alice, site.id, "a.example.com")
        await lifecycle.create(alice, site.id, "b.example.com")
        del provider.results["cf1"]

        assert await lifecycle.refresh_all_pending() == 1

    @pytest.mark.asyncio
    async def test_poller_run_once_swallows_errors(self, lifecycle):
        poller = DomainPoller(lifecycle, interval=60)
        with patch.object(
            lifecycle, "refresh_all_pending", new=AsyncMock(side_effect=RuntimeError("boom"))
        ):
            assert await poller.run_once() == 0

    @pytest.mark.asyncio
    async def test_poller_start_stop(self, lifecycle):
        poller = DomainPoller(lifecycle, interval=60)
        poller.start()
        assert poller.running
        await poller.stop()
        assert not poller.running
