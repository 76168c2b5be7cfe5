"""
Cloudflare custom hostname client.

Wraps the "custom hostnames for SaaS" API of a single zone and normalizes
its responses into a ProviderHostname, identically for create and status
fetches.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..errors import Conflict, ProviderError, ProviderNotConfigured, ProviderNotFound
from ..metrics import PROVIDER_REQUESTS
from .models import (
    METHOD_CNAME,
    METHOD_HTTP,
    METHOD_NONE,
    METHOD_TXT,
    STATUS_PENDING,
    ProviderHostname,
    VerificationDescriptor,
)

logger = logging.getLogger("simplhost.domains.provider")

# Error code for a hostname already registered in the zone
DUPLICATE_HOSTNAME_CODE = 1406

# Record field carrying the value for each method, easiest DNS setup first
_VERIFICATION_PRIORITY = (
    (METHOD_CNAME, "cname_target"),
    (METHOD_TXT, "txt_value"),
    (METHOD_HTTP, "http_url"),
)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_validation_records(result: Any) -> List[dict]:
    """Pull result.ssl.validation_records, tolerating missing levels."""
    records = _as_dict(_as_dict(result).get("ssl")).get("validation_records")
    if not isinstance(records, list):
        return []
    return [r for r in records if isinstance(r, dict)]


def select_verification(records: List[dict]) -> VerificationDescriptor:
    """Pick the verification descriptor users should act on."""
    for method, key in _VERIFICATION_PRIORITY:
        for record in records:
            value = record.get(key)
            if value:
                return VerificationDescriptor(method=method, value=value)
    return VerificationDescriptor(method=METHOD_NONE, value=None)


def normalize_hostname_result(result: Any) -> ProviderHostname:
    """Normalize a custom hostname resource from the provider."""
    result = _as_dict(result)
    ssl = _as_dict(result.get("ssl"))
    records = extract_validation_records(result)
    return ProviderHostname(
        provider_id=result.get("id") or "",
        status=ssl.get("status") or STATUS_PENDING,
        verification=select_verification(records),
        validation_records=records,
    )


def _first_error(payload: Any, fallback: str) -> str:
    errors = _as_dict(payload).get("errors")
    if isinstance(errors, list) and errors:
        message = _as_dict(errors[0]).get("message")
        if message:
            return message
    return fallback


def _error_codes(payload: Any) -> List[int]:
    errors = _as_dict(payload).get("errors")
    if not isinstance(errors, list):
        return []
    return [_as_dict(e).get("code") for e in errors if _as_dict(e).get("code") is not None]


class CloudflareProvider:
    """Async client for one zone's custom hostnames."""

    def __init__(
        self,
        api_token: str = "",
        zone_id: str = "",
        api_base: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_token = api_token
        self.zone_id = zone_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._session = session
        self._owns_session = session is None

    @property
    def configured(self) -> bool:
        return bool(self.api_token and self.zone_id)

    def _ensure_configured(self) -> None:
        if not self.configured:
            raise ProviderNotConfigured()

    def _url(self, provider_id: Optional[str] = None) -> str:
        url = f"{self.api_base}/zones/{self.zone_id}/custom_hostnames"
        return f"{url}/{provider_id}" if provider_id else url

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        json_data: Optional[dict] = None,
    ) -> tuple[int, dict]:
        """Single round trip. Returns (HTTP status, decoded body)."""
        session = await self._get_session()
        headers = {"Authorization": f"Bearer {self.api_token}"}
        if json_data is not None:
            headers["Content-Type"] = "application/json"

        logger.debug(f"Cloudflare API {method} {url}")
        try:
            async with session.request(
                method, url, headers=headers, json=json_data
            ) as resp:
                try:
                    payload = await resp.json(content_type=None)
                except ValueError:
                    payload = {}
                return resp.status, _as_dict(payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"Cloudflare request failed: {e}") from e

    async def create_hostname(self, hostname: str) -> ProviderHostname:
        """
        Register a hostname, requesting DV TLS validated over HTTP.

        A hostname the zone already holds is a Conflict, like a duplicate
        in the registry.
        """
        self._ensure_configured()
        body = {
            "hostname": hostname,
            "ssl": {"method": "http", "type": "dv"},
        }
        try:
            status, payload = await self._request("POST", self._url(), body)
            if status == 409 or DUPLICATE_HOSTNAME_CODE in _error_codes(payload):
                PROVIDER_REQUESTS.labels(operation="create", outcome="conflict").inc()
                logger.info(f"Cloudflare already holds custom hostname {hostname}")
                raise Conflict("Hostname already in use")
            if status >= 400 or payload.get("success") is False:
                raise ProviderError(
                    _first_error(payload, "Cloudflare create failed"),
                    http_status=status,
                )
        except ProviderError:
            PROVIDER_REQUESTS.labels(operation="create", outcome="error").inc()
            raise

        PROVIDER_REQUESTS.labels(operation="create", outcome="success").inc()
        created = normalize_hostname_result(payload.get("result"))
        logger.info(
            f"Created custom hostname {hostname} ({created.provider_id}): "
            f"{created.status}, verify via {created.verification.method}"
        )
        return created

    async def _fetch_once(self, provider_id: str) -> ProviderHostname:
        status, payload = await self._request("GET", self._url(provider_id))
        if status == 404:
            raise ProviderNotFound()
        if status >= 400 or payload.get("success") is False:
            raise ProviderError(
                _first_error(payload, "Cloudflare fetch failed"),
                http_status=status,
            )
        return normalize_hostname_result(payload.get("result"))

    async def fetch_status(self, provider_id: str) -> ProviderHostname:
        """
        Re-read a custom hostname.

        Reads are idempotent, so transport failures and 5xx answers are
        retried with exponential backoff up to max_retries times.
        """
        self._ensure_configured()
        attempt = 0
        while True:
            try:
                fetched = await self._fetch_once(provider_id)
            except ProviderNotFound:
                PROVIDER_REQUESTS.labels(operation="fetch", outcome="error").inc()
                raise
            except ProviderError as e:
                if not e.transient or attempt >= self.max_retries:
                    PROVIDER_REQUESTS.labels(operation="fetch", outcome="error").inc()
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    f"Fetch of {provider_id} failed ({e.message}), "
                    f"retry {attempt}/{self.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue

            PROVIDER_REQUESTS.labels(operation="fetch", outcome="success").inc()
            if not fetched.provider_id:
                fetched.provider_id = provider_id
            return fetched

    async def delete_hostname(self, provider_id: str) -> None:
        """Deregister a hostname. A 404 means it is already gone."""
        self._ensure_configured()
        try:
            status, payload = await self._request("DELETE", self._url(provider_id))
            if status != 404 and (status >= 400 or payload.get("success") is False):
                raise ProviderError(
                    _first_error(payload, "Cloudflare delete failed"),
                    http_status=status,
                )
        except ProviderError:
            PROVIDER_REQUESTS.labels(operation="delete", outcome="error").inc()
            raise

        PROVIDER_REQUESTS.labels(operation="delete", outcome="success").inc()
        logger.info(f"Deleted custom hostname {provider_id}")

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
