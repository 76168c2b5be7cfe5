"""
REST API for site records.

Uploading and serving site content is handled by the storage layer; these
routes only manage the records domains are attached to.
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..auth.guard import get_user_scope
from ..auth.scope import UserScope
from ..errors import ValidationError
from .payload import SitePayload, read_payload

logger = logging.getLogger("simplhost.api.sites")

router = APIRouter(prefix="/api/sites", tags=["sites"])


def _required(value, message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(message)
    return value


@router.get("")
async def list_sites(scope: UserScope = Depends(get_user_scope)):
    """List the authenticated user's sites, newest first."""
    return [s.to_dict() for s in await scope.sites.list()]


@router.post("")
async def create_site(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """Record a deployed site under a new subdomain."""
    body = await read_payload(request, SitePayload)
    subdomain = _required(body.subdomain, "Missing subdomain")
    site = await scope.sites.create(subdomain)
    return {"success": True, "site": site.to_dict()}


@router.patch("")
async def rename_site(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """Move a site to a different subdomain."""
    body = await read_payload(request, SitePayload)
    site_id = _required(body.id, "Missing site id")
    subdomain = _required(body.subdomain, "Missing subdomain")
    site = await scope.sites.rename(site_id, subdomain)
    return {"success": True, "site": site.to_dict()}


@router.delete("")
async def delete_site(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """Delete a site and detach every custom domain pointing at it."""
    body = await read_payload(request, SitePayload)
    site_id = _required(body.id, "Missing site id")

    # Ownership check first so a foreign id is a 404 before anything changes
    site = await scope.sites.get(site_id)
    lifecycle = request.app.state.domain_lifecycle
    removed = await lifecycle.delete_for_site(scope, site.id)
    await scope.sites.delete(site.id)

    logger.info(f"User {scope.user_id} deleted site {site.subdomain} ({removed} domains)")
    return {"success": True}
