"""
REST API for custom domain management.
"""

import logging

from fastapi import APIRouter, Depends, Request

from ..auth.guard import get_user_scope
from ..auth.scope import UserScope
from .payload import DomainPayload, read_payload

logger = logging.getLogger("simplhost.api.domains")

router = APIRouter(prefix="/api/domains", tags=["domains"])


# ── Routes ───────────────────────────────────────────────────────────

@router.get("")
async def list_domains(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """List the authenticated user's domains, newest first."""
    lifecycle = request.app.state.domain_lifecycle
    domains = await lifecycle.list(scope)
    return [d.to_api_response() for d in domains]


@router.post("")
async def create_domain(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """Attach a custom hostname to one of the user's sites."""
    body = await read_payload(request, DomainPayload)
    lifecycle = request.app.state.domain_lifecycle
    result = await lifecycle.create(scope, body.siteId, body.hostname)
    return result.to_api_response()


@router.patch("")
async def refresh_domain(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """Resync a domain's verification status from the provider."""
    body = await read_payload(request, DomainPayload)
    lifecycle = request.app.state.domain_lifecycle
    result = await lifecycle.refresh(scope, body.id)
    return result.to_api_response()


@router.delete("")
async def delete_domain(
    request: Request,
    scope: UserScope = Depends(get_user_scope),
):
    """Remove a custom domain."""
    body = await read_payload(request, DomainPayload)
    lifecycle = request.app.state.domain_lifecycle
    domain = await lifecycle.delete(scope, body.id)
    logger.info(f"User {scope.user_id} removed domain {domain.hostname}")
    return {"success": True}
