"""
SimplHost API server.

Wires the registries, the Cloudflare client and the Supabase auth lookup
into a FastAPI application. Components are built from Settings once, at
startup, and shared through ``app.state``.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .api import domains as domains_api
from .api import sites as sites_api
from .auth.supabase_auth import SupabaseAuthClient
from .config import Settings, get_settings
from .domains.lifecycle import DomainLifecycle
from .domains.poller import DomainPoller
from .domains.provider import CloudflareProvider
from .domains.registry import DomainRegistry
from .errors import AppError
from .logging_config import configure_logging
from .metrics import render_metrics
from .sites.registry import SiteRegistry

logger = logging.getLogger("simplhost.main")


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Details go to the log, never to the caller
    logger.exception(f"Unhandled error in {request.method} {request.url.path}: {exc}")
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    settings: Optional[Settings] = None,
    domain_registry: Optional[DomainRegistry] = None,
    site_registry: Optional[SiteRegistry] = None,
    provider: Optional[CloudflareProvider] = None,
    auth_client: Optional[SupabaseAuthClient] = None,
) -> FastAPI:
    """Build the application. Components not passed in come from settings."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.debug)

    app = FastAPI(
        title="SimplHost API",
        description="Static sites with custom domains on the Cloudflare edge",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    domain_registry = domain_registry or DomainRegistry(
        redis_url=settings.redis_url,
        key_prefix=settings.key_prefix,
    )
    site_registry = site_registry or SiteRegistry(
        redis_url=settings.redis_url,
        key_prefix=settings.key_prefix,
        base_domain=settings.site_base_domain,
    )
    provider = provider or CloudflareProvider(
        api_token=settings.cloudflare_api_token,
        zone_id=settings.cloudflare_zone_id,
        api_base=settings.cloudflare_api_base,
        timeout=settings.provider_timeout,
        max_retries=settings.provider_max_retries,
        retry_backoff=settings.provider_retry_backoff,
    )
    auth_client = auth_client or SupabaseAuthClient(
        supabase_url=settings.supabase_url,
        anon_key=settings.supabase_anon_key,
        timeout=settings.auth_timeout,
    )
    lifecycle = DomainLifecycle(
        registry=domain_registry,
        provider=provider,
        cname_target=settings.cloudflare_cname_target,
        reserved_domain=settings.site_base_domain,
    )

    app.state.settings = settings
    app.state.domain_registry = domain_registry
    app.state.site_registry = site_registry
    app.state.provider = provider
    app.state.auth_client = auth_client
    app.state.domain_lifecycle = lifecycle
    app.state.domain_poller = None
    if settings.domain_poll_interval > 0:
        app.state.domain_poller = DomainPoller(lifecycle, settings.domain_poll_interval)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(domains_api.router)
    app.include_router(sites_api.router)

    @app.on_event("startup")
    async def startup_event():
        if not provider.configured:
            logger.warning("Cloudflare is not configured; domain operations will fail")
        if app.state.domain_poller:
            app.state.domain_poller.start()
        logger.info("SimplHost API started")

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.domain_poller:
            await app.state.domain_poller.stop()
        await provider.close()
        await auth_client.close()
        await domain_registry.close()
        await site_registry.close()
        logger.info("SimplHost API stopped")

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics():
        payload, content_type = render_metrics()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
