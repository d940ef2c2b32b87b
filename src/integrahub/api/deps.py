"""Shared FastAPI dependencies for sessions, tenant scoping, and the integration service."""

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from integrahub.config import get_settings
from integrahub.connectors.github import GitHubConnector
from integrahub.connectors.linkedin import LinkedInConnector
from integrahub.connectors.nango import NangoConnector
from integrahub.services.integration_service import IntegrationService


async def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Return the session factory stored on app state by the lifespan.

    The integration service opens its own transactions, so it receives the
    factory rather than a request-scoped session.
    """
    return request.app.state.session_factory


async def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """Resolve the tenant from the ``X-Tenant-Id`` header."""
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-Id header is required")
    return x_tenant_id


async def get_integration_service(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> IntegrationService:
    """Provide an IntegrationService scoped to the request's tenant.

    The dispatch gateway and tracking sink are shared app-level objects
    created in the lifespan; connectors are cheap and built per request.
    """
    settings = get_settings()
    return IntegrationService(
        tenant_id=tenant_id,
        session_factory=session_factory,
        dispatcher=request.app.state.dispatcher,
        tracking=request.app.state.tracking,
        github=GitHubConnector.from_settings(settings),
        linkedin=LinkedInConnector(NangoConnector.from_settings(settings)),
        discord_token=settings.effective_discord_token,
        credential_timeout=settings.credential_exchange_timeout,
    )
