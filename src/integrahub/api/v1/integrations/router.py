"""Integration connect/onboard endpoints returning JSON:API responses.

One POST endpoint per platform flow, plus listing, lookup, bulk delete and
import. Classified integration errors become HTTP errors whose detail is a
JSON:API error object.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from integrahub.api.deps import get_integration_service
from integrahub.errors import IntegrationError
from integrahub.models.integration import Integration
from integrahub.schemas.integration import (
    DevtoConnectRequest,
    DiscordConnectRequest,
    DiscourseConnectRequest,
    GitConnectRequest,
    GithubConnectRequest,
    HackerNewsConnectRequest,
    ImportIntegrationRequest,
    LinkedInOnboardRequest,
    RedditOnboardRequest,
    SlackCallbackRequest,
    StackOverflowConnectRequest,
    TwitterCallbackRequest,
)
from integrahub.schemas.jsonapi import (
    JSONAPIListResponse,
    JSONAPIRequest,
    JSONAPIResource,
    JSONAPISingleResponse,
    error_from_exception,
)
from integrahub.schemas.pagination import PaginationMeta, build_links
from integrahub.services.integration_service import IntegrationService

router = APIRouter()

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Attribute mapping helpers
# ---------------------------------------------------------------------------


def _integration_to_attrs(integration: Integration) -> dict:
    """Map an Integration model to JSON:API attributes.

    Credentials are never returned.
    """
    return {
        "platform": integration.platform,
        "status": integration.status,
        "integration_identifier": integration.integration_identifier,
        "settings": integration.settings,
        "limit_count": integration.limit_count,
        "limit_last_reset_at": (
            integration.limit_last_reset_at.isoformat()
            if integration.limit_last_reset_at
            else None
        ),
        "tenant_id": integration.tenant_id,
        "created_at": integration.created_at.isoformat(),
        "updated_at": integration.updated_at.isoformat(),
    }


def _integration_resource(integration: Integration) -> JSONAPIResource:
    """Build a JSON:API resource object from an Integration."""
    return JSONAPIResource(
        type="integrations",
        id=str(integration.id),
        attributes=_integration_to_attrs(integration),
    )


async def _call(operation: Awaitable[T]) -> T:
    """Await a service call, translating classified errors into HTTP errors."""
    try:
        return await operation
    except IntegrationError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=error_from_exception(exc).model_dump(exclude_none=True),
        ) from exc


async def _single(operation: Awaitable[Integration]) -> JSONAPISingleResponse:
    integration = await _call(operation)
    return JSONAPISingleResponse(data=_integration_resource(integration))


# ---------------------------------------------------------------------------
# Listing, lookup, delete, import
# ---------------------------------------------------------------------------


@router.get("")
async def list_integrations(
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    platform: str | None = Query(default=None),
    status: str | None = Query(default=None),
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPIListResponse:
    """List the tenant's integrations, optionally filtered by platform and status."""
    filters = {
        key: value
        for key, value in (("platform", platform), ("status", status))
        if value is not None
    }
    integrations, count = await _call(
        service.query(filter=filters, limit=limit, offset=offset)
    )

    meta = PaginationMeta(count=count, limit=limit, offset=offset)
    base_url = str(request.url).split("?")[0]
    links = build_links(base_url, meta, urlencode(filters))

    return JSONAPIListResponse(
        data=[_integration_resource(i) for i in integrations],
        meta=meta.model_dump(),
        links=links.model_dump(exclude_none=True),
    )


@router.delete("", status_code=204)
async def destroy_integrations(
    ids: list[UUID] = Query(...),
    service: IntegrationService = Depends(get_integration_service),
) -> None:
    """Delete several integrations atomically; any unknown id aborts the batch."""
    if not ids or len(set(ids)) != len(ids):
        raise HTTPException(
            status_code=400, detail="Provide a non-empty list of unique integration ids"
        )
    await _call(service.destroy_all([str(integration_id) for integration_id in ids]))


@router.post("/import", status_code=201)
async def import_integration(
    body: JSONAPIRequest[ImportIntegrationRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    data = attrs.model_dump(mode="json", exclude={"import_hash"}, exclude_none=True)
    return await _single(service.import_integration(data, attrs.import_hash))


@router.get("/git/remotes")
async def get_git_remotes(
    service: IntegrationService = Depends(get_integration_service),
) -> dict:
    """Return the remotes stored on the tenant's Git integration."""
    remotes = await _call(service.git_get_remotes())
    return {"data": {"type": "git-remotes", "id": "current", "attributes": {"remotes": remotes}}}


@router.get("/autocomplete")
async def autocomplete_integrations(
    query: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    service: IntegrationService = Depends(get_integration_service),
) -> dict:
    """Search integrations by platform or identifier for pickers."""
    matches = await _call(service.find_all_autocomplete(query, limit))
    return {"data": matches}


@router.get("/{integration_id}")
async def get_integration(
    integration_id: UUID,
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    """Get a single integration by UUID."""
    return await _single(service.find_by_id(str(integration_id)))


# ---------------------------------------------------------------------------
# Platform flows
# ---------------------------------------------------------------------------


@router.post("/github/connect")
async def connect_github(
    body: JSONAPIRequest[GithubConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(
        service.connect_github(attrs.code, attrs.install_id, attrs.setup_action)
    )


@router.post("/discord/connect")
async def connect_discord(
    body: JSONAPIRequest[DiscordConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    return await _single(service.connect_discord(body.data.attributes.guild_id))


@router.post("/linkedin/connect")
async def connect_linkedin(
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    """Connect LinkedIn using the token the tenant authorized in Nango."""
    return await _single(service.connect_linkedin())


@router.post("/linkedin/onboard")
async def onboard_linkedin(
    body: JSONAPIRequest[LinkedInOnboardRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    """Pick the LinkedIn organization to track when several are available."""
    return await _single(service.onboard_linkedin(body.data.attributes.organization_id))


@router.post("/reddit/onboard")
async def onboard_reddit(
    body: JSONAPIRequest[RedditOnboardRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    return await _single(service.onboard_reddit(body.data.attributes.subreddits))


@router.post("/devto/connect")
async def connect_devto(
    body: JSONAPIRequest[DevtoConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(service.devto_connect_or_update(attrs.users, attrs.organizations))


@router.post("/git/connect")
async def connect_git(
    body: JSONAPIRequest[GitConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    return await _single(service.git_connect_or_update(body.data.attributes.remotes))


@router.post("/hackernews/connect")
async def connect_hackernews(
    body: JSONAPIRequest[HackerNewsConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(service.hackernews_connect_or_update(attrs.keywords, attrs.urls))


@router.post("/slack/callback")
async def slack_callback(
    body: JSONAPIRequest[SlackCallbackRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(
        service.slack_callback(
            token=attrs.token,
            integration_identifier=attrs.integration_identifier,
            settings=attrs.settings,
        )
    )


@router.post("/twitter/callback")
async def twitter_callback(
    body: JSONAPIRequest[TwitterCallbackRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(
        service.twitter_callback(
            profile_id=attrs.profile_id,
            token=attrs.token,
            refresh_token=attrs.refresh_token,
            hashtags=attrs.hashtags,
        )
    )


@router.post("/stackoverflow/connect")
async def connect_stackoverflow(
    body: JSONAPIRequest[StackOverflowConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(service.stackoverflow_connect_or_update(attrs.tags, attrs.keywords))


@router.post("/discourse/connect")
async def connect_discourse(
    body: JSONAPIRequest[DiscourseConnectRequest],
    service: IntegrationService = Depends(get_integration_service),
) -> JSONAPISingleResponse:
    attrs = body.data.attributes
    return await _single(
        service.discourse_connect_or_update(
            api_key=attrs.api_key,
            api_username=attrs.api_username,
            forum_hostname=attrs.forum_hostname,
            webhook_secret=attrs.webhook_secret,
        )
    )
