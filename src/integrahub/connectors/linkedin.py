"""LinkedIn organization lookup through the Nango proxy."""

from __future__ import annotations

import logging
from typing import Any

from integrahub.connectors.base import CredentialExchangeError
from integrahub.connectors.nango import NangoConnector
from integrahub.schemas.platform_settings import LinkedInOrganization

logger = logging.getLogger(__name__)

LINKEDIN_PROVIDER_KEY = "linkedin"

_ORGANIZATION_ACLS_PATH = "/v2/organizationAcls"
_ORGANIZATION_PROJECTION = (
    "(elements*(*,organization~(id,localizedName,"
    "logoV2(original~:playableStreams))))"
)


class LinkedInConnector:
    """Lists the organizations a LinkedIn member administers.

    Args:
        nango: Nango connector holding the tenant's LinkedIn token.
    """

    platform = LINKEDIN_PROVIDER_KEY

    def __init__(self, nango: NangoConnector) -> None:
        self.nango = nango

    async def get_token(self, connection_id: str) -> str | None:
        """Return the LinkedIn access token Nango holds for the tenant."""
        return await self.nango.get_token(connection_id, LINKEDIN_PROVIDER_KEY)

    async def get_organizations(self, connection_id: str) -> list[LinkedInOrganization]:
        """Return administered organizations, none marked in use.

        Raises:
            CredentialExchangeError: If LinkedIn cannot be queried or replies
                with an unexpected shape.
        """
        body = await self.nango.proxy_get(
            connection_id,
            LINKEDIN_PROVIDER_KEY,
            _ORGANIZATION_ACLS_PATH,
            params={
                "q": "roleAssignee",
                "role": "ADMINISTRATOR",
                "state": "APPROVED",
                "projection": _ORGANIZATION_PROJECTION,
            },
        )
        try:
            organizations = [
                _parse_organization(element["organization~"])
                for element in body.get("elements", [])
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            raise CredentialExchangeError(
                self.platform, f"unexpected organization payload: {exc}"
            ) from exc

        logger.info("LinkedIn member administers %d organizations", len(organizations))
        return organizations


def _parse_organization(raw: dict[str, Any]) -> LinkedInOrganization:
    picture = None
    streams = ((raw.get("logoV2") or {}).get("original~") or {}).get("elements") or []
    if streams:
        identifiers = streams[-1].get("identifiers") or []
        if identifiers:
            picture = identifiers[0].get("identifier")
    return LinkedInOrganization(
        id=raw["id"],
        name=raw.get("localizedName"),
        profile_picture_url=picture,
        in_use=False,
    )
