"""Pydantic schemas for API payloads, settings documents, and worker messages."""

from integrahub.schemas.jsonapi import (
    JSONAPIError,
    JSONAPIListResponse,
    JSONAPIResource,
    JSONAPISingleResponse,
)
from integrahub.schemas.messages import IntegrationRunTrigger, RunProcessMessage
from integrahub.schemas.platform_settings import (
    SETTINGS_DOCUMENTS,
    dump_settings,
    parse_settings,
)

__all__ = [
    "JSONAPIError",
    "JSONAPIListResponse",
    "JSONAPIResource",
    "JSONAPISingleResponse",
    "IntegrationRunTrigger",
    "RunProcessMessage",
    "SETTINGS_DOCUMENTS",
    "dump_settings",
    "parse_settings",
]
