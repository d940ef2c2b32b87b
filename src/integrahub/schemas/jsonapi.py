"""JSON:API envelope models using Pydantic v2.

Every mutation endpoint accepts a JSONAPIRequest wrapper; every endpoint
returns one of the response envelope types. Classified integration errors
are rendered as JSON:API error objects.

Reference: https://jsonapi.org/format/
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from integrahub.errors import DispatchFailedError, IntegrationError

T = TypeVar("T")


class JSONAPIRequestData(BaseModel, Generic[T]):
    """The ``data`` object inside a JSON:API request body."""

    type: str
    attributes: T


class JSONAPIRequest(BaseModel, Generic[T]):
    """JSON:API request envelope wrapping ``{ data: { type, attributes } }``."""

    data: JSONAPIRequestData[T]


class JSONAPIResource(BaseModel):
    """A single JSON:API resource object with type, id, and attributes."""

    type: str
    id: str
    attributes: dict[str, Any]
    relationships: dict[str, Any] | None = None


class JSONAPISingleResponse(BaseModel):
    """JSON:API response envelope containing a single resource."""

    data: JSONAPIResource


class JSONAPIListResponse(BaseModel):
    """JSON:API response envelope containing a list of resources."""

    data: list[JSONAPIResource]
    meta: dict[str, Any] | None = None
    links: dict[str, Any] | None = None


class JSONAPIError(BaseModel):
    """A single JSON:API error object."""

    status: str
    title: str
    detail: str | None = None
    meta: dict[str, Any] | None = None


def error_from_exception(exc: IntegrationError) -> JSONAPIError:
    """Render a classified integration error as a JSON:API error object.

    A dispatch failure keeps the saved integration's id and status in
    ``meta`` since the write itself succeeded.
    """
    meta = None
    if isinstance(exc, DispatchFailedError):
        meta = {
            "integration_id": str(exc.integration.id),
            "integration_status": exc.integration.status,
        }
    return JSONAPIError(
        status=str(exc.status_code),
        title=exc.title,
        detail=str(exc),
        meta=meta,
    )
