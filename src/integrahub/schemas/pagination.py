"""Offset pagination models for integration list responses."""

from __future__ import annotations

from pydantic import BaseModel


class PaginationMeta(BaseModel):
    """Pagination metadata for JSON:API list responses."""

    count: int
    limit: int
    offset: int

    @property
    def has_next(self) -> bool:
        return self.offset + self.limit < self.count


class PaginationLinks(BaseModel):
    """Pagination links for JSON:API list responses."""

    first: str
    next: str | None = None
    prev: str | None = None


def build_links(base_url: str, meta: PaginationMeta, query: str = "") -> PaginationLinks:
    """Build first/next/prev links for an offset-paginated list.

    Args:
        base_url: URL of the list endpoint without a query string.
        meta: Pagination metadata of the current page.
        query: Extra query string (already encoded) appended to every link.
    """
    suffix = f"&{query}" if query else ""
    links = PaginationLinks(first=f"{base_url}?limit={meta.limit}&offset=0{suffix}")
    if meta.has_next:
        links.next = (
            f"{base_url}?limit={meta.limit}&offset={meta.offset + meta.limit}{suffix}"
        )
    if meta.offset > 0:
        prev_offset = max(meta.offset - meta.limit, 0)
        links.prev = f"{base_url}?limit={meta.limit}&offset={prev_offset}{suffix}"
    return links
