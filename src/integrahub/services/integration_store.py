"""Tenant-scoped persistence for Integration records.

Every write accepts an optional ``transaction``. When one is given the
store works inside it and never commits; otherwise it opens a short-lived
session and commits on its own.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from integrahub.errors import DuplicateConflictError, NotFoundError, StorageError
from integrahub.models.integration import Integration, PlatformType

logger = logging.getLogger(__name__)

# Columns callers may filter on in find_and_count_all / count.
FILTERABLE_FIELDS = ("platform", "status", "integration_identifier", "import_hash")

# Columns an update may change. tenant_id and platform are fixed at creation.
UPDATABLE_FIELDS = (
    "status",
    "token",
    "refresh_token",
    "integration_identifier",
    "settings",
    "limit_count",
    "limit_last_reset_at",
    "import_hash",
)


class IntegrationStore:
    """Integration CRUD for a single tenant.

    Args:
        session_factory: Async session factory used when no transaction is passed.
        tenant_id: Tenant every query and write is scoped to.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tenant_id: str,
    ) -> None:
        self.session_factory = session_factory
        self.tenant_id = tenant_id

    @asynccontextmanager
    async def _session(
        self, transaction: AsyncSession | None
    ) -> AsyncIterator[AsyncSession]:
        if transaction is not None:
            yield transaction
            return
        async with self.session_factory() as session:
            yield session
            await session.commit()

    def _scoped(self):
        return select(Integration).where(Integration.tenant_id == self.tenant_id)

    def _apply_filter(self, query, filter: dict[str, Any] | None):
        for field, value in (filter or {}).items():
            if field not in FILTERABLE_FIELDS:
                raise ValueError(f"Cannot filter integrations by '{field}'")
            if isinstance(value, PlatformType):
                value = value.value
            query = query.where(getattr(Integration, field) == value)
        return query

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_platform(
        self,
        platform: PlatformType | str,
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Return the tenant's integration for ``platform``.

        Raises:
            NotFoundError: If the tenant has not connected the platform.
        """
        platform = PlatformType(platform)
        async with self._session(transaction) as session:
            result = await session.execute(
                self._scoped().where(Integration.platform == platform.value)
            )
            integration = result.scalars().first()
        if integration is None:
            raise NotFoundError(f"No {platform.value} integration for tenant {self.tenant_id}")
        return integration

    async def find_all_by_platform(
        self,
        platform: PlatformType | str,
        transaction: AsyncSession | None = None,
    ) -> list[Integration]:
        """Return every integration of the tenant for ``platform``."""
        platform = PlatformType(platform)
        async with self._session(transaction) as session:
            result = await session.execute(
                self._scoped()
                .where(Integration.platform == platform.value)
                .order_by(Integration.created_at.asc())
            )
            return list(result.scalars().all())

    async def find_by_id(
        self,
        integration_id: str,
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Return the integration with this id.

        Raises:
            NotFoundError: If no such integration belongs to the tenant.
        """
        async with self._session(transaction) as session:
            result = await session.execute(
                self._scoped().where(Integration.id == integration_id)
            )
            integration = result.scalar_one_or_none()
        if integration is None:
            raise NotFoundError(f"Integration not found: {integration_id}")
        return integration

    async def find_and_count_all(
        self,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Integration], int]:
        """List integrations matching ``filter``, newest first, with the total count."""
        query = self._apply_filter(self._scoped(), filter)
        query = query.order_by(Integration.created_at.desc(), Integration.id.asc())
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)

        async with self._session(None) as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())
        return rows, await self.count(filter)

    async def count(self, filter: dict[str, Any] | None = None) -> int:
        """Count the tenant's integrations matching ``filter``."""
        query = self._apply_filter(
            select(func.count(Integration.id)).where(
                Integration.tenant_id == self.tenant_id
            ),
            filter,
        )
        async with self._session(None) as session:
            result = await session.execute(query)
            return result.scalar_one()

    async def find_all_autocomplete(
        self, search: str | None = None, limit: int | None = None
    ) -> list[Integration]:
        """Integrations whose platform or identifier contains ``search``.

        Matching is case-insensitive; an empty search matches everything.
        """
        query = self._scoped()
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Integration.platform.ilike(pattern),
                    Integration.integration_identifier.ilike(pattern),
                )
            )
        query = query.order_by(Integration.platform.asc())
        if limit:
            query = query.limit(limit)

        async with self._session(None) as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        data: dict[str, Any],
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Insert a new integration for the tenant.

        The insert runs inside a SAVEPOINT so that a uniqueness violation
        leaves an enclosing transaction usable.

        Raises:
            DuplicateConflictError: If the tenant already has this platform.
        """
        platform = PlatformType(data["platform"])
        integration = Integration(
            tenant_id=self.tenant_id,
            platform=platform.value,
            **{
                field: data[field]
                for field in UPDATABLE_FIELDS
                if data.get(field) is not None
            },
        )
        if integration.settings is None:
            integration.settings = {}

        async with self._session(transaction) as session:
            try:
                async with session.begin_nested():
                    session.add(integration)
                    await session.flush()
            except IntegrityError as exc:
                raise DuplicateConflictError(
                    f"Tenant {self.tenant_id} already has a {platform.value} integration"
                ) from exc
            except SQLAlchemyError as exc:
                raise StorageError(f"Could not create {platform.value} integration") from exc
            await session.refresh(integration)

        logger.info(
            "Created %s integration %s for tenant %s",
            platform.value,
            integration.id,
            self.tenant_id,
        )
        return integration

    async def update(
        self,
        integration_id: str,
        data: dict[str, Any],
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Merge the provided (non-None) fields into an existing integration.

        ``settings`` is replaced as a whole document.

        Raises:
            NotFoundError: If the integration does not belong to the tenant.
        """
        async with self._session(transaction) as session:
            result = await session.execute(
                self._scoped().where(Integration.id == integration_id)
            )
            integration = result.scalar_one_or_none()
            if integration is None:
                raise NotFoundError(f"Integration not found: {integration_id}")

            for field in UPDATABLE_FIELDS:
                value = data.get(field)
                if value is not None:
                    setattr(integration, field, value)

            try:
                await session.flush()
            except SQLAlchemyError as exc:
                raise StorageError(f"Could not update integration {integration_id}") from exc
            await session.refresh(integration)
        return integration

    async def destroy(
        self,
        integration_id: str,
        transaction: AsyncSession | None = None,
    ) -> None:
        """Hard-delete an integration (and its runs).

        Raises:
            NotFoundError: If the integration does not exist, including when
                it was already deleted.
        """
        async with self._session(transaction) as session:
            result = await session.execute(
                self._scoped().where(Integration.id == integration_id)
            )
            integration = result.scalar_one_or_none()
            if integration is None:
                raise NotFoundError(f"Integration not found: {integration_id}")
            await session.delete(integration)
            await session.flush()
