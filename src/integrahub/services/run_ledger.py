"""Durable record of integration runs.

Runs are created in the same transaction as the integration write they
accompany. State transitions past ``pending`` belong to the run worker.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from integrahub.errors import NotFoundError
from integrahub.models.integration_run import IntegrationRun, IntegrationRunState

logger = logging.getLogger(__name__)


class IntegrationRunLedger:
    """Create and inspect integration runs.

    Args:
        session_factory: Async session factory for reads outside a transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create(
        self,
        integration_id: str,
        tenant_id: str,
        onboarding: bool,
        transaction: AsyncSession,
        state: IntegrationRunState = IntegrationRunState.PENDING,
    ) -> IntegrationRun:
        """Add a run inside ``transaction``; it becomes durable on commit."""
        run = IntegrationRun(
            integration_id=integration_id,
            tenant_id=tenant_id,
            onboarding=onboarding,
            state=state.value,
        )
        transaction.add(run)
        await transaction.flush()
        await transaction.refresh(run)
        logger.info(
            "Created %s run %s for integration %s",
            "onboarding" if onboarding else "refresh",
            run.id,
            integration_id,
        )
        return run

    async def find_by_id(self, run_id: str) -> IntegrationRun:
        """Get a run by UUID.

        Raises:
            NotFoundError: If the run does not exist.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(IntegrationRun).where(IntegrationRun.id == run_id)
            )
            run = result.scalar_one_or_none()
        if run is None:
            raise NotFoundError(f"Run not found: {run_id}")
        return run

    async def find_all_by_integration(self, integration_id: str) -> list[IntegrationRun]:
        """List runs of an integration, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(IntegrationRun)
                .where(IntegrationRun.integration_id == integration_id)
                .order_by(IntegrationRun.created_at.asc())
            )
            return list(result.scalars().all())
