"""Worker notification with a gateway abstraction.

DispatchGateway covers the two ways a saved integration reaches a worker:
a point-to-point work item carrying a run id (Celery queue consumed by the
node workers) and a trigger to the run-worker emitter (Redis stream), which
creates its own run. Calls are made strictly after the integration write has
committed; neither is transactional.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import redis.asyncio

from integrahub.redis import append_to_stream
from integrahub.schemas.messages import IntegrationRunTrigger, RunProcessMessage

logger = logging.getLogger(__name__)


class DispatchGateway(ABC):
    """Base interface for notifying integration workers."""

    @abstractmethod
    async def send_node_worker_message(
        self, tenant_id: str, message: RunProcessMessage
    ) -> None:
        """Enqueue a work item for an already-created run.

        Args:
            tenant_id: Tenant that owns the run.
            message: Message carrying the run id.
        """
        ...

    @abstractmethod
    async def trigger_integration_run(
        self,
        tenant_id: str,
        platform: str,
        integration_id: str,
        is_onboarding: bool,
    ) -> None:
        """Ask the run-worker to start a run for an integration.

        Args:
            tenant_id: Tenant that owns the integration.
            platform: Platform of the integration.
            integration_id: UUID of the integration.
            is_onboarding: True for first-time setup, False for a refresh.
        """
        ...


class NativeDispatchGateway(DispatchGateway):
    """Celery for run work items, a Redis stream for run-worker triggers.

    Args:
        redis: The app's async Redis connection.
        run_worker_stream: Stream the run-worker emitter consumes.
        node_worker_task: Task name registered by the node workers.
        node_worker_queue: Celery queue the node workers listen on.
    """

    def __init__(
        self,
        redis: redis.asyncio.Redis,
        run_worker_stream: str,
        node_worker_task: str,
        node_worker_queue: str,
    ) -> None:
        self._redis = redis
        self._run_worker_stream = run_worker_stream
        self._node_worker_task = node_worker_task
        self._node_worker_queue = node_worker_queue

    async def send_node_worker_message(
        self, tenant_id: str, message: RunProcessMessage
    ) -> None:
        """Publish the run id to the node worker queue via Celery.

        Lazy import keeps Celery configuration out of module import time.
        Broker publishing is blocking, so it runs in a worker thread.
        """
        from integrahub.tasks.celery_app import celery_app

        await asyncio.to_thread(
            celery_app.send_task,
            self._node_worker_task,
            kwargs={"tenant_id": tenant_id, "message": message.model_dump()},
            queue=self._node_worker_queue,
        )
        logger.info("Sent run %s to node workers for tenant %s", message.run_id, tenant_id)

    async def trigger_integration_run(
        self,
        tenant_id: str,
        platform: str,
        integration_id: str,
        is_onboarding: bool,
    ) -> None:
        """Append a run trigger to the run-worker stream."""
        trigger = IntegrationRunTrigger(
            tenant_id=tenant_id,
            platform=platform,
            integration_id=integration_id,
            onboarding=is_onboarding,
        )
        entry_id = await append_to_stream(
            self._redis, self._run_worker_stream, trigger.model_dump()
        )
        logger.info(
            "Triggered %s run for integration %s (stream entry %s)",
            platform,
            integration_id,
            entry_id,
        )
