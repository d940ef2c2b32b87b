"""Celery application used to hand integration runs to the node workers.

This process only produces messages. The run-processing tasks live in the
worker deployment and are addressed by name through ``send_task``, so no
task bodies are registered here.
"""

from celery import Celery

from integrahub.config import get_settings

settings = get_settings()

celery_app = Celery(
    "integrahub",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_ignore_result=True,
    task_routes={
        settings.node_worker_task: {"queue": settings.node_worker_queue},
    },
)
