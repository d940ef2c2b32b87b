"""FastAPI application factory with async lifespan for DB, Redis, and worker dispatch."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from integrahub.api.v1.router import v1_router
from integrahub.config import configure_logging, get_settings
from integrahub.database import close_db, get_session_factory, init_db
from integrahub.redis import close_redis, init_redis
from integrahub.services.dispatch import NativeDispatchGateway
from integrahub.services.tracking import NullTrackingSink, RedisTrackingSink


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    On startup: initialize the database engine, session factory, Redis
    client, the dispatch gateway (Celery + run-worker stream), and the
    analytics sink.
    On shutdown: close Redis, then the database.
    """
    settings = get_settings()

    # Startup -- Database & Redis
    engine = await init_db(settings.database_url)
    app.state.db_engine = engine
    app.state.session_factory = get_session_factory(engine)
    app.state.redis = await init_redis(settings.redis_url)

    # Startup -- worker dispatch and analytics share the app Redis connection
    app.state.dispatcher = NativeDispatchGateway(
        redis=app.state.redis,
        run_worker_stream=settings.run_worker_stream,
        node_worker_task=settings.node_worker_task,
        node_worker_queue=settings.node_worker_queue,
    )
    app.state.tracking = (
        RedisTrackingSink(app.state.redis, settings.analytics_channel)
        if settings.tracking_enabled
        else NullTrackingSink()
    )

    yield

    await close_redis(app.state.redis)
    await close_db(engine)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    This is the app factory. Uvicorn calls it with the --factory flag:
        uvicorn integrahub.app:create_app --factory
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Integrahub Integration Orchestrator",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
    )

    app.include_router(v1_router, prefix=settings.api_prefix)

    return app
