"""
Shared fixtures for orchestrator, store, connector and API tests.

Provides:
- A file-backed sqlite+aiosqlite engine with SAVEPOINT support
- Recording doubles for the dispatch gateway and tracking sink
- AsyncMock connectors for GitHub and LinkedIn
- An IntegrationService wired to all of the above
"""

from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import create_async_engine

from integrahub.connectors.github import GitHubConnector
from integrahub.connectors.linkedin import LinkedInConnector
from integrahub.database import get_session_factory
from integrahub.models import Base, Integration, IntegrationRun
from integrahub.schemas.platform_settings import LinkedInOrganization
from integrahub.services.dispatch import DispatchGateway
from integrahub.services.integration_service import IntegrationService
from integrahub.services.tracking import TrackingSink

TENANT_ID = "5b0f2c0e-8d4e-4a57-9a3b-2f1d6c7e9a10"
OTHER_TENANT_ID = "c3d9a7b1-1e2f-4c5d-8a9b-0f1e2d3c4b5a"


class RecordingDispatchGateway(DispatchGateway):
    """Dispatch gateway double that records every call."""

    def __init__(self):
        self.sent = []
        self.triggers = []
        self.should_fail = False

    async def send_node_worker_message(self, tenant_id, message):
        if self.should_fail:
            raise RuntimeError("broker unavailable")
        self.sent.append((tenant_id, message))

    async def trigger_integration_run(self, tenant_id, platform, integration_id, is_onboarding):
        if self.should_fail:
            raise RuntimeError("stream unavailable")
        self.triggers.append((tenant_id, platform, integration_id, is_onboarding))

    @property
    def call_count(self):
        return len(self.sent) + len(self.triggers)


class RecordingTrackingSink(TrackingSink):
    """Tracking sink double that records events."""

    def __init__(self):
        self.events = []
        self.should_fail = False

    async def track(self, event, properties, tenant_id):
        if self.should_fail:
            raise RuntimeError("analytics down")
        self.events.append((event, properties, tenant_id))


@pytest.fixture
async def engine(tmp_path):
    """Create a test database engine with working SAVEPOINTs."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'integrahub.db'}")

    # pysqlite's implicit transaction handling breaks SAVEPOINT; take it over.
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def dispatcher():
    return RecordingDispatchGateway()


@pytest.fixture
def tracking():
    return RecordingTrackingSink()


@pytest.fixture
def github():
    """GitHub connector with a successful exchange for every step."""
    connector = Mock(spec=GitHubConnector)
    connector.exchange_code = AsyncMock(return_value="gho_user_token")
    connector.validate_token = AsyncMock(return_value=None)
    connector.get_install_token = AsyncMock(return_value="ghs_install_token")
    connector.list_installed_repositories = AsyncMock(
        return_value=[
            {
                "url": "https://github.com/acme/widgets",
                "name": "widgets",
                "createdAt": "2021-03-04T10:00:00Z",
                "owner": "acme",
                "fork": False,
                "private": False,
                "cloneUrl": "https://github.com/acme/widgets.git",
            }
        ]
    )
    return connector


@pytest.fixture
def linkedin():
    """LinkedIn connector administering a single organization."""
    connector = Mock(spec=LinkedInConnector)
    connector.get_token = AsyncMock(return_value="li-access-token")
    connector.get_organizations = AsyncMock(
        return_value=[LinkedInOrganization(id=1001, name="Acme")]
    )
    return connector


@pytest.fixture
def service(session_factory, dispatcher, tracking, github, linkedin):
    return IntegrationService(
        tenant_id=TENANT_ID,
        session_factory=session_factory,
        dispatcher=dispatcher,
        tracking=tracking,
        github=github,
        linkedin=linkedin,
        discord_token="discord-bot-token",
        credential_timeout=1.0,
    )


async def count_rows(session_factory, model):
    """Count committed rows of ``model``."""
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


async def all_runs(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(IntegrationRun))
        return list(result.scalars().all())


async def all_integrations(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Integration))
        return list(result.scalars().all())
