"""Integration connection and onboarding orchestrator.

Each platform flow follows the same shape: exchange or validate external
credentials, write the integration (and, for queue-driven platforms, a
pending run) in one transaction, then notify a worker once the transaction
has committed. All writes to a tenant's platform row go through
:meth:`IntegrationService.create_or_update`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from functools import partial
from typing import Any, TypeVar

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from integrahub.connectors.base import CredentialExchangeError
from integrahub.connectors.github import GitHubConnector
from integrahub.connectors.linkedin import LinkedInConnector
from integrahub.database import (
    after_commit,
    commit_transaction,
    create_transaction,
    rollback_transaction,
)
from integrahub.errors import (
    DispatchFailedError,
    DuplicateConflictError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    UpstreamRejectedError,
    WrongStateError,
)
from integrahub.models.integration import Integration, IntegrationStatus, PlatformType
from integrahub.models.integration_run import IntegrationRun
from integrahub.schemas.messages import RunProcessMessage
from integrahub.schemas.platform_settings import (
    DevtoSettings,
    DiscordSettings,
    DiscourseSettings,
    GithubSettings,
    GitSettings,
    HackerNewsSettings,
    LinkedInSettings,
    RedditSettings,
    SettingsDocument,
    SlackSettings,
    StackOverflowSettings,
    TwitterSettings,
    dump_settings,
    parse_settings,
)
from integrahub.services.dispatch import DispatchGateway
from integrahub.services.integration_store import IntegrationStore
from integrahub.services.run_ledger import IntegrationRunLedger
from integrahub.services.tracking import TrackingSink

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How a saved integration reaches its worker.
DISPATCH_NONE = "none"
DISPATCH_RUN = "run"  # pending run row + node worker queue message
DISPATCH_TRIGGER = "trigger"  # run-worker emitter creates the run itself


class IntegrationService:
    """Orchestrates integration onboarding for one tenant.

    Args:
        tenant_id: Tenant all integrations are scoped to.
        session_factory: Async session factory for transactions and reads.
        dispatcher: Gateway used to notify workers after commit.
        tracking: Best-effort analytics sink.
        github: GitHub credential exchange connector.
        linkedin: LinkedIn (via Nango) connector.
        discord_token: Bot token stored on Discord integrations.
        credential_timeout: Upper bound in seconds for each credential call.
    """

    def __init__(
        self,
        tenant_id: str,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: DispatchGateway,
        tracking: TrackingSink,
        github: GitHubConnector,
        linkedin: LinkedInConnector,
        discord_token: str = "",
        credential_timeout: float = 15.0,
    ) -> None:
        self.tenant_id = tenant_id
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.tracking = tracking
        self.github = github
        self.linkedin = linkedin
        self.discord_token = discord_token
        self.credential_timeout = credential_timeout
        self.store = IntegrationStore(session_factory, tenant_id)
        self.runs = IntegrationRunLedger(session_factory)

    # ------------------------------------------------------------------
    # Create-or-update primitive
    # ------------------------------------------------------------------

    async def create_or_update(
        self,
        data: dict[str, Any],
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Update the tenant's integration for ``data["platform"]`` or create it.

        A concurrent onboarding call may insert the row between our lookup
        and our insert; the unique constraint rejects ours and we retry once
        as an update of the winner's row.

        Args:
            data: Integration fields; ``platform`` is required.
            transaction: Transaction to write in. Without one the store
                commits each statement on its own.

        Returns:
            The created or updated Integration.

        Raises:
            DuplicateConflictError: If the insert lost a race and the
                winning row is still not visible.
        """
        platform = PlatformType(data["platform"])
        try:
            existing = await self.store.find_by_platform(platform, transaction)
        except NotFoundError:
            existing = None

        if existing is not None:
            record = await self.store.update(existing.id, data, transaction)
            event = "Integration Updated"
        else:
            try:
                record = await self.store.create(data, transaction)
                event = "Integration Created"
            except DuplicateConflictError as exc:
                logger.warning(
                    "Concurrent %s create for tenant %s, retrying as update",
                    platform.value,
                    self.tenant_id,
                )
                try:
                    existing = await self.store.find_by_platform(platform, transaction)
                except NotFoundError:
                    raise exc from None
                record = await self.store.update(existing.id, data, transaction)
                event = "Integration Updated"

        properties = {
            "id": str(record.id),
            "platform": record.platform,
            "status": record.status,
        }
        if transaction is None:
            await self._track(event, properties)
        else:
            after_commit(transaction, partial(self._track, event, properties))
        return record

    async def _track(self, event: str, properties: dict[str, Any]) -> None:
        """Send an analytics event; failures are logged and discarded."""
        try:
            await self.tracking.track(event, properties, self.tenant_id)
        except Exception:
            logger.warning(
                "Failed to track '%s' for integration %s",
                event,
                properties.get("id"),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Transaction / dispatch coordination
    # ------------------------------------------------------------------

    async def _save(
        self,
        data: dict[str, Any],
        transaction: AsyncSession | None,
        dispatch: str = DISPATCH_NONE,
        is_onboarding: bool | Callable[[Integration], bool] = True,
    ) -> Integration:
        """Write an integration atomically, then hand it to a worker.

        When ``transaction`` is None a transaction is opened and committed
        here. A caller-supplied transaction is written in but not committed;
        the dispatch then runs when the caller commits it with
        :func:`integrahub.database.commit_transaction`.
        """
        owned = transaction is None
        tx = await create_transaction(self.session_factory) if owned else transaction

        try:
            integration = await self.create_or_update(data, tx)

            if dispatch == DISPATCH_RUN:
                run = await self.runs.create(
                    integration_id=integration.id,
                    tenant_id=integration.tenant_id,
                    onboarding=True,
                    transaction=tx,
                )
                after_commit(tx, partial(self._send_run, integration, run))
            elif dispatch == DISPATCH_TRIGGER:
                onboarding = (
                    is_onboarding(integration)
                    if callable(is_onboarding)
                    else is_onboarding
                )
                after_commit(
                    tx, partial(self._trigger_run, integration, onboarding)
                )
        except Exception as exc:
            if owned:
                await rollback_transaction(tx)
            if isinstance(exc, SQLAlchemyError):
                raise StorageError(
                    f"Could not save {data['platform']} integration"
                ) from exc
            raise

        if owned:
            await self._commit(tx)
        return integration

    async def _commit(self, transaction: AsyncSession) -> None:
        try:
            await commit_transaction(transaction)
        except SQLAlchemyError as exc:
            raise StorageError("Could not commit integration changes") from exc

    async def _send_run(self, integration: Integration, run: IntegrationRun) -> None:
        logger.info(
            "Sending %s run %s to node workers for tenant %s",
            integration.platform,
            run.id,
            integration.tenant_id,
        )
        try:
            await self.dispatcher.send_node_worker_message(
                integration.tenant_id, RunProcessMessage(run_id=str(run.id))
            )
        except Exception as exc:
            logger.error(
                "Integration %s saved but run %s was not dispatched: %s",
                integration.id,
                run.id,
                exc,
            )
            raise DispatchFailedError(integration) from exc

    async def _trigger_run(self, integration: Integration, is_onboarding: bool) -> None:
        logger.info(
            "Sending %s message to int-run-worker for tenant %s",
            integration.platform,
            integration.tenant_id,
        )
        try:
            await self.dispatcher.trigger_integration_run(
                integration.tenant_id,
                integration.platform,
                str(integration.id),
                is_onboarding,
            )
        except Exception as exc:
            logger.error(
                "Integration %s saved but run-worker was not triggered: %s",
                integration.id,
                exc,
            )
            raise DispatchFailedError(integration) from exc

    async def _exchange(self, call: Awaitable[T], description: str) -> T:
        """Await a credential call under the exchange timeout.

        Raises:
            UpstreamRejectedError: On connector failure or timeout.
        """
        try:
            return await asyncio.wait_for(call, timeout=self.credential_timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "%s timed out after %.1fs", description, self.credential_timeout
            )
            raise UpstreamRejectedError(f"{description} timed out") from exc
        except CredentialExchangeError as exc:
            logger.error("%s failed: %s", description, exc)
            raise UpstreamRejectedError(f"{description} failed: {exc}") from exc

    @staticmethod
    def _stored_settings(integration: Integration) -> SettingsDocument:
        """Parse the settings document stored on ``integration``.

        Raises:
            StorageError: If the stored document does not fit its platform.
        """
        try:
            return parse_settings(integration.platform, integration.settings)
        except ValidationError as exc:
            logger.error(
                "Stored %s settings of integration %s are invalid: %s",
                integration.platform,
                integration.id,
                exc,
            )
            raise StorageError(
                f"Stored {integration.platform} settings are invalid"
            ) from exc

    @staticmethod
    def _payload(
        platform: PlatformType,
        status: IntegrationStatus,
        settings: SettingsDocument | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {"platform": platform.value, "status": status.value, **fields}
        if settings is not None:
            data["settings"] = dump_settings(settings)
        return data

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_by_platform(self, platform: PlatformType | str) -> Integration:
        return await self.store.find_by_platform(platform)

    async def find_all_by_platform(self, platform: PlatformType | str) -> list[Integration]:
        return await self.store.find_all_by_platform(platform)

    async def find_by_id(self, integration_id: str) -> Integration:
        return await self.store.find_by_id(integration_id)

    async def find_and_count_all(
        self,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Integration], int]:
        try:
            return await self.store.find_and_count_all(filter, limit, offset)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc

    async def query(
        self,
        filter: dict[str, Any] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Integration], int]:
        """Filtered, paginated listing used by the API."""
        return await self.find_and_count_all(filter, limit=limit, offset=offset)

    async def find_all_autocomplete(
        self, search: str | None = None, limit: int | None = None
    ) -> list[dict[str, str]]:
        """Return ``{id, label}`` pairs for integrations matching ``search``."""
        integrations = await self.store.find_all_autocomplete(search, limit)
        return [
            {
                "id": str(integration.id),
                "label": (
                    f"{integration.platform} ({integration.integration_identifier})"
                    if integration.integration_identifier
                    else integration.platform
                ),
            }
            for integration in integrations
        ]

    async def get_all_active_integrations(self) -> tuple[list[Integration], int]:
        """Find all integrations of the tenant in ``done`` status."""
        return await self.find_and_count_all({"status": IntegrationStatus.DONE.value})

    # ------------------------------------------------------------------
    # Bulk destroy and import
    # ------------------------------------------------------------------

    async def destroy_all(self, ids: list[str]) -> None:
        """Delete the given integrations in one transaction.

        Any failure, including an id that does not exist, rolls back the
        whole batch. Callers must de-duplicate ``ids``.
        """
        transaction = await create_transaction(self.session_factory)
        try:
            for integration_id in ids:
                await self.store.destroy(integration_id, transaction)
        except Exception as exc:
            await rollback_transaction(transaction)
            if isinstance(exc, SQLAlchemyError):
                raise StorageError("Could not delete integrations") from exc
            raise
        await self._commit(transaction)
        logger.info("Deleted %d integrations for tenant %s", len(ids), self.tenant_id)

    async def import_integration(
        self, data: dict[str, Any], import_hash: str | None
    ) -> Integration:
        """Create an integration from imported data, once per ``import_hash``.

        Raises:
            InvalidInputError: If the hash is missing or was already imported,
                or the platform is unknown.
        """
        if not import_hash:
            raise InvalidInputError("An import hash is required")
        try:
            platform = PlatformType(data.get("platform"))
        except ValueError as exc:
            raise InvalidInputError(f"Unknown platform '{data.get('platform')}'") from exc
        if await self.store.count({"import_hash": import_hash}) > 0:
            raise InvalidInputError(f"Import hash '{import_hash}' was already imported")

        transaction = await create_transaction(self.session_factory)
        try:
            integration = await self.store.create(
                {**data, "platform": platform.value, "import_hash": import_hash},
                transaction,
            )
        except Exception as exc:
            await rollback_transaction(transaction)
            if isinstance(exc, SQLAlchemyError):
                raise StorageError("Could not import integration") from exc
            raise
        await self._commit(transaction)
        return integration

    # ------------------------------------------------------------------
    # GitHub
    # ------------------------------------------------------------------

    async def connect_github(
        self,
        code: str | None,
        install_id: str,
        setup_action: str = "install",
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Connect the GitHub App installation and start onboarding.

        A ``request`` setup action means an organization owner still has to
        approve the installation: the integration is parked in
        ``waiting-approval`` without touching GitHub.

        Args:
            code: Temporary OAuth code returned by GitHub after authorize.
            install_id: Installation id of the GitHub App.
            setup_action: ``install`` or ``request``.
            transaction: Optional caller transaction.
        """
        if setup_action == "request":
            logger.info("GitHub installation %s awaits approval", install_id)
            return await self._save(
                self._payload(PlatformType.GITHUB, IntegrationStatus.WAITING_APPROVAL),
                transaction,
            )

        if not code:
            raise InvalidInputError("A GitHub OAuth code is required to install")

        token = await self._exchange(
            self.github.exchange_code(code), "GitHub code exchange"
        )
        await self._exchange(self.github.validate_token(token), "GitHub token validation")
        install_token = await self._exchange(
            self.github.get_install_token(install_id), "GitHub installation token"
        )
        repos = await self._exchange(
            self.github.list_installed_repositories(install_token),
            "GitHub repository listing",
        )

        return await self._save(
            self._payload(
                PlatformType.GITHUB,
                IntegrationStatus.IN_PROGRESS,
                GithubSettings(repos=repos),
                token=token,
                integration_identifier=str(install_id),
            ),
            transaction,
            dispatch=DISPATCH_RUN,
        )

    # ------------------------------------------------------------------
    # Discord
    # ------------------------------------------------------------------

    async def connect_discord(
        self, guild_id: str, transaction: AsyncSession | None = None
    ) -> Integration:
        """Connect a Discord guild using the configured bot token."""
        if not self.discord_token:
            raise InvalidInputError("No Discord bot token is configured")

        return await self._save(
            self._payload(
                PlatformType.DISCORD,
                IntegrationStatus.IN_PROGRESS,
                DiscordSettings(),
                integration_identifier=guild_id,
                token=self.discord_token,
            ),
            transaction,
            dispatch=DISPATCH_RUN,
        )

    # ------------------------------------------------------------------
    # LinkedIn
    # ------------------------------------------------------------------

    async def connect_linkedin(self, transaction: AsyncSession | None = None) -> Integration:
        """Connect LinkedIn with the token the tenant authorized in Nango.

        With a single administered organization it is selected and
        onboarding starts. With several, the integration waits in
        ``pending-action`` until :meth:`onboard_linkedin` picks one.
        """
        connection_id = f"{self.tenant_id}-{PlatformType.LINKEDIN.value}"

        token = await self._exchange(
            self.linkedin.get_token(connection_id), "LinkedIn token lookup"
        )
        if not token:
            raise InvalidInputError("No LinkedIn token found for this tenant")

        organizations = await self._exchange(
            self.linkedin.get_organizations(connection_id),
            "LinkedIn organization lookup",
        )
        if not organizations:
            logger.error("No organization found for LinkedIn integration")
            raise InvalidInputError("No LinkedIn organization is available")

        status = IntegrationStatus.PENDING_ACTION
        if len(organizations) == 1:
            status = IntegrationStatus.IN_PROGRESS
            organizations[0].in_use = True

        return await self._save(
            self._payload(
                PlatformType.LINKEDIN,
                status,
                LinkedInSettings(organizations=organizations),
            ),
            transaction,
            dispatch=(
                DISPATCH_TRIGGER
                if status is IntegrationStatus.IN_PROGRESS
                else DISPATCH_NONE
            ),
        )

    async def onboard_linkedin(
        self, organization_id: str, transaction: AsyncSession | None = None
    ) -> Integration:
        """Confirm the organization to use and start onboarding.

        Raises:
            NotFoundError: If LinkedIn is not connected or the organization
                is not among the stored ones or already
                in use.
            WrongStateError: If the integration is not in ``pending-action``.
        """
        try:
            integration = await self.store.find_by_platform(PlatformType.LINKEDIN, transaction)
        except NotFoundError:
            logger.error("LinkedIn onboard requested before connect")
            raise

        settings = self._stored_settings(integration)
        organization = settings.find_organization(organization_id)
        if organization is None:
            logger.error("No organization with id %s found", organization_id)
            raise NotFoundError(f"No LinkedIn organization with id {organization_id}")

        if integration.status != IntegrationStatus.PENDING_ACTION.value:
            logger.error(
                "LinkedIn integration is in '%s', not pending-action", integration.status
            )
            raise WrongStateError(
                expected=IntegrationStatus.PENDING_ACTION.value,
                actual=integration.status,
            )

        if organization.in_use:
            logger.error("LinkedIn organization %s is already in use", organization_id)
            raise NotFoundError(
                f"LinkedIn organization {organization_id} is already in use"
            )

        organization.in_use = True
        return await self._save(
            self._payload(PlatformType.LINKEDIN, IntegrationStatus.IN_PROGRESS, settings),
            transaction,
            dispatch=DISPATCH_TRIGGER,
        )

    # ------------------------------------------------------------------
    # Trigger-driven platforms
    # ------------------------------------------------------------------

    async def onboard_reddit(
        self, subreddits: list[str], transaction: AsyncSession | None = None
    ) -> Integration:
        """Create the Reddit integration for the given subreddits."""
        if not subreddits:
            raise InvalidInputError("At least one subreddit is required")
        logger.info("Creating reddit integration for tenant %s", self.tenant_id)
        return await self._save(
            self._payload(
                PlatformType.REDDIT,
                IntegrationStatus.IN_PROGRESS,
                RedditSettings(subreddits=subreddits),
            ),
            transaction,
            dispatch=DISPATCH_TRIGGER,
        )

    async def devto_connect_or_update(
        self,
        users: list[str],
        organizations: list[str],
        transaction: AsyncSession | None = None,
    ) -> Integration:
        logger.info("Creating devto integration for tenant %s", self.tenant_id)
        return await self._save(
            self._payload(
                PlatformType.DEVTO,
                IntegrationStatus.IN_PROGRESS,
                DevtoSettings(users=users, organizations=organizations),
            ),
            transaction,
            dispatch=DISPATCH_TRIGGER,
        )

    async def hackernews_connect_or_update(
        self,
        keywords: list[str],
        urls: list[str],
        transaction: AsyncSession | None = None,
    ) -> Integration:
        return await self._save(
            self._payload(
                PlatformType.HACKERNEWS,
                IntegrationStatus.IN_PROGRESS,
                HackerNewsSettings(keywords=keywords, urls=urls),
            ),
            transaction,
            dispatch=DISPATCH_TRIGGER,
        )

    async def stackoverflow_connect_or_update(
        self,
        tags: list[str],
        keywords: list[str],
        transaction: AsyncSession | None = None,
    ) -> Integration:
        logger.info("Creating Stack Overflow integration for tenant %s", self.tenant_id)
        return await self._save(
            self._payload(
                PlatformType.STACKOVERFLOW,
                IntegrationStatus.IN_PROGRESS,
                StackOverflowSettings(tags=tags, keywords=keywords),
            ),
            transaction,
            dispatch=DISPATCH_TRIGGER,
        )

    async def slack_callback(
        self,
        token: str | None = None,
        integration_identifier: str | None = None,
        settings: dict[str, Any] | None = None,
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Save the Slack OAuth result and trigger a run.

        The run counts as onboarding until the worker has stored the
        workspace channels in the settings.
        """
        try:
            document = SlackSettings.model_validate(settings or {})
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid Slack settings: {exc}") from exc
        document.update_member_attributes = True

        logger.info("Creating Slack integration for tenant %s", self.tenant_id)
        return await self._save(
            self._payload(
                PlatformType.SLACK,
                IntegrationStatus.IN_PROGRESS,
                document,
                token=token,
                integration_identifier=integration_identifier,
            ),
            transaction,
            dispatch=DISPATCH_TRIGGER,
            is_onboarding=lambda integration: "channels" not in (integration.settings or {}),
        )

    # ------------------------------------------------------------------
    # Queue-driven platforms
    # ------------------------------------------------------------------

    async def twitter_callback(
        self,
        profile_id: str,
        token: str,
        refresh_token: str | None = None,
        hashtags: list[str] | str | None = None,
        transaction: AsyncSession | None = None,
    ) -> Integration:
        """Save the Twitter OAuth result and reset the rate-limit window."""
        if isinstance(hashtags, str):
            hashtags = [tag.strip() for tag in hashtags.split(",") if tag.strip()]

        return await self._save(
            self._payload(
                PlatformType.TWITTER,
                IntegrationStatus.IN_PROGRESS,
                TwitterSettings(hashtags=hashtags or []),
                integration_identifier=profile_id,
                token=token,
                refresh_token=refresh_token,
                limit_count=0,
                limit_last_reset_at=datetime.now(timezone.utc),
            ),
            transaction,
            dispatch=DISPATCH_RUN,
        )

    async def discourse_connect_or_update(
        self,
        api_key: str,
        api_username: str,
        forum_hostname: str,
        webhook_secret: str | None = None,
        transaction: AsyncSession | None = None,
    ) -> Integration:
        return await self._save(
            self._payload(
                PlatformType.DISCOURSE,
                IntegrationStatus.IN_PROGRESS,
                DiscourseSettings(
                    api_key=api_key,
                    api_username=api_username,
                    forum_hostname=forum_hostname,
                    webhook_secret=webhook_secret,
                ),
            ),
            transaction,
            dispatch=DISPATCH_RUN,
        )

    # ------------------------------------------------------------------
    # Git
    # ------------------------------------------------------------------

    async def git_connect_or_update(
        self, remotes: list[str], transaction: AsyncSession | None = None
    ) -> Integration:
        """Store Git remotes. Completes synchronously; no worker is involved."""
        return await self._save(
            self._payload(
                PlatformType.GIT,
                IntegrationStatus.DONE,
                GitSettings(remotes=remotes),
            ),
            transaction,
        )

    async def git_get_remotes(self) -> list[str]:
        """Return the remotes stored on the tenant's Git integration(s).

        Raises:
            InvalidInputError: If Git is not connected.
        """
        integrations = await self.store.find_all_by_platform(PlatformType.GIT)
        if not integrations:
            raise InvalidInputError("No Git integration is configured")

        remotes: list[str] = []
        for integration in integrations:
            remotes.extend(self._stored_settings(integration).remotes)
        return remotes

