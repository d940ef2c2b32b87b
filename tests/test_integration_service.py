"""
Tests for IntegrationService.

Covers:
- create_or_update idempotence and the concurrent-insert retry
- Commit-then-dispatch ordering for run and trigger platforms
- Rollback on credential, storage and commit failures
- Dispatch and tracking failures after commit
- Caller-supplied transactions
- Import, listing and Git remotes
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import TENANT_ID, all_integrations, all_runs, count_rows
from integrahub.connectors.base import CredentialExchangeError
from integrahub.database import commit_transaction, create_transaction, rollback_transaction
from integrahub.errors import (
    DispatchFailedError,
    InvalidInputError,
    NotFoundError,
    StorageError,
    UpstreamRejectedError,
)
from integrahub.models import Integration, IntegrationRun
from integrahub.schemas.messages import RunProcessMessage
from integrahub.services.integration_service import IntegrationService


class TestCreateOrUpdate:
    """create_or_update keeps at most one row per tenant and platform."""

    @pytest.mark.asyncio
    async def test_connecting_twice_updates_the_same_row(self, service, session_factory, tracking):
        first = await service.git_connect_or_update(["https://github.com/acme/a.git"])
        second = await service.git_connect_or_update(["https://github.com/acme/b.git"])

        assert first.id == second.id
        assert await count_rows(session_factory, Integration) == 1
        assert second.settings == {"remotes": ["https://github.com/acme/b.git"]}
        assert [event for event, _, _ in tracking.events] == [
            "Integration Created",
            "Integration Updated",
        ]

    @pytest.mark.asyncio
    async def test_lost_insert_race_is_retried_as_update(self, service, session_factory, tracking, monkeypatch):
        await service.store.create({"platform": "git", "status": "done", "settings": {"remotes": ["a"]}})

        real_find = service.store.find_by_platform
        calls = []

        async def stale_find(platform, transaction=None):
            calls.append(platform)
            if len(calls) == 1:
                raise NotFoundError("stale read")
            return await real_find(platform, transaction)

        monkeypatch.setattr(service.store, "find_by_platform", stale_find)

        integration = await service.git_connect_or_update(["b"])

        assert integration.settings == {"remotes": ["b"]}
        assert await count_rows(session_factory, Integration) == 1
        assert tracking.events[-1][0] == "Integration Updated"

    @pytest.mark.asyncio
    async def test_tracking_event_carries_tenant_and_platform(self, service, tracking):
        integration = await service.git_connect_or_update([])

        event, properties, tenant_id = tracking.events[0]
        assert event == "Integration Created"
        assert properties == {"id": integration.id, "platform": "git", "status": "done"}
        assert tenant_id == TENANT_ID

    @pytest.mark.asyncio
    async def test_tracking_failure_does_not_fail_the_call(self, service, tracking, session_factory):
        tracking.should_fail = True

        integration = await service.git_connect_or_update(["x"])

        assert integration.status == "done"
        assert await count_rows(session_factory, Integration) == 1


class TestGithubConnect:
    """GitHub: credential exchange, run creation and node worker message."""

    @pytest.mark.asyncio
    async def test_connect_creates_integration_and_pending_run(self, service, session_factory, dispatcher, github):
        integration = await service.connect_github(code="oauth-code", install_id="42")

        assert integration.status == "in-progress"
        assert integration.token == "gho_user_token"
        assert integration.integration_identifier == "42"
        assert integration.settings["updateMemberAttributes"] is True
        assert integration.settings["repos"][0]["cloneUrl"] == "https://github.com/acme/widgets.git"

        runs = await all_runs(session_factory)
        assert len(runs) == 1
        assert runs[0].state == "pending"
        assert runs[0].onboarding is True
        assert runs[0].integration_id == integration.id
        assert runs[0].tenant_id == integration.tenant_id

        assert dispatcher.sent == [(TENANT_ID, RunProcessMessage(run_id=runs[0].id))]
        assert dispatcher.triggers == []
        github.get_install_token.assert_awaited_once_with("42")
        github.list_installed_repositories.assert_awaited_once_with("ghs_install_token")

    @pytest.mark.asyncio
    async def test_request_action_waits_for_approval(self, service, session_factory, dispatcher, github):
        integration = await service.connect_github(code=None, install_id="42", setup_action="request")

        assert integration.status == "waiting-approval"
        assert await count_rows(session_factory, IntegrationRun) == 0
        assert dispatcher.call_count == 0
        github.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_install_without_code_is_invalid(self, service):
        with pytest.raises(InvalidInputError):
            await service.connect_github(code=None, install_id="42")

    @pytest.mark.asyncio
    async def test_rejected_exchange_writes_nothing(self, service, session_factory, dispatcher, github):
        github.exchange_code.side_effect = CredentialExchangeError("github", "bad_verification_code")

        with pytest.raises(UpstreamRejectedError):
            await service.connect_github(code="expired", install_id="42")

        assert await count_rows(session_factory, Integration) == 0
        assert await count_rows(session_factory, IntegrationRun) == 0
        assert dispatcher.call_count == 0

    @pytest.mark.asyncio
    async def test_slow_exchange_times_out(self, session_factory, dispatcher, tracking, github, linkedin):
        async def hang(code):
            await asyncio.sleep(5)

        github.exchange_code = AsyncMock(side_effect=hang)
        service = IntegrationService(
            tenant_id=TENANT_ID,
            session_factory=session_factory,
            dispatcher=dispatcher,
            tracking=tracking,
            github=github,
            linkedin=linkedin,
            credential_timeout=0.05,
        )

        with pytest.raises(UpstreamRejectedError, match="timed out"):
            await service.connect_github(code="oauth-code", install_id="42")

        assert await count_rows(session_factory, Integration) == 0

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back_and_skips_dispatch(self, service, session_factory, dispatcher, tracking, monkeypatch):
        monkeypatch.setattr(
            AsyncSession,
            "commit",
            AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))),
        )

        with pytest.raises(StorageError):
            await service.connect_github(code="oauth-code", install_id="42")

        assert dispatcher.call_count == 0
        assert tracking.events == []
        assert await count_rows(session_factory, Integration) == 0
        assert await count_rows(session_factory, IntegrationRun) == 0

    @pytest.mark.asyncio
    async def test_dispatch_failure_keeps_committed_integration(self, service, session_factory, dispatcher):
        dispatcher.should_fail = True

        with pytest.raises(DispatchFailedError) as exc_info:
            await service.connect_github(code="oauth-code", install_id="42")

        saved = exc_info.value.integration
        assert saved.status == "in-progress"
        assert exc_info.value.status_code == 503

        integrations = await all_integrations(session_factory)
        assert [i.id for i in integrations] == [saved.id]
        runs = await all_runs(session_factory)
        assert len(runs) == 1
        assert runs[0].state == "pending"

    @pytest.mark.asyncio
    async def test_run_creation_failure_rolls_back_integration(self, service, session_factory, dispatcher, monkeypatch):
        monkeypatch.setattr(
            service.runs,
            "create",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("locked"))),
        )

        with pytest.raises(StorageError):
            await service.connect_github(code="oauth-code", install_id="42")

        assert await count_rows(session_factory, Integration) == 0
        assert dispatcher.call_count == 0


class TestQueueDrivenPlatforms:
    """Platforms whose onboarding is a pending run plus a node worker message."""

    @pytest.mark.asyncio
    async def test_discord_uses_configured_bot_token(self, service, dispatcher, session_factory):
        integration = await service.connect_discord("guild-1")

        assert integration.token == "discord-bot-token"
        assert integration.integration_identifier == "guild-1"
        assert integration.settings == {"updateMemberAttributes": True, "channels": []}
        assert len(dispatcher.sent) == 1
        assert await count_rows(session_factory, IntegrationRun) == 1

    @pytest.mark.asyncio
    async def test_discord_without_bot_token_is_invalid(self, session_factory, dispatcher, tracking, github, linkedin):
        service = IntegrationService(
            tenant_id=TENANT_ID,
            session_factory=session_factory,
            dispatcher=dispatcher,
            tracking=tracking,
            github=github,
            linkedin=linkedin,
        )

        with pytest.raises(InvalidInputError):
            await service.connect_discord("guild-1")
        assert dispatcher.call_count == 0

    @pytest.mark.asyncio
    async def test_twitter_splits_hashtags_and_resets_limit(self, service, dispatcher):
        integration = await service.twitter_callback(
            profile_id="12345",
            token="tw-token",
            refresh_token="tw-refresh",
            hashtags="#crowd, #devrel,",
        )

        assert integration.settings["hashtags"] == ["#crowd", "#devrel"]
        assert integration.limit_count == 0
        assert integration.limit_last_reset_at is not None
        assert integration.refresh_token == "tw-refresh"
        assert len(dispatcher.sent) == 1

    @pytest.mark.asyncio
    async def test_discourse_stores_forum_credentials(self, service, dispatcher):
        integration = await service.discourse_connect_or_update(
            api_key="key",
            api_username="system",
            forum_hostname="forum.example.com",
        )

        assert integration.settings == {
            "updateMemberAttributes": True,
            "apiKey": "key",
            "apiUsername": "system",
            "forumHostname": "forum.example.com",
        }
        assert len(dispatcher.sent) == 1
        assert dispatcher.triggers == []

    @pytest.mark.asyncio
    async def test_reconnect_creates_a_second_run(self, service, session_factory, dispatcher):
        await service.connect_discord("guild-1")
        await service.connect_discord("guild-2")

        assert await count_rows(session_factory, Integration) == 1
        assert await count_rows(session_factory, IntegrationRun) == 2
        assert len(dispatcher.sent) == 2


class TestTriggerDrivenPlatforms:
    """Platforms whose onboarding is a trigger to the run-worker emitter."""

    @pytest.mark.asyncio
    async def test_reddit_triggers_onboarding_without_run_row(self, service, session_factory, dispatcher):
        integration = await service.onboard_reddit(["python", "django"])

        assert integration.settings["subreddits"] == ["python", "django"]
        assert dispatcher.triggers == [(TENANT_ID, "reddit", integration.id, True)]
        assert dispatcher.sent == []
        assert await count_rows(session_factory, IntegrationRun) == 0

    @pytest.mark.asyncio
    async def test_reddit_without_subreddits_is_invalid(self, service, session_factory):
        with pytest.raises(InvalidInputError):
            await service.onboard_reddit([])
        assert await count_rows(session_factory, Integration) == 0

    @pytest.mark.asyncio
    async def test_devto_hackernews_and_stackoverflow_trigger(self, service, dispatcher):
        devto = await service.devto_connect_or_update(["ben"], ["devteam"])
        hackernews = await service.hackernews_connect_or_update(["crowd"], ["https://example.com"])
        stackoverflow = await service.stackoverflow_connect_or_update(["python"], ["asyncio"])

        assert [t[1] for t in dispatcher.triggers] == ["devto", "hackernews", "stackoverflow"]
        assert devto.settings["organizations"] == ["devteam"]
        assert hackernews.settings["urls"] == ["https://example.com"]
        assert stackoverflow.settings["tags"] == ["python"]

    @pytest.mark.asyncio
    async def test_slack_is_onboarding_until_channels_are_known(self, service, dispatcher):
        first = await service.slack_callback(token="xoxb-1", integration_identifier="T1")
        second = await service.slack_callback(
            token="xoxb-2",
            integration_identifier="T1",
            settings={"channels": [{"id": "C1", "name": "general"}], "teamName": "Acme"},
        )

        assert first.id == second.id
        assert [t[3] for t in dispatcher.triggers] == [True, False]
        assert second.settings["teamName"] == "Acme"
        assert second.settings["updateMemberAttributes"] is True
        assert second.token == "xoxb-2"

    @pytest.mark.asyncio
    async def test_trigger_failure_surfaces_saved_integration(self, service, session_factory, dispatcher):
        dispatcher.should_fail = True

        with pytest.raises(DispatchFailedError) as exc_info:
            await service.hackernews_connect_or_update(["crowd"], [])

        assert exc_info.value.integration.platform == "hackernews"
        assert await count_rows(session_factory, Integration) == 1

    @pytest.mark.asyncio
    async def test_slack_settings_of_wrong_shape_are_invalid(self, service, session_factory, dispatcher):
        with pytest.raises(InvalidInputError):
            await service.slack_callback(token="xoxb", settings={"channels": ["general"]})

        assert await count_rows(session_factory, Integration) == 0
        assert dispatcher.call_count == 0


class TestGit:
    """Git completes synchronously."""

    @pytest.mark.asyncio
    async def test_git_is_done_without_run_or_dispatch(self, service, session_factory, dispatcher):
        integration = await service.git_connect_or_update(["https://github.com/acme/a.git"])

        assert integration.status == "done"
        assert await count_rows(session_factory, IntegrationRun) == 0
        assert dispatcher.call_count == 0

    @pytest.mark.asyncio
    async def test_get_remotes(self, service):
        await service.git_connect_or_update(["a", "b"])

        assert await service.git_get_remotes() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_get_remotes_without_git_is_invalid(self, service):
        with pytest.raises(InvalidInputError):
            await service.git_get_remotes()

    @pytest.mark.asyncio
    async def test_corrupt_stored_remotes_are_storage_error(self, service):
        await service.store.create({"platform": "git", "status": "done", "settings": {"remotes": "a,b"}})

        with pytest.raises(StorageError):
            await service.git_get_remotes()


class TestCallerTransaction:
    """A caller-supplied transaction defers commit, dispatch and tracking."""

    @pytest.mark.asyncio
    async def test_dispatch_waits_for_caller_commit(self, service, session_factory, dispatcher, tracking):
        transaction = await create_transaction(session_factory)

        integration = await service.connect_discord("guild-1", transaction=transaction)

        assert dispatcher.call_count == 0
        assert tracking.events == []

        await commit_transaction(transaction)

        assert len(dispatcher.sent) == 1
        assert tracking.events[0][1]["id"] == integration.id
        assert await count_rows(session_factory, Integration) == 1

    @pytest.mark.asyncio
    async def test_caller_rollback_discards_dispatch(self, service, session_factory, dispatcher, tracking):
        transaction = await create_transaction(session_factory)
        await service.onboard_reddit(["python"], transaction=transaction)

        await rollback_transaction(transaction)

        assert dispatcher.call_count == 0
        assert tracking.events == []
        assert await count_rows(session_factory, Integration) == 0

    @pytest.mark.asyncio
    async def test_failed_dispatch_does_not_drop_later_dispatches(self, service, session_factory, dispatcher, tracking):
        dispatcher.send_node_worker_message = AsyncMock(side_effect=RuntimeError("broker down"))
        transaction = await create_transaction(session_factory)
        await service.connect_discord("guild-1", transaction=transaction)
        reddit = await service.onboard_reddit(["python"], transaction=transaction)

        with pytest.raises(DispatchFailedError):
            await commit_transaction(transaction)

        assert dispatcher.triggers == [(TENANT_ID, "reddit", reddit.id, True)]
        assert [event for event, _, _ in tracking.events] == [
            "Integration Created",
            "Integration Created",
        ]
        assert await count_rows(session_factory, Integration) == 2


class TestQueriesAndImport:
    """Listing, active integrations and imports."""

    @pytest.mark.asyncio
    async def test_active_integrations_are_done_ones(self, service):
        await service.git_connect_or_update(["a"])
        await service.onboard_reddit(["python"])

        rows, count = await service.get_all_active_integrations()

        assert count == 1
        assert rows[0].platform == "git"

    @pytest.mark.asyncio
    async def test_query_with_unknown_filter_is_invalid(self, service):
        with pytest.raises(InvalidInputError):
            await service.query({"token": "secret"})

    @pytest.mark.asyncio
    async def test_find_by_id_unknown_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.find_by_id("00000000-0000-0000-0000-000000000000")

    @pytest.mark.asyncio
    async def test_import_once_per_hash(self, service, dispatcher):
        imported = await service.import_integration(
            {"platform": "devto", "status": "done", "settings": {"users": ["ben"]}},
            "hash-1",
        )

        assert imported.import_hash == "hash-1"
        assert dispatcher.call_count == 0
        with pytest.raises(InvalidInputError):
            await service.import_integration({"platform": "slack", "status": "done"}, "hash-1")

    @pytest.mark.asyncio
    async def test_import_requires_hash(self, service):
        with pytest.raises(InvalidInputError):
            await service.import_integration({"platform": "devto"}, None)

    @pytest.mark.asyncio
    async def test_import_unknown_platform_is_invalid(self, service, session_factory):
        with pytest.raises(InvalidInputError):
            await service.import_integration({"platform": "myspace"}, "hash-1")

        assert await count_rows(session_factory, Integration) == 0

    @pytest.mark.asyncio
    async def test_autocomplete_labels(self, service):
        github = await service.connect_github(code="oauth-code", install_id="42")
        git = await service.git_connect_or_update(["a"])

        matches = await service.find_all_autocomplete("git")

        assert matches == [
            {"id": git.id, "label": "git"},
            {"id": github.id, "label": "github (42)"},
        ]
