"""Messages sent to the asynchronous workers that process integration runs."""

from __future__ import annotations

from pydantic import BaseModel


class RunProcessMessage(BaseModel):
    """Point-to-point work item: process the run with this id."""

    type: str = "process_integration_run"
    run_id: str


class IntegrationRunTrigger(BaseModel):
    """Trigger for the run-worker to create and process a run itself."""

    type: str = "start_integration_run"
    tenant_id: str
    platform: str
    integration_id: str
    onboarding: bool
