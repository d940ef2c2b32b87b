from integrahub.models.base import AuditMixin, Base, TenantMixin, UUIDPrimaryKeyMixin
from integrahub.models.integration import Integration, IntegrationStatus, PlatformType
from integrahub.models.integration_run import IntegrationRun, IntegrationRunState

__all__ = [
    "Base",
    "UUIDPrimaryKeyMixin",
    "TenantMixin",
    "AuditMixin",
    "Integration",
    "IntegrationRun",
    "IntegrationRunState",
    "IntegrationStatus",
    "PlatformType",
]
