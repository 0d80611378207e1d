from qms_core.models.integration_config import IntegrationConfigRecord, IntegrationKind

__all__ = ["IntegrationConfigRecord", "IntegrationKind"]
