"""Backend connectors for App Service diagnostics.

- **auth**: Azure credential and token management
- **arm**: Resource metadata, diagnostic settings, deployment history
- **guardrails**: Bounds on time range, rows and timeout for KQL queries
- **log_analytics**: Raw and prebuilt KQL queries (Log Analytics)
- **kudu**: Container logs and log files via the SCM site

Usage:
    from appservice_logs.connectors import GuardrailEnforcer, LogAnalyticsConnector

    connector = LogAnalyticsConnector(GuardrailEnforcer(auth.get_logs_query_client()))
    result = await connector.query_http_errors(workspace_id, minutes=60)
"""

from .arm import ArmClient
from .auth import AzureAuthManager
from .guardrails import GuardrailEnforcer, QueryBackend, QueryGuardrails
from .kudu import KuduConnector, parse_log_lines
from .log_analytics import LogAnalyticsConnector

__all__ = [
    "ArmClient",
    "AzureAuthManager",
    "GuardrailEnforcer",
    "QueryBackend",
    "QueryGuardrails",
    "KuduConnector",
    "parse_log_lines",
    "LogAnalyticsConnector",
]
