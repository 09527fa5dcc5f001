"""Runtime settings for the App Service log tools.

Settings have built-in defaults, can be loaded from a YAML file, and can
be overridden per field through ``APPSERVICE_LOGS_<FIELD>`` environment
variables.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field

CONFIG_ENV_VAR = "APPSERVICE_LOGS_CONFIG"
ENV_PREFIX = "APPSERVICE_LOGS_"

MANAGEMENT_SCOPE = "https://management.azure.com/.default"


class Settings(BaseModel):
    """Limits, endpoints and timeouts shared by every connector."""

    # Query guardrails
    max_rows: int = Field(default=500, ge=1, description="Row cap appended to structured queries")
    max_time_range_days: int = Field(default=7, ge=1, description="Longest time range a query may cover")
    query_timeout_seconds: int = Field(default=30, ge=1, description="Server-side timeout per query")
    default_time_range_minutes: int = Field(default=60, ge=1)

    # Kudu (SCM site)
    kudu_timeout_seconds: float = Field(default=30.0, gt=0)
    kudu_max_bytes: int = Field(default=100_000, ge=1)
    application_log_path: str = "/LogFiles/Application/"
    scm_host_suffix: str = "scm.azurewebsites.net"
    kudu_scope: str = MANAGEMENT_SCOPE

    # ARM
    arm_endpoint: str = "https://management.azure.com"
    arm_timeout_seconds: float = Field(default=30.0, gt=0)
    management_scope: str = MANAGEMENT_SCOPE

    log_level: str = "INFO"

    @property
    def max_time_range_minutes(self) -> int:
        return self.max_time_range_days * 24 * 60

    def to_yaml(self) -> str:
        """Serialize to YAML string."""
        return yaml.dump(self.model_dump(), default_flow_style=False, sort_keys=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> Settings:
        """Deserialize from YAML string. An empty document yields defaults."""
        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> Settings:
        """Load from a YAML file."""
        return cls.from_yaml(Path(path).read_text())


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build settings from an optional YAML file plus environment overrides.

    Args:
        path: YAML file to read. Defaults to ``$APPSERVICE_LOGS_CONFIG``.
        environ: Environment mapping (``os.environ`` when omitted)

    Returns:
        Validated Settings
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_ENV_VAR)

    data: dict[str, Any] = {}
    if path:
        data = yaml.safe_load(Path(path).read_text()) or {}

    for name in Settings.model_fields:
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            data[name] = value

    return Settings.model_validate(data)


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout carries the MCP transport."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
    logging.getLogger("azure.identity").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
