"""Exception types surfaced by the App Service log tools.

Core operations (bounded queries, log fetches, diagnosis) report failures
through their result objects. These exceptions cover the cases that are
fatal to a single tool invocation: missing configuration and failed
metadata lookups.
"""


class AppServiceLogsError(Exception):
    """Base class for errors reported back to the calling agent."""


class ConfigurationError(AppServiceLogsError):
    """No target selected, or no usable Azure credentials."""


class ArmError(AppServiceLogsError):
    """A resource-metadata (ARM) request failed."""


class KuduError(AppServiceLogsError):
    """A request to the app's Kudu (SCM) site failed."""
