"""
Error taxonomy for the fleet query pipeline.

Only AuthenticationError and AuthorizationError ever reach the HTTP boundary.
Everything raised below the coordinator is converted into a structured value
(DomainResult, PluginResolution) where it is caught.
"""
from typing import Optional


class FleetAssistantError(Exception):
    """Base class for all pipeline errors."""


class AuthenticationError(FleetAssistantError):
    """Missing, unknown, inactive or expired credential."""


class AuthorizationError(FleetAssistantError):
    """Caller is authenticated but may not perform the operation."""

    def __init__(self, reason: str, retry_after: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.retry_after = retry_after


class ClassificationError(FleetAssistantError):
    """The planning completion call failed, so no domains could be chosen."""


class WorkerError(FleetAssistantError):
    """A domain agent failed to produce an answer."""

    def __init__(self, agent: str, message: str):
        super().__init__(f"{agent}: {message}")
        self.agent = agent


class PluginResolutionError(FleetAssistantError):
    """A plugin factory could not build a tool bundle for a tenant."""

    def __init__(self, plugin_key: str, message: str):
        super().__init__(f"{plugin_key}: {message}")
        self.plugin_key = plugin_key


class UpstreamTimeoutError(FleetAssistantError):
    """An external call exceeded its time budget."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(f"{operation} timed out after {timeout_seconds:g}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class CompletionError(FleetAssistantError):
    """The completion service returned an unusable response."""
