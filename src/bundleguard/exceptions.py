"""Custom exceptions for BundleGuard."""

from typing import Any


class BundleGuardError(Exception):
    """Base exception for all BundleGuard errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(BundleGuardError):
    """Raised when a security policy or build setting is malformed."""


class PolicyValidationError(ConfigurationError):
    """Raised when a policy document fails schema or model validation."""


class ResolutionError(BundleGuardError):
    """Raised when source file globs cannot be resolved."""


class RegistryError(BundleGuardError):
    """Raised when registry files cannot be found or read."""


class PluginError(BundleGuardError):
    """Raised when a build plugin fails while processing an emitted asset."""

    def __init__(
        self,
        message: str,
        plugin_name: str | None = None,
        asset_path: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.plugin_name = plugin_name
        self.asset_path = asset_path
