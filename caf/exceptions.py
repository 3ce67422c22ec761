"""Shared exception classes for caf."""


class FabricError(Exception):
    """Base exception for caf errors."""


class SourceResolutionError(FabricError):
    """Raised when a source string cannot be classified or materialized."""


class UnsupportedAgentError(FabricError):
    """Raised when a target agent is outside a handler's supported set."""


class ConflictError(FabricError):
    """Raised when an install destination is already populated and force is off."""


class NotFoundError(FabricError):
    """Raised when a resource to remove or update is not tracked or not on disk."""


class ValidationError(FabricError):
    """Raised when resource content is malformed or a path escapes its root."""


class FabricIOError(FabricError):
    """Raised on filesystem failures other than not-found."""


class LockFileError(FabricError):
    """Raised when the lock file cannot be read or has an unsupported version."""


class PluginError(FabricError):
    """Raised when a plugin manifest is invalid or its entry cannot be loaded."""


class ConfigNotFoundError(FabricError):
    """Raised when config.toml is not found."""


class ConfigParseError(FabricError):
    """Raised when config.toml cannot be parsed."""


class ConfigValidationError(FabricError):
    """Raised when config.toml contains invalid configuration."""
