"""
FlowForge exception hierarchy.

All custom exceptions inherit from FlowForgeException so callers can
catch a single base type when they want a broad safety net.  A cache
miss is never an exception: lookups return ``None``.
"""


class FlowForgeException(Exception):
    """Base exception for all FlowForge errors."""


class ConfigurationError(FlowForgeException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class InvalidArgumentError(FlowForgeException, ValueError):
    """Raised when a caller passes an argument the cache cannot accept."""


class UnauthorizedError(FlowForgeException):
    """Raised when the bearer credential is missing or does not match."""


class StorageUnavailableError(FlowForgeException):
    """Raised when the underlying cache storage cannot be read or written."""


class CacheError(FlowForgeException):
    """Raised for cache lifecycle misuse (e.g. starting a running sweeper)."""
