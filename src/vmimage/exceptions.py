"""Exceptions raised by vmimage.

Exception Hierarchy:
    VMImageError (base)
    ├── InvalidInputError - Malformed image name, unsupported source URL
    ├── StorageIOError - Local filesystem failure
    ├── NetworkError - Sidecar digest fetch or health check failed
    ├── BackendError - Failure reported by the container runtime or image hub
    └── ConfigError - Unknown backend type, missing credentials
"""

from __future__ import annotations

from typing import Any


class VMImageError(Exception):
    """Base exception for all vmimage errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({detail_str})"

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logging and API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class InvalidInputError(VMImageError):
    """Raised for malformed image names and unsupported sources."""

    pass


class StorageIOError(VMImageError):
    """Raised when a local file cannot be opened, read or written."""

    pass


class NetworkError(VMImageError):
    """Raised when a remote resource or backend host is unreachable."""

    pass


class BackendError(VMImageError):
    """Raised when the underlying runtime or hub client fails.

    Attributes:
        operation: Backend operation that failed (pull, push, build, ...).
        image: Backend-qualified image name, if known.
    """

    def __init__(
        self,
        message: str,
        operation: str = "",
        image: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if operation:
            merged.setdefault("operation", operation)
        if image:
            merged.setdefault("image", image)
        super().__init__(message, merged)
        self.operation = operation
        self.image = image


class ConfigError(VMImageError):
    """Raised for unknown backend types and incomplete backend configuration."""

    pass


__all__ = [
    "VMImageError",
    "InvalidInputError",
    "StorageIOError",
    "NetworkError",
    "BackendError",
    "ConfigError",
]
