"""
Custom exceptions for the queue call core.
"""

from typing import Any


class QueueCoreError(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        message: str,
        code: str = "QUEUE_CORE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class NotFoundError(QueueCoreError):
    """Raised when a referenced ticket, counter or request does not exist."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "NOT_FOUND", details)


class ValidationError(QueueCoreError):
    """Raised when a request is rejected before it reaches a queue."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "VALIDATION_ERROR", details)


class StoreError(QueueCoreError):
    """Raised when the call-request store fails or times out."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "STORE_ERROR", details)

