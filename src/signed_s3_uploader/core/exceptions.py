"""
Exception classes for the signed S3 uploader.

Provides a hierarchy of exceptions for the failure categories of a multipart upload:
validation, transport, protocol shape and lifecycle errors.
"""

from typing import Any, Dict, Optional


class UploaderError(Exception):
    """Base exception for all uploader errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(UploaderError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(UploaderError):
    """Raised when the file cannot be uploaded at all (too large, unreadable)."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        details = {"field": field, "value": value}
        super().__init__(message, details)
        self.field = field
        self.value = value


class TransportError(UploaderError):
    """Raised for network failures, timeouts and non-2xx responses."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class TransferAborted(TransportError):
    """Raised when an in-flight request is aborted by cancellation."""

    def __init__(self, message: str = "Request aborted") -> None:
        super().__init__(message)


class ProtocolError(UploaderError):
    """Raised when a backend response is missing an expected field.

    Protocol errors are never retried: resending the same request to a backend
    that answered with a malformed document is not expected to help.
    """

    def __init__(self, message: str, phase: Optional[str] = None) -> None:
        details = {"phase": phase} if phase else {}
        super().__init__(message, details)
        self.phase = phase


class InvalidTransitionError(UploaderError):
    """Raised when the upload state machine is asked for a forbidden transition."""

    def __init__(self, current: Any, target: Any) -> None:
        super().__init__(
            f"Cannot transition upload from {current} to {target}",
            {"current": str(current), "target": str(target)},
        )
        self.current = current
        self.target = target


class UploadFailedError(UploaderError):
    """Raised by blocking helpers when an upload ends in the Failed state."""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class UploadCancelledError(UploaderError):
    """Raised by blocking helpers when an upload was cancelled."""

    def __init__(self, message: str = "Upload cancelled") -> None:
        super().__init__(message)


class UploadTimeoutError(UploadCancelledError):
    """Raised by blocking helpers when an upload was cancelled for running too long."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Upload did not finish within {timeout}s")
        self.details = {"timeout": timeout}
        self.timeout = timeout
