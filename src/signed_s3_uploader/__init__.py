"""
Signed S3 Uploader - multipart uploads to S3-compatible stores with backend-issued signatures.

This package provides:
- A multipart upload engine that never holds secret credentials
- Concurrent chunk transfer with per-part retries and linear backoff
- Reconciliation of uploaded parts against the store's part listing
- CLI tool with a progress bar
"""

__version__ = "1.0.0"

from .core.api import upload_bytes, upload_file
from .core.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    ProtocolError,
    TransferAborted,
    TransportError,
    UploadCancelledError,
    UploaderError,
    UploadFailedError,
    UploadTimeoutError,
    ValidationError,
)
from .core.models import Chunk, UploaderSettings, UploadStatus, load_settings
from .core.notifications import (
    CallbackNotifier,
    CompositeNotifier,
    LoggingNotifier,
    UploadNotifier,
)
from .core.planner import plan_chunks
from .core.retry import RetryPolicy
from .core.source import BytesSource, FileSource, UploadSource
from .core.transport import RequestsTransport, Transport
from .core.uploader import SignedMultipartUploader

__all__ = [
    # Core classes
    "SignedMultipartUploader",
    "UploaderSettings",
    "load_settings",
    "UploadStatus",
    "Chunk",
    "RetryPolicy",
    "plan_chunks",
    # Notifications
    "UploadNotifier",
    "CallbackNotifier",
    "LoggingNotifier",
    "CompositeNotifier",
    # Sources and transport
    "UploadSource",
    "FileSource",
    "BytesSource",
    "Transport",
    "RequestsTransport",
    # Exceptions
    "UploaderError",
    "ConfigurationError",
    "ValidationError",
    "TransportError",
    "TransferAborted",
    "ProtocolError",
    "InvalidTransitionError",
    "UploadFailedError",
    "UploadCancelledError",
    "UploadTimeoutError",
    # Convenience functions
    "upload_file",
    "upload_bytes",
    # Metadata
    "__version__",
]
